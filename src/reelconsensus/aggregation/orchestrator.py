"""Concurrent fan-out of field queries to registered sources.

One query for one film goes to every enabled source able to answer, all at
once. Each request has its own timeout and the whole fan-out a deadline; a
source that fails, times out or misses the deadline simply contributes no
records. Runs over many films are split into batches that execute fully in
parallel, with a fixed pause between batches to respect upstream quotas.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reelconsensus.adapters.base import AdapterError, AdapterTimeoutError, SourceAdapter
from reelconsensus.config import Settings, get_settings
from reelconsensus.models import EntityQuery, EntitySummary, InvariantViolation, SourceRecord
from reelconsensus.registry import SourceDescriptor, SourceRegistry, default_registry

logger = logging.getLogger(__name__)

_FetchStatus = Literal["responded", "no_data", "failed", "timed_out"]


class QueryOutcome(BaseModel):
    """Records of one fan-out plus which sources did what."""

    model_config = ConfigDict(frozen=True)

    entity_key: str
    records: list[SourceRecord] = Field(default_factory=list)
    responded: list[str] = Field(default_factory=list)
    no_data: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    timed_out: list[str] = Field(default_factory=list)


class BatchOutcome(BaseModel):
    """Result of a batched run.

    Attributes:
        results: Worker results by item key, for items that completed.
        failed: Error description by item key, for items whose worker raised.
        cancelled: Keys of items cancelled in flight or never started.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    results: dict[str, Any] = Field(default_factory=dict)
    failed: dict[str, str] = Field(default_factory=dict)
    cancelled: list[str] = Field(default_factory=list)

    @property
    def was_cancelled(self) -> bool:
        """True if any item did not run to completion because of an abort."""
        return bool(self.cancelled)


def _default_key(item: Any) -> str:
    """Key of a batch item: its id, its query key, or its string form."""
    for attr in ("id", "key"):
        value = getattr(item, attr, None)
        if value is not None:
            return str(value)
    return str(item)


def _as_query(entity: EntityQuery | EntitySummary) -> EntityQuery:
    if isinstance(entity, EntitySummary):
        return entity.to_query()
    return entity


class SourceOrchestrator:
    """Fan queries out to source adapters and run batches of work.

    Only sources present in both the registry and the adapter set are
    queried. The registry supplies trust weights; adapters never set their
    own.

    Example:
        >>> orchestrator = SourceOrchestrator([TMDBAdapter(api_key=key)])
        >>> records = await orchestrator.query(query, ["director", "hero"])
    """

    def __init__(
        self,
        adapters: Iterable[SourceAdapter],
        registry: SourceRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            adapters: Source adapters, keyed internally by their source_id.
            registry: Source registry. Defaults to ``default_registry()``.
            settings: Optional Settings instance.
        """
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            if adapter.source_id in self._adapters:
                raise ValueError(f"Two adapters claim source id {adapter.source_id}")
            self._adapters[adapter.source_id] = adapter
        self._registry = registry or default_registry()
        self._settings = settings or get_settings()

        unregistered = sorted(set(self._adapters) - set(self._registry))
        if unregistered:
            logger.warning(f"Adapters without a registry entry will not be queried: {unregistered}")

    @property
    def registry(self) -> SourceRegistry:
        """The registry this orchestrator queries against."""
        return self._registry

    def sources_for(self, fields: Sequence[str]) -> list[SourceDescriptor]:
        """Enabled, capable sources that also have an adapter."""
        return [d for d in self._registry.enabled_for(fields) if d.id in self._adapters]

    async def query(
        self, entity: EntityQuery | EntitySummary, fields: Sequence[str]
    ) -> list[SourceRecord]:
        """Collect every source's values for the given fields of one film.

        Never raises for source failures: they only reduce the records.

        Args:
            entity: The film to query.
            fields: Field names wanted.

        Returns:
            SourceRecords in no guaranteed order.
        """
        outcome = await self.query_detailed(entity, fields)
        return outcome.records

    async def query_detailed(
        self, entity: EntityQuery | EntitySummary, fields: Sequence[str]
    ) -> QueryOutcome:
        """Like ``query``, also reporting which sources responded or failed."""
        query = _as_query(entity)
        descriptors = self.sources_for(fields)
        if not descriptors:
            logger.warning(f"No enabled source can answer {list(fields)} for {query.key}")
            return QueryOutcome(entity_key=query.key)

        tasks = {
            asyncio.create_task(self._fetch_one(descriptor, query, fields)): descriptor.id
            for descriptor in descriptors
        }
        try:
            done, pending = await asyncio.wait(
                tasks, timeout=self._settings.query_deadline_seconds
            )
        finally:
            # Covers both the deadline and cancellation of the caller
            stragglers = [task for task in tasks if not task.done()]
            for task in stragglers:
                task.cancel()
            if stragglers:
                await asyncio.gather(*stragglers, return_exceptions=True)

        buckets: dict[_FetchStatus, list[str]] = {
            "responded": [],
            "no_data": [],
            "failed": [],
            "timed_out": [],
        }
        records: list[SourceRecord] = []
        for task, source_id in tasks.items():
            if task in pending or task.cancelled():
                logger.warning(f"Source {source_id} missed the query deadline for {query.key}")
                buckets["timed_out"].append(source_id)
                continue
            status, source_records = task.result()
            buckets[status].append(source_id)
            records.extend(source_records)

        records.sort(key=lambda r: (r.field_name, r.source_id))
        outcome = QueryOutcome(
            entity_key=query.key,
            records=records,
            **{status: sorted(ids) for status, ids in buckets.items()},
        )
        logger.info(
            f"Query complete for {query.key}: {len(outcome.responded)} responded, "
            f"{len(outcome.failed)} failed, {len(outcome.timed_out)} timed out"
        )
        return outcome

    async def _fetch_one(
        self,
        descriptor: SourceDescriptor,
        query: EntityQuery,
        fields: Sequence[str],
    ) -> tuple[_FetchStatus, list[SourceRecord]]:
        """Query one source under its own timeout; never raises."""
        adapter = self._adapters[descriptor.id]
        wanted = [f for f in fields if f in descriptor.capabilities]
        started = time.perf_counter()
        timeout = self._settings.source_timeout_seconds

        try:
            values = await asyncio.wait_for(adapter.fetch(query, wanted), timeout=timeout)
        except (asyncio.TimeoutError, AdapterTimeoutError) as e:
            logger.warning(f"Source {descriptor.id} timed out for {query.key}: {e}")
            return "timed_out", []
        except AdapterError as e:
            logger.warning(f"Adapter {descriptor.id} failed for {query.key}: {e}")
            return "failed", []
        except Exception as e:
            logger.error(f"Unexpected error from {descriptor.id} for {query.key}: {e}")
            return "failed", []

        latency_ms = (time.perf_counter() - started) * 1000
        if values is not None and not isinstance(values, Mapping):
            logger.warning(
                f"Adapter {descriptor.id} returned {type(values).__name__} "
                f"instead of a field mapping for {query.key}"
            )
            return "failed", []
        if not values:
            logger.debug(f"Source {descriptor.id} has no data for {query.key}")
            return "no_data", []

        records: list[SourceRecord] = []
        for field_name in wanted:
            value = values.get(field_name)
            if value is None:
                continue
            try:
                records.append(
                    SourceRecord(
                        source_id=descriptor.id,
                        field_name=field_name,
                        value=value,
                        latency_ms=latency_ms,
                        trust_weight=descriptor.trust_weight,
                    )
                )
            except ValidationError:
                logger.warning(
                    f"Source {descriptor.id} returned an unusable {field_name} "
                    f"value for {query.key}: {type(value).__name__}"
                )

        logger.debug(
            f"Source {descriptor.id} returned {len(records)} fields for {query.key} "
            f"in {latency_ms:.0f}ms"
        )
        return ("responded" if records else "no_data"), records

    async def run_batches(
        self,
        items: Iterable[Any],
        worker: Callable[[Any], Awaitable[Any]],
        *,
        key: Callable[[Any], str] | None = None,
        cancel_event: asyncio.Event | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
    ) -> BatchOutcome:
        """Run ``worker`` over items in rate-limited batches.

        Items of one batch run concurrently; the next batch starts after the
        current one is fully drained and the batch delay has passed. Setting
        ``cancel_event`` cancels the in-flight items of the current batch and
        skips the rest; results already completed are kept. A worker error
        fails only its own item.

        Args:
            items: Work items.
            worker: Coroutine function applied to each item.
            key: Item key for the outcome maps. Defaults to the item's
                ``id``, then ``key`` attribute, then ``str(item)``. Keys must
                be unique within one run.
            cancel_event: Optional abort signal.
            batch_size: Overrides ``Settings.batch_size``.
            batch_delay_seconds: Overrides ``Settings.batch_delay_seconds``.

        Returns:
            BatchOutcome with results, failures and cancelled keys.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled. In-flight
                items are cancelled before it propagates.
        """
        work = list(items)
        key_of = key or _default_key
        size = batch_size or self._settings.batch_size
        delay = (
            self._settings.batch_delay_seconds
            if batch_delay_seconds is None
            else batch_delay_seconds
        )
        outcome = BatchOutcome()

        for start in range(0, len(work), size):
            if start > 0 and delay > 0:
                await self._pause(delay, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled.extend(key_of(item) for item in work[start:])
                logger.warning(f"Batch run aborted with {len(work) - start} items not started")
                break

            batch = work[start : start + size]
            tasks = {asyncio.create_task(worker(item)): key_of(item) for item in batch}
            aborted = await self._drain(tasks, outcome, cancel_event)
            logger.info(
                f"Batch {start // size + 1} done: {len(outcome.results)} succeeded, "
                f"{len(outcome.failed)} failed so far"
            )
            if aborted:
                outcome.cancelled.extend(key_of(item) for item in work[start + size :])
                logger.warning(f"Batch run aborted: {len(outcome.cancelled)} items cancelled")
                break

        return outcome

    async def query_many(
        self,
        entities: Iterable[EntityQuery | EntitySummary],
        fields: Sequence[str],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchOutcome:
        """Run ``query`` over many films in batches.

        Returns:
            BatchOutcome whose results map entity keys to SourceRecord lists.
        """

        async def worker(entity: EntityQuery | EntitySummary) -> list[SourceRecord]:
            return await self.query(entity, fields)

        return await self.run_batches(entities, worker, cancel_event=cancel_event)

    async def _drain(
        self,
        tasks: dict["asyncio.Task[Any]", str],
        outcome: BatchOutcome,
        cancel_event: asyncio.Event | None,
    ) -> bool:
        """Wait for one batch; return True if it was aborted."""
        pending: set[asyncio.Task[Any]] = set(tasks)
        cancel_waiter = (
            asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        )
        try:
            while pending:
                waiting = (pending | {cancel_waiter}) if cancel_waiter else pending
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    self._record(task, tasks[task], outcome)
                if cancel_waiter is not None and cancel_waiter.done():
                    break
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                # A task may have finished before its cancel() landed
                for task in sorted(pending, key=lambda t: tasks[t]):
                    self._record(task, tasks[task], outcome)
        return bool(pending)

    @staticmethod
    def _record(task: "asyncio.Task[Any]", item_key: str, outcome: BatchOutcome) -> None:
        if task.cancelled():
            outcome.cancelled.append(item_key)
            return
        error = task.exception()
        if error is None:
            outcome.results[item_key] = task.result()
        elif isinstance(error, InvariantViolation):
            logger.error(f"Invariant violated while processing {item_key}: {error}")
            outcome.failed[item_key] = f"InvariantViolation: {error}"
        else:
            logger.error(f"Unexpected error processing {item_key}: {error}")
            outcome.failed[item_key] = f"{type(error).__name__}: {error}"

    @staticmethod
    async def _pause(seconds: float, cancel_event: asyncio.Event | None) -> None:
        """Sleep between batches, waking early if the run is aborted."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


__all__ = [
    "BatchOutcome",
    "QueryOutcome",
    "SourceOrchestrator",
]
