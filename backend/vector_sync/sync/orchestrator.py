"""Per-record processing state machine and backup sweep."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine

from vector_sync.core.config import Settings
from vector_sync.core.errors import NotFoundRace, SyncError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.core.metrics import IN_FLIGHT, ORPHANS_REMOVED, RECORDS_FAILED, RECORDS_PROCESSED, SWEEP_DURATION
from vector_sync.db.records import RecordStore
from vector_sync.models.entities import (
    Operation,
    ProcessingStage,
    Record,
    RecordFailure,
    SyncStatus,
    TenantSyncReport,
    VectorMetadata,
    VectorRecord,
)
from vector_sync.sync.content import CONTENT_VERSION, NormalizedContent, build_content
from vector_sync.sync.embeddings import EmbeddingClient
from vector_sync.sync.status import SyncStatusRegistry
from vector_sync.utils.hashing import sha256_text
from vector_sync.utils.ids import task_name
from vector_sync.utils.time import EPOCH, elapsed_ms, utc_now

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SyncOrchestrator:
    """Drive records through fetch, normalize, embed and upsert.

    Owns the tenant status registry, the per-tenant sweep watermarks and every
    background task it starts, so an operator can observe or cancel work that
    outlived the request that triggered it.
    """

    def __init__(
        self,
        store: RecordStore,
        embedder: EmbeddingClient,
        settings: Settings,
        statuses: SyncStatusRegistry | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.settings = settings
        self.statuses = statuses or SyncStatusRegistry(settings.embedding_cost_per_1k_tokens)
        self.sleep = sleep
        self.last_sweep_at: datetime | None = None
        self._watermarks: dict[str, datetime] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._wake: asyncio.Event | None = None

    # Single record ----------------------------------------------------

    async def process_record(
        self,
        tenant_id: str,
        record_id: str,
        max_attempts: int | None = None,
        path: str = "webhook",
    ) -> VectorRecord:
        """Run one record through RECEIVED → DONE.

        Raises a ``SyncError`` subclass tagged with the stage that failed;
        the tenant status is updated either way.
        """
        attempts = max_attempts or self.settings.webhook_fetch_max_attempts
        started = time.perf_counter()
        stage = ProcessingStage.RECEIVED
        error_text: str | None = None
        self.statuses.begin(tenant_id, expected=1)
        logger.info(
            "Processing record",
            extra=ctx(tenant_id=tenant_id, record_id=record_id, stage=stage.value, max_attempts=attempts),
        )
        try:
            stage = ProcessingStage.VERIFIED
            probe_found = await self._probe(record_id)

            stage = ProcessingStage.FETCHED
            record = await self.store.fetch_one(tenant_id, record_id, attempts)
            if record is None:
                raise NotFoundRace(
                    f"Record {record_id} not found for tenant {tenant_id} after {attempts} attempts",
                    tenant_id=tenant_id,
                    record_id=record_id,
                    attempts=attempts,
                    probe_found=probe_found,
                )

            stage = ProcessingStage.EMBEDDED
            content = self._content_for(record)
            embedding = await self.embedder.embed_detailed(content.text)

            stage = ProcessingStage.UPSERTED
            stored = await self.store.upsert_vector(self.build_vector(tenant_id, record, content, embedding.vector))

            stage = ProcessingStage.DONE
            took = elapsed_ms(started)
            self.statuses.record_success(tenant_id, took, embedding.token_count)
            RECORDS_PROCESSED.labels(path=path).inc()
            logger.info(
                "Record synchronized",
                extra=ctx(tenant_id=tenant_id, record_id=record_id, stage=stage.value, elapsed_ms=took),
            )
            return stored
        except SyncError as exc:
            exc.stage = exc.stage or stage.value
            exc.tenant_id = exc.tenant_id or tenant_id
            exc.record_id = exc.record_id or record_id
            error_text = exc.message
            self._record_failure(tenant_id, record_id, stage, exc.kind, exc.message, path)
            raise
        except Exception as exc:
            error_text = str(exc) or exc.__class__.__name__
            logger.exception(
                "Unexpected error processing record",
                extra=ctx(tenant_id=tenant_id, record_id=record_id, stage=stage.value),
            )
            self._record_failure(tenant_id, record_id, stage, "unexpected", error_text, path)
            raise
        finally:
            self.statuses.finish(tenant_id, error=error_text)

    def submit(self, tenant_id: str, record_id: str) -> asyncio.Task[VectorRecord]:
        """Start ``process_record`` as a tracked background task."""
        return self.spawn(self.process_record(tenant_id, record_id), name=task_name(tenant_id, record_id))

    async def settle(self, operation: Operation | None) -> None:
        """Give a freshly inserted row time to become visible before fetching it."""
        if operation is Operation.INSERT and self.settings.insert_settle_delay_ms > 0:
            await self.sleep(self.settings.insert_settle_delay_ms / 1000)

    # Tenant sync ------------------------------------------------------

    async def force_sync_tenant(self, tenant_id: str, full: bool = False) -> TenantSyncReport:
        logger.info("Forcing tenant sync", extra=ctx(tenant_id=tenant_id, full=full))
        return await self.sync_tenant(tenant_id, since=EPOCH if full else None)

    async def sync_tenant(self, tenant_id: str, since: datetime | None = None) -> TenantSyncReport:
        """Process every record of ``tenant_id`` changed since its watermark.

        Per-record failures are collected in the report. Failures of the
        tenant-level queries propagate and leave the watermark untouched.
        """
        started = time.perf_counter()
        pass_started = utc_now()
        effective_since = since if since is not None else self._watermarks.get(tenant_id, EPOCH)
        report = TenantSyncReport(tenant_id=tenant_id, since=effective_since)
        error_text: str | None = None
        self.statuses.begin(tenant_id)
        try:
            records = await self.store.fetch_changed_since(tenant_id, effective_since)
            report.total = len(records)
            self.statuses.add_expected(tenant_id, len(records))
            if records:
                logger.info(
                    "Processing changed records",
                    extra=ctx(tenant_id=tenant_id, record_count=len(records), since=effective_since.isoformat()),
                )
            else:
                logger.debug("No changes to process", extra=ctx(tenant_id=tenant_id))

            batch_size = self.settings.batch_size
            for offset in range(0, len(records), batch_size):
                chunk = records[offset : offset + batch_size]
                failures = await self._process_chunk(tenant_id, chunk)
                report.failures.extend(failures)
                report.processed += len(chunk) - len(failures)
            report.failed = len(report.failures)

            report.orphans_removed = await self.store.remove_orphaned_vectors(tenant_id)
            ORPHANS_REMOVED.inc(report.orphans_removed)
            self._watermarks[tenant_id] = pass_started
            if report.failed:
                error_text = f"{report.failed} of {report.total} records failed"
        except Exception as exc:
            error_text = str(exc) or exc.__class__.__name__
            logger.error("Tenant sync failed", extra=ctx(tenant_id=tenant_id, error=error_text))
            self.statuses.finish(tenant_id, error=error_text)
            raise
        report.elapsed_ms = elapsed_ms(started)
        self.statuses.finish(tenant_id, error=error_text, synced_at=utc_now())
        logger.info(
            "Tenant sync finished",
            extra=ctx(
                tenant_id=tenant_id,
                total=report.total,
                processed=report.processed,
                failed=report.failed,
                orphans_removed=report.orphans_removed,
                elapsed_ms=report.elapsed_ms,
            ),
        )
        return report

    async def _process_chunk(self, tenant_id: str, chunk: list[Record]) -> list[RecordFailure]:
        started = time.perf_counter()
        contents = [self._content_for(record) for record in chunk]
        batch = await self.embedder.embed_batch([content.text for content in contents])

        failures: list[RecordFailure] = []
        for index in batch.failed:
            failures.append(
                self._record_failure(
                    tenant_id,
                    chunk[index].id,
                    ProcessingStage.EMBEDDED,
                    "provider",
                    "Embedding failed after retries",
                    "sweep",
                )
            )

        async def upsert(index: int, vector: list[float]) -> RecordFailure | None:
            record = chunk[index]
            try:
                await self.store.upsert_vector(self.build_vector(tenant_id, record, contents[index], vector))
            except SyncError as exc:
                return self._record_failure(
                    tenant_id, record.id, ProcessingStage.UPSERTED, exc.kind, exc.message, "sweep"
                )
            except Exception as exc:
                logger.exception("Unexpected error upserting vector", extra=ctx(tenant_id=tenant_id, record_id=record.id))
                return self._record_failure(
                    tenant_id, record.id, ProcessingStage.UPSERTED, "unexpected", str(exc), "sweep"
                )
            self.statuses.record_success(tenant_id, elapsed_ms(started), batch.token_counts[index])
            RECORDS_PROCESSED.labels(path="sweep").inc()
            return None

        outcomes = await asyncio.gather(
            *(upsert(index, vector) for index, vector in enumerate(batch.vectors) if vector is not None)
        )
        failures.extend(outcome for outcome in outcomes if outcome is not None)
        return failures

    # Backup sweep -----------------------------------------------------

    async def run_sweep(self) -> list[TenantSyncReport]:
        """One reconciliation pass over every active tenant."""
        started = time.perf_counter()
        tenants = await self.store.list_active_tenants()
        reports: list[TenantSyncReport] = []
        for tenant_id in tenants:
            try:
                reports.append(await self.sync_tenant(tenant_id))
            except Exception:
                logger.exception("Tenant sweep failed; retrying next cycle", extra=ctx(tenant_id=tenant_id))
        self.last_sweep_at = utc_now()
        SWEEP_DURATION.observe(time.perf_counter() - started)
        logger.info("Sweep finished", extra=ctx(tenants=len(tenants), elapsed_ms=elapsed_ms(started)))
        return reports

    async def start(self) -> None:
        """Run the sweep loop until ``stop`` is called."""
        wake = self._arm()
        if wake is None:
            logger.warning("Sweep loop already running")
            return
        await self._loop(wake)

    def stop(self) -> None:
        self._running = False
        if self._wake is not None:
            self._wake.set()
        logger.info("Stopping backup sweep loop")

    @property
    def running(self) -> bool:
        return self._running

    def launch(self) -> bool:
        """Start the sweep loop as a background task; False if already running."""
        if any(task.get_name() == "backup-sweep" for task in self._tasks):
            return False
        wake = self._arm()
        if wake is None:
            return False
        self.spawn(self._loop(wake), name="backup-sweep")
        return True

    def _arm(self) -> asyncio.Event | None:
        # Running from the moment the loop is scheduled.
        if self._running:
            return None
        self._running = True
        self._wake = asyncio.Event()
        return self._wake

    async def _loop(self, wake: asyncio.Event) -> None:
        logger.info(
            "Starting backup sweep loop",
            extra=ctx(interval_seconds=self.settings.sweep_interval_seconds, batch_size=self.settings.batch_size),
        )
        try:
            while self._running:
                try:
                    await self.run_sweep()
                except Exception:
                    logger.exception("Sweep cycle failed")
                if not self._running:
                    break
                try:
                    await asyncio.wait_for(wake.wait(), timeout=self.settings.sweep_interval_seconds)
                except asyncio.TimeoutError:
                    pass
                wake.clear()
        finally:
            self._running = False
            logger.info("Backup sweep loop stopped")

    # Status -----------------------------------------------------------

    def get_status(self, tenant_id: str) -> SyncStatus | None:
        return self.statuses.get(tenant_id)

    # Background tasks -------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        IN_FLIGHT.set(len(self._tasks))
        task.add_done_callback(self._forget)
        return task

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    def cancel_background(self) -> int:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    async def shutdown(self) -> None:
        self.stop()
        tasks = list(self._tasks)
        self.cancel_background()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        IN_FLIGHT.set(len(self._tasks))
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Already logged and recorded in the tenant status.
            logger.debug("Background task ended with error", extra=ctx(task=task.get_name(), error=str(exc)))

    # Helpers ----------------------------------------------------------

    async def _probe(self, record_id: str) -> bool | None:
        try:
            found = await self.store.exists(record_id)
        except SyncError as exc:
            logger.warning("Existence probe failed", extra=ctx(record_id=record_id, error=exc.message))
            return None
        logger.info("Existence probe", extra=ctx(record_id=record_id, found=found))
        return found

    def _content_for(self, record: Record) -> NormalizedContent:
        content = build_content(record, self.settings.content_fields)
        if not content.text:
            logger.warning("Record produced empty content", extra=ctx(tenant_id=record.tenant_id, record_id=record.id))
        return content

    def build_vector(
        self,
        tenant_id: str,
        record: Record,
        content: NormalizedContent,
        embedding: list[float],
    ) -> VectorRecord:
        return VectorRecord(
            id=record.id,
            tenant_id=tenant_id,
            record_id=record.id,
            content=content.text,
            embedding=embedding,
            metadata=VectorMetadata(
                last_update=utc_now().isoformat(),
                content_version=CONTENT_VERSION,
                processed_fields=content.processed_fields,
                dimensions=len(embedding),
                model=self.embedder.model,
                content_hash=sha256_text(content.text),
            ),
        )

    def _record_failure(
        self,
        tenant_id: str,
        record_id: str,
        stage: ProcessingStage,
        kind: str,
        error: str,
        path: str,
    ) -> RecordFailure:
        self.statuses.record_failure(tenant_id, error)
        RECORDS_FAILED.labels(path=path, kind=kind).inc()
        logger.error(
            "Record processing failed",
            extra=ctx(tenant_id=tenant_id, record_id=record_id, stage=stage.value, kind=kind, error=error),
        )
        return RecordFailure(record_id=record_id, stage=stage, kind=kind, error=error)


__all__ = ["SyncOrchestrator"]
