"""
Org orchestration: drive schedule -> build -> upload -> persist -> consolidate -> purge.

For each org and record type, strictly oldest first:

1. fetch current archives, compute missing days, then build, upload and persist each day;
   the first failure stops the org/type run (later periods depend on an unbroken timeline)
   while days already persisted stay committed;
2. refetch, compute due months, build and upload each month, verify the upload and
   consolidate it with its days;
3. if deletion is enabled and the org asked for it, delete the source records of every
   uploaded, unpurged month and mark its days and then the month purged. Purge failures never
   undo an archive; the month stays unpurged and is picked up again by the next run.

Orgs run in parallel on a thread pool; one org's failure never stops another.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from org_archiver.builder import build_archive, delete_archive_file, ensure_temp_directory
from org_archiver.cancellation import CancellationToken
from org_archiver.config import ArchiverConfig
from org_archiver.errors import (
    ArchiverError,
    BuildCancelled,
    ConsistencyViolation,
    PurgeError,
    TransientIOError,
    UploadError,
)
from org_archiver.long_term_storage import ARCHIVE_CONTENT_TYPE, LongTermStorageBackend
from org_archiver.record_store import RecordStore, TenantDirectory
from org_archiver.rollups import RollupCoordinator
from org_archiver.scheduler import dailies_for_month, missing_day_archives, missing_month_archives
from org_archiver.tasks import ArchiveTask, ArchiveType, Period, Tenant, archive_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RunSummary:
    """Outcome of archiving one record type for one org."""

    org_id: int
    archive_type: ArchiveType
    created: list[ArchiveTask] = field(default_factory=list)
    purged: list[ArchiveTask] = field(default_factory=list)
    purge_failures: int = 0
    failed_start: datetime | None = None
    failed_period: Period | None = None
    error: str | None = None

    @property
    def succeeded(self) -> int:
        return len(self.created)

    @property
    def ok(self) -> bool:
        return self.error is None

    def fail(self, error: BaseException, task: ArchiveTask | None = None) -> None:
        """Record the first failure of the run; later calls are ignored."""
        if self.error is not None:
            return
        self.error = f"{type(error).__name__}: {error}"
        if task is not None:
            self.failed_start = task.start_date
            self.failed_period = task.period


class ArchiveOrchestrator:
    """
    Archives every active org through the given collaborators.

    Args:
        config: Process settings (retention, retries, temp dir, deletion switch).
        tenants: Source of active orgs.
        records: Live record store to stream from and purge.
        storage: Object storage artifacts are uploaded to.
        coordinator: Archive metadata store.
    """

    def __init__(
        self,
        config: ArchiverConfig,
        tenants: TenantDirectory,
        records: RecordStore,
        storage: LongTermStorageBackend,
        coordinator: RollupCoordinator,
    ) -> None:
        self.config = config
        self.tenants = tenants
        self.records = records
        self.storage = storage
        self.coordinator = coordinator

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_random_exponential(
                multiplier=self.config.retry_backoff_seconds, max=self.config.retry_backoff_max_seconds
            ),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _attempt(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Call fn, retrying TransientIOError with backoff up to config.max_attempts times."""
        return self._retrying()(fn, *args, **kwargs)

    # ---- single task steps ----

    def _build(self, task: ArchiveTask, tenant: Tenant, cancel_token: CancellationToken | None) -> None:
        self._attempt(build_archive, task, self.records, tenant, self.config.temp_dir, cancel_token)

    def _upload(self, task: ArchiveTask) -> None:
        key = archive_key(task)
        if self.storage.object_exists(key):
            logger.info("overwriting existing archive object", extra={**task.describe(), "key": key})
        with open(task.build_path, "rb") as f:
            body = f.read()
        task.url = self.storage.put_object(key, body, content_type=ARCHIVE_CONTENT_TYPE)
        if not self.storage.object_exists(key):
            raise UploadError(f"uploaded {key} but it is not present in storage")

    def _create_day(self, task: ArchiveTask, tenant: Tenant, cancel_token: CancellationToken | None) -> None:
        try:
            self._build(task, tenant, cancel_token)
            self._attempt(self._upload, task)
            self._attempt(self.coordinator.persist, task)
        finally:
            delete_archive_file(task)

    def _create_month(
        self,
        task: ArchiveTask,
        dailies: list[ArchiveTask],
        tenant: Tenant,
        cancel_token: CancellationToken | None,
    ) -> None:
        try:
            self._build(task, tenant, cancel_token)
            self._attempt(self._upload, task)
            self._attempt(self.coordinator.consolidate, task, dailies, earliest=tenant.earliest)
        finally:
            delete_archive_file(task)

    # ---- purge ----

    def _purge_month(self, month: ArchiveTask, days: list[ArchiveTask], summary: RunSummary) -> None:
        """Delete month's records, then mark its days and finally the month itself purged."""
        deleted = 0
        try:
            if not month.is_purged:
                deleted = self._attempt(
                    self.records.delete_records, month.org_id, month.archive_type, month.start_date, month.end_date
                )
            # month last: an unpurged month may still have unpurged days
            for day in days:
                self._attempt(self.coordinator.mark_purged, day)
                summary.purged.append(day)
            if not month.is_purged:
                self._attempt(self.coordinator.mark_purged, month)
                summary.purged.append(month)
        except TransientIOError as e:
            raise PurgeError(f"error purging records for {month!r}: {e}", archive_id=month.id) from e

        logger.info("purged archived records", extra={**month.describe(), "deleted": deleted, "days": len(days)})

    def _purge(self, tenant: Tenant, archive_type: ArchiveType, summary: RunSummary) -> None:
        if not (self.config.delete_records and tenant.needs_deletion):
            return
        existing = self._attempt(self.coordinator.current_archives, tenant.id, archive_type)
        for month in existing:
            if month.period != Period.MONTH or not month.needs_deletion or not month.url:
                continue
            days = [d for d in existing if d.period == Period.DAY and d.rollup_id == month.id and not d.is_purged]
            if month.is_purged and not days:
                continue
            try:
                self._purge_month(month, days, summary)
            except PurgeError as e:
                summary.purge_failures += 1
                logger.warning(
                    "unable to purge archived records, will retry next run",
                    extra={**month.describe(), "error": str(e)},
                )
            except ConsistencyViolation as e:
                logger.error("archive consistency violation while purging", extra={**month.describe(), "error": str(e)})
                summary.fail(e, month)
                return

    # ---- org runs ----

    def archive_tenant(
        self,
        tenant: Tenant,
        archive_type: ArchiveType,
        now: datetime,
        cancel_token: CancellationToken | None = None,
    ) -> RunSummary:
        """Create every missing day and month archive for tenant and type, then purge if requested."""
        archive_type = ArchiveType(archive_type)
        summary = RunSummary(org_id=tenant.id, archive_type=archive_type)
        retention = self.config.retention_days

        existing = self._attempt(self.coordinator.current_archives, tenant.id, archive_type)
        days = missing_day_archives(existing, now, tenant, archive_type, retention)
        for task in days:
            if not self._run_task(summary, task, cancel_token, self._create_day, task, tenant, cancel_token):
                return summary

        existing = self._attempt(self.coordinator.current_archives, tenant.id, archive_type)
        months = missing_month_archives(existing, now, tenant, archive_type, retention)
        for task in months:
            dailies = dailies_for_month(existing, task)
            if not self._run_task(summary, task, cancel_token, self._create_month, task, dailies, tenant, cancel_token):
                return summary

        self._purge(tenant, archive_type, summary)

        if summary.created:
            logger.info(
                "archived org",
                extra={"org_id": tenant.id, "archive_type": archive_type.value, "archives_created": summary.succeeded},
            )
        return summary

    def _run_task(
        self,
        summary: RunSummary,
        task: ArchiveTask,
        cancel_token: CancellationToken | None,
        create: Callable[..., None],
        *args,
    ) -> bool:
        """Call create(*args) for task; on failure record it in summary and return False."""
        try:
            if cancel_token is not None and cancel_token.is_cancelled():
                raise BuildCancelled("archive run cancelled")
            create(*args)
        except ConsistencyViolation as e:
            logger.error("archive consistency violation", extra={**task.describe(), "error": str(e)})
            summary.fail(e, task)
            return False
        except ArchiverError as e:
            logger.warning("error creating archive, stopping org run", extra={**task.describe(), "error": str(e)})
            summary.fail(e, task)
            return False

        summary.created.append(task)
        logger.info(
            "created archive",
            extra={**task.describe(), "record_count": task.record_count, "size": task.size, "hash": task.hash},
        )
        return True

    def archive_org(
        self, tenant: Tenant, now: datetime, cancel_token: CancellationToken | None = None
    ) -> list[RunSummary]:
        """Archive messages then runs for tenant; unexpected errors are contained to this org."""
        summaries = []
        for archive_type in (ArchiveType.MESSAGE, ArchiveType.RUN):
            try:
                summaries.append(self.archive_tenant(tenant, archive_type, now, cancel_token))
            except Exception as e:
                logger.exception(
                    "error archiving org", extra={"org_id": tenant.id, "archive_type": archive_type.value}
                )
                summary = RunSummary(org_id=tenant.id, archive_type=archive_type)
                summary.fail(e)
                summaries.append(summary)
        return summaries

    def run(self, now: datetime | None = None, cancel_token: CancellationToken | None = None) -> list[RunSummary]:
        """Archive every active org, config.workers orgs at a time; summaries ordered by org then type."""
        now = now or datetime.now(timezone.utc)
        ensure_temp_directory(self.config.temp_dir)
        tenants = self._attempt(self.tenants.list_active_tenants)
        logger.info("starting archive run", extra={"orgs": len(tenants), "now": now.isoformat()})

        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="archiver") as pool:
            futures = [pool.submit(self.archive_org, tenant, now, cancel_token) for tenant in tenants]
            summaries = [summary for future in futures for summary in future.result()]

        failed = [s for s in summaries if not s.ok]
        logger.info(
            "finished archive run",
            extra={
                "orgs": len(tenants),
                "archives_created": sum(s.succeeded for s in summaries),
                "purged": sum(len(s.purged) for s in summaries),
                "failed": len(failed),
            },
        )
        return summaries
