"""
Gap scheduling: which day and month archives an org still owes for one record type.

Days run from the day containing tenant.earliest through the day containing the retention
cutoff (now - retention_days). Months run from the month containing tenant.earliest up to,
not including, the month containing the cutoff, and a month only becomes due once every
eligible day in it is covered by a day archive.

A day archive covers its day whatever its rollup or purge state, so rolled-up and purged
days are never rescheduled.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from org_archiver.periods import ONE_DAY, days_between, next_month, truncate_day, truncate_month
from org_archiver.tasks import ArchiveTask, ArchiveType, Period, Tenant

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


def retention_cutoff(now: datetime, retention_days: int = DEFAULT_RETENTION_DAYS) -> datetime:
    """Records older than this are archivable."""
    return now - timedelta(days=retention_days)


def _covered(existing: Iterable[ArchiveTask], period: Period) -> set[datetime]:
    return {a.start_date for a in existing if a.period == period}


def _new_task(tenant: Tenant, archive_type: ArchiveType, period: Period, start: datetime) -> ArchiveTask:
    return ArchiveTask(
        org_id=tenant.id,
        archive_type=archive_type,
        period=period,
        start_date=start,
        needs_deletion=tenant.needs_deletion,
    )


def missing_day_archives(
    existing: Iterable[ArchiveTask],
    now: datetime,
    tenant: Tenant,
    archive_type: ArchiveType,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> list[ArchiveTask]:
    """Day archives not yet built for tenant, oldest first."""
    covered = _covered(existing, Period.DAY)
    first = truncate_day(tenant.earliest)
    last = truncate_day(retention_cutoff(now, retention_days))

    tasks = [
        _new_task(tenant, archive_type, Period.DAY, day)
        for day in days_between(first, last + ONE_DAY)
        if day not in covered
    ]
    logger.debug(
        "computed missing day archives",
        extra={"org_id": tenant.id, "archive_type": archive_type.value, "count": len(tasks)},
    )
    return tasks


def missing_month_archives(
    existing: Iterable[ArchiveTask],
    now: datetime,
    tenant: Tenant,
    archive_type: ArchiveType,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> list[ArchiveTask]:
    """
    Month archives due for tenant, oldest first.

    A month is due when it has no month archive yet and every day from max(month start,
    earliest day) to the end of the month already has a day archive in existing.
    """
    existing = list(existing)
    covered_months = _covered(existing, Period.MONTH)
    covered_days = _covered(existing, Period.DAY)
    earliest_day = truncate_day(tenant.earliest)
    end = truncate_month(retention_cutoff(now, retention_days))

    tasks = []
    month = truncate_month(tenant.earliest)
    while month < end:
        following = next_month(month)
        if month not in covered_months:
            days = days_between(max(month, earliest_day), following)
            if all(day in covered_days for day in days):
                tasks.append(_new_task(tenant, archive_type, Period.MONTH, month))
        month = following

    logger.debug(
        "computed missing month archives",
        extra={"org_id": tenant.id, "archive_type": archive_type.value, "count": len(tasks)},
    )
    return tasks


def dailies_for_month(existing: Iterable[ArchiveTask], month: ArchiveTask) -> list[ArchiveTask]:
    """Persisted day archives inside month's period, oldest first."""
    return sorted(
        (a for a in existing if a.period == Period.DAY and a.id is not None and month.contains(a)),
        key=lambda a: a.start_date,
    )
