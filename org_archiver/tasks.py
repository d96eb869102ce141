"""
Domain objects shared by the scheduler, builder, coordinator and orchestrator.

- ArchiveType / Period: record type (message, run) and granularity (day, month).
- Tenant: one org as returned by the tenant directory.
- ArchiveTask: one archive as it moves scheduled -> built -> persisted -> rolled_up -> purged.
- archive_key: deterministic object storage key so re-runs overwrite rather than duplicate.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from org_archiver.periods import ONE_DAY, as_utc, next_month


class ArchiveType(str, enum.Enum):
    MESSAGE = "message"
    RUN = "run"


class Period(str, enum.Enum):
    DAY = "day"
    MONTH = "month"


class ArchiveState(enum.IntEnum):
    """Lifecycle of one archive; later states imply the earlier ones."""

    SCHEDULED = 1
    BUILT = 2
    PERSISTED = 3
    ROLLED_UP = 4
    PURGED = 5


@dataclass(frozen=True)
class Tenant:
    """
    An org whose records are archived independently of every other org.

    earliest is when the org became eligible for archiving (the first period scheduled
    is the one containing it). retain_after_archive=False means source records are
    deleted once their month archive is durable.
    """

    id: int
    earliest: datetime
    name: str = ""
    anonymize: bool = False
    retain_after_archive: bool = True

    @property
    def needs_deletion(self) -> bool:
        return not self.retain_after_archive


@dataclass
class ArchiveTask:
    """One archive artifact covering [start_date, end_date) for one org and record type."""

    org_id: int
    archive_type: ArchiveType
    period: Period
    start_date: datetime
    record_count: int = 0
    size: int = 0
    hash: str = ""
    url: str = ""
    build_path: str = ""
    build_time: int = 0
    needs_deletion: bool = False
    is_purged: bool = False
    rollup_id: int | None = None
    id: int | None = None
    created_on: datetime | None = None
    dailies: list[ArchiveTask] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self.archive_type = ArchiveType(self.archive_type)
        self.period = Period(self.period)
        self.start_date = as_utc(self.start_date)

    @property
    def end_date(self) -> datetime:
        """Exclusive end of the period: start + 1 day, or start + 1 calendar month."""
        if self.period == Period.DAY:
            return self.start_date + ONE_DAY
        return next_month(self.start_date)

    @property
    def state(self) -> ArchiveState:
        if self.is_purged:
            return ArchiveState.PURGED
        if self.rollup_id is not None:
            return ArchiveState.ROLLED_UP
        if self.id is not None:
            return ArchiveState.PERSISTED
        if self.hash:
            return ArchiveState.BUILT
        return ArchiveState.SCHEDULED

    def contains(self, other: ArchiveTask) -> bool:
        """True if other's period lies within this archive's period."""
        return self.start_date <= other.start_date and other.end_date <= self.end_date

    def describe(self) -> dict:
        """Period context for log records and error messages."""
        return {
            "org_id": self.org_id,
            "archive_type": self.archive_type.value,
            "period": self.period.value,
            "start_date": self.start_date.date().isoformat(),
            "archive_id": self.id,
        }

    def __repr__(self) -> str:
        return (
            f"<ArchiveTask org={self.org_id} type={self.archive_type.value} "
            f"period={self.period.value} start={self.start_date.date()} id={self.id}>"
        )


def archive_key(task: ArchiveTask) -> str:
    """Return object storage key for an archive (e.g. 3/message/day/2017/08/10.jsonl.gz)."""
    start = task.start_date
    return (
        f"{task.org_id}/{task.archive_type.value}/{task.period.value}/"
        f"{start.year:04d}/{start.month:02d}/{start.day:02d}.jsonl.gz"
    )
