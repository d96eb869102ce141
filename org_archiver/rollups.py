"""
Rollup coordination: archive metadata persistence and the day -> month rollup links.

Every write is a single transaction. Transitions are guarded against the archive's state
(scheduled -> built -> persisted -> rolled_up -> purged) and raise ConsistencyViolation when a
guard fails:

- persist: day archives only, and they must be built; re-persisting an existing day is a no-op.
- consolidate: the only way a month is written. Its days must cover the month from its first
  eligible day to its last; the month row and every rollup_id are committed together or not at all.
- mark_purged: a day must already be rolled up; a month must already be uploaded.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from org_archiver.errors import ConsistencyViolation, StoreUnavailable
from org_archiver.models_archive import Archive
from org_archiver.periods import ONE_DAY, as_utc, truncate_day, truncate_month
from org_archiver.tasks import ArchiveState, ArchiveTask, ArchiveType, Period

logger = logging.getLogger(__name__)


def task_from_row(row: Archive) -> ArchiveTask:
    """Detached domain copy of an archives row."""
    return ArchiveTask(
        id=row.id,
        org_id=row.org_id,
        archive_type=ArchiveType(row.archive_type),
        period=Period(row.period),
        start_date=as_utc(row.start_date),
        record_count=row.record_count,
        size=row.size,
        hash=row.hash,
        url=row.url,
        build_time=row.build_time,
        needs_deletion=row.needs_deletion,
        is_purged=row.is_purged,
        rollup_id=row.rollup_id,
        created_on=as_utc(row.created_on) if row.created_on else None,
    )


class RollupCoordinator:
    """
    Reads and writes the archives table.

    session_factory must not expire objects on commit (see org_archiver.db.make_session_factory);
    rows are copied into ArchiveTasks after their session is closed.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ---- queries ----

    def current_archives(self, org_id: int, archive_type: ArchiveType) -> list[ArchiveTask]:
        """Every persisted archive for org and type, any period or purge state, ordered by start."""
        stmt = (
            select(Archive)
            .where(Archive.org_id == org_id, Archive.archive_type == ArchiveType(archive_type).value)
            .order_by(Archive.start_date, Archive.period, Archive.id)
        )
        try:
            with self._session_factory() as session:
                return [task_from_row(row) for row in session.scalars(stmt)]
        except DBAPIError as e:
            raise StoreUnavailable(f"error loading archives for org {org_id}: {e}") from e

    def get(self, archive_id: int) -> ArchiveTask | None:
        """Look up one archive by id (e.g. to resolve a day's rollup_id)."""
        with self._session_factory() as session:
            row = session.get(Archive, archive_id)
            return task_from_row(row) if row is not None else None

    # ---- writes ----

    def _find(self, session: Session, task: ArchiveTask) -> Archive | None:
        return session.scalars(
            select(Archive).where(
                Archive.org_id == task.org_id,
                Archive.archive_type == task.archive_type.value,
                Archive.period == task.period.value,
                Archive.start_date == task.start_date,
            )
        ).first()

    def _check_persistable(self, task: ArchiveTask) -> None:
        if task.state < ArchiveState.BUILT:
            raise ConsistencyViolation(f"cannot persist {task!r}: artifact has not been built")
        truncate = truncate_day if task.period == Period.DAY else truncate_month
        if truncate(task.start_date) != task.start_date:
            raise ConsistencyViolation(f"cannot persist {task!r}: start is not aligned to a {task.period.value}")

    def _insert(self, session: Session, task: ArchiveTask) -> Archive:
        """Insert task's row (or return the existing row for the same period) and flush for an id."""
        existing = self._find(session, task)
        if existing is not None:
            if existing.hash != task.hash:
                logger.warning(
                    "archive already persisted with a different hash, keeping existing",
                    extra={**task.describe(), "existing_id": existing.id, "existing_hash": existing.hash},
                )
            return existing
        row = Archive(
            org_id=task.org_id,
            archive_type=task.archive_type.value,
            period=task.period.value,
            start_date=task.start_date,
            record_count=task.record_count,
            size=task.size,
            hash=task.hash,
            url=task.url,
            build_time=task.build_time,
            needs_deletion=task.needs_deletion,
            is_purged=False,
        )
        session.add(row)
        session.flush()
        return row

    def _adopt(self, task: ArchiveTask, row: Archive) -> None:
        task.id = row.id
        task.created_on = as_utc(row.created_on) if row.created_on else None
        task.is_purged = row.is_purged

    def persist(self, task: ArchiveTask) -> int:
        """
        Insert a day archive's metadata and return its id.

        If an archive for the same org, type and day already exists nothing is written and the
        existing id is returned. Month archives are only written by consolidate().
        """
        self._check_persistable(task)
        if task.period != Period.DAY:
            raise ConsistencyViolation(f"cannot persist {task!r}: month archives are written by consolidate")
        session = self._session_factory()
        try:
            row = self._insert(session, task)
            session.commit()
        except IntegrityError:
            # a concurrent run committed the same period first
            session.rollback()
            row = self._find(session, task)
            if row is None:
                raise
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"error persisting {task!r}: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._adopt(task, row)
        logger.debug("persisted archive", extra=task.describe())
        return row.id

    def _check_dailies(
        self, month: ArchiveTask, dailies: Sequence[ArchiveTask], first_day: datetime
    ) -> list[ArchiveTask]:
        if month.period != Period.MONTH:
            raise ConsistencyViolation(f"cannot consolidate into {month!r}: not a month archive")
        if not dailies:
            raise ConsistencyViolation(f"cannot consolidate {month!r}: no day archives given")

        days = sorted(dailies, key=lambda d: d.start_date)
        for day in days:
            if day.period != Period.DAY or day.id is None:
                raise ConsistencyViolation(f"cannot consolidate {month!r}: {day!r} is not a persisted day archive")
            if day.org_id != month.org_id or day.archive_type != month.archive_type or not month.contains(day):
                raise ConsistencyViolation(f"cannot consolidate {month!r}: {day!r} lies outside the month")

        if days[0].start_date != first_day:
            raise ConsistencyViolation(
                f"cannot consolidate {month!r}: days must start on {first_day.date()}, "
                f"first given is {days[0].start_date.date()}"
            )
        for prev, cur in zip(days, days[1:]):
            if cur.start_date != prev.start_date + ONE_DAY:
                raise ConsistencyViolation(
                    f"cannot consolidate {month!r}: days missing between {prev.start_date.date()} "
                    f"and {cur.start_date.date()}"
                )
        if days[-1].end_date != month.end_date:
            raise ConsistencyViolation(
                f"cannot consolidate {month!r}: days after {days[-1].start_date.date()} are not archived"
            )
        return days

    def _link_dailies(self, session: Session, month_id: int, day_ids: list[int]) -> None:
        session.execute(
            update(Archive)
            .where(Archive.id.in_(day_ids), Archive.rollup_id.is_(None))
            .values(rollup_id=month_id)
            .execution_options(synchronize_session=False)
        )

    def consolidate(
        self, month: ArchiveTask, dailies: Sequence[ArchiveTask], earliest: datetime | None = None
    ) -> int:
        """
        Persist month and point every day in dailies at it, in one transaction.

        The days must be persisted, contiguous and cover the month from its first eligible day,
        the later of the 1st and the day containing earliest (the org's first archivable
        moment), to its last day. Every day archive stored for that range must be among them and
        none may already be rolled up into a different month.
        """
        self._check_persistable(month)
        first_day = month.start_date if earliest is None else max(month.start_date, truncate_day(earliest))
        days = self._check_dailies(month, dailies, first_day)
        day_ids = [d.id for d in days]

        session = self._session_factory()
        try:
            rows = session.scalars(
                select(Archive).where(
                    Archive.org_id == month.org_id,
                    Archive.archive_type == month.archive_type.value,
                    Archive.period == Period.DAY.value,
                    Archive.start_date >= first_day,
                    Archive.start_date < month.end_date,
                )
            ).all()
            stored_ids = {r.id for r in rows}
            missing = sorted(set(day_ids) - stored_ids)
            if missing:
                raise ConsistencyViolation(f"cannot consolidate {month!r}: day archives {missing} are not persisted")
            left_out = sorted(stored_ids - set(day_ids))
            if left_out:
                raise ConsistencyViolation(f"cannot consolidate {month!r}: day archives {left_out} were not given")

            month_row = self._insert(session, month)
            linked_elsewhere = [r.id for r in rows if r.rollup_id not in (None, month_row.id)]
            if linked_elsewhere:
                raise ConsistencyViolation(
                    f"cannot consolidate {month!r}: days {linked_elsewhere} already rolled up into another month"
                )

            self._link_dailies(session, month_row.id, day_ids)
            session.commit()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"error consolidating {month!r}: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._adopt(month, month_row)
        month.dailies = days
        for day in days:
            day.rollup_id = month_row.id

        logger.info("consolidated day archives into month", extra={**month.describe(), "dailies": len(days)})
        return month_row.id

    def mark_purged(self, task: ArchiveTask) -> None:
        """Record that task's source records have been deleted."""
        if task.id is None:
            raise ConsistencyViolation(f"cannot mark {task!r} purged: not persisted")

        try:
            with self._session_factory.begin() as session:
                row = session.get(Archive, task.id)
                if row is None:
                    raise ConsistencyViolation(f"cannot mark {task!r} purged: no archive with id {task.id}")
                if row.period == Period.DAY.value and row.rollup_id is None:
                    raise ConsistencyViolation(f"cannot mark {task!r} purged: day is not rolled up into a month")
                if row.period == Period.MONTH.value and not row.url:
                    raise ConsistencyViolation(f"cannot mark {task!r} purged: month has not been uploaded")
                row.is_purged = True
                rollup_id = row.rollup_id
        except DBAPIError as e:
            raise StoreUnavailable(f"error marking {task!r} purged: {e}") from e

        task.is_purged = True
        task.rollup_id = rollup_id
