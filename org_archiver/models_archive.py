"""Archive table: one row per uploaded day or month artifact for an org and record type."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from org_archiver.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Archive(Base):
    """
    Metadata for one archive artifact.

    rollup_id is set on day archives once a month archive supersedes them; is_purged once
    the source records for the period have been deleted.
    """

    __tablename__ = "archives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False)
    archive_type: Mapped[str] = mapped_column(String(16), nullable=False)  # message, run
    period: Mapped[str] = mapped_column(String(8), nullable=False)  # day, month
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    hash: Mapped[str] = mapped_column(String(32), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    build_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # ms
    needs_deletion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_purged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollup_id: Mapped[int | None] = mapped_column(ForeignKey("archives.id"), nullable=True)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)

    __table_args__ = (
        UniqueConstraint("org_id", "archive_type", "period", "start_date", name="uq_archives_period"),
        Index("ix_archives_org_type_start", "org_id", "archive_type", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<Archive id={self.id} org={self.org_id} {self.archive_type}/{self.period} {self.start_date}>"
