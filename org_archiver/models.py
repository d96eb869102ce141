"""
SQLAlchemy models for the live record store the archiver reads from.

- orgs: tenants; archive_from overrides created_on as the first archivable moment.
- contacts, channels, flows: referenced by messages and runs (uuid + name in archives).
- msgs: archived by created_on.
- flow_runs: archived by modified_on.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from org_archiver.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class Org(Base):
    """Tenant whose messages and runs are archived."""

    __tablename__ = "orgs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_anon: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retain_after_archive: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    archive_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Org id={self.id} name={self.name!r}>"


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)


class Channel(Base):
    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    name: Mapped[str | None] = mapped_column(String(64), nullable=True)


class Flow(Base):
    __tablename__ = "flows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)


class Msg(Base):
    """Incoming or outgoing message; direction is 'in' or 'out'."""

    __tablename__ = "msgs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    contact_id: Mapped[int] = mapped_column(ForeignKey("contacts.id"), nullable=False)
    channel_id: Mapped[int | None] = mapped_column(ForeignKey("channels.id"), nullable=True)
    urn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="handled")
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    sent_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    contact = relationship("Contact")
    channel = relationship("Channel")

    __table_args__ = (Index("ix_msgs_org_created_on", "org_id", "created_on"),)

    def __repr__(self) -> str:
        return f"<Msg id={self.id} direction={self.direction}>"


class FlowRun(Base):
    """One contact's run through a flow; path and results are stored as JSON."""

    __tablename__ = "flow_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    flow_id: Mapped[int] = mapped_column(ForeignKey("flows.id"), nullable=False)
    contact_id: Mapped[int] = mapped_column(ForeignKey("contacts.id"), nullable=False)
    responded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    path: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    results: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    modified_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    exited_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exit_type: Mapped[str | None] = mapped_column(String(16), nullable=True)

    flow = relationship("Flow")
    contact = relationship("Contact")

    __table_args__ = (Index("ix_flow_runs_org_modified_on", "org_id", "modified_on"),)

    def __repr__(self) -> str:
        return f"<FlowRun id={self.id} exit_type={self.exit_type}>"
