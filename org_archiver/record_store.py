"""
Collaborators the archiver reads tenants and records from.

- TenantDirectory: list_active_tenants().
- RecordStore: stream_records() for one org/type/[start, end), delete_records() once archived.
- SqlTenantDirectory / SqlRecordStore: the live orgs, msgs and flow_runs tables.
- InMemoryTenantDirectory / InMemoryRecordStore: tests and local dev.

Records are plain dicts keyed by column label; org_archiver.builder decides which fields are
archived. Messages are selected by created_on, runs by modified_on.
"""

from __future__ import annotations

from contextlib import nullcontext
from datetime import datetime
from typing import Any, ContextManager, Iterable, Iterator, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from org_archiver.cancellation import CancellationToken
from org_archiver.errors import BuildCancelled, StoreUnavailable
from org_archiver.models import Channel, Contact, Flow, FlowRun, Msg, Org
from org_archiver.periods import as_utc
from org_archiver.tasks import ArchiveType, Tenant

# column each record type is archived by
TIMESTAMP_FIELDS = {ArchiveType.MESSAGE: "created_on", ArchiveType.RUN: "modified_on"}


class TenantDirectory(Protocol):
    def list_active_tenants(self) -> list[Tenant]:
        """Active orgs ordered by id."""
        ...


class RecordStore(Protocol):
    def stream_records(
        self,
        org_id: int,
        archive_type: ArchiveType,
        start: datetime,
        end: datetime,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[dict[str, Any]]:
        """
        Lazily yield every record in [start, end), oldest first.

        Raises StoreUnavailable, or BuildCancelled once cancel_token is cancelled (including
        while the query is still running).
        """
        ...

    def delete_records(self, org_id: int, archive_type: ArchiveType, start: datetime, end: datetime) -> int:
        """Delete every record in [start, end); return how many. Raises StoreUnavailable."""
        ...


class SqlTenantDirectory:
    """Reads active orgs; archive_from, when set, overrides created_on as the earliest archivable time."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def list_active_tenants(self) -> list[Tenant]:
        stmt = select(Org).where(Org.is_active.is_(True)).order_by(Org.id)
        try:
            with self._session_factory() as session:
                orgs = session.scalars(stmt).all()
        except DBAPIError as e:
            raise StoreUnavailable(f"error listing active orgs: {e}") from e
        return [
            Tenant(
                id=org.id,
                name=org.name,
                earliest=as_utc(org.archive_from or org.created_on),
                anonymize=org.is_anon,
                retain_after_archive=org.retain_after_archive,
            )
            for org in orgs
        ]


class SqlRecordStore:
    """Streams messages and runs from the live tables in batches of yield_per rows."""

    def __init__(self, session_factory: sessionmaker[Session], yield_per: int = 1000) -> None:
        self._session_factory = session_factory
        self.yield_per = yield_per

    def _message_query(self, org_id: int, start: datetime, end: datetime):
        return (
            select(
                Msg.id,
                Contact.uuid.label("contact_uuid"),
                Contact.name.label("contact_name"),
                Msg.urn,
                Channel.uuid.label("channel_uuid"),
                Channel.name.label("channel_name"),
                Msg.direction,
                Msg.status,
                Msg.text,
                Msg.attachments,
                Msg.created_on,
                Msg.sent_on,
            )
            .join(Contact, Msg.contact_id == Contact.id)
            .outerjoin(Channel, Msg.channel_id == Channel.id)
            .where(Msg.org_id == org_id, Msg.created_on >= start, Msg.created_on < end)
            .order_by(Msg.created_on, Msg.id)
        )

    def _run_query(self, org_id: int, start: datetime, end: datetime):
        return (
            select(
                FlowRun.id,
                FlowRun.uuid,
                Flow.uuid.label("flow_uuid"),
                Flow.name.label("flow_name"),
                Contact.uuid.label("contact_uuid"),
                Contact.name.label("contact_name"),
                FlowRun.responded,
                FlowRun.path,
                FlowRun.results,
                FlowRun.created_on,
                FlowRun.modified_on,
                FlowRun.exited_on,
                FlowRun.exit_type,
            )
            .join(Flow, FlowRun.flow_id == Flow.id)
            .join(Contact, FlowRun.contact_id == Contact.id)
            .where(FlowRun.org_id == org_id, FlowRun.modified_on >= start, FlowRun.modified_on < end)
            .order_by(FlowRun.modified_on, FlowRun.id)
        )

    def stream_records(
        self,
        org_id: int,
        archive_type: ArchiveType,
        start: datetime,
        end: datetime,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[dict[str, Any]]:
        if ArchiveType(archive_type) == ArchiveType.MESSAGE:
            stmt = self._message_query(org_id, start, end)
        else:
            stmt = self._run_query(org_id, start, end)
        stmt = stmt.execution_options(yield_per=self.yield_per)
        _check_cancelled(cancel_token, org_id)
        try:
            # closing this generator early closes the session and its server-side cursor
            with self._session_factory() as session:
                with _abort_on_cancel(cancel_token, session):
                    for row in session.execute(stmt).mappings():
                        _check_cancelled(cancel_token, org_id)
                        yield dict(row)
        except DBAPIError as e:
            if cancel_token is not None and cancel_token.is_cancelled():
                raise BuildCancelled(f"query for {archive_type} records of org {org_id} cancelled") from e
            raise StoreUnavailable(f"error streaming {archive_type} records for org {org_id}: {e}") from e

    def delete_records(self, org_id: int, archive_type: ArchiveType, start: datetime, end: datetime) -> int:
        if ArchiveType(archive_type) == ArchiveType.MESSAGE:
            stmt = delete(Msg).where(Msg.org_id == org_id, Msg.created_on >= start, Msg.created_on < end)
        else:
            stmt = delete(FlowRun).where(
                FlowRun.org_id == org_id, FlowRun.modified_on >= start, FlowRun.modified_on < end
            )
        try:
            with self._session_factory.begin() as session:
                result = session.execute(stmt.execution_options(synchronize_session=False))
                return result.rowcount
        except DBAPIError as e:
            raise StoreUnavailable(f"error deleting {archive_type} records for org {org_id}: {e}") from e


def _check_cancelled(cancel_token: CancellationToken | None, org_id: int) -> None:
    if cancel_token is not None and cancel_token.is_cancelled():
        raise BuildCancelled(f"record stream for org {org_id} cancelled")


def _abort_on_cancel(cancel_token: CancellationToken | None, session: Session) -> ContextManager[None]:
    """Abort the statement running on session's connection when cancel_token is cancelled."""
    if cancel_token is None:
        return nullcontext()
    dbapi_connection = session.connection().connection.dbapi_connection
    # psycopg2 cancels the statement server side, sqlite3 interrupts its VM
    abort = getattr(dbapi_connection, "cancel", None) or getattr(dbapi_connection, "interrupt", None)
    if abort is None:
        return nullcontext()
    return cancel_token.on_cancel(abort)


class InMemoryTenantDirectory:
    def __init__(self, tenants: Iterable[Tenant] = ()) -> None:
        self._tenants = list(tenants)

    def add(self, tenant: Tenant) -> None:
        self._tenants.append(tenant)

    def list_active_tenants(self) -> list[Tenant]:
        return sorted(self._tenants, key=lambda t: t.id)


class InMemoryRecordStore:
    """
    In-memory record store for tests and local dev.

    Records need an id and the timestamp field for their type (created_on for messages,
    modified_on for runs). fail_streams / fail_deletes make the next N calls raise StoreUnavailable.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[int, ArchiveType], list[dict[str, Any]]] = {}
        self.fail_streams = 0
        self.fail_deletes = 0

    def add(self, org_id: int, archive_type: ArchiveType, record: dict[str, Any]) -> None:
        self._records.setdefault((org_id, ArchiveType(archive_type)), []).append(record)

    def _matching(self, org_id: int, archive_type: ArchiveType, start: datetime, end: datetime) -> list[dict]:
        archive_type = ArchiveType(archive_type)
        field = TIMESTAMP_FIELDS[archive_type]
        records = [
            r for r in self._records.get((org_id, archive_type), []) if start <= as_utc(r[field]) < end
        ]
        return sorted(records, key=lambda r: (as_utc(r[field]), r["id"]))

    def stream_records(
        self,
        org_id: int,
        archive_type: ArchiveType,
        start: datetime,
        end: datetime,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[dict[str, Any]]:
        _check_cancelled(cancel_token, org_id)
        if self.fail_streams > 0:
            self.fail_streams -= 1
            raise StoreUnavailable(f"simulated connection loss streaming org {org_id}")
        for record in self._matching(org_id, archive_type, start, end):
            _check_cancelled(cancel_token, org_id)
            yield dict(record)

    def delete_records(self, org_id: int, archive_type: ArchiveType, start: datetime, end: datetime) -> int:
        if self.fail_deletes > 0:
            self.fail_deletes -= 1
            raise StoreUnavailable(f"simulated connection loss deleting org {org_id}")
        doomed = {id(r) for r in self._matching(org_id, archive_type, start, end)}
        key = (org_id, ArchiveType(archive_type))
        self._records[key] = [r for r in self._records.get(key, []) if id(r) not in doomed]
        return len(doomed)

    def count(self, org_id: int, archive_type: ArchiveType) -> int:
        return len(self._records.get((org_id, ArchiveType(archive_type)), []))
