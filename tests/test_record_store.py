"""Tests for the SQL and in-memory record stores and tenant directories."""

import pytest
from conftest import utc

from org_archiver.cancellation import CancellationToken
from org_archiver.db import create_engine_for_url, make_session_factory
from org_archiver.errors import BuildCancelled, StoreUnavailable
from org_archiver.models import Channel, Contact, Flow, FlowRun, Msg, Org
from org_archiver.record_store import InMemoryRecordStore, SqlRecordStore, SqlTenantDirectory
from org_archiver.tasks import ArchiveType


@pytest.fixture
def live_db(session_factory):
    with session_factory.begin() as session:
        session.add_all(
            [
                Org(id=1, name="Active", created_on=utc(2017, 11, 10, 21, 11, 59)),
                Org(id=2, name="Inactive", is_active=False, created_on=utc(2017, 8, 10)),
                Org(
                    id=3,
                    name="Anon",
                    is_anon=True,
                    retain_after_archive=False,
                    created_on=utc(2017, 1, 1),
                    archive_from=utc(2017, 8, 10, 21, 11, 59),
                ),
                Contact(id=1, uuid="3e814add-e614-41f7-8b5d-a07f670a698f", org_id=3, name="Ajodinabiff Dane"),
                Channel(id=1, uuid="8c1223c3-bd43-466b-81f1-e7266a9f4465", org_id=3, name="Twilio"),
                Flow(id=1, uuid="6639286a-9120-45d4-aa39-03ae3942a4a6", org_id=3, name="Flow 1"),
            ]
        )
        session.flush()
        session.add_all(
            [
                Msg(id=2, org_id=3, contact_id=1, channel_id=1, urn="tel:+12067797777", direction="out",
                    text="second", attachments=["image/jpg:https://foo.bar/image1.jpg"],
                    created_on=utc(2017, 8, 12, 21, 11, 59), sent_on=utc(2017, 8, 12, 21, 12)),
                Msg(id=1, org_id=3, contact_id=1, channel_id=None, urn="tel:+12067797777", direction="in",
                    text="first", created_on=utc(2017, 8, 12, 19, 0)),
                Msg(id=3, org_id=3, contact_id=1, channel_id=1, direction="in", text="next day",
                    created_on=utc(2017, 8, 13, 0, 0)),
                FlowRun(id=1, uuid="4ced1260-9cfe-4b7f-81dd-b637108f15b9", org_id=3, flow_id=1, contact_id=1,
                        responded=True, path=[{"node": "n1"}], results={"agree": {"value": "A"}},
                        created_on=utc(2017, 8, 10, 21, 0), modified_on=utc(2017, 8, 12, 10, 0),
                        exit_type="completed"),
            ]
        )
    return session_factory


def test_tenant_directory_lists_active_orgs(live_db) -> None:
    tenants = SqlTenantDirectory(live_db).list_active_tenants()
    assert [t.id for t in tenants] == [1, 3]

    fresh, anon = tenants
    assert fresh.earliest == utc(2017, 11, 10, 21, 11, 59)
    assert not fresh.anonymize and not fresh.needs_deletion
    # archive_from takes precedence over created_on
    assert anon.earliest == utc(2017, 8, 10, 21, 11, 59)
    assert anon.anonymize and anon.needs_deletion


def test_stream_messages_in_order(live_db) -> None:
    store = SqlRecordStore(live_db, yield_per=1)
    rows = list(store.stream_records(3, ArchiveType.MESSAGE, utc(2017, 8, 12), utc(2017, 8, 13)))

    assert [r["id"] for r in rows] == [1, 2]
    first, second = rows
    assert first["channel_uuid"] is None
    assert first["contact_name"] == "Ajodinabiff Dane"
    assert second["channel_name"] == "Twilio"
    assert second["attachments"] == ["image/jpg:https://foo.bar/image1.jpg"]
    assert second["urn"] == "tel:+12067797777"


def test_stream_runs_by_modified_on(live_db) -> None:
    store = SqlRecordStore(live_db)
    assert list(store.stream_records(3, ArchiveType.RUN, utc(2017, 8, 10), utc(2017, 8, 11))) == []

    (run,) = store.stream_records(3, ArchiveType.RUN, utc(2017, 8, 12), utc(2017, 8, 13))
    assert run["uuid"] == "4ced1260-9cfe-4b7f-81dd-b637108f15b9"
    assert run["flow_name"] == "Flow 1"
    assert run["results"] == {"agree": {"value": "A"}}


def test_stream_other_org_is_empty(live_db) -> None:
    store = SqlRecordStore(live_db)
    assert list(store.stream_records(1, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1))) == []


def test_delete_records(live_db) -> None:
    store = SqlRecordStore(live_db)
    assert store.delete_records(3, ArchiveType.MESSAGE, utc(2017, 8, 12), utc(2017, 8, 13)) == 2
    remaining = list(store.stream_records(3, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1)))
    assert [r["id"] for r in remaining] == [3]
    assert store.delete_records(3, ArchiveType.RUN, utc(2017, 8, 1), utc(2017, 9, 1)) == 1


def test_stream_cancelled_before_query(live_db) -> None:
    token = CancellationToken()
    token.cancel()
    store = SqlRecordStore(live_db)
    with pytest.raises(BuildCancelled):
        list(store.stream_records(3, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1), cancel_token=token))


def test_stream_cancelled_while_streaming(live_db) -> None:
    token = CancellationToken()
    store = SqlRecordStore(live_db, yield_per=1)
    rows = store.stream_records(3, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1), cancel_token=token)

    assert next(rows)["id"] == 1
    token.cancel()
    with pytest.raises(BuildCancelled):
        next(rows)
    rows.close()


def test_stream_with_token_completes(live_db) -> None:
    token = CancellationToken()
    store = SqlRecordStore(live_db)
    rows = list(store.stream_records(3, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1), cancel_token=token))
    assert [r["id"] for r in rows] == [1, 2, 3]
    # the stream is finished, cancelling now touches nothing
    token.cancel()


def test_unreachable_database_is_store_unavailable(tmp_path) -> None:
    engine = create_engine_for_url(f"sqlite:///{tmp_path}/missing/dir/archiver.db")
    factory = make_session_factory(engine)
    store = SqlRecordStore(factory)
    with pytest.raises(StoreUnavailable):
        list(store.stream_records(1, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1)))
    with pytest.raises(StoreUnavailable):
        store.delete_records(1, ArchiveType.MESSAGE, utc(2017, 8, 1), utc(2017, 9, 1))
    with pytest.raises(StoreUnavailable):
        SqlTenantDirectory(factory).list_active_tenants()


def test_in_memory_store_range_and_order() -> None:
    store = InMemoryRecordStore()
    store.add(1, ArchiveType.MESSAGE, {"id": 2, "created_on": utc(2017, 8, 12, 5)})
    store.add(1, ArchiveType.MESSAGE, {"id": 1, "created_on": utc(2017, 8, 12, 5)})
    store.add(1, ArchiveType.MESSAGE, {"id": 3, "created_on": utc(2017, 8, 13)})
    store.add(1, ArchiveType.RUN, {"id": 9, "modified_on": utc(2017, 8, 12, 1)})

    rows = list(store.stream_records(1, ArchiveType.MESSAGE, utc(2017, 8, 12), utc(2017, 8, 13)))
    assert [r["id"] for r in rows] == [1, 2]
    assert store.delete_records(1, ArchiveType.MESSAGE, utc(2017, 8, 12), utc(2017, 8, 13)) == 2
    assert store.count(1, ArchiveType.MESSAGE) == 1
    assert store.count(1, ArchiveType.RUN) == 1


def test_in_memory_store_simulated_failures() -> None:
    store = InMemoryRecordStore()
    store.fail_streams = 1
    with pytest.raises(StoreUnavailable):
        list(store.stream_records(1, ArchiveType.RUN, utc(2017, 8, 12), utc(2017, 8, 13)))
    assert list(store.stream_records(1, ArchiveType.RUN, utc(2017, 8, 12), utc(2017, 8, 13))) == []

    store.fail_deletes = 1
    with pytest.raises(StoreUnavailable):
        store.delete_records(1, ArchiveType.RUN, utc(2017, 8, 12), utc(2017, 8, 13))


def test_in_memory_store_honours_cancellation() -> None:
    store = InMemoryRecordStore()
    store.add(1, ArchiveType.MESSAGE, {"id": 1, "created_on": utc(2017, 8, 12, 5)})
    store.add(1, ArchiveType.MESSAGE, {"id": 2, "created_on": utc(2017, 8, 12, 6)})
    token = CancellationToken()

    rows = store.stream_records(1, ArchiveType.MESSAGE, utc(2017, 8, 12), utc(2017, 8, 13), cancel_token=token)
    assert next(rows)["id"] == 1
    token.cancel()
    with pytest.raises(BuildCancelled):
        next(rows)
