"""Shared fixtures: SQLite-backed metadata store, in-memory collaborators and the reference orgs."""

from datetime import datetime, timezone

import pytest

from org_archiver.config import ArchiverConfig
from org_archiver.db import create_engine_for_url, init_db, make_session_factory
from org_archiver.long_term_storage import InMemoryLongTermStorage
from org_archiver.record_store import InMemoryRecordStore, InMemoryTenantDirectory
from org_archiver.rollups import RollupCoordinator
from org_archiver.tasks import ArchiveTask, Tenant

NOW = datetime(2018, 1, 8, 12, 30, tzinfo=timezone.utc)
EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_built(task: ArchiveTask, hash_: str = EMPTY_MD5, url: str | None = None) -> ArchiveTask:
    """Mark task as built (and uploaded) without touching disk."""
    task.hash = hash_
    task.size = 20
    task.url = url if url is not None else f"memory://{task.org_id}/{task.period.value}/{task.start_date:%Y%m%d}"
    return task


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def new_org() -> Tenant:
    """Created too recently to have anything archivable at NOW."""
    return Tenant(id=1, name="Fresh", earliest=utc(2017, 11, 10, 15, 0))


@pytest.fixture
def org() -> Tenant:
    return Tenant(id=2, name="Nyaruka", earliest=utc(2017, 8, 10, 21, 11, 59))


@pytest.fixture
def anon_org() -> Tenant:
    return Tenant(id=3, name="Anon", earliest=utc(2017, 8, 10, 21, 11, 59), anonymize=True)


@pytest.fixture
def engine():
    engine = create_engine_for_url("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def coordinator(session_factory) -> RollupCoordinator:
    return RollupCoordinator(session_factory)


@pytest.fixture
def storage() -> InMemoryLongTermStorage:
    return InMemoryLongTermStorage()


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def tenants(new_org, org, anon_org) -> InMemoryTenantDirectory:
    return InMemoryTenantDirectory([anon_org, new_org, org])


@pytest.fixture
def config(tmp_path) -> ArchiverConfig:
    return ArchiverConfig(
        database_url="sqlite://",
        temp_dir=str(tmp_path / "archives"),
        workers=1,
        max_attempts=3,
        retry_backoff_seconds=0,
        retry_backoff_max_seconds=0,
    )
