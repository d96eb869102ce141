"""
Org-Archiver: cold-storage archival of org messages and flow runs.

Scheduling and building:
  missing_day_archives, missing_month_archives, build_archive, delete_archive_file
  serialize_message, serialize_run

Archive metadata and rollups:
  Base, Archive, RollupCoordinator, set_database_url, get_engine, get_session_factory, init_db, session_scope

Orchestration:
  ArchiveOrchestrator, ArchiverConfig, RunSummary, CancellationToken

Collaborators:
  SqlRecordStore, SqlTenantDirectory, InMemoryRecordStore, InMemoryTenantDirectory
  InMemoryLongTermStorage, S3CompatibleStorage, OssStorage, create_long_term_backend_from_config
"""

from org_archiver.base import Base
from org_archiver.builder import build_archive, delete_archive_file, serialize_message, serialize_run
from org_archiver.cancellation import CancellationToken
from org_archiver.config import ArchiverConfig
from org_archiver.db import (
    get_engine,
    get_session_factory,
    init_db,
    make_session_factory,
    session_scope,
    set_database_url,
)
from org_archiver.errors import (
    ArchiverError,
    BuildCancelled,
    ConfigurationError,
    ConsistencyViolation,
    PartialBuildFailure,
    PurgeError,
    StoreUnavailable,
    TransientIOError,
    UploadError,
)
from org_archiver.long_term_storage import (
    InMemoryLongTermStorage,
    OssStorage,
    S3CompatibleStorage,
    create_long_term_backend_from_config,
)
from org_archiver.models_archive import Archive
from org_archiver.orchestrator import ArchiveOrchestrator, RunSummary
from org_archiver.record_store import (
    InMemoryRecordStore,
    InMemoryTenantDirectory,
    SqlRecordStore,
    SqlTenantDirectory,
)
from org_archiver.rollups import RollupCoordinator
from org_archiver.scheduler import missing_day_archives, missing_month_archives
from org_archiver.tasks import ArchiveState, ArchiveTask, ArchiveType, Period, Tenant, archive_key

__all__ = [
    "Archive",
    "ArchiveOrchestrator",
    "ArchiveState",
    "ArchiveTask",
    "ArchiveType",
    "ArchiverConfig",
    "ArchiverError",
    "Base",
    "BuildCancelled",
    "CancellationToken",
    "ConfigurationError",
    "ConsistencyViolation",
    "InMemoryLongTermStorage",
    "InMemoryRecordStore",
    "InMemoryTenantDirectory",
    "OssStorage",
    "PartialBuildFailure",
    "Period",
    "PurgeError",
    "RollupCoordinator",
    "RunSummary",
    "S3CompatibleStorage",
    "SqlRecordStore",
    "SqlTenantDirectory",
    "StoreUnavailable",
    "Tenant",
    "TransientIOError",
    "UploadError",
    "archive_key",
    "build_archive",
    "create_long_term_backend_from_config",
    "delete_archive_file",
    "get_engine",
    "get_session_factory",
    "init_db",
    "make_session_factory",
    "missing_day_archives",
    "missing_month_archives",
    "serialize_message",
    "serialize_run",
    "session_scope",
    "set_database_url",
]
