"""
Artifact building: stream one period of records into a gzip'd JSONL file.

Each record becomes one JSON object per line. Lines are hashed (MD5 over the uncompressed
bytes) and compressed as they are written, so memory stays bounded whatever the volume and
the hash does not depend on compression settings. The gzip header carries no file name and a
zero mtime, so building the same records twice yields byte-identical files; a period with no
records yields the 20-byte compressed empty stream.

Anonymized orgs have identifying contact fields removed record by record as they stream.
"""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
import os
import time
import uuid
from contextlib import closing
from typing import Any, Callable, Iterator

from org_archiver.cancellation import CancellationToken
from org_archiver.errors import ArchiverError, BuildCancelled, ConfigurationError, PartialBuildFailure
from org_archiver.periods import isoformat
from org_archiver.record_store import RecordStore
from org_archiver.tasks import ArchiveState, ArchiveTask, ArchiveType, Tenant

logger = logging.getLogger(__name__)

COMPRESS_LEVEL = 9


def serialize_message(record: dict[str, Any], anonymize: bool = False) -> dict[str, Any]:
    """Archived form of one message; anonymize drops the URN and contact name."""
    channel = None
    if record.get("channel_uuid"):
        channel = {"uuid": record["channel_uuid"], "name": record.get("channel_name")}
    return {
        "id": record["id"],
        "contact": {
            "uuid": record.get("contact_uuid"),
            "name": None if anonymize else record.get("contact_name"),
        },
        "urn": None if anonymize else record.get("urn"),
        "channel": channel,
        "direction": record.get("direction"),
        "status": record.get("status"),
        "text": record.get("text"),
        "attachments": record.get("attachments") or [],
        "created_on": isoformat(record.get("created_on")),
        "sent_on": isoformat(record.get("sent_on")),
    }


def serialize_run(record: dict[str, Any], anonymize: bool = False) -> dict[str, Any]:
    """Archived form of one flow run; anonymize drops the contact name."""
    return {
        "id": record["id"],
        "uuid": record.get("uuid"),
        "flow": {"uuid": record.get("flow_uuid"), "name": record.get("flow_name")},
        "contact": {
            "uuid": record.get("contact_uuid"),
            "name": None if anonymize else record.get("contact_name"),
        },
        "responded": bool(record.get("responded")),
        "path": record.get("path") or [],
        "results": record.get("results") or {},
        "created_on": isoformat(record.get("created_on")),
        "modified_on": isoformat(record.get("modified_on")),
        "exited_on": isoformat(record.get("exited_on")),
        "exit_type": record.get("exit_type"),
    }


SERIALIZERS: dict[ArchiveType, Callable[[dict[str, Any], bool], dict[str, Any]]] = {
    ArchiveType.MESSAGE: serialize_message,
    ArchiveType.RUN: serialize_run,
}


def ensure_temp_directory(path: str) -> str:
    """Create path if needed and check it is a writable directory."""
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"unable to create temp directory {path}: {e}") from e
    if not os.path.isdir(path) or not os.access(path, os.W_OK):
        raise ConfigurationError(f"temp directory {path} is not a writable directory")
    return path


def temp_file_name(task: ArchiveTask) -> str:
    """Unique per task and per attempt, so concurrent builds never share a file."""
    return (
        f"{task.org_id}_{task.archive_type.value}_{task.period.value}_"
        f"{task.start_date:%Y%m%d}_{uuid.uuid4().hex}.jsonl.gz"
    )


def _write_records(
    out: gzip.GzipFile,
    records: Iterator[dict[str, Any]],
    serialize: Callable[[dict[str, Any], bool], dict[str, Any]],
    anonymize: bool,
    cancel_token: CancellationToken | None,
) -> tuple[int, str]:
    hasher = hashlib.md5()
    count = 0
    for record in records:
        if cancel_token is not None and cancel_token.is_cancelled():
            raise BuildCancelled("build cancelled while streaming records")
        line = (json.dumps(serialize(record, anonymize), ensure_ascii=False) + "\n").encode("utf-8")
        hasher.update(line)
        out.write(line)
        count += 1
    return count, hasher.hexdigest()


def build_archive(
    task: ArchiveTask,
    store: RecordStore,
    tenant: Tenant,
    temp_dir: str,
    cancel_token: CancellationToken | None = None,
) -> ArchiveTask:
    """
    Build task's artifact into temp_dir and fill in record_count, size, hash and build_path.

    On any failure the partial file is removed. TransientIOError from the record store and
    BuildCancelled propagate unchanged; anything else is raised as PartialBuildFailure.
    """
    if task.state != ArchiveState.SCHEDULED:
        raise PartialBuildFailure(f"{task!r} is {task.state.name.lower()}, only scheduled tasks can be built")

    serialize = SERIALIZERS[task.archive_type]
    path = os.path.join(temp_dir, temp_file_name(task))
    started = time.monotonic()

    try:
        records = store.stream_records(
            task.org_id, task.archive_type, task.start_date, task.end_date, cancel_token=cancel_token
        )
        with closing(records), open(path, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, compresslevel=COMPRESS_LEVEL, mtime=0) as out:
                count, digest = _write_records(out, records, serialize, tenant.anonymize, cancel_token)
    except BaseException as e:
        _remove(path)
        if isinstance(e, ArchiverError) or not isinstance(e, Exception):
            raise
        raise PartialBuildFailure(f"error building {task!r}: {e}") from e

    task.record_count = count
    task.hash = digest
    task.size = os.path.getsize(path)
    task.build_path = path
    task.build_time = int((time.monotonic() - started) * 1000)

    logger.debug(
        "built archive file",
        extra={**task.describe(), "record_count": count, "size": task.size, "hash": digest},
    )
    return task


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def delete_archive_file(task: ArchiveTask) -> None:
    """Remove task's local artifact, if any, and clear build_path."""
    if task.build_path:
        _remove(task.build_path)
        logger.debug("deleted archive file", extra={**task.describe(), "path": task.build_path})
    task.build_path = ""


def read_archive_lines(path: str) -> list[str]:
    """Decompress an artifact and return its JSONL lines (verification and tests)."""
    with gzip.open(path, "rb") as f:
        data = f.read()
    return data.decode("utf-8").splitlines()
