"""
Archiver configuration.

ArchiverConfig is an explicit object handed to the orchestrator; nothing inside the core reads
environment variables. ArchiverConfig.from_env() is the one place process state is read.

Environment variables:
  ARCHIVER_DB                      database URL (postgresql://... or sqlite://)
  ARCHIVER_TEMP_DIR                local directory for artifacts being built (default /tmp/archiver)
  ARCHIVER_RETENTION_DAYS          days kept live before a day becomes archivable (default 90)
  ARCHIVER_DELETE                  "true" to purge source records once their month is archived
  ARCHIVER_WORKERS                 orgs archived concurrently (default 4)
  ARCHIVER_MAX_ATTEMPTS            attempts per build/upload/persist/delete (default 3)
  ARCHIVER_RETRY_BACKOFF           base backoff seconds (default 1.0)
  ARCHIVER_RETRY_BACKOFF_MAX       max backoff seconds (default 30.0)
  ARCHIVER_S3_BUCKET, ARCHIVER_S3_ENDPOINT, ARCHIVER_S3_REGION,
  ARCHIVER_AWS_ACCESS_KEY_ID, ARCHIVER_AWS_SECRET_ACCESS_KEY
  ARCHIVER_OSS_ENDPOINT, ARCHIVER_OSS_BUCKET, ARCHIVER_OSS_ACCESS_KEY_ID, ARCHIVER_OSS_ACCESS_KEY_SECRET
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from org_archiver.errors import ConfigurationError

_STORAGE_ENV = {
    "s3_bucket": "ARCHIVER_S3_BUCKET",
    "s3_endpoint": "ARCHIVER_S3_ENDPOINT",
    "s3_region": "ARCHIVER_S3_REGION",
    "aws_access_key_id": "ARCHIVER_AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "ARCHIVER_AWS_SECRET_ACCESS_KEY",
    "oss_endpoint": "ARCHIVER_OSS_ENDPOINT",
    "oss_bucket": "ARCHIVER_OSS_BUCKET",
    "oss_access_key_id": "ARCHIVER_OSS_ACCESS_KEY_ID",
    "oss_access_key_secret": "ARCHIVER_OSS_ACCESS_KEY_SECRET",
}


@dataclass(frozen=True)
class ArchiverConfig:
    """
    Settings for one archiver process.

    Attributes:
        database_url: Metadata and record store database.
        temp_dir: Root directory for artifacts while they are built and uploaded.
        retention_days: A day is archivable once it is this many days old.
        delete_records: Global switch for purging source records (orgs must also opt in).
        workers: Orgs processed concurrently.
        max_attempts: Attempts for each retryable operation before the org run fails.
        retry_backoff_seconds: Base of the exponential backoff between attempts.
        retry_backoff_max_seconds: Upper bound on a single backoff.
        storage: Settings for create_long_term_backend_from_config().
    """

    database_url: str = "postgresql://localhost/archiver"
    temp_dir: str = "/tmp/archiver"
    retention_days: int = 90
    delete_records: bool = False
    workers: int = 4
    max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0
    storage: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ArchiverConfig:
        """Load configuration from environment variables (or the given mapping)."""
        env = os.environ if environ is None else environ
        try:
            config = cls(
                database_url=env.get("ARCHIVER_DB", cls.database_url),
                temp_dir=env.get("ARCHIVER_TEMP_DIR", cls.temp_dir),
                retention_days=int(env.get("ARCHIVER_RETENTION_DAYS", "90")),
                delete_records=env.get("ARCHIVER_DELETE", "false").lower() == "true",
                workers=int(env.get("ARCHIVER_WORKERS", "4")),
                max_attempts=int(env.get("ARCHIVER_MAX_ATTEMPTS", "3")),
                retry_backoff_seconds=float(env.get("ARCHIVER_RETRY_BACKOFF", "1.0")),
                retry_backoff_max_seconds=float(env.get("ARCHIVER_RETRY_BACKOFF_MAX", "30.0")),
                storage={key: env[name] for key, name in _STORAGE_ENV.items() if env.get(name)},
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid archiver setting: {e}") from e
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigurationError for values the archiver cannot run with."""
        if not self.database_url:
            raise ConfigurationError("database_url must be set")
        if not self.temp_dir:
            raise ConfigurationError("temp_dir must be set")
        if self.retention_days < 1:
            raise ConfigurationError(f"retention_days must be positive, got {self.retention_days}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be positive, got {self.workers}")
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be positive, got {self.max_attempts}")
        if self.retry_backoff_seconds < 0 or self.retry_backoff_max_seconds < 0:
            raise ConfigurationError("retry backoff must not be negative")
