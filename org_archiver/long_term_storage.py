"""
Object storage for archive artifacts: abstract interface and implementations.

- LongTermStorageBackend: protocol for put/exists/get/delete.
- InMemoryLongTermStorage: tests and local dev, no external services.
- S3CompatibleStorage: MinIO / AWS S3 / any S3-compatible (boto3).
- OssStorage: Aliyun OSS (optional oss2).

put_object returns the URL the artifact can be fetched from and raises UploadError on failure.
Keys come from org_archiver.tasks.archive_key():
  {org}/{type}/{period}/{YYYY}/{MM}/{DD}.jsonl.gz
"""

from __future__ import annotations

import base64
import hashlib
from typing import Protocol

from org_archiver.errors import UploadError

ARCHIVE_CONTENT_TYPE = "application/json"
ARCHIVE_CONTENT_ENCODING = "gzip"


class LongTermStorageBackend(Protocol):
    """Protocol for long-term object storage (S3, MinIO, OSS)."""

    def put_object(self, key: str, body: bytes, content_type: str | None = None) -> str:
        """Upload object and return its URL. key is full path (e.g. 3/message/day/2017/08/10.jsonl.gz)."""
        ...

    def object_exists(self, key: str) -> bool:
        """True if an object is stored under key."""
        ...

    def get_object(self, key: str) -> bytes | None:
        """Download object; return None if not found."""
        ...

    def delete_object(self, key: str) -> None:
        """Delete object by key."""
        ...


class InMemoryLongTermStorage:
    """
    In-memory backend for tests and local dev without cloud credentials.

    fail_puts makes the next N put_object calls raise UploadError, for exercising retries.
    """

    def __init__(self) -> None:
        self._store: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}
        self.fail_puts = 0

    def put_object(self, key: str, body: bytes, content_type: str | None = None) -> str:
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise UploadError(f"simulated upload failure for {key}")
        self._store[key] = bytes(body)
        self.content_types[key] = content_type
        return f"memory://{key}"

    def object_exists(self, key: str) -> bool:
        return key in self._store

    def get_object(self, key: str) -> bytes | None:
        return self._store.get(key)

    def delete_object(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._store)


class S3CompatibleStorage:
    """
    S3-compatible backend (MinIO, AWS S3, etc.).

    Uploads carry Content-MD5 so S3 rejects a body corrupted in transit.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        region_name: str = "us-east-1",
        access_key: str | None = None,
        secret_key: str | None = None,
    ):
        """
        Args:
            bucket: Bucket name.
            endpoint_url: Optional endpoint (e.g. http://localhost:9000 for MinIO).
            region_name: AWS region when using AWS S3.
            access_key: Access key (optional if using env/instance profile).
            secret_key: Secret key (optional if using env/instance profile).
        """
        self.bucket = bucket
        self._endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self._region_name = region_name
        self._access_key = access_key
        self._secret_key = secret_key
        self._client = None

    def _get_client(self):
        import boto3
        from botocore.config import Config

        if self._client is None:
            kwargs = {
                "service_name": "s3",
                "region_name": self._region_name,
                "config": Config(signature_version="s3v4"),
            }
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"] = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            self._client = boto3.client(**kwargs)
        return self._client

    def url_for(self, key: str) -> str:
        if self._endpoint_url:
            return f"{self._endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def put_object(self, key: str, body: bytes, content_type: str | None = None) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        client = self._get_client()
        extra = {
            "ContentMD5": base64.b64encode(hashlib.md5(body).digest()).decode("ascii"),
            "ContentEncoding": ARCHIVE_CONTENT_ENCODING,
        }
        if content_type:
            extra["ContentType"] = content_type
        try:
            client.put_object(Bucket=self.bucket, Key=key, Body=body, **extra)
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"error uploading {key} to bucket {self.bucket}: {e}") from e
        return self.url_for(key)

    def object_exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        client = self._get_client()
        try:
            client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise UploadError(f"error checking {key} in bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise UploadError(f"error checking {key} in bucket {self.bucket}: {e}") from e

    def get_object(self, key: str) -> bytes | None:
        client = self._get_client()
        from botocore.exceptions import ClientError

        try:
            resp = client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchKey":
                return None
            raise

    def delete_object(self, key: str) -> None:
        client = self._get_client()
        client.delete_object(Bucket=self.bucket, Key=key)


class OssStorage:
    """
    Aliyun OSS (Object Storage Service) backend.

    Uses oss2 SDK. Requires: pip install oss2 (or pip install -e ".[oss]").
    """

    def __init__(
        self,
        bucket: str,
        access_key_id: str,
        access_key_secret: str,
        endpoint: str,
    ):
        """
        Args:
            bucket: OSS bucket name.
            access_key_id: Aliyun AccessKey ID.
            access_key_secret: Aliyun AccessKey Secret.
            endpoint: OSS endpoint (e.g. https://oss-cn-hangzhou.aliyuncs.com).
        """
        self.bucket_name = bucket
        self._access_key_id = access_key_id
        self._access_key_secret = access_key_secret
        self._endpoint = endpoint.rstrip("/")
        self._bucket = None

    def _get_bucket(self):
        import oss2

        if self._bucket is None:
            auth = oss2.Auth(self._access_key_id, self._access_key_secret)
            self._bucket = oss2.Bucket(auth, self._endpoint, self.bucket_name)
        return self._bucket

    def url_for(self, key: str) -> str:
        scheme, _, host = self._endpoint.partition("://")
        return f"{scheme}://{self.bucket_name}.{host}/{key}"

    def put_object(self, key: str, body: bytes, content_type: str | None = None) -> str:
        import oss2

        bucket = self._get_bucket()
        headers = {"Content-Encoding": ARCHIVE_CONTENT_ENCODING}
        if content_type:
            headers["Content-Type"] = content_type
        try:
            bucket.put_object(key, body, headers=headers)
        except oss2.exceptions.OssError as e:
            raise UploadError(f"error uploading {key} to bucket {self.bucket_name}: {e}") from e
        return self.url_for(key)

    def object_exists(self, key: str) -> bool:
        import oss2

        try:
            return bool(self._get_bucket().object_exists(key))
        except oss2.exceptions.OssError as e:
            raise UploadError(f"error checking {key} in bucket {self.bucket_name}: {e}") from e

    def get_object(self, key: str) -> bytes | None:
        import oss2

        bucket = self._get_bucket()
        try:
            result = bucket.get_object(key)
            return result.read()
        except oss2.exceptions.NoSuchKey:
            return None

    def delete_object(self, key: str) -> None:
        bucket = self._get_bucket()
        bucket.delete_object(key)


def _normalize_oss_endpoint(endpoint: str | None) -> str | None:
    """Ensure endpoint has scheme (https://). Returns None if endpoint is empty."""
    if not endpoint or not endpoint.strip():
        return None
    ep = endpoint.strip().rstrip("/")
    if not ep.startswith("http://") and not ep.startswith("https://"):
        ep = "https://" + ep
    return ep


def create_long_term_backend_from_config(config: dict) -> LongTermStorageBackend:
    """
    Create an archive storage backend from a config dict (ArchiverConfig.storage).

    s3_bucket set -> S3CompatibleStorage (s3_endpoint, s3_region, aws_access_key_id, aws_secret_access_key).
    Otherwise oss_endpoint, oss_bucket, oss_access_key_id, oss_access_key_secret all set -> OssStorage.
    Otherwise InMemoryLongTermStorage for local dev / tests.
    """
    s3_bucket = (config.get("s3_bucket") or "").strip()
    if s3_bucket:
        return S3CompatibleStorage(
            bucket=s3_bucket,
            endpoint_url=(config.get("s3_endpoint") or "").strip() or None,
            region_name=(config.get("s3_region") or "").strip() or "us-east-1",
            access_key=(config.get("aws_access_key_id") or "").strip() or None,
            secret_key=(config.get("aws_secret_access_key") or "").strip() or None,
        )

    ep = config.get("oss_endpoint") or ""
    ep = _normalize_oss_endpoint(ep) if ep else None
    bucket = (config.get("oss_bucket") or "").strip()
    key_id = (config.get("oss_access_key_id") or "").strip()
    key_secret = (config.get("oss_access_key_secret") or "").strip()
    if ep and bucket and key_id and key_secret:
        return OssStorage(
            bucket=bucket,
            access_key_id=key_id,
            access_key_secret=key_secret,
            endpoint=ep,
        )
    return InMemoryLongTermStorage()
