"""
Blob storage for uploaded resource files.

`LocalStorage` writes under a directory (development, tests); `S3Storage`
targets any S3-compatible endpoint. Both return a `StoredFile` describing
what was written so callers never re-read the bytes for size or checksum.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredFile:
    key: str
    size: int
    sha256: str
    content_type: str


def _describe(key: str, data: bytes, content_type: str | None) -> StoredFile:
    return StoredFile(
        key=key,
        size=len(data),
        sha256=hashlib.sha256(data).hexdigest(),
        content_type=content_type or DEFAULT_CONTENT_TYPE,
    )


class Storage:
    backend = "abstract"

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredFile:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    backend = "local"

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        p = (root / key.lstrip("/").replace("\\", "/")).resolve()
        if root not in p.parents:
            raise StorageError(f"Storage key escapes root: {key!r}")
        return p

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredFile:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return _describe(key, data, content_type)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def remove(self, key: str) -> None:
        p = self._path(key)
        p.unlink(missing_ok=True)
        # Drop the per-resource directory once it is empty.
        if p.parent != self.root.resolve() and not any(p.parent.iterdir()):
            p.parent.rmdir()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    backend = "s3"

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredFile:
        stored = _describe(key, data, content_type)
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=stored.content_type)
        return stored

    def open(self, key: str) -> BinaryIO:
        return self._client().get_object(Bucket=self.bucket, Key=key)["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Could not check object {key!r}") from e
        return True

    def remove(self, key: str) -> None:
        self._client().delete_object(Bucket=self.bucket, Key=key)


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    if backend != "local":
        logger.warning("Unknown STORAGE_BACKEND %r; using local storage", backend)
    root = config.get("STORAGE_LOCAL_ROOT") or str(Path.cwd() / "storage")
    return LocalStorage(root=Path(root))
