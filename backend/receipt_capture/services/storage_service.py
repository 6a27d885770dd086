"""Storage service abstraction for receipt images.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **minio** (default): Uses the MinIO S3-compatible object storage.
2. **filesystem**: Stores files under ``settings.STORAGE_DIRECTORY`` on disk.

Objects are write-once and keyed ``<owner_id>/<epoch millis>-<uuid>.<ext>``
so every owner's images live under their own prefix.  The key is what gets
persisted on the receipt row.  Every failure surfaces as
:class:`BlobStoreError`.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import S3Error

from receipt_capture.core.config import settings
from receipt_capture.core.exceptions import BlobStoreError
from receipt_capture.utils.image_processing import extension_for_mime

logger = logging.getLogger(__name__)


def _normalise_segment(value: str) -> str:
    """Remove potentially dangerous characters from a key segment."""
    keepchars = {"-", "_", "."}
    return "".join(c for c in value if c.isalnum() or c in keepchars).strip(".")


def build_storage_key(owner_id: str, filename: str, mime_type: Optional[str] = None, now: Optional[dt.datetime] = None) -> str:
    """Return ``<owner_id>/<epoch millis>-<uuid>.<ext>`` for a new upload.

    The random suffix keeps two uploads landing on the same millisecond
    apart.  The extension comes from ``filename`` when it has one,
    otherwise from ``mime_type``, otherwise ``jpg``.
    """
    owner = _normalise_segment(str(owner_id))
    if not owner:
        raise BlobStoreError("owner id is empty")
    now = now or dt.datetime.now(dt.timezone.utc)
    millis = int(now.timestamp() * 1000)
    ext = ""
    if "." in filename:
        ext = _normalise_segment(filename.rsplit(".", 1)[1]).lower()
    ext = ext or extension_for_mime(mime_type) or "jpg"
    unique_id = uuid.uuid4().hex[:12]
    return f"{owner}/{millis}-{unique_id}.{ext}"


class BlobStore:
    """Unified object store (MinIO or filesystem)."""

    def __init__(self, backend: Optional[str] = None, base_dir: Optional[str] = None, client: Optional[Minio] = None) -> None:
        self.backend = (backend or settings.STORAGE_BACKEND or "minio").lower()
        if self.backend == "minio":
            self._client = client or Minio(
                settings.MINIO_ENDPOINT,
                access_key=settings.MINIO_ACCESS_KEY,
                secret_key=settings.MINIO_SECRET_KEY,
                secure=bool(settings.MINIO_USE_SSL),
            )
            self.bucket = settings.MINIO_BUCKET_NAME
            self._bucket_ready = False
        elif self.backend == "filesystem":
            base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
            if not base_path.is_absolute():
                base_path = base_path.resolve()
            self.base_dir = base_path
            self.base_dir.mkdir(parents=True, exist_ok=True)
            logger.info("[storage] Filesystem base_dir: %s", self.base_dir)
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND: {self.backend}")

    # ------------------------------------------------------------------ minio

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        if not self._client.bucket_exists(self.bucket):
            self._client.make_bucket(self.bucket)
        self._bucket_ready = True

    def _minio_exists(self, key: str) -> bool:
        try:
            self._client.stat_object(self.bucket, key)
            return True
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchObject", "ResourceNotFound"):
                return False
            raise

    def _minio_put(self, key: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket()
        if self._minio_exists(key):
            raise BlobStoreError(f"object already exists: {key}")
        self._client.put_object(self.bucket, key, BytesIO(data), len(data), content_type=content_type)

    def _minio_get(self, key: str) -> bytes:
        resp = self._client.get_object(self.bucket, key)
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    # ------------------------------------------------------------- filesystem

    def _path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir not in path.parents:
            raise BlobStoreError(f"key escapes storage directory: {key}")
        return path

    def _fs_put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("xb") as fh:
                fh.write(data)
        except FileExistsError as exc:
            raise BlobStoreError(f"object already exists: {key}") from exc

    # ------------------------------------------------------------------- API

    def _put_sync(self, key: str, data: bytes, content_type: str) -> None:
        if self.backend == "minio":
            self._minio_put(key, data, content_type)
        else:
            self._fs_put(key, data)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write ``data`` under ``key`` (write-once) and return the key."""
        if not data:
            raise BlobStoreError("Empty upload payload")
        try:
            await asyncio.to_thread(self._put_sync, key, data, content_type)
        except BlobStoreError:
            raise
        except Exception as exc:
            raise BlobStoreError(f"{self.backend} upload failed: {exc}") from exc
        logger.info("[storage] %s put key=%s bytes=%d", self.backend, key, len(data))
        return key

    async def get(self, key: str) -> bytes:
        try:
            if self.backend == "minio":
                return await asyncio.to_thread(self._minio_get, key)
            return await asyncio.to_thread(self._path_for(key).read_bytes)
        except (FileNotFoundError, S3Error) as exc:
            raise BlobStoreError(f"File not found: {key}") from exc
        except BlobStoreError:
            raise
        except Exception as exc:
            raise BlobStoreError(f"{self.backend} download failed: {exc}") from exc

    async def exists(self, key: str) -> bool:
        if self.backend == "minio":
            return await asyncio.to_thread(self._minio_exists, key)
        return self._path_for(key).exists()
