"""Common dependencies for FastAPI routes.

Routes never build pipeline collaborators themselves; they ask for them
here so tests can swap any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from receipt_capture.core.database import get_db
from receipt_capture.services.persistence_service import PersistenceGateway
from receipt_capture.services.recognition_service import RecognitionClient
from receipt_capture.services.storage_service import BlobStore

_blob_store: BlobStore | None = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


def get_blob_store() -> BlobStore:
    """Return a process-wide blob store (the MinIO client is reusable)."""
    global _blob_store
    if _blob_store is None:
        _blob_store = BlobStore()
    return _blob_store


def get_recognition_client() -> RecognitionClient:
    return RecognitionClient()


def get_persistence_gateway() -> PersistenceGateway:
    return PersistenceGateway(blob_store=get_blob_store())
