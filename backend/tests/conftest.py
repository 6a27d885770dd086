from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend folder to sys.path so `import receipt_capture...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from receipt_capture.core.database import Base, build_session_factory  # noqa: E402
from receipt_capture.models import tables  # noqa: E402,F401  - register models
from receipt_capture.services.capture import CaptureSource  # noqa: E402
from receipt_capture.services.recognition_service import RecognitionClient  # noqa: E402
from receipt_capture.services.storage_service import BlobStore  # noqa: E402

ACME_PAYLOAD: Dict[str, Any] = {
    "merchant": "Acme",
    "date": "2024-03-01",
    "total": 12.5,
    "currency": "USD",
    "category": "Groceries",
    "items": [{"name": "Milk", "quantity": 1, "price": 3.5}],
}


@pytest_asyncio.fixture()
async def engine():
    # StaticPool keeps every session on the same in-memory database
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def acme_payload() -> Dict[str, Any]:
    return {**ACME_PAYLOAD, "items": [dict(i) for i in ACME_PAYLOAD["items"]]}


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def blob_store(tmp_path):
    return BlobStore(backend="filesystem", base_dir=str(tmp_path / "blobs"))


@pytest.fixture()
def capture():
    return CaptureSource.from_file(bytes([0x01, 0x02]), filename="receipt.jpg")


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays a response."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


@pytest.fixture()
def make_client():
    """Build a RecognitionClient whose HTTP traffic goes to ``respond``."""

    def _make(respond: Callable[[httpx.Request], httpx.Response]):
        handler = RecordingHandler(respond)
        client = RecognitionClient(base_url="http://ocr.test", transport=httpx.MockTransport(handler))
        return client, handler

    return _make
