from __future__ import annotations

import datetime as dt

import pytest

from receipt_capture.core.exceptions import BlobStoreError
from receipt_capture.services.storage_service import BlobStore, build_storage_key

WHEN = dt.datetime(2024, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


def test_storage_key_is_namespaced_by_owner_and_timestamp():
    key = build_storage_key("user-42", "receipt.JPG", "image/jpeg", WHEN)
    owner, name = key.split("/")
    assert owner == "user-42"
    assert name.startswith(f"{int(WHEN.timestamp() * 1000)}-")
    assert name.endswith(".jpg")


def test_storage_keys_in_the_same_millisecond_are_distinct():
    keys = {build_storage_key("user-42", "receipt.jpg", None, WHEN) for _ in range(20)}
    assert len(keys) == 20


def test_storage_key_extension_falls_back_to_mime_then_jpg():
    assert build_storage_key("u", "receipt", "image/png", WHEN).endswith(".png")
    assert build_storage_key("u", "receipt", None, WHEN).endswith(".jpg")


def test_storage_key_strips_path_tricks_from_owner():
    key = build_storage_key("../etc", "a.jpg", None, WHEN)
    assert key.startswith("etc/")


def test_storage_key_rejects_empty_owner():
    with pytest.raises(BlobStoreError):
        build_storage_key("///", "a.jpg", None, WHEN)


@pytest.mark.asyncio
async def test_filesystem_put_get_roundtrip(blob_store):
    key = await blob_store.put("owner/1.jpg", b"\x01\x02", "image/jpeg")
    assert key == "owner/1.jpg"
    assert await blob_store.exists(key)
    assert await blob_store.get(key) == b"\x01\x02"


@pytest.mark.asyncio
async def test_filesystem_put_is_write_once(blob_store):
    await blob_store.put("owner/1.jpg", b"first")
    with pytest.raises(BlobStoreError):
        await blob_store.put("owner/1.jpg", b"second")
    assert await blob_store.get("owner/1.jpg") == b"first"


@pytest.mark.asyncio
async def test_put_rejects_empty_payload(blob_store):
    with pytest.raises(BlobStoreError):
        await blob_store.put("owner/2.jpg", b"")


@pytest.mark.asyncio
async def test_get_missing_key_raises(blob_store):
    with pytest.raises(BlobStoreError):
        await blob_store.get("owner/missing.jpg")


def test_unknown_backend_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        BlobStore(backend="ftp", base_dir=str(tmp_path))
