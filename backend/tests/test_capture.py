from __future__ import annotations

import io
import dataclasses

import pytest
from PIL import Image

from receipt_capture.services.capture import CaptureSource, camera_filename


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


def test_from_file_path_uses_name_and_sniffs_type(tmp_path):
    path = tmp_path / "lunch.png"
    path.write_bytes(_png_bytes())
    capture = CaptureSource.from_file(path)
    assert capture.filename == "lunch.png"
    assert capture.mime_type == "image/png"
    assert capture.data == path.read_bytes()


def test_from_file_content_beats_misleading_extension():
    capture = CaptureSource.from_file(_png_bytes(), filename="scan.jpg")
    assert capture.mime_type == "image/png"


def test_from_file_unknown_bytes_fall_back_to_extension_then_octet_stream():
    assert CaptureSource.from_file(b"\x01\x02", filename="r.jpg").mime_type == "image/jpeg"
    anonymous = CaptureSource.from_file(b"\x01\x02")
    assert anonymous.filename == "receipt"
    assert anonymous.mime_type == "application/octet-stream"


def test_from_file_reads_file_objects(tmp_path):
    path = tmp_path / "receipt.jpeg"
    path.write_bytes(b"\xff\xd8raw")
    with path.open("rb") as fh:
        capture = CaptureSource.from_file(fh)
    assert capture.filename == "receipt.jpeg"
    assert capture.data == b"\xff\xd8raw"


def test_from_file_explicit_mime_type_wins():
    capture = CaptureSource.from_file(b"\x01", filename="x.bin", mime_type="image/heic")
    assert capture.mime_type == "image/heic"


def test_from_camera_frame_is_jpeg_with_unique_synthetic_name():
    first = CaptureSource.from_camera_frame(b"\xff\xd8a")
    second = CaptureSource.from_camera_frame(b"\xff\xd8b")
    assert first.mime_type == second.mime_type == "image/jpeg"
    assert first.filename.startswith("receipt-") and first.filename.endswith(".jpg")
    assert first.filename != second.filename
    assert first.data and first.filename and first.mime_type


def test_camera_filename_unique_within_same_instant(capture):
    names = {camera_filename(capture.created_at) for _ in range(5)}
    assert len(names) == 5


def test_capture_is_immutable(capture):
    with pytest.raises(dataclasses.FrozenInstanceError):
        capture.filename = "other.jpg"  # type: ignore[misc]
