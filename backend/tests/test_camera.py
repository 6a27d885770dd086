from __future__ import annotations

import asyncio
import io
import threading
from typing import Dict, List, Optional

import numpy as np
import pytest
from PIL import Image

from receipt_capture.core.exceptions import (
    CaptureCancelled,
    DeviceNotFound,
    DeviceUnavailable,
    NoActiveFrame,
    PermissionDenied,
)
from receipt_capture.models.enums import CameraFacing
from receipt_capture.services.camera import CameraResource


class FakeHandle:
    def __init__(self, index: int) -> None:
        self.index = index
        self.released = 0


class FakeBackend:
    """Stands in for OpenCV: per-index failures and a queue of frames."""

    def __init__(self, failures: Optional[Dict[int, Exception]] = None, frames: Optional[List] = None) -> None:
        self.failures = failures or {}
        self.frames = list(frames or [])
        self.opened: List[FakeHandle] = []
        self.attempts: List[int] = []

    def open_device(self, index, resolution):
        self.attempts.append(index)
        if index in self.failures:
            raise self.failures[index]
        handle = FakeHandle(index)
        self.opened.append(handle)
        return handle

    def read_frame(self, handle):
        return self.frames.pop(0) if self.frames else None

    def release(self, handle):
        handle.released += 1

    @property
    def active(self) -> int:
        return sum(1 for h in self.opened if h.released == 0)


def _frame():
    return np.zeros((8, 8, 3), dtype=np.uint8)


def _camera(backend: FakeBackend) -> CameraResource:
    return CameraResource(backend, environment_index=0, user_index=1, max_devices=3, jpeg_quality=90)


@pytest.mark.asyncio
async def test_open_prefers_environment_device():
    backend = FakeBackend()
    session = await _camera(backend).open(CameraFacing.ENVIRONMENT, (640, 480))
    assert session.device_index == 0
    assert session.degraded is False
    assert session.resolution == (640, 480)
    assert backend.attempts == [0]


@pytest.mark.asyncio
async def test_open_falls_back_to_any_device_when_preferred_missing():
    backend = FakeBackend(failures={1: DeviceNotFound("gone")})
    session = await _camera(backend).open(CameraFacing.USER)
    assert session.device_index == 0
    assert session.degraded is True
    assert backend.attempts == [1, 0]


@pytest.mark.asyncio
async def test_open_reports_permission_over_missing_devices():
    backend = FakeBackend(
        failures={0: PermissionDenied("no access"), 1: DeviceNotFound("none"), 2: DeviceNotFound("none")}
    )
    with pytest.raises(PermissionDenied) as info:
        await _camera(backend).open()
    assert info.value.user_message == "Camera permission denied. Please enable camera access."
    assert backend.active == 0


@pytest.mark.asyncio
async def test_open_with_no_devices_raises_not_found():
    backend = FakeBackend(failures={i: DeviceNotFound("none") for i in range(3)})
    with pytest.raises(DeviceNotFound) as info:
        await _camera(backend).open()
    assert info.value.user_message == "No camera found on this device."


@pytest.mark.asyncio
async def test_open_busy_device_is_unavailable():
    backend = FakeBackend(failures={0: DeviceUnavailable("busy"), 1: DeviceNotFound("x"), 2: DeviceNotFound("x")})
    with pytest.raises(DeviceUnavailable) as info:
        await _camera(backend).open()
    assert info.value.user_message == "Unable to access camera: busy"


@pytest.mark.asyncio
async def test_capture_frame_encodes_jpeg():
    backend = FakeBackend(frames=[_frame()])
    camera = _camera(backend)
    session = await camera.open()
    data = await camera.capture_frame(session)
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.size == (8, 8)


@pytest.mark.asyncio
async def test_capture_frame_without_rendered_frame_raises():
    backend = FakeBackend(frames=[])
    camera = _camera(backend)
    session = await camera.open()
    with pytest.raises(NoActiveFrame):
        await camera.capture_frame(session)


@pytest.mark.asyncio
async def test_capture_frame_waits_for_warmup():
    backend = FakeBackend(frames=[None, None, _frame()])
    camera = _camera(backend)
    session = await camera.open()
    data = await camera.capture_frame(session, timeout=2.0)
    assert data[:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_capture_on_closed_session_raises():
    backend = FakeBackend(frames=[_frame()])
    camera = _camera(backend)
    session = await camera.open()
    camera.close(session)
    with pytest.raises(NoActiveFrame):
        await camera.capture_frame(session)


@pytest.mark.asyncio
async def test_close_is_idempotent():
    backend = FakeBackend()
    camera = _camera(backend)
    session = await camera.open()
    camera.close(session)
    camera.close(session)
    camera.close(None)
    assert session.active_tracks == 0
    assert backend.opened[0].released == 1
    assert backend.active == 0


@pytest.mark.asyncio
async def test_session_context_releases_on_error():
    backend = FakeBackend(frames=[])
    camera = _camera(backend)
    with pytest.raises(NoActiveFrame):
        async with camera.session() as session:
            await camera.capture_frame(session)
    assert session.closed
    assert backend.active == 0


@pytest.mark.asyncio
async def test_cancelled_open_releases_late_device():
    gate = threading.Event()

    class SlowBackend(FakeBackend):
        def open_device(self, index, resolution):
            gate.wait(timeout=5)
            return super().open_device(index, resolution)

    backend = SlowBackend()
    task = asyncio.create_task(_camera(backend).open())
    await asyncio.sleep(0.05)
    task.cancel()
    gate.set()
    with pytest.raises(asyncio.CancelledError):
        await task
    for _ in range(100):
        if backend.opened and backend.active == 0:
            break
        await asyncio.sleep(0.01)
    assert len(backend.opened) == 1
    assert backend.active == 0


@pytest.mark.asyncio
async def test_closing_while_waiting_for_first_frame_cancels_capture():
    backend = FakeBackend(frames=[])
    camera = _camera(backend)
    session = await camera.open()
    waiting = asyncio.create_task(camera.capture_frame(session, timeout=5.0))
    await asyncio.sleep(0.1)
    camera.close(session)
    with pytest.raises(CaptureCancelled):
        await asyncio.wait_for(waiting, timeout=1.0)
    assert backend.active == 0
