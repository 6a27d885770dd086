"""Camera capture service.

Owns the lifecycle of a live video device: opening it (preferring the
rear, "environment" facing camera), sampling one frame into a JPEG still
and releasing it again.  OpenCV is the default backend; tests inject a
fake backend with the same three methods.

Release is unconditional.  ``CameraResource.session()`` is the scoped
form and closes the device on every exit path, including cancellation
and errors raised after the device was opened.  ``close()`` itself is
idempotent.

All blocking OpenCV calls run in a worker thread so the event loop is
never blocked while a device warms up.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Tuple

import cv2

from receipt_capture.core.config import settings
from receipt_capture.core.exceptions import (
    CaptureCancelled,
    DeviceError,
    DeviceNotFound,
    DeviceUnavailable,
    NoActiveFrame,
    PermissionDenied,
)
from receipt_capture.core.observability import sentry_breadcrumb
from receipt_capture.models.enums import CameraFacing
from receipt_capture.utils.image_processing import encode_jpeg

logger = logging.getLogger(__name__)

Resolution = Tuple[int, int]


class OpenCVBackend:
    """Thin wrapper over ``cv2.VideoCapture``."""

    def open_device(self, index: int, resolution: Resolution) -> Any:
        if sys.platform.startswith("linux"):
            # V4L2 exposes devices as files, which lets us tell "missing" from "forbidden"
            node = Path(f"/dev/video{index}")
            if not node.exists():
                raise DeviceNotFound(f"no video device at {node}")
            if not os.access(node, os.R_OK | os.W_OK):
                raise PermissionDenied(f"no access to {node}")
        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"device {index} could not be opened")
        try:
            width, height = resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        except cv2.error as exc:
            cap.release()
            raise DeviceUnavailable(f"device {index} rejected configuration: {exc}") from exc
        return cap

    def read_frame(self, handle: Any) -> Optional[Any]:
        ok, frame = handle.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self, handle: Any) -> None:
        handle.release()


@dataclass
class CameraSession:
    """One open device stream."""

    handle: Any = field(repr=False)
    device_index: int
    facing: CameraFacing
    resolution: Resolution
    degraded: bool = False
    closed: bool = False

    @property
    def active_tracks(self) -> int:
        return 0 if self.closed else 1


class CameraResource:
    """Acquire, sample and release a camera device."""

    def __init__(
        self,
        backend: Any = None,
        *,
        environment_index: Optional[int] = None,
        user_index: Optional[int] = None,
        max_devices: Optional[int] = None,
        jpeg_quality: Optional[int] = None,
    ) -> None:
        self.backend = backend or OpenCVBackend()
        self.environment_index = settings.CAMERA_ENVIRONMENT_INDEX if environment_index is None else environment_index
        self.user_index = settings.CAMERA_USER_INDEX if user_index is None else user_index
        self.max_devices = settings.CAMERA_MAX_DEVICES if max_devices is None else max_devices
        self.jpeg_quality = jpeg_quality or settings.CAMERA_JPEG_QUALITY

    def _candidate_indices(self, facing: CameraFacing) -> List[int]:
        preferred = self.environment_index if facing == CameraFacing.ENVIRONMENT else self.user_index
        order = [preferred]
        for idx in range(max(self.max_devices, preferred + 1)):
            if idx not in order:
                order.append(idx)
        return order

    async def open(
        self,
        facing: CameraFacing = CameraFacing.ENVIRONMENT,
        resolution: Optional[Resolution] = None,
    ) -> CameraSession:
        """Open the device matching ``facing``, or any device when it is missing.

        Falling back to another device is a degradation, not an error.  The
        error raised when nothing opens is the most actionable one seen:
        permission problems win over busy devices, which win over missing ones.
        """
        facing = CameraFacing(facing)
        resolution = resolution or (settings.CAMERA_WIDTH, settings.CAMERA_HEIGHT)
        candidates = self._candidate_indices(facing)
        errors: List[DeviceError] = []
        for idx in candidates:
            pending = asyncio.ensure_future(asyncio.to_thread(self.backend.open_device, idx, resolution))
            try:
                handle = await asyncio.shield(pending)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; release whatever it acquires.
                pending.add_done_callback(self._release_abandoned)
                raise
            except DeviceError as exc:
                logger.debug("[camera] device %s unavailable: %s", idx, exc)
                errors.append(exc)
                continue
            degraded = idx != candidates[0]
            if degraded:
                logger.warning("[camera] %s camera unavailable; using device %s", facing.value, idx)
            logger.info("[camera] opened device=%s facing=%s resolution=%sx%s", idx, facing.value, *resolution)
            sentry_breadcrumb("camera", "camera.opened", data={"device": idx, "degraded": degraded})
            return CameraSession(
                handle=handle,
                device_index=idx,
                facing=facing,
                resolution=resolution,
                degraded=degraded,
            )
        raise _most_actionable(errors)

    async def capture_frame(self, session: CameraSession, timeout: float = 0.0) -> bytes:
        """Sample one frame from ``session`` as JPEG bytes.

        ``timeout`` is how long to keep polling a device that has not
        rendered a frame yet; with the default of 0 a single read is made.
        Closing the session while waiting raises :class:`CaptureCancelled`.
        """
        if session.closed:
            raise NoActiveFrame("camera session is closed")
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            frame = await asyncio.to_thread(self.backend.read_frame, session.handle)
            # The handle may have been released while the read was in flight
            if session.closed:
                raise CaptureCancelled("camera closed while waiting for a frame")
            if frame is not None:
                break
            if time.monotonic() >= deadline:
                raise NoActiveFrame("no frame rendered yet")
            await asyncio.sleep(0.05)
            if session.closed:
                raise CaptureCancelled("camera closed while waiting for a frame")
        return await asyncio.to_thread(encode_jpeg, frame, self.jpeg_quality)

    def close(self, session: Optional[CameraSession]) -> None:
        """Stop the device behind ``session``.  Safe to call repeatedly."""
        if session is None or session.closed:
            return
        session.closed = True
        try:
            self.backend.release(session.handle)
        finally:
            logger.info("[camera] released device=%s", session.device_index)
            sentry_breadcrumb("camera", "camera.released", data={"device": session.device_index})

    def _release_abandoned(self, pending: "asyncio.Future[Any]") -> None:
        if pending.cancelled() or pending.exception() is not None:
            return
        self.backend.release(pending.result())
        logger.info("[camera] released device opened after cancellation")

    @asynccontextmanager
    async def session(
        self,
        facing: CameraFacing = CameraFacing.ENVIRONMENT,
        resolution: Optional[Resolution] = None,
    ) -> AsyncIterator[CameraSession]:
        opened = await self.open(facing, resolution)
        try:
            yield opened
        finally:
            self.close(opened)


def _most_actionable(errors: List[DeviceError]) -> DeviceError:
    for kind in (PermissionDenied, DeviceUnavailable):
        for exc in errors:
            if isinstance(exc, kind):
                return exc
    if errors:
        return errors[0]
    return DeviceNotFound("no camera devices configured")
