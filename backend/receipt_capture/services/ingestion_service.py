"""Ingestion coordinator: capture -> analyze -> persist.

One coordinator instance drives one user's upload flow.  It owns the
single piece of process state (``PipelineState``), the pending capture,
the last recognition result and at most one open camera session.  There
is no module-level state; callers create a coordinator and pass it
around.

State machine::

    IDLE --analyze--> ANALYZING --ok--> READY --> PERSISTING --ok--> DONE
                          |                           |
                          +----------error------------+--> FAILED

* ``READY`` chains straight into ``PERSISTING``; there is no review gate.
* Only one capture may be in flight.  Calls made while ``ANALYZING`` or
  ``PERSISTING`` get a ``busy`` outcome and start nothing.
* ``FAILED`` is left only through an explicit user action: selecting a
  new capture or ``retry()``.
* The recognition result stays visible after persisting, whether or not
  saving worked.

Every public method returns an :class:`IngestionOutcome` instead of
raising: pipeline errors are mapped to user-facing notifications here.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from receipt_capture.core.exceptions import CaptureCancelled, DeviceError, ItemInsertError, PipelineError
from receipt_capture.core.observability import sentry_breadcrumb, sentry_capture
from receipt_capture.models.enums import CameraFacing, OutcomeKind, PipelineState
from receipt_capture.models.schemas import IngestionOutcome, PersistedReceipt, RecognitionResult
from receipt_capture.services.camera import CameraResource, CameraSession, Resolution
from receipt_capture.services.capture import CaptureSource
from receipt_capture.services.persistence_service import PersistenceGateway
from receipt_capture.services.recognition_service import RecognitionClient

logger = logging.getLogger(__name__)

MSG_NO_CAPTURE = "Please select a receipt image first"
MSG_BUSY = "A receipt is already being processed"
MSG_SAVED = "Receipt saved successfully!"
MSG_SELECTED = "Receipt image selected"
MSG_CAMERA_READY = "Camera ready"
MSG_CAMERA_CLOSED = "Camera closed"
MSG_NO_CAMERA_SESSION = "Open the camera before taking a photo"
MSG_UNREADABLE_FILE = "Could not read the selected file"
MSG_RETRY_FIRST = "Select a new receipt image or retry the last one"
MSG_ALREADY_SAVED = "This receipt has already been saved. Select a new image to add another."
MSG_UNEXPECTED = "Something went wrong"

BUSY_STATES = frozenset({PipelineState.ANALYZING, PipelineState.PERSISTING})


class IngestionCoordinator:
    """Drive one upload flow for ``owner_id``."""

    def __init__(
        self,
        owner_id: str,
        recognition: Optional[RecognitionClient] = None,
        persistence: Optional[PersistenceGateway] = None,
        camera: Optional[CameraResource] = None,
    ) -> None:
        self.owner_id = owner_id
        self.recognition = recognition or RecognitionClient()
        self.persistence = persistence or PersistenceGateway()
        self._camera = camera
        self.state = PipelineState.IDLE
        self.capture: Optional[CaptureSource] = None
        self.result: Optional[RecognitionResult] = None
        self.receipt: Optional[PersistedReceipt] = None
        self.last_error: Optional[Exception] = None
        self.camera_session: Optional[CameraSession] = None
        # Bumped by close_camera(); an open that finishes under a newer generation was cancelled
        self._camera_generation = 0

    async def __aenter__(self) -> "IngestionCoordinator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.teardown()

    @property
    def camera(self) -> CameraResource:
        # Created on first use so file-only flows never touch OpenCV devices
        if self._camera is None:
            self._camera = CameraResource()
        return self._camera

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES

    # ------------------------------------------------------------------ helpers

    def _transition(self, new_state: PipelineState) -> None:
        if new_state == self.state:
            return
        logger.info("[ingest] owner=%s %s -> %s", self.owner_id, self.state.value, new_state.value)
        sentry_breadcrumb("ingest", f"ingest.{new_state.value}", data={"from": self.state.value})
        self.state = new_state

    def _outcome(self, kind: OutcomeKind, message: str, error: Optional[Exception] = None) -> IngestionOutcome:
        return IngestionOutcome(
            state=self.state,
            kind=kind,
            message=message,
            result=self.result,
            receipt=self.receipt,
            error=type(error).__name__ if error is not None else None,
        )

    def _busy(self) -> IngestionOutcome:
        logger.info("[ingest] owner=%s rejected: busy in %s", self.owner_id, self.state.value)
        return self._outcome(OutcomeKind.BUSY, MSG_BUSY)

    def _fail(self, exc: Exception, kind: OutcomeKind = OutcomeKind.FAILED) -> IngestionOutcome:
        self.last_error = exc
        self._transition(PipelineState.FAILED)
        if isinstance(exc, PipelineError):
            message = exc.user_message
            logger.warning("[ingest] owner=%s %s: %s", self.owner_id, type(exc).__name__, exc.detail)
        else:
            message = MSG_UNEXPECTED
            logger.exception("[ingest] owner=%s unexpected error", self.owner_id, exc_info=exc)
        if not isinstance(exc, DeviceError):
            sentry_capture(exc)
        return self._outcome(kind, message, error=exc)

    def _clear(self) -> None:
        self.capture = None
        self.result = None
        self.receipt = None
        self.last_error = None

    # ------------------------------------------------------------------ capture

    def select_capture(self, capture: CaptureSource) -> IngestionOutcome:
        """Make ``capture`` the pending input, discarding any stale result."""
        if self.busy:
            return self._busy()
        self._clear()
        self.capture = capture
        self._transition(PipelineState.IDLE)
        logger.info("[ingest] owner=%s selected %s (%s, %d bytes)", self.owner_id, capture.filename, capture.mime_type, capture.size)
        return self._outcome(OutcomeKind.PENDING, MSG_SELECTED)

    def select_file(self, raw: Any, filename: Optional[str] = None, mime_type: Optional[str] = None) -> IngestionOutcome:
        if self.busy:
            return self._busy()
        try:
            capture = CaptureSource.from_file(raw, filename=filename, mime_type=mime_type)
        except OSError as exc:
            logger.warning("[ingest] owner=%s could not read %r: %s", self.owner_id, raw, exc)
            return self._outcome(OutcomeKind.VALIDATION, MSG_UNREADABLE_FILE, error=exc)
        return self.select_capture(capture)

    async def open_camera(
        self,
        facing: CameraFacing = CameraFacing.ENVIRONMENT,
        resolution: Optional[Resolution] = None,
    ) -> IngestionOutcome:
        """Open a camera session; an already open session is closed first.

        ``close_camera()`` called while the device is still opening cancels
        the open: the late session is released instead of kept.
        """
        if self.busy:
            return self._busy()
        self.close_camera()
        generation = self._camera_generation
        try:
            session = await self.camera.open(facing, resolution)
        except DeviceError as exc:
            if generation != self._camera_generation:
                return self._outcome(OutcomeKind.PENDING, MSG_CAMERA_CLOSED)
            return self._fail(exc)
        if generation != self._camera_generation:
            self.camera.close(session)
            logger.info("[ingest] owner=%s camera closed while opening", self.owner_id)
            return self._outcome(OutcomeKind.PENDING, MSG_CAMERA_CLOSED)
        self.camera_session = session
        return self._outcome(OutcomeKind.PENDING, MSG_CAMERA_READY)

    async def capture_photo(self, timeout: float = 0.0) -> IngestionOutcome:
        """Sample the open camera into a new pending capture and release it.

        Closing the camera before a frame arrives leaves the state untouched.
        """
        if self.busy:
            return self._busy()
        session = self.camera_session
        if session is None or session.closed:
            return self._outcome(OutcomeKind.VALIDATION, MSG_NO_CAMERA_SESSION)
        try:
            data = await self.camera.capture_frame(session, timeout=timeout)
        except CaptureCancelled:
            logger.info("[ingest] owner=%s camera closed before a frame was taken", self.owner_id)
            return self._outcome(OutcomeKind.PENDING, MSG_CAMERA_CLOSED)
        except DeviceError as exc:
            return self._fail(exc)
        finally:
            if self.camera_session is session:
                self.close_camera()
            else:
                self.camera.close(session)
        return self.select_capture(CaptureSource.from_camera_frame(data))

    def close_camera(self) -> None:
        """Release the open camera session, if any.  Cancelling is not an error."""
        self._camera_generation += 1
        session, self.camera_session = self.camera_session, None
        if session is not None:
            self.camera.close(session)

    async def retake_photo(
        self,
        facing: CameraFacing = CameraFacing.ENVIRONMENT,
        resolution: Optional[Resolution] = None,
    ) -> IngestionOutcome:
        """Drop the current capture and result, then reopen the camera."""
        if self.busy:
            return self._busy()
        self._clear()
        self._transition(PipelineState.IDLE)
        return await self.open_camera(facing, resolution)

    def reset(self) -> IngestionOutcome:
        """Start over with nothing selected ("upload another")."""
        if self.busy:
            return self._busy()
        self._clear()
        self._transition(PipelineState.IDLE)
        return self._outcome(OutcomeKind.PENDING, MSG_NO_CAPTURE)

    def retry(self) -> IngestionOutcome:
        """Leave ``FAILED`` keeping the same capture pending."""
        if self.state != PipelineState.FAILED:
            return self._outcome(OutcomeKind.VALIDATION, f"Nothing to retry in state {self.state.value}")
        self.result = None
        self.receipt = None
        self.last_error = None
        self._transition(PipelineState.IDLE)
        if self.capture is None:
            return self._outcome(OutcomeKind.VALIDATION, MSG_NO_CAPTURE)
        return self._outcome(OutcomeKind.PENDING, MSG_SELECTED)

    def teardown(self) -> None:
        self.close_camera()

    # ------------------------------------------------------------------ pipeline

    async def analyze(self) -> IngestionOutcome:
        """Analyze the pending capture and, on success, persist it."""
        # Checked and claimed before the first await, so a concurrent call sees the busy state
        if self.busy:
            return self._busy()
        if self.state == PipelineState.FAILED:
            return self._outcome(OutcomeKind.VALIDATION, MSG_RETRY_FIRST)
        if self.state == PipelineState.DONE:
            return self._outcome(OutcomeKind.VALIDATION, MSG_ALREADY_SAVED)
        capture = self.capture
        if capture is None:
            return self._outcome(OutcomeKind.VALIDATION, MSG_NO_CAPTURE)

        self.result = None
        self.receipt = None
        self.last_error = None
        self._transition(PipelineState.ANALYZING)
        try:
            self.result = await self.recognition.analyze(capture)
        except Exception as exc:
            return self._fail(exc)
        self._transition(PipelineState.READY)
        return await self._persist(capture, self.result)

    async def _persist(self, capture: CaptureSource, result: RecognitionResult) -> IngestionOutcome:
        self._transition(PipelineState.PERSISTING)
        try:
            self.receipt = await self.persistence.persist(capture, result, self.owner_id)
        except ItemInsertError as exc:
            self.receipt = exc.partial
            return self._fail(exc, kind=OutcomeKind.PARTIAL)
        except Exception as exc:
            return self._fail(exc)
        self._transition(PipelineState.DONE)
        return self._outcome(OutcomeKind.SAVED, MSG_SAVED)
