"""Exception hierarchy for the capture -> analyze -> persist pipeline.

Every failure the pipeline can hit is one of four families:

* ``DeviceError`` - camera permission or availability problems; the user
  can fix these (grant access, plug in a camera).
* ``TransportError`` - the recognition service could not be reached at
  all.  Remediation is "check the server", so it is kept apart from...
* ``RecognitionError`` - ...the service answered but reported a failure.
  Its diagnostic body is surfaced verbatim.
* ``PersistenceError`` - the image or the relational rows could not be
  stored.  ``ItemInsertError`` is the soft case: the receipt header exists.

Each exception carries a ``user_message`` which is the text shown to the
user when the coordinator maps the error to a notification.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from receipt_capture.models.schemas import PersistedReceipt


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None) -> None:
        self.detail = message or self.default_message
        super().__init__(self.detail)

    @property
    def user_message(self) -> str:
        return self.default_message


# ---------------------------------------------------------------------------
# Camera


class DeviceError(PipelineError):
    """Camera could not be used."""

    @property
    def user_message(self) -> str:
        return f"Unable to access camera: {self.detail}"


class PermissionDenied(DeviceError):
    @property
    def user_message(self) -> str:
        return "Camera permission denied. Please enable camera access."


class DeviceNotFound(DeviceError):
    @property
    def user_message(self) -> str:
        return "No camera found on this device."


class DeviceUnavailable(DeviceError):
    pass


class NoActiveFrame(DeviceError):
    """The device is open but has not produced a frame yet."""

    @property
    def user_message(self) -> str:
        return "Camera is not ready yet. Please try again."


class CaptureCancelled(PipelineError):
    """The camera session was closed while a frame was being awaited.

    Not a failure: closing the camera is a user action.
    """

    default_message = "Camera closed"


# ---------------------------------------------------------------------------
# Recognition service


class TransportError(PipelineError):
    """Recognition service unreachable."""

    default_message = "Cannot connect to API server"


class RecognitionUnreachable(TransportError):
    pass


class RecognitionTimeout(TransportError):
    default_message = "Analysis timed out. Please try again."


class RecognitionError(PipelineError):
    """Recognition service reachable but returned a failure."""


class BadResponse(RecognitionError):
    """Non-success status, or a success body that is not a JSON object."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"recognition service returned {status_code}: {body}")

    @property
    def user_message(self) -> str:
        return f"Analysis failed: {self.body or 'Server error'}"


# ---------------------------------------------------------------------------
# Persistence


class PersistenceError(PipelineError):
    @property
    def user_message(self) -> str:
        return f"Failed to save receipt: {self.detail}"


class BlobStoreError(PersistenceError):
    """Image bytes could not be written; nothing was persisted."""


class HeaderInsertError(PersistenceError):
    """Receipt row insert failed after the image was stored."""

    def __init__(self, message: str, orphaned_key: str) -> None:
        self.orphaned_key = orphaned_key
        super().__init__(message)


class ItemInsertError(PersistenceError):
    """Line item insert failed; the receipt header is kept."""

    def __init__(self, message: str, partial: "PersistedReceipt") -> None:
        self.partial = partial
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "Receipt saved, but its line items could not be saved."


# ---------------------------------------------------------------------------
# Identity


class NotAuthenticated(PipelineError):
    default_message = "Not authenticated"
