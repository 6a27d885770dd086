"""Enumeration types used throughout the receipt capture pipeline.

Enumerations make it easier to constrain the values that can be
passed between the coordinator, the camera layer and the API.  When
modifying these enums update any corresponding Pydantic schemas so
that new values are accepted where appropriate.
"""

from enum import Enum


class PipelineState(str, Enum):
    """States of the ingestion coordinator."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    READY = "ready"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    """What a coordinator call reports back to the presentation layer."""

    SAVED = "saved"
    PARTIAL = "partial"
    FAILED = "failed"
    VALIDATION = "validation"
    BUSY = "busy"
    PENDING = "pending"


class CameraFacing(str, Enum):
    """Preferred camera, mirroring the browser ``facingMode`` values."""

    ENVIRONMENT = "environment"
    USER = "user"
