"""Capture normalisation.

Whatever the origin of a receipt image (a file picked from storage, an
HTTP upload or a frame sampled from the camera) the pipeline consumes a
single immutable :class:`CaptureSource`.  Camera frames have no
user-supplied name, so they get a synthetic one derived from the capture
instant.
"""

from __future__ import annotations

import datetime as dt
import itertools
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Union

from receipt_capture.utils.image_processing import sniff_mime_type

DEFAULT_FILENAME = "receipt"

# Disambiguates two captures landing on the same millisecond
_sequence = itertools.count()


@dataclass(frozen=True)
class CaptureSource:
    """One receipt image ready for analysis."""

    data: bytes = field(repr=False)
    filename: str
    mime_type: str
    created_at: dt.datetime

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_file(
        cls,
        raw: Union[str, Path, bytes, BinaryIO],
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> "CaptureSource":
        """Build a capture from a picked file.

        ``raw`` may be a path, the file's bytes or an open binary file.  When
        ``filename`` is not given it is taken from the path or file object.
        """
        if isinstance(raw, (str, Path)):
            path = Path(raw)
            data = path.read_bytes()
            filename = filename or path.name
        elif isinstance(raw, (bytes, bytearray)):
            data = bytes(raw)
        else:
            data = raw.read()
            filename = filename or Path(getattr(raw, "name", "") or "").name or None
        name = filename or DEFAULT_FILENAME
        return cls(
            data=data,
            filename=name,
            mime_type=mime_type or sniff_mime_type(data, name),
            created_at=dt.datetime.now(dt.timezone.utc),
        )

    @classmethod
    def from_camera_frame(cls, data: bytes, synthetic_name: Optional[str] = None) -> "CaptureSource":
        """Build a capture from an encoded camera frame (always JPEG)."""
        created_at = dt.datetime.now(dt.timezone.utc)
        return cls(
            data=bytes(data),
            filename=synthetic_name or camera_filename(created_at),
            mime_type="image/jpeg",
            created_at=created_at,
        )


def camera_filename(when: dt.datetime) -> str:
    """``receipt-<epoch millis>-<seq>.jpg``; unique per capture instant."""
    millis = int(when.timestamp() * 1000)
    return f"receipt-{millis}-{next(_sequence)}.jpg"
