"""Image utilities for captured receipts.

Camera frames arrive from OpenCV as BGR ``numpy`` arrays; they are
converted to RGB and encoded as JPEG through Pillow at a fixed quality
factor.  File-picked captures keep their original bytes and only have
their mime type detected.
"""

from __future__ import annotations

import mimetypes
from io import BytesIO
from typing import Any, Optional

import cv2
from PIL import Image, UnidentifiedImageError

# Pillow format name -> mime type for the formats receipts arrive in
_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "HEIF": "image/heic",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

DEFAULT_MIME = "application/octet-stream"


def encode_jpeg(frame: Any, quality: int = 90) -> bytes:
    """Encode an OpenCV BGR frame as JPEG bytes.

    :param frame: ``numpy`` array as returned by ``cv2.VideoCapture.read``
    :param quality: JPEG quality factor (1-95)
    :returns: JPEG encoded bytes
    """
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    img = Image.fromarray(rgb)
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def sniff_mime_type(data: bytes, filename: Optional[str] = None) -> str:
    """Best guess at the mime type of ``data``.

    Pillow's format detection wins; the filename extension is the
    fallback; ``application/octet-stream`` is the last resort.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            mime = _FORMAT_MIME.get((img.format or "").upper())
            if mime:
                return mime
    except (UnidentifiedImageError, OSError, ValueError):
        pass
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    return DEFAULT_MIME


def extension_for_mime(mime_type: Optional[str]) -> Optional[str]:
    """Return a file extension (without dot) for ``mime_type``."""
    if not mime_type:
        return None
    if mime_type == "image/jpeg":
        return "jpg"
    ext = mimetypes.guess_extension(mime_type)
    return ext.lstrip(".") if ext else None
