"""Client for the remote receipt recognition service.

The service is opaque: we POST the image as a multipart upload to
``<RECOGNITION_API_URL>/analyze-receipt`` and get JSON back whose field
names match :class:`RecognitionResult`.  Nothing guarantees that the
JSON actually follows that shape, so parsing is tolerant: fields with
the wrong type are treated as absent, numeric strings are accepted, and
absent numbers stay ``None`` rather than becoming ``0``.

Failures are split three ways because the remediation differs:

* the request timed out                 -> ``RecognitionTimeout``
* the server could not be reached       -> ``RecognitionUnreachable``
* the server answered with a non-2xx    -> ``BadResponse`` (raw body kept)

No retries are attempted here.  A retry is the user re-submitting the
capture through the coordinator.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from receipt_capture.core.config import settings
from receipt_capture.core.exceptions import BadResponse, RecognitionTimeout, RecognitionUnreachable
from receipt_capture.core.observability import log_event
from receipt_capture.models.schemas import LineItem, RecognitionResult
from receipt_capture.services.capture import CaptureSource
from receipt_capture.utils.helpers import coerce_number, coerce_text

logger = logging.getLogger(__name__)


def parse_line_items(raw: Any) -> List[LineItem]:
    if not isinstance(raw, list):
        return []
    items: List[LineItem] = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            continue
        name = coerce_text(entry.get("name"))
        if name is None:
            # A nameless row cannot be shown or stored
            logger.debug("[recognition] dropping line item without name: %r", entry)
            continue
        items.append(
            LineItem(
                name=name,
                quantity=coerce_number(entry.get("quantity")),
                price=coerce_number(entry.get("price")),
            )
        )
    return items


def parse_recognition_payload(payload: Dict[str, Any], default_category: Optional[str] = None) -> RecognitionResult:
    """Map a decoded JSON object onto :class:`RecognitionResult`."""
    category = coerce_text(payload.get("category")) or default_category or settings.DEFAULT_CATEGORY
    currency = coerce_text(payload.get("currency"))
    return RecognitionResult(
        merchant=coerce_text(payload.get("merchant")),
        date=coerce_text(payload.get("date")),
        total=coerce_number(payload.get("total")),
        currency=currency.upper() if currency else None,
        category=category,
        items=parse_line_items(payload.get("items")),
    )


class RecognitionClient:
    """Send captures to the recognition service and parse its answers."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        field_name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.RECOGNITION_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.RECOGNITION_TIMEOUT_SECONDS
        self.field_name = field_name or settings.RECOGNITION_UPLOAD_FIELD
        self._transport = transport

    @property
    def analyze_url(self) -> str:
        return f"{self.base_url}/analyze-receipt"

    async def analyze(self, capture: CaptureSource) -> RecognitionResult:
        log_event(f"[UPLOAD] Starting OCR analysis for file: {capture.filename}, API URL: {self.base_url}")
        files = {self.field_name: (capture.filename, capture.data, capture.mime_type)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.analyze_url, files=files)
        except httpx.TimeoutException as exc:
            log_event(f"[UPLOAD] OCR Exception: {exc!r} | Error Type: Timeout")
            raise RecognitionTimeout(str(exc) or "request timed out") from exc
        except httpx.TransportError as exc:
            log_event(f"[UPLOAD] OCR Exception: {exc!r} | Error Type: Network")
            raise RecognitionUnreachable(str(exc) or "connection failed") from exc

        log_event(f"[UPLOAD] API Response Status: {response.status_code} {response.reason_phrase}")

        if not response.is_success:
            body = response.text
            log_event(f"[UPLOAD] OCR API Error ({response.status_code}): {body}")
            raise BadResponse(response.status_code, body)

        try:
            payload = response.json()
        except ValueError as exc:
            raise BadResponse(response.status_code, response.text) from exc
        if not isinstance(payload, dict):
            raise BadResponse(response.status_code, response.text)

        result = parse_recognition_payload(payload)
        log_event(f"[UPLOAD] OCR Success - Merchant: {result.merchant}, Total: {result.total}")
        return result
