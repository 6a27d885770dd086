"""Pydantic schemas for recognition results and persisted receipts.

``RecognitionResult`` mirrors the JSON returned by the recognition
service.  The service gives no schema guarantee, so every field except
``category`` and ``items`` is optional, and absence is kept as ``None``
rather than being defaulted to zero or an empty string: "the recognizer
found $0.00" and "the recognizer found nothing" must stay distinct.

``PersistedReceipt`` is what the persistence gateway hands back once the
image and the receipt header are stored.  API-facing read models live
here as well.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from receipt_capture.core.config import settings
from receipt_capture.models.enums import OutcomeKind, PipelineState


# ---------------------------------------------------------------------------
# Recognition output


class LineItem(BaseModel):
    """Individual line item on a receipt."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    quantity: Optional[float] = None
    price: Optional[float] = None


class RecognitionResult(BaseModel):
    """Structured receipt fields extracted by the recognition service."""

    merchant: Optional[str] = None
    date: Optional[str] = Field(default=None, description="Calendar date, no time component")
    total: Optional[float] = None
    currency: Optional[str] = None
    category: str = Field(default_factory=lambda: settings.DEFAULT_CATEGORY)
    items: List[LineItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Persistence


class PersistedReceipt(BaseModel):
    """Receipt header stored in the relational store."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    merchant: Optional[str] = None
    purchase_at: Optional[dt.date] = None
    total: Optional[float] = None
    currency: Optional[str] = None
    category: str
    file_path: str
    items: List[LineItem] = Field(default_factory=list)


class ReceiptRead(PersistedReceipt):
    created_at: dt.datetime


# ---------------------------------------------------------------------------
# Coordinator / API


class IngestionOutcome(BaseModel):
    """Result of a coordinator call, ready to be shown to the user."""

    state: PipelineState
    kind: OutcomeKind
    message: str
    result: Optional[RecognitionResult] = None
    receipt: Optional[PersistedReceipt] = None
    error: Optional[str] = Field(default=None, description="Exception class name when the call failed")


class LogMessage(BaseModel):
    message: str
