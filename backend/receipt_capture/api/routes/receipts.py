"""API routes for receipt ingestion and retrieval."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from receipt_capture.api.dependencies import get_db_session, get_persistence_gateway, get_recognition_client
from receipt_capture.core.config import settings
from receipt_capture.core.exceptions import RecognitionError, RecognitionTimeout, TransportError
from receipt_capture.core.observability import sentry_set_tags
from receipt_capture.core.security import get_owner_id
from receipt_capture.models.enums import OutcomeKind
from receipt_capture.models.schemas import IngestionOutcome, ReceiptRead
from receipt_capture.models.tables import Receipt
from receipt_capture.services.ingestion_service import IngestionCoordinator
from receipt_capture.services.persistence_service import PersistenceGateway
from receipt_capture.services.recognition_service import RecognitionClient

router = APIRouter(prefix="/receipts", tags=["receipts"])


def _status_for(outcome: IngestionOutcome, error: Exception | None) -> int:
    if outcome.kind in (OutcomeKind.SAVED, OutcomeKind.PARTIAL):
        return status.HTTP_201_CREATED
    if outcome.kind == OutcomeKind.BUSY:
        return status.HTTP_409_CONFLICT
    if outcome.kind == OutcomeKind.VALIDATION:
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, RecognitionTimeout):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(error, (TransportError, RecognitionError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post("/ingest", response_model=IngestionOutcome)
async def ingest_receipt(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    recognition: RecognitionClient = Depends(get_recognition_client),
    persistence: PersistenceGateway = Depends(get_persistence_gateway),
):
    """Analyze an uploaded receipt image and save the result.

    The response body is the coordinator outcome.  A partial save (header
    stored, items not) is still ``201`` with ``kind == "partial"``.
    """
    # Check file type
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty upload payload")
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB")

    sentry_set_tags({"owner_id": owner_id})
    async with IngestionCoordinator(owner_id, recognition=recognition, persistence=persistence) as coordinator:
        coordinator.select_file(contents, filename=file.filename, mime_type=file.content_type)
        outcome = await coordinator.analyze()
        code = _status_for(outcome, coordinator.last_error)
    return JSONResponse(status_code=code, content=outcome.model_dump(mode="json"))


@router.get("/{receipt_id}", response_model=ReceiptRead)
async def get_receipt(
    receipt_id: str,
    db: AsyncSession = Depends(get_db_session),
    owner_id: str = Depends(get_owner_id),
) -> ReceiptRead:
    """Return a saved receipt with its line items, if the caller owns it."""
    if not receipt_id.isdigit():
        raise HTTPException(status_code=400, detail="Invalid receipt id")
    result = await db.execute(
        select(Receipt)
        .options(selectinload(Receipt.items))
        .where(Receipt.id == int(receipt_id), Receipt.owner_id == owner_id)
    )
    receipt = result.scalar_one_or_none()
    if receipt is None:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return ReceiptRead.model_validate(receipt, from_attributes=True)
