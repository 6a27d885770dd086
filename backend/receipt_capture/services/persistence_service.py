"""Persist a recognised receipt: image blob, then header row, then item rows.

The three steps run strictly in sequence because each needs what the
previous one produced (the storage key, then the generated receipt id).
There is no transaction spanning object storage and the database and no
compensation:

1. Blob write fails      -> ``BlobStoreError``; nothing else is attempted.
2. Header insert fails   -> ``HeaderInsertError``; the blob stays behind
   (its key is carried on the error and logged) and is not deleted.
3. Item insert fails     -> ``ItemInsertError`` carrying the already
   persisted header.  Callers treat this as a partial success.

So a receipt row always points at a stored image, and item rows never
exist without their receipt row.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from receipt_capture.core import database
from receipt_capture.core.exceptions import BlobStoreError, HeaderInsertError, ItemInsertError
from receipt_capture.core.observability import sentry_breadcrumb
from receipt_capture.models.schemas import LineItem, PersistedReceipt, RecognitionResult
from receipt_capture.models.tables import Receipt, ReceiptItem
from receipt_capture.services.capture import CaptureSource
from receipt_capture.services.storage_service import BlobStore, build_storage_key
from receipt_capture.utils.helpers import parse_calendar_date

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """Store a capture and its recognition result for one owner."""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ) -> None:
        self.blob_store = blob_store or BlobStore()
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], AsyncSession]:
        # Resolved lazily so tests and init code can swap the module-level factory
        return self._session_factory or database.AsyncSessionLocal

    async def _store_blob(self, owner_id: str, capture: CaptureSource) -> str:
        # Keyed on the persist instant: a retried capture must not collide with its orphaned blob
        key = build_storage_key(owner_id, capture.filename, capture.mime_type)
        try:
            return await self.blob_store.put(key, capture.data, capture.mime_type)
        except BlobStoreError:
            raise
        except Exception as exc:
            raise BlobStoreError(str(exc)) from exc

    async def _insert_header(self, session: AsyncSession, owner_id: str, key: str, result: RecognitionResult) -> Receipt:
        purchase_at = parse_calendar_date(result.date)
        if result.date and purchase_at is None:
            logger.warning("[persist] unparseable receipt date %r stored as empty", result.date)
        receipt = Receipt(
            owner_id=owner_id,
            merchant=result.merchant,
            purchase_at=purchase_at,
            total=result.total,
            currency=result.currency,
            category=result.category,
            file_path=key,
        )
        session.add(receipt)
        await session.commit()
        return receipt

    async def _insert_items(self, session: AsyncSession, receipt_id: int, items: List[LineItem]) -> None:
        # One batch: either every row lands or none does
        session.add_all(
            [
                ReceiptItem(receipt_id=receipt_id, name=item.name, quantity=item.quantity, price=item.price)
                for item in items
            ]
        )
        await session.commit()

    async def persist(self, capture: CaptureSource, result: RecognitionResult, owner_id: str) -> PersistedReceipt:
        key = await self._store_blob(owner_id, capture)
        sentry_breadcrumb("persist", "persist.blob_stored", data={"key": key})

        async with self.session_factory() as session:
            try:
                receipt = await self._insert_header(session, owner_id, key, result)
            except Exception as exc:
                await session.rollback()
                logger.warning("[persist] header insert failed; orphaned blob key=%s: %s", key, exc)
                raise HeaderInsertError(str(exc), orphaned_key=key) from exc

            persisted = PersistedReceipt(
                id=receipt.id,
                owner_id=owner_id,
                merchant=result.merchant,
                purchase_at=receipt.purchase_at,
                total=result.total,
                currency=result.currency,
                category=result.category,
                file_path=key,
            )
            sentry_breadcrumb("persist", "persist.header_inserted", data={"receipt_id": receipt.id})
            if not result.items:
                return persisted

            try:
                await self._insert_items(session, receipt.id, result.items)
            except Exception as exc:
                await session.rollback()
                logger.warning("[persist] item insert failed for receipt_id=%s: %s", receipt.id, exc)
                raise ItemInsertError(str(exc), partial=persisted) from exc

        logger.info("[persist] saved receipt_id=%s items=%d key=%s", persisted.id, len(result.items), key)
        return persisted.model_copy(update={"items": list(result.items)})
