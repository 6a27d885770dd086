"""SQLAlchemy ORM models for persisted receipts.

A persisted receipt is two tables: the header row in ``receipts`` and
its line items in ``receipt_items``.  Item rows reference the header by
its generated id, so the header is always inserted first.  ``file_path``
holds the object storage key of the source image.

If you extend or modify these models call the ``init_db`` helper during
development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from receipt_capture.core.database import Base


class Receipt(Base):
    """Receipt header recognised from a stored image."""

    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    merchant = Column(String, nullable=True)
    purchase_at = Column(Date, nullable=True)
    total = Column(Float, nullable=True)
    currency = Column(String(8), nullable=True)
    category = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    items = relationship("ReceiptItem", back_populates="receipt", cascade="all, delete-orphan")


class ReceiptItem(Base):
    """Individual line item belonging to a receipt."""

    __tablename__ = "receipt_items"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    quantity = Column(Float, nullable=True)
    price = Column(Float, nullable=True)

    receipt = relationship("Receipt", back_populates="items")
