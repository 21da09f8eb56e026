"""Batch schemas."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from decimal import Decimal


class BatchCreate(BaseModel):
    """Receipt of stock. ``quantity`` is range-checked by the receipt service."""

    inventory_item_id: int
    quantity: int
    expiry_date: Optional[date] = None
    received_date: Optional[datetime] = None
    supplier: Optional[str] = Field(None, max_length=255)
    funding_source: Optional[str] = Field(None, max_length=255)
    cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class BatchUpdate(BaseModel):
    quantity: Optional[int] = None
    expiry_date: Optional[date] = None
    supplier: Optional[str] = Field(None, max_length=255)
    funding_source: Optional[str] = Field(None, max_length=255)
    cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class BatchResponse(BaseModel):
    id: int
    inventory_item_id: int
    batch_number: str
    quantity: int
    expiry_date: Optional[date] = None
    received_date: Optional[datetime] = None
    received_by: Optional[int] = None
    supplier: Optional[str] = None
    funding_source: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchReceiptResponse(BatchResponse):
    is_serialized: bool
    serial_numbers: list[str] = []
