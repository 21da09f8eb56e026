"""Serialized unit schemas."""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from mdrrmo_api.models.serialized_item import SerializedItemStatus


class SerializedItemResponse(BaseModel):
    id: int
    serial_number: str
    inventory_item_id: int
    batch_id: int
    status: SerializedItemStatus
    condition_notes: Optional[str] = None
    last_maintenance_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnitStatusUpdate(BaseModel):
    status: SerializedItemStatus
    notes: Optional[str] = None


class SerializedItemHistoryResponse(BaseModel):
    id: int
    serialized_item_id: int
    deployment_id: Optional[int] = None
    old_status: Optional[SerializedItemStatus] = None
    new_status: SerializedItemStatus
    old_condition: Optional[str] = None
    new_condition: Optional[str] = None
    notes: Optional[str] = None
    changed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
