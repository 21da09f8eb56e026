"""Inventory item schemas for request/response validation."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from mdrrmo_api.models.inventory import ItemCondition


class InventoryItemCreate(BaseModel):
    """Schema for creating an inventory item. Stock always starts at zero."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: int
    min_stock_level: int = Field(0, ge=0)
    unit_of_measure: str = Field("pcs", max_length=50)
    is_returnable: Optional[bool] = None
    condition: ItemCondition = ItemCondition.NEW
    location: str = Field("Warehouse", max_length=255)
    is_deployable: bool = True
    last_maintenance_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    notes: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    """Schema for updating an inventory item (all fields optional, no stock field)."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    min_stock_level: Optional[int] = Field(None, ge=0)
    unit_of_measure: Optional[str] = Field(None, max_length=50)
    is_returnable: Optional[bool] = None
    condition: Optional[ItemCondition] = None
    location: Optional[str] = Field(None, max_length=255)
    is_deployable: Optional[bool] = None
    is_active: Optional[bool] = None
    last_maintenance_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    notes: Optional[str] = None


class InventoryItemResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category_id: int
    category_name: Optional[str] = None
    category_type: Optional[str] = None
    quantity_in_stock: int
    min_stock_level: int
    is_low_stock: bool
    unit_of_measure: str
    is_returnable: Optional[bool] = None
    condition: Optional[ItemCondition] = None
    location: str
    is_deployable: bool
    is_active: bool
    last_maintenance_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LedgerCheckResponse(BaseModel):
    """Result of comparing the stored stock counter against its event history."""

    item_id: int
    quantity_in_stock: int
    received: int
    outstanding_bulk: int
    units_out_of_stock: int
    expected: int
    consistent: bool


class StockTransactionResponse(BaseModel):
    id: int
    item_id: int
    adjustment: int
    previous_quantity: int
    new_quantity: int
    reason: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    performed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
