"""
Spreadsheet import of inventory rows.

The first sheet of an .xlsx workbook is read with openpyxl; the first row is
the header. Each data row finds or creates its category and item and, for a
positive quantity, receives a batch through the normal receipt path. Rows
are committed one at a time and a failing row never affects the others.

Recognised columns: name, category, type, description, min_stock_level,
unit_of_measure, condition, location, is_deployable, is_returnable,
quantity, supplier, expiry_date, funding_source, cost, batch_notes, notes.
"""

import io
import logging
import zipfile
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import APIException, ValidationError
from mdrrmo_api.models.category import Category, CategoryType
from mdrrmo_api.models.inventory import InventoryItem, ItemCondition
from mdrrmo_api.services.batch_service import receive_batch
from mdrrmo_api.services.cache_service import CacheService, INVENTORY_PATTERNS
from mdrrmo_api.services.notification_service import notify_low_stock
from mdrrmo_api.services.stock_ledger import lock_item

logger = logging.getLogger(__name__)


class ImportResult(BaseModel):
    success: bool
    total_rows: int
    imported_count: int
    error_count: int
    imported: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]


class InventoryImportRow(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=255)
    type: Optional[str] = None
    description: Optional[str] = None
    min_stock_level: int = Field(0, ge=0)
    unit_of_measure: Optional[str] = None
    condition: Optional[ItemCondition] = None
    location: Optional[str] = None
    is_deployable: Optional[bool] = None
    is_returnable: Optional[bool] = None
    quantity: Optional[int] = Field(None, ge=0)
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None
    funding_source: Optional[str] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    batch_notes: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("name", "category", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("expiry_date", mode="before")
    @classmethod
    def coerce_excel_date(cls, v):
        # Excel date cells arrive as datetimes
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("condition", mode="before")
    @classmethod
    def upper_condition(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def category_type(self) -> CategoryType:
        """Unknown or missing types fall back to SUPPLIES."""
        try:
            return CategoryType((self.type or "").strip().upper())
        except ValueError:
            return CategoryType.SUPPLIES


def _header_key(value: Any) -> str:
    return str(value or "").strip().lower().replace(" ", "_")


def read_rows(content: bytes) -> List[Tuple[int, Dict[str, Any]]]:
    """
    Read the first sheet into dicts keyed by normalised header names.

    Each record is paired with its row number in the sheet, so blank rows
    that are skipped do not shift the numbers reported back to the user.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ValidationError(f"Uploaded file is not a valid .xlsx workbook: {e}") from None

    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return []
        keys = [_header_key(cell) for cell in header]

        records = []
        # Row 1 is the header
        for row_number, values in enumerate(rows, start=2):
            if values is None or all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                continue
            record = {}
            for key, value in zip(keys, values):
                if not key:
                    continue
                if isinstance(value, str):
                    value = value.strip() or None
                record[key] = value
            records.append((row_number, record))
        return records
    finally:
        workbook.close()


async def _find_or_create_category(db: AsyncSession, row: InventoryImportRow) -> Category:
    category = (await db.execute(
        select(Category).where(Category.name == row.category)
    )).scalar_one_or_none()
    if category is None:
        category = Category(
            name=row.category,
            type=row.category_type,
            description=f"Auto-created from import for {row.name}",
        )
        db.add(category)
        await db.flush()
    elif category.deleted_at is not None:
        category.deleted_at = None
    return category


async def _upsert_item(db: AsyncSession, row: InventoryImportRow, category: Category) -> InventoryItem:
    item = (await db.execute(
        select(InventoryItem).where(InventoryItem.name == row.name, InventoryItem.deleted_at.is_(None))
    )).unique().scalar_one_or_none()

    if item is None:
        item = InventoryItem(
            name=row.name,
            description=row.description,
            category_id=category.id,
            quantity_in_stock=0,
            min_stock_level=row.min_stock_level,
            unit_of_measure=row.unit_of_measure or "pcs",
            is_returnable=row.is_returnable,
            condition=row.condition or ItemCondition.GOOD,
            location=row.location or "Warehouse",
            is_deployable=True if row.is_deployable is None else row.is_deployable,
            notes=row.notes,
        )
        db.add(item)
        await db.flush()
        return item

    item.category_id = category.id
    item.min_stock_level = row.min_stock_level
    if row.description:
        item.description = row.description
    if row.unit_of_measure:
        item.unit_of_measure = row.unit_of_measure
    if row.is_returnable is not None:
        item.is_returnable = row.is_returnable
    if row.condition:
        item.condition = row.condition
    if row.location:
        item.location = row.location
    if row.is_deployable is not None:
        item.is_deployable = row.is_deployable
    if row.notes:
        item.notes = row.notes
    await db.flush()
    return item


async def _import_row(db: AsyncSession, row: InventoryImportRow, actor_id: Optional[int]) -> Dict[str, Any]:
    category = await _find_or_create_category(db, row)
    item = await _upsert_item(db, row, category)

    if row.quantity:
        receipt = await receive_batch(
            db,
            inventory_item_id=item.id,
            quantity=row.quantity,
            actor_id=actor_id,
            expiry_date=row.expiry_date,
            supplier=row.supplier or "Unknown",
            funding_source=row.funding_source,
            cost=row.cost,
            notes=row.batch_notes,
        )
        item = await lock_item(db, item.id)
        await notify_low_stock(db, item, actor_id)
        await db.commit()
        return {
            "name": item.name,
            "inventory_item_id": item.id,
            "batch_number": receipt.batch.batch_number,
            "quantity": row.quantity,
            "serialized": receipt.is_serialized,
        }

    item = await lock_item(db, item.id)
    await notify_low_stock(db, item, actor_id)
    await db.commit()
    return {"name": item.name, "inventory_item_id": item.id, "batch_number": None, "quantity": 0, "serialized": False}


async def import_inventory_workbook(
    db: AsyncSession,
    content: bytes,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> ImportResult:
    """Import every row of the workbook, collecting per-row failures."""
    records = read_rows(content)
    imported: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for row_number, record in records:
        name = record.get("name")
        try:
            row = InventoryImportRow.model_validate(record)
            summary = await _import_row(db, row, actor_id)
            imported.append({"row": row_number, **summary})
        except PydanticValidationError as e:
            await db.rollback()
            message = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            errors.append({"row": row_number, "name": name, "error": message})
        except APIException as e:
            await db.rollback()
            errors.append({"row": row_number, "name": name, "error": e.detail})
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"Import row {row_number} failed: {type(e).__name__}")
            errors.append({"row": row_number, "name": name, "error": "Database error while importing row"})

    logger.info(f"Inventory import: {len(imported)} rows imported, {len(errors)} failed")
    if cache and imported:
        await cache.invalidate(*INVENTORY_PATTERNS)

    return ImportResult(
        success=not errors,
        total_rows=len(records),
        imported_count=len(imported),
        error_count=len(errors),
        imported=imported,
        errors=errors,
    )
