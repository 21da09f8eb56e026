"""Spreadsheet import of inventory and batches."""

from fastapi import APIRouter, Depends, File, UploadFile
from typing import Annotated
import logging

from mdrrmo_api.api.deps import DbSession, Cache, require_permission
from mdrrmo_api.exceptions import ValidationError
from mdrrmo_api.models.user import User
from mdrrmo_api.schemas.common import envelope
from mdrrmo_api.security.rbac import Permission
from mdrrmo_api.services.import_service import import_inventory_workbook

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
XLSX_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/octet-stream",
}


@router.post("/inventory")
async def import_inventory(
    db: DbSession,
    cache: Cache,
    current_user: Annotated[User, Depends(require_permission(Permission.IMPORT_INVENTORY))],
    file: UploadFile = File(...),
):
    """Import items and batches from the first sheet of an .xlsx workbook."""
    filename = (file.filename or "").lower()
    if not filename.endswith(".xlsx") or (file.content_type and file.content_type not in XLSX_CONTENT_TYPES):
        raise ValidationError("Only .xlsx workbooks can be imported", field="file")

    content = await file.read()
    if not content:
        raise ValidationError("Uploaded file is empty", field="file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Uploaded file exceeds the 5 MB limit", field="file")

    logger.info(f"Inventory import started by user {current_user.id}: {file.filename}")
    result = await import_inventory_workbook(db, content, actor_id=current_user.id, cache=cache)
    message = (
        f"Imported {result.imported_count} of {result.total_rows} rows"
        + (f"; {result.error_count} failed" if result.error_count else "")
    )
    return envelope(result.model_dump(mode="json"), message=message)
