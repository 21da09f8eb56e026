"""Response envelope shared by every endpoint."""

from pydantic import BaseModel
from typing import Any, Optional


class PageMeta(BaseModel):
    total: int
    page: int
    page_size: int


def envelope(data: Any = None, message: Optional[str] = None, meta: Optional[PageMeta] = None) -> dict:
    """Wrap a payload as ``{"success": true, ...}``."""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    if meta is not None:
        body["meta"] = meta.model_dump()
    return body
