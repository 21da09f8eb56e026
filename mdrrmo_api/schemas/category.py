"""Category schemas."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from mdrrmo_api.models.category import CategoryType


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[CategoryType] = None
    description: Optional[str] = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    type: CategoryType
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
