"""Inventory categories. The category type drives unit-tracking decisions."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime

from mdrrmo_api.database import Base


class CategoryType(str, enum.Enum):
    EQUIPMENT = "EQUIPMENT"
    SUPPLIES = "SUPPLIES"
    RELIEF_GOODS = "RELIEF_GOODS"
    VEHICLES = "VEHICLES"
    COMMUNICATION_DEVICES = "COMMUNICATION_DEVICES"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(CategoryType), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self):
        return f"<Category {self.name} ({self.type})>"
