"""Serialized units and their condition history."""
import enum

from sqlalchemy import Column, String, DateTime, Text, Integer, Enum, ForeignKey
from datetime import datetime

from mdrrmo_api.database import Base


class SerializedItemStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    DEPLOYED = "DEPLOYED"
    MAINTENANCE = "MAINTENANCE"
    LOST = "LOST"
    DAMAGED = "DAMAGED"
    RETIRED = "RETIRED"
    PARTIAL_RETURN = "PARTIAL_RETURN"


class SerializedItem(Base):
    """One physically tracked unit minted from a batch."""

    __tablename__ = "serialized_items"

    id = Column(Integer, primary_key=True, index=True)
    serial_number = Column(String(150), unique=True, nullable=False)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)

    status = Column(Enum(SerializedItemStatus), nullable=False, default=SerializedItemStatus.AVAILABLE, index=True)
    condition_notes = Column(Text, nullable=True)

    last_maintenance_date = Column(DateTime, nullable=True)
    next_maintenance_date = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self):
        return f"<SerializedItem {self.serial_number} ({self.status})>"

    def append_notes(self, text: str | None) -> None:
        if not text:
            return
        self.condition_notes = f"{self.condition_notes}\n{text}" if self.condition_notes else text


class SerializedItemHistory(Base):
    __tablename__ = "serialized_item_history"

    id = Column(Integer, primary_key=True, index=True)
    serialized_item_id = Column(Integer, ForeignKey("serialized_items.id"), nullable=False, index=True)
    deployment_id = Column(Integer, ForeignKey("deployments.id"), nullable=True, index=True)
    old_status = Column(Enum(SerializedItemStatus), nullable=True)
    new_status = Column(Enum(SerializedItemStatus), nullable=False)
    old_condition = Column(String(20), nullable=True)
    new_condition = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
