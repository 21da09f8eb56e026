"""Inventory item model: the stock ledger row for one kind of equipment or supply."""
import enum

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from mdrrmo_api.database import Base


class ItemCondition(str, enum.Enum):
    NEW = "NEW"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    MAINTENANCE_REQUIRED = "MAINTENANCE_REQUIRED"


class InventoryItem(Base):
    """Inventory item. ``quantity_in_stock`` is the authoritative available count."""

    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity_in_stock >= 0", name="ck_inventory_items_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identification
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)

    # Stock levels
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=0)
    unit_of_measure = Column(String(50), nullable=False, default="pcs")

    # None means "decide from category and name"
    is_returnable = Column(Boolean, nullable=True)

    # Condition & maintenance
    condition = Column(Enum(ItemCondition), default=ItemCondition.NEW)
    last_maintenance_date = Column(DateTime, nullable=True)
    next_maintenance_date = Column(DateTime, nullable=True)

    # Location
    location = Column(String(255), nullable=False, default="Warehouse")

    # Status
    is_deployable = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)

    notes = Column(Text, nullable=True)

    # Audit
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    category = relationship("Category", lazy="joined", innerjoin=True)

    def __repr__(self):
        return f"<InventoryItem {self.id} - {self.name}>"

    @property
    def is_low_stock(self) -> bool:
        """Check if stock has fallen to or below the minimum level."""
        return (self.quantity_in_stock or 0) <= (self.min_stock_level or 0)
