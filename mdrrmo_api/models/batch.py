"""Batch model: one receipt of stock for an inventory item."""

from datetime import datetime

from sqlalchemy import Column, String, DateTime, Date, Text, Integer, Numeric, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from mdrrmo_api.database import Base


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    batch_number = Column(String(100), unique=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    # Receipt
    received_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    expiry_date = Column(Date, nullable=True, index=True)

    # Supplier & funding
    supplier = Column(String(255), nullable=True)
    funding_source = Column(String(255), nullable=True)
    cost = Column(Numeric(10, 2), nullable=True)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    item = relationship("InventoryItem", lazy="joined", innerjoin=True)

    def __repr__(self):
        return f"<Batch {self.batch_number} qty={self.quantity}>"
