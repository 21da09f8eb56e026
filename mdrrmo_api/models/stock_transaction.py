"""Audit trail for every ``quantity_in_stock`` mutation."""

from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from mdrrmo_api.database import Base


class StockTransaction(Base):
    __tablename__ = "stock_transactions"

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    adjustment = Column(Integer, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    reason = Column(String(255))
    reference_type = Column(String(50))  # batch_receipt, batch_update, batch_delete, batch_restore, deployment, return, unit_status
    reference_id = Column(Integer)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<StockTransaction {self.id} item={self.item_id} adj={self.adjustment}>"
