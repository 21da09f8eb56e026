"""Inventory notifications (write-only side effects of stock events)."""
import enum

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, Enum, ForeignKey
from datetime import datetime

from mdrrmo_api.database import Base


class NotificationType(str, enum.Enum):
    LOW_STOCK = "LOW_STOCK"
    EXPIRING_SOON = "EXPIRING_SOON"
    MAINTENANCE_DUE = "MAINTENANCE_DUE"
    DEPLOYMENT_OVERDUE = "DEPLOYMENT_OVERDUE"
    EQUIPMENT_RETURN = "EQUIPMENT_RETURN"
    EQUIPMENT_ISSUE = "EQUIPMENT_ISSUE"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class InventoryNotification(Base):
    __tablename__ = "inventory_notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    priority = Column(Enum(NotificationPriority), nullable=False, default=NotificationPriority.MEDIUM)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=True, index=True)
    deployment_id = Column(Integer, ForeignKey("deployments.id"), nullable=True, index=True)
    # Recipient; null means every admin
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    seen = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    deleted_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self):
        return f"<InventoryNotification {self.type} priority={self.priority}>"
