from mdrrmo_api.models.user import User
from mdrrmo_api.models.category import Category, CategoryType
from mdrrmo_api.models.inventory import InventoryItem, ItemCondition
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemHistory, SerializedItemStatus
from mdrrmo_api.models.deployment import (
    Deployment,
    DeploymentNote,
    DeploymentStatus,
    DeploymentType,
    NoteType,
    ReturnCondition,
    SerialItemDeployment,
)
from mdrrmo_api.models.notification import InventoryNotification, NotificationPriority, NotificationType
from mdrrmo_api.models.stock_transaction import StockTransaction

__all__ = [
    "User",
    "Category",
    "CategoryType",
    "InventoryItem",
    "ItemCondition",
    "Batch",
    "SerializedItem",
    "SerializedItemHistory",
    "SerializedItemStatus",
    "Deployment",
    "DeploymentNote",
    "DeploymentStatus",
    "DeploymentType",
    "NoteType",
    "ReturnCondition",
    "SerialItemDeployment",
    "InventoryNotification",
    "NotificationPriority",
    "NotificationType",
    "StockTransaction",
]
