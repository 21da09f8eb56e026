"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .user import UserFactory, AdminUserFactory
from .inventory import CategoryFactory, InventoryItemFactory, ReturnableItemFactory
from .batch import BatchFactory, ExpiringBatchFactory
from .deployment import BulkDeploymentFactory, SerializedDeploymentFactory

__all__ = [
    "UserFactory",
    "AdminUserFactory",
    # Inventory
    "CategoryFactory",
    "InventoryItemFactory",
    "ReturnableItemFactory",
    # Batches
    "BatchFactory",
    "ExpiringBatchFactory",
    # Deployments
    "BulkDeploymentFactory",
    "SerializedDeploymentFactory",
]
