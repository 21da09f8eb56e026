"""Deployment records, per-unit links, and deployment notes."""
import enum

from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Boolean, Enum, ForeignKey, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime

from mdrrmo_api.database import Base


class DeploymentType(str, enum.Enum):
    EMERGENCY = "EMERGENCY"
    TRAINING = "TRAINING"
    MAINTENANCE = "MAINTENANCE"
    RELIEF_OPERATION = "RELIEF_OPERATION"


class DeploymentStatus(str, enum.Enum):
    DEPLOYED = "DEPLOYED"
    PARTIAL_RETURN = "PARTIAL_RETURN"
    RETURNED = "RETURNED"
    LOST = "LOST"
    DAMAGED = "DAMAGED"


class ReturnCondition(str, enum.Enum):
    GOOD = "GOOD"
    FAIR = "FAIR"
    DAMAGED = "DAMAGED"
    LOST = "LOST"


class NoteType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class Deployment(Base):
    """One send-out of stock, either a bulk quantity or a set of serialized units."""

    __tablename__ = "deployments"
    __table_args__ = (
        CheckConstraint("quantity_deployed > 0", name="ck_deployments_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    deployed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    deployed_to = Column(Integer, ForeignKey("users.id"), nullable=True)

    deployment_type = Column(Enum(DeploymentType), nullable=False, default=DeploymentType.EMERGENCY)
    incident_type = Column(String(100), nullable=True)
    quantity_deployed = Column(Integer, nullable=False)
    is_serialized = Column(Boolean, nullable=False, default=False)

    deployment_location = Column(String(255), nullable=False)
    deployment_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    expected_return_date = Column(DateTime, nullable=True, index=True)
    actual_return_date = Column(DateTime, nullable=True)

    status = Column(Enum(DeploymentStatus), nullable=False, default=DeploymentStatus.DEPLOYED, index=True)
    # Bulk deployments only; serialized deployments carry conditions on their links
    return_condition = Column(Enum(ReturnCondition), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    item = relationship("InventoryItem", lazy="joined", innerjoin=True)

    def __repr__(self):
        return f"<Deployment {self.id} item={self.inventory_item_id} ({self.status})>"


class SerialItemDeployment(Base):
    """Per-unit link between a deployment and a serialized item."""

    __tablename__ = "serial_item_deployments"
    __table_args__ = (
        UniqueConstraint("deployment_id", "serialized_item_id", name="uq_serial_item_deployment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    deployment_id = Column(Integer, ForeignKey("deployments.id"), nullable=False, index=True)
    serialized_item_id = Column(Integer, ForeignKey("serialized_items.id"), nullable=False, index=True)
    deployed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    returned_at = Column(DateTime, nullable=True)
    return_condition = Column(Enum(ReturnCondition), nullable=True)
    notes = Column(Text, nullable=True)

    serialized_item = relationship("SerializedItem", lazy="joined", innerjoin=True)

    def append_notes(self, text: str | None) -> None:
        if not text:
            return
        self.notes = f"{self.notes}\n{text}" if self.notes else text


class DeploymentNote(Base):
    __tablename__ = "deployment_notes"

    id = Column(Integer, primary_key=True, index=True)
    deployment_id = Column(Integer, ForeignKey("deployments.id"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    note_type = Column(Enum(NoteType), nullable=False, default=NoteType.USER)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
