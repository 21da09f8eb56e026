"""Deployment and return schemas."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from mdrrmo_api.models.deployment import DeploymentStatus, DeploymentType, NoteType, ReturnCondition


class DeploymentCreate(BaseModel):
    """Send-out request.

    Exactly one of ``quantity`` (bulk) or ``serial_item_ids`` (serialized)
    must be supplied; the deployment service enforces this.
    """

    inventory_item_id: int
    quantity: Optional[int] = None
    serial_item_ids: Optional[list[int]] = None
    deployment_type: DeploymentType = DeploymentType.EMERGENCY
    incident_type: Optional[str] = Field(None, max_length=100)
    deployment_location: str = Field(..., min_length=1, max_length=255)
    deployment_date: Optional[datetime] = None
    expected_return_date: Optional[datetime] = None
    deployed_to: Optional[int] = None
    notes: Optional[str] = None


class ReturnItem(BaseModel):
    serialized_item_id: int
    condition: ReturnCondition = ReturnCondition.GOOD
    notes: Optional[str] = None


class DeploymentReturn(BaseModel):
    """Return request.

    ``items`` lists per-unit conditions for serialized deployments; when it is
    omitted every outstanding unit is returned with ``condition``.
    """

    items: Optional[list[ReturnItem]] = None
    condition: ReturnCondition = ReturnCondition.GOOD
    return_date: Optional[datetime] = None
    notes: Optional[str] = None


class SerialLinkResponse(BaseModel):
    id: int
    serialized_item_id: int
    serial_number: Optional[str] = None
    deployed_at: datetime
    returned_at: Optional[datetime] = None
    return_condition: Optional[ReturnCondition] = None
    notes: Optional[str] = None


class DeploymentResponse(BaseModel):
    id: int
    inventory_item_id: int
    item_name: Optional[str] = None
    deployed_by: Optional[int] = None
    deployed_to: Optional[int] = None
    deployment_type: DeploymentType
    incident_type: Optional[str] = None
    quantity_deployed: int
    is_serialized: bool
    deployment_location: str
    deployment_date: datetime
    expected_return_date: Optional[datetime] = None
    actual_return_date: Optional[datetime] = None
    status: DeploymentStatus
    return_condition: Optional[ReturnCondition] = None
    notes: Optional[str] = None
    is_overdue: bool = False
    created_at: Optional[datetime] = None
    serial_items: list[SerialLinkResponse] = []


class ReconcileResponse(BaseModel):
    deployment: DeploymentResponse
    processed_ids: list[int]
    skipped_ids: list[int]
    stock_delta: int
    good: int
    damaged: int
    lost: int


class DeploymentNoteCreate(BaseModel):
    note: str = Field(..., min_length=1)


class DeploymentNoteResponse(BaseModel):
    id: int
    deployment_id: int
    note: str
    note_type: NoteType
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
