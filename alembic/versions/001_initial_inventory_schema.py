"""Create inventory, batch, serialized unit and deployment tables

Revision ID: 001_initial_inventory_schema
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_inventory_schema'
down_revision = None
branch_labels = None
depends_on = None

CATEGORY_TYPES = ('EQUIPMENT', 'SUPPLIES', 'RELIEF_GOODS', 'VEHICLES', 'COMMUNICATION_DEVICES')
ITEM_CONDITIONS = ('NEW', 'GOOD', 'FAIR', 'POOR', 'MAINTENANCE_REQUIRED')
UNIT_STATUSES = ('AVAILABLE', 'DEPLOYED', 'MAINTENANCE', 'LOST', 'DAMAGED', 'RETIRED', 'PARTIAL_RETURN')
DEPLOYMENT_TYPES = ('EMERGENCY', 'TRAINING', 'MAINTENANCE', 'RELIEF_OPERATION')
DEPLOYMENT_STATUSES = ('DEPLOYED', 'PARTIAL_RETURN', 'RETURNED', 'LOST', 'DAMAGED')
RETURN_CONDITIONS = ('GOOD', 'FAIR', 'DAMAGED', 'LOST')
NOTE_TYPES = ('USER', 'SYSTEM')
NOTIFICATION_TYPES = (
    'LOW_STOCK', 'EXPIRING_SOON', 'MAINTENANCE_DUE', 'DEPLOYMENT_OVERDUE', 'EQUIPMENT_RETURN', 'EQUIPMENT_ISSUE',
)
NOTIFICATION_PRIORITIES = ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')


def _timestamps(updated=True, deleted=False):
    columns = [sa.Column('created_at', sa.DateTime())]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime()))
    if deleted:
        columns.append(sa.Column('deleted_at', sa.DateTime(), index=True))
    return columns


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('is_active', sa.Boolean()),
        sa.Column('is_superuser', sa.Boolean()),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text()),
        sa.Column('type', sa.Enum(*CATEGORY_TYPES, name='categorytype'), nullable=False, index=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('description', sa.Text()),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=False, index=True),
        sa.Column('quantity_in_stock', sa.Integer(), nullable=False),
        sa.Column('min_stock_level', sa.Integer(), nullable=False),
        sa.Column('unit_of_measure', sa.String(50), nullable=False),
        sa.Column('is_returnable', sa.Boolean()),
        sa.Column('condition', sa.Enum(*ITEM_CONDITIONS, name='itemcondition')),
        sa.Column('last_maintenance_date', sa.DateTime()),
        sa.Column('next_maintenance_date', sa.DateTime()),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('is_deployable', sa.Boolean()),
        sa.Column('is_active', sa.Boolean()),
        sa.Column('notes', sa.Text()),
        *_timestamps(deleted=True),
        sa.CheckConstraint('quantity_in_stock >= 0', name='ck_inventory_items_stock_non_negative'),
    )

    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('inventory_item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), nullable=False, index=True),
        sa.Column('batch_number', sa.String(100), nullable=False, unique=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('received_date', sa.DateTime(), nullable=False, index=True),
        sa.Column('received_by', sa.Integer(), sa.ForeignKey('users.id'), index=True),
        sa.Column('expiry_date', sa.Date(), index=True),
        sa.Column('supplier', sa.String(255)),
        sa.Column('funding_source', sa.String(255)),
        sa.Column('cost', sa.Numeric(10, 2)),
        sa.Column('notes', sa.Text()),
        sa.Column('is_active', sa.Boolean(), index=True),
        *_timestamps(deleted=True),
        sa.CheckConstraint('quantity >= 0', name='ck_batches_quantity_non_negative'),
    )

    op.create_table(
        'serialized_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('serial_number', sa.String(150), nullable=False, unique=True),
        sa.Column('inventory_item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), nullable=False, index=True),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('batches.id'), nullable=False, index=True),
        sa.Column('status', sa.Enum(*UNIT_STATUSES, name='serializeditemstatus'), nullable=False, index=True),
        sa.Column('condition_notes', sa.Text()),
        sa.Column('last_maintenance_date', sa.DateTime()),
        sa.Column('next_maintenance_date', sa.DateTime()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        *_timestamps(deleted=True),
    )

    op.create_table(
        'deployments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('inventory_item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), nullable=False, index=True),
        sa.Column('deployed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('deployed_to', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('deployment_type', sa.Enum(*DEPLOYMENT_TYPES, name='deploymenttype'), nullable=False),
        sa.Column('incident_type', sa.String(100)),
        sa.Column('quantity_deployed', sa.Integer(), nullable=False),
        sa.Column('is_serialized', sa.Boolean(), nullable=False),
        sa.Column('deployment_location', sa.String(255), nullable=False),
        sa.Column('deployment_date', sa.DateTime(), nullable=False, index=True),
        sa.Column('expected_return_date', sa.DateTime(), index=True),
        sa.Column('actual_return_date', sa.DateTime()),
        sa.Column('status', sa.Enum(*DEPLOYMENT_STATUSES, name='deploymentstatus'), nullable=False, index=True),
        sa.Column('return_condition', sa.Enum(*RETURN_CONDITIONS, name='returncondition')),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
        sa.CheckConstraint('quantity_deployed > 0', name='ck_deployments_quantity_positive'),
    )

    op.create_table(
        'serial_item_deployments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('deployment_id', sa.Integer(), sa.ForeignKey('deployments.id'), nullable=False, index=True),
        sa.Column('serialized_item_id', sa.Integer(), sa.ForeignKey('serialized_items.id'), nullable=False, index=True),
        sa.Column('deployed_at', sa.DateTime(), nullable=False),
        sa.Column('returned_at', sa.DateTime()),
        sa.Column('return_condition', sa.Enum(*RETURN_CONDITIONS, name='returncondition')),
        sa.Column('notes', sa.Text()),
        sa.UniqueConstraint('deployment_id', 'serialized_item_id', name='uq_serial_item_deployment'),
    )

    op.create_table(
        'deployment_notes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('deployment_id', sa.Integer(), sa.ForeignKey('deployments.id'), nullable=False, index=True),
        sa.Column('note', sa.Text(), nullable=False),
        sa.Column('note_type', sa.Enum(*NOTE_TYPES, name='notetype'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'serialized_item_history',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('serialized_item_id', sa.Integer(), sa.ForeignKey('serialized_items.id'), nullable=False, index=True),
        sa.Column('deployment_id', sa.Integer(), sa.ForeignKey('deployments.id'), index=True),
        sa.Column('old_status', sa.Enum(*UNIT_STATUSES, name='serializeditemstatus')),
        sa.Column('new_status', sa.Enum(*UNIT_STATUSES, name='serializeditemstatus'), nullable=False),
        sa.Column('old_condition', sa.String(20)),
        sa.Column('new_condition', sa.String(20)),
        sa.Column('notes', sa.Text()),
        sa.Column('changed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(), index=True),
    )

    op.create_table(
        'inventory_notifications',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('type', sa.Enum(*NOTIFICATION_TYPES, name='notificationtype'), nullable=False, index=True),
        sa.Column('priority', sa.Enum(*NOTIFICATION_PRIORITIES, name='notificationpriority'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), index=True),
        sa.Column('deployment_id', sa.Integer(), sa.ForeignKey('deployments.id'), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('seen', sa.Boolean(), index=True),
        sa.Column('created_at', sa.DateTime(), index=True),
        sa.Column('deleted_at', sa.DateTime(), index=True),
    )

    op.create_table(
        'stock_transactions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), nullable=False, index=True),
        sa.Column('adjustment', sa.Integer(), nullable=False),
        sa.Column('previous_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(255)),
        sa.Column('reference_type', sa.String(50)),
        sa.Column('reference_id', sa.Integer()),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(), index=True),
    )


def downgrade():
    for table in (
        'stock_transactions',
        'inventory_notifications',
        'serialized_item_history',
        'deployment_notes',
        'serial_item_deployments',
        'deployments',
        'serialized_items',
        'batches',
        'inventory_items',
        'categories',
        'users',
    ):
        op.drop_table(table)
