"""
Alembic migration: Initial schema for the inventory and order lifecycle engine.

Creates inventory_items, the append-only transactions log, orders with their
invoice and delivery tracks, versioned attachment rows (files), demo loans
and the transition saga log. Enum columns are stored as VARCHAR so the same
schema runs on PostgreSQL and SQLite.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was last updated',
        ),
    ]


def _id() -> sa.Column:
    return sa.Column(
        'id',
        sa.Uuid(as_uuid=True),
        nullable=False,
        comment='Unique identifier for the record',
    )


def upgrade() -> None:
    """
    Upgrade database schema to the initial engine tables.

    Item status is never stored on inventory_items; it is derived from the
    latest row in transactions per serial_key.
    """
    # Create inventory_items table
    op.create_table(
        'inventory_items',
        _id(),
        sa.Column('serial_number', sa.String(100), nullable=False, comment='Serial number as entered'),
        sa.Column(
            'serial_key',
            sa.String(100),
            nullable=False,
            comment='Lower-cased serial number for case-insensitive matching',
        ),
        sa.Column('equipment_category', sa.String(100), nullable=False, comment='Equipment category'),
        sa.Column('model', sa.String(100), nullable=False, comment='Model name'),
        sa.Column('size', sa.String(50), nullable=True, comment='Size designation'),
        sa.Column('batch', sa.String(50), nullable=True, comment='Manufacturing batch'),
        sa.Column('remarks', sa.String(1000), nullable=True, comment='Free-form remarks'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_items'),
        sa.UniqueConstraint('serial_key', name='uq_inventory_items_serial_key'),
        comment='Inventory items; status is derived from transactions',
    )
    op.create_index(
        'ix_inventory_items_category_model',
        'inventory_items',
        ['equipment_category', 'model'],
    )

    # Create transactions table
    op.create_table(
        'transactions',
        sa.Column(
            'transaction_id',
            sa.Integer(),
            autoincrement=True,
            nullable=False,
            comment='Increasing event identifier',
        ),
        sa.Column('serial_number', sa.String(100), nullable=False, comment='Item serial number as entered'),
        sa.Column('serial_key', sa.String(100), nullable=False, comment='Lower-cased serial number'),
        sa.Column('type', sa.String(32), nullable=False, comment='Movement type'),
        sa.Column('status', sa.String(32), nullable=False, comment='Item status after this event'),
        sa.Column('location', sa.String(200), nullable=False, comment='Item location after this event'),
        sa.Column('customer_dealer', sa.String(200), nullable=True),
        sa.Column('customer_client', sa.String(200), nullable=True),
        sa.Column('reference', sa.String(100), nullable=True, comment='Order or demo number'),
        sa.Column(
            'source',
            sa.String(50),
            nullable=False,
            server_default='manual',
            comment='Producer of the event',
        ),
        sa.Column('remarks', sa.String(1000), nullable=True),
        sa.Column(
            'uploaded_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Time the event was recorded',
        ),
        sa.PrimaryKeyConstraint('transaction_id', name='pk_transactions'),
        sa.CheckConstraint(
            "type IN ('Stock_In', 'Stock_Out', 'Demo')",
            name='ck_transactions_type',
        ),
        sa.CheckConstraint(
            "status IN ('Active', 'Reserved', 'Delivered', 'Demo')",
            name='ck_transactions_status',
        ),
        comment='Append-only item transaction log',
        sqlite_autoincrement=True,
    )
    op.create_index(
        'ix_transactions_serial_key_tx',
        'transactions',
        ['serial_key', 'transaction_id'],
    )
    op.create_index('ix_transactions_reference', 'transactions', ['reference'])

    # Create orders table
    op.create_table(
        'orders',
        _id(),
        sa.Column('order_number', sa.String(100), nullable=False, comment='Human-assigned order number'),
        sa.Column('customer_dealer', sa.String(200), nullable=False, comment='Dealer placing the order'),
        sa.Column('customer_client', sa.String(200), nullable=False, comment='End client'),
        sa.Column('location', sa.String(200), nullable=True, comment='Delivery location'),
        sa.Column('remarks', sa.String(1000), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False, comment='Snapshot of ordered items'),
        sa.Column('transaction_ids', sa.JSON(), nullable=False, comment='Reservation transaction IDs'),
        sa.Column('created_date', sa.Date(), nullable=False, comment='Business date the order was placed'),
        sa.Column('invoice_status', sa.String(32), nullable=False, comment='Invoice track status'),
        sa.Column('delivery_status', sa.String(32), nullable=False, comment='Delivery track status'),
        sa.Column('invoice_number', sa.String(100), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=True),
        sa.Column('invoice_remarks', sa.String(1000), nullable=True),
        sa.Column('invoice_file_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('invoice_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_number', sa.String(100), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('delivery_remarks', sa.String(1000), nullable=True),
        sa.Column('delivery_file_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('delivery_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signed_delivery_file_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('signed_delivery_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint(
            "invoice_status IN ('Reserved', 'Invoiced')",
            name='ck_orders_invoice_status',
        ),
        sa.CheckConstraint(
            "delivery_status IN ('Pending', 'Issued', 'Delivered')",
            name='ck_orders_delivery_status',
        ),
        sa.CheckConstraint(
            "delivery_status = 'Pending' OR invoice_status = 'Invoiced'",
            name='ck_orders_delivery_requires_invoice',
        ),
        comment='Orders with invoice and delivery track status',
    )
    op.create_index('ix_orders_track_status', 'orders', ['invoice_status', 'delivery_status'])
    op.create_index('ix_orders_dealer', 'orders', ['customer_dealer'])

    # Create files table
    op.create_table(
        'files',
        _id(),
        sa.Column('order_number', sa.String(100), nullable=False, comment='Owning order number'),
        sa.Column('file_type', sa.String(32), nullable=False, comment='Document kind'),
        sa.Column(
            'version',
            sa.Integer(),
            nullable=False,
            comment='Version number within the order and file type',
        ),
        sa.Column(
            'is_active',
            sa.Boolean(),
            nullable=False,
            comment='Whether this version is authoritative',
        ),
        sa.Column('original_filename', sa.String(255), nullable=False, comment='File name supplied on upload'),
        sa.Column('file_size', sa.Integer(), nullable=False, comment='Blob size in bytes'),
        sa.Column('content_type', sa.String(100), nullable=False),
        sa.Column('checksum', sa.String(64), nullable=False, comment='SHA-256 hex digest of the blob'),
        sa.Column('storage_path', sa.String(500), nullable=False, comment='Blob store key'),
        sa.Column('storage_url', sa.String(1000), nullable=False, comment='Retrievable blob URL'),
        sa.Column(
            'upload_date',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column('uploaded_by', sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_files'),
        sa.UniqueConstraint(
            'order_number',
            'file_type',
            'version',
            name='uq_files_order_type_version',
        ),
        sa.CheckConstraint(
            "file_type IN ('invoice', 'delivery_order', 'signed_delivery_order')",
            name='ck_files_file_type',
        ),
        sa.CheckConstraint('version >= 1', name='ck_files_version_positive'),
        sa.CheckConstraint('file_size >= 0', name='ck_files_size_non_negative'),
        comment='Versioned order attachments',
    )
    op.create_index(
        'ix_files_order_type_active',
        'files',
        ['order_number', 'file_type', 'is_active'],
    )

    # Create demos table
    op.create_table(
        'demos',
        _id(),
        sa.Column('demo_number', sa.String(100), nullable=False),
        sa.Column('demo_purpose', sa.String(500), nullable=True),
        sa.Column('customer_dealer', sa.String(200), nullable=False),
        sa.Column('customer_client', sa.String(200), nullable=False),
        sa.Column('location', sa.String(200), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('transaction_ids', sa.JSON(), nullable=False),
        sa.Column('created_date', sa.Date(), nullable=False),
        sa.Column('expected_return_date', sa.Date(), nullable=True),
        sa.Column('actual_return_date', sa.Date(), nullable=True),
        sa.Column('remarks', sa.String(1000), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_demos'),
        sa.UniqueConstraint('demo_number', name='uq_demos_demo_number'),
        sa.CheckConstraint("status IN ('Active', 'Returned')", name='ck_demos_status'),
        comment='Demo loans of inventory items',
    )
    op.create_index('ix_demos_status', 'demos', ['status'])

    # Create transition_sagas table
    op.create_table(
        'transition_sagas',
        _id(),
        sa.Column('order_number', sa.String(100), nullable=False),
        sa.Column('file_type', sa.String(32), nullable=False),
        sa.Column('transition', sa.String(50), nullable=False),
        sa.Column('state', sa.String(32), nullable=False),
        sa.Column('last_completed_step', sa.String(32), nullable=True),
        sa.Column('failed_step', sa.String(32), nullable=True),
        sa.Column('attachment_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('error', sa.String(2000), nullable=True),
        sa.Column('retryable', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_transition_sagas'),
        sa.CheckConstraint(
            "state IN ('started', 'completed', 'failed')",
            name='ck_transition_sagas_state',
        ),
        comment='Step log for attachment-gated order transitions',
    )
    op.create_index(
        'ix_transition_sagas_order_state',
        'transition_sagas',
        ['order_number', 'state'],
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing every engine table.
    """
    op.drop_index('ix_transition_sagas_order_state', table_name='transition_sagas')
    op.drop_table('transition_sagas')

    op.drop_index('ix_demos_status', table_name='demos')
    op.drop_table('demos')

    op.drop_index('ix_files_order_type_active', table_name='files')
    op.drop_table('files')

    op.drop_index('ix_orders_dealer', table_name='orders')
    op.drop_index('ix_orders_track_status', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_transactions_reference', table_name='transactions')
    op.drop_index('ix_transactions_serial_key_tx', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('ix_inventory_items_category_model', table_name='inventory_items')
    op.drop_table('inventory_items')
