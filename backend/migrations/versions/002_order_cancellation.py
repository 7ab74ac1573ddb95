"""
Alembic migration: Order cancellation.

Adds order_status with the cancellation reason, actor, time and the IDs of
the release events written when an order is cancelled.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 15:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Add cancellation columns to orders.

    Existing orders become Active with no cancellation events. Batch mode
    keeps the check constraint portable to SQLite.
    """
    with op.batch_alter_table('orders') as batch_op:
        batch_op.add_column(
            sa.Column(
                'order_status',
                sa.String(32),
                nullable=False,
                server_default='Active',
                comment='Active or Cancelled',
            )
        )
        batch_op.add_column(sa.Column('cancellation_reason', sa.String(1000), nullable=True))
        batch_op.add_column(sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column('cancelled_by', sa.String(200), nullable=True))
        batch_op.add_column(
            sa.Column(
                'cancellation_transaction_ids',
                sa.JSON(),
                nullable=False,
                server_default='[]',
                comment='Transaction IDs appended when the order was cancelled',
            )
        )
        batch_op.create_check_constraint(
            'ck_orders_order_status',
            "order_status IN ('Active', 'Cancelled')",
        )
        batch_op.create_index('ix_orders_order_status', ['order_status'])


def downgrade() -> None:
    """
    Remove the cancellation columns.
    """
    with op.batch_alter_table('orders') as batch_op:
        batch_op.drop_index('ix_orders_order_status')
        batch_op.drop_constraint('ck_orders_order_status', type_='check')
        batch_op.drop_column('cancellation_transaction_ids')
        batch_op.drop_column('cancelled_by')
        batch_op.drop_column('cancelled_at')
        batch_op.drop_column('cancellation_reason')
        batch_op.drop_column('order_status')
