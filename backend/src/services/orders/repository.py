"""
Order data access repository.

Status writes are conditional on the status the caller last observed, so a
concurrent change turns into a zero-row update instead of a silent
overwrite. Writes only flush; services commit each step.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import PersistenceError
from src.core.logging import get_logger
from src.database.models.order import Order
from src.database.models.transaction import TransactionEvent
from src.services.orders.enums import DeliveryStatus, OrderStatus

logger = get_logger(__name__)


class OrderRepository:
    """Repository for order rows."""

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        """Get order by its order number, refreshing any cached copy."""
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.order_number == order_number)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to get order by number",
                order_number=order_number,
                error=str(e),
            )
            raise PersistenceError(
                "Order lookup failed", step="read", order_number=order_number
            ) from e

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        try:
            return await self.session.get(Order, order_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error("Failed to get order by ID", order_id=str(order_id), error=str(e))
            raise PersistenceError(
                "Order lookup failed", step="read", order_id=order_id
            ) from e

    async def exists(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(Order.id).where(Order.order_number == order_number)
        )
        return result.first() is not None

    async def list_by_numbers(self, order_numbers: Sequence[str]) -> dict[str, Order]:
        if not order_numbers:
            return {}
        result = await self.session.execute(
            select(Order).where(Order.order_number.in_(list(order_numbers)))
        )
        return {order.order_number: order for order in result.scalars().all()}

    def add(self, order: Order) -> None:
        self.session.add(order)

    @staticmethod
    def record_events(order: Order, events: Sequence[TransactionEvent]) -> None:
        """Track events appended on the order's behalf in ``transaction_ids``."""
        order.transaction_ids = [
            *(order.transaction_ids or []),
            *(event.transaction_id for event in events),
        ]

    async def list_cancellable(self) -> Sequence[Order]:
        """Orders that are neither delivered nor cancelled, newest first."""
        result = await self.session.execute(
            select(Order)
            .where(
                Order.order_status == OrderStatus.ACTIVE,
                Order.delivery_status != DeliveryStatus.DELIVERED,
            )
            .order_by(Order.created_date.desc(), Order.created_at.desc())
        )
        return result.scalars().all()

    async def conditional_update(
        self,
        order_id: uuid.UUID,
        expected: dict[str, Any],
        values: dict[str, Any],
    ) -> bool:
        """
        Update an order only if its columns still hold ``expected`` values.

        Returns:
            True if the row was updated, False if it changed underneath us
        """
        stmt = update(Order).where(Order.id == order_id)
        for column, value in expected.items():
            stmt = stmt.where(getattr(Order, column) == value)
        try:
            result = await self.session.execute(
                stmt.values(**values).execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order status update failed", order_id=str(order_id), error=str(e)
            )
            raise PersistenceError(
                "Order status update failed",
                step="commit_status",
                order_id=order_id,
                error=str(e),
            ) from e
        return (result.rowcount or 0) > 0

    async def delete(self, order_id: uuid.UUID) -> int:
        result = await self.session.execute(delete(Order).where(Order.id == order_id))
        return result.rowcount or 0
