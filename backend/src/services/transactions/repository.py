"""
Append-only transaction log.

Events are only ever inserted. The single exception is order deletion,
which removes the events written on behalf of that order.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import PersistenceError
from src.core.logging import get_logger
from src.database.models.item import normalize_serial
from src.database.models.transaction import ItemStatus, TransactionEvent, TransactionType

logger = get_logger(__name__)

# Sources of events written on behalf of an order
ORDER_SOURCES = ("order", "delivery", "delivery_rollback", "order_cancellation")


@dataclass(frozen=True)
class NewEvent:
    """Values for an event about to be appended."""

    serial_number: str
    type: TransactionType
    status: ItemStatus
    location: str
    customer_dealer: Optional[str] = None
    customer_client: Optional[str] = None
    reference: Optional[str] = None
    source: str = "manual"
    remarks: Optional[str] = None


class TransactionLog:
    """
    Repository over the ``transactions`` table.

    Appends only flush so they can share a commit with the order or demo
    row that caused them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, event: NewEvent) -> TransactionEvent:
        """Append one event and return it with its assigned ID."""
        return (await self.append_many([event]))[0]

    async def append_many(self, events: Iterable[NewEvent]) -> list[TransactionEvent]:
        """Append events in order; IDs increase in the given order."""
        rows: list[TransactionEvent] = []
        try:
            for event in events:
                row = TransactionEvent(
                    serial_number=event.serial_number.strip(),
                    serial_key=normalize_serial(event.serial_number),
                    type=event.type,
                    status=event.status,
                    location=event.location,
                    customer_dealer=event.customer_dealer,
                    customer_client=event.customer_client,
                    reference=event.reference,
                    source=event.source,
                    remarks=event.remarks,
                )
                self.session.add(row)
                # Flush per row so IDs follow append order
                await self.session.flush()
                rows.append(row)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Transaction append failed", error=str(e))
            raise PersistenceError(
                "Failed to append transaction events", step="append", error=str(e)
            ) from e

        logger.debug(
            "Transaction events appended",
            count=len(rows),
            transaction_ids=[row.transaction_id for row in rows],
        )
        return rows

    async def latest_window(self, limit: int) -> Sequence[TransactionEvent]:
        """Most recent ``limit`` events, newest first."""
        stmt = (
            select(TransactionEvent)
            .order_by(TransactionEvent.transaction_id.desc())
            .limit(limit)
        )
        return await self._scalars(stmt)

    async def latest_for_serials(
        self, serial_numbers: Iterable[str]
    ) -> dict[str, TransactionEvent]:
        """
        Latest event per serial key, read through the per-key index.

        Used to re-check availability right before a write, without the
        scan window limit.
        """
        keys = {normalize_serial(serial) for serial in serial_numbers}
        if not keys:
            return {}

        latest_ids = (
            select(func.max(TransactionEvent.transaction_id))
            .where(TransactionEvent.serial_key.in_(keys))
            .group_by(TransactionEvent.serial_key)
        )
        stmt = select(TransactionEvent).where(
            TransactionEvent.transaction_id.in_(latest_ids)
        )
        return {row.serial_key: row for row in await self._scalars(stmt)}

    async def for_serial(self, serial_number: str) -> Sequence[TransactionEvent]:
        """Full history of one item, newest first."""
        stmt = (
            select(TransactionEvent)
            .where(TransactionEvent.serial_key == normalize_serial(serial_number))
            .order_by(TransactionEvent.transaction_id.desc())
        )
        return await self._scalars(stmt)

    async def by_ids(self, transaction_ids: Iterable[int]) -> Sequence[TransactionEvent]:
        ids = list(transaction_ids)
        if not ids:
            return []
        stmt = (
            select(TransactionEvent)
            .where(TransactionEvent.transaction_id.in_(ids))
            .order_by(TransactionEvent.transaction_id)
        )
        return await self._scalars(stmt)

    async def delete_order_events(
        self, order_number: str, transaction_ids: Iterable[int]
    ) -> int:
        """Remove every event an order wrote. Only order deletion calls this."""
        ids = list(transaction_ids)
        condition = (TransactionEvent.reference == order_number) & (
            TransactionEvent.source.in_(ORDER_SOURCES)
        )
        if ids:
            condition = or_(TransactionEvent.transaction_id.in_(ids), condition)
        result = await self.session.execute(delete(TransactionEvent).where(condition))
        return result.rowcount or 0

    async def _scalars(self, stmt) -> Sequence[TransactionEvent]:
        try:
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Transaction query failed", error=str(e))
            raise PersistenceError(
                "Transaction query failed", step="read", error=str(e)
            ) from e
