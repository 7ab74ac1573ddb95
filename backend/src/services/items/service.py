"""
Inventory service for registering items.

An item enters the system with a ``Stock_In/Active`` event. Its status is
never stored on the item row.
"""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.core.logging import get_logger
from src.database.connection import commit_step
from src.database.models.item import InventoryItem, normalize_serial
from src.database.models.transaction import ItemStatus, TransactionEvent, TransactionType
from src.services.transactions.repository import NewEvent, TransactionLog

logger = get_logger(__name__)

DEFAULT_LOCATION = "HQ"


class InventoryService:
    """Registers items and exposes their raw event history."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.log = TransactionLog(session)

    async def get_item(self, serial_number: str) -> Optional[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem).where(
                InventoryItem.serial_key == normalize_serial(serial_number)
            )
        )
        return result.scalar_one_or_none()

    async def stock_in(
        self,
        serial_number: str,
        equipment_category: str,
        model: str,
        size: Optional[str] = None,
        batch: Optional[str] = None,
        location: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> tuple[InventoryItem, TransactionEvent]:
        """
        Register a new item and append its first event.

        Raises:
            ValidationError: If the serial number is blank
            ConflictError: If the serial number is already registered
        """
        if not serial_number or not serial_number.strip():
            raise ValidationError("Serial number is required", step="validate")

        if await self.get_item(serial_number) is not None:
            raise ConflictError(
                f"Serial number {serial_number.strip()} already exists",
                step="validate",
                serial_number=serial_number,
            )

        item = InventoryItem(
            serial_number=serial_number,
            equipment_category=equipment_category,
            model=model,
            size=size,
            batch=batch,
            remarks=remarks,
        )
        self.session.add(item)
        event = await self.log.append(
            NewEvent(
                serial_number=item.serial_number,
                type=TransactionType.STOCK_IN,
                status=ItemStatus.ACTIVE,
                location=(location or "").strip() or DEFAULT_LOCATION,
                source="stock_in",
                remarks=remarks,
            )
        )
        await commit_step(self.session, "stock_in", serial_number=item.serial_number)

        logger.info(
            "Item stocked in",
            serial_number=item.serial_number,
            transaction_id=event.transaction_id,
            location=event.location,
        )
        return item, event

    async def history(self, serial_number: str) -> Sequence[TransactionEvent]:
        """
        Every event of one item, newest first.

        Raises:
            NotFoundError: If the item has no events
        """
        events = await self.log.for_serial(serial_number)
        if not events:
            raise NotFoundError("Item has no transactions", serial_number=serial_number)
        return events
