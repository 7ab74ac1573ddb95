"""
Demo loan service.

Lends available items outside the order lifecycle. Loaning appends one
``Demo/Demo`` event per item; returning appends ``Stock_In/Active`` at the
loan location for every item still on this loan.
"""

import uuid
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from src.core.logging import get_logger
from src.database.connection import commit_step
from src.database.models.demo import DemoRecord, DemoStatus
from src.database.models.item import normalize_serial
from src.database.models.transaction import ItemStatus, TransactionEvent, TransactionType
from src.services.transactions.repository import NewEvent, TransactionLog

logger = get_logger(__name__)


def return_events(
    loan_events: Iterable[TransactionEvent], demo_number: str, source: str
) -> list[NewEvent]:
    """``Stock_In/Active`` events bringing loaned items back."""
    return [
        NewEvent(
            serial_number=event.serial_number,
            type=TransactionType.STOCK_IN,
            status=ItemStatus.ACTIVE,
            location=event.location,
            customer_dealer=event.customer_dealer,
            customer_client=event.customer_client,
            reference=demo_number,
            source=source,
        )
        for event in loan_events
    ]


class DemoService:
    """Creates and returns demo loans."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.log = TransactionLog(session)

    async def get_demo(self, demo_id: uuid.UUID) -> DemoRecord:
        """
        Raises:
            NotFoundError: If the demo does not exist
        """
        demo = await self.session.get(DemoRecord, demo_id, populate_existing=True)
        if demo is None:
            raise NotFoundError("Demo not found", demo_id=demo_id)
        return demo

    async def create_demo(
        self,
        demo_number: str,
        customer_dealer: str,
        serial_numbers: Sequence[str],
        location: str,
        demo_purpose: Optional[str] = None,
        customer_client: Optional[str] = None,
        expected_return_date: Optional[date] = None,
        remarks: Optional[str] = None,
    ) -> DemoRecord:
        """
        Loan available items for a demo.

        Raises:
            ValidationError: If required fields are missing or items repeat
            ConflictError: If the demo number is taken
            PreconditionError: If an item is not available
        """
        demo_number = (demo_number or "").strip()
        if not demo_number:
            raise ValidationError("Demo number is required", step="validate")
        if not (customer_dealer or "").strip():
            raise ValidationError("Dealer is required", step="validate")
        if not (location or "").strip():
            raise ValidationError("Location is required", step="validate")
        if not serial_numbers:
            raise ValidationError("No items selected for the demo", step="validate")

        keys = [normalize_serial(serial) for serial in serial_numbers]
        if len(set(keys)) != len(keys):
            raise ValidationError(
                "Duplicate serial numbers in demo",
                step="validate",
                demo_number=demo_number,
            )

        existing = await self.session.execute(
            select(DemoRecord.id).where(DemoRecord.demo_number == demo_number)
        )
        if existing.first() is not None:
            raise ConflictError(
                f"Demo number {demo_number} already exists",
                step="validate",
                demo_number=demo_number,
            )

        latest = await self.log.latest_for_serials(serial_numbers)
        unavailable = []
        for serial in serial_numbers:
            event = latest.get(normalize_serial(serial))
            if event is None or not (
                event.type is TransactionType.STOCK_IN
                and event.status is ItemStatus.ACTIVE
            ):
                unavailable.append(serial)
        if unavailable:
            raise PreconditionError(
                "Items are not available",
                step="validate",
                serial_numbers=",".join(unavailable),
            )

        client = (customer_client or "").strip() or "N/A"
        events = await self.log.append_many(
            NewEvent(
                serial_number=latest[normalize_serial(serial)].serial_number,
                type=TransactionType.DEMO,
                status=ItemStatus.DEMO,
                location=location.strip(),
                customer_dealer=customer_dealer.strip(),
                customer_client=client,
                reference=demo_number,
                source="demo",
                remarks=remarks,
            )
            for serial in serial_numbers
        )

        demo = DemoRecord(
            demo_number=demo_number,
            demo_purpose=demo_purpose,
            customer_dealer=customer_dealer.strip(),
            customer_client=client,
            location=location.strip(),
            status=DemoStatus.ACTIVE,
            items=[{"serial_number": event.serial_number} for event in events],
            transaction_ids=[event.transaction_id for event in events],
            created_date=date.today(),
            expected_return_date=expected_return_date,
            remarks=remarks,
        )
        self.session.add(demo)
        await commit_step(self.session, "create_demo", demo_number=demo_number)

        logger.info("Demo created", demo_number=demo_number, item_count=len(events))
        return demo

    async def return_demo(
        self, demo_id: uuid.UUID, returned_on: Optional[date] = None
    ) -> DemoRecord:
        """
        Return every item still on this loan and close the demo.

        Raises:
            NotFoundError: If the demo does not exist
            PreconditionError: If the demo was already returned
        """
        demo = await self.get_demo(demo_id)
        if demo.status is DemoStatus.RETURNED:
            raise PreconditionError(
                "Demo already returned",
                step="validate",
                demo_number=demo.demo_number,
            )

        latest = await self.log.latest_for_serials(demo.serial_numbers)
        on_loan = [
            event
            for event in latest.values()
            if event.type is TransactionType.DEMO and event.reference == demo.demo_number
        ]
        events = await self.log.append_many(
            return_events(on_loan, demo.demo_number, "demo_return")
        )

        demo.status = DemoStatus.RETURNED
        demo.actual_return_date = returned_on or date.today()
        await commit_step(self.session, "return_demo", demo_number=demo.demo_number)

        logger.info(
            "Demo returned",
            demo_number=demo.demo_number,
            items_returned=len(events),
        )
        return demo
