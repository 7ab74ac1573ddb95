"""
Test suite for the append-only transaction log.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models.transaction import ItemStatus, TransactionType
from src.services.transactions.repository import NewEvent, TransactionLog


def event(
    serial: str,
    type_: TransactionType = TransactionType.STOCK_IN,
    status: ItemStatus = ItemStatus.ACTIVE,
    reference: str | None = None,
    source: str = "manual",
    location: str = "HQ",
) -> NewEvent:
    return NewEvent(
        serial_number=serial,
        type=type_,
        status=status,
        location=location,
        reference=reference,
        source=source,
    )


@pytest_asyncio.fixture
async def log(session: AsyncSession) -> TransactionLog:
    return TransactionLog(session)


class TestAppend:
    """Test appending events."""

    @pytest.mark.asyncio
    async def test_ids_follow_append_order(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        rows = await log.append_many([event("SN-1"), event("SN-2"), event("SN-3")])
        await session.commit()

        ids = [row.transaction_id for row in rows]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    @pytest.mark.asyncio
    async def test_ids_assigned_before_commit(self, log: TransactionLog) -> None:
        rows = await log.append_many([event("SN-1"), event("SN-2")])

        ids = [row.transaction_id for row in rows]
        assert None not in ids
        assert ids[0] < ids[1]

    @pytest.mark.asyncio
    async def test_serial_key_is_normalized(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        row = await log.append(event("  Sn-42 "))
        await session.commit()

        assert row.serial_number == "Sn-42"
        assert row.serial_key == "sn-42"
        assert row.uploaded_at is not None


class TestReads:
    """Test log queries."""

    @pytest.mark.asyncio
    async def test_latest_window_is_newest_first_and_bounded(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        rows = await log.append_many([event(f"SN-{n}") for n in range(5)])
        await session.commit()

        window = await log.latest_window(3)

        assert [row.transaction_id for row in window] == [
            row.transaction_id for row in reversed(rows[2:])
        ]

    @pytest.mark.asyncio
    async def test_latest_for_serials_ignores_case(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        await log.append(event("SN-42"))
        reserved = await log.append(
            event("sn-42", TransactionType.STOCK_OUT, ItemStatus.RESERVED, "ORD-1", "order")
        )
        await log.append(event("SN-7"))
        await session.commit()

        latest = await log.latest_for_serials(["Sn-42", "SN-99"])

        assert list(latest) == ["sn-42"]
        assert latest["sn-42"].transaction_id == reserved.transaction_id
        assert latest["sn-42"].status is ItemStatus.RESERVED

    @pytest.mark.asyncio
    async def test_latest_for_no_serials(self, log: TransactionLog) -> None:
        assert await log.latest_for_serials([]) == {}

    @pytest.mark.asyncio
    async def test_for_serial_history(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        first = await log.append(event("SN-1"))
        second = await log.append(event("SN-1", TransactionType.DEMO, ItemStatus.DEMO))
        await log.append(event("SN-2"))
        await session.commit()

        history = await log.for_serial("sn-1")

        assert [row.transaction_id for row in history] == [
            second.transaction_id,
            first.transaction_id,
        ]


class TestDeleteOrderEvents:
    """Test the one permitted deletion."""

    @pytest.mark.asyncio
    async def test_removes_only_events_of_the_order(
        self, log: TransactionLog, session: AsyncSession
    ) -> None:
        stocked = await log.append(event("SN-1"))
        reserved = await log.append(
            event("SN-1", TransactionType.STOCK_OUT, ItemStatus.RESERVED, "ORD-1", "order")
        )
        delivered = await log.append(
            event("SN-1", TransactionType.STOCK_OUT, ItemStatus.DELIVERED, "ORD-1", "delivery")
        )
        other = await log.append(
            event("SN-2", TransactionType.DEMO, ItemStatus.DEMO, "ORD-1", "demo")
        )
        await session.commit()

        deleted = await log.delete_order_events("ORD-1", [reserved.transaction_id])
        await session.commit()

        remaining = await log.by_ids(
            [
                stocked.transaction_id,
                reserved.transaction_id,
                delivered.transaction_id,
                other.transaction_id,
            ]
        )
        assert deleted == 2
        assert [row.transaction_id for row in remaining] == [
            stocked.transaction_id,
            other.transaction_id,
        ]
