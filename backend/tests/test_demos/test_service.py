"""
Test suite for demo loans and their deletion.
"""

import uuid
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings
from src.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from src.database.models.demo import DemoRecord, DemoStatus
from src.database.models.transaction import ItemStatus, TransactionType
from src.services.demos.service import DemoService
from src.services.items.projector import ItemStateProjector
from src.services.orders.rollback import RollbackCoordinator
from src.services.storage.blob_store import LocalBlobStore


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def demos(session: AsyncSession) -> DemoService:
    return DemoService(session)


@pytest_asyncio.fixture
async def demo(demos: DemoService, stock) -> DemoRecord:
    """Demo DEMO-1 lending SN-1 and SN-2 to Clinic A."""
    await stock("SN-1", "SN-2", "SN-3")
    return await demos.create_demo(
        demo_number="DEMO-1",
        customer_dealer="Dealer A",
        serial_numbers=["SN-1", "sn-2"],
        location="Clinic A",
        demo_purpose="Trial",
        expected_return_date=date(2026, 12, 1),
    )


async def states(session: AsyncSession, settings: Settings, *serials: str):
    return (await ItemStateProjector(session, settings).current_state(serials)).states


# ============================================================================
# Create Tests
# ============================================================================


class TestCreateDemo:
    """Test lending items."""

    @pytest.mark.asyncio
    async def test_items_go_on_demo(
        self, demo: DemoRecord, session: AsyncSession, settings: Settings
    ) -> None:
        assert demo.status is DemoStatus.ACTIVE
        assert demo.serial_numbers == ["SN-1", "SN-2"]
        assert demo.customer_client == "N/A"
        assert len(demo.transaction_ids) == 2

        current = await states(session, settings, "SN-1", "SN-2", "SN-3")
        assert current["SN-1"].status is ItemStatus.DEMO
        assert current["SN-1"].last_transaction_type is TransactionType.DEMO
        assert current["SN-1"].location == "Clinic A"
        assert current["SN-3"].is_available is True

    @pytest.mark.asyncio
    async def test_item_on_loan_is_unavailable(
        self, demos: DemoService, demo: DemoRecord
    ) -> None:
        with pytest.raises(PreconditionError):
            await demos.create_demo("DEMO-2", "Dealer B", ["SN-2"], "Clinic B")

    @pytest.mark.asyncio
    async def test_unknown_item_is_unavailable(self, demos: DemoService) -> None:
        with pytest.raises(PreconditionError):
            await demos.create_demo("DEMO-2", "Dealer B", ["SN-404"], "Clinic B")

    @pytest.mark.asyncio
    async def test_duplicate_demo_number(
        self, demos: DemoService, demo: DemoRecord
    ) -> None:
        with pytest.raises(ConflictError):
            await demos.create_demo("DEMO-1", "Dealer B", ["SN-3"], "Clinic B")

    @pytest.mark.asyncio
    async def test_repeated_serial_rejected_without_writes(
        self, demos: DemoService, stock, session: AsyncSession, settings: Settings
    ) -> None:
        await stock("SN-1")

        with pytest.raises(ValidationError):
            await demos.create_demo("DEMO-2", "Dealer B", ["SN-1", "sn-1 "], "Clinic B")

        current = await states(session, settings, "SN-1")
        assert current["SN-1"].is_available is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "number,dealer,serials,location",
        [
            ("", "Dealer", ["SN-1"], "Clinic"),
            ("D", "", ["SN-1"], "Clinic"),
            ("D", "Dealer", [], "Clinic"),
            ("D", "Dealer", ["SN-1"], " "),
        ],
    )
    async def test_missing_fields(
        self, demos: DemoService, number, dealer, serials, location
    ) -> None:
        with pytest.raises(ValidationError):
            await demos.create_demo(number, dealer, serials, location)


# ============================================================================
# Return Tests
# ============================================================================


class TestReturnDemo:
    """Test returning loaned items."""

    @pytest.mark.asyncio
    async def test_return_restores_items_at_loan_location(
        self,
        demos: DemoService,
        demo: DemoRecord,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        returned = await demos.return_demo(demo.id, returned_on=date(2026, 11, 20))

        assert returned.status is DemoStatus.RETURNED
        assert returned.actual_return_date == date(2026, 11, 20)
        current = await states(session, settings, "SN-1", "SN-2")
        assert all(state.is_available for state in current.values())
        assert {state.location for state in current.values()} == {"Clinic A"}

    @pytest.mark.asyncio
    async def test_return_twice_is_precondition_error(
        self, demos: DemoService, demo: DemoRecord
    ) -> None:
        await demos.return_demo(demo.id)

        with pytest.raises(PreconditionError):
            await demos.return_demo(demo.id)

    @pytest.mark.asyncio
    async def test_unknown_demo(self, demos: DemoService) -> None:
        with pytest.raises(NotFoundError):
            await demos.return_demo(uuid.uuid4())


# ============================================================================
# Deletion Tests
# ============================================================================


class TestDeleteDemoRecord:
    """Test deleting demos through the rollback coordinator."""

    @pytest_asyncio.fixture
    async def rollback(
        self, session: AsyncSession, blob_store: LocalBlobStore, settings: Settings
    ) -> RollbackCoordinator:
        return RollbackCoordinator(session, blob_store, settings=settings)

    @pytest.mark.asyncio
    async def test_delete_active_demo_returns_items(
        self,
        rollback: RollbackCoordinator,
        demos: DemoService,
        demo: DemoRecord,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        demo_id = demo.id

        appended = await rollback.delete_demo_record(demo_id)

        assert len(appended) == 2
        current = await states(session, settings, "SN-1", "SN-2")
        assert all(state.is_available for state in current.values())
        with pytest.raises(NotFoundError):
            await demos.get_demo(demo_id)

    @pytest.mark.asyncio
    async def test_delete_returned_demo_appends_nothing(
        self, rollback: RollbackCoordinator, demos: DemoService, demo: DemoRecord
    ) -> None:
        await demos.return_demo(demo.id)

        assert await rollback.delete_demo_record(demo.id) == []

    @pytest.mark.asyncio
    async def test_delete_unknown_demo(self, rollback: RollbackCoordinator) -> None:
        with pytest.raises(NotFoundError):
            await rollback.delete_demo_record(uuid.uuid4())
