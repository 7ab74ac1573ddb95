"""
Test suite for the rollback coordinator.

Covers attachment deletion with track reversal, the delivery data cascade,
order deletion, cancellation and orphaned attachment repair.
"""

import uuid
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings
from src.core.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    StorageError,
    ValidationError,
)
from src.database.models.order import Order
from src.database.models.transaction import ItemStatus
from src.services.items.projector import ItemStateProjector
from src.services.orders.enums import (
    DeliveryStatus,
    FileType,
    InvoiceStatus,
    OrderStatus,
)
from src.services.orders.repository import OrderRepository
from src.services.orders.rollback import RollbackCoordinator
from src.services.orders.service import OrderLifecycleEngine
from src.services.storage.blob_store import LocalBlobStore


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def lifecycle(
    session: AsyncSession, blob_store: LocalBlobStore, settings: Settings
) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(session, blob_store, settings=settings)


@pytest_asyncio.fixture
async def rollback(
    session: AsyncSession, blob_store: LocalBlobStore, settings: Settings
) -> RollbackCoordinator:
    return RollbackCoordinator(session, blob_store, settings=settings)


@pytest_asyncio.fixture
async def order(lifecycle: OrderLifecycleEngine, stock) -> Order:
    await stock("SN-1", "SN-2")
    return await lifecycle.create_order("O1", "Dealer A", ["SN-1", "SN-2"])


@pytest_asyncio.fixture
async def issued(lifecycle: OrderLifecycleEngine, order: Order, make_pdf) -> Order:
    """Order O1 at (Invoiced, Issued)."""
    await lifecycle.attach_invoice(
        "O1", make_pdf("inv"), "invoice.pdf", invoice_number="INV-001"
    )
    return await lifecycle.issue_delivery_order(
        "O1", make_pdf("do"), "do.pdf", delivery_number="DO-55"
    )


@pytest_asyncio.fixture
async def delivered(lifecycle: OrderLifecycleEngine, issued: Order, make_pdf) -> Order:
    """Order O1 at (Invoiced, Delivered)."""
    return await lifecycle.confirm_delivery("O1", make_pdf("signed"), "signed.pdf")


# ============================================================================
# Attachment Deletion Tests
# ============================================================================


class TestDeleteAttachment:
    """Test deleting a document and stepping its track back."""

    @pytest.mark.asyncio
    async def test_invoice_deletion_while_issued_conflicts_without_mutation(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        issued: Order,
    ) -> None:
        with pytest.raises(ConflictError):
            await rollback.delete_attachment("O1", FileType.INVOICE)

        current = await lifecycle.get_order("O1")
        assert current.state == (InvoiceStatus.INVOICED, DeliveryStatus.ISSUED)
        assert current.invoice_number == "INV-001"
        assert await lifecycle.attachments.get_active("O1", FileType.INVOICE) is not None

    @pytest.mark.asyncio
    async def test_delivery_order_deletion_while_delivered_conflicts(
        self, rollback: RollbackCoordinator, delivered: Order
    ) -> None:
        with pytest.raises(ConflictError):
            await rollback.delete_attachment("O1", FileType.DELIVERY_ORDER)

    @pytest.mark.asyncio
    async def test_invoice_deletion_clears_fields_and_blobs(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        blob_root: Path,
        make_pdf,
    ) -> None:
        await lifecycle.attach_invoice(
            "O1", make_pdf("v1"), "invoice.pdf", invoice_number="INV-001"
        )
        await lifecycle.replace_invoice("O1", make_pdf("v2"), "invoice.pdf")

        result = await rollback.delete_attachment("O1", FileType.INVOICE)

        current = await lifecycle.get_order("O1")
        assert current.state == (InvoiceStatus.RESERVED, DeliveryStatus.PENDING)
        assert current.invoice_number is None
        assert current.invoice_date is None
        assert current.invoice_file_id is None
        assert result.rows_deleted == 2
        assert result.blobs_deleted == 2
        assert result.reverted_to == "Reserved"
        assert result.compensating_transaction_ids == []
        assert list(blob_root.rglob("*.pdf")) == []

    @pytest.mark.asyncio
    async def test_missing_document_not_found(
        self, rollback: RollbackCoordinator, order: Order
    ) -> None:
        with pytest.raises(NotFoundError):
            await rollback.delete_attachment("O1", FileType.SIGNED_DELIVERY_ORDER)

    @pytest.mark.asyncio
    async def test_unknown_order_not_found(self, rollback: RollbackCoordinator) -> None:
        with pytest.raises(NotFoundError):
            await rollback.delete_attachment("NOPE", FileType.INVOICE)

    @pytest.mark.asyncio
    async def test_blob_failure_is_reported_not_raised(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        make_pdf,
    ) -> None:
        await lifecycle.attach_invoice(
            "O1", make_pdf("v1"), "invoice.pdf", invoice_number="INV-001"
        )

        with patch.object(
            rollback.attachments.blob_store,
            "delete",
            AsyncMock(side_effect=StorageError("disk gone")),
        ):
            result = await rollback.delete_attachment("O1", FileType.INVOICE)

        assert result.rows_deleted == 1
        assert result.blobs_deleted == 0
        assert len(result.blob_failures) == 1
        assert (await lifecycle.get_order("O1")).invoice_status is InvoiceStatus.RESERVED

    @pytest.mark.asyncio
    async def test_status_write_failure_rolls_back_row_deletion(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        make_pdf,
    ) -> None:
        await lifecycle.attach_invoice(
            "O1", make_pdf("v1"), "invoice.pdf", invoice_number="INV-001"
        )

        with patch.object(
            OrderRepository,
            "conditional_update",
            AsyncMock(return_value=False),
        ):
            with pytest.raises(ConflictError):
                await rollback.delete_attachment("O1", FileType.INVOICE)

        assert await lifecycle.attachments.get_active("O1", FileType.INVOICE) is not None
        assert (await lifecycle.get_order("O1")).invoice_status is InvoiceStatus.INVOICED


# ============================================================================
# Delivery Cascade Tests
# ============================================================================


class TestDeleteDeliveryData:
    """Test the ordered delivery paperwork cascade."""

    @pytest.mark.asyncio
    async def test_cascade_from_delivered(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        delivered: Order,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        results = await rollback.delete_delivery_data("O1")

        current = await lifecycle.get_order("O1")
        assert [r.file_type for r in results] == [
            FileType.SIGNED_DELIVERY_ORDER,
            FileType.DELIVERY_ORDER,
        ]
        assert current.state == (InvoiceStatus.INVOICED, DeliveryStatus.PENDING)
        assert current.delivery_number is None
        assert current.delivery_file_id is None
        assert current.invoice_number == "INV-001"

        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1"])
        ).states
        assert states["SN-1"].status is ItemStatus.RESERVED

    @pytest.mark.asyncio
    async def test_cascade_with_nothing_to_delete(
        self, rollback: RollbackCoordinator, order: Order
    ) -> None:
        assert await rollback.delete_delivery_data("O1") == []


# ============================================================================
# Order Deletion Tests
# ============================================================================


class TestDeleteOrder:
    """Test deleting whole orders."""

    @pytest.mark.asyncio
    async def test_delete_order_removes_events_and_files(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        issued: Order,
        session: AsyncSession,
        settings: Settings,
        blob_root: Path,
    ) -> None:
        order_id = issued.id

        summary = await rollback.delete_order(order_id)

        assert summary.order_deleted is True
        assert summary.order_number == "O1"
        assert summary.transactions_deleted == 2
        assert summary.files_deleted == 2
        assert summary.storage_files_deleted == 2
        assert summary.storage_failures == []
        assert list(blob_root.rglob("*.pdf")) == []
        with pytest.raises(NotFoundError):
            await lifecycle.get_order("O1")

        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1", "SN-2"])
        ).states
        assert all(state.is_available for state in states.values())

    @pytest.mark.asyncio
    async def test_delete_after_rename_removes_delivery_events(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        delivered: Order,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        await rollback.delete_attachment("O1", FileType.SIGNED_DELIVERY_ORDER)
        renamed = await lifecycle.rename_order("O1", "O1-B")
        assert len(renamed.transaction_ids) == 6

        summary = await rollback.delete_order(renamed.id)

        assert summary.transactions_deleted == 6
        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1", "SN-2"])
        ).states
        assert all(state.is_available for state in states.values())

    @pytest.mark.asyncio
    async def test_delivered_order_cannot_be_deleted(
        self, rollback: RollbackCoordinator, delivered: Order
    ) -> None:
        with pytest.raises(ConflictError):
            await rollback.delete_order(delivered.id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, rollback: RollbackCoordinator) -> None:
        with pytest.raises(NotFoundError):
            await rollback.delete_order(uuid.uuid4())


# ============================================================================
# Cancellation Tests
# ============================================================================


class TestCancelOrder:
    """Test cancelling orders and releasing their items."""

    @pytest.mark.asyncio
    async def test_cancel_releases_items_and_keeps_tracks(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        issued: Order,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        result = await rollback.cancel_order("O1", "Customer withdrew", cancelled_by="admin-1")

        current = await lifecycle.get_order("O1")
        assert result.cancelled_items == 2
        assert len(result.cancellation_transaction_ids) == 2
        assert current.order_status is OrderStatus.CANCELLED
        assert current.is_cancelled
        assert current.state == (InvoiceStatus.INVOICED, DeliveryStatus.ISSUED)
        assert current.cancellation_reason == "Customer withdrew"
        assert current.cancelled_by == "admin-1"
        assert current.cancelled_at is not None
        assert current.cancellation_transaction_ids == result.cancellation_transaction_ids

        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1", "SN-2"])
        ).states
        assert all(state.is_available for state in states.values())

    @pytest.mark.asyncio
    async def test_cancelled_items_can_be_ordered_again(
        self, rollback: RollbackCoordinator, lifecycle: OrderLifecycleEngine, order: Order
    ) -> None:
        await rollback.cancel_order("O1", "Duplicate order")

        again = await lifecycle.create_order("O2", "Dealer B", ["SN-1", "SN-2"])

        assert again.serial_numbers == ["SN-1", "SN-2"]

    @pytest.mark.asyncio
    async def test_cancel_twice_conflicts(
        self, rollback: RollbackCoordinator, order: Order
    ) -> None:
        await rollback.cancel_order("O1", "Customer withdrew")

        with pytest.raises(ConflictError):
            await rollback.cancel_order("O1", "Again")

    @pytest.mark.asyncio
    async def test_delivered_order_cannot_be_cancelled(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        delivered: Order,
    ) -> None:
        with pytest.raises(ConflictError):
            await rollback.cancel_order("O1", "Too late")

        current = await lifecycle.get_order("O1")
        assert current.order_status is OrderStatus.ACTIVE
        assert current.cancellation_transaction_ids == []

    @pytest.mark.asyncio
    async def test_blank_reason_rejected(
        self, rollback: RollbackCoordinator, order: Order
    ) -> None:
        with pytest.raises(ValidationError):
            await rollback.cancel_order("O1", "   ")

    @pytest.mark.asyncio
    async def test_unknown_order_not_found(self, rollback: RollbackCoordinator) -> None:
        with pytest.raises(NotFoundError):
            await rollback.cancel_order("NOPE", "Customer withdrew")

    @pytest.mark.asyncio
    async def test_cancelled_order_refuses_transitions(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        make_pdf,
    ) -> None:
        await rollback.cancel_order("O1", "Customer withdrew")

        with pytest.raises(PreconditionError):
            await lifecycle.attach_invoice(
                "O1", make_pdf("inv"), "invoice.pdf", invoice_number="INV-001"
            )
        assert await lifecycle.attachments.get_active("O1", FileType.INVOICE) is None

    @pytest.mark.asyncio
    async def test_cancelled_order_refuses_attachment_deletion(
        self,
        rollback: RollbackCoordinator,
        issued: Order,
    ) -> None:
        await rollback.cancel_order("O1", "Customer withdrew")

        with pytest.raises(PreconditionError):
            await rollback.delete_attachment("O1", FileType.DELIVERY_ORDER)

    @pytest.mark.asyncio
    async def test_cancel_after_rename_releases_items(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        await lifecycle.rename_order("O1", "O1-B")

        result = await rollback.cancel_order("O1-B", "Customer withdrew")

        assert result.cancelled_items == 2
        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1", "SN-2"])
        ).states
        assert all(state.is_available for state in states.values())

    @pytest.mark.asyncio
    async def test_deleting_cancelled_order_removes_release_events(
        self,
        rollback: RollbackCoordinator,
        order: Order,
        session: AsyncSession,
        settings: Settings,
    ) -> None:
        await rollback.cancel_order("O1", "Customer withdrew")

        summary = await rollback.delete_order(order.id)

        assert summary.transactions_deleted == 4
        states = (
            await ItemStateProjector(session, settings).current_state(["SN-1", "SN-2"])
        ).states
        assert all(state.is_available for state in states.values())

    @pytest.mark.asyncio
    async def test_cancellable_orders_exclude_cancelled_and_delivered(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        delivered: Order,
        stock,
    ) -> None:
        await stock("SN-3", "SN-4")
        await lifecycle.create_order("O2", "Dealer A", ["SN-3"])
        await lifecycle.create_order("O3", "Dealer A", ["SN-4"])
        await rollback.cancel_order("O3", "Customer withdrew")

        cancellable = await rollback.get_cancellable_orders()

        assert [order.order_number for order in cancellable] == ["O2"]


# ============================================================================
# Orphan Repair Tests
# ============================================================================


class TestOrphans:
    """Test finding and discarding attachments without a status commit."""

    @pytest.mark.asyncio
    async def test_discard_orphan(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        order: Order,
        make_pdf,
    ) -> None:
        with patch.object(
            OrderRepository,
            "conditional_update",
            AsyncMock(side_effect=PersistenceError("down", step="commit_status")),
        ):
            with pytest.raises(PersistenceError):
                await lifecycle.attach_invoice(
                    "O1", make_pdf("inv"), "invoice.pdf", invoice_number="INV-001"
                )
        [orphan] = await rollback.find_orphaned_attachments()

        deleted = await rollback.discard_orphan(orphan.file_id)

        assert deleted == 1
        assert await rollback.find_orphaned_attachments() == []
        assert await lifecycle.attachments.get_active("O1", FileType.INVOICE) is None

    @pytest.mark.asyncio
    async def test_referenced_attachment_is_not_an_orphan(
        self,
        rollback: RollbackCoordinator,
        lifecycle: OrderLifecycleEngine,
        issued: Order,
    ) -> None:
        assert await rollback.find_orphaned_attachments() == []

        with pytest.raises(ConflictError):
            await rollback.discard_orphan(issued.invoice_file_id)
