"""
Rollback coordinator for user-initiated undo.

Deleting an attachment steps its track back one state and clears that
track's document fields in the same commit as the row deletion; blobs are
removed afterwards. Deletions that would strand a later track are refused
before anything is written.

Cancelling an order releases its reserved items and freezes the order; it
is refused once the order is delivered.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.core.logging import get_logger
from src.database.connection import commit_step
from src.database.models.demo import DemoRecord, DemoStatus
from src.database.models.order import Order
from src.database.models.saga import TransitionSaga
from src.database.models.transaction import ItemStatus, TransactionType
from src.services.attachments.store import AttachmentStore
from src.services.demos.service import return_events
from src.services.orders.enums import DeliveryStatus, FileType, OrderStatus
from src.services.orders.repository import OrderRepository
from src.services.orders.service import TRACK_FIELDS, reservation_events
from src.services.orders.state_machine import FORWARD_MOVES, OrderStateMachine
from src.services.storage.blob_store import BlobStore
from src.services.transactions.repository import TransactionLog

logger = get_logger(__name__)


@dataclass
class AttachmentRollback:
    """Outcome of deleting one document kind from an order."""

    order_number: str
    file_type: FileType
    rows_deleted: int
    blobs_deleted: int
    reverted_to: Optional[str] = None
    compensating_transaction_ids: list[int] = field(default_factory=list)
    blob_failures: list[str] = field(default_factory=list)


@dataclass
class OrderDeletionSummary:
    """Counts returned by ``delete_order``."""

    order_deleted: bool
    order_number: str
    transactions_deleted: int
    files_deleted: int
    storage_files_deleted: int
    storage_failures: list[str] = field(default_factory=list)


@dataclass
class OrderCancellation:
    """Outcome of ``cancel_order``."""

    order_number: str
    reason: str
    cancelled_items: int
    cancellation_transaction_ids: list[int] = field(default_factory=list)


@dataclass
class OrphanedAttachment:
    """Active attachment whose order does not reflect it."""

    file_id: uuid.UUID
    order_number: str
    file_type: FileType
    version: int
    reason: str


class RollbackCoordinator:
    """
    Reverses lifecycle transitions and deletes orders and demo loans.

    Attributes:
        orders: Order repository
        attachments: Versioned attachment store
        log: Transaction log for compensating events
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.orders = OrderRepository(session)
        self.attachments = AttachmentStore(session, blob_store, settings=self.settings)
        self.log = TransactionLog(session)
        self.state_machine = OrderStateMachine()

    async def _require_order(self, order_number: str) -> Order:
        order = await self.orders.get_by_number(order_number)
        if order is None:
            raise NotFoundError(
                f"Order {order_number} not found", order_number=order_number
            )
        return order

    async def delete_attachment(
        self, order_number: str, file_type: FileType
    ) -> AttachmentRollback:
        """
        Delete every version of a document and revert its track one step.

        Raises:
            NotFoundError: If the order or the document does not exist
            ConflictError: If a later transition depends on the document
        """
        order = await self._require_order(order_number)
        backward = self.state_machine.validate_rollback(order, file_type)

        versions = await self.attachments.history(order_number, file_type)
        if not versions and backward is None:
            raise NotFoundError(
                f"Order has no {file_type.value} attachment",
                order_number=order_number,
                file_type=file_type.value,
            )

        removed = await self.attachments.remove_rows(order_number, file_type)

        compensating: list[int] = []
        if backward is not None:
            spec = TRACK_FIELDS[file_type]
            values = {name: None for name in spec["fields"]}
            values[spec["file_id"]] = None
            values[spec["uploaded_at"]] = None
            values[backward.field] = backward.target

            updated = await self.orders.conditional_update(
                order.id, {backward.field: backward.source}, values
            )
            if not updated:
                await self.session.rollback()
                raise ConflictError(
                    "Order changed while deleting its attachment",
                    step="commit_status",
                    order_number=order_number,
                )

            if backward.source is DeliveryStatus.DELIVERED:
                events = await self.log.append_many(
                    reservation_events(order, "delivery_rollback")
                )
                self.orders.record_events(order, events)
                compensating = [event.transaction_id for event in events]

        await commit_step(
            self.session,
            "delete_attachment",
            order_number=order_number,
            file_type=file_type.value,
        )
        deletion = await self.attachments.purge_blobs(removed)

        logger.info(
            "Attachment deleted and track reverted",
            order_number=order_number,
            file_type=file_type.value,
            rows_deleted=deletion.rows_deleted,
            reverted_to=backward.target.value if backward else None,
            compensating_transaction_ids=compensating,
        )
        return AttachmentRollback(
            order_number=order_number,
            file_type=file_type,
            rows_deleted=deletion.rows_deleted,
            blobs_deleted=deletion.blobs_deleted,
            reverted_to=backward.target.value if backward else None,
            compensating_transaction_ids=compensating,
            blob_failures=deletion.blob_failures,
        )

    async def delete_delivery_data(self, order_number: str) -> list[AttachmentRollback]:
        """
        Remove all delivery paperwork, signed document first.

        Leaves the order at ``(Invoiced, Pending)``.
        """
        order = await self._require_order(order_number)
        active = await self.attachments.list_active(order_number)
        results = []

        if (
            order.delivery_status is DeliveryStatus.DELIVERED
            or FileType.SIGNED_DELIVERY_ORDER in active
        ):
            results.append(
                await self.delete_attachment(order_number, FileType.SIGNED_DELIVERY_ORDER)
            )

        order = await self._require_order(order_number)
        if (
            order.delivery_status is DeliveryStatus.ISSUED
            or FileType.DELIVERY_ORDER in active
        ):
            results.append(
                await self.delete_attachment(order_number, FileType.DELIVERY_ORDER)
            )

        return results

    async def delete_order(self, order_id: uuid.UUID) -> OrderDeletionSummary:
        """
        Delete an order, every event written on its behalf and every attachment.

        Item statuses are not reverted; items stay wherever the remaining
        log places them. Events are matched by the IDs recorded on the
        order, so they are found even after the order was renumbered.

        Raises:
            NotFoundError: If the order does not exist
            ConflictError: If the order was already delivered
        """
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)

        order_number = order.order_number
        if order.delivery_status is DeliveryStatus.DELIVERED:
            raise ConflictError(
                "Delivered orders cannot be deleted",
                step="validate",
                order_number=order_number,
            )

        transactions_deleted = await self.log.delete_order_events(
            order_number,
            [
                *(order.transaction_ids or []),
                *(order.cancellation_transaction_ids or []),
            ],
        )
        removed = await self.attachments.remove_rows(order_number)
        await self.session.execute(
            delete(TransitionSaga).where(TransitionSaga.order_number == order_number)
        )
        await self.orders.delete(order.id)
        await commit_step(self.session, "delete_order", order_number=order_number)

        deletion = await self.attachments.purge_blobs(removed)

        logger.info(
            "Order deleted",
            order_number=order_number,
            transactions_deleted=transactions_deleted,
            files_deleted=deletion.rows_deleted,
            storage_files_deleted=deletion.blobs_deleted,
        )
        return OrderDeletionSummary(
            order_deleted=True,
            order_number=order_number,
            transactions_deleted=transactions_deleted,
            files_deleted=deletion.rows_deleted,
            storage_files_deleted=deletion.blobs_deleted,
            storage_failures=deletion.blob_failures,
        )

    async def get_cancellable_orders(self) -> Sequence[Order]:
        """Orders that are neither delivered nor already cancelled."""
        return await self.orders.list_cancellable()

    async def cancel_order(
        self,
        order_number: str,
        reason: str,
        cancelled_by: Optional[str] = None,
    ) -> OrderCancellation:
        """
        Cancel an order and release its items.

        A ``Stock_In/Active`` event is appended for every item whose latest
        event is one of this order's reservation events. Both tracks keep
        the values they held; the order is marked ``Cancelled`` in the same
        commit as the appended events.

        Raises:
            ValidationError: If the reason is blank
            NotFoundError: If the order does not exist
            ConflictError: If the order is delivered or already cancelled
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                "Cancellation reason is required",
                step="validate",
                order_number=order_number,
            )

        order = await self._require_order(order_number)
        if order.is_cancelled:
            raise ConflictError(
                "Order is already cancelled",
                step="validate",
                order_number=order_number,
            )
        if order.delivery_status is DeliveryStatus.DELIVERED:
            raise ConflictError(
                "Delivered orders cannot be cancelled",
                step="validate",
                order_number=order_number,
            )

        own_events = set(order.transaction_ids or [])
        latest = await self.log.latest_for_serials(order.serial_numbers)
        held = [
            event
            for event in latest.values()
            if event.transaction_id in own_events
            and event.status is ItemStatus.RESERVED
        ]
        skipped = len(order.items or []) - len(held)
        if skipped:
            logger.warning(
                "Order items no longer held by the order",
                order_number=order_number,
                skipped=skipped,
            )

        events = await self.log.append_many(
            return_events(held, order_number, "order_cancellation")
        )
        released = [event.transaction_id for event in events]

        updated = await self.orders.conditional_update(
            order.id,
            {
                "order_status": OrderStatus.ACTIVE,
                "delivery_status": order.delivery_status,
            },
            {
                "order_status": OrderStatus.CANCELLED,
                "cancellation_reason": reason,
                "cancelled_at": datetime.now(timezone.utc),
                "cancelled_by": cancelled_by,
                "cancellation_transaction_ids": released,
            },
        )
        if not updated:
            await self.session.rollback()
            raise ConflictError(
                "Order changed while cancelling it",
                step="commit_status",
                order_number=order_number,
            )
        await commit_step(self.session, "cancel_order", order_number=order_number)

        logger.info(
            "Order cancelled",
            order_number=order_number,
            cancelled_items=len(released),
            cancellation_transaction_ids=released,
        )
        return OrderCancellation(
            order_number=order_number,
            reason=reason,
            cancelled_items=len(released),
            cancellation_transaction_ids=released,
        )

    async def delete_demo_record(self, demo_id: uuid.UUID) -> list[int]:
        """
        Delete a demo loan, returning loaned items to ``Active``.

        A ``Stock_In/Active`` event is appended for every item whose latest
        event is still this demo's loan event.

        Returns:
            IDs of the appended return events

        Raises:
            NotFoundError: If the demo does not exist
        """
        demo = await self.session.get(DemoRecord, demo_id, populate_existing=True)
        if demo is None:
            raise NotFoundError("Demo not found", demo_id=demo_id)

        demo_number = demo.demo_number
        appended: list[int] = []
        if demo.status is DemoStatus.ACTIVE:
            latest = await self.log.latest_for_serials(demo.serial_numbers)
            on_loan = [
                event
                for event in latest.values()
                if event.type is TransactionType.DEMO
                and event.status is ItemStatus.DEMO
                and event.reference == demo_number
            ]
            events = await self.log.append_many(
                return_events(on_loan, demo_number, "demo_deletion")
            )
            appended = [event.transaction_id for event in events]

        await self.session.delete(demo)
        await commit_step(self.session, "delete_demo", demo_number=demo_number)

        logger.info(
            "Demo deleted",
            demo_number=demo_number,
            items_restored=len(appended),
        )
        return appended

    async def find_orphaned_attachments(self) -> list[OrphanedAttachment]:
        """
        Active attachments whose order track does not reference them.

        These are left behind when a status commit fails after the
        attachment commit succeeded.
        """
        active = await self.attachments.repository.list_all_active()
        orders = await self.orders.list_by_numbers(
            sorted({attachment.order_number for attachment in active})
        )

        orphans = []
        for attachment in active:
            order = orders.get(attachment.order_number)
            reason = None
            if order is None:
                reason = "order_missing"
            else:
                move = FORWARD_MOVES[attachment.file_type]
                status = getattr(order, move.field)
                reached = status is move.target or (
                    attachment.file_type is FileType.DELIVERY_ORDER
                    and status is DeliveryStatus.DELIVERED
                )
                if not reached:
                    reason = "status_not_advanced"
            if reason:
                orphans.append(
                    OrphanedAttachment(
                        file_id=attachment.id,
                        order_number=attachment.order_number,
                        file_type=attachment.file_type,
                        version=attachment.version,
                        reason=reason,
                    )
                )

        if orphans:
            logger.warning("Orphaned attachments found", count=len(orphans))
        return orphans

    async def discard_orphan(self, file_id: uuid.UUID) -> int:
        """
        Delete an orphaned attachment's versions without touching the order.

        Raises:
            NotFoundError: If the attachment does not exist
            ConflictError: If the attachment is not orphaned
        """
        attachment = await self.attachments.get(file_id)
        orphan_ids = {orphan.file_id for orphan in await self.find_orphaned_attachments()}
        if attachment.id not in orphan_ids:
            raise ConflictError(
                "Attachment is referenced by its order",
                step="validate",
                file_id=file_id,
            )
        deletion = await self.attachments.delete_all(
            attachment.order_number, attachment.file_type
        )
        logger.info(
            "Orphaned attachment discarded",
            order_number=attachment.order_number,
            file_type=attachment.file_type.value,
            rows_deleted=deletion.rows_deleted,
        )
        return deletion.rows_deleted
