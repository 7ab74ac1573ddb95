"""
Order lifecycle engine.

Owns order creation and the attachment-gated transitions of the invoice and
delivery tracks. Each transition runs as a saga of three individually
committed steps: validate, commit attachment, commit status. A failure in
the last step leaves the stored attachment in place and raises
``PersistenceError`` carrying the saga ID, so only the status commit needs
to be retried.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import (
    ConflictError,
    EngineError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)
from src.core.logging import get_logger, log_performance
from src.database.connection import commit_step
from src.database.models.attachment import Attachment
from src.database.models.item import InventoryItem, normalize_serial
from src.database.models.order import Order
from src.database.models.saga import SagaState, SagaStep, TransitionSaga
from src.database.models.transaction import ItemStatus, TransactionType
from src.services.attachments.store import AttachmentStore
from src.services.extraction.gate import ExtractionResult, requires_confirmation
from src.services.orders.enums import (
    DeliveryStatus,
    FileType,
    InvoiceStatus,
    OrderStatus,
)
from src.services.orders.repository import OrderRepository
from src.services.orders.saga import SagaLog, decode_payload
from src.services.orders.state_machine import (
    FORWARD_MOVES,
    REPLACEABLE_IN,
    OrderStateMachine,
)
from src.services.storage.blob_store import BlobStore
from src.services.transactions.repository import NewEvent, TransactionLog

logger = get_logger(__name__)

DEFAULT_CLIENT = "N/A"
DEFAULT_LOCATION = "HQ"

MODE_FORWARD = "forward"
MODE_REPLACE = "replace"

# Order columns written by each attachment kind
TRACK_FIELDS: dict[FileType, dict[str, Any]] = {
    FileType.INVOICE: {
        "fields": ("invoice_number", "invoice_date", "invoice_remarks"),
        "required": "invoice_number",
        "date_field": "invoice_date",
        "file_id": "invoice_file_id",
        "uploaded_at": "invoice_uploaded_at",
    },
    FileType.DELIVERY_ORDER: {
        "fields": ("delivery_number", "delivery_date", "delivery_remarks"),
        "required": "delivery_number",
        "date_field": "delivery_date",
        "file_id": "delivery_file_id",
        "uploaded_at": "delivery_uploaded_at",
    },
    FileType.SIGNED_DELIVERY_ORDER: {
        "fields": (),
        "required": None,
        "date_field": None,
        "file_id": "signed_delivery_file_id",
        "uploaded_at": "signed_delivery_uploaded_at",
    },
}


@dataclass
class OrderFileStatus:
    """Which documents an order currently has."""

    order_number: str
    has_invoice: bool
    has_delivery_order: bool
    has_signed_delivery_order: bool
    invoice_file_id: Optional[uuid.UUID] = None
    delivery_order_file_id: Optional[uuid.UUID] = None
    signed_delivery_order_file_id: Optional[uuid.UUID] = None

    @property
    def is_complete(self) -> bool:
        return self.has_invoice and (
            self.has_delivery_order or self.has_signed_delivery_order
        )


def delivered_events(order: Order) -> list[NewEvent]:
    """One ``Stock_Out/Delivered`` event per ordered item."""
    return _order_events(order, ItemStatus.DELIVERED, "delivery")


def reservation_events(order: Order, source: str) -> list[NewEvent]:
    """One ``Stock_Out/Reserved`` event per ordered item."""
    return _order_events(order, ItemStatus.RESERVED, source)


def _order_events(order: Order, status: ItemStatus, source: str) -> list[NewEvent]:
    return [
        NewEvent(
            serial_number=item["serial_number"],
            type=TransactionType.STOCK_OUT,
            status=status,
            location=item.get("location") or order.location or DEFAULT_LOCATION,
            customer_dealer=order.customer_dealer,
            customer_client=order.customer_client,
            reference=order.order_number,
            source=source,
        )
        for item in order.items
    ]


class OrderLifecycleEngine:
    """
    Drives orders through the invoice and delivery tracks.

    Attributes:
        orders: Order repository
        attachments: Versioned attachment store
        log: Transaction log
        sagas: Durable step log for transitions
        state_machine: Track transition rules
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the lifecycle engine.

        Args:
            session: Async database session shared by every component
            blob_store: Backend for attachment blobs
            settings: Optional settings override
        """
        self.session = session
        self.settings = settings or get_settings()
        self.orders = OrderRepository(session)
        self.attachments = AttachmentStore(session, blob_store, settings=self.settings)
        self.log = TransactionLog(session)
        self.sagas = SagaLog(session)
        self.state_machine = OrderStateMachine()

    async def get_order(self, order_number: str) -> Order:
        """
        Raises:
            NotFoundError: If the order does not exist
        """
        order = await self.orders.get_by_number(order_number)
        if order is None:
            raise NotFoundError(
                f"Order {order_number} not found", order_number=order_number
            )
        return order

    async def create_order(
        self,
        order_number: str,
        customer_dealer: str,
        serial_numbers: Sequence[str],
        customer_client: Optional[str] = None,
        location: Optional[str] = None,
        remarks: Optional[str] = None,
        created_date: Optional[date] = None,
    ) -> Order:
        """
        Create an order reserving available items.

        Availability is re-read per item right before the write. The order
        row and one ``Stock_Out/Reserved`` event per item share one commit.

        Raises:
            ValidationError: If required fields are missing or items repeat
            ConflictError: If the order number is taken
            NotFoundError: If an item has no transactions
            PreconditionError: If an item is not available
        """
        order_number = (order_number or "").strip()
        customer_dealer = (customer_dealer or "").strip()
        if not order_number:
            raise ValidationError("Order number is required", step="validate")
        if not customer_dealer:
            raise ValidationError("Dealer is required", step="validate")
        if not serial_numbers:
            raise ValidationError(
                "An order needs at least one item",
                step="validate",
                order_number=order_number,
            )

        keys = [normalize_serial(serial) for serial in serial_numbers]
        if len(set(keys)) != len(keys):
            raise ValidationError(
                "Duplicate serial numbers in order",
                step="validate",
                order_number=order_number,
            )

        if await self.orders.exists(order_number):
            raise ConflictError(
                f"Order number {order_number} already exists",
                step="validate",
                order_number=order_number,
            )

        latest = await self.log.latest_for_serials(serial_numbers)
        missing = [serial for serial, key in zip(serial_numbers, keys) if key not in latest]
        if missing:
            raise NotFoundError(
                "Items have no transactions",
                step="validate",
                serial_numbers=",".join(missing),
            )

        unavailable = [
            serial
            for serial, key in zip(serial_numbers, keys)
            if not (
                latest[key].type is TransactionType.STOCK_IN
                and latest[key].status is ItemStatus.ACTIVE
            )
        ]
        if unavailable:
            raise PreconditionError(
                "Items are not available",
                step="validate",
                serial_numbers=",".join(unavailable),
            )

        catalog = await self._catalog(keys)
        location = (location or "").strip() or None
        items = []
        for serial, key in zip(serial_numbers, keys):
            item = catalog.get(key)
            items.append(
                {
                    "serial_number": latest[key].serial_number,
                    "equipment_category": item.equipment_category if item else None,
                    "model": item.model if item else None,
                    "size": item.size if item else None,
                    "batch": item.batch if item else None,
                    "location": location or latest[key].location,
                }
            )

        order = Order(
            order_number=order_number,
            customer_dealer=customer_dealer,
            customer_client=(customer_client or "").strip() or DEFAULT_CLIENT,
            location=location,
            remarks=remarks,
            items=items,
            transaction_ids=[],
            created_date=created_date or date.today(),
            invoice_status=InvoiceStatus.RESERVED,
            delivery_status=DeliveryStatus.PENDING,
            order_status=OrderStatus.ACTIVE,
            cancellation_transaction_ids=[],
        )

        events = await self.log.append_many(reservation_events(order, "order"))
        self.orders.record_events(order, events)
        self.orders.add(order)
        await commit_step(self.session, "create_order", order_number=order_number)

        logger.info(
            "Order created",
            order_number=order_number,
            item_count=len(items),
            transaction_ids=order.transaction_ids,
        )
        return order

    async def _catalog(self, keys: Sequence[str]) -> dict[str, InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.serial_key.in_(list(keys)))
        )
        return {item.serial_key: item for item in result.scalars().all()}

    # Attachment-gated transitions

    async def attach_invoice(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        invoice_number: Optional[str] = None,
        invoice_date: Optional[date] = None,
        invoice_remarks: Optional[str] = None,
        extraction: Optional[ExtractionResult] = None,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Move the invoice track from ``Reserved`` to ``Invoiced``."""
        return await self._run_transition(
            "attach_invoice",
            order_number,
            FileType.INVOICE,
            MODE_FORWARD,
            data,
            filename,
            {
                "invoice_number": invoice_number,
                "invoice_date": invoice_date,
                "invoice_remarks": invoice_remarks,
            },
            extraction,
            uploaded_by,
        )

    async def issue_delivery_order(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        delivery_number: Optional[str] = None,
        delivery_date: Optional[date] = None,
        delivery_remarks: Optional[str] = None,
        extraction: Optional[ExtractionResult] = None,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Move the delivery track from ``Pending`` to ``Issued``."""
        return await self._run_transition(
            "issue_delivery_order",
            order_number,
            FileType.DELIVERY_ORDER,
            MODE_FORWARD,
            data,
            filename,
            {
                "delivery_number": delivery_number,
                "delivery_date": delivery_date,
                "delivery_remarks": delivery_remarks,
            },
            extraction,
            uploaded_by,
        )

    async def confirm_delivery(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Move the delivery track from ``Issued`` to ``Delivered``."""
        return await self._run_transition(
            "confirm_delivery",
            order_number,
            FileType.SIGNED_DELIVERY_ORDER,
            MODE_FORWARD,
            data,
            filename,
            {},
            None,
            uploaded_by,
        )

    async def replace_invoice(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        invoice_number: Optional[str] = None,
        invoice_date: Optional[date] = None,
        invoice_remarks: Optional[str] = None,
        extraction: Optional[ExtractionResult] = None,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Store a new invoice version; empty fields keep existing values."""
        return await self._run_transition(
            "replace_invoice",
            order_number,
            FileType.INVOICE,
            MODE_REPLACE,
            data,
            filename,
            {
                "invoice_number": invoice_number,
                "invoice_date": invoice_date,
                "invoice_remarks": invoice_remarks,
            },
            extraction,
            uploaded_by,
        )

    async def replace_delivery_order(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        delivery_number: Optional[str] = None,
        delivery_date: Optional[date] = None,
        delivery_remarks: Optional[str] = None,
        extraction: Optional[ExtractionResult] = None,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Store a new delivery order version; empty fields keep existing values."""
        return await self._run_transition(
            "replace_delivery_order",
            order_number,
            FileType.DELIVERY_ORDER,
            MODE_REPLACE,
            data,
            filename,
            {
                "delivery_number": delivery_number,
                "delivery_date": delivery_date,
                "delivery_remarks": delivery_remarks,
            },
            extraction,
            uploaded_by,
        )

    async def replace_signed_delivery_order(
        self,
        order_number: str,
        data: bytes,
        filename: str,
        uploaded_by: Optional[str] = None,
    ) -> Order:
        """Store a new signed delivery order version."""
        return await self._run_transition(
            "replace_signed_delivery_order",
            order_number,
            FileType.SIGNED_DELIVERY_ORDER,
            MODE_REPLACE,
            data,
            filename,
            {},
            None,
            uploaded_by,
        )

    async def retry_status_commit(self, saga_id: uuid.UUID) -> Order:
        """
        Re-run only the status commit of a saga whose attachment is stored.

        Raises:
            NotFoundError: If the saga does not exist
            PreconditionError: If the saga never committed its attachment
            PersistenceError: If the status commit fails again
        """
        saga = await self.sagas.get(saga_id)
        if saga.state is SagaState.COMPLETED:
            return await self.get_order(saga.order_number)
        if saga.attachment_id is None or saga.last_completed_step not in (
            SagaStep.COMMIT_ATTACHMENT,
            SagaStep.COMMIT_STATUS,
        ):
            raise PreconditionError(
                "Saga has no committed attachment to apply",
                step=SagaStep.COMMIT_STATUS.value,
                saga_id=saga_id,
            )

        logger.info(
            "Retrying status commit",
            saga_id=str(saga_id),
            order_number=saga.order_number,
        )
        return await self._commit_status(saga)

    async def recover_pending_status_commits(self) -> list[uuid.UUID]:
        """
        Retry every saga left between its attachment and status commits.

        Returns:
            IDs of the sagas that completed
        """
        recovered = []
        for saga in await self.sagas.pending_status_commits():
            saga_id = saga.id
            try:
                await self._commit_status(saga)
            except EngineError as e:
                logger.warning(
                    "Saga recovery failed",
                    saga_id=str(saga_id),
                    error=e.message,
                    error_type=type(e).__name__,
                )
                continue
            recovered.append(saga_id)

        if recovered:
            logger.info("Pending status commits recovered", count=len(recovered))
        return recovered

    async def _run_transition(
        self,
        transition: str,
        order_number: str,
        file_type: FileType,
        mode: str,
        data: bytes,
        filename: str,
        provided: dict[str, Any],
        extraction: Optional[ExtractionResult],
        uploaded_by: Optional[str],
    ) -> Order:
        order = await self.get_order(order_number)

        # Precondition errors surface before any saga is recorded
        if mode == MODE_FORWARD:
            self.state_machine.validate_forward(order, file_type)
        else:
            self.state_machine.validate_replace(order, file_type)

        with log_performance(
            logger, "order_transition", order_number=order_number, transition=transition
        ):
            saga = await self.sagas.start(order_number, file_type, transition)

            # Step 1: validate
            try:
                blob = self.attachments.validate(data, filename)
                values = self._resolve_fields(file_type, mode, provided, extraction)
            except EngineError as e:
                e.step = SagaStep.VALIDATE.value
                await self.sagas.fail(saga, SagaStep.VALIDATE, e)
                raise
            await self.sagas.advance(
                saga, SagaStep.VALIDATE, payload={"mode": mode, **values}
            )

            # Step 2: commit attachment
            try:
                if file_type is FileType.INVOICE and mode == MODE_FORWARD:
                    attachment = await self.attachments.upload(
                        order_number, file_type, data, filename, uploaded_by, validated=blob
                    )
                elif mode == MODE_FORWARD:
                    attachment = await self.attachments.upload_or_replace(
                        order_number, file_type, data, filename, uploaded_by, validated=blob
                    )
                else:
                    attachment = await self.attachments.replace(
                        order_number, file_type, data, filename, uploaded_by, validated=blob
                    )
            except EngineError as e:
                e.step = SagaStep.COMMIT_ATTACHMENT.value
                await self.sagas.fail(saga, SagaStep.COMMIT_ATTACHMENT, e)
                raise
            await self.sagas.advance(
                saga, SagaStep.COMMIT_ATTACHMENT, attachment_id=attachment.id
            )

            # Step 3: commit status
            return await self._commit_status(saga)

    def _resolve_fields(
        self,
        file_type: FileType,
        mode: str,
        provided: dict[str, Any],
        extraction: Optional[ExtractionResult],
    ) -> dict[str, Any]:
        track_fields = TRACK_FIELDS[file_type]

        if extraction is not None and requires_confirmation(
            extraction, self.settings.extraction_confidence_threshold
        ):
            raise ValidationError(
                "Extracted fields must be confirmed before use",
                step=SagaStep.VALIDATE.value,
                confidence=extraction.confidence,
            )

        values: dict[str, Any] = {}
        for name in track_fields["fields"]:
            value = provided.get(name)
            if isinstance(value, str):
                value = value.strip() or None
            if value is None and extraction is not None:
                if name == track_fields["date_field"]:
                    value = extraction.date_value(name)
                else:
                    value = extraction.text(name)
            if value is not None:
                values[name] = value

        if mode == MODE_FORWARD:
            required = track_fields["required"]
            if required and not values.get(required):
                raise ValidationError(
                    f"{required.replace('_', ' ').capitalize()} is required",
                    step=SagaStep.VALIDATE.value,
                )
            if track_fields["date_field"] and track_fields["date_field"] not in values:
                values[track_fields["date_field"]] = date.today()

        return values

    async def _commit_status(self, saga: TransitionSaga) -> Order:
        saga_id = saga.id
        order_number = saga.order_number
        file_type = saga.file_type
        attachment_id = saga.attachment_id
        payload = decode_payload(saga.payload)
        mode = payload.pop("mode", MODE_FORWARD)

        attempts = self.settings.status_commit_retries
        last_error: Optional[EngineError] = None
        for attempt in range(attempts):
            try:
                order = await self._apply_status(
                    order_number, file_type, mode, attachment_id, payload
                )
            except (NotFoundError, PreconditionError) as e:
                e.step = SagaStep.COMMIT_STATUS.value
                await self.sagas.fail(saga, SagaStep.COMMIT_STATUS, e)
                raise
            except (PersistenceError, ConflictError) as e:
                last_error = e
                logger.warning(
                    "Status commit attempt failed",
                    saga_id=str(saga_id),
                    order_number=order_number,
                    attempt=attempt + 1,
                    attempts=attempts,
                    error=e.message,
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(
                        self.settings.status_commit_backoff_seconds * (2**attempt)
                    )
                continue

            if order is not None:
                await self.sagas.complete(saga)
                return order

            last_error = ConflictError(
                "Order changed concurrently", order_number=order_number
            )

        error = PersistenceError(
            "Attachment stored but order status update failed",
            step=SagaStep.COMMIT_STATUS.value,
            saga_id=str(saga_id),
            attachment_id=str(attachment_id),
            order_number=order_number,
            file_type=file_type.value,
        )
        await self.sagas.fail(saga, SagaStep.COMMIT_STATUS, error, retryable=True)
        raise error from last_error

    async def _apply_status(
        self,
        order_number: str,
        file_type: FileType,
        mode: str,
        attachment_id: uuid.UUID,
        payload: dict[str, Any],
    ) -> Optional[Order]:
        """
        One attempt of the status commit.

        Returns:
            The updated order, or None if the order changed between the
            read and the conditional write
        """
        order = await self.get_order(order_number)
        self.state_machine.validate_open(order)
        move = FORWARD_MOVES[file_type]
        track_fields = TRACK_FIELDS[file_type]
        current = getattr(order, move.field)

        if mode == MODE_FORWARD:
            if current is move.target and getattr(order, track_fields["file_id"]) == attachment_id:
                return order
            if current is not move.source and current is not move.target:
                raise PreconditionError(
                    f"Order is {current.value}, cannot move to {move.target.value}",
                    order_number=order_number,
                )
            advancing = current is move.source
        else:
            if current not in REPLACEABLE_IN[file_type]:
                raise PreconditionError(
                    f"Order is {current.value}, nothing to replace",
                    order_number=order_number,
                )
            advancing = False

        values = dict(payload)
        values[track_fields["file_id"]] = attachment_id
        values[track_fields["uploaded_at"]] = datetime.now(timezone.utc)
        if advancing:
            values[move.field] = move.target
            if move.target is DeliveryStatus.ISSUED:
                self.state_machine.validate_forward(order, file_type)

        updated = await self.orders.conditional_update(
            order.id,
            {move.field: current, "order_status": OrderStatus.ACTIVE},
            values,
        )
        if not updated:
            await self.session.rollback()
            return None

        if advancing and move.target is DeliveryStatus.DELIVERED:
            events = await self.log.append_many(delivered_events(order))
            self.orders.record_events(order, events)

        await commit_step(
            self.session,
            SagaStep.COMMIT_STATUS.value,
            order_number=order_number,
            file_type=file_type.value,
        )

        order = await self.get_order(order_number)
        logger.info(
            "Order status committed",
            order_number=order_number,
            invoice_status=order.invoice_status.value,
            delivery_status=order.delivery_status.value,
            file_type=file_type.value,
        )
        return order

    # Queries and maintenance

    async def file_status(self, order_number: str) -> OrderFileStatus:
        """Report which documents the order currently has."""
        await self.get_order(order_number)
        active = await self.attachments.list_active(order_number)

        def file_id(file_type: FileType) -> Optional[uuid.UUID]:
            attachment: Optional[Attachment] = active.get(file_type)
            return attachment.id if attachment else None

        return OrderFileStatus(
            order_number=order_number,
            has_invoice=FileType.INVOICE in active,
            has_delivery_order=FileType.DELIVERY_ORDER in active,
            has_signed_delivery_order=FileType.SIGNED_DELIVERY_ORDER in active,
            invoice_file_id=file_id(FileType.INVOICE),
            delivery_order_file_id=file_id(FileType.DELIVERY_ORDER),
            signed_delivery_order_file_id=file_id(FileType.SIGNED_DELIVERY_ORDER),
        )

    async def rename_order(self, order_number: str, new_order_number: str) -> Order:
        """
        Change an order's number on the order, its attachments and sagas.

        Raises:
            ValidationError: If the new number is blank
            NotFoundError: If the order does not exist
            ConflictError: If the new number is already used
        """
        new_order_number = (new_order_number or "").strip()
        if not new_order_number:
            raise ValidationError("New order number is required", step="validate")

        order = await self.get_order(order_number)
        if new_order_number == order.order_number:
            return order
        if await self.orders.exists(new_order_number):
            raise ConflictError(
                f"Order number {new_order_number} already exists",
                step="validate",
                order_number=new_order_number,
            )

        order.order_number = new_order_number
        files_moved = await self.attachments.rename_order(order_number, new_order_number)
        await self.session.execute(
            update(TransitionSaga)
            .where(TransitionSaga.order_number == order_number)
            .values(order_number=new_order_number)
        )
        await commit_step(
            self.session,
            "rename_order",
            order_number=order_number,
            new_order_number=new_order_number,
        )

        logger.info(
            "Order renumbered",
            old_order_number=order_number,
            new_order_number=new_order_number,
            files_moved=files_moved,
        )
        return order
