"""Order state machine for the invoice and delivery tracks.

Each attachment kind gates exactly one forward transition and, when deleted,
one backward transition. Guards keyed by ``(from, to)`` enforce the
cross-track rule that delivery progress requires a completed invoice track.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Union

from src.core.exceptions import ConflictError, PreconditionError
from src.core.logging import get_logger
from src.database.models.order import Order
from src.services.orders.enums import (
    DeliveryStatus,
    FileType,
    InvoiceStatus,
    validate_delivery_status_transition,
    validate_invoice_status_transition,
)

logger = get_logger(__name__)

TrackStatus = Union[InvoiceStatus, DeliveryStatus]


@dataclass(frozen=True)
class TrackMove:
    """One step on a single track."""

    field: str
    source: TrackStatus
    target: TrackStatus


# Forward transition gated by each attachment kind
FORWARD_MOVES: Dict[FileType, TrackMove] = {
    FileType.INVOICE: TrackMove(
        "invoice_status", InvoiceStatus.RESERVED, InvoiceStatus.INVOICED
    ),
    FileType.DELIVERY_ORDER: TrackMove(
        "delivery_status", DeliveryStatus.PENDING, DeliveryStatus.ISSUED
    ),
    FileType.SIGNED_DELIVERY_ORDER: TrackMove(
        "delivery_status", DeliveryStatus.ISSUED, DeliveryStatus.DELIVERED
    ),
}

# Track state in which each attachment kind may be replaced
REPLACEABLE_IN: Dict[FileType, set] = {
    FileType.INVOICE: {InvoiceStatus.INVOICED},
    FileType.DELIVERY_ORDER: {DeliveryStatus.ISSUED, DeliveryStatus.DELIVERED},
    FileType.SIGNED_DELIVERY_ORDER: {DeliveryStatus.DELIVERED},
}


class OrderStateMachine:
    """Validates track transitions for an order.

    Forward violations raise ``PreconditionError``; backward moves that
    would strand a later track raise ``ConflictError``.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            tuple[TrackStatus, TrackStatus], Callable[[Order], None]
        ] = self._initialize_guards()

    def _initialize_guards(
        self,
    ) -> Dict[tuple[TrackStatus, TrackStatus], Callable[[Order], None]]:
        return {
            (DeliveryStatus.PENDING, DeliveryStatus.ISSUED): self._guard_invoiced,
            (InvoiceStatus.INVOICED, InvoiceStatus.RESERVED): (
                self._guard_delivery_pending
            ),
            (DeliveryStatus.ISSUED, DeliveryStatus.PENDING): (
                self._guard_not_delivered
            ),
        }

    def _guard_invoiced(self, order: Order) -> None:
        if order.invoice_status is not InvoiceStatus.INVOICED:
            raise PreconditionError(
                "Delivery order requires an invoiced order",
                step="validate",
                order_number=order.order_number,
                invoice_status=order.invoice_status.value,
            )

    def _guard_delivery_pending(self, order: Order) -> None:
        if order.delivery_status is not DeliveryStatus.PENDING:
            raise ConflictError(
                "Cannot remove the invoice while delivery paperwork exists",
                step="validate",
                order_number=order.order_number,
                delivery_status=order.delivery_status.value,
            )

    def _guard_not_delivered(self, order: Order) -> None:
        if order.delivery_status is DeliveryStatus.DELIVERED:
            raise ConflictError(
                "Cannot remove the delivery order while the signed delivery order exists",
                step="validate",
                order_number=order.order_number,
            )

    def _is_allowed(self, move: TrackMove) -> bool:
        if isinstance(move.source, InvoiceStatus):
            return validate_invoice_status_transition(move.source, move.target)
        return validate_delivery_status_transition(move.source, move.target)

    def validate_open(self, order: Order) -> None:
        """
        Raises:
            PreconditionError: If the order has been cancelled
        """
        if order.is_cancelled:
            raise PreconditionError(
                "Cancelled orders cannot change",
                step="validate",
                order_number=order.order_number,
                order_status=order.order_status.value,
            )

    def validate_forward(self, order: Order, file_type: FileType) -> TrackMove:
        """
        Validate the transition gated by uploading ``file_type``.

        Raises:
            PreconditionError: If the order is not in the source state
        """
        self.validate_open(order)
        move = FORWARD_MOVES[file_type]
        current = getattr(order, move.field)

        if current is not move.source:
            raise PreconditionError(
                f"Order must be {move.source.value} to move to {move.target.value}",
                step="validate",
                order_number=order.order_number,
                current_status=current.value,
                file_type=file_type.value,
            )

        guard = self._transition_guards.get((move.source, move.target))
        if guard is not None:
            guard(order)

        logger.debug(
            "Forward transition validated",
            order_number=order.order_number,
            transition=f"{move.source.value}->{move.target.value}",
        )
        return move

    def validate_replace(self, order: Order, file_type: FileType) -> None:
        """
        Validate that ``file_type`` may be replaced without a status change.

        Raises:
            PreconditionError: If the track has not reached that document yet
        """
        self.validate_open(order)
        move = FORWARD_MOVES[file_type]
        current = getattr(order, move.field)
        if current not in REPLACEABLE_IN[file_type]:
            raise PreconditionError(
                f"No {file_type.value} to replace while order is {current.value}",
                step="validate",
                order_number=order.order_number,
                current_status=current.value,
            )

    def validate_rollback(self, order: Order, file_type: FileType) -> TrackMove | None:
        """
        Validate reverting the transition gated by ``file_type``.

        Returns:
            The backward move, or None when the track is already before it

        Raises:
            PreconditionError: If the order has been cancelled
            ConflictError: If a later transition depends on this attachment
        """
        self.validate_open(order)
        forward = FORWARD_MOVES[file_type]
        current = getattr(order, forward.field)
        backward = TrackMove(forward.field, forward.target, forward.source)

        if file_type is FileType.DELIVERY_ORDER and current is DeliveryStatus.DELIVERED:
            self._guard_not_delivered(order)

        if current is not forward.target:
            return None

        if not self._is_allowed(backward):
            raise ConflictError(
                f"Cannot revert {backward.source.value} to {backward.target.value}",
                step="validate",
                order_number=order.order_number,
            )

        guard = self._transition_guards.get((backward.source, backward.target))
        if guard is not None:
            guard(order)

        return backward
