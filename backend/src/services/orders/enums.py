"""Order track status enums and transition tables.

An order carries two orthogonal tracks. The invoice track moves between
``Reserved`` and ``Invoiced``; the delivery track moves forward through
``Pending``, ``Issued`` and ``Delivered`` and steps back one state at a
time when an attachment is deleted.
"""

from enum import Enum
from typing import Dict, Set


class InvoiceStatus(str, Enum):
    """Invoice track status.

    Valid transitions:
    - RESERVED -> INVOICED (invoice attachment uploaded)
    - INVOICED -> RESERVED (invoice attachment deleted)
    """

    RESERVED = "Reserved"
    INVOICED = "Invoiced"

    @classmethod
    def from_string(cls, value: str) -> "InvoiceStatus":
        """Convert string to InvoiceStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        valid_values = ", ".join([s.value for s in cls])
        raise ValueError(
            f"Invalid invoice status: {value}. Valid values are: {valid_values}"
        )


class DeliveryStatus(str, Enum):
    """Delivery track status.

    Valid transitions:
    - PENDING -> ISSUED (delivery order uploaded, requires INVOICED)
    - ISSUED -> DELIVERED (signed delivery order uploaded)
    - DELIVERED -> ISSUED (signed delivery order deleted)
    - ISSUED -> PENDING (delivery order deleted)
    """

    PENDING = "Pending"
    ISSUED = "Issued"
    DELIVERED = "Delivered"

    @classmethod
    def from_string(cls, value: str) -> "DeliveryStatus":
        """Convert string to DeliveryStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        valid_values = ", ".join([s.value for s in cls])
        raise ValueError(
            f"Invalid delivery status: {value}. Valid values are: {valid_values}"
        )

    @property
    def has_left_pending(self) -> bool:
        """Check if delivery paperwork has been issued."""
        return self is not DeliveryStatus.PENDING


class OrderStatus(str, Enum):
    """Whether an order is still live.

    Cancellation freezes both tracks at the values they held; a cancelled
    order accepts no further transitions.
    """

    ACTIVE = "Active"
    CANCELLED = "Cancelled"


class FileType(str, Enum):
    """Attachment kinds gating the order tracks."""

    INVOICE = "invoice"
    DELIVERY_ORDER = "delivery_order"
    SIGNED_DELIVERY_ORDER = "signed_delivery_order"

    @classmethod
    def from_string(cls, value: str) -> "FileType":
        """Convert string to FileType enum.

        Accepts hyphenated spellings used in URLs.

        Raises:
            ValueError: If value is not a valid file type
        """
        try:
            return cls(value.strip().lower().replace("-", "_"))
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid file type: {value}. Valid values are: {valid_values}"
            )


INVOICE_STATUS_TRANSITIONS: Dict[InvoiceStatus, Set[InvoiceStatus]] = {
    InvoiceStatus.RESERVED: {InvoiceStatus.INVOICED},
    InvoiceStatus.INVOICED: {InvoiceStatus.RESERVED},
}

DELIVERY_STATUS_TRANSITIONS: Dict[DeliveryStatus, Set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.ISSUED},
    DeliveryStatus.ISSUED: {DeliveryStatus.DELIVERED, DeliveryStatus.PENDING},
    DeliveryStatus.DELIVERED: {DeliveryStatus.ISSUED},
}


def validate_invoice_status_transition(
    current: InvoiceStatus, new: InvoiceStatus
) -> bool:
    """Validate if invoice track transition is allowed."""
    return new in INVOICE_STATUS_TRANSITIONS.get(current, set())


def validate_delivery_status_transition(
    current: DeliveryStatus, new: DeliveryStatus
) -> bool:
    """Validate if delivery track transition is allowed."""
    return new in DELIVERY_STATUS_TRANSITIONS.get(current, set())
