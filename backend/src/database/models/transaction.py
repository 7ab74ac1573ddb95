"""
Transaction event model for the append-only item log.

Rows are inserted and never updated. The greatest ``transaction_id`` for a
serial number is the authoritative event for that item.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, enum_column_type


class TransactionType(str, Enum):
    """Kind of movement recorded by a transaction event."""

    STOCK_IN = "Stock_In"
    STOCK_OUT = "Stock_Out"
    DEMO = "Demo"

    @classmethod
    def from_string(cls, value: str) -> "TransactionType":
        """
        Create TransactionType from string value, case-insensitively.

        Raises:
            ValueError: If value is not a valid type
        """
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Invalid transaction type: {value}")


class ItemStatus(str, Enum):
    """Item status carried by a transaction event."""

    ACTIVE = "Active"
    RESERVED = "Reserved"
    DELIVERED = "Delivered"
    DEMO = "Demo"

    @classmethod
    def from_string(cls, value: str) -> "ItemStatus":
        """
        Create ItemStatus from string value, case-insensitively.

        Raises:
            ValueError: If value is not a valid status
        """
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Invalid item status: {value}")


class TransactionEvent(Base):
    """
    Immutable per-item event.

    Attributes:
        transaction_id: Increasing event identifier
        serial_number: Item serial number as entered
        serial_key: Normalized serial number used for grouping
        type: Movement type
        status: Item status after this event
        location: Item location after this event
        reference: Order or demo number that produced the event
        source: Producer of the event (stock_in, order, delivery, demo...)
        uploaded_at: Time the event was recorded
    """

    __tablename__ = "transactions"

    transaction_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Increasing event identifier",
    )

    serial_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Item serial number as entered",
    )

    serial_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Lower-cased serial number",
    )

    type: Mapped[TransactionType] = mapped_column(
        enum_column_type(TransactionType, "transaction_type"),
        nullable=False,
        comment="Movement type",
    )

    status: Mapped[ItemStatus] = mapped_column(
        enum_column_type(ItemStatus, "item_status"),
        nullable=False,
        comment="Item status after this event",
    )

    location: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Item location after this event",
    )

    customer_dealer: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
    )

    customer_client: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
    )

    reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Order or demo number",
    )

    source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="manual",
        comment="Producer of the event",
    )

    remarks: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Time the event was recorded",
    )

    __table_args__ = (
        Index("ix_transactions_serial_key_tx", "serial_key", "transaction_id"),
        Index("ix_transactions_reference", "reference"),
        {
            "comment": "Append-only item transaction log",
            "sqlite_autoincrement": True,
        },
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionEvent(transaction_id={self.transaction_id}, "
            f"serial_number={self.serial_number}, type={self.type.value}, "
            f"status={self.status.value})>"
        )
