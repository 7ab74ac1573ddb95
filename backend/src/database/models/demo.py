"""
Demo loan model.

A demo lends available items to a dealer outside the order lifecycle.
Items on loan carry a ``Demo/Demo`` event until they are returned.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel, enum_column_type


class DemoStatus(str, Enum):
    """Demo loan status."""

    ACTIVE = "Active"
    RETURNED = "Returned"


class DemoRecord(BaseModel):
    """
    Loan of inventory items for demonstration.

    Attributes:
        demo_number: Human-assigned unique demo number
        items: Snapshot of loaned items
        transaction_ids: Demo events appended at creation time
        status: Loan status
    """

    __tablename__ = "demos"

    demo_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    demo_purpose: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    customer_dealer: Mapped[str] = mapped_column(String(200), nullable=False)

    customer_client: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="N/A",
    )

    location: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[DemoStatus] = mapped_column(
        enum_column_type(DemoStatus, "demo_status"),
        nullable=False,
        default=DemoStatus.ACTIVE,
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    transaction_ids: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    created_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )

    expected_return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    actual_return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        Index("ix_demos_status", "status"),
        {"comment": "Demo loans of inventory items"},
    )

    @property
    def serial_numbers(self) -> list[str]:
        """Serial numbers from the item snapshot, in order."""
        return [item["serial_number"] for item in self.items or []]

    def __repr__(self) -> str:
        return f"<DemoRecord(demo_number={self.demo_number}, status={self.status.value})>"
