"""
Order model with the dual-track lifecycle status.

The invoice and delivery tracks are independent columns constrained so that
delivery progress always implies a completed invoice track. Denormalized
document fields are populated only while the gating attachment exists.
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel, enum_column_type
from src.services.orders.enums import DeliveryStatus, InvoiceStatus, OrderStatus


class Order(BaseModel):
    """
    Customer order for inventory items.

    Attributes:
        order_number: Human-assigned unique order number
        customer_dealer: Dealer placing the order
        customer_client: End client, ``N/A`` when unknown
        items: Snapshot of the ordered items taken at creation time
        transaction_ids: Every event appended on behalf of the order
        invoice_status: Invoice track status
        delivery_status: Delivery track status
        order_status: ``Cancelled`` once the order is cancelled
        cancellation_transaction_ids: Release events appended on cancellation
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Human-assigned order number",
    )

    customer_dealer: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Dealer placing the order",
    )

    customer_client: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="N/A",
        comment="End client",
    )

    location: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        comment="Delivery location",
    )

    remarks: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Snapshot of ordered items",
    )

    transaction_ids: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Transaction IDs appended for the order",
    )

    created_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
        comment="Business date the order was placed",
    )

    # Track statuses
    invoice_status: Mapped[InvoiceStatus] = mapped_column(
        enum_column_type(InvoiceStatus, "invoice_status"),
        nullable=False,
        default=InvoiceStatus.RESERVED,
        comment="Invoice track status",
    )

    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        enum_column_type(DeliveryStatus, "delivery_status"),
        nullable=False,
        default=DeliveryStatus.PENDING,
        comment="Delivery track status",
    )

    order_status: Mapped[OrderStatus] = mapped_column(
        enum_column_type(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.ACTIVE,
        comment="Active or Cancelled",
    )

    # Cancellation fields
    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(1000), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    cancellation_transaction_ids: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Transaction IDs appended when the order was cancelled",
    )

    # Invoice track fields
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    invoice_remarks: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    invoice_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    invoice_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Delivery track fields
    delivery_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    delivery_remarks: Mapped[Optional[str]] = mapped_column(
        String(1000), nullable=True
    )
    delivery_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    delivery_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    signed_delivery_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    signed_delivery_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_orders_track_status", "invoice_status", "delivery_status"),
        Index("ix_orders_dealer", "customer_dealer"),
        Index("ix_orders_order_status", "order_status"),
        CheckConstraint(
            "delivery_status = 'Pending' OR invoice_status = 'Invoiced'",
            name="ck_orders_delivery_requires_invoice",
        ),
        {"comment": "Orders with invoice and delivery track status"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(order_number={self.order_number}, "
            f"invoice_status={self.invoice_status.value}, "
            f"delivery_status={self.delivery_status.value})>"
        )

    @property
    def state(self) -> tuple[InvoiceStatus, DeliveryStatus]:
        """Product state of both tracks."""
        return (self.invoice_status, self.delivery_status)

    @property
    def is_cancelled(self) -> bool:
        return self.order_status is OrderStatus.CANCELLED

    @property
    def serial_numbers(self) -> list[str]:
        """Serial numbers from the item snapshot, in order."""
        return [item["serial_number"] for item in self.items or []]

    @property
    def total_items(self) -> int:
        return len(self.items or [])
