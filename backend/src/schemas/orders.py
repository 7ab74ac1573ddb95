"""
Order lifecycle Pydantic schemas for API request/response validation.

This module defines schemas for order creation, the order with both of its
status tracks, versioned attachments, and the results of rollback
operations.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from src.services.orders.enums import (
    DeliveryStatus,
    FileType,
    InvoiceStatus,
    OrderStatus,
)


class OrderCreateRequest(BaseModel):
    """Create an order reserving available items."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order_number: str = Field(..., min_length=1, max_length=100)
    customer_dealer: str = Field(..., min_length=1, max_length=200)
    customer_client: Optional[str] = Field(
        None, max_length=200, description="End client, N/A if omitted"
    )
    location: Optional[str] = Field(
        None,
        max_length=200,
        description="Order location; each item keeps its own location if omitted",
    )
    serial_numbers: list[str] = Field(..., min_length=1)
    remarks: Optional[str] = Field(None, max_length=1000)
    created_date: Optional[date] = None

    @field_validator("serial_numbers")
    @classmethod
    def validate_serial_numbers(cls, v: list[str]) -> list[str]:
        """Reject blank entries and case-insensitive duplicates."""
        cleaned = [serial.strip() for serial in v]
        if any(not serial for serial in cleaned):
            raise ValueError("Serial numbers must not be blank")
        if len({serial.lower() for serial in cleaned}) != len(cleaned):
            raise ValueError("Duplicate serial numbers in order")
        return cleaned


class OrderRenameRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    new_order_number: str = Field(..., min_length=1, max_length=100)


class OrderCancelRequest(BaseModel):
    """Cancel an order that has not been delivered."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(..., min_length=1, max_length=1000)


class OrderItemSnapshot(BaseModel):
    """Item details captured when the order was created."""

    serial_number: str
    equipment_category: Optional[str] = None
    model: Optional[str] = None
    size: Optional[str] = None
    batch: Optional[str] = None
    location: Optional[str] = None


class OrderResponse(BaseModel):
    """Order with its invoice and delivery tracks."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_dealer: str
    customer_client: str
    location: Optional[str] = None
    remarks: Optional[str] = None
    items: list[OrderItemSnapshot]
    transaction_ids: list[int]
    created_date: date
    invoice_status: InvoiceStatus
    delivery_status: DeliveryStatus
    order_status: OrderStatus = OrderStatus.ACTIVE
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_transaction_ids: list[int] = Field(default_factory=list)
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    invoice_remarks: Optional[str] = None
    invoice_file_id: Optional[UUID] = None
    invoice_uploaded_at: Optional[datetime] = None
    delivery_number: Optional[str] = None
    delivery_date: Optional[date] = None
    delivery_remarks: Optional[str] = None
    delivery_file_id: Optional[UUID] = None
    delivery_uploaded_at: Optional[datetime] = None
    signed_delivery_file_id: Optional[UUID] = None
    signed_delivery_uploaded_at: Optional[datetime] = None


class AttachmentResponse(BaseModel):
    """One stored version of an order document."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    file_type: FileType
    version: int
    is_active: bool
    original_filename: str
    file_size: int
    content_type: str
    checksum: str
    storage_url: str
    upload_date: datetime
    uploaded_by: Optional[str] = None


class OrderFileStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_number: str
    has_invoice: bool
    has_delivery_order: bool
    has_signed_delivery_order: bool
    is_complete: bool
    invoice_file_id: Optional[UUID] = None
    delivery_order_file_id: Optional[UUID] = None
    signed_delivery_order_file_id: Optional[UUID] = None


class AttachmentRollbackResponse(BaseModel):
    """Outcome of deleting a document kind from an order."""

    model_config = ConfigDict(from_attributes=True)

    order_number: str
    file_type: FileType
    rows_deleted: int
    blobs_deleted: int
    reverted_to: Optional[str] = None
    compensating_transaction_ids: list[int] = Field(default_factory=list)
    blob_failures: list[str] = Field(default_factory=list)


class OrderDeletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_deleted: bool
    order_number: str
    transactions_deleted: int
    files_deleted: int
    storage_files_deleted: int
    storage_failures: list[str] = Field(default_factory=list)


class OrphanedAttachmentResponse(BaseModel):
    """Active attachment its order does not reflect."""

    model_config = ConfigDict(from_attributes=True)

    file_id: UUID
    order_number: str
    file_type: FileType
    version: int
    reason: str


class OrderCancellationResponse(BaseModel):
    """Outcome of cancelling an order."""

    model_config = ConfigDict(from_attributes=True)

    order_number: str
    reason: str
    cancelled_items: int
    cancellation_transaction_ids: list[int] = Field(default_factory=list)


class CancellableOrderResponse(BaseModel):
    """Summary of an order that may still be cancelled."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_dealer: str
    customer_client: str
    invoice_status: InvoiceStatus
    delivery_status: DeliveryStatus
    created_date: date
    transaction_ids: list[int]
    total_items: int
