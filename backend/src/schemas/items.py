"""
Inventory item Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.database.models.transaction import ItemStatus, TransactionType


class StockInRequest(BaseModel):
    """Register a new item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    serial_number: str = Field(..., min_length=1, max_length=100)
    equipment_category: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    size: Optional[str] = Field(None, max_length=50)
    batch: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(
        None, max_length=200, description="Initial location, HQ if omitted"
    )
    remarks: Optional[str] = Field(None, max_length=1000)

    @field_validator("serial_number")
    @classmethod
    def reject_blank_serial(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Serial number must not be blank")
        return v


class TransactionEventResponse(BaseModel):
    """One transaction log entry."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: int
    serial_number: str
    type: TransactionType
    status: ItemStatus
    location: str
    customer_dealer: Optional[str] = None
    customer_client: Optional[str] = None
    reference: Optional[str] = None
    source: str
    remarks: Optional[str] = None
    uploaded_at: datetime


class StockInResponse(BaseModel):
    serial_number: str
    equipment_category: str
    model: str
    size: Optional[str] = None
    batch: Optional[str] = None
    transaction: TransactionEventResponse


class ItemStateResponse(BaseModel):
    """Derived state of one item."""

    model_config = ConfigDict(from_attributes=True)

    serial_number: str
    status: ItemStatus
    location: str
    last_activity: datetime
    last_transaction_type: TransactionType
    transaction_id: int
    is_available: bool


class ItemStatesResponse(BaseModel):
    """Projection result; ``degraded`` means the log scan timed out."""

    items: list[ItemStateResponse]
    degraded: bool = False
    warning: Optional[str] = None


class InventorySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    available: int
    by_status: dict[str, int]
    by_location: dict[str, int]
    degraded: bool = False
    warning: Optional[str] = None
