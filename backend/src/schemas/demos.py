"""
Demo loan Pydantic schemas for API request/response validation.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.database.models.demo import DemoStatus


class DemoCreateRequest(BaseModel):
    """Loan available items for a demo."""

    model_config = ConfigDict(str_strip_whitespace=True)

    demo_number: str = Field(..., min_length=1, max_length=100)
    customer_dealer: str = Field(..., min_length=1, max_length=200)
    customer_client: Optional[str] = Field(None, max_length=200)
    location: str = Field(..., min_length=1, max_length=200)
    serial_numbers: list[str] = Field(..., min_length=1)
    demo_purpose: Optional[str] = Field(None, max_length=500)
    expected_return_date: Optional[date] = None
    remarks: Optional[str] = Field(None, max_length=1000)


class DemoReturnRequest(BaseModel):
    returned_on: Optional[date] = Field(
        None, description="Actual return date, today if omitted"
    )


class DemoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    demo_number: str
    demo_purpose: Optional[str] = None
    customer_dealer: str
    customer_client: str
    location: str
    status: DemoStatus
    serial_numbers: list[str]
    transaction_ids: list[int]
    created_date: date
    expected_return_date: Optional[date] = None
    actual_return_date: Optional[date] = None
    remarks: Optional[str] = None


class DemoDeletionResponse(BaseModel):
    demo_id: UUID
    returned_transaction_ids: list[int]
