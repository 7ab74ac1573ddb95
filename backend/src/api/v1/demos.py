"""
Demo loan API endpoints.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status

from src.api.deps import Demos, Rollback
from src.core.logging import get_logger
from src.schemas.demos import (
    DemoCreateRequest,
    DemoDeletionResponse,
    DemoResponse,
    DemoReturnRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/demos", tags=["demos"])


@router.post(
    "",
    response_model=DemoResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Loan items for a demo",
)
async def create_demo(request: DemoCreateRequest, service: Demos) -> DemoResponse:
    """
    Raises:
        ConflictError: 409 if the demo number is taken
        PreconditionError: 409 if an item is not available
    """
    demo = await service.create_demo(
        demo_number=request.demo_number,
        customer_dealer=request.customer_dealer,
        serial_numbers=request.serial_numbers,
        location=request.location,
        demo_purpose=request.demo_purpose,
        customer_client=request.customer_client,
        expected_return_date=request.expected_return_date,
        remarks=request.remarks,
    )
    return DemoResponse.model_validate(demo)


@router.get("/{demo_id}", response_model=DemoResponse, summary="Get demo")
async def get_demo(demo_id: UUID, service: Demos) -> DemoResponse:
    return DemoResponse.model_validate(await service.get_demo(demo_id))


@router.post(
    "/{demo_id}/return",
    response_model=DemoResponse,
    summary="Return demo items to stock",
)
async def return_demo(
    demo_id: UUID,
    service: Demos,
    request: Optional[DemoReturnRequest] = None,
) -> DemoResponse:
    demo = await service.return_demo(
        demo_id, returned_on=request.returned_on if request else None
    )
    return DemoResponse.model_validate(demo)


@router.delete(
    "/{demo_id}",
    response_model=DemoDeletionResponse,
    summary="Delete a demo, returning items still on loan",
)
async def delete_demo(demo_id: UUID, rollback: Rollback) -> DemoDeletionResponse:
    returned = await rollback.delete_demo_record(demo_id)
    return DemoDeletionResponse(demo_id=demo_id, returned_transaction_ids=returned)
