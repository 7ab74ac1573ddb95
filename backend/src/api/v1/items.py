"""
Inventory item API endpoints.

Stock-in registration plus read-only views over the projected item state.
Engine errors are translated to HTTP responses by the application's
exception handlers.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from src.api.deps import Inventory, Projector
from src.core.logging import get_logger
from src.schemas.items import (
    InventorySummaryResponse,
    ItemStateResponse,
    ItemStatesResponse,
    StockInRequest,
    StockInResponse,
    TransactionEventResponse,
)
from src.services.items.projector import ProjectionResult

logger = get_logger(__name__)

router = APIRouter(prefix="/items", tags=["items"])


def _states_response(result: ProjectionResult) -> ItemStatesResponse:
    return ItemStatesResponse(
        items=[
            ItemStateResponse.model_validate(state) for state in result.states.values()
        ],
        degraded=result.degraded,
        warning=result.warning,
    )


@router.post(
    "/stock-in",
    response_model=StockInResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new item",
)
async def stock_in(request: StockInRequest, service: Inventory) -> StockInResponse:
    """
    Register an item and append its ``Stock_In/Active`` event.

    Raises:
        ConflictError: 409 if the serial number already exists
    """
    item, event = await service.stock_in(
        serial_number=request.serial_number,
        equipment_category=request.equipment_category,
        model=request.model,
        size=request.size,
        batch=request.batch,
        location=request.location,
        remarks=request.remarks,
    )
    return StockInResponse(
        serial_number=item.serial_number,
        equipment_category=item.equipment_category,
        model=item.model,
        size=item.size,
        batch=item.batch,
        transaction=TransactionEventResponse.model_validate(event),
    )


@router.get(
    "/state",
    response_model=ItemStatesResponse,
    summary="Current state of items",
)
async def item_state(
    projector: Projector,
    serial: Annotated[
        Optional[list[str]],
        Query(description="Serial numbers to report; all items if omitted"),
    ] = None,
) -> ItemStatesResponse:
    result = await projector.current_state(serial)
    return _states_response(result)


@router.get(
    "/available",
    response_model=ItemStatesResponse,
    summary="Items available for orders and demos",
)
async def available_items(projector: Projector) -> ItemStatesResponse:
    return _states_response(await projector.available_items())


@router.get(
    "/summary",
    response_model=InventorySummaryResponse,
    summary="Item counts per status and location",
)
async def inventory_summary(projector: Projector) -> InventorySummaryResponse:
    return InventorySummaryResponse.model_validate(await projector.summarize())


@router.get(
    "/{serial_number}/history",
    response_model=list[TransactionEventResponse],
    summary="Full transaction history of one item",
)
async def item_history(
    serial_number: str, service: Inventory
) -> list[TransactionEventResponse]:
    """
    Raises:
        NotFoundError: 404 if the item has no transactions
    """
    events = await service.history(serial_number)
    return [TransactionEventResponse.model_validate(event) for event in events]
