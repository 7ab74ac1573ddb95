"""
Order lifecycle API endpoints.

Implements order creation, the attachment-gated invoice and delivery
transitions (multipart uploads), attachment history and restore, saga
retry, cancellation and rollback operations. Engine errors are translated
to HTTP responses by the application's exception handlers.
"""

from datetime import date
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from src.api.deps import Actor, LifecycleEngine, Rollback
from src.core.exceptions import ValidationError
from src.core.logging import get_logger
from src.schemas.orders import (
    AttachmentResponse,
    AttachmentRollbackResponse,
    CancellableOrderResponse,
    OrderCancellationResponse,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderDeletionResponse,
    OrderFileStatusResponse,
    OrderRenameRequest,
    OrderResponse,
    OrphanedAttachmentResponse,
)
from src.services.extraction.gate import ExtractionResult
from src.services.orders.enums import FileType

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

READ_CHUNK_BYTES = 64 * 1024

DocumentFile = Annotated[UploadFile, File(description="PDF or image of the document")]
FormText = Annotated[Optional[str], Form()]
FormDate = Annotated[Optional[date], Form()]
ExtractionConfidence = Annotated[
    Optional[float],
    Form(
        ge=0.0,
        le=1.0,
        description="Confidence of client-side field extraction, if fields were extracted",
    ),
]
FieldsConfirmed = Annotated[
    bool, Form(description="A person reviewed the extracted fields")
]


def _file_type(value: str) -> FileType:
    try:
        return FileType.from_string(value)
    except ValueError as e:
        raise ValidationError(str(e), step="validate", file_type=value) from e


def _extraction(
    confidence: Optional[float], confirmed: bool, fields: dict[str, object]
) -> Optional[ExtractionResult]:
    """Fields typed in from an extraction are gated by its confidence."""
    if confidence is None:
        return None
    return ExtractionResult(
        success=True,
        confidence=confidence,
        fields={name: value for name, value in fields.items() if value is not None},
        confirmed=confirmed,
    )


async def _read(file: UploadFile, max_bytes: int) -> tuple[bytes, str]:
    """Read an upload, giving up as soon as it passes ``max_bytes``."""
    filename = file.filename or ""
    if file.size is not None and file.size > max_bytes:
        raise _oversize(filename, file.size, max_bytes)

    chunks: list[bytes] = []
    size = 0
    while chunk := await file.read(READ_CHUNK_BYTES):
        size += len(chunk)
        if size > max_bytes:
            raise _oversize(filename, size, max_bytes)
        chunks.append(chunk)

    logger.debug(
        "Attachment received",
        filename=filename,
        content_type=file.content_type,
        size=size,
    )
    return b"".join(chunks), filename


def _oversize(filename: str, size: int, max_bytes: int) -> ValidationError:
    return ValidationError(
        f"File exceeds maximum size of {max_bytes} bytes",
        step="validate",
        filename=filename,
        size=size,
        max_bytes=max_bytes,
    )


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
    description="Reserve available items under a new order number",
)
async def create_order(
    request: OrderCreateRequest, engine: LifecycleEngine
) -> OrderResponse:
    """
    Raises:
        ConflictError: 409 if the order number is taken
        NotFoundError: 404 if an item has no transactions
        PreconditionError: 409 if an item is not available
    """
    order = await engine.create_order(
        order_number=request.order_number,
        customer_dealer=request.customer_dealer,
        serial_numbers=request.serial_numbers,
        customer_client=request.customer_client,
        location=request.location,
        remarks=request.remarks,
        created_date=request.created_date,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/orphans",
    response_model=list[OrphanedAttachmentResponse],
    summary="Active attachments not reflected on their order",
)
async def list_orphaned_attachments(
    rollback: Rollback,
) -> list[OrphanedAttachmentResponse]:
    orphans = await rollback.find_orphaned_attachments()
    return [OrphanedAttachmentResponse.model_validate(orphan) for orphan in orphans]


@router.delete(
    "/orphans/{file_id}",
    summary="Discard an orphaned attachment",
)
async def discard_orphaned_attachment(file_id: UUID, rollback: Rollback) -> dict:
    rows_deleted = await rollback.discard_orphan(file_id)
    return {"file_id": str(file_id), "rows_deleted": rows_deleted}


@router.get(
    "/cancellable",
    response_model=list[CancellableOrderResponse],
    summary="Orders that are neither delivered nor cancelled",
)
async def list_cancellable_orders(
    rollback: Rollback,
) -> list[CancellableOrderResponse]:
    orders = await rollback.get_cancellable_orders()
    return [CancellableOrderResponse.model_validate(order) for order in orders]


@router.post(
    "/sagas/{saga_id}/retry",
    response_model=OrderResponse,
    summary="Retry the status commit of a failed transition",
)
async def retry_status_commit(saga_id: UUID, engine: LifecycleEngine) -> OrderResponse:
    """
    Re-apply a stored attachment to its order without re-uploading it.

    Raises:
        PersistenceError: 503 if the status commit fails again
    """
    order = await engine.retry_status_commit(saga_id)
    return OrderResponse.model_validate(order)


@router.post(
    "/files/{file_id}/restore",
    response_model=AttachmentResponse,
    summary="Make a historical attachment version active",
)
async def restore_attachment(
    file_id: UUID, engine: LifecycleEngine
) -> AttachmentResponse:
    attachment = await engine.attachments.restore(file_id)
    return AttachmentResponse.model_validate(attachment)


@router.delete(
    "/by-id/{order_id}",
    response_model=OrderDeletionResponse,
    summary="Delete an order with its events and attachments",
)
async def delete_order(order_id: UUID, rollback: Rollback) -> OrderDeletionResponse:
    """
    Raises:
        ConflictError: 409 if the order was already delivered
    """
    summary = await rollback.delete_order(order_id)
    return OrderDeletionResponse.model_validate(summary)


@router.get(
    "/{order_number}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(order_number: str, engine: LifecycleEngine) -> OrderResponse:
    return OrderResponse.model_validate(await engine.get_order(order_number))


@router.post(
    "/{order_number}/rename",
    response_model=OrderResponse,
    summary="Change an order number",
)
async def rename_order(
    order_number: str, request: OrderRenameRequest, engine: LifecycleEngine
) -> OrderResponse:
    order = await engine.rename_order(order_number, request.new_order_number)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_number}/cancel",
    response_model=OrderCancellationResponse,
    summary="Cancel an order and release its items",
)
async def cancel_order(
    order_number: str,
    request: OrderCancelRequest,
    rollback: Rollback,
    actor: Actor,
) -> OrderCancellationResponse:
    """
    Raises:
        ConflictError: 409 if the order is delivered or already cancelled
    """
    result = await rollback.cancel_order(order_number, request.reason, cancelled_by=actor)
    return OrderCancellationResponse.model_validate(result)


@router.get(
    "/{order_number}/files",
    response_model=OrderFileStatusResponse,
    summary="Which documents an order has",
)
async def file_status(
    order_number: str, engine: LifecycleEngine
) -> OrderFileStatusResponse:
    return OrderFileStatusResponse.model_validate(
        await engine.file_status(order_number)
    )


@router.get(
    "/{order_number}/files/{file_type}/history",
    response_model=list[AttachmentResponse],
    summary="Every stored version of one document",
)
async def attachment_history(
    order_number: str, file_type: str, engine: LifecycleEngine
) -> list[AttachmentResponse]:
    versions = await engine.attachments.history(order_number, _file_type(file_type))
    return [AttachmentResponse.model_validate(version) for version in versions]


@router.post(
    "/{order_number}/files/{file_type}/prune",
    summary="Delete old inactive versions of one document",
)
async def prune_attachment_history(
    order_number: str,
    file_type: str,
    engine: LifecycleEngine,
    keep: Annotated[Optional[int], Query(ge=0)] = None,
) -> dict:
    deletion = await engine.attachments.prune_history(
        order_number, _file_type(file_type), keep
    )
    return {
        "rows_deleted": deletion.rows_deleted,
        "blobs_deleted": deletion.blobs_deleted,
        "blob_failures": deletion.blob_failures,
    }


@router.delete(
    "/{order_number}/files/{file_type}",
    response_model=AttachmentRollbackResponse,
    summary="Delete a document and step its track back",
)
async def delete_attachment(
    order_number: str, file_type: str, rollback: Rollback
) -> AttachmentRollbackResponse:
    """
    Raises:
        ConflictError: 409 if a later transition depends on the document
    """
    result = await rollback.delete_attachment(order_number, _file_type(file_type))
    return AttachmentRollbackResponse.model_validate(result)


@router.delete(
    "/{order_number}/delivery",
    response_model=list[AttachmentRollbackResponse],
    summary="Delete all delivery paperwork of an order",
)
async def delete_delivery_data(
    order_number: str, rollback: Rollback
) -> list[AttachmentRollbackResponse]:
    results = await rollback.delete_delivery_data(order_number)
    return [AttachmentRollbackResponse.model_validate(result) for result in results]


@router.post(
    "/{order_number}/invoice",
    response_model=OrderResponse,
    summary="Attach invoice",
    description="Upload the invoice and move the invoice track to Invoiced",
)
async def attach_invoice(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
    invoice_number: FormText = None,
    invoice_date: FormDate = None,
    invoice_remarks: FormText = None,
    extraction_confidence: ExtractionConfidence = None,
    fields_confirmed: FieldsConfirmed = False,
) -> OrderResponse:
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.attach_invoice(
        order_number,
        data,
        filename,
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        invoice_remarks=invoice_remarks,
        extraction=_extraction(
            extraction_confidence,
            fields_confirmed,
            {"invoice_number": invoice_number, "invoice_date": invoice_date},
        ),
        uploaded_by=actor,
    )
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_number}/invoice",
    response_model=OrderResponse,
    summary="Replace invoice",
)
async def replace_invoice(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
    invoice_number: FormText = None,
    invoice_date: FormDate = None,
    invoice_remarks: FormText = None,
    extraction_confidence: ExtractionConfidence = None,
    fields_confirmed: FieldsConfirmed = False,
) -> OrderResponse:
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.replace_invoice(
        order_number,
        data,
        filename,
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        invoice_remarks=invoice_remarks,
        extraction=_extraction(
            extraction_confidence,
            fields_confirmed,
            {"invoice_number": invoice_number, "invoice_date": invoice_date},
        ),
        uploaded_by=actor,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_number}/delivery-order",
    response_model=OrderResponse,
    summary="Issue delivery order",
    description="Upload the delivery order and move the delivery track to Issued",
)
async def issue_delivery_order(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
    delivery_number: FormText = None,
    delivery_date: FormDate = None,
    delivery_remarks: FormText = None,
    extraction_confidence: ExtractionConfidence = None,
    fields_confirmed: FieldsConfirmed = False,
) -> OrderResponse:
    """
    Raises:
        PreconditionError: 409 if the order is not invoiced yet
    """
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.issue_delivery_order(
        order_number,
        data,
        filename,
        delivery_number=delivery_number,
        delivery_date=delivery_date,
        delivery_remarks=delivery_remarks,
        extraction=_extraction(
            extraction_confidence,
            fields_confirmed,
            {"delivery_number": delivery_number, "delivery_date": delivery_date},
        ),
        uploaded_by=actor,
    )
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_number}/delivery-order",
    response_model=OrderResponse,
    summary="Replace delivery order",
)
async def replace_delivery_order(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
    delivery_number: FormText = None,
    delivery_date: FormDate = None,
    delivery_remarks: FormText = None,
    extraction_confidence: ExtractionConfidence = None,
    fields_confirmed: FieldsConfirmed = False,
) -> OrderResponse:
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.replace_delivery_order(
        order_number,
        data,
        filename,
        delivery_number=delivery_number,
        delivery_date=delivery_date,
        delivery_remarks=delivery_remarks,
        extraction=_extraction(
            extraction_confidence,
            fields_confirmed,
            {"delivery_number": delivery_number, "delivery_date": delivery_date},
        ),
        uploaded_by=actor,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_number}/signed-delivery-order",
    response_model=OrderResponse,
    summary="Confirm delivery",
    description="Upload the signed delivery order and move the delivery track to Delivered",
)
async def confirm_delivery(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
) -> OrderResponse:
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.confirm_delivery(
        order_number, data, filename, uploaded_by=actor
    )
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_number}/signed-delivery-order",
    response_model=OrderResponse,
    summary="Replace signed delivery order",
)
async def replace_signed_delivery_order(
    order_number: str,
    file: DocumentFile,
    engine: LifecycleEngine,
    actor: Actor,
) -> OrderResponse:
    data, filename = await _read(file, engine.settings.attachment_max_bytes)
    order = await engine.replace_signed_delivery_order(
        order_number, data, filename, uploaded_by=actor
    )
    return OrderResponse.model_validate(order)
