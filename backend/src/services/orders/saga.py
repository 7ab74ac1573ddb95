"""
Saga step log for attachment-gated transitions.

A transition is validate, commit attachment, then commit status. The log is
written after each step so a failed status commit can be retried alone and
so an attachment without its status bump can be traced to its saga.
"""

import uuid
from datetime import date
from typing import Any, Optional

from sqlalchemy import inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import EngineError, NotFoundError
from src.core.logging import get_logger
from src.database.connection import commit_step
from src.database.models.saga import SagaState, SagaStep, TransitionSaga
from src.services.orders.enums import FileType

logger = get_logger(__name__)


def encode_payload(values: dict[str, Any]) -> dict[str, Any]:
    """Make field values JSON-safe for the saga row."""
    return {
        key: value.isoformat() if isinstance(value, date) else value
        for key, value in values.items()
    }


def decode_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Inverse of ``encode_payload`` for the known date fields."""
    values = dict(payload)
    for key in ("invoice_date", "delivery_date"):
        if isinstance(values.get(key), str):
            values[key] = date.fromisoformat(values[key])
    return values


class SagaLog:
    """Persists transition sagas."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fresh(self, saga: TransitionSaga) -> None:
        # A rolled back session leaves the saga expired
        if inspect(saga).expired_attributes:
            await self.session.refresh(saga)

    async def start(
        self, order_number: str, file_type: FileType, transition: str
    ) -> TransitionSaga:
        saga = TransitionSaga(
            order_number=order_number,
            file_type=file_type,
            transition=transition,
            state=SagaState.STARTED,
            payload={},
        )
        self.session.add(saga)
        await commit_step(self.session, "saga_start", order_number=order_number)
        logger.info(
            "Transition saga started",
            saga_id=str(saga.id),
            order_number=order_number,
            transition=transition,
        )
        return saga

    async def advance(
        self,
        saga: TransitionSaga,
        step: SagaStep,
        payload: Optional[dict[str, Any]] = None,
        attachment_id: Optional[uuid.UUID] = None,
    ) -> None:
        await self._fresh(saga)
        saga.last_completed_step = step
        if payload is not None:
            saga.payload = encode_payload(payload)
        if attachment_id is not None:
            saga.attachment_id = attachment_id
        await commit_step(self.session, "saga_advance", saga_id=saga.id)
        logger.info(
            "Transition step completed",
            saga_id=str(saga.id),
            order_number=saga.order_number,
            step=step.value,
        )

    async def fail(
        self,
        saga: TransitionSaga,
        step: SagaStep,
        error: EngineError,
        retryable: bool = False,
    ) -> None:
        """Record the failing step. Never masks the original error."""
        await self._fresh(saga)
        saga_id, order_number = str(saga.id), saga.order_number
        saga.state = SagaState.FAILED
        saga.failed_step = step
        saga.error = error.message[:2000]
        saga.retryable = retryable
        try:
            await commit_step(self.session, "saga_fail", saga_id=saga.id)
        except EngineError as e:
            logger.error(
                "Failed to record saga failure",
                saga_id=saga_id,
                error=e.message,
            )
        logger.warning(
            "Transition step failed",
            saga_id=saga_id,
            order_number=order_number,
            step=step.value,
            error_type=type(error).__name__,
        )

    async def complete(self, saga: TransitionSaga) -> None:
        await self._fresh(saga)
        saga.state = SagaState.COMPLETED
        saga.last_completed_step = SagaStep.COMMIT_STATUS
        saga.failed_step = None
        saga.error = None
        saga.retryable = False
        await commit_step(self.session, "saga_complete", saga_id=saga.id)
        logger.info(
            "Transition saga completed",
            saga_id=str(saga.id),
            order_number=saga.order_number,
            transition=saga.transition,
        )

    async def get(self, saga_id: uuid.UUID) -> TransitionSaga:
        """
        Raises:
            NotFoundError: If the saga does not exist
        """
        saga = await self.session.get(TransitionSaga, saga_id, populate_existing=True)
        if saga is None:
            raise NotFoundError("Saga not found", saga_id=saga_id)
        return saga

    async def pending_status_commits(self) -> list[TransitionSaga]:
        """
        Sagas whose attachment is committed but whose status is not.

        Sagas that failed for a reason a retry cannot fix are left out.
        """
        result = await self.session.execute(
            select(TransitionSaga)
            .where(
                TransitionSaga.last_completed_step == SagaStep.COMMIT_ATTACHMENT,
                or_(
                    TransitionSaga.state == SagaState.STARTED,
                    (TransitionSaga.state == SagaState.FAILED)
                    & TransitionSaga.retryable.is_(True),
                ),
            )
            .order_by(TransitionSaga.created_at)
        )
        return list(result.scalars().all())
