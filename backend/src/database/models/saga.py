"""
Durable step log for attachment-gated order transitions.

Each transition writes to two tables without a shared transaction. The saga
row records the last completed step so a failed status commit can be
retried on its own, and so orphaned attachments can be found later.
"""

import uuid
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel, enum_column_type
from src.services.orders.enums import FileType


class SagaState(str, Enum):
    """Overall saga outcome."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class SagaStep(str, Enum):
    """Ordered stages of a transition."""

    VALIDATE = "validate"
    COMMIT_ATTACHMENT = "commit_attachment"
    COMMIT_STATUS = "commit_status"


class TransitionSaga(BaseModel):
    """
    Progress record for one lifecycle transition.

    Attributes:
        order_number: Order being transitioned
        file_type: Attachment kind gating the transition
        transition: Transition name (e.g. ``attach_invoice``)
        state: Saga outcome
        last_completed_step: Last stage that finished successfully
        failed_step: Stage that raised, if any
        attachment_id: Attachment committed by the saga
        payload: Order field values to write during the status commit
        retryable: Whether the failed step may succeed when run again
    """

    __tablename__ = "transition_sagas"

    order_number: Mapped[str] = mapped_column(String(100), nullable=False)

    file_type: Mapped[FileType] = mapped_column(
        enum_column_type(FileType, "saga_file_type"),
        nullable=False,
    )

    transition: Mapped[str] = mapped_column(String(50), nullable=False)

    state: Mapped[SagaState] = mapped_column(
        enum_column_type(SagaState, "saga_state"),
        nullable=False,
        default=SagaState.STARTED,
    )

    last_completed_step: Mapped[Optional[SagaStep]] = mapped_column(
        enum_column_type(SagaStep, "saga_last_step"),
        nullable=True,
    )

    failed_step: Mapped[Optional[SagaStep]] = mapped_column(
        enum_column_type(SagaStep, "saga_failed_step"),
        nullable=True,
    )

    attachment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    error: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_transition_sagas_order_state", "order_number", "state"),
        {"comment": "Step log for attachment-gated order transitions"},
    )

    @property
    def saga_id(self) -> uuid.UUID:
        return self.id

    def __repr__(self) -> str:
        return (
            f"<TransitionSaga(order_number={self.order_number}, "
            f"transition={self.transition}, state={self.state.value})>"
        )
