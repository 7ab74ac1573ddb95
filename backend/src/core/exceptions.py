"""
Error taxonomy shared by the inventory and order lifecycle services.

Every error carries the stage of the multi-step sequence that failed
(``step``) plus structured context so callers and operators can decide
whether to retry a single stage or clean up manually.
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, *, step: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.step = step
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logs and API responses."""
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "step": self.step,
            "context": {key: str(value) for key, value in self.context.items()},
        }


class ValidationError(EngineError):
    """Raised for bad input such as a non-PDF or oversize attachment."""

    pass


class PreconditionError(EngineError):
    """Raised when the requested transition is illegal from the current state."""

    pass


class ConflictError(EngineError):
    """Raised when an invariant would be violated by the requested change."""

    pass


class NotFoundError(EngineError):
    """Raised when a referenced record does not exist."""

    pass


class StorageError(EngineError):
    """Raised when attachment blob I/O fails."""

    pass


class PersistenceError(EngineError):
    """
    Raised when a document write fails.

    When raised after an attachment was already committed, ``saga_id`` and
    ``attachment_id`` identify the stage that can be retried on its own.
    """

    def __init__(
        self,
        message: str,
        *,
        step: Optional[str] = None,
        saga_id: Optional[str] = None,
        attachment_id: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message, step=step, **context)
        self.saga_id = saga_id
        self.attachment_id = attachment_id
        if saga_id is not None:
            self.context["saga_id"] = saga_id
        if attachment_id is not None:
            self.context["attachment_id"] = attachment_id


class ScanTimeoutError(EngineError, TimeoutError):
    """Raised when the bounded transaction log scan exceeds its budget."""

    pass
