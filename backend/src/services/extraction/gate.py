"""
Document field extraction contract.

Extraction itself is an external collaborator. The engine only consumes the
confidence score to decide whether a human must confirm the extracted
fields, and uses extracted values to fill fields the caller left empty.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Protocol, Union

from src.core.config import get_settings
from src.services.orders.enums import FileType

FieldValue = Union[str, date]


@dataclass
class ExtractionResult:
    """
    Output of a document extractor.

    Attributes:
        success: Whether extraction produced anything usable
        confidence: Score in [0, 1]
        fields: Extracted values such as ``invoice_number`` or ``delivery_date``
        confirmed: Set when a human reviewed the extracted values
    """

    success: bool
    confidence: float
    fields: dict[str, FieldValue] = field(default_factory=dict)
    confirmed: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")

    def text(self, name: str) -> Optional[str]:
        value = self.fields.get(name)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def date_value(self, name: str) -> Optional[date]:
        """Extracted date, accepting ISO strings."""
        value = self.fields.get(name)
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str) and value.strip():
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                return None
        return None


class DocumentExtractor(Protocol):
    """External collaborator reading fields out of a document."""

    async def extract(self, blob: bytes, document_kind: FileType) -> ExtractionResult:
        ...


def requires_confirmation(
    result: ExtractionResult, threshold: Optional[float] = None
) -> bool:
    """Check whether extracted fields must be confirmed by a human first."""
    if threshold is None:
        threshold = get_settings().extraction_confidence_threshold
    if result.confirmed:
        return False
    return result.confidence < threshold
