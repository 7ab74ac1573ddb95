"""
Item state projector.

Derives each item's current status and location by replaying the most
recent window of the transaction log and keeping the first event seen per
serial number. Items whose latest event falls outside the window are
absent from the result, the same as items that never had an event.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import ScanTimeoutError
from src.core.logging import get_logger, log_performance
from src.database.models.item import normalize_serial
from src.database.models.transaction import ItemStatus, TransactionEvent, TransactionType
from src.services.transactions.repository import TransactionLog

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemState:
    """Derived state of one item."""

    serial_number: str
    status: ItemStatus
    location: str
    last_activity: datetime
    last_transaction_type: TransactionType
    transaction_id: int

    @property
    def is_available(self) -> bool:
        """Eligible for a new order or demo."""
        return (
            self.last_transaction_type is TransactionType.STOCK_IN
            and self.status is ItemStatus.ACTIVE
        )

    @classmethod
    def from_event(
        cls, event: TransactionEvent, serial_number: Optional[str] = None
    ) -> "ItemState":
        return cls(
            serial_number=serial_number or event.serial_number,
            status=event.status,
            location=event.location,
            last_activity=event.uploaded_at,
            last_transaction_type=event.type,
            transaction_id=event.transaction_id,
        )


@dataclass
class ProjectionResult:
    """Projector output. ``degraded`` is set when the scan timed out."""

    states: dict[str, ItemState] = field(default_factory=dict)
    degraded: bool = False
    warning: Optional[str] = None


@dataclass
class InventorySummary:
    total: int
    available: int
    by_status: dict[str, int]
    by_location: dict[str, int]
    degraded: bool = False
    warning: Optional[str] = None


def project_latest(events: Iterable[TransactionEvent]) -> dict[str, TransactionEvent]:
    """
    Keep the event with the greatest transaction ID per serial key.

    Events may arrive in any order.
    """
    latest: dict[str, TransactionEvent] = {}
    for event in events:
        current = latest.get(event.serial_key)
        if current is None or event.transaction_id > current.transaction_id:
            latest[event.serial_key] = event
    return latest


class ItemStateProjector:
    """Read-only projection of item state from the transaction log."""

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.log = TransactionLog(session)
        self.settings = settings or get_settings()

    async def _scan(self) -> Sequence[TransactionEvent]:
        try:
            return await asyncio.wait_for(
                self.log.latest_window(self.settings.transaction_scan_window),
                timeout=self.settings.transaction_scan_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ScanTimeoutError(
                "Transaction scan exceeded its time budget",
                step="scan",
                window=self.settings.transaction_scan_window,
                timeout_seconds=self.settings.transaction_scan_timeout_seconds,
            ) from e

    async def current_state(
        self, serial_numbers: Optional[Iterable[str]] = None
    ) -> ProjectionResult:
        """
        Current state per serial number.

        Args:
            serial_numbers: Serial numbers to report; all scanned items if None.
                Matching is case-insensitive and results are keyed by the
                caller's spelling.

        Returns:
            Projection result; on scan timeout, empty and marked degraded
        """
        with log_performance(
            logger, "item_projection", window=self.settings.transaction_scan_window
        ):
            try:
                events = await self._scan()
            except ScanTimeoutError as e:
                logger.warning(
                    "Item projection degraded to empty result",
                    error=e.message,
                    **e.context,
                )
                return ProjectionResult(degraded=True, warning=e.message)

        latest = project_latest(events)

        if serial_numbers is None:
            states = {
                event.serial_number: ItemState.from_event(event)
                for event in latest.values()
            }
            return ProjectionResult(states=states)

        states = {}
        for serial in serial_numbers:
            event = latest.get(normalize_serial(serial))
            if event is not None:
                states[serial] = ItemState.from_event(event, serial_number=serial)
        return ProjectionResult(states=states)

    async def available_items(self) -> ProjectionResult:
        """Items whose latest event is ``Stock_In`` with status ``Active``."""
        result = await self.current_state()
        result.states = {
            serial: state
            for serial, state in result.states.items()
            if state.is_available
        }
        return result

    async def summarize(self) -> InventorySummary:
        """Counts per status and per location over the projection."""
        result = await self.current_state()
        states = list(result.states.values())
        return InventorySummary(
            total=len(states),
            available=sum(1 for state in states if state.is_available),
            by_status=dict(Counter(state.status.value for state in states)),
            by_location=dict(Counter(state.location for state in states)),
            degraded=result.degraded,
            warning=result.warning,
        )
