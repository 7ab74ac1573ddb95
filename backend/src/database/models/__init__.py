"""
Database models package initialization.

This module exports all database models for SQLAlchemy and Alembic auto-generation.
Models are imported here to ensure they are registered with the Base metadata
for proper migration generation.
"""

from src.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from src.database.models.attachment import Attachment
from src.database.models.demo import DemoRecord, DemoStatus
from src.database.models.item import InventoryItem, normalize_serial
from src.database.models.order import Order
from src.database.models.saga import SagaState, SagaStep, TransitionSaga
from src.database.models.transaction import (
    ItemStatus,
    TransactionEvent,
    TransactionType,
)

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Attachment",
    "DemoRecord",
    "DemoStatus",
    "InventoryItem",
    "normalize_serial",
    "Order",
    "SagaState",
    "SagaStep",
    "TransitionSaga",
    "ItemStatus",
    "TransactionEvent",
    "TransactionType",
]
