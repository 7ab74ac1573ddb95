"""
SQLAlchemy declarative base and common model mixins.

Column types are dialect-neutral so the same models run on PostgreSQL
(asyncpg) and SQLite (aiosqlite): generic ``Uuid`` keys and enums stored as
their string values.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SQLEnum, Uuid, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all engine models."""

    __abstract__ = True

    # Server-generated timestamps are fetched on flush, never lazily
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        pk = ", ".join(
            f"{column.name}={getattr(self, column.key, None)!r}"
            for column in self.__table__.primary_key.columns
        )
        return f"<{self.__class__.__name__}({pk})>"


class TimestampMixin:
    """Database-managed ``created_at`` and ``updated_at`` columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class UUIDMixin:
    """UUID primary key, native on PostgreSQL and CHAR(32) elsewhere."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and timestamps.

    Example:
        class Order(BaseModel):
            __tablename__ = "orders"

            order_number: Mapped[str] = mapped_column(String(64), unique=True)
    """

    __abstract__ = True


def enum_column_type(enum_cls: type[Enum], name: str) -> SQLEnum:
    """
    Build a portable enum column type storing member values.

    Values are stored as VARCHAR and read back as the Python enum.
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
