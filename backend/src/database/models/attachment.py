"""
Attachment model holding versioned file metadata.

Blob contents live in the blob store; rows here record version history.
Exactly one row per (order_number, file_type) is meant to be active, and
readers break transient ties by preferring the highest version.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel, enum_column_type
from src.services.orders.enums import FileType


class Attachment(BaseModel):
    """
    One stored version of an order document.

    Attributes:
        order_number: Order the document belongs to
        file_type: Document kind
        version: Version number, increasing per (order_number, file_type)
        is_active: Whether this version is authoritative
        checksum: SHA-256 of the blob, used for idempotent replace
        storage_path: Key of the blob in the blob store
        storage_url: Retrievable URL of the blob
    """

    __tablename__ = "files"

    order_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Owning order number",
    )

    file_type: Mapped[FileType] = mapped_column(
        enum_column_type(FileType, "file_type"),
        nullable=False,
        comment="Document kind",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Version number within the order and file type",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether this version is authoritative",
    )

    original_filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="File name supplied on upload",
    )

    file_size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Blob size in bytes",
    )

    content_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="application/pdf",
    )

    checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex digest of the blob",
    )

    storage_path: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Blob store key",
    )

    storage_url: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="Retrievable blob URL",
    )

    upload_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    uploaded_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "order_number",
            "file_type",
            "version",
            name="uq_files_order_type_version",
        ),
        Index("ix_files_order_type_active", "order_number", "file_type", "is_active"),
        CheckConstraint("version >= 1", name="ck_files_version_positive"),
        CheckConstraint("file_size >= 0", name="ck_files_size_non_negative"),
        {"comment": "Versioned order attachments"},
    )

    @property
    def file_id(self) -> uuid.UUID:
        """Public identifier of this version."""
        return self.id

    def __repr__(self) -> str:
        return (
            f"<Attachment(order_number={self.order_number}, "
            f"file_type={self.file_type.value}, version={self.version}, "
            f"is_active={self.is_active})>"
        )
