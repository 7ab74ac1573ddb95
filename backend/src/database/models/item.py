"""
Inventory item model.

Items carry only their descriptive attributes. Status and location are
never stored here; they are derived from the transaction log.
"""

from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from src.database.base import BaseModel


def normalize_serial(serial_number: str) -> str:
    """Return the case-insensitive matching key for a serial number."""
    return serial_number.strip().lower()


class InventoryItem(BaseModel):
    """
    Physical inventory item identified by a human-assigned serial number.

    Attributes:
        serial_number: Serial number as entered by the operator
        serial_key: Normalized serial number used for matching
        equipment_category: Equipment category
        model: Model name
        size: Size designation
        batch: Manufacturing batch
    """

    __tablename__ = "inventory_items"

    serial_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Serial number as entered",
    )

    serial_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Lower-cased serial number for case-insensitive matching",
    )

    equipment_category: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Equipment category",
    )

    model: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Model name",
    )

    size: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Size designation",
    )

    batch: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Manufacturing batch",
    )

    remarks: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Free-form remarks",
    )

    __table_args__ = (
        Index("ix_inventory_items_category_model", "equipment_category", "model"),
        {"comment": "Inventory items; status is derived from transactions"},
    )

    @validates("serial_number")
    def validate_serial_number(self, key: str, value: str) -> str:
        """Keep serial_key in sync and reject blank serial numbers."""
        if not value or not value.strip():
            raise ValueError("Serial number cannot be empty")
        value = value.strip()
        self.serial_key = normalize_serial(value)
        return value

    def __repr__(self) -> str:
        return (
            f"<InventoryItem(serial_number={self.serial_number}, "
            f"category={self.equipment_category}, model={self.model})>"
        )
