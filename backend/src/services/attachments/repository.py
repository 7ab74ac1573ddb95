"""
Attachment data access repository.

Reads resolve transient double-active windows by preferring the highest
active version. Writes only flush; callers commit each step on its own.
"""

import uuid
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import PersistenceError
from src.core.logging import get_logger
from src.database.models.attachment import Attachment
from src.services.orders.enums import FileType

logger = get_logger(__name__)


class AttachmentRepository:
    """Repository for attachment rows in the ``files`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _scalars(self, stmt, operation: str) -> Sequence[Attachment]:
        try:
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Attachment query failed", operation=operation, error=str(e))
            raise PersistenceError(
                "Attachment query failed", step=operation, error=str(e)
            ) from e

    async def get(self, file_id: uuid.UUID) -> Optional[Attachment]:
        """Get an attachment version by ID."""
        try:
            return await self.session.get(Attachment, file_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error("Attachment lookup failed", file_id=str(file_id), error=str(e))
            raise PersistenceError(
                "Attachment lookup failed", step="read", file_id=file_id, error=str(e)
            ) from e

    async def get_active(
        self, order_number: str, file_type: FileType
    ) -> Optional[Attachment]:
        """Get the authoritative active version, highest version wins."""
        stmt = (
            select(Attachment)
            .where(
                Attachment.order_number == order_number,
                Attachment.file_type == file_type,
                Attachment.is_active.is_(True),
            )
            .order_by(Attachment.version.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        rows = await self._scalars(stmt, "read")
        return rows[0] if rows else None

    async def get_highest(
        self, order_number: str, file_type: FileType
    ) -> Optional[Attachment]:
        """Get the highest version regardless of active flag."""
        stmt = (
            select(Attachment)
            .where(
                Attachment.order_number == order_number,
                Attachment.file_type == file_type,
            )
            .order_by(Attachment.version.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        rows = await self._scalars(stmt, "read")
        return rows[0] if rows else None

    async def list_active(self, order_number: str) -> dict[FileType, Attachment]:
        """Map each file type to its authoritative active version."""
        stmt = (
            select(Attachment)
            .where(
                Attachment.order_number == order_number,
                Attachment.is_active.is_(True),
            )
            .order_by(Attachment.version.desc())
            .execution_options(populate_existing=True)
        )
        active: dict[FileType, Attachment] = {}
        for row in await self._scalars(stmt, "read"):
            active.setdefault(row.file_type, row)
        return active

    async def list_versions(
        self, order_number: str, file_type: Optional[FileType] = None
    ) -> list[Attachment]:
        """List versions for an order, highest version first."""
        stmt = select(Attachment).where(Attachment.order_number == order_number)
        if file_type is not None:
            stmt = stmt.where(Attachment.file_type == file_type)
        stmt = stmt.order_by(Attachment.file_type, Attachment.version.desc())
        return list(await self._scalars(stmt, "read"))

    async def list_all_active(self) -> list[Attachment]:
        """All active rows across every order."""
        stmt = (
            select(Attachment)
            .where(Attachment.is_active.is_(True))
            .order_by(Attachment.order_number, Attachment.version.desc())
        )
        return list(await self._scalars(stmt, "read"))

    async def count_active(self, order_number: str, file_type: FileType) -> int:
        stmt = select(func.count()).where(
            Attachment.order_number == order_number,
            Attachment.file_type == file_type,
            Attachment.is_active.is_(True),
        )
        try:
            return (await self.session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Attachment count failed", step="read", error=str(e)
            ) from e

    def add(self, attachment: Attachment) -> None:
        self.session.add(attachment)

    async def set_active(self, file_id: uuid.UUID, is_active: bool) -> None:
        await self.session.execute(
            update(Attachment)
            .where(Attachment.id == file_id)
            .values(is_active=is_active)
        )

    async def deactivate_others(
        self, order_number: str, file_type: FileType, keep_id: uuid.UUID
    ) -> None:
        """Flip every other active version of the pair to inactive."""
        await self.session.execute(
            update(Attachment)
            .where(
                Attachment.order_number == order_number,
                Attachment.file_type == file_type,
                Attachment.id != keep_id,
                Attachment.is_active.is_(True),
            )
            .values(is_active=False)
        )

    async def delete_rows(self, file_ids: Sequence[uuid.UUID]) -> int:
        if not file_ids:
            return 0
        result = await self.session.execute(
            delete(Attachment).where(Attachment.id.in_(list(file_ids)))
        )
        return result.rowcount or 0

    async def rename_order(self, old_number: str, new_number: str) -> int:
        result = await self.session.execute(
            update(Attachment)
            .where(Attachment.order_number == old_number)
            .values(order_number=new_number)
        )
        return result.rowcount or 0
