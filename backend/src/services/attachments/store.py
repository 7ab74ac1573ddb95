"""
Versioned attachment store.

Every order document is kept as a series of immutable versions. Activation
always flips the new version on before flipping the old one off, each in
its own commit, so readers may briefly see two active versions and resolve
them by taking the highest. Replace is idempotent under retry: a payload
already stored as the version after the one the caller expected, or by
default one matching the active version's checksum, is treated as already
applied.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import ConflictError, NotFoundError, StorageError
from src.core.logging import get_logger, log_performance
from src.database.connection import commit_step
from src.database.models.attachment import Attachment
from src.services.attachments.repository import AttachmentRepository
from src.services.attachments.validation import (
    AttachmentValidator,
    AttachmentValidatorConfig,
    ValidatedBlob,
)
from src.services.orders.enums import FileType
from src.services.storage.blob_store import BlobStore, put_with_retry, safe_key_segment

logger = get_logger(__name__)

COMMIT_ATTACHMENT = "commit_attachment"


@dataclass
class AttachmentDeletion:
    """Outcome of deleting attachment rows and their blobs."""

    rows_deleted: int = 0
    blobs_deleted: int = 0
    blob_failures: list[str] = field(default_factory=list)


class AttachmentStore:
    """
    Store for versioned order attachments.

    Attributes:
        repository: Row access for the ``files`` table
        blob_store: Backend holding the blob contents
        validator: Type and size checks applied before any write
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        validator: Optional[AttachmentValidator] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.repository = AttachmentRepository(session)
        self.blob_store = blob_store
        self.settings = settings or get_settings()
        self.validator = validator or AttachmentValidator(
            AttachmentValidatorConfig(
                max_bytes=self.settings.attachment_max_bytes,
                allowed_extensions=self.settings.attachment_allowed_extensions,
            )
        )

    def validate(self, data: bytes, filename: str) -> ValidatedBlob:
        """Validate a blob without writing anything."""
        return self.validator.validate(data, filename)

    async def upload(
        self,
        order_number: str,
        file_type: FileType,
        data: bytes,
        filename: str,
        uploaded_by: Optional[str] = None,
        validated: Optional[ValidatedBlob] = None,
    ) -> Attachment:
        """
        Store the first version of a document.

        A retry carrying the same content as the active version returns
        that version unchanged.

        Raises:
            ValidationError: If the blob fails validation
            ConflictError: If a different active version already exists
            StorageError: If the blob cannot be written
        """
        blob = validated or self.validate(data, filename)

        active = await self.repository.get_active(order_number, file_type)
        if active is not None:
            if active.checksum == blob.checksum:
                logger.info(
                    "Upload already applied",
                    order_number=order_number,
                    file_type=file_type.value,
                    version=active.version,
                )
                return active
            raise ConflictError(
                "An active attachment already exists, use replace",
                step=COMMIT_ATTACHMENT,
                order_number=order_number,
                file_type=file_type.value,
                active_version=active.version,
            )

        highest = await self.repository.get_highest(order_number, file_type)
        version = highest.version + 1 if highest else 1
        return await self._insert_version(
            order_number, file_type, blob, version, uploaded_by
        )

    async def replace(
        self,
        order_number: str,
        file_type: FileType,
        data: bytes,
        filename: str,
        uploaded_by: Optional[str] = None,
        validated: Optional[ValidatedBlob] = None,
        expected_version: Optional[int] = None,
    ) -> Attachment:
        """
        Store a new version and retire the active one.

        With ``expected_version`` the caller names the version it is
        replacing. Every call against that version stores a new one, even
        with identical content, and a retry that finds the next version
        already holding its content returns it. Without it, content
        matching the active version is treated as a retry and returns that
        version unchanged, so no version is added for identical bytes.

        Raises:
            ValidationError: If the blob fails validation
            NotFoundError: If there is no active version to replace
            ConflictError: If a concurrent replace stored different content
                or the active version moved past ``expected_version``
            StorageError: If the blob cannot be written
        """
        blob = validated or self.validate(data, filename)

        active = await self.repository.get_active(order_number, file_type)
        if active is None:
            raise NotFoundError(
                "No active attachment to replace",
                step=COMMIT_ATTACHMENT,
                order_number=order_number,
                file_type=file_type.value,
            )

        if expected_version is not None:
            if active.version != expected_version:
                return await self._replayed(
                    order_number, file_type, blob, active, expected_version
                )
        elif active.checksum == blob.checksum:
            await self._retire_others(active)
            logger.info(
                "Replace already applied",
                order_number=order_number,
                file_type=file_type.value,
                version=active.version,
            )
            return active

        try:
            return await self._insert_version(
                order_number, file_type, blob, active.version + 1, uploaded_by
            )
        except ConflictError:
            return await self._converge(order_number, file_type, blob)

    async def _replayed(
        self,
        order_number: str,
        file_type: FileType,
        blob: ValidatedBlob,
        active: Attachment,
        expected_version: int,
    ) -> Attachment:
        """Resolve a replace whose expected version is no longer active."""
        if active.version == expected_version + 1 and active.checksum == blob.checksum:
            await self._retire_others(active)
            logger.info(
                "Replace already applied",
                order_number=order_number,
                file_type=file_type.value,
                version=active.version,
            )
            return active

        raise ConflictError(
            "Active attachment is not the expected version",
            step=COMMIT_ATTACHMENT,
            order_number=order_number,
            file_type=file_type.value,
            expected_version=expected_version,
            active_version=active.version,
        )

    async def upload_or_replace(
        self,
        order_number: str,
        file_type: FileType,
        data: bytes,
        filename: str,
        uploaded_by: Optional[str] = None,
        validated: Optional[ValidatedBlob] = None,
    ) -> Attachment:
        """Upload the first version or replace the active one."""
        blob = validated or self.validate(data, filename)
        active = await self.repository.get_active(order_number, file_type)
        if active is None:
            return await self.upload(
                order_number, file_type, data, filename, uploaded_by, validated=blob
            )
        return await self.replace(
            order_number, file_type, data, filename, uploaded_by, validated=blob
        )

    async def restore(self, file_id: uuid.UUID) -> Attachment:
        """
        Make a historical version active again.

        Raises:
            NotFoundError: If the version does not exist
        """
        target = await self.repository.get(file_id)
        if target is None:
            raise NotFoundError("Attachment not found", file_id=file_id)

        await self.repository.set_active(target.id, True)
        await commit_step(
            self.session, "restore", file_id=target.id, order_number=target.order_number
        )
        await self._retire_others(target)

        restored = await self.repository.get(file_id)
        logger.info(
            "Attachment version restored",
            order_number=restored.order_number,
            file_type=restored.file_type.value,
            version=restored.version,
        )
        return restored

    async def get(self, file_id: uuid.UUID) -> Attachment:
        """
        Get a single version.

        Raises:
            NotFoundError: If the version does not exist
        """
        attachment = await self.repository.get(file_id)
        if attachment is None:
            raise NotFoundError("Attachment not found", file_id=file_id)
        return attachment

    async def get_active(
        self, order_number: str, file_type: FileType
    ) -> Optional[Attachment]:
        return await self.repository.get_active(order_number, file_type)

    async def list_active(self, order_number: str) -> dict[FileType, Attachment]:
        """Active version per file type for an order."""
        return await self.repository.list_active(order_number)

    async def history(
        self, order_number: str, file_type: FileType
    ) -> list[Attachment]:
        """All versions of one document, highest version first."""
        return await self.repository.list_versions(order_number, file_type)

    async def prune_history(
        self,
        order_number: str,
        file_type: FileType,
        keep: Optional[int] = None,
    ) -> AttachmentDeletion:
        """
        Delete the oldest inactive versions beyond the newest ``keep``.

        The active version is never pruned; ``keep=0`` removes every
        inactive version.
        """
        if keep is None:
            keep = self.settings.attachment_history_keep
        versions = await self.history(order_number, file_type)
        doomed = [row for row in versions[keep:] if not row.is_active]
        if not doomed:
            return AttachmentDeletion()

        deletion = AttachmentDeletion(
            rows_deleted=await self.repository.delete_rows([row.id for row in doomed])
        )
        await commit_step(
            self.session,
            "prune_history",
            order_number=order_number,
            file_type=file_type.value,
        )
        await self.purge_blobs(doomed, deletion)

        logger.info(
            "Attachment history pruned",
            order_number=order_number,
            file_type=file_type.value,
            rows_deleted=deletion.rows_deleted,
        )
        return deletion

    async def remove_rows(
        self, order_number: str, file_type: Optional[FileType] = None
    ) -> list[Attachment]:
        """
        Delete every version of a document, or of all documents of an order.

        Only flushes; the caller commits together with its own changes and
        then calls ``purge_blobs`` with the returned rows.
        """
        versions = await self.repository.list_versions(order_number, file_type)
        await self.repository.delete_rows([row.id for row in versions])
        return versions

    async def purge_blobs(
        self,
        attachments: Sequence[Attachment],
        deletion: Optional[AttachmentDeletion] = None,
    ) -> AttachmentDeletion:
        """Delete blobs of already removed rows, collecting failures."""
        deletion = deletion or AttachmentDeletion(rows_deleted=len(attachments))
        for attachment in attachments:
            try:
                await self.blob_store.delete(attachment.storage_path)
                deletion.blobs_deleted += 1
            except StorageError as e:
                deletion.blob_failures.append(attachment.storage_path)
                logger.error(
                    "Blob deletion failed",
                    storage_path=attachment.storage_path,
                    error=e.message,
                )
        return deletion

    async def delete_all(
        self, order_number: str, file_type: Optional[FileType] = None
    ) -> AttachmentDeletion:
        """Delete rows and blobs of every matching version."""
        removed = await self.remove_rows(order_number, file_type)
        await commit_step(
            self.session,
            "delete_attachments",
            order_number=order_number,
            file_type=file_type.value if file_type else None,
        )
        return await self.purge_blobs(removed)

    async def rename_order(self, old_number: str, new_number: str) -> int:
        """Move every version to a new order number. Only flushes."""
        return await self.repository.rename_order(old_number, new_number)

    def _blob_path(
        self,
        order_number: str,
        file_type: FileType,
        version: int,
        attachment_id: uuid.UUID,
        extension: str,
    ) -> str:
        return (
            f"orders/{safe_key_segment(order_number)}/{file_type.value}/"
            f"v{version}-{attachment_id.hex}{extension}"
        )

    async def _insert_version(
        self,
        order_number: str,
        file_type: FileType,
        blob: ValidatedBlob,
        version: int,
        uploaded_by: Optional[str],
    ) -> Attachment:
        attachment_id = uuid.uuid4()
        path = self._blob_path(
            order_number, file_type, version, attachment_id, blob.extension
        )

        with log_performance(
            logger, "attachment_write", order_number=order_number, version=version
        ):
            try:
                url = await put_with_retry(
                    self.blob_store,
                    blob.data,
                    path,
                    blob.content_type,
                    attempts=self.settings.attachment_upload_retries,
                    timeout=self.settings.attachment_upload_timeout_seconds,
                )
            except StorageError as e:
                e.step = COMMIT_ATTACHMENT
                raise

            attachment = Attachment(
                id=attachment_id,
                order_number=order_number,
                file_type=file_type,
                version=version,
                is_active=True,
                original_filename=blob.filename,
                file_size=blob.size,
                content_type=blob.content_type,
                checksum=blob.checksum,
                storage_path=path,
                storage_url=url,
                uploaded_by=uploaded_by,
            )
            self.repository.add(attachment)
            try:
                await commit_step(
                    self.session,
                    COMMIT_ATTACHMENT,
                    order_number=order_number,
                    file_type=file_type.value,
                    version=version,
                )
            except Exception:
                await self._discard_blob(path)
                raise

        logger.info(
            "Attachment version stored",
            order_number=order_number,
            file_type=file_type.value,
            version=version,
            file_id=str(attachment_id),
        )

        await self._retire_others(attachment)
        return attachment

    async def _retire_others(self, attachment: Attachment) -> None:
        if await self.repository.count_active(
            attachment.order_number, attachment.file_type
        ) <= 1:
            return
        await self.repository.deactivate_others(
            attachment.order_number, attachment.file_type, attachment.id
        )
        await commit_step(
            self.session,
            COMMIT_ATTACHMENT,
            order_number=attachment.order_number,
            file_type=attachment.file_type.value,
        )

    async def _converge(
        self, order_number: str, file_type: FileType, blob: ValidatedBlob
    ) -> Attachment:
        """Resolve a lost race on the version number."""
        highest = await self.repository.get_highest(order_number, file_type)
        if highest is not None and highest.checksum == blob.checksum:
            logger.info(
                "Concurrent replace converged",
                order_number=order_number,
                file_type=file_type.value,
                version=highest.version,
            )
            await self._retire_others(highest)
            return highest

        raise ConflictError(
            "Attachment was replaced concurrently with different content",
            step=COMMIT_ATTACHMENT,
            order_number=order_number,
            file_type=file_type.value,
            highest_version=highest.version if highest else None,
        )

    async def _discard_blob(self, path: str) -> None:
        try:
            await self.blob_store.delete(path)
        except StorageError as e:
            logger.error("Failed to discard unreferenced blob", path=path, error=e.message)
