"""
Attachment content validation.

Checks the extension, size ceiling and leading magic bytes of an uploaded
document before anything is written.
"""

import hashlib
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

from src.core.config import get_settings
from src.core.exceptions import ValidationError

MAGIC_BYTES: dict[str, tuple[bytes, ...]] = {
    ".pdf": (b"%PDF",),
    ".jpg": (b"\xff\xd8\xff",),
    ".jpeg": (b"\xff\xd8\xff",),
    ".png": (b"\x89PNG\r\n\x1a\n",),
}

CONTENT_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


@dataclass(frozen=True)
class ValidatedBlob:
    """Blob that passed validation, with derived metadata."""

    data: bytes
    filename: str
    extension: str
    content_type: str
    size: int
    checksum: str


class AttachmentValidatorConfig:
    """Configuration for attachment validation."""

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        allowed_extensions: Optional[list[str]] = None,
    ):
        settings = get_settings()
        self.max_bytes = max_bytes or settings.attachment_max_bytes
        self.allowed_extensions = set(
            allowed_extensions or settings.attachment_allowed_extensions
        )


class AttachmentValidator:
    """Validates document blobs against type and size rules."""

    def __init__(self, config: Optional[AttachmentValidatorConfig] = None):
        self.config = config or AttachmentValidatorConfig()

    def validate(self, data: bytes, filename: str) -> ValidatedBlob:
        """
        Validate a blob and derive its metadata.

        Raises:
            ValidationError: If the blob is empty, oversize, of a
                disallowed type, or its content does not match its extension
        """
        filename = (filename or "").strip()
        if not filename:
            raise ValidationError("Filename is required", step="validate")

        extension = PurePath(filename).suffix.lower()
        if extension not in self.config.allowed_extensions:
            raise ValidationError(
                f"Unsupported file type: {extension or 'none'}",
                step="validate",
                filename=filename,
                allowed=",".join(sorted(self.config.allowed_extensions)),
            )

        size = len(data)
        if size == 0:
            raise ValidationError("File is empty", step="validate", filename=filename)

        if size > self.config.max_bytes:
            raise ValidationError(
                f"File exceeds maximum size of {self.config.max_bytes} bytes",
                step="validate",
                filename=filename,
                size=size,
                max_bytes=self.config.max_bytes,
            )

        signatures = MAGIC_BYTES.get(extension)
        if signatures and not data.startswith(signatures):
            raise ValidationError(
                f"File content does not match {extension} format",
                step="validate",
                filename=filename,
            )

        return ValidatedBlob(
            data=data,
            filename=filename,
            extension=extension,
            content_type=CONTENT_TYPES.get(extension, "application/octet-stream"),
            size=size,
            checksum=hashlib.sha256(data).hexdigest(),
        )
