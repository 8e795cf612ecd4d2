"""
Notesfy Backend — File Storage Service
========================================

What:  Validates, stores, resolves and removes uploaded files: PDF study
       materials and profile images.
How:   Validates extension, size and magic-byte MIME type, then stores the
       bytes under a UUID filename in a kind/date-organized directory.
Who:   Called by the catalog service (PDF upload/delete), the account
       service (profile image) and the download service (file resolution).

Security Model:
    1. Extension check:   fast rejection before reading content
    2. Size check:        per-kind limit, empty files rejected
    3. MIME type check:   libmagic inspects the header bytes
    4. UUID filename:     no user input ever reaches the file system path
    5. Path resolution:   every read is confined to the storage root
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import aiofiles

from notesfy.config import settings
from notesfy.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadKind:
    """Validation rules for one category of upload."""

    name: str
    folder: str
    field: str
    mime_types: Dict[str, str]
    extensions: FrozenSet[str]
    max_size_setting: str

    @property
    def max_size(self) -> int:
        return getattr(settings, self.max_size_setting)


PDF = UploadKind(
    name="PDF",
    folder="pdfs",
    field="pdf-file",
    mime_types={"application/pdf": ".pdf"},
    extensions=frozenset({".pdf"}),
    max_size_setting="max_pdf_size",
)

PROFILE_IMAGE = UploadKind(
    name="image",
    folder="profiles",
    field="profileImg",
    mime_types={"image/png": ".png", "image/jpeg": ".jpg", "image/jpg": ".jpg"},
    extensions=frozenset({".png", ".jpg", ".jpeg"}),
    max_size_setting="max_image_size",
)

_EXTENSION_MIME = {".pdf": "application/pdf", ".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


class FileService:
    """
    Manages the upload lifecycle under a single storage root.

    Directory Structure:
        uploads/
        ├── pdfs/2026/10/19/a1b2c3d4-....pdf
        └── profiles/2026/10/19/e5f6g7h8-....jpg

    Relative paths (e.g. "pdfs/2026/10/19/<uuid>.pdf") are what the database
    stores; `resolve()` turns them back into absolute paths.
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
                          If None, uses settings.storage_root.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    def validate_extension(self, filename: str, kind: UploadKind = PDF) -> str:
        """
        Checks the extension against the kind's allowed list.

        Returns:  Normalized extension (lowercase with dot).
        Raises:   ValidationError if extension is not allowed.
        """
        ext = Path(filename).suffix.lower()
        if ext not in kind.extensions:
            raise ValidationError(
                message=(
                    f"File type '{ext or filename}' is not supported. "
                    f"Allowed types: {', '.join(sorted(kind.extensions))}"
                ),
                field=kind.field,
                context={"extension": ext, "allowed": sorted(kind.extensions)},
            )
        return ext

    def validate_size(
        self,
        content_length: Optional[int],
        actual_size: int,
        kind: UploadKind = PDF,
    ) -> None:
        """
        Validates file size against the kind's maximum.

        Content-Length is checked first when the client sent one; the actual
        byte count is checked regardless since headers can be wrong.
        """
        max_mb = kind.max_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="The uploaded file is empty.",
                field=kind.field,
            )

        if content_length and content_length > kind.max_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field=kind.field,
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > kind.max_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field=kind.field,
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, file_content: bytes, filename: str, kind: UploadKind = PDF) -> str:
        """
        Determines the real MIME type from the file's magic bytes.

        Returns:  Detected MIME type string (e.g., "application/pdf")
        Raises:   ValidationError if the type is not allowed for this kind
        """
        try:
            import magic
            mime_type = magic.from_buffer(file_content, mime=True)
        except ImportError:
            # libmagic missing (e.g. CI image); trust the validated extension
            logger.warning(
                "python-magic not available; falling back to extension-based type detection. "
                "Install libmagic for production security."
            )
            mime_type = _EXTENSION_MIME.get(Path(filename).suffix.lower(), "application/octet-stream")
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in kind.mime_types:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported. "
                    f"The file must be a valid {kind.name}."
                ),
                field=kind.field,
                context={"detected_mime": mime_type, "allowed": list(kind.mime_types.keys())},
            )

        return mime_type

    def _generate_storage_path(self, extension: str, kind: UploadKind) -> Tuple[Path, str]:
        """Returns (absolute_path, relative_path) for <folder>/YYYY/MM/DD/<uuid><ext>."""
        now = datetime.now(timezone.utc)
        date_dir = now.strftime("%Y/%m/%d")
        unique_name = f"{uuid.uuid4()}{extension}"

        relative_path = f"{kind.folder}/{date_dir}/{unique_name}"
        absolute_path = self.storage_root / relative_path

        return absolute_path, relative_path

    async def store_file(self, content: bytes, extension: str, kind: UploadKind = PDF) -> Tuple[str, str]:
        """
        Writes validated content to disk with async I/O.

        Returns:  Tuple of (absolute_path, relative_path).
        Raises:   FileStorageError if directory creation or file write fails.
        """
        absolute_path, relative_path = self._generate_storage_path(extension, kind)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)

            logger.info("File stored: %s (%d bytes)", relative_path, len(content))
            return str(absolute_path), relative_path

        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded file. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

    def resolve(self, relative_path: str, resource: str = "file") -> Path:
        """
        Maps a stored relative path to an existing absolute path.

        Raises:
            ValidationError: the path escapes the storage root
            NotFoundError:   nothing is stored at that path
        """
        full_path = (self.storage_root / relative_path).resolve()
        if not full_path.is_relative_to(self.storage_root):
            raise ValidationError(message="Invalid file path", context={"path": relative_path})
        if not full_path.is_file():
            raise NotFoundError(resource=resource)
        return full_path

    async def cleanup_file(self, file_path: str) -> None:
        """
        Removes a file from storage, best effort.

        Called after a failed upload and after a post is deleted. Missing
        files are ignored; other failures are logged, not raised, since the
        database change they follow has already been committed.
        """
        try:
            path = Path(file_path)
            if not path.is_absolute():
                path = self.storage_root / path
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
        kind: UploadKind = PDF,
    ) -> Tuple[str, str]:
        """
        Complete validation and storage pipeline, cheapest check first.

        Returns:  Tuple of (absolute_path, relative_path_for_db).
        """
        ext = self.validate_extension(filename, kind)
        self.validate_size(content_length, len(content), kind)
        mime_type = self.validate_mime_type(content, filename, kind)
        # Store under the extension matching the detected type (.jpeg → .jpg)
        absolute_path, relative_path = await self.store_file(
            content, kind.mime_types.get(mime_type, ext), kind
        )
        return absolute_path, relative_path


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
