"""
Notesfy Backend — File Service Unit Tests
===========================================

What:  Tests for FileService validation (extension, size, MIME type),
       storage layout, path resolution and cleanup.
How:   Each test gets a FileService rooted in a temporary directory.

Test Strategy:
    ✅ Allowed / rejected extensions per upload kind
    ✅ Size limits (empty, Content-Length, actual bytes)
    ✅ Kind/date-organized UUID storage paths
    ✅ resolve() confines reads to the storage root
    ❌ MIME validation requires python-magic with libmagic (skipped if unavailable)
"""

import pytest
from unittest.mock import patch

from notesfy.exceptions import NotFoundError, ValidationError
from notesfy.services.file_service import PDF, PROFILE_IMAGE, FileService

try:
    import magic  # noqa: F401
    HAS_MAGIC = True
except ImportError:
    HAS_MAGIC = False


class TestFileValidation:
    """Tests for file validation logic in FileService."""

    @pytest.fixture(autouse=True)
    def _service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)

    # ── Extension Validation ──────────────────────────────────────────────

    def test_validate_extension_pdf(self):
        assert self.service.validate_extension("chapter1.pdf", PDF) == ".pdf"

    def test_validate_extension_uppercase(self):
        """Extension check should be case-insensitive."""
        assert self.service.validate_extension("CHAPTER1.PDF", PDF) == ".pdf"
        assert self.service.validate_extension("me.JPG", PROFILE_IMAGE) == ".jpg"

    def test_validate_extension_image_kinds(self):
        for name in ("me.png", "me.jpg", "me.jpeg"):
            self.service.validate_extension(name, PROFILE_IMAGE)

    def test_validate_extension_image_rejected_for_pdf(self):
        with pytest.raises(ValidationError, match="not supported") as exc_info:
            self.service.validate_extension("scan.jpg", PDF)
        assert exc_info.value.field == "pdf-file"

    def test_validate_extension_pdf_rejected_for_profile(self):
        with pytest.raises(ValidationError, match="not supported") as exc_info:
            self.service.validate_extension("notes.pdf", PROFILE_IMAGE)
        assert exc_info.value.field == "profileImg"

    def test_validate_extension_no_extension_rejected(self):
        with pytest.raises(ValidationError, match="not supported"):
            self.service.validate_extension("noextension", PDF)

    def test_validate_extension_exe_rejected(self):
        with pytest.raises(ValidationError, match="not supported"):
            self.service.validate_extension("malware.exe", PDF)

    # ── Size Validation ───────────────────────────────────────────────────

    def test_validate_size_within_limit(self):
        self.service.validate_size(1000, 1000, PDF)

    def test_validate_size_at_limit(self):
        """Files exactly at the limit should pass."""
        self.service.validate_size(None, PDF.max_size, PDF)

    def test_validate_size_over_limit(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(None, PDF.max_size + 1, PDF)

    def test_validate_size_reported_length_over_limit(self):
        """A Content-Length above the limit is rejected before the bytes are counted."""
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(PROFILE_IMAGE.max_size + 1, 10, PROFILE_IMAGE)

    def test_validate_size_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(0, 0, PDF)

    # ── MIME Type Validation ──────────────────────────────────────────────

    @pytest.mark.skipif(not HAS_MAGIC, reason="python-magic / libmagic not installed")
    def test_validate_mime_type_pdf(self, sample_pdf_bytes):
        assert self.service.validate_mime_type(sample_pdf_bytes, "a.pdf", PDF) == "application/pdf"

    @pytest.mark.skipif(not HAS_MAGIC, reason="python-magic / libmagic not installed")
    def test_validate_mime_type_renamed_text_rejected(self):
        """A text file renamed to .pdf must not pass as a PDF."""
        with pytest.raises(ValidationError, match="must be a valid PDF"):
            self.service.validate_mime_type(b"just some plain text\n" * 10, "fake.pdf", PDF)

    @pytest.mark.skipif(not HAS_MAGIC, reason="python-magic / libmagic not installed")
    def test_validate_mime_type_pdf_rejected_as_image(self, sample_pdf_bytes):
        with pytest.raises(ValidationError, match="must be a valid image"):
            self.service.validate_mime_type(sample_pdf_bytes, "me.png", PROFILE_IMAGE)


class TestFileStorage:
    """Storage, resolution and cleanup."""

    @pytest.fixture(autouse=True)
    def _service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)

    @pytest.mark.asyncio
    async def test_validate_and_store_creates_date_directory(self, sample_pdf_bytes):
        """Uploaded PDFs land in pdfs/YYYY/MM/DD/<uuid>.pdf."""
        with patch.object(self.service, "validate_mime_type", return_value="application/pdf"):
            abs_path, rel_path = await self.service.validate_and_store(
                filename="Chapter 1 (final).pdf",
                content=sample_pdf_bytes,
                content_length=len(sample_pdf_bytes),
                kind=PDF,
            )

        parts = rel_path.split("/")
        assert parts[0] == "pdfs"
        assert len(parts) == 5
        assert rel_path.endswith(".pdf")
        assert "Chapter" not in rel_path  # user filename never reaches the disk
        with open(abs_path, "rb") as f:
            assert f.read() == sample_pdf_bytes

    @pytest.mark.asyncio
    async def test_profile_image_stored_under_detected_extension(self, sample_image_bytes):
        """A .jpeg upload detected as image/jpeg is stored as .jpg."""
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            _, rel_path = await self.service.validate_and_store(
                filename="me.jpeg",
                content=sample_image_bytes,
                kind=PROFILE_IMAGE,
            )
        assert rel_path.startswith("profiles/")
        assert rel_path.endswith(".jpg")

    @pytest.mark.asyncio
    async def test_invalid_upload_writes_nothing(self, temp_storage):
        with pytest.raises(ValidationError):
            await self.service.validate_and_store("notes.docx", b"data", kind=PDF)
        assert not (self.service.storage_root / "pdfs").exists()

    @pytest.mark.asyncio
    async def test_resolve_returns_stored_file(self, sample_pdf_bytes):
        abs_path, rel_path = await self.service.store_file(sample_pdf_bytes, ".pdf", PDF)
        assert str(self.service.resolve(rel_path)) == abs_path

    def test_resolve_missing_file(self):
        with pytest.raises(NotFoundError):
            self.service.resolve("pdfs/2026/01/01/missing.pdf")

    def test_resolve_rejects_traversal(self):
        with pytest.raises(ValidationError, match="Invalid file path"):
            self.service.resolve("../../etc/passwd")

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, tmp_path):
        test_file = tmp_path / "test.pdf"
        test_file.write_bytes(b"test content")

        await self.service.cleanup_file(str(test_file))
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_relative_path(self, sample_pdf_bytes):
        """Relative paths (as stored in the database) are resolved against the root."""
        abs_path, rel_path = await self.service.store_file(sample_pdf_bytes, ".pdf", PDF)
        await self.service.cleanup_file(rel_path)
        assert not (self.service.storage_root / rel_path).exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, tmp_path):
        """cleanup_file should not raise for non-existent files."""
        await self.service.cleanup_file(str(tmp_path / "nonexistent.pdf"))
