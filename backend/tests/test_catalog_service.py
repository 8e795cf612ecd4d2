"""
Notesfy Backend — Catalog Service Tests
=========================================

What:  Tests for CatalogService: PDF upload, likes, deletion and the
       subject / chapter catalogs.
How:   Real SQLite database and the shared FileService storage root.
"""

import uuid

import pytest

from notesfy.exceptions import ForbiddenError, NotFoundError, ValidationError
from notesfy.services.catalog_service import catalog_service, escape_like
from notesfy.services.file_service import file_service


async def upload(session_factory, user, chapter="Thermodynamics", subject="Physics", content=None,
                 filename="notes.pdf"):
    from conftest import SAMPLE_PDF

    content = SAMPLE_PDF if content is None else content
    async with session_factory() as session:
        return await catalog_service.upload_post(
            session,
            user_id=user.id,
            chapter=chapter,
            subject=subject,
            topics=" laws, entropy ",
            qualification="B.Sc",
            filename=filename,
            content=content,
            content_length=len(content),
        )


class TestEscapeLike:

    def test_wildcards_escaped(self):
        assert escape_like("100%_done") == "100\\%\\_done"

    def test_escape_character_doubled(self):
        assert escape_like("a\\b") == "a\\\\b"


class TestUploadPost:

    @pytest.mark.asyncio
    async def test_upload_creates_post_and_labels(self, session_factory, make_user):
        user = await make_user()

        post = await upload(session_factory, user)

        assert post.chapter == "Thermodynamics"
        assert post.topics == "laws, entropy"
        assert post.author == user.username
        assert post.filename.startswith("pdfs/")
        assert (file_service.storage_root / post.filename).is_file()

        async with session_factory() as session:
            subjects = await catalog_service.list_subjects(session)
            chapters = await catalog_service.search_chapters(session, "thermo")
        assert [s.title for s in subjects] == ["Physics"]
        assert [c.title for c in chapters] == ["Thermodynamics"]

    @pytest.mark.asyncio
    async def test_labels_created_once(self, session_factory, make_user):
        user = await make_user()
        await upload(session_factory, user)
        await upload(session_factory, user)

        async with session_factory() as session:
            subjects = await catalog_service.list_subjects(session)
            chapters = await catalog_service.search_chapters(session, "T")
        assert len(subjects) == 1
        assert len(chapters) == 1

    @pytest.mark.asyncio
    async def test_blank_chapter_rejected(self, session_factory, make_user):
        user = await make_user()
        with pytest.raises(ValidationError) as exc_info:
            await upload(session_factory, user, chapter="   ")
        assert exc_info.value.field == "title"

    @pytest.mark.asyncio
    async def test_non_pdf_rejected(self, session_factory, make_user):
        user = await make_user()
        with pytest.raises(ValidationError, match="not supported"):
            await upload(session_factory, user, filename="notes.txt", content=b"plain text")

        async with session_factory() as session:
            assert await catalog_service.list_by_subject(session, "Physics") == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory):
        class Ghost:
            id = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await upload(session_factory, Ghost())


class TestReads:

    @pytest.mark.asyncio
    async def test_get_post_unknown(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await catalog_service.get_post(session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_list_by_subject_newest_first(self, session_factory, make_user, make_post):
        user = await make_user()
        older = await make_post(user, chapter="Optics")
        newer = await make_post(user, chapter="Waves")
        await make_post(user, chapter="Cells", subject="Biology")

        async with session_factory() as session:
            posts = await catalog_service.list_by_subject(session, "Physics")
        assert [p.id for p in posts] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_list_by_chapter(self, session_factory, make_user, make_post):
        user = await make_user()
        post = await make_post(user, chapter="Optics")
        await make_post(user, chapter="Waves")

        async with session_factory() as session:
            posts = await catalog_service.list_by_chapter(session, "Optics")
        assert [p.id for p in posts] == [post.id]

    @pytest.mark.asyncio
    async def test_search_chapters_prefix(self, session_factory, make_user):
        user = await make_user()
        for chapter in ("Organic Chemistry", "Optics", "Thermodynamics"):
            await upload(session_factory, user, chapter=chapter)

        async with session_factory() as session:
            found = await catalog_service.search_chapters(session, "o")
            none_for_wildcard = await catalog_service.search_chapters(session, "%")
            blank = await catalog_service.search_chapters(session, "  ")
        assert [c.title for c in found] == ["Optics", "Organic Chemistry"]
        assert none_for_wildcard == []
        assert blank == []


class TestLikes:

    @pytest.mark.asyncio
    async def test_toggle_like(self, session_factory, make_user, make_post):
        author = await make_user()
        reader = await make_user()
        post = await make_post(author)

        async with session_factory() as session:
            assert await catalog_service.toggle_like(session, reader.id, post.id) is True
        async with session_factory() as session:
            assert (await catalog_service.get_post(session, post.id)).likes == [reader.id]

        async with session_factory() as session:
            assert await catalog_service.toggle_like(session, reader.id, post.id) is False
        async with session_factory() as session:
            assert (await catalog_service.get_post(session, post.id)).likes == []

    @pytest.mark.asyncio
    async def test_like_unknown_post(self, session_factory, make_user):
        reader = await make_user()
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await catalog_service.toggle_like(session, reader.id, uuid.uuid4())


class TestDeletePost:

    @pytest.mark.asyncio
    async def test_owner_deletes_post(self, session_factory, make_user, make_post):
        author = await make_user()
        reader = await make_user()
        keep = await make_post(author, chapter="Optics")
        doomed = await make_post(author, chapter="Waves")
        async with session_factory() as session:
            await catalog_service.toggle_like(session, reader.id, doomed.id)

        async with session_factory() as session:
            profile = await catalog_service.delete_post(session, author.id, doomed.id)

        assert profile.posts == [keep.id]
        assert not (file_service.storage_root / doomed.filename).exists()
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await catalog_service.get_post(session, doomed.id)

    @pytest.mark.asyncio
    async def test_non_owner_cannot_delete(self, session_factory, make_user, make_post):
        author = await make_user()
        intruder = await make_user()
        post = await make_post(author)

        async with session_factory() as session:
            with pytest.raises(ForbiddenError):
                await catalog_service.delete_post(session, intruder.id, post.id)

        async with session_factory() as session:
            assert (await catalog_service.get_post(session, post.id)).id == post.id
        assert (file_service.storage_root / post.filename).is_file()
