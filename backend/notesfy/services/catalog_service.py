"""
Notesfy Backend — Catalog Service
===================================

What:  Posts (uploaded PDFs), likes, and the subject / chapter catalogs.
How:   File validation and storage go through FileService; everything else
       is plain SQLAlchemy against the catalog tables.
Who:   Called by the post routes.

Upload Flow (POST /uploadPdf):
    ┌──────────┐    ┌──────────────┐    ┌───────────┐    ┌─────────────────┐
    │  Owner   │───▶│  Validate &  │───▶│  Insert   │───▶│ Subject/Chapter │
    │  lookup  │    │  store PDF   │    │  Post     │    │ (create if new) │
    └──────────┘    └──────────────┘    └───────────┘    └─────────────────┘

    A failure after the file is stored removes the file again.

Delete Flow (POST /deletePdf):
    Owner check, then likes and the post row are deleted in one transaction.
    The owner's post list is derived from posts.author_id, so it can never
    keep a deleted post. The PDF file is removed after the commit.
"""

import logging
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.exceptions import ForbiddenError, NotFoundError, ValidationError
from notesfy.models.post import Chapter, Post, PostLike, Subject
from notesfy.models.user import User
from notesfy.schemas.post import LabelResponse, PostResponse
from notesfy.schemas.user import UserResponse
from notesfy.services.account_service import account_service
from notesfy.services.file_service import PDF, file_service

logger = logging.getLogger(__name__)


def escape_like(value: str, escape: str = "\\") -> str:
    """Escapes LIKE wildcards so `value` matches literally."""
    return (
        value.replace(escape, escape * 2)
        .replace("%", f"{escape}%")
        .replace("_", f"{escape}_")
    )


class CatalogService:
    """Business logic for the content catalog."""

    # ── Reads ─────────────────────────────────────────────────────────────

    async def _likes_by_post(
        self,
        db: AsyncSession,
        post_ids: Sequence[uuid.UUID],
    ) -> Dict[uuid.UUID, List[uuid.UUID]]:
        if not post_ids:
            return {}
        result = await db.execute(
            select(PostLike.post_id, PostLike.user_id).where(PostLike.post_id.in_(post_ids))
        )
        likes: Dict[uuid.UUID, List[uuid.UUID]] = defaultdict(list)
        for post_id, user_id in result.all():
            likes[post_id].append(user_id)
        return likes

    async def _to_responses(self, db: AsyncSession, posts: Sequence[Post]) -> List[PostResponse]:
        likes = await self._likes_by_post(db, [p.id for p in posts])
        return [
            PostResponse(
                id=post.id,
                chapter=post.chapter,
                subject=post.subject,
                topics=post.topics,
                qualification=post.qualification,
                filename=post.filename,
                likes=likes.get(post.id, []),
                author_id=post.author_id,
                author=post.author,
                posted_date=post.posted_date,
            )
            for post in posts
        ]

    async def load_post(self, db: AsyncSession, post_id: uuid.UUID) -> Post:
        post = await db.get(Post, post_id)
        if post is None:
            raise NotFoundError(resource="post", resource_id=str(post_id))
        return post

    async def get_post(self, db: AsyncSession, post_id: uuid.UUID) -> PostResponse:
        post = await self.load_post(db, post_id)
        return (await self._to_responses(db, [post]))[0]

    async def list_by_subject(self, db: AsyncSession, subject: str) -> List[PostResponse]:
        result = await db.execute(
            select(Post).where(Post.subject == subject).order_by(Post.posted_date.desc())
        )
        return await self._to_responses(db, result.scalars().all())

    async def list_by_chapter(self, db: AsyncSession, chapter: str) -> List[PostResponse]:
        result = await db.execute(
            select(Post).where(Post.chapter == chapter).order_by(Post.posted_date.desc())
        )
        return await self._to_responses(db, result.scalars().all())

    async def list_subjects(self, db: AsyncSession) -> List[LabelResponse]:
        result = await db.execute(select(Subject).order_by(Subject.title))
        return [LabelResponse(id=s.id, title=s.title) for s in result.scalars().all()]

    async def search_chapters(self, db: AsyncSession, prefix: str) -> List[LabelResponse]:
        """Chapters whose title starts with `prefix`, ignoring case. Blank prefix → []."""
        if not prefix or not prefix.strip():
            return []
        pattern = f"{escape_like(prefix)}%"
        result = await db.execute(
            select(Chapter)
            .where(Chapter.title.ilike(pattern, escape="\\"))
            .order_by(Chapter.title)
        )
        return [LabelResponse(id=c.id, title=c.title) for c in result.scalars().all()]

    # ── Writes ────────────────────────────────────────────────────────────

    async def _ensure_label(self, db: AsyncSession, model, title: str) -> None:
        """Inserts a Subject/Chapter title unless it already exists."""
        result = await db.execute(select(model.id).where(model.title == title))
        if result.first() is not None:
            return
        try:
            async with db.begin_nested():
                db.add(model(title=title))
        except IntegrityError:
            # Created concurrently by another upload
            logger.debug("%s '%s' already created concurrently", model.__name__, title)

    async def upload_post(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        chapter: str,
        subject: str,
        topics: str,
        qualification: str,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> PostResponse:
        """
        Stores an uploaded PDF and creates its post.

        Raises:
            NotFoundError:   the uploading user does not exist
            ValidationError: blank chapter/subject, or the file is not an acceptable PDF
        """
        chapter = chapter.strip()
        subject = subject.strip()
        if not chapter:
            raise ValidationError(message="Chapter title is required", field="title")
        if not subject:
            raise ValidationError(message="Subject is required", field="subject")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))

        absolute_path, relative_path = await file_service.validate_and_store(
            filename=filename,
            content=content,
            content_length=content_length,
            kind=PDF,
        )

        try:
            post = Post(
                chapter=chapter,
                subject=subject,
                topics=topics.strip(),
                qualification=qualification.strip(),
                filename=relative_path,
                author_id=user.id,
                author=user.username,
            )
            db.add(post)
            await db.flush()

            await self._ensure_label(db, Subject, subject)
            await self._ensure_label(db, Chapter, chapter)
            await db.commit()
        except Exception:
            await file_service.cleanup_file(absolute_path)
            raise

        logger.info("Post %s uploaded by %s: %s / %s", post.id, user.id, subject, chapter)
        return (await self._to_responses(db, [post]))[0]

    async def toggle_like(self, db: AsyncSession, user_id: uuid.UUID, post_id: uuid.UUID) -> bool:
        """
        Adds the user to the post's like set, or removes them if present.

        Returns True when the post is now liked by the user.
        """
        await self.load_post(db, post_id)
        if await db.get(User, user_id) is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))

        removed = await db.execute(
            delete(PostLike).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
        )
        if removed.rowcount:
            await db.commit()
            return False

        try:
            async with db.begin_nested():
                db.add(PostLike(post_id=post_id, user_id=user_id))
        except IntegrityError:
            # A concurrent toggle inserted the same like; the set has no duplicates
            logger.debug("Like for post %s by %s already present", post_id, user_id)
        await db.commit()
        return True

    async def delete_post(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        post_id: uuid.UUID,
    ) -> UserResponse:
        """
        Deletes a post owned by `user_id` and returns the owner's updated profile.

        Raises:
            NotFoundError:  user or post missing
            ForbiddenError: the post belongs to someone else
        """
        user = await account_service.load_user(db, user_id)
        post = await self.load_post(db, post_id)
        if post.author_id != user.id:
            raise ForbiddenError(
                message="Only the author can delete this post",
                context={"post_id": str(post_id)},
            )

        stored_file = post.filename
        await db.execute(delete(PostLike).where(PostLike.post_id == post_id))
        await db.delete(post)
        await db.commit()
        logger.info("Post %s deleted by owner %s", post_id, user_id)

        await file_service.cleanup_file(stored_file)
        return await account_service.build_user_response(db, user)


# ── Singleton Instance ────────────────────────────────────────────────────
catalog_service = CatalogService()
