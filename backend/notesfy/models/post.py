"""
Notesfy Backend — Catalog SQLAlchemy Models
=============================================

What:  Posts (uploaded PDFs with metadata), their likes, and the subject /
       chapter label catalogs used for browsing and prefix search.

Table Design:
    - posts.author_id: FK to users, set once on upload and never updated
    - posts.author: denormalised username, shown in listings without a join
    - posts.filename: path relative to STORAGE_ROOT
    - post_likes: one row per (post, user); the unique constraint makes the
      like set duplicate-free even under concurrent toggles
    - subjects / chapters: unique titles, created lazily on first use
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from notesfy.database import Base


class Post(Base):
    """
    An uploaded PDF study material.

    Lifecycle:
        1. Created by POST /uploadPdf
        2. Likes toggled by POST /likePdf
        3. Deleted by its owner via POST /deletePdf (likes removed in the
           same transaction)
    """

    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    chapter: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    topics: Mapped[str] = mapped_column(Text, nullable=False, default="")
    qualification: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Relative path from storage root to the stored PDF",
    )

    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    author: Mapped[str] = mapped_column(String(80), nullable=False)

    posted_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_posts_author_id", "author_id"),
        Index("idx_posts_subject", "subject"),
        Index("idx_posts_chapter", "chapter"),
    )

    def __repr__(self) -> str:
        return f"<Post(id={self.id}, chapter='{self.chapter}', author_id={self.author_id})>"


class PostLike(Base):
    """Membership row of a post's like set."""

    __tablename__ = "post_likes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),
    )


class Subject(Base):
    """Deduplicated subject label."""

    __tablename__ = "subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Chapter(Base):
    """Deduplicated chapter label; searched by case-insensitive prefix."""

    __tablename__ = "chapters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
