"""
Notesfy Backend — Account Service
===================================

What:  Registration, login, profile lookup and profile image updates.
How:   Passwords are hashed with bcrypt; the user's post list is read from
       the posts table (`author_id`) whenever a profile is built.
Who:   Called by the account routes, and by the catalog service to build
       the owner profile returned after a delete.

Login only verifies credentials and returns the profile; there are no
sessions or tokens.
"""

import logging
import uuid
from typing import Optional

import bcrypt
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.config import settings
from notesfy.exceptions import AuthError, NotFoundError, ValidationError
from notesfy.models.post import Post
from notesfy.models.user import User
from notesfy.schemas.user import UserResponse
from notesfy.services.file_service import PROFILE_IMAGE, file_service

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads/"


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the row
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


class AccountService:
    """Stateless; every method receives the request's session."""

    async def build_user_response(self, db: AsyncSession, user: User) -> UserResponse:
        """Profile with the ids of the user's current posts, oldest first."""
        result = await db.execute(
            select(Post.id)
            .where(Post.author_id == user.id)
            .order_by(Post.posted_date)
        )
        return UserResponse(
            id=user.id,
            username=user.username,
            email=user.email,
            profile=user.profile_image,
            posts=list(result.scalars().all()),
            downloads=user.downloads,
            amount=float(user.amount),
        )

    async def load_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def register(
        self,
        db: AsyncSession,
        username: str,
        email: str,
        password: str,
    ) -> UserResponse:
        """
        Creates a user with an empty ledger.

        Raises:
            ValidationError: username or email already taken
        """
        existing = await db.execute(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        if existing.first() is not None:
            raise ValidationError(message="User already exists", field="username")

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            profile_image=settings.default_profile_image,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name
            await db.rollback()
            raise ValidationError(message="User already exists", field="username")

        logger.info("User registered: %s (%s)", user.username, user.id)
        return await self.build_user_response(db, user)

    async def login(self, db: AsyncSession, username: str, password: str) -> UserResponse:
        """
        Verifies credentials.

        Raises:
            AuthError: unknown username or wrong password (same message for both)
        """
        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Failed login for username=%s", username)
            raise AuthError()
        return await self.build_user_response(db, user)

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> UserResponse:
        user = await self.load_user(db, user_id)
        return await self.build_user_response(db, user)

    async def update_profile_image(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> str:
        """
        Stores a new profile image and points the user at it.

        Returns the new profile URL path. The previous image, unless it is
        the shared default, is removed once the change is committed.
        """
        user = await self.load_user(db, user_id)
        absolute_path, relative_path = await file_service.validate_and_store(
            filename=filename,
            content=content,
            content_length=content_length,
            kind=PROFILE_IMAGE,
        )

        previous = user.profile_image
        user.profile_image = f"{UPLOADS_URL_PREFIX}{relative_path}"
        try:
            await db.commit()
        except Exception:
            await file_service.cleanup_file(absolute_path)
            raise

        if previous != settings.default_profile_image and previous.startswith(UPLOADS_URL_PREFIX):
            await file_service.cleanup_file(previous[len(UPLOADS_URL_PREFIX):])

        logger.info("Profile image updated for user %s: %s", user.id, relative_path)
        return user.profile_image


# ── Singleton Instance ────────────────────────────────────────────────────
account_service = AccountService()
