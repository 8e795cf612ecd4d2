"""
Notesfy Backend — Account Schemas
===================================

Request and response bodies for registration, login and profile lookups.
The password hash never appears in any response model.
"""

import uuid
from typing import List

from pydantic import Field, field_validator

from notesfy.schemas.common import CamelModel


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=80)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    # bcrypt only looks at the first 72 bytes; longer inputs are rejected
    password: str = Field(min_length=6, max_length=72)

    @field_validator("username", "email")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(CamelModel):
    username: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=1, max_length=72)


class UserResponse(CamelModel):
    """
    Public profile plus ledger.

    `posts` holds the ids of the posts this user authored; `amount` is the
    withdrawable balance in major currency units.
    """
    id: uuid.UUID
    username: str
    email: str
    profile: str = Field(description="URL path of the profile image")
    posts: List[uuid.UUID] = Field(default_factory=list)
    downloads: int = Field(ge=0)
    amount: float = Field(ge=0)


class RegisterResponse(CamelModel):
    new_user: UserResponse


class UserEnvelope(CamelModel):
    user: UserResponse


class ProfileImageResponse(CamelModel):
    profile: str = Field(description="URL path of the new profile image")
