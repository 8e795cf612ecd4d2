"""
Notesfy Backend — Catalog Schemas
===================================

What:  API contracts for posts, likes, subjects and chapters.
"""

import uuid
from datetime import datetime
from typing import List

from pydantic import Field

from notesfy.schemas.common import CamelModel


class PostResponse(CamelModel):
    """Full representation of a post as listed and returned by /pdfDetails."""
    id: uuid.UUID
    chapter: str
    subject: str
    topics: str
    qualification: str
    filename: str = Field(description="Stored file path relative to the uploads root")
    likes: List[uuid.UUID] = Field(default_factory=list, description="Ids of users who liked the post")
    author_id: uuid.UUID
    author: str
    posted_date: datetime


class PostActionRequest(CamelModel):
    """Body of POST /likePdf and POST /deletePdf."""
    user_id: uuid.UUID
    post_id: uuid.UUID


class LabelResponse(CamelModel):
    """A subject or chapter label."""
    id: uuid.UUID
    title: str


class LikeResponse(CamelModel):
    message: str = Field(default="Like status updated successfully")
    liked: bool = Field(description="Whether the user now likes the post")
