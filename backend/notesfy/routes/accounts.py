"""
Notesfy Backend — Account Route Handlers
==========================================

What:  POST / (register), POST /login, POST /profileUpdate, GET /getuser/{userId}.
How:   Thin handlers; AccountService does the work and raises the errors
       the global handlers turn into responses.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.database import get_db_session
from notesfy.schemas.common import ErrorResponse
from notesfy.schemas.user import (
    LoginRequest,
    ProfileImageResponse,
    RegisterRequest,
    RegisterResponse,
    UserEnvelope,
    UserResponse,
)
from notesfy.services.account_service import account_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Accounts"])


@router.post(
    "/",
    status_code=201,
    response_model=RegisterResponse,
    responses={
        201: {"description": "User created", "model": RegisterResponse},
        400: {"description": "Invalid input or user already exists", "model": ErrorResponse},
    },
    summary="Register a new user",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> RegisterResponse:
    user = await account_service.register(
        db=db,
        username=body.username,
        email=body.email,
        password=body.password,
    )
    return RegisterResponse(new_user=user)


@router.post(
    "/login",
    response_model=UserEnvelope,
    responses={
        200: {"description": "Credentials accepted", "model": UserEnvelope},
        401: {"description": "Invalid username or password", "model": ErrorResponse},
    },
    summary="Verify credentials and return the profile",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> UserEnvelope:
    user = await account_service.login(db=db, username=body.username, password=body.password)
    return UserEnvelope(user=user)


@router.post(
    "/profileUpdate",
    response_model=ProfileImageResponse,
    responses={
        400: {"description": "Invalid image", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Replace the profile image",
)
async def update_profile(
    user_id: UUID = Form(..., alias="userId"),
    profile_img: UploadFile = File(..., alias="profileImg", description="PNG or JPEG image"),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileImageResponse:
    content = await profile_img.read()
    try:
        profile = await account_service.update_profile_image(
            db=db,
            user_id=user_id,
            filename=profile_img.filename or "profile.jpg",
            content=content,
            content_length=profile_img.size,
        )
    finally:
        await profile_img.close()
    return ProfileImageResponse(profile=profile)


@router.get(
    "/getuser/{user_id}",
    response_model=UserResponse,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
    summary="Get a user profile with post ids and ledger",
)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await account_service.get_user(db=db, user_id=user_id)
