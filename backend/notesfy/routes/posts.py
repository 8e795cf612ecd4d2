"""
Notesfy Backend — Catalog Route Handlers
==========================================

What:  Upload, browse, like and delete PDF posts; list subjects and search
       chapters; serve stored uploads.
Who:   Called by the web client's upload form, search bar and post cards.

Routes:
    POST /uploadPdf               multipart upload of a PDF and its metadata
    GET  /pdfDetails/{postId}     single post
    POST /likePdf                 toggle the caller's like
    POST /deletePdf               owner-only delete
    GET  /getSubjects             all subjects
    GET  /getChapters/{prefix}    chapter titles by case-insensitive prefix
    GET  /getSubjectPdfs?option=  posts for a subject
    GET  /getChapterPdfs?chapter= posts for a chapter
    GET  /uploads/{path}          stored profile images
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.database import get_db_session
from notesfy.exceptions import NotFoundError
from notesfy.schemas.common import ErrorResponse, MessageResponse
from notesfy.schemas.post import LabelResponse, LikeResponse, PostActionRequest, PostResponse
from notesfy.schemas.user import UserEnvelope
from notesfy.services.catalog_service import catalog_service
from notesfy.services.file_service import PDF, file_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Posts"])


@router.post(
    "/uploadPdf",
    status_code=201,
    response_model=MessageResponse,
    responses={
        400: {"description": "Invalid file or metadata", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Upload a PDF study material",
    description=(
        "Stores a PDF (validated by extension, size and content type) and creates "
        "a post for it. New subject and chapter names are added to the catalogs."
    ),
)
async def upload_pdf(
    user_id: UUID = Form(..., alias="userId"),
    title: str = Form(..., min_length=1, max_length=255, description="Chapter title"),
    subject: str = Form(..., min_length=1, max_length=255),
    topics: str = Form(default=""),
    qualification: str = Form(default="", max_length=255),
    pdf_file: UploadFile = File(..., alias="pdf-file", description="PDF file"),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    content = await pdf_file.read()
    logger.info("Received PDF upload: filename=%s, size=%d bytes", pdf_file.filename or "unknown", len(content))
    try:
        await catalog_service.upload_post(
            db=db,
            user_id=user_id,
            chapter=title,
            subject=subject,
            topics=topics,
            qualification=qualification,
            filename=pdf_file.filename or "upload.pdf",
            content=content,
            content_length=pdf_file.size,
        )
    finally:
        await pdf_file.close()
    return MessageResponse(message="uploaded")


@router.get(
    "/pdfDetails/{post_id}",
    response_model=PostResponse,
    responses={404: {"description": "Post not found", "model": ErrorResponse}},
    summary="Get a post by id",
)
async def pdf_details(
    post_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> PostResponse:
    return await catalog_service.get_post(db=db, post_id=post_id)


@router.post(
    "/likePdf",
    response_model=LikeResponse,
    responses={404: {"description": "Post or user not found", "model": ErrorResponse}},
    summary="Like or unlike a post",
)
async def like_pdf(
    body: PostActionRequest,
    db: AsyncSession = Depends(get_db_session),
) -> LikeResponse:
    liked = await catalog_service.toggle_like(db=db, user_id=body.user_id, post_id=body.post_id)
    return LikeResponse(liked=liked)


@router.post(
    "/deletePdf",
    response_model=UserEnvelope,
    responses={
        403: {"description": "Not the author of the post", "model": ErrorResponse},
        404: {"description": "Post or user not found", "model": ErrorResponse},
    },
    summary="Delete one of your posts",
)
async def delete_pdf(
    body: PostActionRequest,
    db: AsyncSession = Depends(get_db_session),
) -> UserEnvelope:
    user = await catalog_service.delete_post(db=db, user_id=body.user_id, post_id=body.post_id)
    return UserEnvelope(user=user)


@router.get("/getSubjects", response_model=List[LabelResponse], summary="List subjects")
async def get_subjects(db: AsyncSession = Depends(get_db_session)) -> List[LabelResponse]:
    return await catalog_service.list_subjects(db=db)


@router.get("/getChapters/", response_model=List[LabelResponse], include_in_schema=False)
async def get_chapters_empty() -> List[LabelResponse]:
    # The search box sends this once it has been cleared
    return []


@router.get(
    "/getChapters/{prefix}",
    response_model=List[LabelResponse],
    summary="Search chapters by title prefix",
)
async def get_chapters(
    prefix: str,
    db: AsyncSession = Depends(get_db_session),
) -> List[LabelResponse]:
    return await catalog_service.search_chapters(db=db, prefix=prefix)


@router.get("/getSubjectPdfs", response_model=List[PostResponse], summary="Posts for a subject")
async def get_subject_pdfs(
    option: str = Query(..., min_length=1, description="Subject title"),
    db: AsyncSession = Depends(get_db_session),
) -> List[PostResponse]:
    return await catalog_service.list_by_subject(db=db, subject=option)


@router.get("/getChapterPdfs", response_model=List[PostResponse], summary="Posts for a chapter")
async def get_chapter_pdfs(
    chapter: str = Query(..., min_length=1, description="Chapter title"),
    db: AsyncSession = Depends(get_db_session),
) -> List[PostResponse]:
    return await catalog_service.list_by_chapter(db=db, chapter=chapter)


@router.get(
    "/uploads/{file_path:path}",
    summary="Serve a stored upload",
    responses={
        200: {"description": "Stored file"},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_upload(file_path: str) -> FileResponse:
    """
    Serves profile images from the storage root.

    PDFs are only released through the paid download flow, so the PDF
    folder is reported as missing here. Paths that resolve outside the
    storage root are rejected before the file system is touched.
    """
    full_path = file_service.resolve(file_path)
    if full_path.is_relative_to(file_service.storage_root / PDF.folder):
        raise NotFoundError(resource="file")
    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "public, max-age=86400"},
    )
