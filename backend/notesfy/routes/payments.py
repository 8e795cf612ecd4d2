"""
Notesfy Backend — Payment Route Handlers
==========================================

What:  POST /create-order, POST /downloadPdf?id=, POST /withdraw.
Who:   Called by the web client's checkout button, the checkout success
       callback and the earnings page.

Request Flow (POST /downloadPdf):
    1. Client completes checkout and receives the payment proof
       (razorpay_order_id, razorpay_payment_id, razorpay_signature)
    2. Client posts the proof with the post id
    3. DownloadService verifies, credits the author and commits
    4. The PDF streams back as an attachment named after the chapter

    Errors before step 4 come back as JSON with a 4xx/5xx status; once the
    stream has started the credit stands even if the client disconnects.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.database import get_db_session
from notesfy.schemas.common import ErrorResponse
from notesfy.schemas.payment import OrderResponse, PaymentProof, WithdrawRequest, WithdrawResponse
from notesfy.services.download_service import download_service
from notesfy.services.payout_service import payout_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


@router.post(
    "/create-order",
    response_model=OrderResponse,
    responses={
        502: {"description": "Payment gateway failure", "model": ErrorResponse},
        503: {"description": "Payment gateway suspended", "model": ErrorResponse},
    },
    summary="Create a checkout order for one download",
)
async def create_order() -> OrderResponse:
    return OrderResponse(order=await download_service.create_order())


@router.post(
    "/downloadPdf",
    response_class=FileResponse,
    responses={
        200: {"description": "The PDF", "content": {"application/pdf": {}}},
        400: {"description": "Payment not verified", "model": ErrorResponse},
        404: {"description": "Post, author or file not found", "model": ErrorResponse},
    },
    summary="Download a PDF with a verified payment",
)
async def download_pdf(
    proof: PaymentProof,
    post_id: UUID = Query(..., alias="id", description="Post id"),
    db: AsyncSession = Depends(get_db_session),
) -> FileResponse:
    grant = await download_service.redeem(db=db, post_id=post_id, proof=proof)
    return FileResponse(
        path=str(grant.path),
        media_type="application/pdf",
        filename=grant.download_name,
        content_disposition_type="attachment",
    )


@router.post(
    "/withdraw",
    response_model=WithdrawResponse,
    responses={
        400: {"description": "Invalid request or insufficient balance", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
        409: {"description": "Another withdrawal is in progress", "model": ErrorResponse},
        502: {"description": "Payout failed at the gateway", "model": ErrorResponse},
    },
    summary="Withdraw the earned balance to a bank account",
)
async def withdraw(
    body: WithdrawRequest,
    db: AsyncSession = Depends(get_db_session),
) -> WithdrawResponse:
    logger.info(
        "Withdrawal requested: user=%s amount=%s account=****%s",
        body.user_id, body.amount, body.account_number[-4:],
    )
    return await payout_service.withdraw(db=db, request=body)
