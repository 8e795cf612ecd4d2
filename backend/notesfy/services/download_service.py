"""
Notesfy Backend — Paid Download Service
=========================================

What:  Opens checkout orders, and turns a verified payment proof into a PDF
       download that credits the post's author.
Who:   Called by POST /create-order and POST /downloadPdf; the route
       streams the returned file.

Orchestration Flow:
    ┌────────────┐   ┌────────┐   ┌────────┐   ┌──────────┐   ┌─────────────────┐
    │ Verify     │──▶│ Load   │──▶│ Load   │──▶│ Resolve  │──▶│ Receipt + credit│
    │ signature  │   │ post   │   │ author │   │ PDF file │   │ (one commit)    │
    └────────────┘   └────────┘   └────────┘   └──────────┘   └─────────────────┘

    Every check runs before the ledger is touched, so any failure leaves
    it unchanged. The credit is committed before the route starts
    streaming; a client that disconnects mid-stream is not refunded.

Exactly-once credit:
    The receipt row (unique payment_id) and the ledger UPDATE share one
    transaction. A proof already redeemed for the same post re-serves the
    file without crediting again; one redeemed for a different post is
    rejected.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.config import settings
from notesfy.exceptions import NotFoundError, PaymentVerificationError
from notesfy.models.payment import DownloadReceipt
from notesfy.models.post import Post
from notesfy.models.user import User
from notesfy.schemas.payment import PaymentProof
from notesfy.services.file_service import FileService, file_service
from notesfy.services.gateway_base import PaymentGateway
from notesfy.services.razorpay_gateway import razorpay_gateway
from notesfy.services.signature import verify_payment_signature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadGrant:
    """What the route needs to stream an entitled download."""

    path: Path
    download_name: str
    credited: bool


class DownloadService:
    """
    Args:
        files:  storage to resolve PDFs from (defaults to the shared FileService)
        reward: amount credited to the author per download
    """

    def __init__(
        self,
        files: Optional[FileService] = None,
        gateway: Optional[PaymentGateway] = None,
        reward: Optional[Decimal] = None,
    ):
        self.files = files or file_service
        self.gateway = gateway or razorpay_gateway
        self.reward = reward if reward is not None else settings.download_reward

    async def create_order(self) -> Dict[str, Any]:
        """
        Opens a checkout order for one download at the configured price.

        No local state is written; the order id comes back with the payment
        proof and is covered by its signature.
        """
        receipt = f"receipt_{int(time.time() * 1000)}"
        order = await self.gateway.create_order(
            amount_minor=settings.download_price_minor,
            currency=settings.currency,
            receipt=receipt,
        )
        logger.info("Checkout order %s created (%s)", order.get("id"), receipt)
        return order

    async def _credit_author(
        self,
        db: AsyncSession,
        proof: PaymentProof,
        post_id: uuid.UUID,
        author_id: uuid.UUID,
    ) -> bool:
        """
        Records the receipt and credits the author in one transaction.

        Returns False when this proof was already redeemed for this post.
        """
        payment_id = proof.razorpay_payment_id
        try:
            db.add(
                DownloadReceipt(
                    payment_id=payment_id,
                    order_id=proof.razorpay_order_id,
                    post_id=post_id,
                    author_id=author_id,
                    credited_amount=self.reward,
                )
            )
            await db.flush()
            await db.execute(
                update(User)
                .where(User.id == author_id)
                .values(
                    downloads=User.downloads + 1,
                    amount=User.amount + self.reward,
                )
            )
            await db.commit()
            return True
        except IntegrityError:
            await db.rollback()

        # Why re-select: the unique payment_id is what makes the credit
        # exactly-once; a conflict means another request already redeemed it
        result = await db.execute(
            select(DownloadReceipt.post_id).where(DownloadReceipt.payment_id == payment_id)
        )
        receipt = result.first()
        if receipt is None:
            # No receipt, so the conflict was the post reference: deleted meanwhile
            logger.warning("Post %s disappeared before payment %s was recorded", post_id, payment_id)
            raise NotFoundError(resource="post", resource_id=str(post_id))

        redeemed_for = receipt.post_id
        if redeemed_for != post_id:
            logger.warning(
                "Payment %s was already redeemed for another post; refusing post %s",
                payment_id,
                post_id,
            )
            raise PaymentVerificationError(
                message="This payment has already been used for a different download",
                context={"payment_id": payment_id},
            )
        logger.info("Payment %s replayed for post %s; serving without credit", payment_id, post_id)
        return False

    async def redeem(
        self,
        db: AsyncSession,
        post_id: uuid.UUID,
        proof: PaymentProof,
    ) -> DownloadGrant:
        """
        Verifies the payment and credits the author of `post_id`.

        Raises:
            PaymentVerificationError: bad, incomplete or reused proof
            NotFoundError:            post, author or stored file missing
        """
        # ── Step 1: Entitlement ───────────────────────────────────────────
        verify_payment_signature(
            proof.razorpay_order_id,
            proof.razorpay_payment_id,
            proof.razorpay_signature,
            settings.signature_secret,
        )

        # ── Step 2-4: Post, author, file ──────────────────────────────────
        post = await db.get(Post, post_id)
        if post is None:
            raise NotFoundError(resource="post", resource_id=str(post_id))

        author = await db.get(User, post.author_id)
        if author is None:
            raise NotFoundError(resource="user", resource_id=str(post.author_id))

        path = self.files.resolve(post.filename, resource="file")
        # A rollback in the credit step expires loaded rows
        author_id = post.author_id
        download_name = f"{post.chapter}.pdf"

        # ── Step 5: Receipt + ledger credit, committed before streaming ───
        credited = await self._credit_author(db, proof, post_id, author_id)
        if credited:
            logger.info(
                "Download of post %s paid by %s: credited %s to author %s",
                post_id,
                proof.razorpay_payment_id,
                self.reward,
                author_id,
            )

        return DownloadGrant(path=path, download_name=download_name, credited=credited)


# ── Singleton Instance ────────────────────────────────────────────────────
download_service = DownloadService()
