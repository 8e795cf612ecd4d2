"""
Notesfy Backend — Payment SQLAlchemy Models
=============================================

What:  Local records for the two money flows.

    download_receipts  one row per redeemed payment proof. The unique
                       payment_id makes the author credit exactly-once.
    payees             gateway contact registered for a user (one per user).
    payee_accounts     gateway fund account per (user, account, IFSC).
    withdrawals        durable progress record of one withdrawal attempt.

Withdrawal state machine:
    initiated → payee_registered → account_registered → payout_requested → completed
         └──────────────┴──────────────────┴──────────────────┴──────────→ failed

    A failed attempt keeps the ids obtained so far; resuming it with the
    same idempotency key skips every step that already succeeded. An
    attempt whose payout outcome is unknown stays at account_registered
    with `failed_step` / `error_message` set and the user's lock held,
    until a request with the same details resumes it.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from notesfy.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WithdrawalStatus:
    INITIATED = "initiated"
    PAYEE_REGISTERED = "payee_registered"
    ACCOUNT_REGISTERED = "account_registered"
    PAYOUT_REQUESTED = "payout_requested"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})


class DownloadReceipt(Base):
    """A payment proof that has been verified and redeemed for a post."""

    __tablename__ = "download_receipts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    post_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("posts.id", ondelete="SET NULL"), nullable=True
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    credited_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class Payee(Base):
    """Gateway contact for a user. Keyed by user id so it is never registered twice."""

    __tablename__ = "payees"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    contact_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class PayeeAccount(Base):
    """Gateway fund account (bank account) registered for a payee."""

    __tablename__ = "payee_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payees.user_id", ondelete="CASCADE"), nullable=False
    )
    account_number: Mapped[str] = mapped_column(String(34), nullable=False)
    ifsc: Mapped[str] = mapped_column(String(11), nullable=False)
    fund_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "account_number", "ifsc", name="uq_payee_accounts_destination"),
    )


class Withdrawal(Base):
    """One withdrawal attempt and how far it got."""

    __tablename__ = "withdrawals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Amount requested for payout"
    )
    balance_snapshot: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Balance read atomically when the payout lock was taken",
    )

    ifsc: Mapped[str] = mapped_column(String(11), nullable=False)
    account_last4: Mapped[str] = mapped_column(String(4), nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=WithdrawalStatus.INITIATED
    )
    failed_step: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    contact_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fund_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_withdrawals_user_id", "user_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in WithdrawalStatus.TERMINAL

    def __repr__(self) -> str:
        return f"<Withdrawal(id={self.id}, user_id={self.user_id}, status='{self.status}')>"
