"""
Notesfy Backend — User SQLAlchemy Model
=========================================

What:  ORM model for the `users` table: identity, profile image and the
       author ledger (`downloads` counter and `amount` balance).
Who:   Used by the account, catalog, download and payout services.

Ledger columns:
    - downloads: incremented by exactly 1 per redeemed payment proof
    - amount:    credited by the download reward, debited only when a
                 withdrawal completes; a CHECK constraint keeps it >= 0
    - active_withdrawal_id: per-user payout lock. Set by a compare-and-swap
      UPDATE when a withdrawal starts, cleared when it completes or fails.

    Both ledger columns are only ever changed with single SQL statements
    (`amount = amount + :x`), never by read-modify-write in Python.

The user's post list is not stored on the row: it is every post whose
`author_id` references the user, so deleting a post row also removes it
from the list.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from notesfy.config import settings
from notesfy.database import Base


class User(Base):
    """A registered user; every user can both upload (author) and download (buyer)."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    username: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # bcrypt hash; the plain password is never stored or logged
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # URL path served by GET /uploads/{path}
    profile_image: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        default=lambda: settings.default_profile_image,
    )

    # ── Ledger ────────────────────────────────────────────────────────────
    downloads: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Number of paid downloads of this user's posts",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default=text("0"),
        comment="Withdrawable balance in major currency units",
    )
    active_withdrawal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        default=None,
        comment="Withdrawal currently holding the payout lock",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_users_amount_non_negative"),
        CheckConstraint("downloads >= 0", name="ck_users_downloads_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', amount={self.amount})>"
