# Models package init: importing every model registers it with Base.metadata
from notesfy.models.user import User
from notesfy.models.post import Chapter, Post, PostLike, Subject
from notesfy.models.payment import (
    DownloadReceipt,
    Payee,
    PayeeAccount,
    Withdrawal,
    WithdrawalStatus,
)

__all__ = [
    "User",
    "Post",
    "PostLike",
    "Subject",
    "Chapter",
    "DownloadReceipt",
    "Payee",
    "PayeeAccount",
    "Withdrawal",
    "WithdrawalStatus",
]
