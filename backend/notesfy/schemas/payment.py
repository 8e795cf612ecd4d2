"""
Notesfy Backend — Payment Schemas
===================================

What:  Bodies for order creation, the payment proof sent with a download,
       and withdrawal requests/responses.

Payment proof field names follow the gateway's checkout callback
(`razorpay_order_id`, `razorpay_payment_id`, `razorpay_signature`) and are
therefore snake_case on the wire.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from notesfy.schemas.common import CamelModel


class OrderResponse(BaseModel):
    order: Dict[str, Any] = Field(description="Gateway order handle used to open checkout")


class PaymentProof(BaseModel):
    """
    Checkout result supplied by the client with POST /downloadPdf.

    Fields are optional at the schema level: a missing field is a failed
    payment verification, reported as such by the download service.
    """
    razorpay_order_id: Optional[str] = Field(default=None, max_length=64)
    razorpay_payment_id: Optional[str] = Field(default=None, max_length=64)
    razorpay_signature: Optional[str] = Field(default=None, max_length=128)


class WithdrawRequest(CamelModel):
    """
    Body of POST /withdraw.

    `idempotency_key` is optional; sending the same key again resumes the
    same withdrawal instead of starting a new one.
    """
    user_id: uuid.UUID
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    account_number: str = Field(pattern=r"^\d{9,18}$")
    ifsc_code: str = Field(pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$")
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=64)

    @field_validator("ifsc_code", mode="before")
    @classmethod
    def uppercase_ifsc(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


class WithdrawResponse(CamelModel):
    message: str = Field(default="Withdrawal successful")
    withdrawal_id: uuid.UUID
    status: str
    payout_response: Dict[str, Any] = Field(default_factory=dict)
