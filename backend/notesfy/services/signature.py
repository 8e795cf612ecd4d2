"""
Notesfy Backend — Checkout Signature Verification
===================================================

What:  Computes and verifies the HMAC-SHA256 signature the gateway attaches
       to a completed checkout.

Scheme:
    signature = hex(HMAC_SHA256(secret, f"{order_id}|{payment_id}"))

    The comparison uses hmac.compare_digest so the time taken does not
    depend on how many leading characters match.
"""

import hashlib
import hmac
import logging
from typing import Optional

from notesfy.exceptions import PaymentVerificationError

logger = logging.getLogger(__name__)


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Signature a holder of `secret` produces for this order/payment pair."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    secret: str,
) -> None:
    """
    Raises PaymentVerificationError unless `signature` matches.

    Missing fields fail verification the same way a wrong signature does.
    The supplied signature is never logged or echoed back.
    """
    if not order_id or not payment_id or not signature:
        raise PaymentVerificationError(
            message="Payment proof is incomplete",
            context={"order_id": order_id, "payment_id": payment_id},
        )
    if not secret:
        # Misconfiguration, not a client error
        raise RuntimeError("Payment signature secret is not configured")

    expected = compute_signature(order_id, payment_id, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        logger.warning("Payment signature mismatch for order=%s payment=%s", order_id, payment_id)
        raise PaymentVerificationError(
            context={"order_id": order_id, "payment_id": payment_id},
        )
