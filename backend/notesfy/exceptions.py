"""
Notesfy Backend — Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for each error category.
How:   Each exception carries a user-facing message and an optional context
       dict. Global exception handlers (registered in main.py) map them to
       HTTP status codes and a structured JSON body.
Who:   Raised by services; caught by the handlers in main.py.

Exception Hierarchy:
    NotesfyError (base)                → 500
    ├── ValidationError                → 400 Bad Request
    │   ├── PaymentVerificationError   → 400 (signature mismatch / reused proof)
    │   └── InsufficientBalanceError   → 400
    ├── AuthError                      → 401 Unauthorized
    ├── ForbiddenError                 → 403 Forbidden
    ├── NotFoundError                  → 404 Not Found
    ├── WithdrawalInProgressError      → 409 Conflict
    ├── GatewayError                   → 502 Bad Gateway
    │   └── PayoutGatewayError         → 502
    ├── CircuitBreakerOpenError        → 503 Service Unavailable
    ├── FileStorageError               → 500
    ├── DatabaseError                  → 500
    └── InternalError                  → 500

Context vs message:
    `message` is safe to return to clients. `context` is logged and, for
    client-correctable errors only, returned as `details`. Gateway
    diagnostics placed in context must never include secrets, signatures or
    full account numbers.
"""

from typing import Any, Dict, Optional


class NotesfyError(Exception):
    """
    Base exception for all Notesfy application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NotesfyError):
    """
    Raised when client input fails validation.

    HTTP: 400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "File type '.docx' is not supported. Allowed types: .pdf",
            "details": {"field": "pdf-file", "allowed": [".pdf"]}
        }
    """

    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class PaymentVerificationError(ValidationError):
    """
    The payment proof did not verify.

    Raised when the recomputed HMAC does not match the supplied signature,
    when proof fields are missing, or when a proof already redeemed for one
    post is presented for another. The supplied signature is never echoed.
    """

    error_code = "payment_verification_failed"

    def __init__(
        self,
        message: str = "Invalid payment signature",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InsufficientBalanceError(ValidationError):
    """Requested withdrawal exceeds the user's current balance. No side effect."""

    error_code = "insufficient_balance"

    def __init__(
        self,
        requested: Any = None,
        available: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if requested is not None:
            ctx["requested"] = str(requested)
        if available is not None:
            ctx["available"] = str(available)
        super().__init__(message="Insufficient balance", context=ctx)


class AuthError(NotesfyError):
    """
    Raised when credentials do not match.

    HTTP: 401 Unauthorized. The message does not reveal whether the
    username or the password was wrong.
    """

    def __init__(
        self,
        message: str = "Invalid username or password",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(NotesfyError):
    """Raised when a user acts on a resource they do not own (e.g. deleting another user's post)."""

    def __init__(
        self,
        message: str = "You are not allowed to modify this resource",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(NotesfyError):
    """
    Raised when a requested resource does not exist.

    HTTP: 404 Not Found

    SQLAlchemy returns None for missing rows; services convert that None
    into NotFoundError so routes never deal with status codes.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class WithdrawalInProgressError(NotesfyError):
    """
    Another withdrawal for the same user holds the payout lock.

    HTTP: 409 Conflict. The caller may retry once the in-flight withdrawal
    has completed or failed, or resume a pending one by sending the same
    amount and destination again.
    """

    def __init__(
        self,
        message: str = "Another withdrawal is already in progress for this user",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class GatewayError(NotesfyError):
    """
    The payment gateway failed or could not be reached.

    HTTP: 502 Bad Gateway. Covers timeouts, transport errors, 5xx replies
    and unexpected 4xx replies. This is a dependency failure, never a
    business rejection.

    Attributes:
        status_code: Upstream HTTP status, if a response was received
        upstream_error: Upstream error description (Razorpay error.description)
    """

    def __init__(
        self,
        message: str = "Payment gateway request failed",
        status_code: Optional[int] = None,
        upstream_error: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["upstream_status"] = status_code
        if upstream_error:
            ctx["upstream_error"] = upstream_error
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.upstream_error = upstream_error

    @property
    def is_rejection(self) -> bool:
        """True when the gateway answered with a 4xx, i.e. it did not act on the call."""
        return self.status_code is not None and 400 <= self.status_code < 500


class PayoutGatewayError(GatewayError):
    """
    A gateway step of the payout flow failed.

    The user's balance is left untouched. A rejected step marks the
    withdrawal failed at `step` (payee, account or payout). A payout whose
    outcome is unknown (timeout, transport error, 5xx) leaves the withdrawal
    `pending` under the payout lock; retrying with the same details resumes it.
    """

    def __init__(
        self,
        message: str = "Withdrawal failed",
        step: Optional[str] = None,
        status_code: Optional[int] = None,
        upstream_error: Optional[str] = None,
        pending: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if step:
            ctx["step"] = step
        if pending:
            ctx["pending"] = True
        super().__init__(
            message=message,
            status_code=status_code,
            upstream_error=upstream_error,
            context=ctx,
        )
        self.step = step
        self.pending = pending


class CircuitBreakerOpenError(NotesfyError):
    """
    Raised when the gateway circuit breaker is OPEN.

    HTTP: 503 Service Unavailable

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Payment service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class FileStorageError(NotesfyError):
    """
    Raised when file system operations fail (disk full, permission denied).

    HTTP: 500. File system paths stay in context and are never returned.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(NotesfyError):
    """
    Raised when database operations fail unexpectedly.

    HTTP: 500. The client always gets a generic message; details are logged.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InternalError(NotesfyError):
    """Unexpected failure inside the application (HTTP 500)."""

    def __init__(
        self,
        message: str = "An unexpected error occurred. Please try again or contact support.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
