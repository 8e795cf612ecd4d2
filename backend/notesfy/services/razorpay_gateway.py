"""
Notesfy Backend — Razorpay Gateway Adapter
============================================

What:  PaymentGateway implementation over the Razorpay REST API
       (orders, and the RazorpayX contacts / fund_accounts / payouts calls).
How:   httpx.AsyncClient with HTTP basic auth (key id, key secret) and a
       per-call timeout, wrapped in tenacity retries and a circuit breaker.
Who:   Singleton used by the payment routes, the payout service and /health.

Failure classification:
    transport error / timeout  → retried, then GatewayError      (5xx to client)
    upstream 5xx               → retried, then GatewayError      (5xx to client)
    upstream 4xx               → GatewayError immediately with the upstream
                                 description; not retried and not counted
                                 against the circuit breaker
    circuit open               → CircuitBreakerOpenError         (503)

Only transport errors and 5xx replies count as circuit breaker failures;
a 4xx reply proves the gateway is up.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from notesfy.config import settings
from notesfy.exceptions import CircuitBreakerOpenError, GatewayError
from notesfy.services.gateway_base import PaymentGateway

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding calls to the gateway.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    State lives in the process; each uvicorn worker has its own breaker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if a call may proceed.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Gateway circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=max(remaining, 1))

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Gateway circuit breaker transitioning to CLOSED (gateway recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Gateway circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Gateway circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


class _UpstreamUnavailable(Exception):
    """Internal: a 5xx reply, retried like a transport error."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _upstream_description(response: httpx.Response) -> str:
    """Extracts Razorpay's `error.description`, falling back to the status line."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return str(error["description"])
    return f"HTTP {response.status_code}"


# ══════════════════════════════════════════════════════════════════════════
# Razorpay Gateway
# ══════════════════════════════════════════════════════════════════════════

class RazorpayGateway(PaymentGateway):
    """
    Razorpay REST client.

    Args (all default to settings):
        key_id / key_secret: API credentials
        base_url:            API root, e.g. https://api.razorpay.com/v1
        timeout:             seconds per call (connect + read)
        max_attempts:        total tries for transient failures
        transport:           custom httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
        jitter: float = 1.0,
        payout_account: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.min_wait = settings.retry_min_wait if min_wait is None else min_wait
        self.max_wait = settings.retry_max_wait if max_wait is None else max_wait
        self.jitter = jitter
        self.payout_account = payout_account if payout_account is not None else settings.razorpay_payout_account
        self._transport = transport

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "RazorpayGateway initialized with base_url=%s, timeout=%.1fs, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            self.base_url,
            self.timeout,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> Dict[str, Any]:
        return await self._request(
            "create_order",
            "/orders",
            {"amount": amount_minor, "currency": currency, "receipt": receipt},
        )

    async def create_contact(self, name: str, email: str, reference_id: str) -> Dict[str, Any]:
        return await self._request(
            "create_contact",
            "/contacts",
            {
                "name": name,
                "email": email,
                "type": "customer",
                "reference_id": reference_id,
            },
        )

    async def create_fund_account(
        self,
        contact_id: str,
        name: str,
        ifsc: str,
        account_number: str,
    ) -> Dict[str, Any]:
        return await self._request(
            "create_fund_account",
            "/fund_accounts",
            {
                "contact_id": contact_id,
                "account_type": "bank_account",
                "bank_account": {
                    "name": name,
                    "ifsc": ifsc,
                    "account_number": account_number,
                },
            },
        )

    async def create_payout(
        self,
        fund_account_id: str,
        amount_minor: int,
        currency: str,
        mode: str,
        idempotency_key: str,
        reference_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "account_number": self.payout_account,
            "fund_account_id": fund_account_id,
            "amount": amount_minor,
            "currency": currency,
            "mode": mode,
            "purpose": "payout",
            "queue_if_low_balance": True,
        }
        if reference_id:
            payload["reference_id"] = reference_id
        return await self._request(
            "create_payout",
            "/payouts",
            payload,
            headers={"X-Payout-Idempotency": idempotency_key},
        )

    def status(self) -> str:
        if not self.key_id or not self.key_secret:
            return "unconfigured"
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    # ── Transport ─────────────────────────────────────────────────────────

    async def _request(
        self,
        operation: str,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POSTs `payload` to `path` with retries, circuit breaker and error mapping.

        Raises:
            CircuitBreakerOpenError: breaker is open
            GatewayError: timeout, transport failure, 5xx after retries, or any 4xx
        """
        call_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, _UpstreamUnavailable)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.min_wait,
                max=self.max_wait,
                jitter=self.jitter,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        start_time = time.time()
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(path, payload, headers)
                    if response.status_code >= 500:
                        raise _UpstreamUnavailable(response)
        except httpx.TimeoutException as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gateway %s timed out after %d attempts: %s", call_id, operation, self.max_attempts, e)
            raise GatewayError(
                message="Payment gateway timed out. Please try again later.",
                context={"operation": operation, "call_id": call_id, "reason": "timeout"},
            )
        except httpx.TransportError as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gateway %s unreachable: %s", call_id, operation, e)
            raise GatewayError(
                message="Payment gateway is unreachable. Please try again later.",
                context={"operation": operation, "call_id": call_id, "reason": type(e).__name__},
            )
        except _UpstreamUnavailable as e:
            self.circuit_breaker.record_failure()
            description = _upstream_description(e.response)
            logger.error("[%s] Gateway %s failed with HTTP %d: %s", call_id, operation, e.response.status_code, description)
            raise GatewayError(
                message="Payment gateway is unavailable. Please try again later.",
                status_code=e.response.status_code,
                upstream_error=description,
                context={"operation": operation, "call_id": call_id},
            )

        duration_ms = (time.time() - start_time) * 1000

        if response.status_code >= 400:
            # The gateway answered, so it is up; the request itself was refused
            self.circuit_breaker.record_success()
            description = _upstream_description(response)
            logger.warning(
                "[%s] Gateway %s rejected with HTTP %d in %.0fms: %s",
                call_id, operation, response.status_code, duration_ms, description,
            )
            raise GatewayError(
                message=f"Payment gateway rejected the request: {description}",
                status_code=response.status_code,
                upstream_error=description,
                context={"operation": operation, "call_id": call_id},
            )

        self.circuit_breaker.record_success()
        try:
            body = response.json()
        except ValueError:
            raise GatewayError(
                message="Payment gateway returned an unreadable response.",
                status_code=response.status_code,
                context={"operation": operation, "call_id": call_id},
            )

        logger.info(
            "[%s] Gateway %s completed in %.0fms (id=%s)",
            call_id, operation, duration_ms, body.get("id") if isinstance(body, dict) else None,
        )
        return body

    async def _send(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]],
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        ) as client:
            return await client.post(path, json=payload, headers=headers)


# ── Singleton Instance ────────────────────────────────────────────────────
# Shared so every request sees the same circuit breaker state
razorpay_gateway = RazorpayGateway()
