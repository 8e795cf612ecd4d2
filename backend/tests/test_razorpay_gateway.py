"""
Notesfy Backend — Razorpay Gateway Unit Tests (Mocked Transport)
==================================================================

What:  Tests for RazorpayGateway and its CircuitBreaker.
How:   httpx.MockTransport stands in for the Razorpay API, so no network
       calls are made. Retry waits are set to zero.

What we test:
    ✅ Request shape (path, auth, JSON body, payout idempotency header)
    ✅ 5xx and transport errors are retried, then mapped to GatewayError
    ✅ 4xx replies fail immediately with the upstream description
    ✅ Circuit breaker opens after consecutive failures and blocks calls
    ❌ Real API calls (use integration tests for that)
"""

import base64
import json
import time

import httpx
import pytest

from notesfy.exceptions import CircuitBreakerOpenError, GatewayError
from notesfy.services.razorpay_gateway import CircuitBreaker, RazorpayGateway


def make_gateway(handler, **kwargs) -> RazorpayGateway:
    options = dict(
        key_id="rzp_test_key",
        key_secret="rzp_test_secret",
        base_url="https://api.razorpay.test/v1",
        timeout=5.0,
        max_attempts=3,
        min_wait=0,
        max_wait=0,
        jitter=0,
        payout_account="2323230000000000",
        transport=httpx.MockTransport(handler),
    )
    options.update(kwargs)
    return RazorpayGateway(**options)


class Recorder:
    """MockTransport handler replaying `responses` in order and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        cb.can_execute()

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"

    def test_half_open_after_recovery_timeout(self):
        """After the timeout one trial call is allowed; its failure reopens the breaker."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=1)
        cb.record_failure()
        cb.last_failure_time = time.time() - 2

        assert cb.can_execute() is True
        assert cb.state == "half_open"

        cb.record_failure()
        assert cb.state == "open"

    def test_success_after_half_open_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=1)
        cb.record_failure()
        cb.last_failure_time = time.time() - 2
        cb.can_execute()

        cb.record_success()
        assert cb.state == "closed"


class TestRazorpayGatewayRequests:
    """Shape of the calls sent to the gateway."""

    @pytest.mark.asyncio
    async def test_create_order(self):
        recorder = Recorder(httpx.Response(200, json={"id": "order_9", "amount": 200, "currency": "INR"}))
        gateway = make_gateway(recorder)

        order = await gateway.create_order(amount_minor=200, currency="INR", receipt="receipt_1")

        assert order["id"] == "order_9"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/orders"
        assert json.loads(request.content) == {"amount": 200, "currency": "INR", "receipt": "receipt_1"}
        expected_auth = base64.b64encode(b"rzp_test_key:rzp_test_secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"

    @pytest.mark.asyncio
    async def test_create_fund_account_sends_bank_details(self):
        recorder = Recorder(httpx.Response(200, json={"id": "fa_1"}))
        gateway = make_gateway(recorder)

        await gateway.create_fund_account(
            contact_id="cont_1", name="asha", ifsc="HDFC0001234", account_number="123456789012"
        )

        body = json.loads(recorder.requests[0].content)
        assert recorder.requests[0].url.path == "/v1/fund_accounts"
        assert body["contact_id"] == "cont_1"
        assert body["account_type"] == "bank_account"
        assert body["bank_account"] == {"name": "asha", "ifsc": "HDFC0001234", "account_number": "123456789012"}

    @pytest.mark.asyncio
    async def test_create_payout_carries_idempotency_key(self):
        recorder = Recorder(httpx.Response(200, json={"id": "pout_1", "status": "processing"}))
        gateway = make_gateway(recorder)

        payout = await gateway.create_payout(
            fund_account_id="fa_1",
            amount_minor=450,
            currency="INR",
            mode="IMPS",
            idempotency_key="w-123",
            reference_id="w-123",
        )

        assert payout["status"] == "processing"
        request = recorder.requests[0]
        assert request.url.path == "/v1/payouts"
        assert request.headers["X-Payout-Idempotency"] == "w-123"
        body = json.loads(request.content)
        assert body["account_number"] == "2323230000000000"
        assert body["amount"] == 450
        assert body["mode"] == "IMPS"
        assert body["reference_id"] == "w-123"

    def test_status(self):
        assert make_gateway(Recorder(httpx.Response(200))).status() == "available"
        assert make_gateway(Recorder(httpx.Response(200)), key_id="").status() == "unconfigured"


class TestRazorpayGatewayFailures:
    """Retry, error mapping and circuit breaker integration."""

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        recorder = Recorder(
            httpx.Response(503, json={"error": {"description": "busy"}}),
            httpx.Response(200, json={"id": "order_2"}),
        )
        gateway = make_gateway(recorder)

        order = await gateway.create_order(amount_minor=200, currency="INR", receipt="r")

        assert order["id"] == "order_2"
        assert len(recorder.requests) == 2
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        recorder = Recorder(httpx.Response(500, json={"error": {"description": "Internal failure"}}))
        gateway = make_gateway(recorder)

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_order(amount_minor=200, currency="INR", receipt="r")

        assert len(recorder.requests) == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.upstream_error == "Internal failure"
        assert gateway.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """A 4xx carries the upstream description and does not trip the breaker."""
        recorder = Recorder(
            httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Invalid IFSC Code"}})
        )
        gateway = make_gateway(recorder)

        with pytest.raises(GatewayError, match="Invalid IFSC Code") as exc_info:
            await gateway.create_fund_account(
                contact_id="cont_1", name="asha", ifsc="XXXX0000000", account_number="123456789012"
            )

        assert len(recorder.requests) == 1
        assert exc_info.value.status_code == 400
        assert exc_info.value.context["upstream_status"] == 400
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_timeout_mapped_to_gateway_error(self):
        recorder = Recorder(httpx.ReadTimeout("timed out"))
        gateway = make_gateway(recorder)

        with pytest.raises(GatewayError, match="timed out") as exc_info:
            await gateway.create_order(amount_minor=200, currency="INR", receipt="r")

        assert len(recorder.requests) == 3
        assert exc_info.value.context["reason"] == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_mapped_to_gateway_error(self):
        recorder = Recorder(httpx.ConnectError("connection refused"))
        gateway = make_gateway(recorder)

        with pytest.raises(GatewayError, match="unreachable"):
            await gateway.create_contact(name="asha", email="a@example.com", reference_id="u1")

    @pytest.mark.asyncio
    async def test_unreadable_body(self):
        recorder = Recorder(httpx.Response(200, content=b"<html>"))
        gateway = make_gateway(recorder)

        with pytest.raises(GatewayError, match="unreadable"):
            await gateway.create_order(amount_minor=200, currency="INR", receipt="r")

    @pytest.mark.asyncio
    async def test_circuit_opens_and_blocks_calls(self):
        recorder = Recorder(httpx.ConnectError("down"))
        gateway = make_gateway(recorder, max_attempts=1)
        gateway.circuit_breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        for _ in range(2):
            with pytest.raises(GatewayError):
                await gateway.create_order(amount_minor=200, currency="INR", receipt="r")
        assert gateway.status() == "circuit_open"

        with pytest.raises(CircuitBreakerOpenError):
            await gateway.create_order(amount_minor=200, currency="INR", receipt="r")
        assert len(recorder.requests) == 2
