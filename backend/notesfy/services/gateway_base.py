"""
Notesfy Backend — Abstract Payment Gateway Interface
======================================================

What:  Contract for the external payment provider: orders for checkout and
       the three payout calls (contact, fund account, payout).
How:   RazorpayGateway implements it over HTTP; tests substitute fakes.
Who:   Called by the order route, the payout service and the health check.

Contract:
    - Amounts are integers in the currency's minor unit (paise for INR)
    - Every method returns the provider's JSON object as a dict
    - Provider and transport failures surface as GatewayError
    - An open circuit breaker surfaces as CircuitBreakerOpenError
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class PaymentGateway(ABC):
    """Abstract interface to the payment provider."""

    @abstractmethod
    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> Dict[str, Any]:
        """Creates a checkout order; the returned dict carries the order id."""
        ...

    @abstractmethod
    async def create_contact(
        self,
        name: str,
        email: str,
        reference_id: str,
    ) -> Dict[str, Any]:
        """Registers a payee contact. `reference_id` is our user id."""
        ...

    @abstractmethod
    async def create_fund_account(
        self,
        contact_id: str,
        name: str,
        ifsc: str,
        account_number: str,
    ) -> Dict[str, Any]:
        """Registers a bank account for a contact."""
        ...

    @abstractmethod
    async def create_payout(
        self,
        fund_account_id: str,
        amount_minor: int,
        currency: str,
        mode: str,
        idempotency_key: str,
        reference_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Requests a transfer to a fund account.

        `idempotency_key` is forwarded to the provider so that repeating the
        call for the same withdrawal never creates a second transfer.
        """
        ...

    @abstractmethod
    def status(self) -> str:
        """Cheap, local availability report for the health check."""
        ...
