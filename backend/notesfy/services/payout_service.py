"""
Notesfy Backend — Payout Service
==================================

What:  Pays an author's earned balance out to a bank account.
How:   A per-user compare-and-swap lock, a durable Withdrawal record
       committed after every step, and payee / bank account registrations
       stored locally so the gateway never sees them twice.
Who:   Called by POST /withdraw.

Orchestration Flow:
    ┌────────────┐   ┌──────────┐   ┌───────────┐   ┌──────────┐   ┌──────────┐
    │ Lock +     │──▶│ Register │──▶│ Register  │──▶│ Request  │──▶│ Debit +  │
    │ snapshot   │   │ payee    │   │ account   │   │ payout   │   │ unlock   │
    └────────────┘   └──────────┘   └───────────┘   └──────────┘   └──────────┘
      initiated      payee_registered account_registered payout_requested completed

    The lock and snapshot come from one statement:
        UPDATE users SET active_withdrawal_id = :w
        WHERE id = :u AND active_withdrawal_id IS NULL AND amount >= :requested
        RETURNING amount

    Concurrent withdrawals for one user: exactly one wins the UPDATE; the
    others get WithdrawalInProgressError.

Failure Recovery:
    A step the gateway rejects (4xx) or an open circuit breaker marks the
    withdrawal `failed` (with the step and the upstream diagnostic),
    releases the lock and leaves the balance as it was. Before the payout
    call, unexpected errors and cancellation do the same.

    Any other failure of the payout call (timeout, transport error, 5xx,
    unexpected error, cancellation while it was in flight) may still have
    been executed upstream. That withdrawal stays pending under the lock
    with the error recorded on it; the balance is not touched.

    A pending withdrawal is resumed by the next request for the same user,
    amount and destination, with or without an idempotency key. Resuming
    skips every step whose gateway id is already stored, and the payout
    call always carries the withdrawal id as its idempotency key, so the
    gateway never executes one withdrawal twice. A request with other
    details gets WithdrawalInProgressError until the pending one settles.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notesfy.config import settings
from notesfy.exceptions import (
    CircuitBreakerOpenError,
    GatewayError,
    InsufficientBalanceError,
    InternalError,
    NotFoundError,
    PayoutGatewayError,
    ValidationError,
    WithdrawalInProgressError,
)
from notesfy.models.payment import Payee, PayeeAccount, Withdrawal, WithdrawalStatus
from notesfy.models.user import User
from notesfy.schemas.payment import WithdrawRequest, WithdrawResponse
from notesfy.services.gateway_base import PaymentGateway
from notesfy.services.razorpay_gateway import razorpay_gateway

logger = logging.getLogger(__name__)

STEP_PAYEE = "payee"
STEP_ACCOUNT = "account"
STEP_PAYOUT = "payout"


def to_minor_units(amount: Decimal) -> int:
    """Major currency units to paise. Amounts carry at most two decimals."""
    return int((amount * 100).to_integral_value())


def _resume_status(withdrawal: Withdrawal) -> str:
    if withdrawal.payout_id:
        return WithdrawalStatus.PAYOUT_REQUESTED
    if withdrawal.fund_account_id:
        return WithdrawalStatus.ACCOUNT_REGISTERED
    if withdrawal.contact_id:
        return WithdrawalStatus.PAYEE_REGISTERED
    return WithdrawalStatus.INITIATED


class PayoutService:
    """
    Args:
        gateway: payment gateway used for contacts, fund accounts and payouts
                 (defaults to the shared Razorpay adapter)
    """

    def __init__(self, gateway: Optional[PaymentGateway] = None):
        self.gateway = gateway or razorpay_gateway

    # ── Entry Point ───────────────────────────────────────────────────────

    async def withdraw(self, db: AsyncSession, request: WithdrawRequest) -> WithdrawResponse:
        """
        Runs (or resumes) a withdrawal.

        Raises:
            NotFoundError:             unknown user
            InsufficientBalanceError:  requested amount exceeds the balance
            WithdrawalInProgressError: another withdrawal holds the lock
            ValidationError:           idempotency key reused with other details
            PayoutGatewayError:        a gateway step failed (balance untouched);
                                       `pending` when the payout outcome is unknown
            CircuitBreakerOpenError:   gateway calls are suspended
        """
        user = await db.get(User, request.user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(request.user_id))

        withdrawal: Optional[Withdrawal] = None
        if request.idempotency_key:
            withdrawal = await self._find_by_key(db, request)
            if withdrawal is not None and withdrawal.status == WithdrawalStatus.COMPLETED:
                logger.info("Withdrawal %s already completed; returning recorded result", withdrawal.id)
                return self._response(withdrawal)

        if request.amount > user.amount:
            raise InsufficientBalanceError(requested=request.amount, available=user.amount)

        if withdrawal is None:
            withdrawal = await self._find_pending(db, user, request)

        if withdrawal is None:
            withdrawal = await self._start(db, user, request)
        else:
            await self._resume(db, withdrawal)

        payout = await self._run_gateway_steps(db, user, withdrawal, request)
        await self._complete(db, withdrawal)
        return self._response(withdrawal, payout)

    # ── Lock & Record ─────────────────────────────────────────────────────

    async def _find_by_key(self, db: AsyncSession, request: WithdrawRequest) -> Optional[Withdrawal]:
        result = await db.execute(
            select(Withdrawal).where(Withdrawal.idempotency_key == request.idempotency_key)
        )
        withdrawal = result.scalar_one_or_none()
        if withdrawal is None:
            return None
        if (
            withdrawal.user_id != request.user_id
            or withdrawal.amount != request.amount
            or withdrawal.ifsc != request.ifsc_code
            or withdrawal.account_last4 != request.account_number[-4:]
        ):
            raise ValidationError(
                message="Idempotency key was already used for a different withdrawal",
                field="idempotencyKey",
            )
        return withdrawal

    async def _find_pending(
        self, db: AsyncSession, user: User, request: WithdrawRequest
    ) -> Optional[Withdrawal]:
        """
        Returns the withdrawal holding the user's lock when `request` asks for
        the same payout, so an interrupted attempt can be resumed without a
        client key. Any other holder is left to `_acquire_lock` to refuse.
        """
        holder_id = user.active_withdrawal_id
        if holder_id is None:
            return None

        pending = await db.get(Withdrawal, holder_id)
        if pending is None or pending.is_terminal:
            return None
        if request.idempotency_key and pending.idempotency_key not in (None, request.idempotency_key):
            return None
        if not await self._same_payout(db, pending, request):
            return None

        logger.info("Withdrawal %s is pending for user %s; resuming it", pending.id, user.id)
        return pending

    async def _same_payout(self, db: AsyncSession, withdrawal: Withdrawal, request: WithdrawRequest) -> bool:
        if (
            withdrawal.user_id != request.user_id
            or withdrawal.amount != request.amount
            or withdrawal.ifsc != request.ifsc_code
            or withdrawal.account_last4 != request.account_number[-4:]
        ):
            return False
        if not withdrawal.fund_account_id:
            return True
        # Only the last four digits are kept on the withdrawal
        account_number = await db.scalar(
            select(PayeeAccount.account_number).where(
                PayeeAccount.user_id == withdrawal.user_id,
                PayeeAccount.fund_account_id == withdrawal.fund_account_id,
            )
        )
        return account_number == request.account_number

    async def _acquire_lock(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        withdrawal_id: uuid.UUID,
        requested: Decimal,
        reentrant: bool = False,
    ) -> Decimal:
        """
        Takes the payout lock and returns the balance snapshot.

        `reentrant` also accepts a lock already held by `withdrawal_id`
        (resuming after a crash left it set).
        """
        # Why one UPDATE: lock check, balance check and snapshot read happen
        # under the same row lock, so two requests can never both pass
        lock_free = User.active_withdrawal_id.is_(None)
        if reentrant:
            lock_free = or_(lock_free, User.active_withdrawal_id == withdrawal_id)

        result = await db.execute(
            update(User)
            .where(User.id == user_id, lock_free, User.amount >= requested)
            .values(active_withdrawal_id=withdrawal_id)
            .returning(User.amount)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot is not None:
            return snapshot

        await db.rollback()
        current = await db.execute(
            select(User.amount, User.active_withdrawal_id).where(User.id == user_id)
        )
        amount, active = current.one()
        if active is not None and active != withdrawal_id:
            logger.warning("Withdrawal for user %s refused: %s holds the payout lock", user_id, active)
            raise WithdrawalInProgressError(context={"active_withdrawal_id": str(active)})
        raise InsufficientBalanceError(requested=requested, available=amount)

    async def _start(self, db: AsyncSession, user: User, request: WithdrawRequest) -> Withdrawal:
        user_id = user.id
        withdrawal_id = uuid.uuid4()
        snapshot = await self._acquire_lock(db, user_id, withdrawal_id, request.amount)

        withdrawal = Withdrawal(
            id=withdrawal_id,
            user_id=user_id,
            idempotency_key=request.idempotency_key,
            amount=request.amount,
            balance_snapshot=snapshot,
            ifsc=request.ifsc_code,
            account_last4=request.account_number[-4:],
            status=WithdrawalStatus.INITIATED,
        )
        db.add(withdrawal)
        try:
            await db.commit()
        except IntegrityError:
            # Same idempotency key inserted concurrently; the lock was not kept
            await db.rollback()
            raise WithdrawalInProgressError()

        logger.info(
            "Withdrawal %s initiated for user %s: amount=%s snapshot=%s",
            withdrawal_id, user_id, request.amount, snapshot,
        )
        return withdrawal

    async def _resume(self, db: AsyncSession, withdrawal: Withdrawal) -> None:
        """
        Claims `withdrawal` for this request and re-takes the payout lock.

        A withdrawal can be claimed when it failed, when it was held after
        an unknown payout outcome, or when nothing has touched it for
        `withdrawal_stale_after` seconds. The claim is one conditional
        UPDATE that also refreshes `updated_at`, so two requests resuming
        the same withdrawal cannot both win.
        """
        withdrawal_id = withdrawal.id
        user_id = withdrawal.user_id
        amount = withdrawal.amount
        was_failed = withdrawal.status == WithdrawalStatus.FAILED
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=settings.withdrawal_stale_after)

        claimed = await db.execute(
            update(Withdrawal)
            .where(
                Withdrawal.id == withdrawal_id,
                or_(
                    Withdrawal.status == WithdrawalStatus.FAILED,
                    Withdrawal.failed_step.is_not(None),
                    Withdrawal.updated_at < stale_before,
                ),
            )
            .values(
                status=_resume_status(withdrawal),
                failed_step=None,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            logger.warning("Withdrawal %s is still being processed; refusing to resume it", withdrawal_id)
            raise WithdrawalInProgressError(context={"active_withdrawal_id": str(withdrawal_id)})

        snapshot = await self._acquire_lock(db, user_id, withdrawal_id, amount, reentrant=True)
        # A pending withdrawal kept its lock; credits that arrived since then
        # stay out of its snapshot
        if was_failed:
            withdrawal.balance_snapshot = snapshot
        await db.commit()
        await db.refresh(withdrawal)
        logger.info("Withdrawal %s resumed at status=%s", withdrawal_id, withdrawal.status)

    async def _release(
        self,
        db: AsyncSession,
        withdrawal_id: uuid.UUID,
        user_id: uuid.UUID,
        step: str,
        error: BaseException,
    ) -> None:
        """Marks the withdrawal failed and frees the lock; the balance is not touched."""
        error_message = getattr(error, "upstream_error", None) or str(error) or type(error).__name__
        await db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .values(
                status=WithdrawalStatus.FAILED,
                failed_step=step,
                error_message=error_message,
            )
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(User)
            .where(User.id == user_id, User.active_withdrawal_id == withdrawal_id)
            .values(active_withdrawal_id=None)
        )
        await db.commit()
        logger.warning("Withdrawal %s failed at step=%s: %s", withdrawal_id, step, error_message)

    async def _hold(
        self,
        db: AsyncSession,
        withdrawal_id: uuid.UUID,
        step: str,
        error: BaseException,
    ) -> None:
        """Records the error but keeps the withdrawal pending and the lock held."""
        error_message = getattr(error, "upstream_error", None) or str(error) or type(error).__name__
        await db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .values(failed_step=step, error_message=error_message)
            .execution_options(synchronize_session="fetch")
        )
        await db.commit()
        logger.warning(
            "Withdrawal %s pending at step=%s, outcome unknown: %s", withdrawal_id, step, error_message
        )

    # ── Gateway Steps ─────────────────────────────────────────────────────

    async def _run_gateway_steps(
        self,
        db: AsyncSession,
        user: User,
        withdrawal: Withdrawal,
        request: WithdrawRequest,
    ) -> Dict[str, Any]:
        # Plain values; a rollback below would expire the ORM objects
        user_id = user.id
        username = user.username
        email = user.email
        withdrawal_id = withdrawal.id

        step = STEP_PAYEE
        try:
            if not withdrawal.contact_id:
                withdrawal.contact_id = await self._ensure_payee(db, user_id, username, email)
                withdrawal.status = WithdrawalStatus.PAYEE_REGISTERED
                await db.commit()

            step = STEP_ACCOUNT
            if not withdrawal.fund_account_id:
                withdrawal.fund_account_id = await self._ensure_account(
                    db, user_id, username, withdrawal.contact_id, request
                )
                withdrawal.status = WithdrawalStatus.ACCOUNT_REGISTERED
                await db.commit()

            step = STEP_PAYOUT
            if withdrawal.payout_id:
                return self._recorded_payout(withdrawal)

            payout = await self.gateway.create_payout(
                fund_account_id=withdrawal.fund_account_id,
                amount_minor=to_minor_units(withdrawal.amount),
                currency=settings.currency,
                mode=settings.payout_mode,
                idempotency_key=str(withdrawal_id),
                reference_id=str(withdrawal_id),
            )
            withdrawal.payout_id = payout.get("id")
            withdrawal.payout_status = payout.get("status")
            withdrawal.status = WithdrawalStatus.PAYOUT_REQUESTED
            await db.commit()
            return payout

        except GatewayError as e:
            await db.rollback()
            if step == STEP_PAYOUT and not e.is_rejection:
                # Why hold: the payout may have gone through upstream. Only a
                # retry with the same idempotency key can settle it safely.
                await self._hold(db, withdrawal_id, step, e)
                raise PayoutGatewayError(
                    message=(
                        f"Withdrawal could not be confirmed: {e.message} "
                        "Retry with the same details to resume it."
                    ),
                    step=step,
                    status_code=e.status_code,
                    upstream_error=e.upstream_error,
                    pending=True,
                    context={"withdrawal_id": str(withdrawal_id)},
                )
            await self._release(db, withdrawal_id, user_id, step, e)
            raise PayoutGatewayError(
                message=f"Withdrawal failed: {e.message}",
                step=step,
                status_code=e.status_code,
                upstream_error=e.upstream_error,
                context={"withdrawal_id": str(withdrawal_id)},
            )
        except CircuitBreakerOpenError as e:
            await db.rollback()
            await self._release(db, withdrawal_id, user_id, step, e)
            raise
        except Exception as e:
            await db.rollback()
            logger.error("Unexpected error in withdrawal %s: %s", withdrawal_id, str(e), exc_info=True)
            if step == STEP_PAYOUT:
                await self._hold(db, withdrawal_id, step, e)
            else:
                await self._release(db, withdrawal_id, user_id, step, e)
            raise InternalError(
                message="Withdrawal failed. Your balance has not been changed.",
                context={
                    "withdrawal_id": str(withdrawal_id),
                    "error_type": type(e).__name__,
                    "pending": step == STEP_PAYOUT,
                },
            )
        except BaseException as e:
            # Cancellation: client gone or worker shutting down
            await db.rollback()
            if step == STEP_PAYOUT:
                await self._hold(db, withdrawal_id, step, e)
            else:
                await self._release(db, withdrawal_id, user_id, step, e)
            raise

    async def _ensure_payee(self, db: AsyncSession, user_id: uuid.UUID, name: str, email: str) -> str:
        payee = await db.get(Payee, user_id)
        if payee is not None:
            return payee.contact_id

        contact = await self.gateway.create_contact(name=name, email=email, reference_id=str(user_id))
        db.add(Payee(user_id=user_id, contact_id=contact["id"]))
        logger.info("Registered payee for user %s: %s", user_id, contact["id"])
        return contact["id"]

    async def _ensure_account(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        name: str,
        contact_id: str,
        request: WithdrawRequest,
    ) -> str:
        result = await db.execute(
            select(PayeeAccount.fund_account_id).where(
                PayeeAccount.user_id == user_id,
                PayeeAccount.account_number == request.account_number,
                PayeeAccount.ifsc == request.ifsc_code,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        fund_account = await self.gateway.create_fund_account(
            contact_id=contact_id,
            name=name,
            ifsc=request.ifsc_code,
            account_number=request.account_number,
        )
        db.add(
            PayeeAccount(
                user_id=user_id,
                account_number=request.account_number,
                ifsc=request.ifsc_code,
                fund_account_id=fund_account["id"],
            )
        )
        logger.info(
            "Registered bank account ****%s for user %s: %s",
            request.account_number[-4:], user_id, fund_account["id"],
        )
        return fund_account["id"]

    # ── Completion ────────────────────────────────────────────────────────

    async def _complete(self, db: AsyncSession, withdrawal: Withdrawal) -> None:
        """Debits the snapshot and releases the lock in one statement."""
        withdrawal_id = withdrawal.id
        result = await db.execute(
            update(User)
            .where(User.id == withdrawal.user_id, User.active_withdrawal_id == withdrawal_id)
            .values(
                # Why the snapshot and not 0: downloads credited while the
                # payout was in flight are not part of it and must survive
                amount=User.amount - withdrawal.balance_snapshot,
                active_withdrawal_id=None,
            )
        )
        if result.rowcount != 1:
            # Someone else completed or released this withdrawal meanwhile
            await db.rollback()
            await db.refresh(withdrawal)
            if withdrawal.status == WithdrawalStatus.COMPLETED:
                return
            raise InternalError(
                message="Withdrawal state changed unexpectedly. Please contact support.",
                context={"withdrawal_id": str(withdrawal_id)},
            )

        withdrawal.status = WithdrawalStatus.COMPLETED
        await db.commit()
        logger.info(
            "Withdrawal %s completed: paid %s, debited %s",
            withdrawal_id, withdrawal.amount, withdrawal.balance_snapshot,
        )

    def _recorded_payout(self, withdrawal: Withdrawal) -> Dict[str, Any]:
        return {
            "id": withdrawal.payout_id,
            "status": withdrawal.payout_status,
            "amount": to_minor_units(withdrawal.amount),
            "currency": settings.currency,
        }

    def _response(self, withdrawal: Withdrawal, payout: Optional[Dict[str, Any]] = None) -> WithdrawResponse:
        return WithdrawResponse(
            withdrawal_id=withdrawal.id,
            status=withdrawal.status,
            payout_response=payout if payout is not None else self._recorded_payout(withdrawal),
        )


# ── Singleton Instance ────────────────────────────────────────────────────
payout_service = PayoutService()
