"""
Payment session - one M-Pesa push-payment attempt from initiation to resolution.

States: idle -> initiating -> processing -> {completed | failed | cancelled | expired}.
Only `retry()` leaves a terminal state, and it always lands in idle.

While processing, two timers race into the same state:
- the poll timer asks the backend for the payment status every few seconds
- the countdown timer burns down the client-side budget once per tick

Every initiate/retry/cancel/close bumps a generation token. Timer callbacks and
response handlers capture the token when they are scheduled and drop their
result if it no longer matches, so nothing from an abandoned attempt can touch
the current one.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from src.checkout.timers import RecurringTimer, TimerFactory, asyncio_timer_factory
from src.integrations.contracts.errors import (
    CheckoutError,
    InvalidTransition,
    PaymentRejected,
    PaymentTerminalFailure,
)
from src.integrations.contracts.interfaces import (
    Application,
    PaymentResult,
    PaymentsBackend,
    PaymentStatusReport,
    PaymentTicket,
    RemotePaymentStatus,
    SessionState,
)
from src.integrations.contracts.payments import (
    DEFAULT_PHONE_PREFIXES,
    build_initiation,
    is_terminal_state,
    normalize_phone_number,
    session_state_for,
    validate_initiation,
)
from src.utils.checkout_config import PaymentTimersConfig

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Payment session expired. Please try again."
CANCELLED_REASON = "Payment cancelled by user."
CLOSED_REASON = "Payment session closed."
DEFAULT_FAILURE_REASON = "Payment failed"
INITIATION_ERROR = "Failed to initiate payment. Please try again."

CompletionHandler = Callable[[PaymentResult], Awaitable[Any]]


class PaymentSession:
    def __init__(
        self,
        payments: PaymentsBackend,
        *,
        timers: Optional[PaymentTimersConfig] = None,
        phone_prefixes: Iterable[str] = DEFAULT_PHONE_PREFIXES,
        on_completed: Optional[CompletionHandler] = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._payments = payments
        self._timers_config = timers or PaymentTimersConfig()
        self._prefixes = tuple(phone_prefixes)
        self._on_completed = on_completed
        self._timer_factory = timer_factory or asyncio_timer_factory

        self._token = 0
        self._poll_timer: Optional[RecurringTimer] = None
        self._countdown_timer: Optional[RecurringTimer] = None
        self._resolution: Optional[asyncio.Future] = None
        self._signal_tasks: Set[asyncio.Task] = set()
        self.closed = False

        self.state = SessionState.IDLE
        self.error_message: Optional[str] = None
        self._clear_fields()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def token(self) -> int:
        return self._token

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)

    @property
    def timers_active(self) -> bool:
        return any(t is not None and t.active for t in (self._poll_timer, self._countdown_timer))

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "payment_id": self.payment_id,
            "payment_reference": self.payment_reference,
            "phone_number": self.phone_number,
            "amount": self.amount,
            "receipt_number": self.receipt_number,
            "transaction_date": self.transaction_date,
            "failure_reason": self.failure_reason,
            "error_message": self.error_message,
            "remaining_seconds": self.remaining_seconds,
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initiate(self, application: Application, phone_number: str) -> PaymentTicket:
        if self.closed:
            raise InvalidTransition("Payment session has been closed.")
        if self.state is not SessionState.IDLE:
            raise InvalidTransition(f"Cannot initiate a payment while the session is {self.state.value}.")

        errors = validate_initiation(application, phone_number, self._prefixes)
        if errors:
            self.error_message = errors[0]
            raise PaymentRejected(errors[0], payload={"errors": errors})

        self._token += 1
        token = self._token
        self.state = SessionState.INITIATING
        self.error_message = None
        request = build_initiation(application, phone_number)
        self.application_id = application.application_id
        self.phone_number = request.phone_number
        self.amount = request.amount

        try:
            ticket = await self._payments.initiate_payment(request)
        except CheckoutError as exc:
            if token != self._token:
                logger.info("Initiation error for abandoned attempt discarded: %s", exc)
                raise self._abandoned_failure() from exc
            self.state = SessionState.IDLE
            self.error_message = exc.message if isinstance(exc, PaymentRejected) else INITIATION_ERROR
            logger.warning("Payment initiation failed for application %s: %s", self.application_id, exc)
            raise

        if token != self._token:
            logger.info("Payment %s initiated after the session was abandoned; ignoring", ticket.payment_id)
            raise self._abandoned_failure()

        self.payment_id = ticket.payment_id
        self.payment_reference = ticket.payment_reference
        self.phone_number = normalize_phone_number(ticket.phone_number) or self.phone_number
        self.amount = ticket.amount
        self.remaining_seconds = self._timers_config.countdown_seconds
        self._resolution = asyncio.get_running_loop().create_future()
        self.state = SessionState.PROCESSING

        self._poll_timer = self._timer_factory(
            self._timers_config.poll_interval_seconds,
            functools.partial(self._poll, token),
            "payment-poll",
        )
        self._countdown_timer = self._timer_factory(
            self._timers_config.tick_seconds,
            functools.partial(self._tick, token),
            "payment-countdown",
        )
        self._poll_timer.start()
        self._countdown_timer.start()

        logger.info(
            "Payment %s (%s) processing for application %s, %ss to confirm",
            self.payment_id, self.payment_reference, self.application_id, self.remaining_seconds,
        )
        return ticket

    def retry(self) -> None:
        """Reset a finished attempt so `initiate` can be called again."""
        if not self.is_terminal:
            raise InvalidTransition(f"Retry is only possible after the payment ends (state: {self.state.value}).")
        self._token += 1
        self._stop_timers()
        self._clear_fields()
        self._resolution = None
        self.error_message = None
        self.state = SessionState.IDLE
        logger.info("Payment session reset for retry")

    def cancel(self, reason: str = CANCELLED_REASON) -> SessionState:
        """User abandoned the payment step. Late responses from this attempt are discarded."""
        self._abandon(reason)
        return self.state

    def close(self) -> None:
        """Hosting context torn down; stop everything for good."""
        self._abandon(CLOSED_REASON)
        self.closed = True

    async def wait(self) -> PaymentResult:
        """Wait for the current attempt to resolve; raise PaymentTerminalFailure unless it completed."""
        if self._resolution is None:
            raise InvalidTransition("No payment attempt in progress.")
        state, outcome = await asyncio.shield(self._resolution)
        if state is SessionState.COMPLETED:
            return outcome
        raise PaymentTerminalFailure(state.value, outcome)

    async def join(self) -> None:
        """Wait for completion handlers that are still running."""
        if self._signal_tasks:
            await asyncio.gather(*list(self._signal_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    def _is_live(self, token: int) -> bool:
        return token == self._token and self.state is SessionState.PROCESSING

    async def _poll(self, token: int) -> None:
        if not self._is_live(token):
            return
        payment_id = self.payment_id
        try:
            report = await self._payments.get_payment_status(payment_id)
        except CheckoutError as exc:
            # A missed poll is not fatal; the next tick tries again.
            logger.warning("Status check failed for payment %s: %s", payment_id, exc)
            return

        if not self._is_live(token):
            logger.info("Discarding stale status %s for payment %s", report.status.value, payment_id)
            return
        await self._apply_status(report)

    async def _tick(self, token: int) -> None:
        if not self._is_live(token):
            return
        self.remaining_seconds = max(0, self.remaining_seconds - 1)
        if self.remaining_seconds == 0:
            logger.info("Payment %s expired before confirmation", self.payment_id)
            self._finish(SessionState.EXPIRED, EXPIRED_REASON)

    async def _apply_status(self, report: PaymentStatusReport) -> None:
        new_state = session_state_for(report.status)
        self.last_remote_status = report.status
        if new_state is SessionState.PROCESSING:
            return

        if new_state is not SessionState.COMPLETED:
            self._finish(new_state, report.failure_reason or DEFAULT_FAILURE_REASON)
            return

        self.receipt_number = report.receipt_number
        self.transaction_date = report.transaction_date
        result = PaymentResult(
            payment_id=self.payment_id,
            payment_reference=report.payment_reference or self.payment_reference,
            amount=report.amount or self.amount,
            phone_number=normalize_phone_number(report.phone_number or "") or self.phone_number,
            receipt_number=report.receipt_number,
            transaction_date=report.transaction_date,
        )
        self._finish(SessionState.COMPLETED, result=result)
        await self._emit_completed(result)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _finish(
        self,
        state: SessionState,
        reason: Optional[str] = None,
        *,
        result: Optional[PaymentResult] = None,
    ) -> None:
        self._stop_timers()
        self.state = state
        if state is SessionState.COMPLETED:
            self.failure_reason = None
            self.error_message = None
            outcome: Any = result
        else:
            self.failure_reason = reason
            self.error_message = reason
            outcome = reason
        if self._resolution is not None and not self._resolution.done():
            self._resolution.set_result((state, outcome))
        logger.info("Payment %s → %s%s", self.payment_id, state.value, f" ({reason})" if reason else "")

    def _abandon(self, reason: str) -> None:
        self._token += 1
        self._stop_timers()
        if self.state in (SessionState.INITIATING, SessionState.PROCESSING):
            self._finish(SessionState.CANCELLED, reason)

    def _abandoned_failure(self) -> PaymentTerminalFailure:
        return PaymentTerminalFailure(self.state.value, self.failure_reason or CANCELLED_REASON)

    async def _emit_completed(self, result: PaymentResult) -> None:
        if self._on_completed is None:
            return
        # Shielded so cancelling the poll timer (teardown) cannot interrupt finalization.
        task = asyncio.get_running_loop().create_task(self._run_handler(result))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)
        await asyncio.shield(task)

    async def _run_handler(self, result: PaymentResult) -> None:
        try:
            await self._on_completed(result)
        except Exception:
            logger.exception("Completion handler failed for payment %s", result.payment_reference)

    def _stop_timers(self) -> None:
        for timer in (self._poll_timer, self._countdown_timer):
            if timer is not None:
                timer.cancel()

    def _clear_fields(self) -> None:
        self.application_id: Optional[str] = None
        self.payment_id: Optional[str] = None
        self.payment_reference: Optional[str] = None
        self.phone_number: Optional[str] = None
        self.amount: Optional[int] = None
        self.receipt_number: Optional[str] = None
        self.transaction_date: Optional[str] = None
        self.failure_reason: Optional[str] = None
        self.last_remote_status: Optional[RemotePaymentStatus] = None
        self.remaining_seconds = self._timers_config.countdown_seconds
