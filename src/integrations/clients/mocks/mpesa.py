"""
M-Pesa push-payment - MOCK client.

⚠️  This is a mock implementation for development and testing.
    Status polls walk through a script of remote statuses; the last entry
    repeats once the script is exhausted. The default script settles after
    two pending polls with `payment_success_rate` probability of success.
"""

import asyncio
import logging
import random
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from src.integrations.contracts.errors import CheckoutError, PaymentRejected
from src.integrations.contracts.interfaces import (
    PaymentInitiation,
    PaymentsBackend,
    PaymentStatusReport,
    PaymentTicket,
    RemotePaymentStatus,
)
from src.integrations.contracts.payments import is_valid_phone_number

logger = logging.getLogger(__name__)


class MpesaMockClient(PaymentsBackend):
    """
    Mock M-Pesa client.

    Parameters
    ----------
    status_script : sequence of str, optional
        Remote statuses returned by successive polls for every payment.
    payment_success_rate : float
        Probability (0–1) that the default script ends in 'completed'. Default 0.95.
    receipt_number : str, optional
        Fixed receipt number for completed payments; random when omitted.
    simulate_latency : float
        Seconds to sleep inside each call. Default 0.
    """

    def __init__(
        self,
        status_script: Optional[Sequence[str]] = None,
        payment_success_rate: float = 0.95,
        receipt_number: Optional[str] = None,
        simulate_latency: float = 0.0,
    ):
        self._script = list(status_script) if status_script else None
        self._success_rate = payment_success_rate
        self._receipt_number = receipt_number
        self._latency = simulate_latency

        self.payments: Dict[str, PaymentInitiation] = {}
        self._scripts: Dict[str, List[str]] = {}
        self.calls: Counter = Counter()
        self._failures: Dict[str, List[Exception]] = defaultdict(list)

        logger.info("[MPESA MOCK] Client initialised (success_rate=%.0f%%)", payment_success_rate * 100)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def fail_on(self, operation: str, error: CheckoutError, times: int = 1) -> None:
        self._failures[operation].extend([error] * times)

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._latency:
            await asyncio.sleep(self._latency)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _default_script(self) -> List[str]:
        final = "completed" if random.random() < self._success_rate else "failed"
        return ["pending", "pending", final]

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def initiate_payment(self, request: PaymentInitiation) -> PaymentTicket:
        await self._enter("initiate_payment")
        logger.info("[MPESA MOCK] STK push application=%s amount=%s phone=%s",
                    request.application_id, request.amount, request.phone_number)

        if not is_valid_phone_number(request.phone_number):
            raise PaymentRejected("Invalid phone number")
        if request.amount <= 0:
            raise PaymentRejected("Invalid amount")

        payment_id = uuid.uuid4().hex
        self.payments[payment_id] = request
        self._scripts[payment_id] = list(self._script or self._default_script())
        return PaymentTicket(
            payment_id=payment_id,
            payment_reference=f"PAY-{uuid.uuid4().hex[:10].upper()}",
            phone_number=request.phone_number,
            amount=request.amount,
        )

    async def get_payment_status(self, payment_id: str) -> PaymentStatusReport:
        await self._enter("get_payment_status")
        request = self.payments.get(payment_id)
        script = self._scripts.get(payment_id)
        if request is None or script is None:
            # Unknown payment: report pending so callers keep polling
            return PaymentStatusReport(payment_id=payment_id, status=RemotePaymentStatus.PENDING)

        raw = script.pop(0) if len(script) > 1 else script[0]
        status = RemotePaymentStatus(raw)
        report = PaymentStatusReport(
            payment_id=payment_id,
            status=status,
            amount=request.amount,
            phone_number=request.phone_number,
        )
        if status is RemotePaymentStatus.COMPLETED:
            report.receipt_number = self._receipt_number or f"Q{uuid.uuid4().hex[:9].upper()}"
            report.transaction_date = datetime.now(timezone.utc).isoformat()
        elif status in (RemotePaymentStatus.FAILED, RemotePaymentStatus.CANCELLED, RemotePaymentStatus.EXPIRED):
            report.failure_reason = {
                RemotePaymentStatus.FAILED: "The balance is insufficient for the transaction.",
                RemotePaymentStatus.CANCELLED: "Request cancelled by user.",
                RemotePaymentStatus.EXPIRED: "DS timeout user cannot be reached.",
            }[status]
        return report
