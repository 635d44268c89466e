"""
Real Payments HTTP Client.

Used when the brokerage backend is configured. The backend fronts M-Pesa:
it pushes the STK prompt and records the callback; we only initiate and poll.
"""

from __future__ import annotations

import logging

from src.integrations.clients.real_http.base import BackendHTTPClient
from src.integrations.contracts.errors import PaymentRejected
from src.integrations.contracts.interfaces import (
    PaymentInitiation,
    PaymentsBackend,
    PaymentStatusReport,
    PaymentTicket,
)
from src.integrations.policy.response_wrappers import normalize_payment_status, normalize_payment_ticket

logger = logging.getLogger(__name__)


class RealPaymentsClient(BackendHTTPClient, PaymentsBackend):
    initiate_path = "/payments/mobilemoney/initiate"

    async def initiate_payment(self, request: PaymentInitiation) -> PaymentTicket:
        payload = {
            "applicationId": request.application_id,
            "amount": request.amount,
            "phoneNumber": request.phone_number,
            "accountReference": request.account_reference,
            "description": request.description,
        }
        logger.info(
            "Initiating mobile money payment application=%s amount=%s",
            request.application_id, request.amount,
        )
        data = await self._request("POST", self.initiate_path, json=payload, rejection=PaymentRejected)
        return normalize_payment_ticket(
            data or {}, fallback_phone=request.phone_number, fallback_amount=request.amount
        )

    async def get_payment_status(self, payment_id: str) -> PaymentStatusReport:
        data = await self._request("GET", f"/payments/{payment_id}/status")
        return normalize_payment_status(data or {}, payment_id=payment_id)
