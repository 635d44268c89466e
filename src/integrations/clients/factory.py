"""
Single place where mock vs real clients are selected.

INTEGRATIONS_MODE=real|live forces the HTTP clients, mock|test forces the
in-memory ones; otherwise the real clients are used as soon as KOLA_API_URL
is set.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from src.integrations.clients.mocks.applications import MockApplicationsClient
from src.integrations.clients.mocks.mpesa import MpesaMockClient
from src.integrations.clients.real_http.applications import RealApplicationsClient
from src.integrations.clients.real_http.payments import RealPaymentsClient
from src.integrations.contracts.interfaces import ApplicationsBackend, PaymentsBackend
from src.utils.checkout_config import CheckoutConfig

logger = logging.getLogger(__name__)


def should_use_real_integrations() -> bool:
    mode = os.getenv("INTEGRATIONS_MODE", "").strip().lower()
    if mode in {"real", "live"}:
        return True
    if mode in {"mock", "test"}:
        return False
    return bool(os.getenv("KOLA_API_URL"))


def build_backends(config: Optional[CheckoutConfig] = None) -> Tuple[ApplicationsBackend, PaymentsBackend]:
    config = config or CheckoutConfig()
    if should_use_real_integrations():
        timeout = config.backend.request_timeout_seconds
        logger.info("Using real backend clients (%s)", os.getenv("KOLA_API_URL", "<unset>"))
        return (
            RealApplicationsClient(timeout_seconds=timeout),
            RealPaymentsClient(timeout_seconds=timeout),
        )

    logger.info("Using mock backend clients")
    return MockApplicationsClient(), MpesaMockClient(payment_success_rate=config.mock.payment_success_rate)
