"""
Checkout core: draft creation, M-Pesa payment session, finalization and
document upload for the buy-online wizard.
"""

from src.checkout.document_uploader import DocumentUploader
from src.checkout.draft_registry import DraftRegistry, build_draft_payload
from src.checkout.finalization import (
    FinalizationOrchestrator,
    FinalizationOutcome,
    FinalizationState,
    OutcomeStatus,
)
from src.checkout.flow import CheckoutFlow, CheckoutStep, document_set_from_snapshot
from src.checkout.payment_session import PaymentSession
from src.checkout.store import CheckoutStore
from src.checkout.timers import AsyncioRecurringTimer, RecurringTimer, asyncio_timer_factory

__all__ = [
    "AsyncioRecurringTimer",
    "CheckoutFlow",
    "CheckoutStep",
    "CheckoutStore",
    "DocumentUploader",
    "DraftRegistry",
    "FinalizationOrchestrator",
    "FinalizationOutcome",
    "FinalizationState",
    "OutcomeStatus",
    "PaymentSession",
    "RecurringTimer",
    "asyncio_timer_factory",
    "build_draft_payload",
    "document_set_from_snapshot",
]
