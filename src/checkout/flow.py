"""
Checkout flow - the review/payment/confirmation tail of a buy-online wizard.

One CheckoutFlow per wizard submission. It owns the draft registry, the
payment session and the finalization orchestrator, receives the payment
completion signal, and exposes the few fields the wizard renders.
"""

from __future__ import annotations

import base64
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from src.checkout.document_uploader import DocumentUploader
from src.checkout.draft_registry import DraftRegistry
from src.checkout.finalization import FinalizationOrchestrator, FinalizationOutcome, FinalizationState
from src.checkout.payment_session import PaymentSession
from src.checkout.timers import TimerFactory
from src.integrations.contracts.errors import (
    InvalidTransition,
    PartialFailure,
    TransportFailure,
    ValidationFailure,
)
from src.integrations.contracts.interfaces import (
    Application,
    ApplicationsBackend,
    DocumentEntry,
    DocumentSet,
    PaymentResult,
    PaymentsBackend,
    PaymentTicket,
    SessionState,
)
from src.utils.checkout_config import CheckoutConfig

logger = logging.getLogger(__name__)

DRAFT_ERROR = "Failed to prepare application for payment. Please try again."


class CheckoutStep(str, Enum):
    INITIATE = "initiate"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


def document_set_from_snapshot(documents: Optional[Mapping[str, Any]]) -> DocumentSet:
    """
    Build a DocumentSet from the wizard's `documents` mapping.

    Values may be DocumentEntry objects or dicts with `name`, `size`, `type`
    and one of `path`, `content` (bytes) or `contentBase64`. Entries without
    a file are kept but never sent.
    """
    document_set = DocumentSet()
    for document_type, value in (documents or {}).items():
        if value is None:
            continue
        if isinstance(value, DocumentEntry):
            document_set.add(value)
            continue

        content = value.get("content")
        if content is None and value.get("contentBase64"):
            content = base64.b64decode(value["contentBase64"])
        path = value.get("path")
        document_set.add(DocumentEntry(
            document_type=document_type,
            name=value.get("name") or document_type,
            size=int(value.get("size") or (len(content) if content else 0)),
            media_type=value.get("type") or "application/octet-stream",
            storage_ref=value.get("storageRef"),
            content=content,
            path=Path(path) if path else None,
        ))
    return document_set


class CheckoutFlow:
    def __init__(
        self,
        applications: ApplicationsBackend,
        payments: PaymentsBackend,
        *,
        config: Optional[CheckoutConfig] = None,
        insurance_type: Optional[str] = None,
        timer_factory: Optional[TimerFactory] = None,
        documents: Optional[DocumentSet] = None,
    ) -> None:
        self.config = config or CheckoutConfig()
        self._applications = applications
        self._payments = payments
        self._timer_factory = timer_factory

        self.registry = DraftRegistry(applications, insurance_type)
        self.uploader = DocumentUploader(applications)
        self.finalizer = self._new_finalizer(documents)
        self.session = self._new_session()

        self.validation_errors: Dict[str, str] = {}
        self.partial_failure: Optional[PartialFailure] = None
        self.last_outcome: Optional[FinalizationOutcome] = None
        self._draft_error: Optional[str] = None

    def _new_finalizer(self, documents: Optional[DocumentSet]) -> FinalizationOrchestrator:
        return FinalizationOrchestrator(self._applications, self.registry, self.uploader, documents)

    def _new_session(self) -> PaymentSession:
        return PaymentSession(
            self._payments,
            timers=self.config.timers,
            phone_prefixes=self.config.phone.prefixes,
            on_completed=self.on_payment_complete,
            timer_factory=self._timer_factory,
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def application(self) -> Optional[Application]:
        return self.registry.draft

    @property
    def current_step(self) -> CheckoutStep:
        state = self.session.state
        if state in (SessionState.IDLE, SessionState.INITIATING):
            return CheckoutStep.INITIATE
        if state is SessionState.PROCESSING:
            return CheckoutStep.PROCESSING
        if state is SessionState.COMPLETED:
            if self.finalizer.state is FinalizationState.DONE:
                return CheckoutStep.SUCCESS
            if self.partial_failure is not None:
                return CheckoutStep.FAILED
            return CheckoutStep.PROCESSING
        return CheckoutStep.FAILED

    @property
    def error_message(self) -> Optional[str]:
        if self.partial_failure is not None:
            return self.partial_failure.message
        return self.session.error_message or self._draft_error

    @property
    def remaining_seconds(self) -> int:
        return self.session.remaining_seconds

    def snapshot(self) -> Dict[str, Any]:
        application = self.application
        outcome = self.last_outcome
        return {
            "current_step": self.current_step.value,
            "error_message": self.error_message,
            "validation_errors": dict(self.validation_errors),
            "remaining_seconds": self.remaining_seconds,
            "application": None if application is None else {
                "application_id": application.application_id,
                "application_number": application.application_number,
                "status": application.status.value,
                "premium_amount": application.premium_amount,
                "currency": application.currency,
                "payment_reference": application.payment_reference,
            },
            "payment": self.session.snapshot(),
            "finalization": {
                "state": self.finalizer.state.value,
                "documents_uploaded": self.finalizer.documents_uploaded,
                "documents_error": str(outcome.documents_error) if outcome and outcome.documents_error else None,
                "payment_reference": self.partial_failure.payment_reference if self.partial_failure else None,
            },
        }

    # ------------------------------------------------------------------
    # Wizard actions
    # ------------------------------------------------------------------

    async def proceed_to_payment(self, form_snapshot: Dict[str, Any]) -> Application:
        """Ensure the draft exists before the payment step is shown."""
        self.validation_errors = {}
        self._draft_error = None
        if "documents" in form_snapshot and not self.finalizer.document_set:
            self.finalizer.document_set = document_set_from_snapshot(form_snapshot["documents"])

        try:
            return await self.registry.ensure_draft(form_snapshot)
        except ValidationFailure as exc:
            self.validation_errors = exc.field_errors
            self._draft_error = exc.message
            logger.warning("Draft rejected with %d field error(s)", len(exc.field_errors))
            raise
        except TransportFailure as exc:
            self._draft_error = DRAFT_ERROR
            logger.error("Draft creation failed: %s", exc)
            raise

    async def start_payment(self, phone_number: str) -> PaymentTicket:
        draft = self.registry.draft
        if draft is None:
            raise InvalidTransition("Draft application not found")
        return await self.session.initiate(draft, phone_number)

    async def on_payment_complete(self, payment: PaymentResult) -> Optional[FinalizationOutcome]:
        try:
            outcome = await self.finalizer.on_payment_completed(payment)
        except PartialFailure as exc:
            self.partial_failure = exc
            logger.error("%s", exc.message)
            return None
        self.partial_failure = None
        self.last_outcome = outcome
        return outcome

    async def retry_finalization(self) -> Optional[FinalizationOutcome]:
        """Re-run the application update after a partial failure."""
        if self.partial_failure is None:
            raise InvalidTransition("There is no failed finalization to retry.")
        try:
            outcome = await self.finalizer.retry()
        except PartialFailure as exc:
            self.partial_failure = exc
            logger.error("%s", exc.message)
            raise
        self.partial_failure = None
        self.last_outcome = outcome
        return outcome

    async def retry_documents(self) -> None:
        await self.finalizer.retry_documents()
        if self.last_outcome is not None:
            self.last_outcome.documents_error = None

    def retry_payment(self) -> None:
        self.session.retry()

    def on_cancel(self) -> SessionState:
        return self.session.cancel()

    def close(self) -> None:
        self.session.close()

    def start_new_application(self) -> None:
        self.session.close()
        self.registry.reset()
        self.finalizer = self._new_finalizer(None)
        self.session = self._new_session()
        self.validation_errors = {}
        self.partial_failure = None
        self.last_outcome = None
        self._draft_error = None
        logger.info("Checkout reset for a new application")
