"""
Finalization - turn a completed payment into a submitted application, once.

A single-shot latch (idle -> in_progress -> done) makes duplicate completion
signals no-ops. If the status update fails the latch drops back to idle and a
PartialFailure carrying the payment reference is raised: the customer has paid,
so this must reach a human. Document upload failures happen after the
application is already submitted and are reported without undoing anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from src.checkout.document_uploader import DocumentUploader
from src.checkout.draft_registry import DraftRegistry
from src.integrations.contracts.errors import (
    CheckoutError,
    DocumentUploadFailure,
    InvalidTransition,
    PartialFailure,
)
from src.integrations.contracts.interfaces import (
    Application,
    ApplicationsBackend,
    ApplicationStatus,
    DocumentSet,
    PaymentResult,
    UploadResult,
)

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time as `2026-01-15T10:30:00.123Z`, the form the wizard always sent."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class FinalizationState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class OutcomeStatus(str, Enum):
    FINALIZED = "finalized"
    SKIPPED = "skipped"


@dataclass
class FinalizationOutcome:
    status: OutcomeStatus
    application: Optional[Application] = None
    upload: Optional[UploadResult] = None
    documents_error: Optional[DocumentUploadFailure] = None


class FinalizationOrchestrator:
    def __init__(
        self,
        applications: ApplicationsBackend,
        registry: DraftRegistry,
        uploader: DocumentUploader,
        document_set: Optional[DocumentSet] = None,
    ) -> None:
        self._applications = applications
        self._registry = registry
        self._uploader = uploader
        self.document_set = document_set if document_set is not None else DocumentSet()

        self.state = FinalizationState.IDLE
        self.documents_uploaded = False
        self.application: Optional[Application] = None
        self.pending_payment: Optional[PaymentResult] = None
        self.update_requests = 0

    async def on_payment_completed(self, payment: PaymentResult) -> FinalizationOutcome:
        if self.state is not FinalizationState.IDLE:
            logger.info(
                "Finalization already %s; ignoring duplicate completion for %s",
                self.state.value, payment.payment_reference,
            )
            return FinalizationOutcome(OutcomeStatus.SKIPPED, application=self.application)

        self.state = FinalizationState.IN_PROGRESS
        reference = payment.payment_reference or payment.receipt_number or payment.payment_id

        try:
            application = await self._submit(payment, reference)
        except Exception as exc:
            # Any step-1 error, taxonomy or not, must release the latch and reach the customer.
            self.state = FinalizationState.IDLE
            self.pending_payment = payment
            if isinstance(exc, CheckoutError):
                logger.error("Payment %s succeeded but the application update failed: %s", reference, exc)
            else:
                logger.exception("Payment %s succeeded but the application update crashed", reference)
            raise PartialFailure(reference, cause=exc) from exc

        self.pending_payment = None
        outcome = FinalizationOutcome(OutcomeStatus.FINALIZED, application=application)

        if self.document_set and not self.documents_uploaded:
            try:
                outcome.upload = await self._upload_documents(application.application_id)
            except DocumentUploadFailure as exc:
                logger.error("Application %s submitted but documents failed: %s", application.application_id, exc)
                outcome.documents_error = exc
            except Exception as exc:
                logger.exception("Document upload crashed for application %s", application.application_id)
                outcome.documents_error = DocumentUploadFailure(
                    f"Documents could not be uploaded for application {application.application_id}: {exc}"
                )

        self.state = FinalizationState.DONE
        return outcome

    async def retry(self) -> FinalizationOutcome:
        """Re-run finalization for a payment whose status update failed earlier."""
        if self.pending_payment is None:
            raise InvalidTransition("There is no failed finalization to retry.")
        return await self.on_payment_completed(self.pending_payment)

    async def retry_documents(self) -> UploadResult:
        if self.state is not FinalizationState.DONE or self.application is None:
            raise InvalidTransition("Documents can only be retried after the application is submitted.")
        if self.documents_uploaded:
            return UploadResult(
                application_id=self.application.application_id,
                skipped=list(self.document_set.entries),
            )
        return await self._upload_documents(self.application.application_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _submit(self, payment: PaymentResult, reference: str) -> Application:
        draft = self._registry.draft
        if draft is None:
            raise InvalidTransition("Draft application not found")

        updates: Dict[str, Any] = {
            "status": ApplicationStatus.SUBMITTED.value,
            "paymentReference": reference,
            "paymentDate": utc_timestamp(),
        }
        if payment.receipt_number:
            updates["mpesaReceiptNumber"] = payment.receipt_number

        self.update_requests += 1
        updated = await self._applications.update_application(draft.application_id, updates)

        # The held draft is shared with the rest of the flow, so it takes the
        # backend's copy field by field instead of being swapped for a new object.
        if updated is not draft:
            for f in fields(Application):
                setattr(draft, f.name, getattr(updated, f.name))
        draft.payment_reference = draft.payment_reference or reference
        self.application = draft
        logger.info("Application %s submitted with payment %s", draft.application_id, reference)
        return draft

    async def _upload_documents(self, application_id: str) -> UploadResult:
        existing: Set[str] = set()
        try:
            existing = await self._uploader.existing_document_types(application_id)
        except CheckoutError as exc:
            logger.warning("Could not list existing documents for %s, uploading anyway: %s", application_id, exc)

        result = await self._uploader.upload(application_id, self.document_set, skip_types=existing)
        self.documents_uploaded = True
        return result
