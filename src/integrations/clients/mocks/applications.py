"""
Applications API - MOCK client.

⚠️  In-memory stand-in for the brokerage applications API, used in
    development mode and by the test-suite. Records every call so that
    create-once / finalize-once behaviour can be asserted, and supports
    scripted failures per operation via `fail_on(...)`.
"""

import logging
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.integrations.contracts.errors import CheckoutError, TransportFailure, ValidationFailure
from src.integrations.contracts.interfaces import (
    Application,
    ApplicationsBackend,
    ApplicationStatus,
    DocumentEntry,
    StoredDocument,
)

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("firstName", "lastName", "mobileNumber", "emailAddress")


class MockApplicationsClient(ApplicationsBackend):
    """
    Mock applications backend.

    Parameters
    ----------
    validate_required : bool
        If True, create_application rejects payloads missing contact fields
        with a ValidationFailure, as the real backend does. Default True.
    """

    def __init__(self, validate_required: bool = True):
        self._validate_required = validate_required

        # In-memory stores (reset on restart)
        self.applications: Dict[str, Application] = {}
        self.documents: Dict[str, List[StoredDocument]] = defaultdict(list)

        self.calls: Counter = Counter()
        self.requests: List[Dict[str, Any]] = []
        self._failures: Dict[str, List[CheckoutError]] = defaultdict(list)
        self._sequence = 0

        logger.info("[APPLICATIONS MOCK] Client initialised")

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_on(self, operation: str, error: Optional[CheckoutError] = None, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise `error`."""
        error = error or TransportFailure(f"[APPLICATIONS MOCK] {operation} unavailable", status_code=503)
        self._failures[operation].extend([error] * times)

    def _record(self, operation: str, **details: Any) -> None:
        self.calls[operation] += 1
        self.requests.append({"operation": operation, **details})
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _next_number(self) -> str:
        self._sequence += 1
        return f"APP-{datetime.now(timezone.utc):%Y%m}-{self._sequence:05d}"

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def create_application(self, payload: Dict[str, Any]) -> Application:
        self._record("create_application", payload=dict(payload))

        if self._validate_required:
            errors = {f: f"{f} is required" for f in _REQUIRED_FIELDS if not payload.get(f)}
            if errors:
                raise ValidationFailure(errors, payload={"errorType": "validation", "errors": errors})

        application = Application(
            application_id=uuid.uuid4().hex,
            application_number=self._next_number(),
            status=ApplicationStatus(payload.get("status") or ApplicationStatus.DRAFT.value),
            premium_amount=int(payload.get("premiumAmount") or 0),
            insurance_type=payload.get("insuranceType"),
            first_name=payload.get("firstName"),
            last_name=payload.get("lastName"),
        )
        self.applications[application.application_id] = application
        logger.info("[APPLICATIONS MOCK] Draft created id=%s number=%s",
                    application.application_id, application.application_number)
        return application

    async def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        self._record("update_application", application_id=application_id, updates=dict(updates))

        application = self.applications.get(application_id)
        if not application:
            raise TransportFailure(f"[APPLICATIONS MOCK] Application '{application_id}' not found.", status_code=404)

        if "status" in updates:
            application.status = ApplicationStatus(updates["status"])
        if "paymentReference" in updates:
            application.payment_reference = updates["paymentReference"]
        if updates.get("paymentDate"):
            application.payment_date = datetime.fromisoformat(updates["paymentDate"].replace("Z", "+00:00"))
        for key, value in updates.items():
            if key not in {"status", "paymentReference", "paymentDate"}:
                application.metadata[key] = value

        logger.info("[APPLICATIONS MOCK] Application %s → %s", application_id, application.status.value)
        return application

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def list_documents(self, application_id: str) -> List[StoredDocument]:
        self._record("list_documents", application_id=application_id)
        return list(self.documents.get(application_id, []))

    async def upload_documents(self, application_id: str, entries: List[DocumentEntry]) -> List[StoredDocument]:
        self._record(
            "upload_documents",
            application_id=application_id,
            document_types=[e.document_type for e in entries],
        )
        stored = [
            StoredDocument(
                document_type=e.document_type,
                name=e.name,
                storage_ref=f"mock://{application_id}/{e.document_type}/{e.name}",
            )
            for e in entries
        ]
        self.documents[application_id].extend(stored)
        logger.info("[APPLICATIONS MOCK] %d document(s) stored for %s", len(stored), application_id)
        return stored
