"""Create-once holder for the draft application of one wizard submission."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from src.integrations.contracts.errors import ValidationFailure
from src.integrations.contracts.interfaces import Application, ApplicationsBackend, ApplicationStatus

logger = logging.getLogger(__name__)

# Wizard-only keys that never go to the backend with the draft
_LOCAL_ONLY_FIELDS = {"documents", "selectedPlan", "currentStep"}


def _sanitize(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _whole_shillings(value: Any) -> int:
    """Premiums are stored in whole shillings; anything else is a form error, never truncated."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailure({"premiumAmount": "premiumAmount must be a number"}) from None
    if isinstance(value, bool) or not amount.is_finite():
        raise ValidationFailure({"premiumAmount": "premiumAmount must be a number"})
    if amount < 0:
        raise ValidationFailure({"premiumAmount": "premiumAmount must be at least 0"})
    if amount != amount.to_integral_value():
        raise ValidationFailure({"premiumAmount": "premiumAmount must be a whole number of shillings"})
    return int(amount)


def build_draft_payload(form_snapshot: Dict[str, Any], insurance_type: Optional[str] = None) -> Dict[str, Any]:
    payload = {k: _sanitize(v) for k, v in form_snapshot.items() if k not in _LOCAL_ONLY_FIELDS}

    selected_plan = form_snapshot.get("selectedPlan")
    if isinstance(selected_plan, dict) and selected_plan.get("id"):
        payload["selectedPlanId"] = selected_plan["id"]

    premium = payload.get("premiumAmount")
    if premium is not None:
        payload["premiumAmount"] = _whole_shillings(premium)

    payload["insuranceType"] = payload.get("insuranceType") or insurance_type
    payload["status"] = ApplicationStatus.PENDING_PAYMENT.value
    return payload


class DraftRegistry:
    def __init__(self, applications: ApplicationsBackend, insurance_type: Optional[str] = None) -> None:
        self._applications = applications
        self.insurance_type = insurance_type
        self._draft: Optional[Application] = None
        self._lock = asyncio.Lock()
        self.creation_requests = 0

    @property
    def draft(self) -> Optional[Application]:
        return self._draft

    async def ensure_draft(self, form_snapshot: Dict[str, Any]) -> Application:
        """
        Return the held draft, creating it with a single backend request the first time.

        ValidationFailure and TransportFailure propagate unchanged and leave the
        registry empty, so a later call can try again.
        """
        if self._draft is not None:
            return self._draft

        async with self._lock:
            # Another caller may have created it while we waited
            if self._draft is not None:
                return self._draft

            payload = build_draft_payload(form_snapshot, self.insurance_type)
            self.creation_requests += 1
            draft = await self._applications.create_application(payload)
            self._draft = draft
            logger.info("Draft application %s (%s) created", draft.application_id, draft.application_number)
            return draft

    def reset(self) -> None:
        if self._draft is not None:
            logger.info("Releasing draft application %s", self._draft.application_id)
        self._draft = None
