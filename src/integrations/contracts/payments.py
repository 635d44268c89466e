import re
from typing import Iterable, List, Optional

from .interfaces import (
    Application,
    PaymentInitiation,
    RemotePaymentStatus,
    SessionState,
    TERMINAL_STATES,
)

"""
Payment contract: validation helpers and status mapping specific to the
M-Pesa push-payment flow.

Used by both the mock client (clients/mocks/mpesa.py) and the real HTTP
client (clients/real_http/payments.py), and by the payment session itself.
"""

DEFAULT_PHONE_PREFIXES = ("07", "01")

_NON_DIGITS = re.compile(r"\D")


# ---------------------------------------------------------------------------
# Phone numbers
# ---------------------------------------------------------------------------

def normalize_phone_number(raw: str) -> str:
    """
    Reduce a Kenyan mobile number to its 10-digit local form.

    '0712 345 678', '+254712345678', '254712345678' and '712345678' all
    become '0712345678'. Anything else is returned as bare digits so the
    validator can reject it.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("254") and len(digits) == 12:
        return "0" + digits[3:]
    if len(digits) == 9 and digits[0] in "71":
        return "0" + digits
    return digits


def is_valid_phone_number(raw: str, prefixes: Iterable[str] = DEFAULT_PHONE_PREFIXES) -> bool:
    phone = normalize_phone_number(raw)
    return len(phone) == 10 and any(phone.startswith(p) for p in prefixes)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_initiation(
    application: Optional[Application],
    phone_number: str,
    prefixes: Iterable[str] = DEFAULT_PHONE_PREFIXES,
) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the payment may be initiated.
    """
    errors: List[str] = []

    if application is None:
        errors.append("A draft application is required before payment")
        return errors
    if not application.application_id:
        errors.append("application_id is required")
    if application.premium_amount is None or application.premium_amount <= 0:
        errors.append("Premium amount must be greater than zero")
    if not is_valid_phone_number(phone_number, prefixes):
        errors.append(
            "Please enter a valid Kenyan mobile number (07XX XXX XXX or 01XX XXX XXX)"
        )
    return errors


def build_initiation(application: Application, phone_number: str) -> PaymentInitiation:
    name = application.applicant_name
    description = f"Insurance premium for {name}" if name else "Insurance premium"
    return PaymentInitiation(
        application_id=application.application_id,
        amount=application.premium_amount,
        phone_number=normalize_phone_number(phone_number),
        account_reference=application.application_number,
        description=description,
    )


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------

_REMOTE_TO_SESSION = {
    RemotePaymentStatus.COMPLETED: SessionState.COMPLETED,
    RemotePaymentStatus.FAILED: SessionState.FAILED,
    RemotePaymentStatus.CANCELLED: SessionState.CANCELLED,
    RemotePaymentStatus.EXPIRED: SessionState.EXPIRED,
}


def session_state_for(remote: RemotePaymentStatus) -> SessionState:
    """Map a polled status to the session state it drives; non-final ones stay PROCESSING."""
    return _REMOTE_TO_SESSION.get(remote, SessionState.PROCESSING)


def is_terminal_state(state: SessionState) -> bool:
    """Return True if the session has reached a final, non-changeable state."""
    return state in TERMINAL_STATES
