"""
Checkout error taxonomy.

Backend error payloads are decoded into one of these exactly once, at the
client boundary (see src/integrations/policy/response_wrappers.py). Nothing
above the clients probes raw error dictionaries.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """Base class for every error raised by the checkout core."""

    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def __str__(self) -> str:
        return self.message


class ValidationFailure(CheckoutError):
    """Field-level errors returned by the backend. Not retryable without user correction."""

    def __init__(
        self,
        field_errors: Dict[str, str],
        message: str = "Validation failed",
        *,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, payload=payload)
        self.field_errors = dict(field_errors)


class TransportFailure(CheckoutError):
    """Network error, timeout, 5xx or an unreadable response. Retryable."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, payload=payload)
        self.status_code = status_code


class PaymentRejected(CheckoutError):
    """Initiation-time business rejection (phone, amount, unknown application)."""


class PaymentTerminalFailure(CheckoutError):
    """The payment attempt ended failed, cancelled or expired."""

    def __init__(self, state: str, reason: str) -> None:
        super().__init__(reason)
        self.state = state
        self.reason = reason


class PartialFailure(CheckoutError):
    """Payment succeeded but the application record could not be updated."""

    def __init__(self, payment_reference: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            "Payment successful but application update failed. "
            f"Please contact support with your payment reference: {payment_reference}"
        )
        self.payment_reference = payment_reference
        self.cause = cause


class DocumentUploadFailure(CheckoutError):
    """Documents could not be attached; the application itself is already submitted."""


class InvalidTransition(CheckoutError):
    """An operation was requested from a state that does not allow it."""
