"""
Integrations layer.
This package contains all code used to communicate with external systems:
- The brokerage applications API (draft creation, status update, documents)
- The M-Pesa push-payment endpoints exposed by the same backend

Key rule:
- Checkout components MUST NOT call external APIs directly.
- They call integration clients (under src/integrations/clients).
- We use MOCK clients during development and swap to REAL_HTTP clients when
  the backend is configured.

Switching implementations:
- The selection of mock vs real clients happens in ONE place
  (src/integrations/clients/factory.py).
"""

from .contracts.errors import (
    CheckoutError,
    DocumentUploadFailure,
    InvalidTransition,
    PartialFailure,
    PaymentRejected,
    PaymentTerminalFailure,
    TransportFailure,
    ValidationFailure,
)
from .contracts.interfaces import (
    Application,
    ApplicationsBackend,
    ApplicationStatus,
    DocumentEntry,
    DocumentSet,
    PaymentInitiation,
    PaymentResult,
    PaymentsBackend,
    PaymentStatusReport,
    PaymentTicket,
    RemotePaymentStatus,
    SessionState,
    StoredDocument,
    UploadResult,
)
from .contracts.payments import (
    is_terminal_state,
    is_valid_phone_number,
    normalize_phone_number,
    validate_initiation,
)

__all__ = [
    # errors
    "CheckoutError", "DocumentUploadFailure", "InvalidTransition", "PartialFailure",
    "PaymentRejected", "PaymentTerminalFailure", "TransportFailure", "ValidationFailure",
    # interfaces
    "Application", "ApplicationsBackend", "ApplicationStatus", "DocumentEntry",
    "DocumentSet", "PaymentInitiation", "PaymentResult", "PaymentsBackend",
    "PaymentStatusReport", "PaymentTicket", "RemotePaymentStatus", "SessionState",
    "StoredDocument", "UploadResult",
    # payments
    "is_terminal_state", "is_valid_phone_number", "normalize_phone_number",
    "validate_initiation",
]
