from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from src.integrations.contracts.errors import (
    CheckoutError,
    PaymentRejected,
    TransportFailure,
    ValidationFailure,
)
from src.integrations.contracts.interfaces import (
    Application,
    ApplicationStatus,
    PaymentStatusReport,
    PaymentTicket,
    RemotePaymentStatus,
    StoredDocument,
)


class EnvelopeModel(BaseModel):
    """The brokerage API wraps every body as {success, data, message}."""

    success: bool = False
    data: Any = None
    message: Optional[str] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    errors: Any = None


class ApplicationResponseModel(BaseModel):
    application_id: str
    application_number: str
    status: ApplicationStatus
    premium_amount: int = Field(ge=0)
    currency: str = "KES"
    insurance_type: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class PaymentTicketModel(BaseModel):
    payment_id: str
    payment_reference: str
    phone_number: str
    amount: int = Field(gt=0)


class PaymentStatusModel(BaseModel):
    payment_id: str
    status: RemotePaymentStatus
    amount: Optional[int] = None
    phone_number: Optional[str] = None
    payment_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    failure_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Envelope / error decoding
# ---------------------------------------------------------------------------

def unwrap_envelope(
    raw: Any,
    *,
    status_code: int = 200,
    rejection: Optional[Type[CheckoutError]] = None,
) -> Any:
    """
    Return `data` from a successful envelope or raise the matching taxonomy error.

    `rejection` is the error type used for 4xx business rejections on endpoints
    where the backend refuses a request outright (payment initiation).
    """
    if not isinstance(raw, dict):
        raise TransportFailure(
            f"Unexpected response body from backend (HTTP {status_code}).",
            status_code=status_code,
        )

    envelope = _build_model(EnvelopeModel, raw, raw)
    if status_code < 400 and envelope.success:
        return envelope.data

    raise decode_error(status_code, raw, rejection=rejection)


def decode_error(
    status_code: Optional[int],
    raw: Optional[Dict[str, Any]],
    *,
    rejection: Optional[Type[CheckoutError]] = None,
) -> CheckoutError:
    """Map an error response onto the taxonomy. Called once, at the client boundary."""
    raw = raw if isinstance(raw, dict) else {}
    message = str(_first_non_empty(raw, "message", "detail", "error", default="Request failed"))
    field_errors = _field_errors(raw.get("errors"))

    if status_code is None or status_code >= 500:
        return TransportFailure(message, status_code=status_code, payload=raw)

    if rejection is not None and (status_code >= 400 or not raw.get("success", False)):
        return rejection(message, payload=raw)

    if raw.get("errorType") == "validation" or (status_code in (400, 422) and field_errors):
        return ValidationFailure(field_errors, message, payload=raw)

    return TransportFailure(message, status_code=status_code, payload=raw)


def _field_errors(errors: Any) -> Dict[str, str]:
    if isinstance(errors, dict):
        return {str(k): _as_message(v) for k, v in errors.items()}
    if isinstance(errors, list):
        out: Dict[str, str] = {}
        for item in errors:
            if not isinstance(item, dict):
                continue
            key = item.get("field") or item.get("path") or item.get("param")
            if key and key not in out:
                out[str(key)] = _as_message(item.get("message") or item.get("msg"))
        return out
    return {}


def _as_message(value: Any) -> str:
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Payload normalizers
# ---------------------------------------------------------------------------

def normalize_application(raw: Dict[str, Any]) -> Application:
    if not isinstance(raw, dict):
        raise TransportFailure("Application payload is not an object.")

    model = _build_model(
        ApplicationResponseModel,
        {
            "application_id": str(_first_non_empty(raw, "id", "applicationId", "_id")),
            "application_number": str(_first_non_empty(raw, "applicationNumber", "application_number", "id", "_id")),
            "status": str(_first_non_empty(raw, "status", default=ApplicationStatus.DRAFT.value)).lower(),
            "premium_amount": _first_non_empty(raw, "premiumAmount", "premium_amount", default=0),
            "currency": str(_first_non_empty(raw, "currency", default="KES")).upper(),
            "insurance_type": raw.get("insuranceType"),
            "first_name": raw.get("firstName"),
            "last_name": raw.get("lastName"),
            "payment_reference": raw.get("paymentReference"),
            "payment_date": raw.get("paymentDate"),
            "raw": raw,
        },
        raw,
    )
    return Application(
        application_id=model.application_id,
        application_number=model.application_number,
        status=model.status,
        premium_amount=model.premium_amount,
        currency=model.currency,
        insurance_type=model.insurance_type,
        first_name=model.first_name,
        last_name=model.last_name,
        payment_reference=model.payment_reference,
        payment_date=model.payment_date,
        metadata={"raw": model.raw},
    )


def normalize_payment_ticket(raw: Dict[str, Any], *, fallback_phone: str, fallback_amount: int) -> PaymentTicket:
    if not isinstance(raw, dict):
        raise TransportFailure("Payment initiation payload is not an object.")

    model = _build_model(
        PaymentTicketModel,
        {
            "payment_id": str(_first_non_empty(raw, "paymentId", "payment_id", "id")),
            "payment_reference": str(_first_non_empty(raw, "paymentReference", "payment_reference", "checkoutRequestId")),
            "phone_number": str(_first_non_empty(raw, "phoneNumber", "phone_number", default=fallback_phone)),
            "amount": _first_non_empty(raw, "amount", default=fallback_amount),
        },
        raw,
    )
    return PaymentTicket(**model.model_dump())


def normalize_payment_status(raw: Dict[str, Any], *, payment_id: str) -> PaymentStatusReport:
    if not isinstance(raw, dict):
        raise TransportFailure("Payment status payload is not an object.")

    model = _build_model(
        PaymentStatusModel,
        {
            "payment_id": str(_first_non_empty(raw, "paymentId", "payment_id", "id", default=payment_id)),
            "status": _map_payment_status(raw.get("status")),
            "amount": raw.get("amount"),
            "phone_number": raw.get("phoneNumber"),
            "payment_reference": raw.get("paymentReference"),
            "receipt_number": raw.get("mpesaReceiptNumber"),
            "transaction_date": _optional_str(raw.get("mpesaTransactionDate")),
            "failure_reason": _optional_str(raw.get("resultDesc") or raw.get("failureReason")),
        },
        raw,
    )
    return PaymentStatusReport(**model.model_dump())


def normalize_documents(raw: Any) -> List[StoredDocument]:
    if isinstance(raw, dict):
        raw = raw.get("documents", [])
    if not isinstance(raw, list):
        raise TransportFailure("Documents payload is not a list.")

    documents: List[StoredDocument] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        doc_type = item.get("documentType") or item.get("type")
        if not doc_type:
            continue
        documents.append(
            StoredDocument(
                document_type=str(doc_type),
                name=str(item.get("originalName") or item.get("name") or doc_type),
                storage_ref=item.get("url") or item.get("path") or item.get("id"),
            )
        )
    return documents


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise TransportFailure(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _map_payment_status(raw_status: Any) -> RemotePaymentStatus:
    value = str(raw_status or "").strip().lower()
    try:
        return RemotePaymentStatus(value)
    except ValueError:
        return RemotePaymentStatus.UNKNOWN


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise TransportFailure(f"Response validation failed: {exc}", payload=raw) from exc
