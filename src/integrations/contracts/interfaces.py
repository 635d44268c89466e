from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    SUBMITTED = "submitted"
    REQUIRES_VERIFICATION = "requires_verification"


class RemotePaymentStatus(str, Enum):
    """Status values reported by the payments backend."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class SessionState(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED, SessionState.EXPIRED}
)


# ---------------------------------------------------------------------------
# Shared data models
# ---------------------------------------------------------------------------

@dataclass
class Application:
    application_id: str
    application_number: str
    status: ApplicationStatus
    premium_amount: int                  # whole shillings, as the backend stores it
    currency: str = "KES"
    insurance_type: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def applicant_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass
class PaymentInitiation:
    """Body of POST /payments/mobilemoney/initiate."""

    application_id: str
    amount: int
    phone_number: str
    account_reference: str
    description: str


@dataclass
class PaymentTicket:
    """What the backend hands back once the STK prompt has been pushed."""

    payment_id: str
    payment_reference: str
    phone_number: str
    amount: int


@dataclass
class PaymentStatusReport:
    payment_id: str
    status: RemotePaymentStatus
    amount: Optional[int] = None
    phone_number: Optional[str] = None
    payment_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class PaymentResult:
    """Completion signal handed to the finalization step."""

    payment_id: str
    payment_reference: str
    amount: int
    phone_number: str
    receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DocumentEntry:
    document_type: str
    name: str
    size: int = 0
    media_type: str = "application/octet-stream"
    storage_ref: Optional[str] = None
    content: Optional[bytes] = None
    path: Optional[Path] = None
    uploaded: bool = False

    def has_file(self) -> bool:
        return self.content is not None or self.path is not None

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is not None:
            return Path(self.path).read_bytes()
        raise ValueError(f"Document '{self.document_type}' has no file attached.")


@dataclass
class DocumentSet:
    entries: Dict[str, DocumentEntry] = field(default_factory=dict)

    def add(self, entry: DocumentEntry) -> None:
        self.entries[entry.document_type] = entry

    def sendable(self, skip_types: Iterable[str] = ()) -> List[DocumentEntry]:
        skip = set(skip_types)
        return [
            e for e in self.entries.values()
            if e.has_file() and not e.uploaded and e.document_type not in skip
        ]

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


@dataclass
class StoredDocument:
    document_type: str
    name: str
    storage_ref: Optional[str] = None


@dataclass
class UploadResult:
    application_id: str
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    documents: List[StoredDocument] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Abstract backend interfaces
# ---------------------------------------------------------------------------

class ApplicationsBackend(ABC):
    """Every applications client (real or mock) must implement this interface."""

    @abstractmethod
    async def create_application(self, payload: Dict[str, Any]) -> Application:
        """POST /applications: create a draft application."""

    @abstractmethod
    async def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        """PATCH /applications/{id}: update status and payment fields."""

    @abstractmethod
    async def list_documents(self, application_id: str) -> List[StoredDocument]:
        """GET /applications/{id}/documents."""

    @abstractmethod
    async def upload_documents(self, application_id: str, entries: List[DocumentEntry]) -> List[StoredDocument]:
        """POST /applications/{id}/documents: multipart upload with type tags."""


class PaymentsBackend(ABC):
    """Mobile-money push-payment endpoints."""

    @abstractmethod
    async def initiate_payment(self, request: PaymentInitiation) -> PaymentTicket:
        """Push an STK prompt to the subscriber's phone."""

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> PaymentStatusReport:
        """Poll the status of a previously initiated payment."""
