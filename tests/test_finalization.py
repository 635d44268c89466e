import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from src.checkout.document_uploader import DocumentUploader
from src.checkout.draft_registry import DraftRegistry
from src.checkout.finalization import FinalizationOrchestrator, FinalizationState, OutcomeStatus
from src.integrations.contracts.errors import InvalidTransition, PartialFailure
from src.integrations.contracts.interfaces import (
    ApplicationStatus,
    DocumentEntry,
    DocumentSet,
    PaymentResult,
    StoredDocument,
)


def make_documents():
    documents = DocumentSet()
    documents.add(DocumentEntry("passport", "passport.pdf", 13, "application/pdf", content=b"%PDF-1.4 test"))
    documents.add(DocumentEntry("nationalId", "id.png", 9, "image/png", content=b"\x89PNG test"))
    documents.add(DocumentEntry("kraPin", "pin.pdf"))  # chosen in the form but never attached
    return documents


def make_payment(reference="PAY-REF-1", receipt="QAX123"):
    return PaymentResult(
        payment_id="pay-1",
        payment_reference=reference,
        amount=48000,
        phone_number="0712345678",
        receipt_number=receipt,
    )


async def make_orchestrator(applications, form_snapshot, documents=None):
    registry = DraftRegistry(applications)
    await registry.ensure_draft(form_snapshot)
    orchestrator = FinalizationOrchestrator(
        applications,
        registry,
        DocumentUploader(applications),
        make_documents() if documents is None else documents,
    )
    return orchestrator, registry.draft


def uploaded_types(applications):
    return [r["document_types"] for r in applications.requests if r["operation"] == "upload_documents"]


@pytest.mark.asyncio
async def test_submits_application_and_uploads_documents(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert outcome.status is OutcomeStatus.FINALIZED
    assert orchestrator.state is FinalizationState.DONE
    assert draft.status is ApplicationStatus.SUBMITTED
    assert draft.payment_reference == "PAY-REF-1"
    assert draft.payment_date is not None
    assert outcome.application is draft

    update = next(r for r in applications.requests if r["operation"] == "update_application")
    assert update["updates"]["status"] == "submitted"
    assert update["updates"]["paymentReference"] == "PAY-REF-1"
    assert update["updates"]["mpesaReceiptNumber"] == "QAX123"

    assert uploaded_types(applications) == [["passport", "nationalId"]]
    assert outcome.upload.uploaded == ["passport", "nationalId"]
    assert orchestrator.documents_uploaded


@pytest.mark.asyncio
async def test_duplicate_completion_is_a_no_op(applications, form_snapshot):
    orchestrator, _ = await make_orchestrator(applications, form_snapshot)

    await orchestrator.on_payment_completed(make_payment())
    second = await orchestrator.on_payment_completed(make_payment())

    assert second.status is OutcomeStatus.SKIPPED
    assert applications.calls["update_application"] == 1
    assert applications.calls["upload_documents"] == 1


@pytest.mark.asyncio
async def test_concurrent_completion_signals_finalize_once(applications, form_snapshot):
    orchestrator, _ = await make_orchestrator(applications, form_snapshot)

    outcomes = await asyncio.gather(
        orchestrator.on_payment_completed(make_payment()),
        orchestrator.on_payment_completed(make_payment()),
    )

    assert sorted(o.status.value for o in outcomes) == ["finalized", "skipped"]
    assert applications.calls["update_application"] == 1
    assert applications.calls["upload_documents"] == 1


@pytest.mark.asyncio
async def test_receipt_is_used_when_reference_is_missing(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot, documents=DocumentSet())

    await orchestrator.on_payment_completed(make_payment(reference=""))

    assert draft.payment_reference == "QAX123"


@pytest.mark.asyncio
async def test_update_failure_raises_partial_failure_and_releases_latch(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)
    applications.fail_on("update_application")
    payment = make_payment()

    with pytest.raises(PartialFailure) as exc_info:
        await orchestrator.on_payment_completed(payment)

    assert exc_info.value.payment_reference == "PAY-REF-1"
    assert "PAY-REF-1" in str(exc_info.value)
    assert str(exc_info.value).startswith("Payment successful but application update failed.")
    assert orchestrator.state is FinalizationState.IDLE
    assert orchestrator.pending_payment is payment
    assert draft.status is ApplicationStatus.PENDING_PAYMENT
    assert applications.calls["upload_documents"] == 0

    outcome = await orchestrator.retry()

    assert outcome.status is OutcomeStatus.FINALIZED
    assert draft.status is ApplicationStatus.SUBMITTED
    assert applications.calls["update_application"] == 2
    assert applications.calls["upload_documents"] == 1
    assert orchestrator.pending_payment is None


@pytest.mark.asyncio
async def test_missing_draft_is_a_partial_failure(applications):
    orchestrator = FinalizationOrchestrator(
        applications, DraftRegistry(applications), DocumentUploader(applications), make_documents()
    )

    with pytest.raises(PartialFailure):
        await orchestrator.on_payment_completed(make_payment())

    assert applications.calls["update_application"] == 0
    assert orchestrator.state is FinalizationState.IDLE


@pytest.mark.asyncio
async def test_document_failure_is_not_fatal(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)
    applications.fail_on("upload_documents")

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert outcome.status is OutcomeStatus.FINALIZED
    assert outcome.documents_error is not None
    assert orchestrator.state is FinalizationState.DONE
    assert draft.status is ApplicationStatus.SUBMITTED
    assert not orchestrator.documents_uploaded

    result = await orchestrator.retry_documents()

    assert result.uploaded == ["passport", "nationalId"]
    assert applications.calls["upload_documents"] == 2
    assert applications.calls["update_application"] == 1


@pytest.mark.asyncio
async def test_documents_already_on_the_application_are_not_resent(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)
    applications.documents[draft.application_id].append(StoredDocument("passport", "passport.pdf"))

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert uploaded_types(applications) == [["nationalId"]]
    assert "passport" in outcome.upload.skipped
    assert orchestrator.document_set.entries["passport"].uploaded


@pytest.mark.asyncio
async def test_failed_document_lookup_still_uploads(applications, form_snapshot, caplog):
    orchestrator, _ = await make_orchestrator(applications, form_snapshot)
    applications.fail_on("list_documents")

    await orchestrator.on_payment_completed(make_payment())

    assert uploaded_types(applications) == [["passport", "nationalId"]]
    assert "Could not list existing documents" in caplog.text


@pytest.mark.asyncio
async def test_no_documents_means_no_document_requests(applications, form_snapshot):
    orchestrator, _ = await make_orchestrator(applications, form_snapshot, documents=DocumentSet())

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert outcome.upload is None
    assert applications.calls["list_documents"] == 0
    assert applications.calls["upload_documents"] == 0


@pytest.mark.asyncio
async def test_retries_outside_their_window_are_invalid(applications, form_snapshot):
    orchestrator, _ = await make_orchestrator(applications, form_snapshot)

    with pytest.raises(InvalidTransition):
        await orchestrator.retry()
    with pytest.raises(InvalidTransition):
        await orchestrator.retry_documents()


@pytest.mark.asyncio
async def test_unexpected_update_error_is_still_a_partial_failure(applications, form_snapshot, monkeypatch, caplog):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)
    real_update = applications.update_application

    async def broken_update(application_id, updates):
        raise RuntimeError("connection pool exhausted")

    monkeypatch.setattr(applications, "update_application", broken_update)
    payment = make_payment()

    with pytest.raises(PartialFailure) as exc_info:
        await orchestrator.on_payment_completed(payment)

    assert exc_info.value.payment_reference == "PAY-REF-1"
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert orchestrator.state is FinalizationState.IDLE
    assert orchestrator.pending_payment is payment
    assert "application update crashed" in caplog.text

    monkeypatch.setattr(applications, "update_application", real_update)
    outcome = await orchestrator.retry()

    assert outcome.status is OutcomeStatus.FINALIZED
    assert orchestrator.state is FinalizationState.DONE
    assert draft.status is ApplicationStatus.SUBMITTED


@pytest.mark.asyncio
async def test_unexpected_document_error_still_completes(applications, form_snapshot, monkeypatch):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot)

    async def broken_upload(application_id, entries):
        raise RuntimeError("disk unavailable")

    monkeypatch.setattr(applications, "upload_documents", broken_upload)

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert outcome.status is OutcomeStatus.FINALIZED
    assert orchestrator.state is FinalizationState.DONE
    assert "disk unavailable" in str(outcome.documents_error)
    assert draft.status is ApplicationStatus.SUBMITTED
    assert not orchestrator.documents_uploaded


@pytest.mark.asyncio
async def test_held_draft_takes_every_field_of_the_updated_application(applications, form_snapshot, monkeypatch):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot, documents=DocumentSet())
    paid_at = datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc)

    async def update_returning_copy(application_id, updates):
        return replace(
            draft,
            status=ApplicationStatus.SUBMITTED,
            payment_reference="PAY-REF-1",
            payment_date=paid_at,
            application_number="APP-202601-99999",
            metadata={"mpesaReceiptNumber": "QAX123"},
        )

    monkeypatch.setattr(applications, "update_application", update_returning_copy)

    outcome = await orchestrator.on_payment_completed(make_payment())

    assert outcome.application is draft
    assert orchestrator.application is draft
    assert draft.status is ApplicationStatus.SUBMITTED
    assert draft.payment_date == paid_at
    assert draft.application_number == "APP-202601-99999"
    assert draft.metadata == {"mpesaReceiptNumber": "QAX123"}


@pytest.mark.asyncio
async def test_payment_date_is_sent_as_utc(applications, form_snapshot):
    orchestrator, draft = await make_orchestrator(applications, form_snapshot, documents=DocumentSet())

    await orchestrator.on_payment_completed(make_payment())

    update = next(r for r in applications.requests if r["operation"] == "update_application")
    assert update["updates"]["paymentDate"].endswith("Z")
    assert draft.payment_date.tzinfo is not None
    assert draft.payment_date.utcoffset().total_seconds() == 0
