import base64

import pytest

from src.checkout.flow import DRAFT_ERROR, CheckoutFlow, CheckoutStep, document_set_from_snapshot
from src.checkout.finalization import FinalizationState, OutcomeStatus
from src.integrations.contracts.errors import InvalidTransition, PartialFailure, ValidationFailure, TransportFailure
from src.integrations.contracts.interfaces import ApplicationStatus, SessionState


@pytest.fixture
def wizard_form(form_snapshot):
    return dict(
        form_snapshot,
        documents={
            "passport": {"name": "passport.pdf", "type": "application/pdf", "content": b"%PDF-1.4 test"},
            "nationalId": {
                "name": "id.png",
                "type": "image/png",
                "contentBase64": base64.b64encode(b"\x89PNG test").decode(),
            },
            "kraPin": {"name": "pin.pdf"},
        },
    )


@pytest.fixture
def flow(applications, payments, timers):
    return CheckoutFlow(applications, payments, timer_factory=timers, insurance_type="travel")


@pytest.mark.asyncio
async def test_full_checkout_submits_application_once(flow, applications, payments, timers, wizard_form):
    draft = await flow.proceed_to_payment(wizard_form)
    assert flow.current_step is CheckoutStep.INITIATE

    ticket = await flow.start_payment("0712345678")
    assert payments.payments[ticket.payment_id].amount == 48000
    assert flow.current_step is CheckoutStep.PROCESSING
    assert flow.remaining_seconds == 300

    await timers.fire("payment-poll", times=2)

    assert flow.session.state is SessionState.COMPLETED
    assert flow.current_step is CheckoutStep.SUCCESS
    assert flow.error_message is None
    assert draft.status is ApplicationStatus.SUBMITTED
    assert draft.payment_reference == ticket.payment_reference
    assert applications.calls["update_application"] == 1
    assert applications.calls["upload_documents"] == 1
    assert [d.document_type for d in applications.documents[draft.application_id]] == ["passport", "nationalId"]

    # A second completion signal for the same payment changes nothing
    outcome = await flow.on_payment_complete(await flow.session.wait())
    assert outcome.status is OutcomeStatus.SKIPPED
    assert applications.calls["update_application"] == 1
    assert applications.calls["upload_documents"] == 1


@pytest.mark.asyncio
async def test_failed_update_surfaces_reference_and_can_be_retried(flow, applications, timers, wizard_form):
    draft = await flow.proceed_to_payment(wizard_form)
    await flow.start_payment("0712345678")
    reference = flow.session.payment_reference
    applications.fail_on("update_application")

    await timers.fire("payment-poll", times=2)

    assert isinstance(flow.partial_failure, PartialFailure)
    assert flow.current_step is CheckoutStep.FAILED
    assert reference in flow.error_message
    assert flow.snapshot()["finalization"]["payment_reference"] == reference
    assert flow.finalizer.state is FinalizationState.IDLE
    assert draft.status is ApplicationStatus.PENDING_PAYMENT

    await flow.retry_finalization()

    assert flow.partial_failure is None
    assert flow.current_step is CheckoutStep.SUCCESS
    assert draft.status is ApplicationStatus.SUBMITTED
    assert draft.payment_reference == reference
    assert applications.calls["update_application"] == 2
    assert applications.calls["upload_documents"] == 1


@pytest.mark.asyncio
async def test_failed_retry_keeps_the_partial_failure(flow, applications, timers, form_snapshot):
    await flow.proceed_to_payment(form_snapshot)
    await flow.start_payment("0712345678")
    applications.fail_on("update_application", times=2)
    await timers.fire("payment-poll", times=2)

    with pytest.raises(PartialFailure):
        await flow.retry_finalization()

    assert flow.partial_failure is not None
    assert flow.current_step is CheckoutStep.FAILED


@pytest.mark.asyncio
async def test_unexpected_update_error_does_not_strand_the_checkout(
    flow, applications, timers, form_snapshot, monkeypatch
):
    draft = await flow.proceed_to_payment(form_snapshot)
    await flow.start_payment("0712345678")
    reference = flow.session.payment_reference
    real_update = applications.update_application

    async def broken_update(application_id, updates):
        raise RuntimeError("unexpected response shape")

    monkeypatch.setattr(applications, "update_application", broken_update)
    await timers.fire("payment-poll", times=2)

    assert flow.current_step is CheckoutStep.FAILED
    assert reference in flow.error_message
    assert flow.finalizer.state is FinalizationState.IDLE

    monkeypatch.setattr(applications, "update_application", real_update)
    await flow.retry_finalization()

    assert flow.current_step is CheckoutStep.SUCCESS
    assert draft.status is ApplicationStatus.SUBMITTED


@pytest.mark.asyncio
async def test_backend_validation_errors_are_kept_per_field(flow, form_snapshot):
    form_snapshot["emailAddress"] = ""

    with pytest.raises(ValidationFailure):
        await flow.proceed_to_payment(form_snapshot)

    assert "emailAddress" in flow.validation_errors
    assert flow.application is None
    assert flow.error_message == "Validation failed"


@pytest.mark.asyncio
async def test_draft_transport_failure_has_generic_message(flow, applications, form_snapshot):
    applications.fail_on("create_application")

    with pytest.raises(TransportFailure):
        await flow.proceed_to_payment(form_snapshot)

    assert flow.error_message == DRAFT_ERROR
    assert flow.validation_errors == {}


@pytest.mark.asyncio
async def test_payment_needs_a_draft(flow):
    with pytest.raises(InvalidTransition):
        await flow.start_payment("0712345678")


@pytest.mark.asyncio
async def test_cancel_then_retry_payment(flow, payments, form_snapshot):
    await flow.proceed_to_payment(form_snapshot)
    await flow.start_payment("0712345678")

    assert flow.on_cancel() is SessionState.CANCELLED
    assert flow.current_step is CheckoutStep.FAILED
    assert flow.error_message == "Payment cancelled by user."

    flow.retry_payment()
    assert flow.current_step is CheckoutStep.INITIATE

    await flow.start_payment("0712345678")
    assert payments.calls["initiate_payment"] == 2


@pytest.mark.asyncio
async def test_start_new_application_resets_everything(flow, applications, timers, form_snapshot):
    first = await flow.proceed_to_payment(form_snapshot)
    await flow.start_payment("0712345678")
    old_session = flow.session

    flow.start_new_application()

    assert old_session.closed
    assert flow.application is None
    assert flow.session.state is SessionState.IDLE
    assert flow.finalizer.state is FinalizationState.IDLE

    second = await flow.proceed_to_payment(form_snapshot)
    assert second.application_id != first.application_id


def test_document_set_from_snapshot_keeps_entries_without_files():
    documents = document_set_from_snapshot({
        "passport": {"name": "passport.pdf", "contentBase64": base64.b64encode(b"abc").decode()},
        "kraPin": {"name": "pin.pdf"},
        "photo": None,
    })

    assert set(documents.entries) == {"passport", "kraPin"}
    assert documents.entries["passport"].content == b"abc"
    assert documents.entries["passport"].size == 3
    assert [e.document_type for e in documents.sendable()] == ["passport"]
