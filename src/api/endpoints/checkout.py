"""
Checkout endpoints for the buy-online wizard.

Each wizard submission gets one CheckoutFlow, addressed by the submission id
the front end generates when the review step opens.
"""

import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from src.checkout.flow import CheckoutFlow
from src.checkout.store import CheckoutStore
from src.integrations.clients.factory import build_backends
from src.integrations.contracts.errors import (
    CheckoutError,
    DocumentUploadFailure,
    InvalidTransition,
    PartialFailure,
    PaymentRejected,
    TransportFailure,
    ValidationFailure,
)
from src.utils.checkout_config import load_checkout_config

logger = logging.getLogger(__name__)

api = APIRouter()
checkout_api = api

_store: Optional[CheckoutStore] = None


class PaymentStartRequest(BaseModel):
    phone_number: str = Field(..., description="M-Pesa number to receive the STK prompt, e.g. 0712345678")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, description="Shown to the customer instead of the default")


def build_default_store() -> CheckoutStore:
    config = load_checkout_config()
    applications, payments = build_backends(config)

    def _factory(submission_id: str) -> CheckoutFlow:
        return CheckoutFlow(applications, payments, config=config)

    return CheckoutStore(
        _factory,
        completed_retention_seconds=config.store.completed_retention_seconds,
        idle_timeout_seconds=config.store.idle_timeout_seconds,
    )


def get_store() -> CheckoutStore:
    global _store
    if _store is None:
        _store = build_default_store()
    return _store


def _get_flow(store: CheckoutStore, submission_id: str) -> CheckoutFlow:
    flow = store.get(submission_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Checkout not found")
    return flow


def _raise_http(exc: CheckoutError) -> NoReturn:
    if isinstance(exc, ValidationFailure):
        raise HTTPException(status_code=422, detail={"message": exc.message, "errors": exc.field_errors})
    if isinstance(exc, PaymentRejected):
        raise HTTPException(status_code=400, detail={"message": exc.message, **exc.payload})
    if isinstance(exc, InvalidTransition):
        raise HTTPException(status_code=409, detail={"message": exc.message})
    if isinstance(exc, PartialFailure):
        raise HTTPException(
            status_code=502,
            detail={"message": exc.message, "payment_reference": exc.payment_reference},
        )
    if isinstance(exc, (TransportFailure, DocumentUploadFailure)):
        raise HTTPException(status_code=502, detail={"message": exc.message})
    raise HTTPException(status_code=500, detail={"message": exc.message})


@api.post("/{submission_id}/draft", tags=["Checkout"])
async def create_draft(
    submission_id: str,
    form_snapshot: Dict[str, Any] = Body(...),
    store: CheckoutStore = Depends(get_store),
):
    flow = store.get_or_create(submission_id)
    try:
        await flow.proceed_to_payment(form_snapshot)
    except CheckoutError as exc:
        _raise_http(exc)
    return flow.snapshot()


@api.post("/{submission_id}/payment", tags=["Checkout"])
async def start_payment(
    submission_id: str,
    request: PaymentStartRequest,
    store: CheckoutStore = Depends(get_store),
):
    flow = _get_flow(store, submission_id)
    try:
        await flow.start_payment(request.phone_number)
    except CheckoutError as exc:
        _raise_http(exc)
    return flow.snapshot()


@api.get("/{submission_id}", tags=["Checkout"])
async def get_checkout(submission_id: str, store: CheckoutStore = Depends(get_store)):
    return _get_flow(store, submission_id).snapshot()


@api.post("/{submission_id}/payment/retry", tags=["Checkout"])
async def retry_payment(submission_id: str, store: CheckoutStore = Depends(get_store)):
    flow = _get_flow(store, submission_id)
    try:
        flow.retry_payment()
    except CheckoutError as exc:
        _raise_http(exc)
    return flow.snapshot()


@api.post("/{submission_id}/payment/cancel", tags=["Checkout"])
async def cancel_payment(
    submission_id: str,
    request: Optional[CancelRequest] = None,
    store: CheckoutStore = Depends(get_store),
):
    flow = _get_flow(store, submission_id)
    if request is not None and request.reason:
        flow.session.cancel(request.reason)
    else:
        flow.on_cancel()
    return flow.snapshot()


@api.post("/{submission_id}/finalize/retry", tags=["Checkout"])
async def retry_finalization(submission_id: str, store: CheckoutStore = Depends(get_store)):
    flow = _get_flow(store, submission_id)
    try:
        await flow.retry_finalization()
    except CheckoutError as exc:
        _raise_http(exc)
    return flow.snapshot()


@api.post("/{submission_id}/documents/retry", tags=["Checkout"])
async def retry_documents(submission_id: str, store: CheckoutStore = Depends(get_store)):
    flow = _get_flow(store, submission_id)
    try:
        await flow.retry_documents()
    except CheckoutError as exc:
        _raise_http(exc)
    return flow.snapshot()


@api.delete("/{submission_id}", tags=["Checkout"])
async def close_checkout(submission_id: str, store: CheckoutStore = Depends(get_store)):
    if not store.discard(submission_id):
        raise HTTPException(status_code=404, detail="Checkout not found")
    return {"submission_id": submission_id, "closed": True}
