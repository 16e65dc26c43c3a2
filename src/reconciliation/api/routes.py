"""FastAPI routes for payment notifications and payment status."""

import json
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Query, Request

from reconciliation.api.schemas import (
    AuthorityConfigResponse,
    ConfigureAuthorityRequest,
    LegacyStatusResponse,
    NotificationAckResponse,
    PaymentRecordSchema,
    PaymentStatusResponse,
    VerifyPaymentRequest,
)
from reconciliation.authority import get_authority
from reconciliation.authority.fake_adapter import FakeAuthority
from reconciliation.authority.port import TransactionRecord, parse_status
from reconciliation.config import get_settings
from reconciliation.engine.notification import parse_notification
from reconciliation.engine.reconciler import build_engine
from reconciliation.errors import RetryableError, StoreUnavailable
from reconciliation.payment.status import PaymentStatusResult, StatusQueryService
from reconciliation.store import get_store

payment_router = APIRouter(prefix="/payments", tags=["payments"])


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Malformed notification body") from exc
    return payload if isinstance(payload, dict) else {}


def _status_response(result: PaymentStatusResult) -> PaymentStatusResponse:
    record = PaymentRecordSchema.model_validate(result.record) if result.record else None
    return PaymentStatusResponse(paid=result.paid, record=record)


@payment_router.post("/webhook", response_model=NotificationAckResponse)
async def receive_notification(
    request: Request,
    x_signature: str = Header(default=""),
    x_request_id: str = Header(default=""),
) -> NotificationAckResponse:
    """Receive a payment authority notification.

    Answers 200 for every business outcome (including ignored notifications)
    and 500 only when the authority should redeliver.
    """
    event = parse_notification(await _json_body(request), dict(request.query_params))
    if not get_authority().verify_notification_signature(event.resource_id, x_signature, x_request_id):
        raise HTTPException(status_code=401, detail="Invalid notification signature")

    ack = await build_engine().handle_event(event)
    if ack.retry:
        raise HTTPException(status_code=500, detail=ack.error or "Retry later")

    return NotificationAckResponse(
        status=ack.outcome.status.value,
        reason=ack.outcome.reason.value if ack.outcome.reason else None,
    )


@payment_router.get("/status", response_model=PaymentStatusResponse)
async def payment_status(item_id: str, session_id: str | None = None) -> PaymentStatusResponse:
    """Has this item been paid for (in this session)?"""
    try:
        result = await StatusQueryService(get_store()).query_status(item_id, session_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="Payment store unavailable") from exc
    return _status_response(result)


@payment_router.get("/webhook_estado", response_model=LegacyStatusResponse)
async def legacy_payment_status(libro_id: str = Query(alias="libroId")) -> LegacyStatusResponse:
    """Status lookup in the shape existing storefront clients poll."""
    try:
        result = await StatusQueryService(get_store()).query_status(libro_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="Payment store unavailable") from exc
    return LegacyStatusResponse(pago_exitoso=result.paid)


@payment_router.post("/verify", response_model=PaymentStatusResponse)
async def verify_payment(body: VerifyPaymentRequest) -> PaymentStatusResponse:
    """Ask the authority directly about an item, reconcile what it reports, then answer."""
    engine = build_engine()
    try:
        await engine.reconcile_reference(body.item_id, body.session_id)
        result = await StatusQueryService(engine.store).query_status(body.item_id, body.session_id or None)
    except RetryableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _status_response(result)


@payment_router.post("/authority/configure", response_model=AuthorityConfigResponse)
async def configure_authority(body: ConfigureAuthorityRequest) -> AuthorityConfigResponse:
    """Configure the FakeAuthority (non-production only).

    Seeds transactions and toggles availability so the full notification path
    can be driven by hand.
    """
    if get_settings().is_production:
        raise HTTPException(status_code=403, detail="Authority configuration not available in production")

    authority = get_authority()
    if not isinstance(authority, FakeAuthority):
        raise HTTPException(status_code=400, detail="Authority configuration only available for FakeAuthority")

    authority.configure(available=body.available, failure_reason=body.failure_reason)
    for seed in body.transactions:
        authority.add_transaction(
            TransactionRecord(
                transaction_id=seed.transaction_id,
                status=parse_status(seed.status),
                amount=seed.amount,
                currency=seed.currency,
                external_reference=seed.external_reference,
                metadata=seed.metadata,
            )
        )

    return AuthorityConfigResponse(
        authority=type(authority).__name__,
        available=authority.available,
        failure_reason=authority.failure_reason,
        transactions=len(authority.transactions),
    )
