"""Mercado Pago payment authority adapter.

Talks to the Mercado Pago REST API with an ``httpx.AsyncClient``:

- ``GET /v1/payments/{id}``          → TransactionRecord
- ``GET /merchant_orders/{id}``      → OrderRecord
- ``GET /merchant_orders/search``    → [OrderRecord] by external reference

Response bodies are decoded with ``parse_float=Decimal`` so amounts never pass
through binary floating point. 404 maps to ``None``; every other failure
(transport error, timeout, non-2xx, unparseable body) maps to
``TransientAuthorityError``.
"""

import hashlib
import hmac
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar

import httpx
import structlog

from reconciliation.authority.port import (
    AuthorityClient,
    LineItem,
    OrderRecord,
    PaymentAttempt,
    TransactionRecord,
    parse_status,
    to_decimal,
)
from reconciliation.errors import TransientAuthorityError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _quantity(value: Any) -> int:
    if value in (None, ""):
        return 1
    return int(Decimal(str(value)))


def parse_transaction(payload: dict[str, Any]) -> TransactionRecord:
    """Build a ``TransactionRecord`` from a ``/v1/payments`` body."""
    details = payload.get("transaction_details") or {}
    additional = payload.get("additional_info") or {}
    order = payload.get("order") or {}
    line_items = tuple(
        LineItem(
            item_id=_str_or_none(item.get("id")),
            unit_price=to_decimal(item.get("unit_price")),
            quantity=_quantity(item.get("quantity")),
        )
        for item in additional.get("items") or []
    )
    return TransactionRecord(
        transaction_id=str(payload["id"]),
        status=parse_status(payload.get("status")),
        amount=to_decimal(payload.get("transaction_amount")),
        net_received_amount=to_decimal(details.get("net_received_amount")),
        installment_amount=to_decimal(details.get("installment_amount")),
        currency=_str_or_none(payload.get("currency_id")),
        external_reference=_str_or_none(payload.get("external_reference")),
        metadata=dict(payload.get("metadata") or {}),
        order_id=_str_or_none(order.get("id")),
        line_items=line_items,
    )


def parse_order(payload: dict[str, Any]) -> OrderRecord:
    """Build an ``OrderRecord`` from a ``/merchant_orders`` body."""
    attempts = tuple(
        PaymentAttempt(
            transaction_id=str(attempt["id"]),
            status=parse_status(attempt.get("status")),
            amount=to_decimal(attempt.get("transaction_amount")),
        )
        for attempt in payload.get("payments") or []
    )
    return OrderRecord(
        order_id=str(payload["id"]),
        external_reference=_str_or_none(payload.get("external_reference")),
        total_amount=to_decimal(payload.get("total_amount")),
        payment_attempts=attempts,
    )


class MercadoPagoAuthority(AuthorityClient):
    """Production Mercado Pago adapter."""

    def __init__(
        self,
        access_token: str,
        webhook_secret: str = "",
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 40.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.access_token = access_token
        self.webhook_secret = webhook_secret
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._client.headers["Authorization"] = f"Bearer {access_token}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Authority request failed", path=path, error=str(exc))
            raise TransientAuthorityError(f"Request to {path} failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Authority returned an error",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise TransientAuthorityError(
                f"Authority answered {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json(parse_float=Decimal)
        except ValueError as exc:
            raise TransientAuthorityError(
                f"Malformed response body for {path}",
                status_code=response.status_code,
            ) from exc

    def _parse(self, parser: Callable[[dict[str, Any]], T], payload: Any, path: str) -> T:
        try:
            return parser(payload)
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as exc:
            logger.warning("Unparseable authority payload", path=path, error=repr(exc))
            raise TransientAuthorityError(f"Unparseable payload from {path}: {exc!r}") from exc

    async def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        path = f"/v1/payments/{transaction_id}"
        payload = await self._get(path)
        return self._parse(parse_transaction, payload, path) if payload is not None else None

    async def get_order(self, order_id: str) -> OrderRecord | None:
        path = f"/merchant_orders/{order_id}"
        payload = await self._get(path)
        return self._parse(parse_order, payload, path) if payload is not None else None

    async def search_orders_by_reference(self, external_reference: str) -> list[OrderRecord]:
        payload = await self._get(
            "/merchant_orders/search",
            params={"external_reference": external_reference},
        )
        if payload is None:
            return []
        if not isinstance(payload, dict):
            raise TransientAuthorityError("Unparseable payload from /merchant_orders/search")
        elements = payload.get("elements") or payload.get("results") or []
        return [self._parse(parse_order, element, "/merchant_orders/search") for element in elements]

    def verify_notification_signature(self, resource_id: str, signature: str, request_id: str) -> bool:
        """Check the ``x-signature`` header (``ts=...,v1=<hmac-sha256>``).

        Verification is skipped when no webhook secret is configured.
        """
        if not self.webhook_secret:
            return True

        parts = dict(part.strip().split("=", 1) for part in signature.split(",") if "=" in part)
        ts, received = parts.get("ts"), parts.get("v1")
        if not ts or not received:
            return False

        manifest = f"id:{resource_id.lower()};request-id:{request_id};ts:{ts};"
        expected = hmac.new(self.webhook_secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, received)
