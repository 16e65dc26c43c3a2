"""Canonical notification event, parsed at the boundary.

The authority delivers the same classification under several shapes:

- webhook body:   ``{"type": "payment", "data": {"id": "123"}, "id": 987}``
- IPN body:       ``{"topic": "merchant_order", "resource": "https://.../merchant_orders/55"}``
- query string:   ``?topic=payment&id=123`` or ``?type=payment&data.id=123``

``parse_notification`` folds all of them into one ``NotificationEvent`` so the
engine never sees transport-format churn.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class NotificationTopic(Enum):
    PAYMENT = "payment"
    MERCHANT_ORDER = "merchant_order"
    UNKNOWN = "unknown"


_TOPIC_ALIASES = {
    "payment": NotificationTopic.PAYMENT,
    "payments": NotificationTopic.PAYMENT,
    "merchant_order": NotificationTopic.MERCHANT_ORDER,
    "topic_merchant_order_wh": NotificationTopic.MERCHANT_ORDER,
}


@dataclass(frozen=True)
class NotificationEvent:
    topic: NotificationTopic
    resource_id: str = ""
    event_id: str | None = None
    action: str | None = None


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _resource_tail(resource: str) -> str:
    """``https://api.mercadolibre.com/merchant_orders/55`` → ``55``."""
    return resource.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]


def parse_topic(raw: Any) -> NotificationTopic:
    return _TOPIC_ALIASES.get(_clean(raw).lower(), NotificationTopic.UNKNOWN)


def parse_notification(
    body: Mapping[str, Any] | None,
    query: Mapping[str, Any] | None = None,
) -> NotificationEvent:
    body = body or {}
    query = query or {}

    raw_topic = body.get("type") or body.get("topic") or query.get("type") or query.get("topic")

    data = body.get("data") if isinstance(body.get("data"), Mapping) else {}
    data_style = bool(data) or "type" in body

    resource = (
        _clean(data.get("id"))
        or _clean(query.get("data.id"))
        or _clean(body.get("resource"))
        or _clean(query.get("resource"))
        or _clean(query.get("id"))
    )
    if not resource and not data_style:
        # IPN bodies without a resource carry the resource id in "id"
        resource = _clean(body.get("id"))

    return NotificationEvent(
        topic=parse_topic(raw_topic),
        resource_id=_resource_tail(resource) if resource else "",
        event_id=(_clean(body.get("id")) or None) if data_style else None,
        action=_clean(body.get("action")) or None,
    )
