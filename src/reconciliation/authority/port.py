"""Payment authority port (abstract interface).

Defines the read-only contract every payment authority adapter must implement,
plus the immutable snapshots it returns. This enables swapping between
FakeAuthority (dev/test) and MercadoPagoAuthority (production) without changing
the reconciliation engine.

Adapters return ``None`` for records the authority does not know and raise
``TransientAuthorityError`` for anything that may heal on redelivery.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class TransactionStatus(Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    UNKNOWN = "Unknown"


# Authority status strings mapped onto the four states the engine understands.
_STATUS_MAP = {
    "approved": TransactionStatus.APPROVED,
    "pending": TransactionStatus.PENDING,
    "in_process": TransactionStatus.PENDING,
    "in_mediation": TransactionStatus.PENDING,
    "authorized": TransactionStatus.PENDING,
    "rejected": TransactionStatus.REJECTED,
    "cancelled": TransactionStatus.REJECTED,
    "refunded": TransactionStatus.REJECTED,
    "charged_back": TransactionStatus.REJECTED,
}


def parse_status(raw: str | None) -> TransactionStatus:
    """Map an authority status string onto ``TransactionStatus``."""
    if not raw:
        return TransactionStatus.UNKNOWN
    return _STATUS_MAP.get(str(raw).strip().lower(), TransactionStatus.UNKNOWN)


def to_decimal(value: Any) -> Decimal | None:
    """Convert an authority amount to ``Decimal`` without passing through float math."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class LineItem:
    """One entry of a transaction's itemized breakdown."""

    item_id: str | None = None
    unit_price: Decimal | None = None
    quantity: int = 1


@dataclass(frozen=True)
class TransactionRecord:
    """Authoritative state of a single payment attempt."""

    transaction_id: str
    status: TransactionStatus
    amount: Decimal | None = None
    net_received_amount: Decimal | None = None
    installment_amount: Decimal | None = None
    currency: str | None = None
    external_reference: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    order_id: str | None = None
    line_items: tuple[LineItem, ...] = ()

    @property
    def is_approved(self) -> bool:
        return self.status == TransactionStatus.APPROVED


@dataclass(frozen=True)
class PaymentAttempt:
    """Summary of one transaction attempt inside an order."""

    transaction_id: str
    status: TransactionStatus
    amount: Decimal | None = None


@dataclass(frozen=True)
class OrderRecord:
    """An aggregate of transaction attempts belonging to one checkout."""

    order_id: str
    external_reference: str | None = None
    total_amount: Decimal | None = None
    payment_attempts: tuple[PaymentAttempt, ...] = ()

    @property
    def approved_attempts(self) -> tuple[PaymentAttempt, ...]:
        return tuple(a for a in self.payment_attempts if a.status == TransactionStatus.APPROVED)


class AuthorityClient(ABC):
    """Abstract payment authority interface."""

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        """Fetch a transaction by id. ``None`` when the authority does not know it."""
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> OrderRecord | None:
        """Fetch an order by id. ``None`` when the authority does not know it."""
        ...

    @abstractmethod
    async def search_orders_by_reference(self, external_reference: str) -> list[OrderRecord]:
        """Find orders whose external reference equals ``external_reference``."""
        ...

    @abstractmethod
    def verify_notification_signature(
        self,
        resource_id: str,
        signature: str,
        request_id: str,
    ) -> bool:
        """Verify that a notification is authentically from the authority."""
        ...
