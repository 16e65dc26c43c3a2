"""PaymentRecord: the persisted, authoritative outcome of a reconciliation.

Lifecycle:
    (none) → Approved                      insert, on first approved reconciliation
    Approved(amount=0) → Approved(amount>0) single amendment, zero-amount backfill

Records are never deleted. Only approved outcomes are persisted, so a record's
existence is what "paid" means.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(Enum):
    APPROVED = "Approved"


def canonical_item_id(value: Any) -> str:
    """Canonical string form of an item id, used for every store key.

    Integers and integral floats render without a fractional part so that the
    authority echoing ``42``, ``42.0`` or ``"42"`` all land on the same key.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return str(int(value))
    return str(value).strip()


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid4()))
    transaction_id: str | None = None
    item_id: str = Field(min_length=1)
    session_id: str = ""
    status: PaymentStatus = PaymentStatus.APPROVED
    amount: Decimal = Field(ge=0)
    currency: str
    derived_asset_url: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    amended_at: datetime | None = None

    @property
    def is_zero_amount(self) -> bool:
        return self.amount == 0

    def with_backfilled_amount(self, amount: Decimal, transaction_id: str | None = None) -> "PaymentRecord":
        """Return the amended record for the one allowed zero-amount backfill.

        ``created_at`` is preserved; the transaction id is only replaced when a
        new one is supplied.
        """
        if not self.is_zero_amount:
            raise ValueError(f"Record {self.record_id} already carries amount {self.amount}")
        if amount <= 0:
            raise ValueError("Backfilled amount must be positive")

        return self.model_copy(
            update={
                "amount": amount,
                "transaction_id": transaction_id or self.transaction_id,
                "amended_at": datetime.now(UTC),
            }
        )
