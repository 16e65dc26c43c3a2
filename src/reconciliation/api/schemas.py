"""Pydantic request/response schemas for the reconciliation API.

These are external contracts (anti-corruption layer), kept apart from the
engine's internal records.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class PaymentRecordSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    session_id: str
    transaction_id: str | None = None
    amount: Decimal
    currency: str
    derived_asset_url: str | None = None
    created_at: datetime
    amended_at: datetime | None = None


class SeedTransactionSchema(BaseModel):
    transaction_id: str
    status: str = "approved"
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None
    external_reference: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class VerifyPaymentRequest(BaseModel):
    item_id: str = Field(min_length=1)
    session_id: str = ""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "item_id": "42",
                    "session_id": "abc123",
                }
            ]
        }
    }


class ConfigureAuthorityRequest(BaseModel):
    available: bool = True
    failure_reason: str = "Authority unavailable"
    transactions: list[SeedTransactionSchema] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class NotificationAckResponse(BaseModel):
    status: str
    reason: str | None = None


class PaymentStatusResponse(BaseModel):
    paid: bool
    record: PaymentRecordSchema | None = None


class LegacyStatusResponse(BaseModel):
    pago_exitoso: bool


class AuthorityConfigResponse(BaseModel):
    authority: str
    available: bool
    failure_reason: str
    transactions: int
