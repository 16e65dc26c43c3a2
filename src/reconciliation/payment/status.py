"""Payment status: "has item X been paid for (in session S)?".

A single read against the payment store. Unknown items answer ``paid=False``
rather than an error, so the endpoint does not reveal which items exist.
"""

from dataclasses import dataclass

import structlog

from reconciliation.payment.record import PaymentRecord, PaymentStatus, canonical_item_id
from reconciliation.store.port import PaymentStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentStatusResult:
    paid: bool
    record: PaymentRecord | None = None


class StatusQueryService:
    def __init__(self, store: PaymentStore) -> None:
        self.store = store

    async def query_status(self, item_id: str, session_id: str | None = None) -> PaymentStatusResult:
        """Latest approved record for the item, scoped to ``session_id`` when given."""
        item = canonical_item_id(item_id)
        if not item:
            return PaymentStatusResult(paid=False)

        record = await self.store.find_by_item_session(item, session_id)
        if record is None or record.status is not PaymentStatus.APPROVED:
            logger.debug("No approved payment", item_id=item, session_id=session_id)
            return PaymentStatusResult(paid=False)
        return PaymentStatusResult(paid=True, record=record)
