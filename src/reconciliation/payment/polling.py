"""Caller-side waiting for a payment to show up.

Buyers return from checkout before the authority's notification has been
reconciled. Waiting is the caller's policy, layered over the status service:
poll at a fixed interval, give up after a fixed number of attempts, and hand
back the last answer either way.
"""

from tenacity import AsyncRetrying, retry_if_exception_type, retry_if_result, stop_after_attempt, wait_fixed

from reconciliation.config import get_settings
from reconciliation.errors import StoreUnavailable
from reconciliation.payment.status import PaymentStatusResult, StatusQueryService


async def wait_for_payment(
    service: StatusQueryService,
    item_id: str,
    session_id: str | None = None,
    *,
    interval: float | None = None,
    attempts: int | None = None,
) -> PaymentStatusResult:
    settings = get_settings()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts or settings.STATUS_POLL_ATTEMPTS),
        wait=wait_fixed(settings.STATUS_POLL_INTERVAL_SECONDS if interval is None else interval),
        retry=retry_if_result(lambda result: not result.paid) | retry_if_exception_type(StoreUnavailable),
        # Out of attempts: return the last answer (or re-raise the last outage).
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return await retrying(service.query_status, item_id, session_id)
