"""Bounded authority calls and the per-attempt order loader."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from reconciliation.authority.port import AuthorityClient, OrderRecord
from reconciliation.errors import TransientAuthorityError

T = TypeVar("T")


async def call_authority(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await an authority call, turning a timeout into ``TransientAuthorityError``.

    Cancellation of the surrounding task is not caught: it propagates as-is.
    """
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as exc:
        raise TransientAuthorityError(f"{operation} timed out after {timeout}s") from exc


class OrderLoader:
    """Fetches the order behind a transaction at most once per reconciliation attempt.

    Both resolvers may need the order; whichever asks first triggers the fetch
    and every other caller, concurrent or later, gets the same snapshot.
    An order the authority does not know resolves to ``None``.
    """

    def __init__(
        self,
        authority: AuthorityClient,
        order_id: str | None,
        *,
        timeout: float | None = None,
        preloaded: OrderRecord | None = None,
    ) -> None:
        self.authority = authority
        self.order_id = preloaded.order_id if preloaded is not None else order_id
        self.timeout = timeout
        self._order = preloaded
        self._loaded = preloaded is not None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def get(self) -> OrderRecord | None:
        if self._loaded or not self.order_id:
            return self._order

        async with self._lock:
            if not self._loaded:
                self._order = await call_authority(
                    self.authority.get_order(self.order_id),
                    self.timeout,
                    f"get_order({self.order_id})",
                )
                self._loaded = True
        return self._order
