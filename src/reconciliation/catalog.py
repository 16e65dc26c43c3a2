"""Item catalog: looks up the downloadable asset behind a paid item.

The reconciliation engine stores the asset URL on the payment record so the
status surface can hand it to the buyer without a second lookup.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping


class ItemCatalog(ABC):
    @abstractmethod
    async def asset_url(self, item_id: str) -> str | None:
        """Return the asset URL for ``item_id``, or ``None`` if it has none."""
        ...


class StaticItemCatalog(ItemCatalog):
    """Catalog backed by a fixed item id → URL mapping (``ITEM_ASSET_URLS``)."""

    def __init__(self, urls: Mapping[str, str] | None = None) -> None:
        self._urls = dict(urls or {})

    async def asset_url(self, item_id: str) -> str | None:
        return self._urls.get(item_id)
