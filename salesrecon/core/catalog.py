# salesrecon/core/catalog.py

"""
Read-only, pre-normalized view of a tenant's active catalog.

Built once per staging pass or search so every line is scored against the
same snapshot.
"""

from typing import Iterable, Optional
from pydantic import BaseModel

from salesrecon.models import CatalogItem
from salesrecon.core.normalizers import normalize


class CatalogName(BaseModel):
    """One searchable name of an item (canonical or alias)."""

    text: str
    tokens: tuple[str, ...]
    is_alias: bool

    @property
    def key(self) -> str:
        return " ".join(self.tokens)


class IndexedItem(BaseModel):
    item: CatalogItem
    names: tuple[CatalogName, ...]


class CatalogIndex:
    """Catalog snapshot keyed by item id, with normalized names."""

    def __init__(self, items: Iterable[CatalogItem]):
        self._entries: dict[str, IndexedItem] = {}
        for item in items:
            if not item.active:
                continue
            names = [CatalogName(text=item.name, tokens=tuple(normalize(item.name)), is_alias=False)]
            for alias in item.aliases:
                tokens = tuple(normalize(alias))
                if tokens:
                    names.append(CatalogName(text=alias, tokens=tokens, is_alias=True))
            self._entries[item.id] = IndexedItem(item=item, names=tuple(names))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries.values())

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._entries

    def get(self, item_id: str) -> Optional[CatalogItem]:
        entry = self._entries.get(item_id)
        return entry.item if entry else None

    def entry(self, item_id: str) -> Optional[IndexedItem]:
        return self._entries.get(item_id)
