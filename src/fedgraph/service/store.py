"""
Entity stores - the per-subgraph persistence contract.

A subgraph only needs key lookups from its store to take part in federation:
``get`` for one key and ``get_many`` for a batch, where a missing key maps to
``None`` at its position instead of raising. Create/update/delete round out
the contract for the subgraph's own mutations.

Usage:
    users = InMemoryEntityStore([
        {"id": "U1", "name": "Alice", "email": "alice@example.com"},
    ])
    await users.get_many(["U1", "U404"])  # [{"id": "U1", ...}, None]
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Iterable, Optional, Sequence


class EntityStore(ABC):
    """Abstract key-addressed store for one entity type."""

    key_field: str = "id"

    @abstractmethod
    async def get(self, key: Any) -> Optional[dict[str, Any]]:
        """Point lookup; ``None`` if the key is unknown."""

    async def get_many(self, keys: Sequence[Any]) -> list[Optional[dict[str, Any]]]:
        """
        Batch lookup.

        Returns:
            One entry per input key, in input order; ``None`` for missing keys
        """
        return [await self.get(key) for key in keys]

    @abstractmethod
    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Insert an entity and return it (with its key)."""

    @abstractmethod
    async def update(self, key: Any, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Apply a partial update; ``None`` if the key is unknown."""

    @abstractmethod
    async def delete(self, key: Any) -> bool:
        """Delete by key; False if the key was unknown."""

    @abstractmethod
    async def list(self, **filters: Any) -> list[dict[str, Any]]:
        """All entities whose fields equal the given filter values."""


class InMemoryEntityStore(EntityStore):
    """
    Dict-backed store.

    Keys compare as strings, matching how GraphQL ``ID`` values travel.
    Returned entities are copies; mutating them never touches the store.
    """

    def __init__(self, items: Iterable[dict[str, Any]] = (), key_field: str = "id"):
        self.key_field = key_field
        self._items: dict[str, dict[str, Any]] = {}
        for item in items:
            self._items[str(item[key_field])] = deepcopy(item)

    def __len__(self) -> int:
        return len(self._items)

    async def get(self, key: Any) -> Optional[dict[str, Any]]:
        item = self._items.get(str(key))
        return deepcopy(item) if item is not None else None

    async def get_many(self, keys: Sequence[Any]) -> list[Optional[dict[str, Any]]]:
        return [await self.get(key) for key in keys]

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        item = deepcopy(data)
        if item.get(self.key_field) is None:
            item[self.key_field] = uuid.uuid4().hex
        key = str(item[self.key_field])
        if key in self._items:
            raise ValueError(f"Entity with {self.key_field}={key} already exists")
        self._items[key] = item
        return deepcopy(item)

    async def update(self, key: Any, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        item = self._items.get(str(key))
        if item is None:
            return None
        item.update({k: v for k, v in data.items() if k != self.key_field})
        return deepcopy(item)

    async def delete(self, key: Any) -> bool:
        return self._items.pop(str(key), None) is not None

    async def list(self, **filters: Any) -> list[dict[str, Any]]:
        return [
            deepcopy(item)
            for item in self._items.values()
            if all(item.get(name) == value for name, value in filters.items())
        ]
