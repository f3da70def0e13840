"""
Catalog connection.

The sync provider hands each mutation to a CatalogConnection. A "full"
mutation replaces everything previously stored under the same location
key, so entities the portal stopped reporting disappear.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any

from core.catalog.entity_builder import MutationBatch


class CatalogConnection(ABC):
    @abstractmethod
    async def apply_mutation(self, batch: MutationBatch) -> None:
        ...


class InMemoryCatalogConnection(CatalogConnection):
    """In-memory catalog store. Replace backing store for production."""

    def __init__(self):
        self._by_location: dict[str, list[dict[str, Any]]] = {}
        self.history: list[MutationBatch] = []

    async def apply_mutation(self, batch: MutationBatch) -> None:
        if batch.type != "full":
            raise ValueError(f"Unsupported mutation type: {batch.type}")
        grouped: dict[str, list[dict[str, Any]]] = {}
        for deferred in batch.entities:
            grouped.setdefault(deferred.location_key, []).append(deferred.entity)
        self._by_location.update(grouped)
        self.history.append(batch)

    def entities(self, location_key: str | None = None) -> list[dict[str, Any]]:
        if location_key is not None:
            return list(self._by_location.get(location_key, []))
        return [e for entities in self._by_location.values() for e in entities]

    def entity_names(self, kind: str, location_key: str | None = None) -> list[str]:
        return [
            e["metadata"]["name"]
            for e in self.entities(location_key)
            if e.get("kind") == kind
        ]
