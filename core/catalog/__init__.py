"""
Catalog side of the portal sync.

- EntityMutationBuilder: normalized API versions → full replacement mutation
- sanitize: catalog naming grammar enforcement
- CatalogConnection: where mutations are applied
"""
from core.catalog.connection import (
    CatalogConnection,
    InMemoryCatalogConnection,
)
from core.catalog.entity_builder import (
    DeferredEntity,
    EntityMutationBuilder,
    MutationBatch,
    sanitize,
)

__all__ = [
    "CatalogConnection",
    "InMemoryCatalogConnection",
    "DeferredEntity",
    "EntityMutationBuilder",
    "MutationBatch",
    "sanitize",
]
