"""
Portal response dialect detection.

Portal servers answer discovery requests in one of two shapes:

- grouped_by_product (A): ``GET /apis?includeSchema=true`` returns API
  versions, either grouped under ``apiProductId`` / ``apiVersions`` or as a
  flat list of entries keyed by ``apiId``.
- flat_with_summaries (B): ``GET /api-products`` returns product summaries
  keyed by ``id``; versions are fetched per product.

Classification keys off fields that only one dialect ever sends:
``apiVersions``, ``apiProductId`` or ``apiId`` mean A; a bare ``id`` with
none of those means B. ``versionsCount`` is deliberately not consulted.
"""
from __future__ import annotations
from enum import Enum
from typing import Any


class PortalDialect(str, Enum):
    UNKNOWN = "unknown"
    GROUPED_BY_PRODUCT = "grouped_by_product"
    FLAT_WITH_SUMMARIES = "flat_with_summaries"

    @property
    def is_known(self) -> bool:
        return self is not PortalDialect.UNKNOWN

    @property
    def other(self) -> "PortalDialect":
        """The alternate known dialect (A for unknown)."""
        if self is PortalDialect.GROUPED_BY_PRODUCT:
            return PortalDialect.FLAT_WITH_SUMMARIES
        return PortalDialect.GROUPED_BY_PRODUCT


DIALECT_A_MARKERS = ("apiVersions", "apiProductId", "apiId")

DISCOVERY_PATHS: dict[PortalDialect, str] = {
    PortalDialect.GROUPED_BY_PRODUCT: "/apis?includeSchema=true",
    PortalDialect.FLAT_WITH_SUMMARIES: "/api-products",
}


def classify(raw: Any) -> PortalDialect:
    """Classify a decoded discovery response. Pure; no I/O."""
    if not isinstance(raw, list) or not raw:
        return PortalDialect.UNKNOWN
    first = raw[0]
    if not isinstance(first, dict):
        return PortalDialect.UNKNOWN
    if any(marker in first for marker in DIALECT_A_MARKERS):
        return PortalDialect.GROUPED_BY_PRODUCT
    if "id" in first:
        return PortalDialect.FLAT_WITH_SUMMARIES
    return PortalDialect.UNKNOWN


def is_grouped_by_product(raw: Any) -> bool:
    """True when a dialect A payload nests versions under products."""
    return (
        isinstance(raw, list)
        and bool(raw)
        and isinstance(raw[0], dict)
        and "apiVersions" in raw[0]
    )


def discovery_url(base_url: str, dialect: PortalDialect) -> str:
    """Discovery endpoint for ``dialect`` (A is the default first probe)."""
    if not dialect.is_known:
        dialect = PortalDialect.GROUPED_BY_PRODUCT
    return f"{base_url.rstrip('/')}{DISCOVERY_PATHS[dialect]}"
