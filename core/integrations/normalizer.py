"""
Portal Dialect Normalizer — Discovery + Flattening.

Turns whatever the portal server returns into a flat list of
ApiVersionRecord, one per API version:
- Sticky dialect guess with a single fallback probe on misdetection
- Dialect A: product groups flattened, missing schemas fetched per API
- Dialect B: versions fetched per product summary
- Every secondary fetch isolated: one bad API or product never blanks the cycle
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union
from urllib.parse import quote
import asyncio
import logging

import httpx
from pydantic import ValidationError

from core.integrations.dialect import (
    PortalDialect,
    classify,
    discovery_url,
    is_grouped_by_product,
)
from core.integrations.portal_client import PortalClient, PortalRequestError
from core.integrations.portal_types import (
    ApiProductGroup,
    ApiProductSummary,
    ApiVersionEntry,
    ProductVersionEntry,
)

logger = logging.getLogger(__name__)

SchemaDocument = Union[str, dict[str, Any]]


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------

@dataclass
class ApiVersionRecord:
    """Dialect-agnostic API version. Rebuilt from scratch every cycle."""
    id: str
    display_title: str = ""
    description: str = ""
    schema_document: Optional[SchemaDocument] = None
    version_tag: str | None = None
    product_description: str | None = None
    product_id: str | None = None
    product_display_name: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    normalized_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class DiscoveryProbe:
    """Outcome of one discovery request."""
    url: str
    dialect: PortalDialect = PortalDialect.UNKNOWN
    payload: Any = None
    error: PortalRequestError | None = None


# ---------------------------------------------------------------------------
# DialectNormalizer
# ---------------------------------------------------------------------------

class DialectNormalizer:
    """Fetches the portal catalog and normalizes it to ApiVersionRecord."""

    def __init__(
        self,
        base_url: str,
        client: Optional[PortalClient] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_concurrency: int = 10,
    ):
        self.client = client or PortalClient(base_url, timeout=timeout, transport=transport)
        self.max_concurrency = max(1, max_concurrency)
        self.base_url = self.client.base_url
        self._dialect = PortalDialect.UNKNOWN
        self.discovery_endpoint = discovery_url(self.base_url, self._dialect)

    @property
    def dialect(self) -> PortalDialect:
        return self._dialect

    @dialect.setter
    def dialect(self, value: PortalDialect) -> None:
        # Once known, the dialect never goes back to unknown.
        if not value.is_known:
            return
        if value is not self._dialect:
            logger.info("Portal dialect is now %s", value.value)
        self._dialect = value
        self.discovery_endpoint = discovery_url(self.base_url, value)

    @property
    def apis_endpoint(self) -> str:
        return f"{self.base_url}/apis"

    def _set_base_url(self, base_url: str) -> None:
        base_url = base_url.rstrip("/")
        if base_url == self.base_url:
            return
        self.base_url = base_url
        self.client.base_url = base_url
        self.discovery_endpoint = discovery_url(base_url, self._dialect)

    # --- Discovery ---

    async def fetch_and_normalize(
        self,
        auth_header: dict[str, str],
        base_url: str | None = None,
        current_dialect: PortalDialect | None = None,
    ) -> list[ApiVersionRecord]:
        """Discover the catalog and return one record per API version.

        The first probe uses ``current_dialect`` (or the sticky dialect, or
        A when nothing is known yet). If that probe fails or the response
        looks like something else, the other endpoint is probed once.
        Raises the last PortalRequestError only when both probes fail.
        """
        if base_url:
            self._set_base_url(base_url)

        guess = current_dialect if current_dialect and current_dialect.is_known else self._dialect
        if not guess.is_known:
            guess = PortalDialect.GROUPED_BY_PRODUCT

        first = await self._probe(guess, auth_header)
        chosen: DiscoveryProbe | None = first if first.dialect is guess else None

        if chosen is None:
            logger.info(
                "Discovery response from %s was not %s; probing the %s endpoint",
                first.url, guess.value, guess.other.value,
            )
            second = await self._probe(guess.other, auth_header)
            if second.dialect.is_known:
                chosen = second
            elif first.dialect.is_known:
                chosen = first
            elif first.error is not None and second.error is not None:
                raise second.error
            else:
                logger.info("Portal server reported no APIs")
                return []

        self.dialect = chosen.dialect
        if chosen.dialect is PortalDialect.GROUPED_BY_PRODUCT:
            return await self._normalize_grouped(chosen.payload, auth_header)
        return await self._normalize_summaries(chosen.payload, auth_header)

    async def _probe(self, dialect: PortalDialect, auth_header: dict[str, str]) -> DiscoveryProbe:
        url = discovery_url(self.base_url, dialect)
        try:
            payload = await self.client.get_json(url, auth_header)
        except PortalRequestError as exc:
            logger.warning("Discovery request to %s failed: %s", url, exc)
            return DiscoveryProbe(url=url, error=exc)
        logger.debug("Fetched discovery payload from %s: %s", url, payload)
        return DiscoveryProbe(url=url, dialect=classify(payload), payload=payload)

    # --- Dialect A ---

    async def _normalize_grouped(
        self, payload: list[Any], auth_header: dict[str, str]
    ) -> list[ApiVersionRecord]:
        entries = self._flatten_products(payload) if is_grouped_by_product(payload) else [
            entry for entry in (self._parse_version(raw) for raw in payload) if entry
        ]
        records = [self._record_from_version(entry) for entry in entries]

        pending: list[ApiVersionRecord] = []
        for entry, record in zip(entries, records):
            if entry.schema_document is not None:
                continue
            if entry.schema_fetch_error:
                logger.warning(
                    "Portal could not load the schema for API %s: %s",
                    entry.api_id, entry.schema_fetch_error,
                )
                continue
            pending.append(record)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        schemas = await asyncio.gather(
            *(self._fetch_schema_with_limit(semaphore, record.id, auth_header) for record in pending)
        )
        for record, schema in zip(pending, schemas):
            record.schema_document = schema
        return records

    def _flatten_products(self, payload: list[Any]) -> list[ApiVersionEntry]:
        entries: list[ApiVersionEntry] = []
        for raw_product in payload:
            try:
                product = ApiProductGroup.model_validate(raw_product)
            except ValidationError as exc:
                logger.warning("Skipping malformed API product: %s", exc)
                continue
            for raw_version in product.api_versions:
                if not isinstance(raw_version, dict):
                    logger.warning("Skipping malformed API version in product %s", product.api_product_id)
                    continue
                entry = self._parse_version({
                    **raw_version,
                    "apiProductId": product.api_product_id,
                    "apiProductDisplayName": product.api_product_display_name,
                    "apiProductDescription": product.api_product_description,
                })
                if entry:
                    entries.append(entry)
        return entries

    @staticmethod
    def _parse_version(raw: Any) -> ApiVersionEntry | None:
        try:
            return ApiVersionEntry.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping malformed API version: %s", exc)
            return None

    @staticmethod
    def _record_from_version(entry: ApiVersionEntry) -> ApiVersionRecord:
        return ApiVersionRecord(
            id=entry.api_id,
            display_title=entry.title or entry.api_id,
            description=entry.description or "",
            schema_document=entry.schema_document,
            version_tag=entry.api_version,
            product_description=entry.api_product_description,
            product_id=entry.api_product_id,
            product_display_name=entry.api_product_display_name,
            raw_data=entry.model_dump(by_alias=True, exclude={"schema_document"}),
        )

    async def _fetch_schema_with_limit(
        self, semaphore: asyncio.Semaphore, api_id: str, auth_header: dict[str, str]
    ) -> SchemaDocument | None:
        async with semaphore:
            return await self._fetch_schema(api_id, auth_header)

    async def _fetch_schema(self, api_id: str, auth_header: dict[str, str]) -> SchemaDocument | None:
        url = f"{self.apis_endpoint}/{quote(api_id, safe='')}/schema"
        try:
            return await self.client.get_json(url, auth_header)
        except PortalRequestError as exc:
            logger.warning("Could not fetch the schema for API %s from %s: %s", api_id, url, exc)
            return None

    # --- Dialect B ---

    async def _normalize_summaries(
        self, payload: list[Any], auth_header: dict[str, str]
    ) -> list[ApiVersionRecord]:
        summaries: list[ApiProductSummary] = []
        for raw in payload:
            try:
                summaries.append(ApiProductSummary.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed API product summary: %s", exc)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        version_lists = await asyncio.gather(
            *(self._fetch_versions_with_limit(semaphore, summary, auth_header) for summary in summaries)
        )

        records: list[ApiVersionRecord] = []
        for summary, versions in zip(summaries, version_lists):
            if versions is None:
                continue
            for raw_version in versions:
                try:
                    version = ProductVersionEntry.model_validate(raw_version)
                except ValidationError as exc:
                    logger.warning("Skipping malformed version of product %s: %s", summary.id, exc)
                    continue
                records.append(ApiVersionRecord(
                    id=version.id,
                    display_title=version.title or version.id,
                    description=version.description or "",
                    schema_document=version.openapi_spec,
                    version_tag=version.api_version or version.name,
                    product_description=summary.description,
                    product_id=summary.id,
                    product_display_name=summary.name,
                    raw_data=version.model_dump(by_alias=True, exclude={"openapi_spec"}),
                ))
        return records

    async def _fetch_versions_with_limit(
        self, semaphore: asyncio.Semaphore, summary: ApiProductSummary, auth_header: dict[str, str]
    ) -> list[Any] | None:
        async with semaphore:
            return await self._fetch_product_versions(summary, auth_header)

    async def _fetch_product_versions(
        self, summary: ApiProductSummary, auth_header: dict[str, str]
    ) -> list[Any] | None:
        url = f"{self.base_url}/{quote(summary.id, safe='')}/versions"
        try:
            versions = await self.client.get_json(url, auth_header)
        except PortalRequestError as exc:
            logger.warning("Could not fetch versions for API product %s from %s: %s", summary.id, url, exc)
            return None
        if not isinstance(versions, list):
            logger.warning("Versions for API product %s from %s are not a list", summary.id, url)
            return None
        return versions
