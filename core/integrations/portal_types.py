"""Wire models for the API portal server and its token endpoint."""
from __future__ import annotations
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PortalModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)


class TokenResponse(PortalModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


# ---------------------------------------------------------------------------
# Dialect A: APIs grouped by product (or a flat list of versions)
# ---------------------------------------------------------------------------

class ApiVersionEntry(PortalModel):
    api_id: str = Field(alias="apiId")
    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    title: Optional[str] = None
    description: Optional[str] = None
    api_product_id: Optional[str] = Field(default=None, alias="apiProductId")
    api_product_display_name: Optional[str] = Field(default=None, alias="apiProductDisplayName")
    api_product_description: Optional[str] = Field(default=None, alias="apiProductDescription")
    schema_document: Optional[Union[str, dict[str, Any]]] = Field(default=None, alias="schema")
    schema_fetch_error: Optional[str] = Field(default=None, alias="schemaFetchError")


class ApiProductGroup(PortalModel):
    api_product_id: str = Field(alias="apiProductId")
    api_product_display_name: Optional[str] = Field(default=None, alias="apiProductDisplayName")
    api_product_description: Optional[str] = Field(default=None, alias="apiProductDescription")
    api_versions: list[dict[str, Any]] = Field(default_factory=list, alias="apiVersions")


# ---------------------------------------------------------------------------
# Dialect B: flat product summaries, versions fetched per product
# ---------------------------------------------------------------------------

class ApiProductSummary(PortalModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    versions_count: Optional[int] = Field(default=None, alias="versionsCount")


class ProductVersionEntry(PortalModel):
    id: str
    name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    openapi_spec: Optional[Union[str, dict[str, Any]]] = Field(default=None, alias="openapiSpec")
