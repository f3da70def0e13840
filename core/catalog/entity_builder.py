"""
Catalog entity builder.

Converts normalized API versions into a full replacement mutation for the
catalog: three fixed organizational entities (Group, User, System) plus one
API entity per version, all tagged with this provider's location key.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Literal
import json
import re

from core.integrations.normalizer import ApiVersionRecord

CATALOG_API_VERSION = "backstage.io/v1alpha1"
MAX_NAME_LENGTH = 62
PROVIDER_TAG = "api-portal"

SanitizeKind = Literal["tag", "name", "namespace"]

# Characters each catalog field accepts; anything else becomes "-".
SANITIZE_PATTERNS: dict[str, re.Pattern[str]] = {
    "tag": re.compile(r"[a-z0-9:+#\-]"),
    "name": re.compile(r"[a-zA-Z0-9\-_.]"),
    "namespace": re.compile(r"[a-zA-Z0-9\-]"),
}


def sanitize(kind: SanitizeKind, value: str) -> str:
    """Force ``value`` into the catalog's naming grammar for ``kind``.

    Disallowed characters become "-", runs of "-" collapse to one and the
    result is cut at 62 characters.
    """
    pattern = SANITIZE_PATTERNS[kind]
    out: list[str] = []
    for ch in value:
        if len(out) >= MAX_NAME_LENGTH:
            break
        ch = ch if pattern.fullmatch(ch) else "-"
        if ch == "-" and out and out[-1] == "-":
            continue
        out.append(ch)
    return "".join(out)


@dataclass
class DeferredEntity:
    location_key: str
    entity: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"locationKey": self.location_key, "entity": self.entity}


@dataclass
class MutationBatch:
    """A full replacement set of entities for one location key."""
    entities: list[DeferredEntity] = field(default_factory=list)
    type: str = "full"

    def kinds(self) -> list[str]:
        return [d.entity["kind"] for d in self.entities]

    def entity_names(self, kind: str | None = None) -> list[str]:
        return [
            d.entity["metadata"]["name"]
            for d in self.entities
            if kind is None or d.entity["kind"] == kind
        ]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "entities": [d.to_dict() for d in self.entities]}


def _managed_by(url: str) -> dict[str, str]:
    return {
        "backstage.io/managed-by-location": f"url:{url}",
        "backstage.io/managed-by-origin-location": f"url:{url}",
    }


def _definition(schema: Any) -> str:
    if schema is None:
        return ""
    if isinstance(schema, str):
        return schema
    return json.dumps(schema)


class EntityMutationBuilder:
    """Builds catalog entities for one portal sync provider."""

    def __init__(
        self,
        location_key: str,
        portal_server_url: str,
        group_name: str = "portal-service-accounts",
        service_account_name: str = "portal-sync-service-account",
        system_name: str = "portal-apis",
    ):
        self.location_key = location_key
        self.portal_server_url = portal_server_url
        self.apis_endpoint = f"{portal_server_url}/apis"
        self.group_name = sanitize("name", group_name)
        self.service_account_name = sanitize("name", service_account_name)
        self.system_name = sanitize("name", system_name)

    def build_api_entity(self, record: ApiVersionRecord) -> dict[str, Any]:
        tags = [PROVIDER_TAG]
        if record.version_tag:
            tags.append("api-version:" + sanitize("tag", record.version_tag))
        return {
            "apiVersion": CATALOG_API_VERSION,
            "kind": "API",
            "metadata": {
                "name": sanitize("name", record.id),
                "title": record.display_title or record.id,
                "description": record.description or record.product_description or "",
                "tags": tags,
                "annotations": _managed_by(self.apis_endpoint),
            },
            "spec": {
                "type": "openapi",
                "lifecycle": "production",
                "system": self.system_name,
                "owner": f"user:{self.service_account_name}",
                "definition": _definition(record.schema_document),
            },
        }

    def organizational_entities(self) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": CATALOG_API_VERSION,
                "kind": "Group",
                "metadata": {
                    "name": self.group_name,
                    "annotations": _managed_by(self.portal_server_url),
                },
                "spec": {
                    "type": "service-account-group",
                    "children": [],
                    "members": [self.service_account_name],
                },
            },
            {
                "apiVersion": CATALOG_API_VERSION,
                "kind": "User",
                "metadata": {
                    "name": self.service_account_name,
                    "annotations": _managed_by(self.portal_server_url),
                },
                "spec": {
                    "profile": {"displayName": "API Portal Service Account"},
                    "memberOf": [self.group_name],
                },
            },
            {
                "apiVersion": CATALOG_API_VERSION,
                "kind": "System",
                "metadata": {
                    "name": self.system_name,
                    "title": "API Portal APIs",
                    "tags": [PROVIDER_TAG],
                    "annotations": _managed_by(self.portal_server_url),
                },
                "spec": {"owner": f"user:{self.service_account_name}"},
            },
        ]

    def build(self, records: list[ApiVersionRecord]) -> MutationBatch:
        """Full mutation: organizational entities first, then one API each."""
        return self.build_from_entities([self.build_api_entity(r) for r in records])

    def build_from_entities(self, api_entities: list[dict[str, Any]]) -> MutationBatch:
        entities = self.organizational_entities() + list(api_entities)
        return MutationBatch(
            entities=[DeferredEntity(self.location_key, entity) for entity in entities],
        )
