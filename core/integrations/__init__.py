"""
Portal Sync Integrations — talking to the API portal server.

Provides the portal-facing half of the sync engine:
- TokenLifecycleManager: client-credentials token with self-scheduled renewal
- classify / PortalDialect: response dialect detection
- DialectNormalizer: discovery + flattening into ApiVersionRecord
- PortalClient: bearer-authenticated JSON GETs with health tracking
"""
from core.integrations.dialect import (
    PortalDialect,
    classify,
    discovery_url,
    is_grouped_by_product,
)
from core.integrations.normalizer import (
    ApiVersionRecord,
    DialectNormalizer,
)
from core.integrations.oauth_manager import (
    ClientCredentialsConfig,
    Credential,
    TokenLifecycleManager,
    TokenRequestError,
    jwt_expiry_ms,
    parse_jwt,
)
from core.integrations.portal_client import (
    PortalClient,
    PortalHealth,
    PortalRequestError,
)

__all__ = [
    # Dialect
    "PortalDialect",
    "classify",
    "discovery_url",
    "is_grouped_by_product",
    # Normalizer
    "ApiVersionRecord",
    "DialectNormalizer",
    # OAuth
    "ClientCredentialsConfig",
    "Credential",
    "TokenLifecycleManager",
    "TokenRequestError",
    "jwt_expiry_ms",
    "parse_jwt",
    # HTTP
    "PortalClient",
    "PortalHealth",
    "PortalRequestError",
]
