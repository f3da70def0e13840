"""Dataclass-based configuration for the portal catalog sync.

All settings live in frozen dataclasses so a running provider can never
see a half-updated config. Values come from:
- Defaults (a local portal server, 5 minute sync, 30 second timeout)
- A host-supplied mapping (camelCase keys, as in app config files)
- Environment variables (PORTAL_SYNC_*)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_PORTAL_SERVER_URL = "http://localhost:31080/v1"


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Duration:
    """A human-friendly duration; all parts are summed."""

    hours: float = 0
    minutes: float = 0
    seconds: float = 0
    milliseconds: float = 0

    @property
    def total_milliseconds(self) -> float:
        return (
            self.hours * 3_600_000
            + self.minutes * 60_000
            + self.seconds * 1000
            + self.milliseconds
        )

    @property
    def total_seconds(self) -> float:
        return self.total_milliseconds / 1000

    @property
    def is_zero(self) -> bool:
        return self.total_milliseconds <= 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, default: "Duration") -> "Duration":
        """Build a duration from ``{hours, minutes, seconds, milliseconds}``.

        Missing or all-zero input yields ``default``.
        """
        if not data:
            return default
        duration = cls(
            hours=float(data.get("hours") or 0),
            minutes=float(data.get("minutes") or 0),
            seconds=float(data.get("seconds") or 0),
            milliseconds=float(data.get("milliseconds") or 0),
        )
        return default if duration.is_zero else duration


DEFAULT_SYNC_FREQUENCY = Duration(minutes=5)
DEFAULT_SYNC_TIMEOUT = Duration(seconds=30)


def strip_trailing_slash(url: str) -> str:
    return url.rstrip("/")


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PortalSyncConfig:
    """Complete configuration for one portal sync target.

    Usage::

        config = PortalSyncConfig.from_dict(app_config["portalSync"])
        provider = PortalEntityProvider(config)
    """

    portal_server_url: str = DEFAULT_PORTAL_SERVER_URL
    client_id: str = ""
    client_secret: str = ""
    token_endpoint: str = ""
    debug_logging: bool = False
    sync_frequency: Duration = field(default_factory=lambda: DEFAULT_SYNC_FREQUENCY)
    sync_timeout: Duration = field(default_factory=lambda: DEFAULT_SYNC_TIMEOUT)

    # Provider identity
    environment: str = "production"
    http_timeout_seconds: float = 15.0
    max_concurrency: int = 10

    # Fixed catalog records owned by this provider
    group_name: str = "portal-service-accounts"
    service_account_name: str = "portal-sync-service-account"
    system_name: str = "portal-apis"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "portal_server_url", strip_trailing_slash(self.portal_server_url)
        )

    @classmethod
    def default(cls) -> "PortalSyncConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PortalSyncConfig":
        """Create config from a host config mapping.

        Accepts the options either at the top level or nested under
        ``portalSync``. Unknown keys are ignored.
        """
        data = dict(data or {})
        if isinstance(data.get("portalSync"), Mapping):
            data = dict(data["portalSync"])

        overrides: dict[str, Any] = {}
        url = data.get("portalServerUrl")
        if url:
            overrides["portal_server_url"] = str(url)
        for key, attr in (
            ("clientId", "client_id"),
            ("clientSecret", "client_secret"),
            ("tokenEndpoint", "token_endpoint"),
            ("environment", "environment"),
            ("groupName", "group_name"),
            ("serviceAccountName", "service_account_name"),
            ("systemName", "system_name"),
        ):
            value = data.get(key)
            if value:
                overrides[attr] = str(value)
        if "debugLogging" in data:
            overrides["debug_logging"] = _as_bool(data["debugLogging"])
        if data.get("maxConcurrency"):
            overrides["max_concurrency"] = int(data["maxConcurrency"])
        if data.get("httpTimeoutSeconds"):
            overrides["http_timeout_seconds"] = float(data["httpTimeoutSeconds"])
        overrides["sync_frequency"] = Duration.from_dict(
            data.get("syncFrequency"), DEFAULT_SYNC_FREQUENCY
        )
        overrides["sync_timeout"] = Duration.from_dict(
            data.get("syncTimeout"), DEFAULT_SYNC_TIMEOUT
        )

        config = cls(**overrides)
        config.warn_missing()
        return config

    @classmethod
    def from_env(cls, prefix: str = "PORTAL_SYNC_") -> "PortalSyncConfig":
        """Create config from environment variables.

        Example: PORTAL_SYNC_PORTAL_SERVER_URL=https://portal.example.com/v1
        Durations use PORTAL_SYNC_SYNC_FREQUENCY_SECONDS and friends.
        """
        def env(name: str) -> str | None:
            return os.getenv(f"{prefix}{name}")

        data: dict[str, Any] = {
            "portalServerUrl": env("PORTAL_SERVER_URL"),
            "clientId": env("CLIENT_ID"),
            "clientSecret": env("CLIENT_SECRET"),
            "tokenEndpoint": env("TOKEN_ENDPOINT"),
            "environment": env("ENVIRONMENT"),
            "httpTimeoutSeconds": env("HTTP_TIMEOUT_SECONDS"),
            "maxConcurrency": env("MAX_CONCURRENCY"),
        }
        debug = env("DEBUG_LOGGING")
        if debug is not None:
            data["debugLogging"] = debug
        for key, name in (("syncFrequency", "SYNC_FREQUENCY"), ("syncTimeout", "SYNC_TIMEOUT")):
            parts = {
                unit: env(f"{name}_{unit.upper()}")
                for unit in ("hours", "minutes", "seconds", "milliseconds")
            }
            data[key] = {unit: float(v) for unit, v in parts.items() if v}
        return cls.from_dict(data)

    def warn_missing(self) -> None:
        """Log a warning for each credential setting left empty."""
        for attr, key in (
            ("client_id", "clientId"),
            ("client_secret", "clientSecret"),
            ("token_endpoint", "tokenEndpoint"),
        ):
            if not getattr(self, attr):
                logger.warning("No portalSync.%s found in config", key)

    @property
    def provider_name(self) -> str:
        return f"portal-catalog-sync-{self.environment}"

    @property
    def location_key(self) -> str:
        return f"portal-catalog-sync-provider:{self.environment}"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
