"""
Portal OAuth2 Token Lifecycle Manager.

Keeps one client-credentials bearer token alive for the sync engine:
- Client-credentials grant against the configured token endpoint
- Expiry read from the token's own `exp` claim
- Self-scheduled renewal 5s before expiry (never more than once a second)
- refresh_token grant when the server issued one, full grant otherwise
- Fixed 5s retry loop while the auth server keeps failing
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Optional
import base64
import json
import logging
import time

import httpx
from pydantic import ValidationError

from core.integrations.portal_types import TokenResponse
from core.scheduling.delayed_task import DelayedTask

logger = logging.getLogger(__name__)


class TokenRequestError(RuntimeError):
    """The token endpoint rejected the grant or answered with garbage."""


@dataclass(frozen=True)
class Credential:
    """Bearer credential. Replaced wholesale on renewal, never mutated."""
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at_ms: int | None = None
    issued_at_ms: int = 0

    def is_expired(self, now_ms: float) -> bool:
        if self.expires_at_ms is None:
            return False
        return now_ms >= self.expires_at_ms

    @property
    def auth_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_type": self.token_type,
            "has_refresh_token": self.refresh_token is not None,
            "expires_at_ms": self.expires_at_ms,
            "issued_at_ms": self.issued_at_ms,
        }


@dataclass(frozen=True)
class ClientCredentialsConfig:
    """OAuth2 client-credentials settings."""
    token_url: str
    client_id: str
    client_secret: str
    timeout: float = 15.0


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------

def parse_jwt(token: str) -> dict[str, Any]:
    """Decode the claims segment of a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) < 2:
        raise ValueError("Token is not a JWT")
    segment = parts[1]
    padded = segment + "=" * (-len(segment) % 4)
    claims = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("JWT claims are not an object")
    return claims


def jwt_expiry_ms(token: str) -> int | None:
    """`exp` claim of ``token`` in epoch milliseconds, or None."""
    try:
        claims = parse_jwt(token)
    except ValueError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


def token_error_message(data: TokenResponse) -> str | None:
    if data.error and data.error_description:
        return f"{data.error}: {data.error_description}"
    return data.error_description or data.error


# ---------------------------------------------------------------------------
# TokenLifecycleManager
# ---------------------------------------------------------------------------

class TokenLifecycleManager:
    """Acquires and autonomously renews one bearer credential."""

    RENEW_EARLY_MS = 5000
    MIN_RENEW_DELAY_MS = 1000
    RETRY_DELAY_MS = 5000

    def __init__(
        self,
        config: ClientCredentialsConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self._transport = transport
        self._clock = clock or (lambda: time.time() * 1000)
        self._credential: Credential | None = None
        self._pending: DelayedTask | None = None
        self._acquiring = False
        self._stopped = False

    # --- State ---

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def pending_delay_ms(self) -> float | None:
        """Delay of the currently scheduled acquisition, if any."""
        if self._pending is None or self._pending.done:
            return None
        return self._pending.delay_ms

    def ensure_fresh(self) -> Credential | None:
        """Current credential, or None when there is none or it has expired."""
        credential = self._credential
        if credential is None:
            return None
        if credential.is_expired(self._clock()):
            logger.warning("Access token expired before it could be renewed")
            self._credential = None
            return None
        return credential

    # --- Timer handling ---

    def start(self) -> None:
        """Kick off the first acquisition on the running loop."""
        self._stopped = False
        if self.pending_delay_ms is None and not self._acquiring:
            logger.debug("Making the initial access_token request")
            self._schedule(0)

    def stop(self) -> None:
        """Cancel the pending timer. A grant already in flight may finish but schedules nothing."""
        self._stopped = True
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def request_renewal(self) -> None:
        """Schedule a retry when nothing is pending and no token is held."""
        if self._credential is None and self.pending_delay_ms is None and not self._acquiring:
            logger.warning("No access token; re-requesting in %d ms", self.RETRY_DELAY_MS)
            self._schedule(self.RETRY_DELAY_MS)

    def invalidate(self) -> None:
        """Drop a credential the portal rejected and re-request one."""
        if self._credential is None:
            return
        logger.warning("Access token was rejected by the portal; re-requesting in %d ms", self.RETRY_DELAY_MS)
        self._credential = None
        if not self._acquiring:
            self._schedule(self.RETRY_DELAY_MS)

    def _schedule(self, delay_ms: float) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._stopped:
            logger.debug("Token manager is stopped; not scheduling a renewal")
            return
        self._pending = DelayedTask(delay_ms, self.renew, name="token-renewal")

    # --- Grants ---

    async def acquire(self) -> Credential | None:
        """Run the client-credentials grant.

        On failure a retry is scheduled in RETRY_DELAY_MS and the error is
        re-raised. Returns None when the server hands out an already
        expired token.
        """
        self._acquiring = True
        try:
            credential = await self._request_token("client_credentials")
        except TokenRequestError:
            self._schedule(self.RETRY_DELAY_MS)
            raise
        finally:
            self._acquiring = False
        return self._accept(credential)

    async def renew(self) -> None:
        """Timer callback: refresh or re-acquire, never raises TokenRequestError."""
        if self._pending is not None and not self._pending.is_current():
            self._pending.cancel()
        self._pending = None
        current = self._credential
        if current is not None and current.refresh_token:
            try:
                logger.debug("Making a refresh_token request")
                refreshed = await self._request_token("refresh_token", current.refresh_token)
                if self._accept(refreshed) is not None:
                    return
            except TokenRequestError as exc:
                logger.warning("Refresh grant failed, falling back to client credentials: %s", exc)
        try:
            await self.acquire()
        except TokenRequestError as exc:
            logger.warning("Access token request failed, retrying in %d ms: %s", self.RETRY_DELAY_MS, exc)

    def _accept(self, credential: Credential) -> Credential | None:
        if credential.expires_at_ms is None:
            logger.warning("No `exp` claim found in the access_token; renewal is not scheduled")
            self._credential = credential
            return credential

        millis_until_expiry = credential.expires_at_ms - self._clock()
        if millis_until_expiry <= 0:
            logger.warning("Access token is already expired; discarding it")
            self._credential = None
            return None

        self._credential = credential
        delay = max(self.MIN_RENEW_DELAY_MS, millis_until_expiry - self.RENEW_EARLY_MS)
        logger.debug("Scheduling token renewal in %d ms", delay)
        self._schedule(delay)
        return credential

    async def _request_token(self, grant_type: str, refresh_token: str | None = None) -> Credential:
        form = {
            "grant_type": grant_type,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        if refresh_token:
            form["refresh_token"] = refresh_token

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout) as client:
                resp = await client.post(
                    self.config.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TokenRequestError(f"Token request to {self.config.token_url} failed: {exc}") from exc

        try:
            body = resp.json()
            data = TokenResponse.model_validate(body)
        except (ValueError, ValidationError) as exc:
            raise TokenRequestError("Error parsing oauth response.") from exc

        message = token_error_message(data)
        if message:
            raise TokenRequestError(message)
        if not data.access_token:
            raise TokenRequestError("No 'access_token' property was found in the oauth response body.")

        return Credential(
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            token_type=data.token_type or "Bearer",
            expires_at_ms=jwt_expiry_ms(data.access_token),
            issued_at_ms=int(self._clock()),
        )
