"""Test the client-credentials token lifecycle."""
import asyncio

import httpx
import pytest

from conftest import TOKEN_URL
from core.integrations.oauth_manager import (
    ClientCredentialsConfig,
    Credential,
    TokenLifecycleManager,
    TokenRequestError,
    jwt_expiry_ms,
    parse_jwt,
)

NOW_MS = 1_700_000_000_000
NOW_S = NOW_MS // 1000


def make_manager(portal, clock=lambda: NOW_MS):
    config = ClientCredentialsConfig(token_url=TOKEN_URL, client_id="sync", client_secret="s3cret")
    return TokenLifecycleManager(config, transport=portal.transport, clock=clock)


def test_parse_jwt_reads_claims(make_jwt):
    token = make_jwt({"exp": NOW_S, "sub": "sync"})
    assert parse_jwt(token) == {"exp": NOW_S, "sub": "sync"}


def test_jwt_expiry_ms(make_jwt):
    assert jwt_expiry_ms(make_jwt({"exp": NOW_S + 60})) == (NOW_S + 60) * 1000
    assert jwt_expiry_ms(make_jwt({"sub": "no-exp"})) is None
    assert jwt_expiry_ms("opaque-token") is None
    assert jwt_expiry_ms("a.!!!not-base64!!!.c") is None


def test_credential_expiry():
    credential = Credential(access_token="t", expires_at_ms=NOW_MS)
    assert credential.is_expired(NOW_MS)
    assert not credential.is_expired(NOW_MS - 1)
    assert not Credential(access_token="t").is_expired(NOW_MS)
    assert credential.auth_header == {"Authorization": "Bearer t"}


@pytest.mark.asyncio
async def test_acquire_schedules_renewal_before_expiry(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S + 60})}, method="POST")
    manager = make_manager(portal)

    credential = await manager.acquire()

    assert credential is not None
    assert credential.expires_at_ms == NOW_MS + 60 * 1000
    assert manager.pending_delay_ms == 55_000
    assert manager.ensure_fresh() is credential
    assert portal.forms() == [
        {"grant_type": "client_credentials", "client_id": "sync", "client_secret": "s3cret"}
    ]
    manager.stop()


@pytest.mark.asyncio
async def test_renewal_never_sooner_than_one_second(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S + 3})}, method="POST")
    manager = make_manager(portal)

    await manager.acquire()

    assert manager.pending_delay_ms == 1000
    manager.stop()


@pytest.mark.asyncio
async def test_already_expired_token_is_discarded(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S - 10})}, method="POST")
    manager = make_manager(portal)

    assert await manager.acquire() is None
    assert manager.credential is None
    assert manager.pending_delay_ms is None


@pytest.mark.asyncio
async def test_missing_access_token_schedules_retry(portal):
    portal.add("/token", {"token_type": "Bearer"}, method="POST")
    manager = make_manager(portal)

    with pytest.raises(TokenRequestError, match="No 'access_token'"):
        await manager.acquire()

    assert manager.pending_delay_ms == 5000
    assert manager.credential is None
    manager.stop()


@pytest.mark.asyncio
async def test_error_payload_message(portal):
    portal.add(
        "/token",
        {"error": "invalid_client", "error_description": "Bad client secret"},
        status=401,
        method="POST",
    )
    manager = make_manager(portal)

    with pytest.raises(TokenRequestError, match="invalid_client: Bad client secret"):
        await manager.acquire()
    manager.stop()


@pytest.mark.asyncio
async def test_non_json_response(portal):
    portal.add("/token", status=502, method="POST", text="<html>bad gateway</html>")
    manager = make_manager(portal)

    with pytest.raises(TokenRequestError, match="Error parsing oauth response"):
        await manager.acquire()
    assert manager.pending_delay_ms == 5000
    manager.stop()


@pytest.mark.asyncio
async def test_transport_error_schedules_retry(portal):
    portal.add("/token", method="POST", error=True)
    manager = make_manager(portal)

    with pytest.raises(TokenRequestError):
        await manager.acquire()
    assert manager.pending_delay_ms == 5000
    manager.stop()


@pytest.mark.asyncio
async def test_token_without_exp_runs_degraded(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"sub": "sync"})}, method="POST")
    manager = make_manager(portal)

    credential = await manager.acquire()

    assert credential is not None
    assert credential.expires_at_ms is None
    assert manager.pending_delay_ms is None
    assert manager.ensure_fresh() is credential


@pytest.mark.asyncio
async def test_ensure_fresh_drops_expired_credential(portal, make_jwt):
    now = [NOW_MS]
    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S + 60})}, method="POST")
    manager = make_manager(portal, clock=lambda: now[0])
    await manager.acquire()
    manager.stop()

    now[0] = NOW_MS + 60_000
    assert manager.ensure_fresh() is None
    assert manager.credential is None


@pytest.mark.asyncio
async def test_renew_uses_refresh_token(portal, make_jwt):
    portal.add_sequence("/token", [
        (200, {"access_token": make_jwt({"exp": NOW_S + 60}), "refresh_token": "r1"}),
        (200, {"access_token": make_jwt({"exp": NOW_S + 120}), "refresh_token": "r2"}),
    ])
    manager = make_manager(portal)
    await manager.acquire()

    await manager.renew()

    forms = portal.forms()
    assert forms[1]["grant_type"] == "refresh_token"
    assert forms[1]["refresh_token"] == "r1"
    assert manager.credential.refresh_token == "r2"
    assert manager.pending_delay_ms == 115_000
    manager.stop()


@pytest.mark.asyncio
async def test_renew_falls_back_to_client_credentials(portal, make_jwt):
    portal.add_sequence("/token", [
        (200, {"access_token": make_jwt({"exp": NOW_S + 60}), "refresh_token": "r1"}),
        (400, {"error": "invalid_grant"}),
        (200, {"access_token": make_jwt({"exp": NOW_S + 300})}),
    ])
    manager = make_manager(portal)
    await manager.acquire()

    await manager.renew()

    assert [f["grant_type"] for f in portal.forms()] == [
        "client_credentials", "refresh_token", "client_credentials",
    ]
    assert manager.credential.expires_at_ms == (NOW_S + 300) * 1000
    manager.stop()


@pytest.mark.asyncio
async def test_renew_swallows_failures_and_retries(portal):
    portal.add("/token", {"error": "temporarily_unavailable"}, status=503, method="POST")
    manager = make_manager(portal)

    await manager.renew()

    assert manager.credential is None
    assert manager.pending_delay_ms == 5000
    manager.stop()


@pytest.mark.asyncio
async def test_request_renewal_only_when_idle(portal, make_jwt):
    manager = make_manager(portal)
    manager.request_renewal()
    assert manager.pending_delay_ms == 5000

    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S + 60})}, method="POST")
    await manager.acquire()
    manager.request_renewal()
    assert manager.pending_delay_ms == 55_000
    manager.stop()


@pytest.mark.asyncio
async def test_stop_during_grant_schedules_nothing(make_jwt):
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow_token_server(request):
        entered.set()
        await release.wait()
        return httpx.Response(200, json={"access_token": make_jwt({"exp": NOW_S + 3600})})

    config = ClientCredentialsConfig(token_url=TOKEN_URL, client_id="sync", client_secret="s3cret")
    manager = TokenLifecycleManager(
        config, transport=httpx.MockTransport(slow_token_server), clock=lambda: NOW_MS
    )

    manager.start()
    await asyncio.wait_for(entered.wait(), timeout=1)
    manager.stop()
    release.set()
    await asyncio.sleep(0.05)

    assert manager.credential is not None
    assert manager.pending_delay_ms is None


@pytest.mark.asyncio
async def test_start_after_stop_resumes_renewal(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"exp": NOW_S + 60})}, method="POST")
    manager = make_manager(portal)
    manager.stop()

    manager.start()
    await asyncio.sleep(0.05)

    assert manager.credential is not None
    assert manager.pending_delay_ms == 55_000
    manager.stop()


@pytest.mark.asyncio
async def test_invalidate_drops_credential_and_rerequests(portal, make_jwt):
    portal.add("/token", {"access_token": make_jwt({"sub": "sync"})}, method="POST")
    manager = make_manager(portal)
    await manager.acquire()
    assert manager.pending_delay_ms is None

    manager.invalidate()

    assert manager.credential is None
    assert manager.pending_delay_ms == 5000
    manager.stop()


@pytest.mark.asyncio
async def test_null_token_type_defaults_to_bearer(portal, make_jwt):
    portal.add(
        "/token",
        {"access_token": make_jwt({"exp": NOW_S + 60}), "token_type": None, "expires_in": 59.5},
        method="POST",
    )
    manager = make_manager(portal)

    credential = await manager.acquire()

    assert credential is not None
    assert credential.token_type == "Bearer"
    manager.stop()
