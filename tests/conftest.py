"""Shared fixtures: a scripted portal / token server and JWT factory."""
import base64
import json
import time
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

PORTAL_URL = "http://portal.test/v1"
TOKEN_URL = "http://auth.test/token"


class PortalStub:
    """Scripted HTTP server behind an httpx.MockTransport.

    Routes are keyed by method and raw path (query included). A route may
    hold one response or a list that is consumed call by call (the last
    entry repeats).
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, json_body: Any = None, status: int = 200, method: str = "GET",
            error: bool = False, text: str | None = None) -> None:
        self.routes[(method, path)] = [(status, json_body, error, text)]

    def add_sequence(self, path: str, responses: list[tuple[int, Any]], method: str = "POST") -> None:
        self.routes[(method, path)] = [(status, body, False, None) for status, body in responses]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.raw_path.decode())
        script = self.routes.get(key)
        if not script:
            return httpx.Response(404, json={"error": "not found"})
        status, body, error, text = script.pop(0) if len(script) > 1 else script[0]
        if error:
            raise httpx.ConnectError("connection refused", request=request)
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self, method: str = "GET") -> list[str]:
        return [r.url.raw_path.decode() for r in self.requests if r.method == method]

    def forms(self) -> list[dict[str, str]]:
        """Decoded form bodies of every POST seen so far."""
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
            if r.method == "POST"
        ]


def _segment(obj: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()


def build_jwt(claims: dict) -> str:
    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.signature"


@pytest.fixture
def portal():
    return PortalStub()


@pytest.fixture
def make_jwt():
    return build_jwt


@pytest.fixture
def live_token():
    """Token response body whose JWT expires an hour from now."""
    def _factory(refresh_token: str | None = None) -> dict:
        body = {"access_token": build_jwt({"exp": int(time.time()) + 3600}), "token_type": "Bearer"}
        if refresh_token:
            body["refresh_token"] = refresh_token
        return body
    return _factory
