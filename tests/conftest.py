"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import os
import time

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
import pytest_asyncio

from ternity_auth.auth.secure_storage import FernetSecureStorage
from ternity_auth.auth.token_store import TokenStore
from ternity_auth.config import TernitySettings, clear_settings
from ternity_auth.document import SettingsDocument
from ternity_auth.types import AuthUser, TokenSet


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path


DEV_ISSUER = "https://dev.auth.ternity.xyz/oidc"
DEV_API = "https://dev.app.ternity.xyz"
LOCAL_API = "http://localhost:3010"
API_RESOURCE = "https://api.ternity.xyz"

ID_TOKEN_KEY = "test-signing-key-that-is-long-enough-for-hs256"


def make_id_token(**claims: Any) -> str:
    """Build an HS256 ID token; the client never verifies the signature."""
    payload = {"sub": "user-1", "name": "Ada Lovelace", "email": "ada@example.com"}
    payload.update(claims)
    return jwt.encode(payload, ID_TOKEN_KEY, algorithm="HS256")


# =============================================================================
# Fake identity provider and API
# =============================================================================


class FakeProvider:
    """In-memory OIDC provider plus the first-party profile endpoint.

    Serves discovery for every built-in issuer, the token endpoint (both
    grants), and ``/api/me``. Every request is recorded.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.discovery_status = 200
        self.code_status = 200
        self.refresh_status = 200
        self.profile_status = 200
        self.issue_refresh_token = True
        self.end_session = True
        self.id_token = make_id_token()
        self.refresh_count = 0
        self.refresh_body: Any = None
        self.refresh_gate: asyncio.Event | None = None
        self.refresh_started = asyncio.Event()
        self.profile = {
            "userId": "user-1",
            "displayName": "Ada Lovelace",
            "email": "ada@example.com",
            "phone": "+15550100",
            "avatarUrl": "https://cdn.example.com/ada.png",
            "globalRole": "admin",
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.async_handler)

    async def async_handler(self, request: httpx.Request) -> httpx.Response:
        """Hold refreshes of the stored session until ``refresh_gate`` opens."""
        if self.refresh_gate is not None and b"refresh_token=rt-stored" in request.content:
            self.refresh_started.set()
            await self.refresh_gate.wait()
        return self.handler(request)

    def token_requests(self) -> list[dict[str, str]]:
        """Form bodies of all token endpoint requests, in order."""
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
            if r.url.path.endswith("/token")
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/.well-known/openid-configuration"):
            return self._discovery(request)
        if path.endswith("/oidc/token") and request.method == "POST":
            return self._token(request)
        if path == "/api/me":
            if self.profile_status != 200:
                return httpx.Response(self.profile_status, json={"error": "nope"})
            return httpx.Response(200, json=self.profile)
        if path.startswith("/api/"):
            return self._api(request)
        return httpx.Response(404)

    def _api(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/broken":
            return httpx.Response(500, json={"error": "Internal error"})
        if request.url.path == "/api/offline":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(
            200,
            json={
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query.decode(),
                "authorization": request.headers.get("authorization"),
                "contentType": request.headers.get("content-type"),
                "body": request.content.decode() or None,
            },
        )

    def _discovery(self, request: httpx.Request) -> httpx.Response:
        if self.discovery_status != 200:
            return httpx.Response(self.discovery_status)
        issuer = str(request.url).split("/.well-known/")[0]
        doc = {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/auth",
            "token_endpoint": f"{issuer}/token",
            "userinfo_endpoint": f"{issuer}/me",
        }
        if self.end_session:
            doc["end_session_endpoint"] = f"{issuer}/session/end"
        return httpx.Response(200, json=doc)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        grant = form.get("grant_type")

        if grant == "authorization_code":
            if self.code_status != 200:
                return httpx.Response(self.code_status, text='{"error":"invalid_grant"}')
            body: dict[str, Any] = {
                "access_token": "opaque-at",
                "expires_in": 3600,
                "id_token": self.id_token,
                "token_type": "Bearer",
            }
            if self.issue_refresh_token:
                body["refresh_token"] = "rt-0"
            return httpx.Response(200, json=body)

        if grant == "refresh_token":
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, text='{"error":"invalid_grant"}')
            self.refresh_count += 1
            if self.refresh_body is not None:
                return httpx.Response(200, json=self.refresh_body)
            return httpx.Response(
                200,
                json={
                    "access_token": f"api-at-{self.refresh_count}",
                    "refresh_token": f"rt-{self.refresh_count}",
                    "expires_in": 3600,
                    "token_type": "Bearer",
                },
            )

        return httpx.Response(400, json={"error": "unsupported_grant_type"})


class FakeBrowser:
    """Stands in for the system browser.

    ``mode`` decides what the "user" does with the authorization URL:
    ``"approve"`` follows the redirect with a code, ``"deny"`` follows it
    with an error, ``"ignore"`` never comes back.
    """

    def __init__(self, mode: str = "approve") -> None:
        self.mode = mode
        self.urls: list[str] = []
        self.responses: list[httpx.Response] = []
        self.opened = asyncio.Event()

    async def __call__(self, url: str) -> None:
        self.urls.append(url)
        self.opened.set()
        if self.mode == "ignore":
            return

        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        if self.mode == "approve":
            params = {"code": "auth-code-1", "state": query["state"]}
        else:
            params = {
                "error": "access_denied",
                "error_description": "The user denied the request",
                "state": query["state"],
            }
        async with httpx.AsyncClient(trust_env=False) as client:
            self.responses.append(await client.get(query["redirect_uri"], params=params))

    async def wait_opened(self) -> None:
        await asyncio.wait_for(self.opened.wait(), timeout=5)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep user config files and TERNITY_* variables out of tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("TERNITY_CONFIG_FILE", raising=False)
    for name in list(os.environ):
        if name.startswith("TERNITY_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings()
    yield
    clear_settings()


@pytest.fixture()
def settings(tmp_path: Path) -> TernitySettings:
    """Settings with an ephemeral callback port and short timers."""
    return TernitySettings(
        auth={
            "config_dir": tmp_path / "data",
            "callback_port": 0,
            "callback_timeout_seconds": 5,
            "sign_out_page_ttl_seconds": 5,
        }
    )


@pytest.fixture()
def document(settings: TernitySettings) -> SettingsDocument:
    return SettingsDocument(settings.auth.document_path)


@pytest.fixture()
def token_store(document: SettingsDocument) -> TokenStore:
    """Encrypted token store over a temp settings document."""
    return TokenStore(document, FernetSecureStorage())


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture()
async def http_client(provider: FakeProvider) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=provider.transport) as client:
        yield client


@pytest.fixture()
def user() -> AuthUser:
    return AuthUser(sub="user-1", name="Ada Lovelace", email="ada@example.com", roles=["admin"])


def make_tokens(expires_in: int = 3600, **overrides: Any) -> TokenSet:
    """TokenSet expiring ``expires_in`` seconds from now."""
    values: dict[str, Any] = {
        "access_token": "api-at-stored",
        "expires_at": int(time.time()) + expires_in,
        "refresh_token": "rt-stored",
        "id_token": make_id_token(),
    }
    values.update(overrides)
    return TokenSet(**values)
