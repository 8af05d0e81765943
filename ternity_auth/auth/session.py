"""Session manager: sign-in, sign-out, and access-token lifecycle.

Owns the shared HTTP client, the discovery cache, the token store, and
the loopback port lease. At most one sign-in runs at a time across all
environments. Access tokens are refreshed lazily when a caller asks for
one close to expiry; repeated refresh failures clear the stored session
so the user is asked to sign in again.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets
import time
import webbrowser

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..document import SettingsDocument
from ..exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    DiscoveryError,
    ProfileError,
    TokenRefreshError,
    UnknownEnvironmentError,
)
from ..types import (
    ApiResponse,
    AuthState,
    SignInResult,
    SignInState,
    SignOutResult,
    TokenSet,
)
from .callback_server import CallbackServer, LoopbackPort
from .discovery import OidcDiscovery
from .exchange import TokenClient
from .flow import SignInSession
from .profile import decode_id_token, fetch_profile
from .secure_storage import KeyringSecureStorage
from .token_store import TokenStore


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..config import EnvironmentConfig, TernitySettings
    from ..types import AuthUser
    from .secure_storage import SecureStorage


logger = logging.getLogger("ternity.auth")


async def _open_system_browser(url: str) -> None:
    """Open ``url`` in the OS default browser without blocking the loop."""
    loop = asyncio.get_running_loop()
    opened = await loop.run_in_executor(None, webbrowser.open, url)
    if not opened:
        logger.warning("Could not open a browser. Visit this URL to sign in: %s", url)


class SessionManager:
    """Coordinates the desktop sign-in lifecycle.

    Parameters
    ----------
    settings : TernitySettings
        Loaded configuration (environments, ports, timeouts).
    token_store : TokenStore, optional
        Token persistence. Built from the settings document and the
        keyring-backed secure storage when omitted.
    secure_storage : SecureStorage, optional
        Encryption capability for the default token store.
    http_client : httpx.AsyncClient, optional
        Shared client for provider and API requests. A client owned by
        the manager is created when omitted and closed by ``aclose()``.
    open_browser : callable, optional
        ``async (url) -> None`` used to launch the authorization URL.
    """

    def __init__(
        self,
        settings: TernitySettings,
        token_store: TokenStore | None = None,
        secure_storage: SecureStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the session manager."""
        self.settings = settings
        auth = settings.auth

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=auth.http_timeout_seconds)
        self.discovery = OidcDiscovery(self._client)
        self.tokens = TokenClient(self._client, auth.api_resource, auth.redirect_uri())

        if token_store is None:
            storage = secure_storage or KeyringSecureStorage(auth.keyring_service)
            token_store = TokenStore(SettingsDocument(auth.document_path), storage)
        self.token_store = token_store

        self.refresh_buffer_seconds = auth.refresh_buffer_seconds
        self.max_refresh_failures = auth.max_refresh_failures
        self._open_browser = open_browser or _open_system_browser

        self._port = LoopbackPort()
        self._active: SignInSession | None = None
        self._refresh_failures: dict[str, int] = {}
        self._refreshing: dict[str, asyncio.Task[str | None]] = {}
        self._generations: dict[str, int] = {}

    async def __aenter__(self) -> SessionManager:
        """Enter the async context."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Release the port and close the HTTP client."""
        await self.aclose()

    # ── Properties ──────────────────────────────────────────────────

    @property
    def active_session(self) -> SignInSession | None:
        """The in-flight sign-in attempt, if any."""
        return self._active

    @property
    def port(self) -> LoopbackPort:
        """Lease on the loopback port shared by sign-in and sign-out."""
        return self._port

    def refresh_failures(self, env_id: str) -> int:
        """Consecutive refresh failures recorded for ``env_id``."""
        return self._refresh_failures.get(env_id, 0)

    # ── Sign-in ─────────────────────────────────────────────────────

    async def sign_in(self, env_id: str) -> SignInResult:
        """Run the interactive sign-in for ``env_id``.

        Never raises for protocol or network failures; those come back
        as an unsuccessful result whose ``error`` is the failure message.

        Parameters
        ----------
        env_id : str
            Environment to sign in to.

        Returns
        -------
        SignInResult
            The resolved user on success, the failure message otherwise.
        """
        if self._active is not None:
            return SignInResult(success=False, error="Sign-in already in progress")

        try:
            env = self.settings.environment(env_id)
        except UnknownEnvironmentError as exc:
            return SignInResult(success=False, error=exc.message)

        session = SignInSession(env)
        self._active = session
        session.status = SignInState.IN_PROGRESS
        logger.info("Sign-in started for %s (flow %s)", env.id, session.flow_id)

        try:
            # A lingering sign-out page must not hold the port.
            await self._port.release()
            session.raise_if_cancelled()

            if env.is_local:
                tokens = await self._sign_in_local(session)
            else:
                tokens = await self._sign_in_oidc(session)

            session.raise_if_cancelled()
            await self._supersede_refresh(env.id)
            await self.token_store.store(env.id, tokens)
        except AuthFlowCancelled as exc:
            session.status = SignInState.CANCELLED
            logger.info("Sign-in cancelled for %s", env.id)
            return SignInResult(success=False, error=exc.message)
        except AuthFlowTimeout as exc:
            session.status = SignInState.TIMED_OUT
            logger.warning("Sign-in timed out for %s", env.id)
            return SignInResult(success=False, error=exc.message)
        except AuthenticationError as exc:
            session.status = SignInState.FAILED
            logger.warning("Sign-in failed for %s: %s", env.id, exc)
            return SignInResult(success=False, error=exc.message)
        except OSError as exc:
            session.status = SignInState.FAILED
            logger.error("Could not save the session for %s: %s", env.id, exc)
            return SignInResult(success=False, error=f"Could not save the session: {exc}")
        finally:
            if session.server is not None:
                await self._port.release(session.server)
            if self._active is session:
                self._active = None

        session.status = SignInState.COMPLETED
        logger.info("Sign-in completed for %s", env.id)
        return SignInResult(success=True, user=tokens.user)

    async def _sign_in_oidc(self, session: SignInSession) -> TokenSet:
        env = session.environment
        auth = self.settings.auth

        metadata = await self.discovery.discover(env.issuer_url)
        session.raise_if_cancelled()

        pkce = session.generate_pkce()

        server = CallbackServer(
            host=auth.callback_host,
            port=auth.callback_port,
            timeout=auth.callback_timeout_seconds,
            sign_out_ttl=auth.sign_out_page_ttl_seconds,
        )
        session.server = server
        redirect_uri = await self._port.acquire_for_sign_in(
            server,
            expected_state=session.state,
            environment=env.id,
            flow_id=session.flow_id,
        )
        session.raise_if_cancelled()

        url = session.build_authorize_url(
            metadata.authorization_endpoint,
            redirect_uri,
            auth.scope_list,
            auth.api_resource,
        )
        logger.debug("Opening authorization URL for %s", env.id)
        try:
            await self._open_browser(url)
        except OSError as exc:
            msg = f"Could not open the browser: {exc}"
            raise AuthenticationError(msg, environment=env.id, flow_id=session.flow_id) from exc

        code = await server.wait_for_code()
        await self._port.release(server)
        session.raise_if_cancelled()

        tokens = await self.tokens.exchange_code(
            metadata.token_endpoint,
            env.client_id,
            code,
            pkce.verifier,
            redirect_uri=redirect_uri,
        )
        session.raise_if_cancelled()

        user = await self._resolve_user(env, tokens)
        return tokens.with_user(user)

    async def _sign_in_local(self, session: SignInSession) -> TokenSet:
        """Synthesize a long-lived token for the local environment.

        The local API accepts any bearer token, so no provider is involved.
        The user still comes from the API profile endpoint and sign-in
        fails when it cannot be fetched.
        """
        env = session.environment
        auth = self.settings.auth
        tokens = TokenSet(
            access_token=f"local-{secrets.token_urlsafe(32)}",
            expires_at=int(time.time()) + auth.local_token_lifetime_seconds,
        )
        try:
            user = await fetch_profile(
                self._client, env.api_base_url, tokens.access_token, auth.profile_path
            )
        except ProfileError as exc:
            msg = f"Local sign-in failed: {exc.message}"
            raise ProfileError(msg, environment=env.id, flow_id=session.flow_id) from exc
        return tokens.with_user(user)

    async def _resolve_user(self, env: EnvironmentConfig, tokens: TokenSet) -> AuthUser | None:
        """Profile endpoint first, ID token claims as fallback."""
        try:
            return await fetch_profile(
                self._client,
                env.api_base_url,
                tokens.access_token,
                self.settings.auth.profile_path,
            )
        except ProfileError as exc:
            logger.warning("Profile fetch failed for %s, using ID token claims: %s", env.id, exc)
        return decode_id_token(tokens.id_token) if tokens.id_token else None

    async def cancel_sign_in(self) -> None:
        """Cancel the in-flight sign-in; a no-op when none is running."""
        session = self._active
        if session is None:
            return
        logger.info("Cancelling sign-in for %s", session.environment.id)
        session.cancel()
        self._active = None
        if session.server is not None:
            await self._port.release(session.server)

    # ── Sign-out ────────────────────────────────────────────────────

    async def sign_out(self, env_id: str) -> SignOutResult:
        """Forget the session for ``env_id`` and serve the sign-out pages.

        Local tokens are cleared before anything else, so the user is
        signed out even when the provider is unreachable.

        Raises
        ------
        UnknownEnvironmentError
            If ``env_id`` is not configured.
        """
        env = self.settings.environment(env_id)
        previous = await self.token_store.load(env.id)
        await self._supersede_refresh(env.id)
        await self.token_store.clear(env.id)
        logger.info("Signed out of %s", env.id)

        auth = self.settings.auth
        server = CallbackServer(
            host=auth.callback_host,
            port=auth.callback_port,
            timeout=auth.callback_timeout_seconds,
            sign_out_ttl=auth.sign_out_page_ttl_seconds,
        )
        end_session_url = None
        if not env.is_local:
            id_token = previous.id_token if previous is not None else None
            end_session_url = await self._end_session_url(
                env, f"{server.base_url}/signed-out-complete", id_token
            )
        page_url = await self._port.acquire_for_sign_out(server, end_session_url)
        return SignOutResult(sign_out_page_url=page_url, end_session_url=end_session_url)

    async def _end_session_url(
        self, env: EnvironmentConfig, post_logout_redirect_uri: str, id_token: str | None
    ) -> str | None:
        try:
            metadata = await self.discovery.discover(env.issuer_url)
        except DiscoveryError as exc:
            logger.warning("No browser sign-out link for %s: %s", env.id, exc)
            return None
        if not metadata.end_session_endpoint:
            return None
        params = {
            "post_logout_redirect_uri": post_logout_redirect_uri,
            "client_id": env.client_id,
        }
        if id_token:
            params["id_token_hint"] = id_token
        return f"{metadata.end_session_endpoint}?{urlencode(params)}"

    # ── Token access ────────────────────────────────────────────────

    async def get_auth_state(self, env_id: str) -> AuthState:
        """Report whether a session is stored for ``env_id``.

        Reads the token store only; no network.
        """
        env = self.settings.environment(env_id)
        tokens = await self.token_store.load(env.id)
        if tokens is None:
            return AuthState(is_authenticated=False)
        user = tokens.user
        if user is None and tokens.id_token:
            user = decode_id_token(tokens.id_token)
        return AuthState(is_authenticated=True, user=user)

    async def get_access_token(self, env_id: str) -> str | None:
        """Return a usable access token for ``env_id``, refreshing if needed.

        Returns
        -------
        str or None
            The access token, or None when there is no session or the
            refresh failed.
        """
        env = self.settings.environment(env_id)
        tokens = await self.token_store.load(env.id)
        if tokens is None:
            return None
        if not tokens.expires_within(self.refresh_buffer_seconds):
            return tokens.access_token

        if not tokens.refresh_token:
            logger.info("Access token for %s expired and cannot be refreshed", env.id)
            await self.token_store.clear(env.id)
            self._refresh_failures.pop(env.id, None)
            return None

        # Callers racing on the same expiry share one refresh.
        task = self._refreshing.get(env.id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(env, tokens, tokens.refresh_token))
            self._refreshing[env.id] = task
            task.add_done_callback(lambda _t: self._refreshing.pop(env.id, None))
        return await asyncio.shield(task)

    async def _supersede_refresh(self, env_id: str) -> None:
        """Invalidate any in-flight refresh for ``env_id`` and wait for it.

        Called before sign-in or sign-out rewrites the stored record, so a
        refresh that started against the old session never writes it back.
        """
        task = self._refreshing.get(env_id)
        if task is not None:
            self._generations[env_id] = self._generations.get(env_id, 0) + 1
            await asyncio.wait({task})
        # No await between this bump and the caller's write: a refresh that
        # passed its check earlier has already queued its store ahead of it.
        self._generations[env_id] = self._generations.get(env_id, 0) + 1
        self._refresh_failures.pop(env_id, None)

    async def _refresh(
        self, env: EnvironmentConfig, tokens: TokenSet, refresh_token: str
    ) -> str | None:
        generation = self._generations.get(env.id, 0)
        try:
            metadata = await self.discovery.discover(env.issuer_url)
            fresh = await self.tokens.refresh_tokens(
                metadata.token_endpoint, env.client_id, refresh_token
            )
        except (DiscoveryError, TokenRefreshError) as exc:
            if self._generations.get(env.id, 0) != generation:
                return None
            failures = self._refresh_failures.get(env.id, 0) + 1
            self._refresh_failures[env.id] = failures
            if failures >= self.max_refresh_failures:
                logger.warning(
                    "Token refresh for %s failed %d times, clearing session: %s",
                    env.id,
                    failures,
                    exc,
                )
                await self.token_store.clear(env.id)
                self._refresh_failures.pop(env.id, None)
            else:
                logger.warning(
                    "Token refresh for %s failed (%d/%d): %s",
                    env.id,
                    failures,
                    self.max_refresh_failures,
                    exc,
                )
            return None

        if self._generations.get(env.id, 0) != generation:
            logger.debug("Discarding refresh for %s: session changed meanwhile", env.id)
            return None

        updated = TokenSet(
            access_token=fresh.access_token,
            expires_at=fresh.expires_at,
            refresh_token=fresh.refresh_token or refresh_token,
            id_token=fresh.id_token or tokens.id_token,
            user=tokens.user,
        )
        await self.token_store.store(env.id, updated)
        self._refresh_failures.pop(env.id, None)
        logger.debug("Access token for %s refreshed", env.id)
        return updated.access_token

    # ── API requests ────────────────────────────────────────────────

    async def api_request(
        self,
        env_id: str,
        path: str,
        method: str = "GET",
        body: Any = None,
    ) -> ApiResponse:
        """Send a bearer-authenticated request to the environment's API.

        Failures are returned, not raised, so the shell can show them.

        Parameters
        ----------
        env_id : str
            Environment whose API and session to use.
        path : str
            Path appended to the API base URL, e.g. ``"/api/projects"``.
        method : str
            HTTP method (default ``"GET"``).
        body : Any, optional
            JSON body for non-GET requests; ``{}`` is sent when omitted.

        Returns
        -------
        ApiResponse
            Decoded JSON on success; the error text and status otherwise.
        """
        env = self.settings.environment(env_id)
        method = method.upper()
        token = await self.get_access_token(env.id)
        if token is None:
            logger.warning("No access token for %s %s", env.id, path)
            return ApiResponse(status=401, error="No access token")

        url = f"{env.api_base_url.rstrip('/')}{path}"
        kwargs: dict[str, Any] = {"headers": {"Authorization": f"Bearer {token}"}}
        if method != "GET":
            kwargs["json"] = body if body is not None else {}

        logger.debug("%s %s %s", env.id, method, path)
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s %s failed: %s", env.id, method, path, exc)
            return ApiResponse(status=0, error=str(exc) or "Network error")

        if not resp.is_success:
            text = resp.text
            logger.warning(
                "%s %s %s returned %d: %s", env.id, method, path, resp.status_code, text[:200]
            )
            return ApiResponse(
                status=resp.status_code,
                error=f"{resp.status_code} {resp.reason_phrase}: {text}",
            )

        if not resp.content:
            return ApiResponse(status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning("%s %s %s returned invalid JSON", env.id, method, path)
            return ApiResponse(status=resp.status_code, error=f"Invalid JSON response: {exc}")
        return ApiResponse(status=resp.status_code, data=data)

    # ── Shutdown ────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Cancel any sign-in, release the port and close the HTTP client."""
        await self.cancel_sign_in()
        await self._port.release()
        if self._owns_client:
            await self._client.aclose()
