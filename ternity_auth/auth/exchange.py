"""Token endpoint protocol: code exchange and refresh.

The provider only issues refresh tokens on token requests made without a
``resource`` parameter, so the code exchange runs in two steps: an
unscoped ``authorization_code`` grant to obtain the refresh token,
immediately followed by a ``refresh_token`` grant for the API resource.
The resulting resource-scoped access token is the one used for API calls.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import Any

import httpx

from ..exceptions import TokenError, TokenExchangeError, TokenRefreshError
from ..log import redact_sensitive_data
from ..types import TokenSet


logger = logging.getLogger("ternity.auth")


class TokenClient:
    """Talks to the provider's token endpoint.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client.
    api_resource : str
        Resource indicator of the first-party API.
    redirect_uri : str
        Redirect URI registered for the native client.
    """

    def __init__(self, client: httpx.AsyncClient, api_resource: str, redirect_uri: str) -> None:
        """Initialize the token client."""
        self._client = client
        self.api_resource = api_resource
        self.redirect_uri = redirect_uri

    async def exchange_code(
        self,
        token_endpoint: str,
        client_id: str,
        code: str,
        verifier: str,
        redirect_uri: str | None = None,
    ) -> TokenSet:
        """Exchange an authorization code for a resource-scoped TokenSet.

        Parameters
        ----------
        token_endpoint : str
            Provider token endpoint.
        client_id : str
            OAuth client id.
        code : str
            Authorization code from the callback.
        verifier : str
            PKCE code verifier of this attempt.
        redirect_uri : str, optional
            Overrides the configured redirect URI.

        Returns
        -------
        TokenSet
            Step-2 access token and expiry, the newest refresh token, and
            the id token from whichever step supplied one. When the provider
            issues no refresh token the unscoped step-1 token is returned.

        Raises
        ------
        TokenExchangeError
            If the code grant fails.
        TokenRefreshError
            If the resource-scoping refresh fails.
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "code": code,
            "code_verifier": verifier,
            "redirect_uri": redirect_uri or self.redirect_uri,
        }
        initial = await self._post(token_endpoint, data, TokenExchangeError, "Token exchange")

        if not initial.refresh_token:
            logger.warning(
                "Token exchange returned no refresh token; using the unscoped access "
                "token, API calls will fail once it expires"
            )
            return initial

        scoped = await self.refresh_tokens(token_endpoint, client_id, initial.refresh_token)
        return TokenSet(
            access_token=scoped.access_token,
            expires_at=scoped.expires_at,
            refresh_token=scoped.refresh_token or initial.refresh_token,
            id_token=scoped.id_token or initial.id_token,
        )

    async def refresh_tokens(
        self, token_endpoint: str, client_id: str, refresh_token: str
    ) -> TokenSet:
        """Run a ``refresh_token`` grant scoped to the API resource.

        Raises
        ------
        TokenRefreshError
            On a non-success status; the provider's response body is kept
            on the exception.
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "refresh_token": refresh_token,
            "resource": self.api_resource,
        }
        return await self._post(token_endpoint, data, TokenRefreshError, "Token refresh")

    async def _post(
        self,
        token_endpoint: str,
        data: dict[str, str],
        error_cls: type[TokenError],
        label: str,
    ) -> TokenSet:
        logger.debug("%s request: %s", label, redact_sensitive_data(data))
        try:
            resp = await self._client.post(
                token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            msg = f"{label} request failed: {exc}"
            raise error_cls(msg) from exc

        if not resp.is_success:
            body = resp.text
            msg = f"{label} failed: {resp.status_code} {body}"
            raise error_cls(msg, status=resp.status_code, body=body)

        try:
            return _token_set_from_response(resp.json())
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"{label} returned an invalid response: {exc}"
            raise error_cls(msg, status=resp.status_code) from exc


def _token_set_from_response(raw: Any) -> TokenSet:
    """Build a TokenSet from a token endpoint response."""
    if not isinstance(raw, dict):
        msg = f"expected a JSON object, got {type(raw).__name__}"
        raise TypeError(msg)
    access_token = raw["access_token"]
    if not isinstance(access_token, str) or not access_token:
        msg = "access_token must be a non-empty string"
        raise TypeError(msg)
    for key in ("refresh_token", "id_token"):
        if raw.get(key) is not None and not isinstance(raw[key], str):
            msg = f"{key} must be a string"
            raise TypeError(msg)
    expires_in = int(raw.get("expires_in", 3600))
    return TokenSet(
        access_token=access_token,
        expires_at=int(time.time()) + expires_in,
        refresh_token=raw.get("refresh_token"),
        id_token=raw.get("id_token"),
    )
