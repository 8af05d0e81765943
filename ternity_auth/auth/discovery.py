"""OIDC discovery with a per-process cache."""

from __future__ import annotations

import logging

import httpx

from ..exceptions import DiscoveryError
from ..types import OidcMetadata


logger = logging.getLogger("ternity.auth")

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class OidcDiscovery:
    """Fetches and memoizes provider metadata per issuer.

    Entries never expire; provider metadata is assumed stable for
    the lifetime of the process.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        """Initialize the discovery cache."""
        self._client = client
        self._cache: dict[str, OidcMetadata] = {}

    def cached(self, issuer_url: str) -> OidcMetadata | None:
        """Return the cached metadata for ``issuer_url`` without fetching."""
        return self._cache.get(issuer_url.rstrip("/"))

    def clear(self) -> None:
        """Drop all cached entries."""
        self._cache.clear()

    async def discover(self, issuer_url: str) -> OidcMetadata:
        """Return provider metadata for ``issuer_url``.

        Raises
        ------
        DiscoveryError
            If the metadata document cannot be fetched or parsed.
        """
        key = issuer_url.rstrip("/")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        url = f"{key}{WELL_KNOWN_PATH}"
        logger.debug("Discovering OIDC endpoints at %s", url)
        try:
            resp = await self._client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            msg = f"OIDC discovery failed: {exc}"
            raise DiscoveryError(msg, issuer=key) from exc

        if not resp.is_success:
            msg = f"OIDC discovery failed: {resp.status_code} {resp.reason_phrase}"
            raise DiscoveryError(msg, issuer=key)

        try:
            metadata = OidcMetadata.from_document(resp.json())
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"OIDC discovery returned an invalid document: {exc}"
            raise DiscoveryError(msg, issuer=key) from exc

        self._cache[key] = metadata
        logger.debug("OIDC discovered: %s", metadata.authorization_endpoint)
        return metadata
