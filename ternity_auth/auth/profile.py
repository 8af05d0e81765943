"""User identity resolution.

Identity comes from the first-party API profile endpoint, falling back to
the claims of the ID token. The ID token is decoded without signature
verification: it arrived straight from the provider's token endpoint over
HTTPS, and display must keep working when the provider's key set is
unreachable. The provider's generic userinfo endpoint is never used.
"""

from __future__ import annotations

import logging

from typing import Any

import httpx
import jwt

from ..exceptions import ProfileError
from ..types import AuthUser


logger = logging.getLogger("ternity.auth")


def decode_id_token(id_token: str) -> AuthUser | None:
    """Read the user from an ID token's claims without verifying it.

    Returns
    -------
    AuthUser or None
        None when the token is malformed or carries no subject.
    """
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        logger.debug("Could not decode ID token: %s", exc)
        return None

    sub = claims.get("sub")
    if not sub:
        return None
    roles = claims.get("roles")
    return AuthUser(
        sub=str(sub),
        name=claims.get("name") or claims.get("username"),
        email=claims.get("email"),
        phone=claims.get("phone_number"),
        picture=claims.get("picture"),
        roles=list(roles) if isinstance(roles, list) else None,
    )


def user_from_profile(data: dict[str, Any]) -> AuthUser:
    """Map the API profile payload to an AuthUser.

    Raises
    ------
    ProfileError
        If the payload lacks a user id.
    """
    sub = data.get("userId") or data.get("id") or data.get("sub")
    if not sub:
        msg = "Profile response did not include a user id"
        raise ProfileError(msg)

    roles = data.get("roles")
    if roles is None and data.get("globalRole"):
        roles = [data["globalRole"]]
    return AuthUser(
        sub=str(sub),
        name=data.get("displayName") or data.get("name"),
        email=data.get("email"),
        phone=data.get("phone"),
        picture=data.get("avatarUrl") or data.get("picture"),
        roles=list(roles) if isinstance(roles, list) else None,
    )


async def fetch_profile(
    client: httpx.AsyncClient,
    api_base_url: str,
    access_token: str,
    profile_path: str = "/api/me",
) -> AuthUser:
    """Fetch the signed-in user's profile from the first-party API.

    Raises
    ------
    ProfileError
        If the request fails or returns a non-success status.
    """
    url = f"{api_base_url.rstrip('/')}{profile_path}"
    try:
        resp = await client.get(
            url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
    except httpx.HTTPError as exc:
        msg = f"Profile request failed: {exc}"
        raise ProfileError(msg) from exc

    if not resp.is_success:
        msg = f"Profile request failed: {resp.status_code} {resp.reason_phrase}"
        raise ProfileError(msg, status=resp.status_code)

    try:
        data = resp.json()
    except ValueError as exc:
        msg = "Profile response was not JSON"
        raise ProfileError(msg) from exc
    if not isinstance(data, dict):
        msg = "Profile response was not an object"
        raise ProfileError(msg)
    return user_from_profile(data)
