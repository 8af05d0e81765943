"""Data types shared by the auth core."""

from __future__ import annotations

import time

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


@dataclass
class AuthUser:
    """Signed-in user identity.

    Attributes
    ----------
    sub : str
        Subject id.
    name, email, phone, picture : str or None
        Optional profile fields.
    roles : list[str] or None
        Role names granted to the user.
    """

    sub: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    picture: str | None = None
    roles: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, dropping empty fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthUser:
        """Build from a serialized mapping."""
        if not isinstance(data, dict):
            msg = f"user record must be an object, got {type(data).__name__}"
            raise TypeError(msg)
        roles = data.get("roles")
        if roles is not None and not isinstance(roles, list):
            msg = "user roles must be a list"
            raise TypeError(msg)
        return cls(
            sub=str(data["sub"]),
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
            picture=data.get("picture"),
            roles=list(roles) if roles is not None else None,
        )


@dataclass
class TokenSet:
    """Token record persisted per environment.

    ``expires_at`` always describes the resource-scoped access token.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    expires_at : int
        Absolute expiry, epoch seconds.
    refresh_token : str or None
        Refresh token, carried forward across refreshes.
    id_token : str or None
        OIDC ID token (JWT), decoded without verification for display.
    user : AuthUser or None
        Cached profile resolved at sign-in.
    """

    access_token: str
    expires_at: int
    refresh_token: str | None = None
    id_token: str | None = None
    user: AuthUser | None = None

    def expires_within(self, seconds: float, now: float | None = None) -> bool:
        """Whether the access token expires within ``seconds`` from now."""
        current = time.time() if now is None else now
        return self.expires_at <= current + seconds

    def with_user(self, user: AuthUser | None) -> TokenSet:
        """Return a copy carrying ``user`` as the cached profile."""
        return replace(self, user=user)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a compact mapping."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "expires_at": self.expires_at,
        }
        if self.refresh_token is not None:
            data["refresh_token"] = self.refresh_token
        if self.id_token is not None:
            data["id_token"] = self.id_token
        if self.user is not None:
            data["user"] = self.user.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        """Build from a serialized mapping."""
        user = data.get("user")
        if user is not None and not isinstance(user, dict):
            msg = f"user must be an object, got {type(user).__name__}"
            raise TypeError(msg)
        for key in ("refresh_token", "id_token"):
            if data.get(key) is not None and not isinstance(data[key], str):
                msg = f"{key} must be a string"
                raise TypeError(msg)
        return cls(
            access_token=str(data["access_token"]),
            expires_at=int(data["expires_at"]),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            user=AuthUser.from_dict(user) if user else None,
        )


@dataclass(frozen=True)
class OidcMetadata:
    """Provider metadata from the OIDC discovery document."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str | None = None
    end_session_endpoint: str | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> OidcMetadata:
        """Build from a raw discovery document."""
        return cls(
            issuer=doc["issuer"],
            authorization_endpoint=doc["authorization_endpoint"],
            token_endpoint=doc["token_endpoint"],
            userinfo_endpoint=doc.get("userinfo_endpoint"),
            end_session_endpoint=doc.get("end_session_endpoint"),
        )


@dataclass
class AuthState:
    """Result of ``get_auth_state``."""

    is_authenticated: bool
    user: AuthUser | None = None


@dataclass
class SignInResult:
    """Result of ``sign_in``.

    Attributes
    ----------
    success : bool
        Whether sign-in completed.
    user : AuthUser or None
        The resolved user on success.
    error : str or None
        Failure message, surfaced verbatim to the caller.
    """

    success: bool
    user: AuthUser | None = None
    error: str | None = None


@dataclass
class SignOutResult:
    """Result of ``sign_out``."""

    sign_out_page_url: str
    end_session_url: str | None = field(default=None)


@dataclass
class ApiResponse:
    """Result of an authenticated API request.

    ``status`` is the HTTP status, 401 when no access token is available,
    and 0 when the request never got a response.
    """

    status: int
    data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the request succeeded."""
        return self.error is None


class CallbackServerState(str, Enum):
    """State of the loopback callback server."""

    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    SERVING_SIGN_OUT = "serving_sign_out"
    CLOSED = "closed"


class SignInState(str, Enum):
    """State of one sign-in attempt."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
