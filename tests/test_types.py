"""Tests for the auth data types."""

from __future__ import annotations

from ternity_auth.auth.flow import SignInSession
from ternity_auth.config import DEFAULT_ENVIRONMENTS
from ternity_auth.types import AuthUser, OidcMetadata, SignInState, TokenSet


class TestTokenSet:
    """Tests for TokenSet."""

    def test_expires_within(self) -> None:
        tokens = TokenSet(access_token="a", expires_at=1_000)
        assert tokens.expires_within(60, now=940)
        assert tokens.expires_within(60, now=1_000)
        assert not tokens.expires_within(60, now=939)

    def test_with_user_copies(self) -> None:
        tokens = TokenSet(access_token="a", expires_at=1)
        user = AuthUser(sub="u")
        updated = tokens.with_user(user)
        assert updated.user is user
        assert tokens.user is None

    def test_to_dict_omits_empty(self) -> None:
        data = TokenSet(access_token="a", expires_at=5, user=AuthUser(sub="u", email="e")).to_dict()
        assert data == {"access_token": "a", "expires_at": 5, "user": {"sub": "u", "email": "e"}}


class TestOidcMetadata:
    def test_optional_endpoints(self) -> None:
        metadata = OidcMetadata.from_document(
            {"issuer": "i", "authorization_endpoint": "a", "token_endpoint": "t"}
        )
        assert metadata.end_session_endpoint is None
        assert metadata.userinfo_endpoint is None


class TestSignInSession:
    """Tests for per-attempt state."""

    def test_fresh_state(self) -> None:
        first = SignInSession(DEFAULT_ENVIRONMENTS["dev"])
        second = SignInSession(DEFAULT_ENVIRONMENTS["dev"])
        assert first.state != second.state
        assert first.flow_id != second.flow_id
        assert first.status is SignInState.PENDING
        assert first.pkce is None

    def test_cancel(self) -> None:
        session = SignInSession(DEFAULT_ENVIRONMENTS["dev"])
        session.cancel()
        assert session.cancelled
        assert session.status is SignInState.CANCELLED
