"""OAuth2 Authorization Code + PKCE sign-in for the Ternity desktop app.

Provides provider discovery, the loopback callback server, the token
endpoint protocol, encrypted token persistence, and the session manager
that orchestrates them.
"""

from __future__ import annotations

from .callback_server import CallbackServer, LoopbackPort
from .discovery import OidcDiscovery
from .exchange import TokenClient
from .flow import SignInSession
from .pkce import PKCEChallenge, generate_challenge, generate_verifier
from .profile import decode_id_token, fetch_profile
from .secure_storage import (
    FernetSecureStorage,
    KeyringSecureStorage,
    SecureStorage,
    UnavailableSecureStorage,
)
from .session import SessionManager
from .token_store import TokenStore


__all__ = [
    "CallbackServer",
    "FernetSecureStorage",
    "KeyringSecureStorage",
    "LoopbackPort",
    "OidcDiscovery",
    "PKCEChallenge",
    "SecureStorage",
    "SessionManager",
    "SignInSession",
    "TokenClient",
    "TokenStore",
    "UnavailableSecureStorage",
    "decode_id_token",
    "fetch_profile",
    "generate_challenge",
    "generate_verifier",
]
