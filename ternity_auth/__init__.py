"""Ternity auth - desktop sign-in against the Ternity identity provider.

Runs the OAuth2 Authorization Code flow with PKCE through the system
browser and a loopback redirect, persists per-environment tokens, and
hands out fresh access tokens to the rest of the app.
"""

from .auth import SessionManager
from .config import (
    AuthSettings,
    EnvironmentConfig,
    LogSettings,
    TernitySettings,
    get_settings,
)
from .exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    CallbackError,
    CallbackServerError,
    DiscoveryError,
    ProfileError,
    TernityException,
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
    UnknownEnvironmentError,
)
from .service import (
    api_fetch,
    cancel_sign_in,
    get_access_token,
    get_auth_state,
    get_session_manager,
    reset_session_manager,
    sign_in,
    sign_out,
)
from .types import ApiResponse, AuthState, AuthUser, SignInResult, SignOutResult, TokenSet


__version__ = "0.1.0"

__all__ = [
    "ApiResponse",
    "AuthFlowCancelled",
    "AuthFlowTimeout",
    "AuthSettings",
    "AuthState",
    "AuthUser",
    "AuthenticationError",
    "CallbackError",
    "CallbackServerError",
    "DiscoveryError",
    "EnvironmentConfig",
    "LogSettings",
    "ProfileError",
    "SessionManager",
    "SignInResult",
    "SignOutResult",
    "TernityException",
    "TernitySettings",
    "TokenError",
    "TokenExchangeError",
    "TokenRefreshError",
    "TokenSet",
    "UnknownEnvironmentError",
    "__version__",
    "api_fetch",
    "cancel_sign_in",
    "get_access_token",
    "get_auth_state",
    "get_session_manager",
    "get_settings",
    "reset_session_manager",
    "sign_in",
    "sign_out",
]
