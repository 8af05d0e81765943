"""Ternity auth exception hierarchy.

All Ternity-specific exceptions inherit from TernityException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class TernityException(Exception):
    """Base exception for all Ternity auth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize Ternity exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (environment, flow_id, status, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class UnknownEnvironmentError(TernityException, ValueError):
    """The requested environment id is not configured."""

    def __init__(self, environment: str) -> None:
        """Initialize unknown environment error."""
        super().__init__(f"Unknown environment: {environment}")
        self.environment = environment


class StorageDecodeError(TernityException):
    """A persisted token record could not be decrypted or parsed.

    Never propagated past the token store; a corrupt record reads as
    "no session".
    """


class AuthenticationError(TernityException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including
    the sign-in flow, token exchange, or profile resolution.
    """

    def __init__(
        self,
        message: str,
        environment: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        environment : str, optional
            The environment id the operation ran against.
        flow_id : str, optional
            The unique identifier of the sign-in attempt that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, environment=environment, flow_id=flow_id, **context)
        self.environment = environment
        self.flow_id = flow_id


class DiscoveryError(AuthenticationError):
    """OIDC provider metadata could not be fetched.

    Fatal to the current attempt; never retried automatically.
    """


class CallbackError(AuthenticationError):
    """The redirect reached the callback server without a usable code.

    ``reason`` is ``"provider_error"`` when the provider sent an ``error``
    parameter and ``"missing_code"`` when neither code nor error arrived.
    """

    def __init__(self, message: str, reason: str, **context: Any) -> None:
        """Initialize callback error."""
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class CallbackServerError(AuthenticationError):
    """The loopback listener could not be started."""


class AuthFlowCancelled(AuthenticationError):
    """Sign-in was cancelled.

    Raised when the user or the application explicitly aborts the
    attempt, or when the sign-out flow takes over the loopback port.
    """


class AuthFlowTimeout(AuthenticationError):
    """Sign-in timed out.

    Raised when no redirect reaches the callback server within
    the configured ceiling.
    """

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout


class ProfileError(AuthenticationError):
    """The first-party profile endpoint did not return a user."""


class TokenError(AuthenticationError):
    """Base exception for token endpoint failures."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize token error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status : int, optional
            HTTP status returned by the token endpoint.
        body : str, optional
            Response body supplied by the provider.
        **context : Any
            Additional context.
        """
        super().__init__(message, status=status, **context)
        self.status = status
        self.body = body


class TokenExchangeError(TokenError):
    """The authorization code could not be exchanged for tokens."""


class TokenRefreshError(TokenError):
    """The refresh token grant failed."""
