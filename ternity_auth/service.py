"""Process-wide auth service.

The desktop shell calls the module-level coroutines here; they share a
single SessionManager so the one-sign-in-at-a-time guard and the
loopback port lease hold across the whole process.
"""

from __future__ import annotations

import threading

from typing import TYPE_CHECKING, Any

from .auth.session import SessionManager
from .config import get_settings
from .log import configure


if TYPE_CHECKING:
    from .types import ApiResponse, AuthState, SignInResult, SignOutResult


_session_manager: SessionManager | None = None
_session_manager_lock = threading.Lock()


def get_session_manager(**kwargs: Any) -> SessionManager:
    """Get or create the shared session manager.

    Returns a singleton instance built from ``get_settings()``. Call
    ``reset_session_manager()`` to drop it (e.g. in tests).

    Parameters
    ----------
    **kwargs : Any
        Passed to the SessionManager constructor on first creation.

    Returns
    -------
    SessionManager
    """
    global _session_manager  # noqa: PLW0603

    with _session_manager_lock:
        if _session_manager is None:
            settings = get_settings()
            configure(settings.log, settings.auth.config_dir / "logs")
            _session_manager = SessionManager(settings, **kwargs)
        return _session_manager


async def reset_session_manager() -> None:
    """Close and forget the shared session manager."""
    global _session_manager  # noqa: PLW0603

    with _session_manager_lock:
        manager, _session_manager = _session_manager, None
    if manager is not None:
        await manager.aclose()


async def sign_in(env_id: str) -> SignInResult:
    """Sign in to ``env_id`` through the system browser."""
    return await get_session_manager().sign_in(env_id)


async def sign_out(env_id: str) -> SignOutResult:
    """Sign out of ``env_id`` and serve the sign-out pages."""
    return await get_session_manager().sign_out(env_id)


async def get_auth_state(env_id: str) -> AuthState:
    """Stored session state for ``env_id``."""
    return await get_session_manager().get_auth_state(env_id)


async def get_access_token(env_id: str) -> str | None:
    """A usable access token for ``env_id``, or None."""
    return await get_session_manager().get_access_token(env_id)


async def cancel_sign_in() -> None:
    """Cancel the in-flight sign-in, if any."""
    await get_session_manager().cancel_sign_in()


async def api_fetch(
    env_id: str, path: str, method: str = "GET", body: Any = None
) -> ApiResponse:
    """Authenticated request against the API of ``env_id``."""
    return await get_session_manager().api_request(env_id, path, method=method, body=body)
