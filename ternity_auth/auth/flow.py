"""State of one sign-in attempt.

A SignInSession is created when sign-in begins and discarded when the
attempt succeeds, fails, times out, or is cancelled. It owns the PKCE
pair, the per-attempt state nonce, and the callback server bound for
the attempt.
"""

from __future__ import annotations

import secrets

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from ..exceptions import AuthFlowCancelled
from ..types import SignInState
from .pkce import PKCEChallenge


if TYPE_CHECKING:
    from ..config import EnvironmentConfig
    from .callback_server import CallbackServer


class SignInSession:
    """One in-flight sign-in attempt.

    Parameters
    ----------
    environment : EnvironmentConfig
        Target environment.
    """

    def __init__(self, environment: EnvironmentConfig) -> None:
        """Create the attempt with a fresh state nonce."""
        self.environment = environment
        self.flow_id = secrets.token_urlsafe(8)
        self.pkce: PKCEChallenge | None = None
        self.state = secrets.token_urlsafe(16)
        self.server: CallbackServer | None = None
        self.status = SignInState.PENDING
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` was called."""
        return self._cancelled

    def generate_pkce(self) -> PKCEChallenge:
        """Generate the verifier/challenge pair for this attempt."""
        self.pkce = PKCEChallenge.generate()
        return self.pkce

    def build_authorize_url(
        self,
        authorization_endpoint: str,
        redirect_uri: str,
        scopes: list[str],
        api_resource: str,
    ) -> str:
        """Build the authorization URL for this attempt.

        The random ``state`` makes every attempt's URL distinct so the OS
        browser never folds a retry into an existing tab.
        """
        if self.pkce is None:
            msg = "PKCE pair not generated yet"
            raise RuntimeError(msg)
        params = {
            "client_id": self.environment.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "code_challenge": self.pkce.challenge,
            "code_challenge_method": self.pkce.method,
            "resource": api_resource,
            "prompt": "consent",
            "state": self.state,
        }
        return f"{authorization_endpoint}?{urlencode(params)}"

    def cancel(self) -> None:
        """Mark the attempt cancelled and reject any pending callback wait."""
        self._cancelled = True
        self.status = SignInState.CANCELLED
        if self.server is not None:
            self.server.cancel()

    def raise_if_cancelled(self) -> None:
        """Stop the attempt at the next step boundary after ``cancel()``."""
        if self._cancelled:
            msg = "Sign-in was cancelled"
            raise AuthFlowCancelled(msg, environment=self.environment.id, flow_id=self.flow_id)
