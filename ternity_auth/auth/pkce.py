"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


def generate_verifier(length: int = 32) -> str:
    """Generate a URL-safe code verifier.

    Parameters
    ----------
    length : int
        Number of random bytes (default 32, i.e. 256 bits of entropy).

    Returns
    -------
    str
        Unpadded base64url string.
    """
    return secrets.token_urlsafe(length)


def generate_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 32) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of bytes for the random verifier (default 32).
            RFC 7636 recommends at least 32 bytes.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = generate_verifier(length)
        return cls(verifier=verifier, challenge=generate_challenge(verifier))
