"""Tests for PKCE verifier/challenge generation."""

from __future__ import annotations

import re

from ternity_auth.auth.pkce import PKCEChallenge, generate_challenge, generate_verifier


_BASE64URL = re.compile(r"^[A-Za-z0-9_-]+$")


class TestPKCE:
    """Tests for the S256 PKCE pair."""

    def test_rfc7636_vector(self) -> None:
        """Challenge matches the RFC 7636 appendix B example."""
        verifier = "dBjftJeZ4CVP-mJ92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_challenge_is_deterministic(self) -> None:
        """Same verifier, same challenge."""
        verifier = generate_verifier()
        assert generate_challenge(verifier) == generate_challenge(verifier)

    def test_verifier_shape(self) -> None:
        """32 random bytes encode to 43 unpadded base64url characters."""
        verifier = generate_verifier()
        assert len(verifier) == 43
        assert _BASE64URL.match(verifier)

    def test_challenge_unpadded(self) -> None:
        """Challenge is base64url without '=' padding."""
        challenge = generate_challenge(generate_verifier())
        assert len(challenge) == 43
        assert "=" not in challenge
        assert _BASE64URL.match(challenge)

    def test_generate_pair(self) -> None:
        """PKCEChallenge.generate ties the challenge to its verifier."""
        pair = PKCEChallenge.generate()
        assert pair.method == "S256"
        assert pair.challenge == generate_challenge(pair.verifier)

    def test_pairs_are_distinct(self) -> None:
        """Distinct verifiers never share a challenge."""
        verifiers = {generate_verifier() for _ in range(100_000)}
        assert len(verifiers) == 100_000
        challenges = {generate_challenge(v) for v in verifiers}
        assert len(challenges) == len(verifiers)

    def test_similar_verifiers_differ(self) -> None:
        """A one-character change in the verifier changes the challenge."""
        base = "a" * 43
        variants = [base[:i] + "b" + base[i + 1 :] for i in range(len(base))]
        challenges = {generate_challenge(v) for v in [base, *variants]}
        assert len(challenges) == len(variants) + 1
