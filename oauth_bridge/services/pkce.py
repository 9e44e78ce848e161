"""
Proof Key for Code Exchange (RFC 7636) helpers.

Every function here is pure and answers malformed input with ``False`` (or a
``ValueError`` for challenge computation) instead of partial results.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re

from oauth_bridge.models.oauth import CodeChallengeMethod

_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")
_S256_CHALLENGE_PATTERN = re.compile(r"^[A-Za-z0-9\-_]{43}$")


def _coerce_method(method: str | CodeChallengeMethod) -> CodeChallengeMethod:
    return CodeChallengeMethod(method)


def compute_challenge(
    verifier: str, method: str | CodeChallengeMethod = CodeChallengeMethod.S256
) -> str:
    """BASE64URL(SHA256(verifier)) without padding for S256, identity for plain."""
    if _coerce_method(method) is CodeChallengeMethod.PLAIN:
        return verifier
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def is_valid_code_verifier(verifier: str) -> bool:
    """43-128 characters from the unreserved set ``[A-Za-z0-9-._~]``."""
    return isinstance(verifier, str) and bool(_VERIFIER_PATTERN.match(verifier))


def is_valid_challenge_format(
    challenge: str, method: str | CodeChallengeMethod = CodeChallengeMethod.S256
) -> bool:
    """Check a challenge is well formed for its method."""
    if not isinstance(challenge, str):
        return False
    try:
        resolved = _coerce_method(method)
    except ValueError:
        return False
    if resolved is CodeChallengeMethod.S256:
        # 32-byte digest encodes to exactly 43 unpadded base64url characters.
        return bool(_S256_CHALLENGE_PATTERN.match(challenge))
    return is_valid_code_verifier(challenge)


def verify(
    verifier: str,
    stored_challenge: str,
    method: str | CodeChallengeMethod = CodeChallengeMethod.S256,
) -> bool:
    """Recompute the challenge from ``verifier`` and compare in constant time."""
    if not is_valid_code_verifier(verifier) or not isinstance(stored_challenge, str):
        return False
    try:
        computed = compute_challenge(verifier, method)
    except ValueError:
        return False
    return hmac.compare_digest(
        computed.encode("ascii"), stored_challenge.encode("ascii", "replace")
    )


__all__ = [
    "compute_challenge",
    "is_valid_challenge_format",
    "is_valid_code_verifier",
    "verify",
]
