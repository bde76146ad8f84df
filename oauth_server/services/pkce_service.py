"""PKCE (RFC 7636) with the S256 method only.

The client keeps a random code_verifier, sends
BASE64URL(SHA256(verifier)) as code_challenge to /authorize, and proves
possession by sending the verifier to /token.  "plain" is not accepted.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets

SUPPORTED_METHODS = ("S256",)

# RFC 7636 section 4.1: 43-128 chars from the unreserved set.  A challenge
# is held to the same alphabet and bounds.
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    # 32 random bytes -> 43 base64url chars, the minimum length
    return _b64url(secrets.token_bytes(32))


def compute_code_challenge(code_verifier: str) -> str:
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def is_valid_code_verifier(code_verifier: str) -> bool:
    return bool(_VERIFIER_RE.match(code_verifier))


def is_valid_code_challenge(code_challenge: str) -> bool:
    return bool(_VERIFIER_RE.match(code_challenge))


def verify_code_challenge(code_verifier: str, expected_challenge: str) -> bool:
    """Constant-time check that code_verifier hashes to expected_challenge."""
    if not is_valid_code_verifier(code_verifier):
        return False
    return hmac.compare_digest(compute_code_challenge(code_verifier), expected_challenge)
