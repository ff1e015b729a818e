"""PKCE (RFC 7636) verifier/challenge helpers."""

import base64
import hashlib
import secrets
import string

# RFC 3986 unreserved characters
UNRESERVED = string.ascii_letters + string.digits + "-._~"

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


def generate_code_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Return a cryptographically random verifier of ``length`` unreserved chars."""
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"verifier length must be between {MIN_VERIFIER_LENGTH} and {MAX_VERIFIER_LENGTH}"
        )
    return "".join(secrets.choice(UNRESERVED) for _ in range(length))


def code_challenge(verifier: str) -> str:
    """Base64url (no padding) SHA-256 of the verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(32)
