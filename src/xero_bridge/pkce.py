"""
PKCE and state generation for the Xero authorization request.
"""
import base64
import hashlib
import secrets
import time

from .models import AuthRequestState

STATE_BYTES = 16
VERIFIER_BYTES = 32

# Correlation cookie lifetime
AUTH_REQUEST_TTL = 15 * 60


def code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode('utf-8')).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b'=').decode('ascii')


def generate() -> AuthRequestState:
    """Create the state token and verifier/challenge pair for one attempt.

    Hex encoding keeps the verifier inside the RFC 7636 unreserved
    character set at 64 characters.
    """
    state = secrets.token_hex(STATE_BYTES)
    code_verifier = secrets.token_hex(VERIFIER_BYTES)
    now = int(time.time())
    return AuthRequestState(
        state=state,
        code_verifier=code_verifier,
        code_challenge=code_challenge(code_verifier),
        created_at=now,
        expires_at=now + AUTH_REQUEST_TTL,
    )
