"""
Sealing for client-held authorization state.

The correlation cookie carries the PKCE verifier, so it is encrypted as
well as authenticated:
- Cookie key derived from the app SECRET_KEY with PBKDF2
  └── Fernet token (AES-CBC + HMAC, issue timestamp embedded)
        └── JSON AuthRequestState

Opening a cookie checks the Fernet TTL and the embedded expires_at, so an
expired attempt is rejected server-side even if the browser replays it.
"""

import json
import base64
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .models import AuthRequestState
from .pkce import AUTH_REQUEST_TTL

logger = logging.getLogger(__name__)

COOKIE_KEY_SALT = b'xero-bridge:auth-request-cookie'


@lru_cache(maxsize=8)
def derive_cookie_key(secret_key: str) -> bytes:
    """Derive the Fernet key for the correlation cookie.

    Args:
        secret_key: The application SECRET_KEY

    Returns:
        A URL-safe base64 32-byte key suitable for Fernet
    """
    if not secret_key:
        raise ValueError("SECRET_KEY is required to seal auth cookies")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=COOKIE_KEY_SALT,
        iterations=100_000,
    )
    derived = kdf.derive(secret_key.encode('utf-8'))
    return base64.urlsafe_b64encode(derived)


def seal_auth_state(auth_state: AuthRequestState, secret_key: str) -> str:
    """Encrypt an AuthRequestState into an opaque cookie value."""
    f = Fernet(derive_cookie_key(secret_key))
    payload = json.dumps(auth_state.to_dict(), separators=(',', ':'))
    return f.encrypt(payload.encode('utf-8')).decode('ascii')


def open_auth_state(cookie_value: str, secret_key: str,
                    ttl: int = AUTH_REQUEST_TTL) -> Optional[AuthRequestState]:
    """Decrypt and validate a correlation cookie.

    Returns:
        The AuthRequestState, or None if the value is tampered with,
        unreadable or expired
    """
    if not cookie_value:
        return None

    try:
        f = Fernet(derive_cookie_key(secret_key))
        payload = f.decrypt(cookie_value.encode('ascii'), ttl=ttl)
    except InvalidToken:
        logger.info("Auth cookie rejected: invalid or expired token")
        return None
    except UnicodeEncodeError:
        logger.info("Auth cookie rejected: not an ASCII token")
        return None

    try:
        auth_state = AuthRequestState.from_dict(json.loads(payload))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Auth cookie rejected: malformed payload ({type(e).__name__})")
        return None

    if auth_state.is_expired():
        logger.info("Auth cookie rejected: attempt expired")
        return None

    return auth_state
