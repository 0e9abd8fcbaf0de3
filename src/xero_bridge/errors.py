"""
Error taxonomy for the Xero authorization flow.

Every error carries a short, user-facing message. Upstream bodies are kept
on the exception for logging and diagnostics but never shown to the user
on the browser-navigation endpoints.
"""
from typing import Optional


class XeroBridgeError(Exception):
    """Base class for errors that terminate a request with a known outcome."""
    kind = 'Error'
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(XeroBridgeError):
    """Raised when deployment secrets are missing. Never retried."""
    kind = 'ConfigurationError'
    status_code = 500


class ProviderDenied(XeroBridgeError):
    """The user or Xero rejected the consent request."""
    kind = 'ProviderDenied'
    status_code = 400


class MissingCode(XeroBridgeError):
    kind = 'MissingCode'
    status_code = 400


class MissingState(XeroBridgeError):
    kind = 'MissingState'
    status_code = 400


class SessionExpired(XeroBridgeError):
    """The correlation cookie is absent, unreadable or past its expiry."""
    kind = 'SessionExpired'
    status_code = 400


class StateMismatch(XeroBridgeError):
    """Callback state does not match the cookie. Possible CSRF."""
    kind = 'StateMismatch'
    status_code = 400


class InvalidInput(XeroBridgeError):
    kind = 'InvalidInput'
    status_code = 400


class UpstreamError(XeroBridgeError):
    """A Xero endpoint answered with a non-2xx status or could not be reached."""
    kind = 'UpstreamError'

    def __init__(self, message: str, status_code: int, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchangeFailed(UpstreamError):
    kind = 'TokenExchangeFailed'


class TenantFetchFailed(UpstreamError):
    kind = 'TenantFetchFailed'
