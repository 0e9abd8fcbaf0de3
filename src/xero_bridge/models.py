"""
Data types passed between the auth handlers and the Xero client.

None of these are persisted server-side. AuthRequestState travels in the
sealed correlation cookie, TokenSet and the tenant list travel back to the
browser in redirect parameters or JSON bodies.
"""
import time
from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass
class AuthRequestState:
    """One in-flight authorization attempt."""
    state: str
    code_verifier: str
    code_challenge: str
    created_at: int
    expires_at: int

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'AuthRequestState':
        return cls(
            state=str(data['state']),
            code_verifier=str(data['code_verifier']),
            code_challenge=str(data.get('code_challenge', '')),
            created_at=int(data['created_at']),
            expires_at=int(data['expires_at']),
        )


@dataclass
class TokenSet:
    """Access/refresh token pair with an absolute expiry in epoch-ms."""
    access_token: str
    refresh_token: Optional[str]
    expires_at: int
    id_token: Optional[str] = None

    @classmethod
    def from_token_response(cls, data: dict, now_ms: Optional[int] = None) -> 'TokenSet':
        """Build from a provider token endpoint response.

        Args:
            data: Parsed JSON body from the token endpoint
            now_ms: Current time in epoch-ms (defaults to the wall clock)
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        expires_in = int(data.get('expires_in') or 0)
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_at=now_ms + expires_in * 1000,
            id_token=data.get('id_token'),
        )

    def to_client_dict(self) -> dict:
        """The bundle handed to the browser. id_token stays server-side."""
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at,
        }


@dataclass(frozen=True)
class TenantConnection:
    tenant_id: str
    tenant_name: str

    def to_dict(self) -> dict:
        return {'tenantId': self.tenant_id, 'tenantName': self.tenant_name}


@dataclass
class TenantSelection:
    """Result of resolving the provider's connection list."""
    active: Optional[TenantConnection]
    tenants: List[TenantConnection] = field(default_factory=list)

    @property
    def multiple(self) -> bool:
        return len(self.tenants) > 1

    @property
    def tenant_id(self) -> str:
        return self.active.tenant_id if self.active else ''

    @property
    def tenant_name(self) -> str:
        return self.active.tenant_name if self.active else ''


@dataclass
class SearchFilter:
    """Invoice search filter relayed to the automation webhook."""
    tenant_id: str
    search_term: str = ''
    status: str = ''
    date_from: str = ''
    date_to: str = ''
    sort_by: str = 'Date'
    sort_order: str = 'desc'

    @classmethod
    def from_request(cls, data: dict, tenant_id: str) -> 'SearchFilter':
        return cls(
            tenant_id=tenant_id,
            search_term=data.get('searchTerm') or '',
            status=data.get('status') or '',
            date_from=data.get('dateFrom') or '',
            date_to=data.get('dateTo') or '',
            sort_by=data.get('sortBy') or 'Date',
            sort_order=data.get('sortOrder') or 'desc',
        )

    def to_payload(self) -> dict:
        return {
            'tenantId': self.tenant_id,
            'searchTerm': self.search_term,
            'status': self.status,
            'dateFrom': self.date_from,
            'dateTo': self.date_to,
            'sortBy': self.sort_by,
            'sortOrder': self.sort_order,
        }
