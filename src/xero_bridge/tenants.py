"""
Tenant resolution for the Xero connections list.
"""
import logging
from typing import Iterable

from .models import TenantConnection, TenantSelection

logger = logging.getLogger(__name__)

UNNAMED_TENANT = 'Unnamed Organization'


def resolve_tenants(connections: Iterable[dict]) -> TenantSelection:
    """Pick the active tenant from the provider's connections.

    Provider order is kept as-is; the first usable entry is the active
    tenant. With several tenants the full list goes to the client so the
    user can choose. An empty list yields no active tenant, which the
    client treats as "reconnect needed".
    """
    tenants = []
    for conn in connections or []:
        if not isinstance(conn, dict):
            continue
        tenant_id = conn.get('tenantId')
        if not tenant_id:
            logger.warning("Skipping Xero connection without tenantId")
            continue
        tenants.append(TenantConnection(
            tenant_id=str(tenant_id),
            tenant_name=conn.get('tenantName') or UNNAMED_TENANT,
        ))

    active = tenants[0] if tenants else None
    return TenantSelection(active=active, tenants=tenants)
