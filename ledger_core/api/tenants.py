"""
Tenant onboarding endpoints (admin only)
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header

from .auth import LedgerSystem, get_ledger_system, create_access_token
from .schemas import CreateTenantRequest
from ..config import get_config
from ..errors import Unauthenticated, TenantNotFound


router = APIRouter()


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """Onboarding is closed unless an admin token is configured and presented"""
    expected = get_config().admin_token
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise Unauthenticated("Invalid admin token")


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
async def create_tenant(
    request: CreateTenantRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """
    Create a tenant, optionally with the default chart of accounts

    The response carries an access token for the new tenant so the first
    calls can be made right away.
    """
    tenant = system.tenant_manager.create_tenant(request.name, request.code, request.settings)
    if request.default_chart:
        system.registry.setup_default_chart(tenant.id)

    data = tenant.to_dict()
    data["access_token"] = create_access_token(tenant.id, user_id="admin")
    return data


@router.get("/{tenant_id}", dependencies=[Depends(require_admin)])
async def get_tenant(
    tenant_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    tenant = system.tenant_manager.get_tenant(tenant_id)
    if tenant is None:
        raise TenantNotFound(tenant_id)
    return tenant.to_dict()
