"""
Ledger endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_tenant_id
from .schemas import CreateLedgerRequest, DefaultChartRequest


router = APIRouter()


@router.post("", status_code=201)
async def create_ledger(
    request: CreateLedgerRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a ledger grouping accounts of one type"""
    system.guard.authorize(tenant_id, request.tenant_id)
    ledger = system.registry.create_ledger(
        tenant_id, request.name, request.type, request.description
    )
    return ledger.to_dict()


@router.get("")
async def list_ledgers(
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"ledgers": [l.to_dict() for l in system.registry.list_ledgers(tenant_id)]}


@router.post("/default-chart", status_code=201)
async def setup_default_chart(
    request: Optional[DefaultChartRequest] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create the standard ledgers and chart of accounts; safe to repeat"""
    if request is not None:
        system.guard.authorize(tenant_id, request.tenant_id)
    chart = system.registry.setup_default_chart(tenant_id)
    return {
        "ledgers": [l.to_dict() for l in chart["ledgers"]],
        "accounts": [a.to_dict() for a in chart["accounts"]]
    }
