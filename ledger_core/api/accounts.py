"""
Account endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from .auth import LedgerSystem, get_ledger_system, get_tenant_id
from .schemas import CreateAccountRequest, UpdateAccountRequest, parse_datetime
from ..errors import ValidationError


router = APIRouter()


@router.post("", status_code=201)
async def create_account(
    request: CreateAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new account in one of the tenant's ledgers"""
    system.guard.authorize(tenant_id, request.tenant_id)
    account = system.registry.create_account(
        tenant_id=tenant_id,
        ledger_id=request.ledger_id,
        name=request.name,
        code=request.code,
        account_type=request.type,
        subtype=request.subtype,
        metadata=request.metadata,
        description=request.description
    )
    return account.to_dict()


@router.get("")
async def list_accounts(
    type: Optional[str] = None,
    ledger_id: Optional[str] = None,
    active: Optional[bool] = None,
    search: Optional[str] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List accounts sorted by code"""
    accounts = system.registry.list_accounts(
        tenant_id, account_type=type, ledger_id=ledger_id, active=active, search=search
    )
    return {"accounts": [a.to_dict() for a in accounts]}


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details with the current balance"""
    account = system.registry.get_account(tenant_id, account_id)
    balance = system.balances.get_balance(tenant_id, account_id)

    data = account.to_dict()
    data["balance"] = str(balance.amount)
    data["currency"] = balance.currency.code
    return data


@router.put("/{account_id}")
async def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Update name, description, metadata or the active flag"""
    account = system.registry.update_account(
        tenant_id, account_id, request.model_dump(exclude_unset=True)
    )
    return account.to_dict()


@router.delete("/{account_id}", status_code=204)
async def delete_account(
    account_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deactivate an account that has never been posted to"""
    system.registry.deactivate_account(tenant_id, account_id)
    return Response(status_code=204)


@router.get("/{account_id}/balance")
async def get_account_balance(
    account_id: str,
    date: Optional[str] = Query(None, description="Balance as of the end of this date"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    include_history: bool = False,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Point-in-time balance, optionally with the running history of a period"""
    as_of = parse_datetime(date, "date", end_of_day=True)
    summary = system.balances.get_balance_summary(tenant_id, account_id, as_of)
    data = summary.to_dict()

    if include_history:
        start = parse_datetime(start_date, "start_date")
        end = parse_datetime(end_date, "end_date", end_of_day=True)
        if start is None or end is None:
            raise ValidationError(
                "start_date and end_date are required with include_history",
                details={"fields": ["start_date", "end_date"]}
            )
        history = system.balances.get_balance_history(tenant_id, account_id, start, end)
        data["history"] = [snapshot.to_dict() for snapshot in history]

    return data
