"""
Financial report endpoints
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_tenant_id
from .schemas import parse_datetime
from ..errors import ValidationError


router = APIRouter()


def _required(value: Optional[str], field_name: str, end_of_day: bool = False) -> datetime:
    moment = parse_datetime(value, field_name, end_of_day=end_of_day)
    if moment is None:
        raise ValidationError(f"{field_name} is required", details={"field": field_name})
    return moment


@router.get("/trial-balance")
async def trial_balance(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Per-account movements for a period with opening and closing balances"""
    report = system.reports.trial_balance(
        tenant_id,
        _required(start_date, "start_date"),
        _required(end_date, "end_date", end_of_day=True)
    )
    return report.to_dict()


@router.get("/balance-sheet")
async def balance_sheet(
    date: Optional[str] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Assets, liabilities and equity as of a date (default now)"""
    as_of = parse_datetime(date, "date", end_of_day=True) or datetime.now(timezone.utc)
    return system.reports.balance_sheet(tenant_id, as_of).to_dict()


@router.get("/income-statement")
async def income_statement(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Revenue and expenses for a period"""
    report = system.reports.income_statement(
        tenant_id,
        _required(start_date, "start_date"),
        _required(end_date, "end_date", end_of_day=True)
    )
    return report.to_dict()
