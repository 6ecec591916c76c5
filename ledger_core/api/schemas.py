"""
Pydantic schemas for API requests, plus date parsing for query parameters
"""

from datetime import date, datetime, time
from typing import Dict, List, Optional, Any, Union
from pydantic import BaseModel, ConfigDict, Field

from ..ledger import to_utc
from ..errors import ValidationError


def parse_datetime(value: Optional[str], field_name: str,
                   end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO date or datetime into aware UTC

    A plain date means the start of that day, or its last instant when
    ``end_of_day`` is set, so period ends are inclusive of the whole day.
    """
    if value is None or value == "":
        return None
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            moment = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid {field_name} '{value}'", details={"field": field_name})
    return to_utc(moment)


# Tenant schemas
class CreateTenantRequest(BaseModel):
    name: str
    code: str = Field(..., description="Unique short code, e.g. ACME")
    settings: Dict[str, Any] = Field(default_factory=dict)
    default_chart: bool = Field(False, description="Also set up the default chart of accounts")


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    type: str = Field(..., description="expense, income or transfer")
    amount: Union[str, int, float] = Field(..., description="Decimal amount; strings keep exact precision")
    description: str
    idempotency_key: str = Field(..., description="Unique per tenant; retries return the stored result")
    date: Optional[str] = Field(None, description="ISO date or datetime, defaults to now")
    category_id: Optional[str] = Field(None, description="Expense or revenue account")
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    installments: int = 1
    installment_frequency: Optional[str] = Field(None, description="monthly, weekly or daily")
    reference: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tenant_id: Optional[str] = None


class UpdateTransactionRequest(BaseModel):
    """Only description, tags and metadata may change; the rest is checked for immutability"""
    # Unknown fields reach the processor, which rejects them
    model_config = ConfigDict(extra="allow")

    description: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    type: Optional[str] = None
    amount: Optional[Union[str, int, float]] = None
    date: Optional[str] = None
    status: Optional[str] = None
    category_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    reference: Optional[str] = None
    entries: Optional[List[Dict[str, Any]]] = None
    tenant_id: Optional[str] = None


# Account schemas
class CreateAccountRequest(BaseModel):
    ledger_id: str
    name: str
    code: str
    type: str = Field(..., description="asset, liability, equity, revenue or expense")
    subtype: Optional[str] = Field(None, description="Report classification, e.g. current, operating")
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tenant_id: Optional[str] = None


class UpdateAccountRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    code: Optional[str] = None
    type: Optional[str] = None
    subtype: Optional[str] = None
    ledger_id: Optional[str] = None
    tenant_id: Optional[str] = None


# Ledger schemas
class CreateLedgerRequest(BaseModel):
    name: str
    type: str = Field(..., description="asset, liability, equity, revenue or expense")
    description: str = ""
    tenant_id: Optional[str] = None


class DefaultChartRequest(BaseModel):
    tenant_id: Optional[str] = None
