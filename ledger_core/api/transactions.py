"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from .auth import LedgerSystem, get_ledger_system, get_tenant_id
from .schemas import CreateTransactionRequest, UpdateTransactionRequest, parse_datetime
from ..transactions import TransactionRequest


router = APIRouter()


@router.post("", status_code=201)
async def create_transaction(
    request: CreateTransactionRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """
    Create a transaction, or one per installment

    Replaying an idempotency key returns the stored result with the
    ``Idempotent-Replayed`` header set.
    """
    result = system.processor.create_transaction(
        tenant_id,
        TransactionRequest(
            type=request.type,
            amount=request.amount,
            description=request.description,
            idempotency_key=request.idempotency_key,
            date=parse_datetime(request.date, "date"),
            category_id=request.category_id,
            from_account_id=request.from_account_id,
            to_account_id=request.to_account_id,
            installments=request.installments,
            installment_frequency=request.installment_frequency,
            reference=request.reference,
            tags=request.tags,
            metadata=request.metadata,
            tenant_id=request.tenant_id
        )
    )

    bodies = [t.to_dict(include_entries=True) for t in result.transactions]
    return JSONResponse(
        status_code=201,
        content=bodies if result.batch else bodies[0],
        headers={"Idempotent-Replayed": "false" if result.created else "true"}
    )


@router.get("")
async def list_transactions(
    type: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    search: Optional[str] = None,
    min_amount: Optional[str] = None,
    max_amount: Optional[str] = None,
    account_id: Optional[str] = None,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List transactions with filters, pagination and a summary of the filtered set"""
    result = system.processor.list_transactions(
        tenant_id,
        transaction_type=type,
        status=status,
        start_date=parse_datetime(start_date, "start_date"),
        end_date=parse_datetime(end_date, "end_date", end_of_day=True),
        search=search,
        min_amount=min_amount,
        max_amount=max_amount,
        account_id=account_id,
        page=page,
        limit=limit
    )

    return {
        "transactions": [t.to_dict(include_entries=True) for t in result.transactions],
        "summary": result.summary.to_dict(),
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "pages": result.pages
        }
    }


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get a transaction with its entries"""
    transaction = system.processor.get_transaction(tenant_id, transaction_id)
    return transaction.to_dict(include_entries=True)


@router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    request: UpdateTransactionRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Update description, tags or metadata"""
    patch = request.model_dump(exclude_unset=True)
    patch.update(request.model_extra or {})
    if 'date' in patch:
        patch['date'] = parse_datetime(patch['date'], "date")

    transaction = system.processor.update_transaction(tenant_id, transaction_id, patch)
    return transaction.to_dict(include_entries=True)


@router.delete("/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: str,
    reason: str = Query("", description="Kept in the reversal's metadata"),
    tenant_id: str = Depends(get_tenant_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Reverse a transaction; nothing is ever removed"""
    system.reversals.reverse_transaction(tenant_id, transaction_id, reason=reason)
    return Response(status_code=204)
