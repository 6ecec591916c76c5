"""
Authentication dependencies and the ledger system wiring
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..tenancy import TenantManager, TenantGuard, set_current_tenant
from ..ledger import EntryStore
from ..accounts import AccountRegistry
from ..transactions import TransactionProcessor
from ..reversals import ReversalManager
from ..balances import BalanceCalculator
from ..reporting import ReportGenerator
from ..config import get_config
from ..errors import Unauthenticated


class LedgerSystem:
    """Ledger core with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None):
        self.storage = storage or create_storage(get_config().database_url)

        self.audit_trail = AuditTrail(self.storage)
        self.tenant_manager = TenantManager(self.storage, self.audit_trail)
        self.guard = TenantGuard(self.tenant_manager)
        self.entry_store = EntryStore(self.storage)
        self.registry = AccountRegistry(self.storage, self.guard, self.entry_store, self.audit_trail)
        self.processor = TransactionProcessor(
            self.storage, self.guard, self.registry, self.entry_store, self.audit_trail
        )
        self.reversals = ReversalManager(self.storage, self.guard, self.processor, self.audit_trail)
        self.balances = BalanceCalculator(self.guard, self.registry, self.entry_store)
        self.reports = ReportGenerator(
            self.guard, self.registry, self.entry_store, self.balances, self.audit_trail
        )


_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Dependency returning the process-wide ledger system, created on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


security = HTTPBearer(auto_error=False)


@dataclass
class Caller:
    """Authenticated caller"""
    tenant_id: str
    user_id: str


def create_access_token(tenant_id: str, user_id: str = "system",
                        expires_hours: Optional[int] = None) -> str:
    """Issue a signed token carrying the caller's tenant"""
    config = get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours or config.jwt_expiry_hours)
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


async def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_tenant_id: Optional[str] = Header(None)
) -> Caller:
    """
    Dependency that validates the bearer token and returns the caller

    With authentication disabled the tenant comes from the X-Tenant-ID header.
    """
    config = get_config()

    if not config.auth_enabled:
        if not x_tenant_id:
            raise Unauthenticated("X-Tenant-ID header is required")
        caller = Caller(tenant_id=x_tenant_id, user_id="anonymous")
    else:
        if not credentials:
            raise Unauthenticated("Not authenticated")
        try:
            payload = jwt.decode(
                credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm]
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError:
            raise Unauthenticated("Invalid token")

        tenant_id = payload.get("tenant_id")
        if not tenant_id:
            raise Unauthenticated("Token has no tenant_id claim")
        caller = Caller(tenant_id=tenant_id, user_id=payload.get("sub") or "unknown")

    # Tags every log line of this request
    set_current_tenant(caller.tenant_id)
    return caller


async def get_tenant_id(
    tenant_id: Optional[str] = Query(None, description="Must equal the caller's tenant when given"),
    caller: Caller = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
) -> str:
    """Dependency resolving the tenant every operation is scoped to"""
    system.guard.authorize(caller.tenant_id, tenant_id)
    return caller.tenant_id
