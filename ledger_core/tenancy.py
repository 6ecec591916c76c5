"""
Multi-Tenancy Support Module

Every ledger row carries a tenant_id. The TenantGuard is the single check
every read and write goes through: a caller only ever sees its own tenant's
rows, and a row that exists under another tenant is refused rather than
reported missing.
"""

import contextvars
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Type

from .storage import StorageInterface, UniqueConstraintError
from .errors import (
    NotFound, TenantNotFound, TenantInactive, ForbiddenCrossTenant, DuplicateCode,
    ValidationError
)


@dataclass
class Tenant:
    """Tenant data class representing one isolated bookkeeping customer"""
    id: str
    name: str
    code: str  # Unique short code, e.g., "ACME"
    is_active: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'is_active': self.is_active,
            'settings': self.settings,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tenant':
        """Create Tenant from dictionary"""
        # Convert string timestamps back to datetime
        if isinstance(data.get('created_at'), str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data.get('updated_at'), str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


# Thread-local tenant context using contextvars
_current_tenant = contextvars.ContextVar('current_tenant', default=None)


def get_current_tenant() -> Optional[str]:
    """Get the current tenant ID for this context"""
    return _current_tenant.get()


def set_current_tenant(tenant_id: Optional[str]) -> None:
    """Set the current tenant ID for this context"""
    _current_tenant.set(tenant_id)


@contextmanager
def tenant_context(tenant_id: str):
    """Context manager for temporary tenant switching"""
    token = _current_tenant.set(tenant_id)
    try:
        yield
    finally:
        _current_tenant.reset(token)


class TenantManager:
    """Manager for tenant onboarding and soft deactivation"""

    TENANT_TABLE = "tenants"

    def __init__(self, storage: StorageInterface, audit_trail=None):
        self.storage = storage
        self.audit_trail = audit_trail

    def create_tenant(self, name: str, code: str,
                      settings: Optional[Dict[str, Any]] = None,
                      tenant_id: Optional[str] = None) -> Tenant:
        """Create a new tenant; codes are unique across the deployment"""
        if not name or not name.strip():
            raise ValidationError("Tenant name is required", details={"field": "name"})
        if not code or not code.strip():
            raise ValidationError("Tenant code is required", details={"field": "code"})
        if not tenant_id:
            tenant_id = str(uuid.uuid4())

        tenant = Tenant(
            id=tenant_id,
            name=name,
            code=code,
            settings=settings or {}
        )

        with self.storage.atomic():
            try:
                self.storage.insert(
                    self.TENANT_TABLE, tenant.id, tenant.to_dict(), unique=[('code',)]
                )
            except UniqueConstraintError:
                raise DuplicateCode(code, entity="tenant")

            if self.audit_trail:
                from .audit import AuditEventType
                self.audit_trail.log_event(
                    AuditEventType.TENANT_CREATED,
                    "tenant",
                    tenant.id,
                    {"name": name, "code": code},
                    tenant_id=tenant.id
                )

        return tenant

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """Get tenant by ID"""
        data = self.storage.load(self.TENANT_TABLE, tenant_id)
        if data:
            return Tenant.from_dict(data)
        return None

    def get_tenant_by_code(self, code: str) -> Optional[Tenant]:
        """Get tenant by code"""
        tenants = self.storage.find(self.TENANT_TABLE, {'code': code})
        if tenants:
            return Tenant.from_dict(tenants[0])
        return None

    def list_tenants(self, is_active: Optional[bool] = None) -> List[Tenant]:
        """List all tenants, optionally filtered by active status"""
        filters = {}
        if is_active is not None:
            filters['is_active'] = is_active

        tenant_data = self.storage.find(self.TENANT_TABLE, filters)
        tenants = [Tenant.from_dict(data) for data in tenant_data]
        tenants.sort(key=lambda t: t.code)
        return tenants

    def deactivate_tenant(self, tenant_id: str) -> Tenant:
        """Soft-deactivate a tenant; its rows stay in place"""
        with self.storage.atomic():
            tenant = self.get_tenant(tenant_id)
            if not tenant:
                raise TenantNotFound(tenant_id)

            tenant.is_active = False
            tenant.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.TENANT_TABLE, tenant.id, tenant.to_dict())

            if self.audit_trail:
                from .audit import AuditEventType
                self.audit_trail.log_event(
                    AuditEventType.TENANT_DEACTIVATED,
                    "tenant",
                    tenant.id,
                    {"code": tenant.code},
                    tenant_id=tenant.id
                )

        return tenant


class TenantGuard:
    """
    Scopes every operation to the caller's tenant.

    ``authorize`` validates the caller and any explicitly requested tenant;
    ``check_access`` validates a loaded row. Both raise, never return False.
    """

    def __init__(self, tenant_manager: TenantManager):
        self.tenant_manager = tenant_manager

    def authorize(self, caller_tenant_id: str,
                  requested_tenant_id: Optional[str] = None) -> Tenant:
        """
        Validate the caller's tenant

        Args:
            caller_tenant_id: Tenant derived from the authenticated caller
            requested_tenant_id: Tenant named explicitly in the request, if any

        Returns:
            The caller's Tenant

        Raises:
            ForbiddenCrossTenant: if a different tenant is requested
            TenantNotFound: if the caller's tenant does not exist
            TenantInactive: if the caller's tenant was deactivated
        """
        if requested_tenant_id is not None and requested_tenant_id != caller_tenant_id:
            raise ForbiddenCrossTenant("tenant", requested_tenant_id)

        tenant = self.tenant_manager.get_tenant(caller_tenant_id)
        if tenant is None:
            raise TenantNotFound(caller_tenant_id)
        if not tenant.is_active:
            raise TenantInactive(f"Tenant {caller_tenant_id} is inactive",
                                 details={"tenant_id": caller_tenant_id})
        return tenant

    def check_access(self, caller_tenant_id: str, record: Optional[Dict[str, Any]],
                     entity: str, entity_id: str,
                     not_found: Type[NotFound] = NotFound) -> Dict[str, Any]:
        """
        Return ``record`` if it belongs to the caller's tenant

        Raises:
            NotFound (or the given subclass): if the row does not exist
            ForbiddenCrossTenant: if the row belongs to another tenant
        """
        if record is None:
            raise not_found(entity_id)
        if record.get('tenant_id') != caller_tenant_id:
            raise ForbiddenCrossTenant(entity, entity_id)
        return record
