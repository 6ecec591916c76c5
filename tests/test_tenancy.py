"""
Tests for tenant management, the tenant guard and tenant isolation
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger_core.storage import InMemoryStorage
from ledger_core.audit import AuditTrail, AuditEventType
from ledger_core.tenancy import (
    TenantManager, TenantGuard, get_current_tenant, set_current_tenant, tenant_context
)
from ledger_core.ledger import EntryStore
from ledger_core.accounts import AccountRegistry
from ledger_core.transactions import TransactionProcessor, TransactionRequest
from ledger_core.reversals import ReversalManager
from ledger_core.balances import BalanceCalculator
from ledger_core.logging_config import JSONFormatter
from ledger_core.errors import (
    DuplicateCode, TenantNotFound, TenantInactive, ForbiddenCrossTenant,
    AccountNotFound, TransactionNotFound, LedgerNotFound, ValidationError
)


class TestTenantManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = TenantManager(self.storage, self.audit_trail)

    def test_create_and_get(self):
        tenant = self.manager.create_tenant("Acme Ltda", "ACME", settings={"timezone": "UTC"})

        loaded = self.manager.get_tenant(tenant.id)
        assert loaded.name == "Acme Ltda"
        assert loaded.code == "ACME"
        assert loaded.is_active
        assert loaded.settings == {"timezone": "UTC"}
        assert self.manager.get_tenant_by_code("ACME").id == tenant.id

    def test_explicit_id(self):
        tenant = self.manager.create_tenant("Acme", "ACME", tenant_id="tenant-acme")
        assert tenant.id == "tenant-acme"
        assert self.manager.get_tenant("tenant-acme") is not None

    def test_duplicate_code(self):
        self.manager.create_tenant("Acme", "ACME")
        with pytest.raises(DuplicateCode, match="ACME"):
            self.manager.create_tenant("Other Acme", "ACME")
        assert len(self.manager.list_tenants()) == 1

    def test_blank_name_or_code(self):
        with pytest.raises(ValidationError, match="name"):
            self.manager.create_tenant("  ", "ACME")
        with pytest.raises(ValidationError, match="code"):
            self.manager.create_tenant("Acme", "")
        assert self.manager.list_tenants() == []

    def test_list_tenants(self):
        self.manager.create_tenant("Zeta", "ZETA")
        beta = self.manager.create_tenant("Beta", "BETA")
        self.manager.deactivate_tenant(beta.id)

        assert [t.code for t in self.manager.list_tenants()] == ["BETA", "ZETA"]
        assert [t.code for t in self.manager.list_tenants(is_active=True)] == ["ZETA"]
        assert [t.code for t in self.manager.list_tenants(is_active=False)] == ["BETA"]

    def test_deactivate_unknown(self):
        with pytest.raises(TenantNotFound):
            self.manager.deactivate_tenant("nope")

    def test_lifecycle_is_audited(self):
        tenant = self.manager.create_tenant("Acme", "ACME")
        self.manager.deactivate_tenant(tenant.id)

        events = self.audit_trail.get_events_for_entity("tenant", tenant.id)
        assert [e.event_type for e in events] == [
            AuditEventType.TENANT_CREATED, AuditEventType.TENANT_DEACTIVATED
        ]


class TestTenantGuard:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = TenantManager(self.storage)
        self.guard = TenantGuard(self.manager)
        self.tenant = self.manager.create_tenant("Acme", "ACME")

    def test_authorize_own_tenant(self):
        assert self.guard.authorize(self.tenant.id).id == self.tenant.id
        assert self.guard.authorize(self.tenant.id, self.tenant.id).id == self.tenant.id

    def test_authorize_other_tenant_requested(self):
        other = self.manager.create_tenant("Other", "OTHER")
        with pytest.raises(ForbiddenCrossTenant):
            self.guard.authorize(self.tenant.id, other.id)

    def test_authorize_unknown_tenant(self):
        with pytest.raises(TenantNotFound):
            self.guard.authorize("ghost")

    def test_authorize_inactive_tenant(self):
        self.manager.deactivate_tenant(self.tenant.id)
        with pytest.raises(TenantInactive):
            self.guard.authorize(self.tenant.id)

    def test_check_access(self):
        row = {"id": "r1", "tenant_id": self.tenant.id}
        assert self.guard.check_access(self.tenant.id, row, "account", "r1") is row

        with pytest.raises(AccountNotFound):
            self.guard.check_access(self.tenant.id, None, "account", "r1", AccountNotFound)
        with pytest.raises(ForbiddenCrossTenant, match="account r1"):
            self.guard.check_access("someone-else", row, "account", "r1")


class TestTenantContext:

    def teardown_method(self):
        set_current_tenant(None)

    def test_context_manager_restores(self):
        set_current_tenant("outer")
        with tenant_context("inner"):
            assert get_current_tenant() == "inner"
        assert get_current_tenant() == "outer"

    def test_json_formatter_uses_context_tenant(self):
        record = logging.LogRecord("ledger.test", logging.INFO, __file__, 1, "hello", (), None)
        with tenant_context("tenant-x"):
            payload = json.loads(JSONFormatter().format(record))

        assert payload["tenant_id"] == "tenant-x"
        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert "user_id" not in payload


class TestTenantIsolation:
    """Two tenants with identical charts never see each other's rows"""

    def setup_method(self):
        self.storage = InMemoryStorage()
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

        self.tenant_a = self.tenant_manager.create_tenant("Tenant A", "A").id
        self.tenant_b = self.tenant_manager.create_tenant("Tenant B", "B").id
        self.registry.setup_default_chart(self.tenant_a)
        self.registry.setup_default_chart(self.tenant_b)

        self.a_checking = self.registry.get_account_by_code(self.tenant_a, "1.1.1.002")
        self.a_admin = self.registry.get_account_by_code(self.tenant_a, "5.1.1")
        self.b_checking = self.registry.get_account_by_code(self.tenant_b, "1.1.1.002")
        self.b_admin = self.registry.get_account_by_code(self.tenant_b, "5.1.1")

        self.a_expense = self.processor.create_transaction(self.tenant_a, TransactionRequest(
            type="expense", amount="150.50", description="Office rent",
            idempotency_key="rent-1", date=datetime(2024, 1, 15, tzinfo=timezone.utc),
            category_id=self.a_admin.id, from_account_id=self.a_checking.id
        )).transaction

    def test_codes_are_unique_per_tenant_only(self):
        assert self.a_checking.id != self.b_checking.id
        assert self.a_checking.code == self.b_checking.code

    def test_account_of_other_tenant_is_forbidden(self):
        with pytest.raises(ForbiddenCrossTenant):
            self.registry.get_account(self.tenant_b, self.a_checking.id)
        with pytest.raises(ForbiddenCrossTenant):
            self.balances.get_balance(self.tenant_b, self.a_checking.id)

    def test_missing_account_is_not_found(self):
        with pytest.raises(AccountNotFound):
            self.registry.get_account(self.tenant_b, "does-not-exist")

    def test_transaction_of_other_tenant_is_forbidden(self):
        with pytest.raises(ForbiddenCrossTenant):
            self.processor.get_transaction(self.tenant_b, self.a_expense.id)
        with pytest.raises(ForbiddenCrossTenant):
            self.reversals.reverse_transaction(self.tenant_b, self.a_expense.id)
        with pytest.raises(TransactionNotFound):
            self.processor.get_transaction(self.tenant_b, "does-not-exist")

    def test_cannot_post_to_other_tenants_accounts(self):
        with pytest.raises(ForbiddenCrossTenant):
            self.processor.create_transaction(self.tenant_b, TransactionRequest(
                type="expense", amount="10.00", description="Sneaky",
                idempotency_key="sneaky", category_id=self.b_admin.id,
                from_account_id=self.a_checking.id
            ))

    def test_cannot_create_account_in_other_tenants_ledger(self):
        ledger_a = self.registry.list_ledgers(self.tenant_a)[0]
        with pytest.raises(LedgerNotFound):
            self.registry.create_account(
                self.tenant_b, ledger_a.id, "Stolen", "9.9", ledger_a.ledger_type
            )

    def test_explicit_other_tenant_in_request(self):
        with pytest.raises(ForbiddenCrossTenant):
            self.processor.create_transaction(self.tenant_a, TransactionRequest(
                type="expense", amount="10.00", description="Wrong tenant",
                idempotency_key="wrong", category_id=self.a_admin.id,
                from_account_id=self.a_checking.id, tenant_id=self.tenant_b
            ))

    def test_same_idempotency_key_in_two_tenants(self):
        result = self.processor.create_transaction(self.tenant_b, TransactionRequest(
            type="expense", amount="150.50", description="Office rent",
            idempotency_key="rent-1", date=datetime(2024, 1, 15, tzinfo=timezone.utc),
            category_id=self.b_admin.id, from_account_id=self.b_checking.id
        ))
        assert result.created
        assert result.transaction.id != self.a_expense.id

    def test_listings_and_balances_are_scoped(self):
        assert self.processor.list_transactions(self.tenant_b).total == 0
        assert self.processor.list_transactions(self.tenant_a).total == 1
        assert self.balances.get_balance(self.tenant_b, self.b_checking.id).amount == Decimal('0')
        assert self.balances.get_balance(self.tenant_a, self.a_checking.id).amount == Decimal('-150.50')
