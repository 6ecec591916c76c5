"""
Shared wiring for ledger tests: a fresh store, one tenant and the default chart
"""

from datetime import datetime, timezone

from ledger_core.storage import InMemoryStorage
from ledger_core.audit import AuditTrail
from ledger_core.tenancy import TenantManager, TenantGuard
from ledger_core.ledger import EntryStore
from ledger_core.accounts import AccountRegistry
from ledger_core.balances import BalanceCalculator
from ledger_core.transactions import TransactionProcessor, TransactionRequest


JAN_15 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class LedgerFixture:
    """Wires the ledger components on a fresh store with the default chart"""

    def setup_method(self):
        self.storage = self.make_storage()
        self.audit_trail = AuditTrail(self.storage)
        self.tenant_manager = TenantManager(self.storage, self.audit_trail)
        self.guard = TenantGuard(self.tenant_manager)
        self.entry_store = EntryStore(self.storage)
        self.registry = AccountRegistry(self.storage, self.guard, self.entry_store, self.audit_trail)
        self.processor = TransactionProcessor(
            self.storage, self.guard, self.registry, self.entry_store, self.audit_trail
        )
        self.balances = BalanceCalculator(self.guard, self.registry, self.entry_store)

        self.tenant_id = self.tenant_manager.create_tenant("Acme", "ACME").id
        self.registry.setup_default_chart(self.tenant_id)

        self.cash = self.account("1.1.1.001")
        self.checking = self.account("1.1.1.002")
        self.savings = self.account("1.1.1.003")
        self.credit_card = self.account("2.1.1")
        self.sales = self.account("4.1.1")
        self.admin = self.account("5.1.1")

    def teardown_method(self):
        self.storage.close()

    def make_storage(self):
        return InMemoryStorage()

    def account(self, code):
        return self.registry.get_account_by_code(self.tenant_id, code)

    def balance(self, account):
        return self.balances.get_balance(self.tenant_id, account.id).amount

    def expense(self, amount="150.50", key="exp-1", date=JAN_15, **kwargs):
        fields = dict(
            type="expense", amount=amount, description="Office supplies",
            idempotency_key=key, date=date,
            category_id=self.admin.id, from_account_id=self.checking.id
        )
        fields.update(kwargs)
        return self.processor.create_transaction(self.tenant_id, TransactionRequest(**fields))

    def income(self, amount="1000.00", key="inc-1", date=JAN_15, **kwargs):
        fields = dict(
            type="income", amount=amount, description="Consulting",
            idempotency_key=key, date=date,
            category_id=self.sales.id, to_account_id=self.checking.id
        )
        fields.update(kwargs)
        return self.processor.create_transaction(self.tenant_id, TransactionRequest(**fields))
