"""
Test suite for accounting reports

Tests the trial balance, balance sheet and income statement built from the
entry log, including the integrity alarm on unbalanced data.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from ledger_core.currency import Money, Currency
from ledger_core.audit import AuditEventType
from ledger_core.ledger import EntryType, make_entry
from ledger_core.reversals import ReversalManager
from ledger_core.transactions import TransactionRequest
from ledger_core.reporting import ReportGenerator
from ledger_core.errors import IntegrityViolation, ValidationError

from tests.ledger_fixture import LedgerFixture, JAN_15


JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
JAN_31 = datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc)
FEB_10 = datetime(2024, 2, 10, 9, 0, tzinfo=timezone.utc)
FEB_29 = datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)


class ReportFixture(LedgerFixture):

    def setup_method(self):
        super().setup_method()
        self.reports = ReportGenerator(
            self.guard, self.registry, self.entry_store, self.balances, self.audit_trail
        )
        self.loans = self.account("2.2.1")
        self.equipment = self.account("1.2.1.001")
        self.financial_revenue = self.account("4.2")
        self.financial_expenses = self.account("5.2")

    def transfer(self, amount, key, source, destination, date=JAN_15):
        return self.processor.create_transaction(self.tenant_id, TransactionRequest(
            type="transfer", amount=amount, description="Transfer",
            idempotency_key=key, date=date,
            from_account_id=source.id, to_account_id=destination.id
        ))

    def line(self, report, account):
        return [line for line in report.lines if line.account_id == account.id][0]


class TestTrialBalance(ReportFixture):

    def test_movements_and_balances(self):
        self.income(amount="1000.00", key="december", date=JAN_1 - timedelta(days=10))
        self.income(amount="500.00", key="january")
        self.expense(amount="150.50", key="supplies")

        report = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31)
        checking = self.line(report, self.checking)

        assert checking.previous_balance.amount == Decimal('1000.00')
        assert checking.debit_movements.amount == Decimal('500.00')
        assert checking.credit_movements.amount == Decimal('150.50')
        assert checking.current_balance.amount == Decimal('1349.50')

        assert report.total_debits.amount == Decimal('650.50')
        assert report.total_credits.amount == Decimal('650.50')
        assert report.is_balanced

    def test_lists_every_account_sorted_by_code(self):
        report = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31)
        codes = [line.code for line in report.lines]

        assert codes == sorted(codes)
        assert len(codes) == len(self.registry.list_accounts(self.tenant_id))
        assert report.is_balanced

    def test_reversed_transaction_keeps_both_legs(self):
        original = self.expense(amount="80.00", key="typo").transaction
        ReversalManager(self.storage, self.guard, self.processor, self.audit_trail).reverse_transaction(
            self.tenant_id, original.id, reversal_date=JAN_15 + timedelta(days=1)
        )

        report = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31)
        admin = self.line(report, self.admin)
        assert admin.debit_movements.amount == Decimal('80.00')
        assert admin.credit_movements.amount == Decimal('80.00')
        assert admin.current_balance.is_zero()
        assert report.is_balanced

    def test_to_dict(self):
        self.income(amount="10.00")
        data = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31).to_dict()

        assert data["report_type"] == "trial_balance"
        assert data["currency"] == "BRL"
        assert data["totals"] == {"debit_movements": "10.00", "credit_movements": "10.00"}
        assert data["is_balanced"] is True
        assert set(data["accounts"][0]) == {
            "account_id", "code", "name", "type", "previous_balance",
            "debit_movements", "credit_movements", "current_balance"
        }

    def test_same_input_same_output(self):
        self.income()
        self.expense()
        first = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31).to_dict()
        second = self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31).to_dict()
        assert first == second

    def test_unbalanced_entries_raise_integrity_alarm(self):
        self.income()
        # Bypass the entry store to plant a one-sided entry
        stray = make_entry(
            self.tenant_id, "planted", self.cash.id, EntryType.DEBIT,
            Money(Decimal('5.00'), Currency.BRL), "planted", JAN_15, 0
        )
        self.storage.insert("entries", stray.id, stray.to_dict())

        with pytest.raises(IntegrityViolation) as exc_info:
            self.reports.trial_balance(self.tenant_id, JAN_1, JAN_31)
        assert exc_info.value.details["transactions"][0]["transaction_id"] == "planted"

        alarms = self.audit_trail.get_events_by_type(AuditEventType.INTEGRITY_ALARM, self.tenant_id)
        assert len(alarms) == 1
        assert alarms[0].entity_id == "trial_balance"

    def test_period_validation(self):
        with pytest.raises(ValidationError, match="required"):
            self.reports.trial_balance(self.tenant_id, None, JAN_31)
        with pytest.raises(ValidationError, match="start must not be after end"):
            self.reports.trial_balance(self.tenant_id, JAN_31, JAN_1)

    def test_other_tenant_reports_are_separate(self):
        self.income()
        other = self.tenant_manager.create_tenant("Other", "OTHER").id
        self.registry.setup_default_chart(other)

        report = self.reports.trial_balance(other, JAN_1, JAN_31)
        assert report.total_debits.is_zero()


class TestBalanceSheet(ReportFixture):

    def setup_method(self):
        super().setup_method()
        self.income(amount="1000.00", key="sale")
        self.expense(amount="150.50", key="card", from_account_id=self.credit_card.id)
        self.transfer("5000.00", "loan", self.loans, self.checking)
        self.transfer("2000.00", "machine", self.checking, self.equipment)

    def test_sections(self):
        sheet = self.reports.balance_sheet(self.tenant_id, JAN_31)

        assert sheet.assets.first_total.amount == Decimal('4000.00')      # checking
        assert sheet.assets.second_total.amount == Decimal('2000.00')     # equipment
        assert sheet.liabilities.first_total.amount == Decimal('150.50')  # credit card
        assert sheet.liabilities.second_total.amount == Decimal('5000.00')
        assert sheet.equity.current_period_result.amount == Decimal('849.50')

        assert sheet.assets.total == sheet.total_liabilities_and_equity
        assert sheet.difference.is_zero()
        assert sheet.is_balanced

    def test_as_of_excludes_later_entries(self):
        sheet = self.reports.balance_sheet(self.tenant_id, JAN_15 - timedelta(seconds=1))
        assert sheet.assets.total.is_zero()
        assert sheet.is_balanced

    def test_to_dict(self):
        data = self.reports.balance_sheet(self.tenant_id, JAN_31).to_dict()

        assert data["report_type"] == "balance_sheet"
        assert data["assets"]["total"] == "6000.00"
        assert data["liabilities"]["non_current"]["total"] == "5000.00"
        assert data["equity"]["current_period_result"] == "849.50"
        assert data["total_liabilities_and_equity"] == "6000.00"
        assert data["difference"] == "0.00"
        assert data["is_balanced"] is True


class TestIncomeStatement(ReportFixture):

    def setup_method(self):
        super().setup_method()
        self.income(amount="1000.00", key="sale")
        self.income(amount="40.00", key="interest", category_id=self.financial_revenue.id)
        self.expense(amount="300.00", key="rent")
        self.expense(amount="25.00", key="fees", category_id=self.financial_expenses.id)
        self.income(amount="999.00", key="next-month", date=FEB_10)

    def test_operating_and_financial_split(self):
        statement = self.reports.income_statement(self.tenant_id, JAN_1, JAN_31)

        assert statement.revenue.first_total.amount == Decimal('1000.00')
        assert statement.revenue.second_total.amount == Decimal('40.00')
        assert statement.expenses.first_total.amount == Decimal('300.00')
        assert statement.expenses.second_total.amount == Decimal('25.00')
        assert statement.operating_profit.amount == Decimal('700.00')
        assert statement.net_profit.amount == Decimal('715.00')

    def test_period_filters_movements(self):
        statement = self.reports.income_statement(self.tenant_id, JAN_31, FEB_29)
        assert statement.revenue.total.amount == Decimal('999.00')
        assert statement.expenses.total.is_zero()

    def test_net_profit_matches_balance_sheet_result(self):
        statement = self.reports.income_statement(self.tenant_id, JAN_1, FEB_29)
        sheet = self.reports.balance_sheet(self.tenant_id, FEB_29)
        assert statement.net_profit == sheet.equity.current_period_result

    def test_to_dict(self):
        data = self.reports.income_statement(self.tenant_id, JAN_1, JAN_31).to_dict()

        assert data["report_type"] == "income_statement"
        assert data["revenue"]["operating"]["total"] == "1000.00"
        assert data["revenue"]["non_operating"]["total"] == "40.00"
        assert data["operating_profit"] == "700.00"
        assert data["net_profit"] == "715.00"

    def test_period_validation(self):
        with pytest.raises(ValidationError):
            self.reports.income_statement(self.tenant_id, FEB_29, JAN_1)
