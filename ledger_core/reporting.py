"""
Accounting Reports Module

Trial balance, balance sheet and income statement, recomputed from the
entry log on every call. Identical inputs give identical output: lines are
sorted by account code and no generation timestamp is included.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .currency import Money, Currency, sum_money
from .audit import AuditTrail, AuditEventType
from .ledger import AccountType, EntryStore, unbalanced_transactions, to_utc
from .accounts import AccountRegistry, Account
from .balances import BalanceCalculator
from .tenancy import TenantGuard
from .config import get_config
from .errors import IntegrityViolation, ValidationError
from .logging_config import get_logger, log_action


class ReportType(Enum):
    """Types of available reports"""
    TRIAL_BALANCE = "trial_balance"
    BALANCE_SHEET = "balance_sheet"
    INCOME_STATEMENT = "income_statement"


def _amount(money: Money) -> str:
    return str(money.amount)


@dataclass
class TrialBalanceLine:
    account_id: str
    code: str
    name: str
    account_type: AccountType
    previous_balance: Money
    debit_movements: Money
    credit_movements: Money
    current_balance: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'code': self.code,
            'name': self.name,
            'type': self.account_type.value,
            'previous_balance': _amount(self.previous_balance),
            'debit_movements': _amount(self.debit_movements),
            'credit_movements': _amount(self.credit_movements),
            'current_balance': _amount(self.current_balance)
        }


@dataclass
class TrialBalance:
    start: datetime
    end: datetime
    currency: Currency
    lines: List[TrialBalanceLine]
    total_debits: Money
    total_credits: Money

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_type': ReportType.TRIAL_BALANCE.value,
            'period': {'start': self.start.isoformat(), 'end': self.end.isoformat()},
            'currency': self.currency.code,
            'accounts': [line.to_dict() for line in self.lines],
            'totals': {
                'debit_movements': _amount(self.total_debits),
                'credit_movements': _amount(self.total_credits)
            },
            'is_balanced': self.is_balanced
        }


@dataclass
class ReportLine:
    """One account's amount within a report section"""
    account_id: str
    code: str
    name: str
    subtype: Optional[str]
    amount: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'code': self.code,
            'name': self.name,
            'subtype': self.subtype,
            'amount': _amount(self.amount)
        }


@dataclass
class SplitSection:
    """Section split in two buckets (current/non-current, operating/non-operating)"""
    first: List[ReportLine]
    second: List[ReportLine]
    currency: Currency

    @property
    def first_total(self) -> Money:
        return sum_money((line.amount for line in self.first), self.currency)

    @property
    def second_total(self) -> Money:
        return sum_money((line.amount for line in self.second), self.currency)

    @property
    def total(self) -> Money:
        return self.first_total + self.second_total

    def to_dict(self, first_name: str, second_name: str) -> Dict[str, Any]:
        return {
            first_name: {
                'accounts': [line.to_dict() for line in self.first],
                'total': _amount(self.first_total)
            },
            second_name: {
                'accounts': [line.to_dict() for line in self.second],
                'total': _amount(self.second_total)
            },
            'total': _amount(self.total)
        }


@dataclass
class EquitySection:
    lines: List[ReportLine]
    current_period_result: Money  # Revenue minus expenses not yet closed into equity

    @property
    def total(self) -> Money:
        return sum_money((line.amount for line in self.lines),
                         self.current_period_result.currency) + self.current_period_result

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accounts': [line.to_dict() for line in self.lines],
            'current_period_result': _amount(self.current_period_result),
            'total': _amount(self.total)
        }


@dataclass
class BalanceSheet:
    as_of: datetime
    currency: Currency
    assets: SplitSection
    liabilities: SplitSection
    equity: EquitySection
    tolerance: Decimal

    @property
    def total_liabilities_and_equity(self) -> Money:
        return self.liabilities.total + self.equity.total

    @property
    def difference(self) -> Money:
        return self.assets.total - self.total_liabilities_and_equity

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference.amount) <= self.tolerance

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_type': ReportType.BALANCE_SHEET.value,
            'as_of': self.as_of.isoformat(),
            'currency': self.currency.code,
            'assets': self.assets.to_dict('current', 'non_current'),
            'liabilities': self.liabilities.to_dict('current', 'non_current'),
            'equity': self.equity.to_dict(),
            'total_liabilities_and_equity': _amount(self.total_liabilities_and_equity),
            'difference': _amount(self.difference),
            'is_balanced': self.is_balanced
        }


@dataclass
class IncomeStatement:
    start: datetime
    end: datetime
    currency: Currency
    revenue: SplitSection
    expenses: SplitSection

    @property
    def operating_profit(self) -> Money:
        return self.revenue.first_total - self.expenses.first_total

    @property
    def net_profit(self) -> Money:
        return self.revenue.total - self.expenses.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_type': ReportType.INCOME_STATEMENT.value,
            'period': {'start': self.start.isoformat(), 'end': self.end.isoformat()},
            'currency': self.currency.code,
            'revenue': self.revenue.to_dict('operating', 'non_operating'),
            'expenses': self.expenses.to_dict('operating', 'non_operating'),
            'operating_profit': _amount(self.operating_profit),
            'net_profit': _amount(self.net_profit)
        }


class ReportGenerator:
    """
    Read-only consumer of the entry store and account registry

    An imbalance is never returned silently: the trial balance raises
    IntegrityViolation and every mismatch logs a critical integrity alarm.
    """

    def __init__(
        self,
        guard: TenantGuard,
        registry: AccountRegistry,
        entry_store: EntryStore,
        calculator: BalanceCalculator,
        audit_trail: AuditTrail
    ):
        self.guard = guard
        self.registry = registry
        self.entry_store = entry_store
        self.calculator = calculator
        self.audit_trail = audit_trail
        self.logger = get_logger("ledger.reporting")
        self.currency = Currency.from_code(get_config().currency)

    def trial_balance(self, tenant_id: str, start: datetime, end: datetime) -> TrialBalance:
        """
        Per-account movements in [start, end] with opening and closing balances

        Raises:
            IntegrityViolation: A transaction in the period, or the period as
                a whole, has debits different from credits
        """
        self.guard.authorize(tenant_id)
        start, end = self._period(start, end)
        accounts = self.registry.list_accounts(tenant_id)

        entries = self.entry_store.entries_for_tenant(tenant_id, start=start, end=end)
        offending = unbalanced_transactions(entries)
        if offending:
            self._integrity_alarm(
                tenant_id, ReportType.TRIAL_BALANCE,
                "Unbalanced transactions in period",
                {
                    "transactions": [
                        {"transaction_id": transaction_id,
                         "debits": _amount(sides['debits']),
                         "credits": _amount(sides['credits'])}
                        for transaction_id, sides in sorted(offending.items())
                    ]
                }
            )

        debits = {account.id: Money.zero(self.currency) for account in accounts}
        credits = {account.id: Money.zero(self.currency) for account in accounts}
        for entry in entries:
            if entry.account_id not in debits:
                continue
            if entry.is_debit:
                debits[entry.account_id] = debits[entry.account_id] + entry.amount
            else:
                credits[entry.account_id] = credits[entry.account_id] + entry.amount

        previous = self.calculator.account_balances(tenant_id, accounts, start, inclusive=False)
        current = self.calculator.account_balances(tenant_id, accounts, end)

        lines = [
            TrialBalanceLine(
                account_id=account.id,
                code=account.code,
                name=account.name,
                account_type=account.account_type,
                previous_balance=previous[account.id],
                debit_movements=debits[account.id],
                credit_movements=credits[account.id],
                current_balance=current[account.id]
            )
            for account in accounts
        ]

        report = TrialBalance(
            start=start,
            end=end,
            currency=self.currency,
            lines=lines,
            total_debits=sum_money(debits.values(), self.currency),
            total_credits=sum_money(credits.values(), self.currency)
        )
        if not report.is_balanced:
            self._integrity_alarm(
                tenant_id, ReportType.TRIAL_BALANCE,
                "Trial balance debits and credits differ",
                {"debits": _amount(report.total_debits), "credits": _amount(report.total_credits)}
            )

        log_action(
            self.logger, "info", "Trial balance generated",
            tenant_id=tenant_id, action="trial_balance",
            extra={"start": start.isoformat(), "end": end.isoformat(), "accounts": len(lines)}
        )
        return report

    def balance_sheet(self, tenant_id: str, as_of: datetime) -> BalanceSheet:
        """
        Assets, liabilities and equity at ``as_of``

        Revenue and expenses are never closed into equity by this core, so
        their cumulative difference is shown as the current period result.
        A mismatch beyond the configured tolerance is flagged and alarmed.
        """
        self.guard.authorize(tenant_id)
        as_of = to_utc(as_of)
        config = get_config()
        current_subtypes = set(config.current_subtypes)

        accounts = self.registry.list_accounts(tenant_id)
        balances = self.calculator.account_balances(tenant_id, accounts, as_of)
        by_type = self._group(accounts)

        def split(account_type: AccountType) -> SplitSection:
            section = SplitSection(first=[], second=[], currency=self.currency)
            for account in by_type[account_type]:
                line = self._line(account, balances[account.id])
                (section.first if account.subtype in current_subtypes else section.second).append(line)
            return section

        revenue = sum_money((balances[a.id] for a in by_type[AccountType.REVENUE]), self.currency)
        expenses = sum_money((balances[a.id] for a in by_type[AccountType.EXPENSE]), self.currency)

        report = BalanceSheet(
            as_of=as_of,
            currency=self.currency,
            assets=split(AccountType.ASSET),
            liabilities=split(AccountType.LIABILITY),
            equity=EquitySection(
                lines=[self._line(a, balances[a.id]) for a in by_type[AccountType.EQUITY]],
                current_period_result=revenue - expenses
            ),
            tolerance=Decimal(config.balance_sheet_tolerance)
        )

        if not report.is_balanced:
            self._integrity_alarm(
                tenant_id, ReportType.BALANCE_SHEET,
                "Balance sheet does not balance",
                {"assets": _amount(report.assets.total),
                 "liabilities_and_equity": _amount(report.total_liabilities_and_equity)},
                fatal=False
            )

        log_action(
            self.logger, "info", "Balance sheet generated",
            tenant_id=tenant_id, action="balance_sheet",
            extra={"as_of": as_of.isoformat(), "is_balanced": report.is_balanced}
        )
        return report

    def income_statement(self, tenant_id: str, start: datetime, end: datetime) -> IncomeStatement:
        """Revenue and expense movements in [start, end], split operating / non-operating"""
        self.guard.authorize(tenant_id)
        start, end = self._period(start, end)
        non_operating = set(get_config().non_operating_subtypes)

        accounts = self.registry.list_accounts(tenant_id)
        by_id = {account.id: account for account in accounts}
        movements = {account.id: Money.zero(self.currency) for account in accounts}
        for entry in self.entry_store.entries_for_tenant(tenant_id, start=start, end=end):
            account = by_id.get(entry.account_id)
            if account is None:
                continue
            movements[account.id] = movements[account.id] + entry.signed_amount(account.account_type)

        by_type = self._group(accounts)

        def split(account_type: AccountType) -> SplitSection:
            section = SplitSection(first=[], second=[], currency=self.currency)
            for account in by_type[account_type]:
                line = self._line(account, movements[account.id])
                (section.second if account.subtype in non_operating else section.first).append(line)
            return section

        report = IncomeStatement(
            start=start,
            end=end,
            currency=self.currency,
            revenue=split(AccountType.REVENUE),
            expenses=split(AccountType.EXPENSE)
        )

        log_action(
            self.logger, "info", "Income statement generated",
            tenant_id=tenant_id, action="income_statement",
            extra={"start": start.isoformat(), "end": end.isoformat(),
                   "net_profit": _amount(report.net_profit)}
        )
        return report

    @staticmethod
    def _period(start: datetime, end: datetime):
        start, end = to_utc(start), to_utc(end)
        if start is None or end is None:
            raise ValidationError("Both start and end are required")
        if start > end:
            raise ValidationError("start must not be after end",
                                  details={"start": start.isoformat(), "end": end.isoformat()})
        return start, end

    @staticmethod
    def _group(accounts: List[Account]) -> Dict[AccountType, List[Account]]:
        grouped: Dict[AccountType, List[Account]] = {t: [] for t in AccountType}
        for account in accounts:
            grouped[account.account_type].append(account)
        return grouped

    @staticmethod
    def _line(account: Account, amount: Money) -> ReportLine:
        return ReportLine(
            account_id=account.id,
            code=account.code,
            name=account.name,
            subtype=account.subtype,
            amount=amount
        )

    def _integrity_alarm(self, tenant_id: str, report_type: ReportType, message: str,
                         details: Dict[str, Any], fatal: bool = True) -> None:
        log_action(
            self.logger, "critical", f"INTEGRITY ALARM: {message}",
            tenant_id=tenant_id, action="integrity_alarm",
            resource=f"report:{report_type.value}", extra=details
        )
        self.audit_trail.log_event(
            AuditEventType.INTEGRITY_ALARM, "report", report_type.value,
            {"message": message, **details}, tenant_id=tenant_id
        )
        if fatal:
            raise IntegrityViolation(message, details=details)
