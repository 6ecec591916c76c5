"""
Balance Calculation Module

Balances are derived from the entry log at read time, never stored.
Asset and expense accounts increase with debits; liability, equity and
revenue accounts increase with credits.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional

from .currency import Money, Currency
from .ledger import EntryStore, to_utc
from .accounts import AccountRegistry, Account
from .tenancy import TenantGuard
from .config import get_config
from .errors import ValidationError


@dataclass(frozen=True)
class BalanceSnapshot:
    """Running balance right after the entries of one instant"""
    date: datetime
    balance: Money
    change: Money

    def to_dict(self) -> Dict[str, str]:
        return {
            'date': self.date.isoformat(),
            'balance': str(self.balance.amount),
            'change': str(self.change.amount)
        }


@dataclass(frozen=True)
class BalanceSummary:
    account_id: str
    balance: Money
    last_updated: datetime

    @property
    def currency(self) -> Currency:
        return self.balance.currency

    def to_dict(self) -> Dict[str, str]:
        return {
            'account_id': self.account_id,
            'balance': str(self.balance.amount),
            'currency': self.currency.code,
            'last_updated': self.last_updated.isoformat()
        }


class BalanceCalculator:
    """
    Pure reads over the entry store; an account's active flag is ignored
    """

    def __init__(self, guard: TenantGuard, registry: AccountRegistry, entry_store: EntryStore):
        self.guard = guard
        self.registry = registry
        self.entry_store = entry_store
        self.currency = Currency.from_code(get_config().currency)

    def get_balance(self, tenant_id: str, account_id: str,
                    as_of: Optional[datetime] = None) -> Money:
        """
        Balance of an account including every entry dated at or before ``as_of``

        Raises:
            AccountNotFound: No such account
            ForbiddenCrossTenant: It belongs to another tenant
        """
        self.guard.authorize(tenant_id)
        account = self.registry.get_account(tenant_id, account_id)
        return self._balance(account, to_utc(as_of) or datetime.now(timezone.utc))

    def get_balance_history(self, tenant_id: str, account_id: str,
                            start: datetime, end: datetime) -> List[BalanceSnapshot]:
        """
        Chronological running balances for [start, end]

        Entries sharing the same instant collapse into one snapshot, so for
        every snapshot ``get_balance(account, snapshot.date) == snapshot.balance``.
        """
        self.guard.authorize(tenant_id)
        account = self.registry.get_account(tenant_id, account_id)

        start, end = to_utc(start), to_utc(end)
        if start > end:
            raise ValidationError("start must not be after end", details={"start": start.isoformat()})

        running = Money.zero(self.currency)
        history: List[BalanceSnapshot] = []
        for entry in self.entry_store.entries_for_account(tenant_id, account.id, end=end):
            delta = entry.signed_amount(account.account_type)
            running = running + delta
            if entry.date < start:
                continue

            if history and history[-1].date == entry.date:
                previous = history.pop()
                history.append(BalanceSnapshot(entry.date, running, previous.change + delta))
            else:
                history.append(BalanceSnapshot(entry.date, running, delta))
        return history

    def get_balance_summary(self, tenant_id: str, account_id: str,
                            as_of: Optional[datetime] = None) -> BalanceSummary:
        """Balance plus the date of the latest entry counted (or the account's creation)"""
        self.guard.authorize(tenant_id)
        account = self.registry.get_account(tenant_id, account_id)
        as_of = to_utc(as_of) or datetime.now(timezone.utc)

        entries = self.entry_store.entries_for_account(tenant_id, account.id, end=as_of)
        balance = Money.zero(self.currency)
        for entry in entries:
            balance = balance + entry.signed_amount(account.account_type)

        last_updated = entries[-1].date if entries else account.created_at
        return BalanceSummary(account.id, balance, last_updated)

    def account_balances(self, tenant_id: str, accounts: List[Account],
                         as_of: datetime, inclusive: bool = True) -> Dict[str, Money]:
        """
        Balances of many accounts in one pass over the tenant's entries

        With ``inclusive=False`` entries dated exactly at ``as_of`` are left out.
        """
        by_id = {account.id: account for account in accounts}
        balances = {account.id: Money.zero(self.currency) for account in accounts}

        for entry in self.entry_store.entries_for_tenant(tenant_id, end=as_of):
            account = by_id.get(entry.account_id)
            if account is None or (not inclusive and entry.date >= as_of):
                continue
            balances[account.id] = balances[account.id] + entry.signed_amount(account.account_type)
        return balances

    def _balance(self, account: Account, as_of: datetime) -> Money:
        balance = Money.zero(self.currency)
        for entry in self.entry_store.entries_for_account(account.tenant_id, account.id, end=as_of):
            balance = balance + entry.signed_amount(account.account_type)
        return balance
