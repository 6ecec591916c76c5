"""
Double-Entry Entry Store

Append-only log of debit/credit entries. Every transaction writes its
entries here in one atomic unit and they are never updated or deleted.
Balances are derived from entries for correctness, never stored.
"""

from decimal import Decimal
from datetime import datetime, date, time, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union
from enum import Enum
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .errors import IntegrityViolation


class EntryType(Enum):
    """Side of an entry"""
    DEBIT = "debit"
    CREDIT = "credit"

    @property
    def opposite(self) -> 'EntryType':
        return EntryType.CREDIT if self == EntryType.DEBIT else EntryType.DEBIT


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance

    @property
    def normal_side(self) -> EntryType:
        """Side that increases the balance"""
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return EntryType.DEBIT
        return EntryType.CREDIT


def to_utc(value: Union[datetime, date, str, None]) -> Optional[datetime]:
    """
    Normalize a date or datetime to an aware UTC datetime.

    Plain dates mean midnight UTC; naive datetimes are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Entry(StorageRecord):
    """
    One debit or credit line tied to a transaction and an account
    Immutable once appended
    """
    tenant_id: str
    transaction_id: str
    account_id: str
    entry_type: EntryType
    amount: Money
    description: str
    date: datetime  # Effective date, taken from the owning transaction
    line: int = 0   # Position within the transaction

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Entry amount must be positive")

    @property
    def is_debit(self) -> bool:
        return self.entry_type == EntryType.DEBIT

    @property
    def sort_key(self):
        """Deterministic chronological order"""
        return (self.date, self.created_at, self.transaction_id, self.line)

    def signed_amount(self, account_type: AccountType) -> Money:
        """Effect of this entry on a balance of the given account type"""
        if self.entry_type == account_type.normal_side:
            return self.amount
        return -self.amount

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'tenant_id': self.tenant_id,
            'transaction_id': self.transaction_id,
            'account_id': self.account_id,
            'type': self.entry_type.value,
            'amount': str(self.amount.amount),
            'currency': self.amount.currency.code,
            'description': self.description,
            'date': self.date.isoformat(),
            'line': self.line
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Entry':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            tenant_id=data['tenant_id'],
            transaction_id=data['transaction_id'],
            account_id=data['account_id'],
            entry_type=EntryType(data['type']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            description=data['description'],
            date=datetime.fromisoformat(data['date']),
            line=data.get('line', 0)
        )


def make_entry(tenant_id: str, transaction_id: str, account_id: str,
               entry_type: EntryType, amount: Money, description: str,
               entry_date: datetime, line: int) -> Entry:
    """Build a new, not yet appended entry"""
    now = datetime.now(timezone.utc)
    return Entry(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        tenant_id=tenant_id,
        transaction_id=transaction_id,
        account_id=account_id,
        entry_type=entry_type,
        amount=amount,
        description=description,
        date=entry_date,
        line=line
    )


def unbalanced_transactions(entries: Iterable[Entry]) -> Dict[str, Dict[str, Money]]:
    """
    Group entries by transaction and return the ones whose debits and
    credits disagree, as transaction_id -> {'debits', 'credits'}
    """
    totals: Dict[str, Dict[str, Money]] = {}
    for entry in entries:
        if entry.transaction_id not in totals:
            zero = Money.zero(entry.amount.currency)
            totals[entry.transaction_id] = {'debits': zero, 'credits': zero}
        side = 'debits' if entry.is_debit else 'credits'
        totals[entry.transaction_id][side] = totals[entry.transaction_id][side] + entry.amount

    return {
        transaction_id: sides for transaction_id, sides in totals.items()
        if sides['debits'] != sides['credits']
    }


def validate_balanced(entries: List[Entry]) -> None:
    """
    Validate that total debits equal total credits for each transaction
    This is the fundamental rule of double-entry bookkeeping

    Raises:
        IntegrityViolation: listing every unbalanced transaction
    """
    if not entries:
        raise IntegrityViolation("A transaction must have at least one entry")

    offending = unbalanced_transactions(entries)
    if offending:
        raise IntegrityViolation(
            "Debits and credits do not balance",
            details={
                "transactions": [
                    {
                        "transaction_id": transaction_id,
                        "debits": str(sides['debits'].amount),
                        "credits": str(sides['credits'].amount)
                    }
                    for transaction_id, sides in sorted(offending.items())
                ]
            }
        )


class EntryStore:
    """
    Append-only entry log

    There is no update or delete; the only way to undo an entry's effect
    is to append its mirror image.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "entries"

    def append(self, entries: List[Entry]) -> List[Entry]:
        """
        Append a balanced set of entries in one atomic unit

        Raises:
            IntegrityViolation: If debits and credits disagree
        """
        validate_balanced(entries)

        with self.storage.atomic():
            for entry in entries:
                self.storage.insert(
                    self.table_name, entry.id, entry.to_dict(),
                    unique=[('transaction_id', 'line')]
                )
        return entries

    def entries_for_transaction(self, tenant_id: str, transaction_id: str) -> List[Entry]:
        """Entries of one transaction in line order"""
        data = self.storage.find(self.table_name, {
            'tenant_id': tenant_id,
            'transaction_id': transaction_id
        })
        entries = [Entry.from_dict(d) for d in data]
        entries.sort(key=lambda e: e.line)
        return entries

    def entries_for_account(
        self,
        tenant_id: str,
        account_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Entry]:
        """
        Entries touching an account, dated within [start, end] (both inclusive)
        """
        data = self.storage.find(self.table_name, {
            'tenant_id': tenant_id,
            'account_id': account_id
        })
        return self._in_range([Entry.from_dict(d) for d in data], start, end)

    def entries_for_tenant(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Entry]:
        """All of a tenant's entries dated within [start, end]"""
        data = self.storage.find(self.table_name, {'tenant_id': tenant_id})
        return self._in_range([Entry.from_dict(d) for d in data], start, end)

    def count_entries(self, tenant_id: str, account_id: str) -> int:
        """Number of entries referencing an account"""
        return len(self.storage.find(self.table_name, {
            'tenant_id': tenant_id,
            'account_id': account_id
        }))

    def has_entries(self, tenant_id: str, account_id: str) -> bool:
        return self.count_entries(tenant_id, account_id) > 0

    @staticmethod
    def _in_range(entries: List[Entry], start: Optional[datetime],
                  end: Optional[datetime]) -> List[Entry]:
        if start:
            entries = [e for e in entries if e.date >= start]
        if end:
            entries = [e for e in entries if e.date <= end]
        entries.sort(key=lambda e: e.sort_key)
        return entries
