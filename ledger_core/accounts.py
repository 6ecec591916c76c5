"""
Account Registry Module

Manages ledgers and the chart of accounts. Accounts can be assets,
liabilities, equity, revenue, or expenses; each belongs to one ledger of the
same type and to one tenant. Account balances are never stored here, they
are derived from the entry log by the balance calculator.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import uuid

from .storage import StorageInterface, StorageRecord, UniqueConstraintError
from .audit import AuditTrail, AuditEventType
from .ledger import AccountType, EntryStore
from .tenancy import TenantGuard
from .errors import (
    ValidationError, InvalidAccountType, CodeImmutable, TypeImmutable,
    AccountNotFound, LedgerNotFound, DuplicateCode, HasTransactions,
    ForbiddenCrossTenant
)
from .logging_config import get_logger, log_action


@dataclass
class Ledger(StorageRecord):
    """Named grouping of accounts of one accounting type"""
    tenant_id: str
    name: str
    ledger_type: AccountType
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'tenant_id': self.tenant_id,
            'name': self.name,
            'type': self.ledger_type.value,
            'description': self.description
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Ledger':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            tenant_id=data['tenant_id'],
            name=data['name'],
            ledger_type=AccountType(data['type']),
            description=data.get('description', "")
        )


@dataclass
class Account(StorageRecord):
    """
    Chart-of-accounts entry

    ``code`` and ``account_type`` are fixed at creation.
    """
    tenant_id: str
    ledger_id: str
    name: str
    code: str
    account_type: AccountType
    subtype: Optional[str] = None
    description: str = ""
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'tenant_id': self.tenant_id,
            'ledger_id': self.ledger_id,
            'name': self.name,
            'code': self.code,
            'type': self.account_type.value,
            'subtype': self.subtype,
            'description': self.description,
            'is_active': self.is_active,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            tenant_id=data['tenant_id'],
            ledger_id=data['ledger_id'],
            name=data['name'],
            code=data['code'],
            account_type=AccountType(data['type']),
            subtype=data.get('subtype'),
            description=data.get('description', ""),
            is_active=data.get('is_active', True),
            metadata=data.get('metadata') or {}
        )


# Ledger name, type and description for a fresh tenant
DEFAULT_LEDGERS = [
    ("Assets", AccountType.ASSET, "Goods and rights"),
    ("Liabilities", AccountType.LIABILITY, "Obligations to third parties"),
    ("Equity", AccountType.EQUITY, "Owners' capital and accumulated results"),
    ("Revenue", AccountType.REVENUE, "Income earned"),
    ("Expenses", AccountType.EXPENSE, "Costs incurred"),
]

# (code, name, type, subtype)
DEFAULT_CHART = [
    ("1.1.1.001", "Cash", AccountType.ASSET, "cash"),
    ("1.1.1.002", "Checking Account", AccountType.ASSET, "checking"),
    ("1.1.1.003", "Savings and Investments", AccountType.ASSET, "savings"),
    ("1.1.2.001", "Accounts Receivable", AccountType.ASSET, "receivable"),
    ("1.2.1.001", "Equipment", AccountType.ASSET, "fixed_asset"),
    ("2.1.1", "Credit Card", AccountType.LIABILITY, "credit_card"),
    ("2.1.2", "Suppliers", AccountType.LIABILITY, "payable"),
    ("2.2.1", "Loans and Financing", AccountType.LIABILITY, "long_term"),
    ("3.1", "Capital", AccountType.EQUITY, "capital"),
    ("3.2", "Reserves", AccountType.EQUITY, "reserves"),
    ("3.3", "Retained Earnings", AccountType.EQUITY, "retained_earnings"),
    ("4.1.1", "Sales Revenue", AccountType.REVENUE, "operating"),
    ("4.1.2", "Service Revenue", AccountType.REVENUE, "operating"),
    ("4.2", "Financial Revenue", AccountType.REVENUE, "financial"),
    ("5.1.1", "Administrative Expenses", AccountType.EXPENSE, "operating"),
    ("5.1.2", "Commercial Expenses", AccountType.EXPENSE, "operating"),
    ("5.2", "Financial Expenses", AccountType.EXPENSE, "financial"),
]

UPDATABLE_FIELDS = {'name', 'description', 'metadata', 'is_active'}


def parse_account_type(value: Union[AccountType, str]) -> AccountType:
    """Resolve an account type, raising InvalidAccountType outside the enum"""
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).lower())
    except ValueError:
        raise InvalidAccountType(
            f"Invalid account type '{value}'",
            details={"allowed": [t.value for t in AccountType]}
        )


class AccountRegistry:
    """
    Sole writer of ledger and account rows
    """

    def __init__(
        self,
        storage: StorageInterface,
        guard: TenantGuard,
        entry_store: EntryStore,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.guard = guard
        self.entry_store = entry_store
        self.audit_trail = audit_trail
        self.ledgers_table = "ledgers"
        self.accounts_table = "accounts"
        self.logger = get_logger("ledger.accounts")

    # Ledgers

    def create_ledger(self, tenant_id: str, name: str,
                      ledger_type: Union[AccountType, str],
                      description: str = "") -> Ledger:
        """Create a ledger for the tenant"""
        self.guard.authorize(tenant_id)
        ledger_type = parse_account_type(ledger_type)
        if not name or not name.strip():
            raise ValidationError("Ledger name is required", details={"field": "name"})

        with self.storage.atomic():
            ledger = self._insert_ledger(tenant_id, name.strip(), ledger_type, description)

        log_action(
            self.logger, "info", f"Ledger created: {ledger.name}",
            tenant_id=tenant_id, action="create_ledger", resource=f"ledger:{ledger.id}",
            extra={"type": ledger_type.value}
        )
        return ledger

    def get_ledger(self, tenant_id: str, ledger_id: str) -> Ledger:
        """Get a ledger owned by the tenant"""
        data = self.storage.load(self.ledgers_table, ledger_id)
        self.guard.check_access(tenant_id, data, "ledger", ledger_id, LedgerNotFound)
        return Ledger.from_dict(data)

    def list_ledgers(self, tenant_id: str) -> List[Ledger]:
        """All of a tenant's ledgers, in chart order"""
        self.guard.authorize(tenant_id)
        order = {t: i for i, t in enumerate(AccountType)}
        ledgers = [Ledger.from_dict(d) for d in
                   self.storage.find(self.ledgers_table, {'tenant_id': tenant_id})]
        ledgers.sort(key=lambda l: (order[l.ledger_type], l.name))
        return ledgers

    def setup_default_chart(self, tenant_id: str) -> Dict[str, List]:
        """
        Create the five standard ledgers and the default chart of accounts

        Safe to call repeatedly: ledgers of an existing type and accounts
        whose code already exists are reused rather than recreated.

        Returns:
            {"ledgers": [...], "accounts": [...]} for the whole default chart
        """
        self.guard.authorize(tenant_id)
        created = 0

        with self.storage.atomic():
            ledgers_by_type: Dict[AccountType, Ledger] = {}
            for ledger in self.list_ledgers(tenant_id):
                ledgers_by_type.setdefault(ledger.ledger_type, ledger)

            for name, ledger_type, description in DEFAULT_LEDGERS:
                if ledger_type not in ledgers_by_type:
                    ledgers_by_type[ledger_type] = self._insert_ledger(
                        tenant_id, name, ledger_type, description
                    )

            existing = {a.code: a for a in self.list_accounts(tenant_id)}
            accounts = []
            for code, name, account_type, subtype in DEFAULT_CHART:
                if code in existing:
                    accounts.append(existing[code])
                    continue
                accounts.append(self._insert_account(
                    tenant_id, ledgers_by_type[account_type], name, code,
                    account_type, subtype, {}, ""
                ))
                created += 1

        log_action(
            self.logger, "info", "Default chart of accounts set up",
            tenant_id=tenant_id, action="setup_default_chart",
            extra={"accounts_created": created}
        )
        return {
            "ledgers": [ledgers_by_type[t] for _, t, _ in DEFAULT_LEDGERS],
            "accounts": accounts
        }

    # Accounts

    def create_account(
        self,
        tenant_id: str,
        ledger_id: str,
        name: str,
        code: str,
        account_type: Union[AccountType, str],
        subtype: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        description: str = ""
    ) -> Account:
        """
        Create a new account

        Args:
            tenant_id: Owning tenant
            ledger_id: Ledger the account belongs to (same type)
            name: Display name
            code: Chart code, unique per tenant
            account_type: asset, liability, equity, revenue or expense
            subtype: Classification used by the reports (current, operating...)
            metadata: Opaque descriptive data
            description: Free text

        Returns:
            Created Account, active

        Raises:
            InvalidAccountType: Unknown type, or type differs from the ledger's
            LedgerNotFound: Ledger is not resolvable within the tenant
            DuplicateCode: Code already used by the tenant
        """
        self.guard.authorize(tenant_id)
        account_type = parse_account_type(account_type)

        if not name or not name.strip():
            raise ValidationError("Account name is required", details={"field": "name"})
        if not code or not code.strip():
            raise ValidationError("Account code is required", details={"field": "code"})

        try:
            ledger = self.get_ledger(tenant_id, ledger_id)
        except ForbiddenCrossTenant:
            # Another tenant's ledger is not resolvable from here
            raise LedgerNotFound(ledger_id)

        if ledger.ledger_type != account_type:
            raise InvalidAccountType(
                f"Account type '{account_type.value}' does not match ledger type "
                f"'{ledger.ledger_type.value}'",
                details={"ledger_id": ledger_id, "ledger_type": ledger.ledger_type.value}
            )

        with self.storage.atomic():
            account = self._insert_account(
                tenant_id, ledger, name.strip(), code.strip(), account_type,
                subtype, metadata or {}, description
            )

        log_action(
            self.logger, "info", f"Account created: {account.code} {account.name}",
            tenant_id=tenant_id, action="create_account", resource=f"account:{account.id}",
            extra={"code": account.code, "type": account_type.value, "ledger_id": ledger.id}
        )
        return account

    def get_account(self, tenant_id: str, account_id: str) -> Account:
        """
        Get an account owned by the tenant

        Raises:
            AccountNotFound: No such account
            ForbiddenCrossTenant: The account belongs to another tenant
        """
        data = self.storage.load(self.accounts_table, account_id)
        self.guard.check_access(tenant_id, data, "account", account_id, AccountNotFound)
        return Account.from_dict(data)

    def get_account_by_code(self, tenant_id: str, code: str) -> Optional[Account]:
        matches = self.storage.find(self.accounts_table, {'tenant_id': tenant_id, 'code': code})
        if matches:
            return Account.from_dict(matches[0])
        return None

    def list_accounts(
        self,
        tenant_id: str,
        account_type: Optional[Union[AccountType, str]] = None,
        ledger_id: Optional[str] = None,
        active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> List[Account]:
        """List the tenant's accounts sorted by code; search matches names case-insensitively"""
        self.guard.authorize(tenant_id)

        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if account_type is not None:
            filters['type'] = parse_account_type(account_type).value
        if ledger_id is not None:
            filters['ledger_id'] = ledger_id
        if active is not None:
            filters['is_active'] = active

        accounts = [Account.from_dict(d) for d in self.storage.find(self.accounts_table, filters)]
        if search:
            needle = search.lower()
            accounts = [a for a in accounts if needle in a.name.lower()]

        accounts.sort(key=lambda a: a.code)
        return accounts

    def update_account(self, tenant_id: str, account_id: str, patch: Dict[str, Any]) -> Account:
        """
        Apply a non-structural patch to an account

        Allowed: name, description, metadata, is_active. Submitting the
        current code or type is accepted and ignored.

        Raises:
            CodeImmutable / TypeImmutable: A different code or type was submitted
            ValidationError: Any other field, or an empty name
            HasTransactions: is_active=False on an account with entries
        """
        self.guard.authorize(tenant_id)

        with self.storage.atomic():
            account = self.get_account(tenant_id, account_id)
            changes: Dict[str, Any] = {}

            for key, value in patch.items():
                if key == 'code':
                    if value != account.code:
                        raise CodeImmutable()
                elif key == 'type':
                    if parse_account_type(value) != account.account_type:
                        raise TypeImmutable()
                elif key == 'tenant_id':
                    if value != tenant_id:
                        raise ForbiddenCrossTenant("tenant", value)
                elif key not in UPDATABLE_FIELDS:
                    raise ValidationError(
                        f"Account field '{key}' cannot be updated",
                        details={"field": key, "allowed": sorted(UPDATABLE_FIELDS)}
                    )
                else:
                    changes[key] = value

            if 'name' in changes and (not changes['name'] or not str(changes['name']).strip()):
                raise ValidationError("Account name is required", details={"field": "name"})
            if 'metadata' in changes and not isinstance(changes['metadata'], dict):
                raise ValidationError("Account metadata must be an object", details={"field": "metadata"})
            if 'is_active' in changes and not isinstance(changes['is_active'], bool):
                raise ValidationError("is_active must be a boolean", details={"field": "is_active"})

            if changes.get('is_active') is False and account.is_active:
                self._ensure_no_entries(tenant_id, account)

            for key, value in changes.items():
                setattr(account, key, value.strip() if key == 'name' else value)

            if changes:
                account.updated_at = datetime.now(timezone.utc)
                self.storage.save(self.accounts_table, account.id, account.to_dict())
                self.audit_trail.log_event(
                    AuditEventType.ACCOUNT_UPDATED, "account", account.id,
                    {"changes": sorted(changes)}, tenant_id=tenant_id
                )

        log_action(
            self.logger, "info", f"Account updated: {account.code}",
            tenant_id=tenant_id, action="update_account", resource=f"account:{account.id}",
            extra={"fields": sorted(changes)}
        )
        return account

    def deactivate_account(self, tenant_id: str, account_id: str) -> Account:
        """
        Deactivate ("delete") an account; the row is never removed

        Raises:
            HasTransactions: Any entry references the account
        """
        self.guard.authorize(tenant_id)

        with self.storage.atomic():
            account = self.get_account(tenant_id, account_id)
            self._ensure_no_entries(tenant_id, account)

            if account.is_active:
                account.is_active = False
                account.updated_at = datetime.now(timezone.utc)
                self.storage.save(self.accounts_table, account.id, account.to_dict())
                self.audit_trail.log_event(
                    AuditEventType.ACCOUNT_DEACTIVATED, "account", account.id,
                    {"code": account.code}, tenant_id=tenant_id
                )

        log_action(
            self.logger, "info", f"Account deactivated: {account.code}",
            tenant_id=tenant_id, action="deactivate_account", resource=f"account:{account.id}"
        )
        return account

    def _ensure_no_entries(self, tenant_id: str, account: Account) -> None:
        entry_count = self.entry_store.count_entries(tenant_id, account.id)
        if entry_count:
            raise HasTransactions(account.id, entry_count)

    def _insert_ledger(self, tenant_id: str, name: str, ledger_type: AccountType,
                       description: str) -> Ledger:
        now = datetime.now(timezone.utc)
        ledger = Ledger(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            name=name,
            ledger_type=ledger_type,
            description=description or ""
        )
        self.storage.insert(self.ledgers_table, ledger.id, ledger.to_dict())
        self.audit_trail.log_event(
            AuditEventType.LEDGER_CREATED, "ledger", ledger.id,
            {"name": name, "type": ledger_type.value}, tenant_id=tenant_id
        )
        return ledger

    def _insert_account(self, tenant_id: str, ledger: Ledger, name: str, code: str,
                        account_type: AccountType, subtype: Optional[str],
                        metadata: Dict[str, Any], description: str) -> Account:
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            ledger_id=ledger.id,
            name=name,
            code=code,
            account_type=account_type,
            subtype=subtype,
            description=description or "",
            metadata=metadata
        )

        try:
            self.storage.insert(
                self.accounts_table, account.id, account.to_dict(),
                unique=[('tenant_id', 'code')]
            )
        except UniqueConstraintError:
            raise DuplicateCode(code)

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_CREATED, "account", account.id,
            {"code": code, "name": name, "type": account_type.value, "ledger_id": ledger.id},
            tenant_id=tenant_id
        )
        return account
