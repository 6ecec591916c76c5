"""
Transaction Processing Module

Turns expense, income and transfer requests into balanced debit/credit
entries. Every transaction is written together with its entries in one
atomic unit, creation is idempotent per (tenant, idempotency key) and
installment requests fan out into one transaction per installment.
"""

import calendar
import math
from decimal import Decimal, InvalidOperation
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple, Union
from enum import Enum
import uuid

from .currency import Money, Currency, decimal_from_string, has_valid_precision
from .storage import StorageInterface, StorageRecord, UniqueConstraintError
from .audit import AuditTrail, AuditEventType
from .ledger import (
    AccountType, EntryType, Entry, EntryStore, make_entry, to_utc
)
from .accounts import AccountRegistry, Account
from .tenancy import TenantGuard
from .config import get_config
from .errors import (
    ValidationError, InvalidAmount, InvalidAccountType, ImmutableField,
    TypeImmutable, TransactionNotFound, LedgerNotFound, ForbiddenCrossTenant,
    IntegrityViolation
)
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Kinds of business events"""
    EXPENSE = "expense"    # Dr expense category / Cr funding account
    INCOME = "income"      # Dr receiving account / Cr revenue category
    TRANSFER = "transfer"  # Dr destination / Cr source


class TransactionStatus(Enum):
    """States of a transaction"""
    PROCESSED = "processed"
    REVERSED = "reversed"  # Compensated by a reversal transaction


class InstallmentFrequency(Enum):
    """Spacing between installment dates"""
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"

    def offset(self, start: datetime, index: int) -> datetime:
        """Date of the installment ``index`` positions after ``start``"""
        if self == InstallmentFrequency.DAILY:
            return start + timedelta(days=index)
        if self == InstallmentFrequency.WEEKLY:
            return start + timedelta(weeks=index)

        # Same day of month, clamped to the month's last day
        month_index = start.month - 1 + index
        year = start.year + month_index // 12
        month = month_index % 12 + 1
        day = min(start.day, calendar.monthrange(year, month)[1])
        return start.replace(year=year, month=month, day=day)


class CreationOutcome(Enum):
    """How a create request was resolved"""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass
class TransactionRequest:
    """Create request as submitted by the caller"""
    type: Union[TransactionType, str]
    amount: Union[Decimal, str, int]
    description: str
    idempotency_key: str
    date: Optional[datetime] = None
    category_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    installments: int = 1
    installment_frequency: Optional[Union[InstallmentFrequency, str]] = None
    reference: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None  # Explicitly requested tenant, if any


@dataclass
class Transaction(StorageRecord):
    """
    Business-level financial event; its entries are attached on reads
    """
    tenant_id: str
    transaction_type: TransactionType
    amount: Money
    description: str
    date: datetime
    idempotency_key: str
    status: TransactionStatus = TransactionStatus.PROCESSED
    category_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    reference: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Installment tracking
    installment_number: Optional[int] = None
    installment_count: Optional[int] = None
    installment_group: Optional[str] = None  # Idempotency key of the originating request

    # Reversal tracking
    reverses: Optional[str] = None     # Original transaction, if this is a reversal
    reversed_by: Optional[str] = None  # Reversal transaction, if reversed

    entries: List[Entry] = field(default_factory=list)

    @property
    def is_reversal(self) -> bool:
        return self.reverses is not None

    @property
    def is_reversed(self) -> bool:
        return self.status == TransactionStatus.REVERSED

    @property
    def account_ids(self) -> List[str]:
        return [a for a in (self.category_id, self.from_account_id, self.to_account_id) if a]

    def to_dict(self, include_entries: bool = False) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'tenant_id': self.tenant_id,
            'type': self.transaction_type.value,
            'amount': str(self.amount.amount),
            'currency': self.amount.currency.code,
            'description': self.description,
            'date': self.date.isoformat(),
            'idempotency_key': self.idempotency_key,
            'status': self.status.value,
            'category_id': self.category_id,
            'from_account_id': self.from_account_id,
            'to_account_id': self.to_account_id,
            'reference': self.reference,
            'tags': list(self.tags),
            'metadata': self.metadata,
            'installment_number': self.installment_number,
            'installment_count': self.installment_count,
            'installment_group': self.installment_group,
            'reverses': self.reverses,
            'reversed_by': self.reversed_by
        }
        if include_entries:
            result['entries'] = [entry.to_dict() for entry in self.entries]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            tenant_id=data['tenant_id'],
            transaction_type=TransactionType(data['type']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            description=data['description'],
            date=datetime.fromisoformat(data['date']),
            idempotency_key=data['idempotency_key'],
            status=TransactionStatus(data['status']),
            category_id=data.get('category_id'),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            reference=data.get('reference'),
            tags=list(data.get('tags') or []),
            metadata=data.get('metadata') or {},
            installment_number=data.get('installment_number'),
            installment_count=data.get('installment_count'),
            installment_group=data.get('installment_group'),
            reverses=data.get('reverses'),
            reversed_by=data.get('reversed_by')
        )


@dataclass
class TransactionResult:
    """
    Outcome of a create request

    ``already_exists`` is a successful replay, not an error: the stored
    transactions are returned unchanged.
    """
    outcome: CreationOutcome
    transactions: List[Transaction]
    batch: bool = False  # True for installment requests

    @property
    def created(self) -> bool:
        return self.outcome == CreationOutcome.CREATED

    @property
    def transaction(self) -> Transaction:
        return self.transactions[0]


@dataclass
class TransactionSummary:
    total_income: Decimal
    total_expense: Decimal
    net_amount: Decimal
    transaction_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_income': str(self.total_income),
            'total_expense': str(self.total_expense),
            'net_amount': str(self.net_amount),
            'transaction_count': self.transaction_count
        }


@dataclass
class TransactionPage:
    transactions: List[Transaction]
    summary: TransactionSummary
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass
class _Leg:
    """One transaction to be written: a single request or one installment"""
    idempotency_key: str
    amount: Money
    description: str
    date: datetime
    tags: List[str]
    metadata: Dict[str, Any]
    installment_number: Optional[int] = None
    installment_count: Optional[int] = None
    installment_group: Optional[str] = None


UPDATABLE_FIELDS = {'description', 'tags', 'metadata'}
STRUCTURAL_FIELDS = {
    'amount', 'date', 'category_id', 'from_account_id', 'to_account_id',
    'status', 'entries', 'idempotency_key', 'installments', 'reverses',
    'reversed_by', 'currency', 'reference'
}


def parse_amount(value: Union[Decimal, str, int, float], currency: Currency) -> Money:
    """
    Parse a positive, currency-exact amount

    Raises:
        InvalidAmount: unparsable, non-positive or finer than the minor unit
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("Amount is required and must be a number")
    try:
        if isinstance(value, str):
            amount = decimal_from_string(value)
        else:
            amount = Decimal(str(value))
    except (ValueError, InvalidOperation):
        raise InvalidAmount(f"Invalid amount '{value}'", details={"amount": str(value)})

    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount("Amount must be greater than zero", details={"amount": str(value)})
    if not has_valid_precision(amount, currency):
        raise InvalidAmount(
            f"Amount {amount} has more than {currency.precision} decimal places",
            details={"amount": str(value), "currency": currency.code}
        )
    return Money(amount, currency)


def parse_transaction_type(value: Union[TransactionType, str]) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).lower())
    except ValueError:
        raise InvalidAccountType(
            f"Invalid transaction type '{value}'",
            details={"allowed": [t.value for t in TransactionType]}
        )


class TransactionProcessor:
    """
    Validates and expands transaction requests into balanced entries

    Sole writer of transaction rows. The reversal manager records its
    compensating transactions through ``record_transaction``.
    """

    def __init__(
        self,
        storage: StorageInterface,
        guard: TenantGuard,
        registry: AccountRegistry,
        entry_store: EntryStore,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.guard = guard
        self.registry = registry
        self.entry_store = entry_store
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.logger = get_logger("ledger.transactions")

        self.currency = Currency.from_code(get_config().currency)

    def create_transaction(self, tenant_id: str, request: TransactionRequest) -> TransactionResult:
        """
        Create a transaction, or one per installment

        Args:
            tenant_id: Caller's tenant
            request: What to record

        Returns:
            TransactionResult; ``already_exists`` when the idempotency key was
            used before, carrying the stored transactions unchanged

        Raises:
            InvalidAmount, InvalidAccountType, ValidationError,
            AccountNotFound, LedgerNotFound, ForbiddenCrossTenant
        """
        self.guard.authorize(tenant_id, request.tenant_id)

        transaction_type = parse_transaction_type(request.type)
        amount = parse_amount(request.amount, self.currency)
        self._validate_request(request)

        count = request.installments or 1
        prior = self._prior_results(tenant_id, request.idempotency_key, count)
        if prior:
            self._log_replay(tenant_id, request.idempotency_key, prior)
            return TransactionResult(CreationOutcome.ALREADY_EXISTS, prior, batch=count > 1)

        if count > 1:
            # A batch key reused with another installment count keeps the stored plan
            stored = self._installment_group(tenant_id, request.idempotency_key)
            if stored and stored[0].installment_count != count:
                count = stored[0].installment_count
                amount = parse_amount(
                    stored[0].metadata['installment']['original_amount'], self.currency
                )

        legs = self._plan_legs(request, amount, count)

        outcomes = []
        transactions = []
        # Each installment is its own atomic unit; keys make retries safe
        for leg in legs:
            outcome, transaction = self._create_leg(tenant_id, transaction_type, request, leg)
            outcomes.append(outcome)
            transactions.append(transaction)

        if any(o == CreationOutcome.CREATED for o in outcomes):
            return TransactionResult(CreationOutcome.CREATED, transactions, batch=count > 1)

        self._log_replay(tenant_id, request.idempotency_key, transactions)
        return TransactionResult(CreationOutcome.ALREADY_EXISTS, transactions, batch=count > 1)

    def get_transaction(self, tenant_id: str, transaction_id: str) -> Transaction:
        """
        Get a transaction with its entries

        Raises:
            TransactionNotFound: No such transaction
            ForbiddenCrossTenant: It belongs to another tenant
        """
        self.guard.authorize(tenant_id)
        return self._load(tenant_id, transaction_id)

    def update_transaction(self, tenant_id: str, transaction_id: str,
                           patch: Dict[str, Any]) -> Transaction:
        """
        Update non-structural fields (description, tags, metadata)

        Submitting a structural field with its current value is accepted and
        ignored; a different value fails and leaves the row unchanged.
        """
        self.guard.authorize(tenant_id)

        with self.storage.atomic():
            transaction = self._load(tenant_id, transaction_id)
            changes = self._validate_patch(tenant_id, transaction, patch)

            for key, value in changes.items():
                setattr(transaction, key, value)

            if changes:
                transaction.updated_at = datetime.now(timezone.utc)
                self.storage.save(self.table_name, transaction.id, transaction.to_dict())
                self.audit_trail.log_event(
                    AuditEventType.TRANSACTION_UPDATED, "transaction", transaction.id,
                    {"changes": sorted(changes)}, tenant_id=tenant_id
                )

        log_action(
            self.logger, "info", f"Transaction updated: {transaction.id}",
            tenant_id=tenant_id, action="update_transaction",
            resource=f"transaction:{transaction.id}", extra={"fields": sorted(changes)}
        )
        return transaction

    def list_transactions(
        self,
        tenant_id: str,
        transaction_type: Optional[Union[TransactionType, str]] = None,
        status: Optional[Union[TransactionStatus, str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        min_amount: Optional[Union[Decimal, str]] = None,
        max_amount: Optional[Union[Decimal, str]] = None,
        account_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> TransactionPage:
        """
        Filtered, paginated listing sorted by date descending

        The summary covers the whole filtered set. Reversed originals and
        reversal rows count towards transaction_count but not the totals,
        since each pair nets to zero.
        """
        self.guard.authorize(tenant_id)
        config = get_config()

        limit = limit or config.default_page_size
        if page < 1:
            raise ValidationError("page must be at least 1", details={"field": "page"})
        if limit < 1 or limit > config.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {config.max_page_size}",
                details={"field": "limit"}
            )

        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if transaction_type is not None:
            filters['type'] = parse_transaction_type(transaction_type).value
        if status is not None:
            try:
                filters['status'] = TransactionStatus(
                    status.value if isinstance(status, TransactionStatus) else str(status).lower()
                ).value
            except ValueError:
                raise ValidationError(f"Invalid status '{status}'", details={"field": "status"})

        transactions = [Transaction.from_dict(d) for d in self.storage.find(self.table_name, filters)]

        start_date = to_utc(start_date)
        end_date = to_utc(end_date)
        if start_date:
            transactions = [t for t in transactions if t.date >= start_date]
        if end_date:
            transactions = [t for t in transactions if t.date <= end_date]
        if search:
            needle = search.lower()
            transactions = [t for t in transactions if needle in t.description.lower()]
        if min_amount is not None:
            low = self._filter_amount(min_amount, "min_amount")
            transactions = [t for t in transactions if t.amount.amount >= low]
        if max_amount is not None:
            high = self._filter_amount(max_amount, "max_amount")
            transactions = [t for t in transactions if t.amount.amount <= high]
        if account_id:
            transactions = [t for t in transactions if account_id in t.account_ids]

        transactions.sort(key=lambda t: (t.date, t.created_at, t.id), reverse=True)
        summary = self._summarize(transactions)

        page_items = transactions[(page - 1) * limit:page * limit]
        for transaction in page_items:
            transaction.entries = self.entry_store.entries_for_transaction(tenant_id, transaction.id)

        return TransactionPage(
            transactions=page_items,
            summary=summary,
            page=page,
            limit=limit,
            total=len(transactions)
        )

    def record_transaction(self, transaction: Transaction, entries: List[Entry],
                           unique_key: bool = True) -> Transaction:
        """
        Insert a transaction row and its entries inside the caller's atomic unit

        Raises:
            UniqueConstraintError: The (tenant, idempotency key) pair is taken
            IntegrityViolation: Entries do not balance to the transaction amount
        """
        unique = [('tenant_id', 'idempotency_key')] if unique_key else []
        self.storage.insert(self.table_name, transaction.id, transaction.to_dict(), unique=unique)
        self.entry_store.append(entries)
        self._verify_posted(transaction, entries)
        transaction.entries = entries
        return transaction

    def mark_reversed(self, transaction: Transaction, reversal_id: str) -> Transaction:
        """Flip a processed transaction to reversed, inside the caller's atomic unit"""
        transaction.status = TransactionStatus.REVERSED
        transaction.reversed_by = reversal_id
        transaction.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())
        return transaction

    def _load(self, tenant_id: str, transaction_id: str) -> Transaction:
        data = self.storage.load(self.table_name, transaction_id)
        self.guard.check_access(tenant_id, data, "transaction", transaction_id, TransactionNotFound)
        transaction = Transaction.from_dict(data)
        transaction.entries = self.entry_store.entries_for_transaction(tenant_id, transaction.id)
        return transaction

    def _find_by_idempotency_key(self, tenant_id: str, key: str) -> Optional[Transaction]:
        matches = self.storage.find(self.table_name, {'tenant_id': tenant_id, 'idempotency_key': key})
        if not matches:
            return None
        transaction = Transaction.from_dict(matches[0])
        transaction.entries = self.entry_store.entries_for_transaction(tenant_id, transaction.id)
        return transaction

    def _installment_group(self, tenant_id: str, key: str) -> List[Transaction]:
        """Installments stored under a request key, in installment order"""
        group = [Transaction.from_dict(d) for d in self.storage.find(
            self.table_name, {'tenant_id': tenant_id, 'installment_group': key}
        )]
        group.sort(key=lambda t: t.installment_number or 0)
        for transaction in group:
            transaction.entries = self.entry_store.entries_for_transaction(tenant_id, transaction.id)
        return group

    def _prior_results(self, tenant_id: str, key: str, count: int) -> List[Transaction]:
        """
        Transactions already stored under a request key in a different shape

        A single request whose key already started an installment batch (or
        the reverse) is a replay of that earlier request. Same-shape replays
        are resolved leg by leg so an interrupted batch can be completed.
        """
        if count > 1:
            single = self._find_by_idempotency_key(tenant_id, key)
            return [single] if single else []
        return self._installment_group(tenant_id, key)

    def _validate_request(self, request: TransactionRequest) -> None:
        if not request.description or not request.description.strip():
            raise ValidationError("Description is required", details={"field": "description"})
        if not request.idempotency_key or not request.idempotency_key.strip():
            raise ValidationError("Idempotency key is required", details={"field": "idempotency_key"})

        max_installments = get_config().max_installments
        count = request.installments if request.installments is not None else 1
        if isinstance(count, bool) or not isinstance(count, int) or count < 1 or count > max_installments:
            raise ValidationError(
                f"installments must be between 1 and {max_installments}",
                details={"field": "installments"}
            )

        if not isinstance(request.tags, list) or not all(isinstance(t, str) for t in request.tags):
            raise ValidationError("tags must be a list of strings", details={"field": "tags"})
        if not isinstance(request.metadata, dict):
            raise ValidationError("metadata must be an object", details={"field": "metadata"})

    def _plan_legs(self, request: TransactionRequest, amount: Money, count: int) -> List[_Leg]:
        start = to_utc(request.date) or datetime.now(timezone.utc)
        description = request.description.strip()

        if count == 1:
            return [_Leg(
                idempotency_key=request.idempotency_key,
                amount=amount,
                description=description,
                date=start,
                tags=list(request.tags),
                metadata=dict(request.metadata)
            )]

        if amount.to_minor_units() < count:
            raise InvalidAmount(
                f"Amount {amount.amount} cannot be split into {count} installments",
                details={"amount": str(amount.amount), "installments": count}
            )

        frequency = request.installment_frequency or get_config().installment_frequency
        try:
            frequency = InstallmentFrequency(
                frequency.value if isinstance(frequency, InstallmentFrequency) else str(frequency).lower()
            )
        except ValueError:
            raise ValidationError(
                f"Invalid installment frequency '{frequency}'",
                details={"allowed": [f.value for f in InstallmentFrequency]}
            )

        tags = list(request.tags)
        if "installment" not in tags:
            tags.append("installment")

        legs = []
        for index, share in enumerate(amount.allocate(count)):
            number = index + 1
            metadata = dict(request.metadata)
            metadata['installment'] = {
                'number': number,
                'total': count,
                'original_amount': str(amount.amount)
            }
            legs.append(_Leg(
                idempotency_key=f"{request.idempotency_key}#{number}/{count}",
                amount=share,
                description=f"{description} ({number}/{count})",
                date=frequency.offset(start, index),
                tags=tags,
                metadata=metadata,
                installment_number=number,
                installment_count=count,
                installment_group=request.idempotency_key
            ))
        return legs

    def _create_leg(self, tenant_id: str, transaction_type: TransactionType,
                    request: TransactionRequest, leg: _Leg) -> Tuple[CreationOutcome, Transaction]:
        try:
            with self.storage.atomic():
                existing = self._find_by_idempotency_key(tenant_id, leg.idempotency_key)
                if existing:
                    return CreationOutcome.ALREADY_EXISTS, existing

                accounts = self._resolve_accounts(tenant_id, transaction_type, request)
                now = datetime.now(timezone.utc)
                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    tenant_id=tenant_id,
                    transaction_type=transaction_type,
                    amount=leg.amount,
                    description=leg.description,
                    date=leg.date,
                    idempotency_key=leg.idempotency_key,
                    category_id=accounts.get('category_id'),
                    from_account_id=accounts.get('from_account_id'),
                    to_account_id=accounts.get('to_account_id'),
                    reference=request.reference,
                    tags=leg.tags,
                    metadata=leg.metadata,
                    installment_number=leg.installment_number,
                    installment_count=leg.installment_count,
                    installment_group=leg.installment_group
                )

                debit_account, credit_account = self._entry_pair(transaction_type, accounts)
                entries = [
                    make_entry(tenant_id, transaction.id, debit_account, EntryType.DEBIT,
                               leg.amount, leg.description, leg.date, 0),
                    make_entry(tenant_id, transaction.id, credit_account, EntryType.CREDIT,
                               leg.amount, leg.description, leg.date, 1),
                ]
                self.record_transaction(transaction, entries)

                self.audit_trail.log_event(
                    AuditEventType.TRANSACTION_CREATED, "transaction", transaction.id,
                    {
                        "type": transaction_type.value,
                        "amount": str(leg.amount.amount),
                        "debit_account": debit_account,
                        "credit_account": credit_account,
                        "idempotency_key": leg.idempotency_key
                    },
                    tenant_id=tenant_id
                )
        except UniqueConstraintError:
            # Lost a race on the idempotency key; the winner's row is committed
            existing = self._find_by_idempotency_key(tenant_id, leg.idempotency_key)
            if existing is None:
                raise
            return CreationOutcome.ALREADY_EXISTS, existing

        log_action(
            self.logger, "info", f"Transaction created: {transaction_type.value}",
            tenant_id=tenant_id, action="create_transaction",
            resource=f"transaction:{transaction.id}",
            extra={
                "amount": leg.amount.to_string(),
                "debit_account": debit_account,
                "credit_account": credit_account,
                "idempotency_key": leg.idempotency_key,
                "installment": leg.installment_number
            }
        )
        return CreationOutcome.CREATED, transaction

    def _resolve_accounts(self, tenant_id: str, transaction_type: TransactionType,
                          request: TransactionRequest) -> Dict[str, str]:
        """Check the accounts a transaction type needs and return their ids by role"""
        if transaction_type == TransactionType.EXPENSE:
            roles = {'category_id': AccountType.EXPENSE, 'from_account_id': None}
        elif transaction_type == TransactionType.INCOME:
            roles = {'category_id': AccountType.REVENUE, 'to_account_id': None}
        else:
            roles = {'from_account_id': None, 'to_account_id': None}

        resolved = {}
        for role, required_type in roles.items():
            account_id = getattr(request, role)
            if not account_id:
                raise ValidationError(
                    f"{role} is required for {transaction_type.value} transactions",
                    details={"field": role}
                )
            account = self._usable_account(tenant_id, account_id)
            if required_type and account.account_type != required_type:
                raise InvalidAccountType(
                    f"Category of an {transaction_type.value} must be a "
                    f"{required_type.value} account, got {account.account_type.value}",
                    details={"field": role, "account_id": account_id}
                )
            resolved[role] = account_id

        if len(set(resolved.values())) != len(resolved):
            raise ValidationError(
                "A transaction cannot debit and credit the same account",
                details={"accounts": sorted(set(resolved.values()))}
            )
        return resolved

    def _usable_account(self, tenant_id: str, account_id: str) -> Account:
        account = self.registry.get_account(tenant_id, account_id)
        try:
            self.registry.get_ledger(tenant_id, account.ledger_id)
        except ForbiddenCrossTenant:
            raise LedgerNotFound(account.ledger_id)
        if not account.is_active:
            raise ValidationError(
                f"Account {account.code} is inactive",
                details={"account_id": account_id}
            )
        return account

    @staticmethod
    def _entry_pair(transaction_type: TransactionType, accounts: Dict[str, str]) -> Tuple[str, str]:
        """(debit account, credit account) for a transaction type"""
        if transaction_type == TransactionType.EXPENSE:
            return accounts['category_id'], accounts['from_account_id']
        if transaction_type == TransactionType.INCOME:
            return accounts['to_account_id'], accounts['category_id']
        return accounts['to_account_id'], accounts['from_account_id']

    def _verify_posted(self, transaction: Transaction, entries: List[Entry]) -> None:
        debits = Money.zero(transaction.amount.currency)
        credits = Money.zero(transaction.amount.currency)
        for entry in entries:
            if entry.is_debit:
                debits = debits + entry.amount
            else:
                credits = credits + entry.amount

        if debits != transaction.amount or credits != transaction.amount:
            log_action(
                self.logger, "critical", "Transaction entries do not match its amount",
                tenant_id=transaction.tenant_id, action="integrity_alarm",
                resource=f"transaction:{transaction.id}",
                extra={"amount": str(transaction.amount.amount),
                       "debits": str(debits.amount), "credits": str(credits.amount)}
            )
            raise IntegrityViolation(
                f"Entries of transaction {transaction.id} do not equal its amount",
                details={"transaction_id": transaction.id}
            )

    def _validate_patch(self, tenant_id: str, transaction: Transaction,
                        patch: Dict[str, Any]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for key, value in patch.items():
            if key == 'type':
                if parse_transaction_type(value) != transaction.transaction_type:
                    raise TypeImmutable(entity="transaction")
            elif key == 'tenant_id':
                if value != tenant_id:
                    raise ForbiddenCrossTenant("tenant", value)
            elif key in STRUCTURAL_FIELDS:
                if not self._same_value(transaction, key, value):
                    raise ImmutableField("transaction", key)
            elif key not in UPDATABLE_FIELDS:
                raise ValidationError(
                    f"Transaction field '{key}' cannot be updated",
                    details={"field": key, "allowed": sorted(UPDATABLE_FIELDS)}
                )
            else:
                changes[key] = value

        if 'description' in changes:
            if not isinstance(changes['description'], str) or not changes['description'].strip():
                raise ValidationError("Description is required", details={"field": "description"})
            changes['description'] = changes['description'].strip()
        if 'tags' in changes:
            tags = changes['tags']
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise ValidationError("tags must be a list of strings", details={"field": "tags"})
        if 'metadata' in changes and not isinstance(changes['metadata'], dict):
            raise ValidationError("metadata must be an object", details={"field": "metadata"})
        return changes

    def _same_value(self, transaction: Transaction, key: str, value: Any) -> bool:
        if key == 'amount':
            try:
                return parse_amount(value, transaction.amount.currency) == transaction.amount
            except InvalidAmount:
                return False
        if key == 'date':
            try:
                return to_utc(value) == transaction.date
            except (TypeError, ValueError):
                return False
        if key == 'status':
            return str(value).lower() == transaction.status.value
        if key == 'currency':
            return str(value).upper() == transaction.amount.currency.code
        if key == 'installments':
            return value == (transaction.installment_count or 1)
        if key == 'entries':
            return False
        return getattr(transaction, key) == value

    def _filter_amount(self, value: Union[Decimal, str], field_name: str) -> Decimal:
        try:
            return value if isinstance(value, Decimal) else decimal_from_string(str(value))
        except ValueError:
            raise ValidationError(f"Invalid {field_name} '{value}'", details={"field": field_name})

    def _summarize(self, transactions: List[Transaction]) -> TransactionSummary:
        income = Decimal('0')
        expense = Decimal('0')
        for transaction in transactions:
            if transaction.is_reversed or transaction.is_reversal:
                continue
            if transaction.transaction_type == TransactionType.INCOME:
                income += transaction.amount.amount
            elif transaction.transaction_type == TransactionType.EXPENSE:
                expense += transaction.amount.amount

        quantum = self.currency.quantum
        return TransactionSummary(
            total_income=income.quantize(quantum),
            total_expense=expense.quantize(quantum),
            net_amount=(income - expense).quantize(quantum),
            transaction_count=len(transactions)
        )

    def _log_replay(self, tenant_id: str, key: str, transactions: List[Transaction]) -> None:
        log_action(
            self.logger, "info", "Idempotent replay",
            tenant_id=tenant_id, action="idempotent_replay",
            extra={"idempotency_key": key, "transaction_ids": [t.id for t in transactions]}
        )
