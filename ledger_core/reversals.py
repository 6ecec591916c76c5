"""
Reversal Module

"Deleting" a transaction never removes it. A reversal appends a new
transaction whose entries mirror the original (debit and credit swapped,
same accounts and amounts) and flips the original to reversed.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
import uuid

from .currency import Money
from .storage import StorageInterface, UniqueConstraintError
from .audit import AuditTrail, AuditEventType
from .ledger import Entry, make_entry, to_utc
from .tenancy import TenantGuard
from .transactions import TransactionProcessor, Transaction
from .errors import AlreadyReversed, IntegrityViolation, ValidationError
from .logging_config import get_logger, log_action


REVERSAL_PREFIX = "ESTORNO: "
REVERSAL_TAG = "reversal"


def reversal_key(transaction_id: str) -> str:
    """Idempotency key reserved for the reversal of a transaction"""
    return f"reversal:{transaction_id}"


def net_by_account(*entry_sets: List[Entry]) -> Dict[str, Money]:
    """Debit-positive net movement per account across entry sets"""
    totals: Dict[str, Money] = {}
    for entries in entry_sets:
        for entry in entries:
            current = totals.get(entry.account_id, Money.zero(entry.amount.currency))
            totals[entry.account_id] = current + entry.amount if entry.is_debit else current - entry.amount
    return totals


class ReversalManager:
    """
    Implements logical deletion through compensating transactions
    """

    def __init__(
        self,
        storage: StorageInterface,
        guard: TenantGuard,
        processor: TransactionProcessor,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.guard = guard
        self.processor = processor
        self.audit_trail = audit_trail
        self.logger = get_logger("ledger.reversals")

    def reverse_transaction(
        self,
        tenant_id: str,
        transaction_id: str,
        reason: str = "",
        reversal_date: Optional[datetime] = None
    ) -> Transaction:
        """
        Reverse a processed transaction

        Args:
            tenant_id: Caller's tenant
            transaction_id: Transaction to reverse
            reason: Free-text reason kept in the reversal's metadata
            reversal_date: Effective date of the reversal; defaults to now,
                or to the original's date when that lies in the future

        Returns:
            The new reversal transaction with its entries

        Raises:
            TransactionNotFound: No such transaction
            ForbiddenCrossTenant: It belongs to another tenant
            AlreadyReversed: Already reversed, or itself a reversal
            IntegrityViolation: Original and reversal do not net to zero
        """
        self.guard.authorize(tenant_id)

        try:
            with self.storage.atomic():
                original = self.processor.get_transaction(tenant_id, transaction_id)

                if original.is_reversal:
                    raise AlreadyReversed(
                        transaction_id,
                        f"Transaction {transaction_id} is a reversal and cannot be reversed"
                    )
                if original.is_reversed:
                    raise AlreadyReversed(transaction_id)

                effective_date = self._effective_date(original, reversal_date)
                reversal = self._build_reversal(original, reason, effective_date)
                entries = [
                    make_entry(
                        tenant_id, reversal.id, entry.account_id, entry.entry_type.opposite,
                        entry.amount, f"{REVERSAL_PREFIX}{entry.description}",
                        effective_date, entry.line
                    )
                    for entry in original.entries
                ]

                self.processor.record_transaction(reversal, entries)
                self.processor.mark_reversed(original, reversal.id)
                self._verify_nets_to_zero(original, entries)

                self.audit_trail.log_event(
                    AuditEventType.TRANSACTION_REVERSED, "transaction", original.id,
                    {"reversal_id": reversal.id, "reason": reason,
                     "amount": str(original.amount.amount)},
                    tenant_id=tenant_id
                )
        except UniqueConstraintError:
            # A concurrent reversal committed first
            raise AlreadyReversed(transaction_id)

        log_action(
            self.logger, "info", f"Transaction reversed: {transaction_id}",
            tenant_id=tenant_id, action="reverse_transaction",
            resource=f"transaction:{transaction_id}",
            extra={"reversal_id": reversal.id, "reason": reason}
        )
        return reversal

    def _effective_date(self, original: Transaction, reversal_date: Optional[datetime]) -> datetime:
        if reversal_date is None:
            return max(datetime.now(timezone.utc), original.date)

        effective = to_utc(reversal_date)
        if effective < original.date:
            raise ValidationError(
                "A reversal cannot be dated before the transaction it reverses",
                details={"transaction_date": original.date.isoformat()}
            )
        return effective

    @staticmethod
    def _build_reversal(original: Transaction, reason: str, effective_date: datetime) -> Transaction:
        now = datetime.now(timezone.utc)
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=original.tenant_id,
            transaction_type=original.transaction_type,
            amount=original.amount,
            description=f"{REVERSAL_PREFIX}{original.description}",
            date=effective_date,
            idempotency_key=reversal_key(original.id),
            category_id=original.category_id,
            from_account_id=original.from_account_id,
            to_account_id=original.to_account_id,
            reference=original.reference,
            tags=[REVERSAL_TAG],
            metadata={
                "reversal": {
                    "original_transaction_id": original.id,
                    "reason": reason
                }
            },
            reverses=original.id
        )

    def _verify_nets_to_zero(self, original: Transaction, reversal_entries: List[Entry]) -> None:
        residue = {
            account_id: str(amount.amount)
            for account_id, amount in net_by_account(original.entries, reversal_entries).items()
            if not amount.is_zero()
        }
        if residue:
            log_action(
                self.logger, "critical", "Reversal does not cancel the original",
                tenant_id=original.tenant_id, action="integrity_alarm",
                resource=f"transaction:{original.id}", extra={"residue": residue}
            )
            raise IntegrityViolation(
                f"Reversal of {original.id} leaves a non-zero balance",
                details={"accounts": residue}
            )
