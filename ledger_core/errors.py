"""
Ledger Error Taxonomy

Every failure the ledger core reports carries a stable ``kind`` and the HTTP
status the API layer maps it to. Validation failures also subclass
ValueError so bad input can be handled as such.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base ledger exception"""

    kind = "LedgerError"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body returned to clients"""
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details
        }


class ValidationError(LedgerError, ValueError):
    """Bad amount, type, missing field or disallowed change"""
    kind = "ValidationError"
    status_code = 400


class InvalidAmount(ValidationError):
    kind = "InvalidAmount"


class InvalidAccountType(ValidationError):
    kind = "InvalidAccountType"


class ImmutableField(ValidationError):
    """A structural field was submitted with a different value"""
    kind = "ImmutableField"

    def __init__(self, entity: str, field_name: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity} field '{field_name}' is immutable",
            details={"entity": entity, "field": field_name}
        )


class CodeImmutable(ImmutableField):
    kind = "CodeImmutable"

    def __init__(self):
        super().__init__("account", "code", "Account code cannot be changed after creation")


class TypeImmutable(ImmutableField):
    kind = "TypeImmutable"

    def __init__(self, entity: str = "account"):
        super().__init__(entity, "type", f"{entity.capitalize()} type cannot be changed after creation")


class NotFound(LedgerError):
    kind = "NotFound"
    status_code = 404
    entity = "Resource"

    def __init__(self, entity_id: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            message = f"{self.entity} not found"
            if entity_id:
                message = f"{self.entity} {entity_id} not found"
        super().__init__(message, details={"entity": self.entity.lower(), "id": entity_id})


class AccountNotFound(NotFound):
    kind = "AccountNotFound"
    entity = "Account"


class LedgerNotFound(NotFound):
    kind = "LedgerNotFound"
    entity = "Ledger"


class TransactionNotFound(NotFound):
    kind = "TransactionNotFound"
    entity = "Transaction"


class TenantNotFound(NotFound):
    kind = "TenantNotFound"
    entity = "Tenant"


class ForbiddenCrossTenant(LedgerError):
    """The row exists but belongs to another tenant"""
    kind = "ForbiddenCrossTenant"
    status_code = 403

    def __init__(self, entity: str = "resource", entity_id: Optional[str] = None):
        target = f"{entity} {entity_id}" if entity_id else entity
        super().__init__(
            f"Access to {target} is forbidden for this tenant",
            details={"entity": entity, "id": entity_id}
        )


class TenantInactive(LedgerError):
    kind = "TenantInactive"
    status_code = 403


class Unauthenticated(LedgerError):
    kind = "Unauthenticated"
    status_code = 401


class DuplicateCode(LedgerError):
    kind = "DuplicateCode"
    status_code = 409

    def __init__(self, code: str, entity: str = "account"):
        super().__init__(
            f"{entity.capitalize()} code '{code}' already exists",
            details={"entity": entity, "code": code}
        )


class HasTransactions(LedgerError):
    kind = "HasTransactions"
    status_code = 409

    def __init__(self, account_id: str, entry_count: int):
        super().__init__(
            f"Account {account_id} has {entry_count} entries and cannot be deactivated",
            details={"account_id": account_id, "entry_count": entry_count}
        )


class AlreadyReversed(LedgerError):
    kind = "AlreadyReversed"
    status_code = 409

    def __init__(self, transaction_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Transaction {transaction_id} is already reversed",
            details={"transaction_id": transaction_id}
        )


class IntegrityViolation(LedgerError):
    """Debits and credits disagree; the ledger is inconsistent"""
    kind = "IntegrityViolation"
    status_code = 500
