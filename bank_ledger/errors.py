"""
Ledger Error Taxonomy

A closed set of error kinds returned by the validator and raised by the
balance mutator. Transport layers map kinds to their own codes.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Every way a posting can fail"""
    ACCOUNT_NOT_FOUND = "account_not_found"
    INVALID_AMOUNT = "invalid_amount"        # <= 0, bad scale or overflow
    SELF_TRANSFER = "self_transfer"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    STORE_UNAVAILABLE = "store_unavailable"  # Transient, safe to retry
    INTERNAL = "internal"


DEFAULT_MESSAGES = {
    ErrorKind.ACCOUNT_NOT_FOUND: "Account not found",
    ErrorKind.INVALID_AMOUNT: "Amount must be a positive value with at most two decimal places",
    ErrorKind.SELF_TRANSFER: "Cannot transfer to the same account",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds",
    ErrorKind.STORE_UNAVAILABLE: "Ledger store is temporarily unavailable",
    ErrorKind.INTERNAL: "Internal error",
}


class LedgerError(Exception):
    """Raised by core ledger operations; a failed operation leaves the store unchanged"""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Only transient store failures may be retried with the same input"""
        return self.kind == ErrorKind.STORE_UNAVAILABLE

    def __repr__(self) -> str:
        return f"LedgerError(kind={self.kind.value}, message='{self.message}')"
