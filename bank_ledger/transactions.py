"""
Transaction Records Module

Immutable records of deposits, withdrawals and transfers, and the request
shape callers submit to the balance mutator.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .money import ZERO, AmountLike
from .storage import StorageRecord


class TransactionType(Enum):
    """Types of banking transactions"""
    DEPOSIT = "deposit"        # Money into the source account
    WITHDRAWAL = "withdrawal"  # Money out of the source account
    TRANSFER = "transfer"      # Source account to destination account


class TransactionStatus(Enum):
    """States of a transaction"""
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Transaction(StorageRecord):
    """
    Posted transaction. Never updated after creation, except that the
    destination reference is cleared when that account is deleted.
    """
    account_id: str  # Source account
    transaction_type: TransactionType
    amount: Decimal
    destination_account_id: Optional[str] = None
    description: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED

    def __post_init__(self):
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

    @property
    def is_transfer(self) -> bool:
        return self.transaction_type == TransactionType.TRANSFER

    def signed_delta(self, account_id: str) -> Decimal:
        """Effect of this transaction on the given account's balance"""
        if account_id == self.account_id:
            if self.transaction_type == TransactionType.DEPOSIT:
                return self.amount
            return -self.amount
        if self.is_transfer and account_id == self.destination_account_id:
            return self.amount
        return ZERO

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Convert dictionary to Transaction"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            account_id=data['account_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            destination_account_id=data.get('destination_account_id'),
            description=data.get('description'),
            status=TransactionStatus(data.get('status', TransactionStatus.COMPLETED.value))
        )


@dataclass(frozen=True)
class TransactionRequest:
    """
    A caller's request to post a transaction.

    The amount is kept as submitted; the validator decides whether it is a
    usable fixed-point value.
    """
    account_id: str
    transaction_type: TransactionType
    amount: AmountLike
    destination_account_id: Optional[str] = None
    description: Optional[str] = None

    @property
    def account_ids(self) -> list:
        """Accounts whose rows the posting may touch"""
        ids = [self.account_id]
        if self.transaction_type == TransactionType.TRANSFER and self.destination_account_id:
            ids.append(self.destination_account_id)
        return ids
