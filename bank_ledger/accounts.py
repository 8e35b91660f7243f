"""
Account Management Module

Manages the account lifecycle: creation with an initial deposit, renaming,
retyping and deletion. Balances are only ever changed by the balance
mutator; this module never writes them after creation.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from enum import Enum
import secrets
import uuid

from .errors import ErrorKind, LedgerError
from .money import MAX_AMOUNT, ZERO, AmountLike, format_amount, to_amount
from .storage import DuplicateRecordError, StorageRecord
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .ledger import LedgerStore


class AccountType(Enum):
    """Banking product types"""
    SAVINGS = "savings"
    CHECKING = "checking"
    BUSINESS = "business"
    FIXED_DEPOSIT = "fixed-deposit"

    @property
    def label(self) -> str:
        return {
            AccountType.SAVINGS: "Savings Account",
            AccountType.CHECKING: "Checking Account",
            AccountType.BUSINESS: "Business Account",
            AccountType.FIXED_DEPOSIT: "Fixed Deposit",
        }[self]


@dataclass
class Account(StorageRecord):
    """Bank account owned by a user"""
    updated_at: datetime
    user_id: str
    account_number: str
    account_type: AccountType
    name: str
    balance: Decimal
    opening_balance: Decimal  # Initial deposit, never changes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Convert dictionary to Account"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            account_number=data['account_number'],
            account_type=AccountType(data['account_type']),
            name=data['name'],
            balance=Decimal(data['balance']),
            opening_balance=Decimal(data['opening_balance'])
        )


class AccountManager:
    """
    Creates and maintains accounts on behalf of the API layer
    """

    # Attempts at drawing an unused account number before giving up
    MAX_NUMBER_ATTEMPTS = 10

    def __init__(self, ledger: 'LedgerStore'):
        self.ledger = ledger
        self.logger = get_logger("bank_ledger.accounts")

    def create_account(
        self,
        user_id: str,
        account_type: AccountType,
        initial_deposit: AmountLike = ZERO,
        name: Optional[str] = None,
        account_number: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Args:
            user_id: ID of account owner
            account_type: Type of banking product
            initial_deposit: Opening balance, zero or more
            name: Display name (defaults to the account type label)
            account_number: Specific account number (generated if not provided)

        Returns:
            Created Account object

        Raises:
            LedgerError: INVALID_AMOUNT for a negative or malformed deposit
            DuplicateRecordError: If the supplied account number is taken
        """
        try:
            opening_balance = to_amount(initial_deposit)
        except (TypeError, ValueError) as e:
            raise LedgerError(ErrorKind.INVALID_AMOUNT, str(e))
        if opening_balance < ZERO or opening_balance > MAX_AMOUNT:
            raise LedgerError(
                ErrorKind.INVALID_AMOUNT,
                f"Initial deposit must be between 0.00 and {format_amount(MAX_AMOUNT)}"
            )

        attempts = 1 if account_number else self.MAX_NUMBER_ATTEMPTS
        for attempt in range(attempts):
            now = self.ledger.now()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                account_number=account_number or self._generate_account_number(),
                account_type=account_type,
                name=name or account_type.label,
                balance=opening_balance,
                opening_balance=opening_balance
            )
            try:
                self.ledger.insert_account(account)
                break
            except DuplicateRecordError:
                if attempt == attempts - 1:
                    raise

        log_action(
            self.logger, "info", f"Account created: {account.account_type.value}",
            user_id=user_id, action="create_account", resource=f"account:{account.id}",
            extra={
                "account_number": account.account_number,
                "opening_balance": format_amount(opening_balance)
            }
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        return self.ledger.get_account(account_id)

    def get_user_accounts(self, user_id: str) -> List[Account]:
        """Get all accounts for a user"""
        return self.ledger.list_accounts_by_user(user_id)

    def update_account(
        self,
        account_id: str,
        name: Optional[str] = None,
        account_type: Optional[AccountType] = None
    ) -> Account:
        """
        Rename or retype an account. Owner, number and balance are fixed.

        The read and write share one unit so a concurrent posting's balance
        change is never overwritten with a stale value.
        """
        with self.ledger.atomic():
            self.ledger.lock_accounts([account_id])
            account = self.ledger.get_account(account_id)
            if not account:
                raise LedgerError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {account_id} not found")

            if name is not None:
                account.name = name
            if account_type is not None:
                account.account_type = account_type
            account.updated_at = self.ledger.now()
            self.ledger.save_account(account)

        log_action(
            self.logger, "info", "Account updated",
            user_id=account.user_id, action="update_account", resource=f"account:{account.id}"
        )
        return account

    def delete_account(self, account_id: str) -> None:
        """Delete an account, its source transactions and its destination references"""
        if not self.ledger.delete_account(account_id):
            raise LedgerError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {account_id} not found")

        log_action(
            self.logger, "info", "Account deleted",
            action="delete_account", resource=f"account:{account_id}"
        )

    @staticmethod
    def _generate_account_number() -> str:
        """Generate an account number in NNNN-NNNN form"""
        return f"{1000 + secrets.randbelow(9000)}-{1000 + secrets.randbelow(9000)}"
