"""
Pydantic schemas for API requests and responses

Amounts travel as exact decimal strings in both directions; a JSON number
in an amount field fails request validation.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from ..accounts import Account, AccountType
from ..money import format_amount
from ..reporting import AccountStats, BalanceReconciliation, TransactionDetails
from ..transactions import Transaction, TransactionRequest, TransactionType


# Transaction schemas
class PostTransactionRequest(BaseModel):
    account_id: str
    transaction_type: TransactionType
    amount: str = Field(..., description="Decimal amount as string, e.g. \"12.34\"")
    destination_account_id: Optional[str] = Field(None, description="Required for transfers")
    description: Optional[str] = None

    def to_request(self) -> TransactionRequest:
        return TransactionRequest(
            account_id=self.account_id,
            transaction_type=self.transaction_type,
            amount=self.amount,
            destination_account_id=self.destination_account_id,
            description=self.description
        )


class TransactionModel(BaseModel):
    id: str
    account_id: str
    transaction_type: str
    amount: str
    destination_account_id: Optional[str] = None
    description: Optional[str] = None
    status: str
    created_at: str

    @classmethod
    def fields_from(cls, transaction: Transaction) -> dict:
        return {
            "id": transaction.id,
            "account_id": transaction.account_id,
            "transaction_type": transaction.transaction_type.value,
            "amount": format_amount(transaction.amount),
            "destination_account_id": transaction.destination_account_id,
            "description": transaction.description,
            "status": transaction.status.value,
            "created_at": transaction.created_at.isoformat()
        }

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(**cls.fields_from(transaction))


class TransactionDetailsModel(TransactionModel):
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    destination_account_name: Optional[str] = None
    destination_account_number: Optional[str] = None

    @classmethod
    def from_details(cls, details: TransactionDetails) -> 'TransactionDetailsModel':
        return cls(
            **cls.fields_from(details.transaction),
            account_name=details.account_name,
            account_number=details.account_number,
            destination_account_name=details.destination_account_name,
            destination_account_number=details.destination_account_number
        )


# Account schemas
class CreateAccountRequest(BaseModel):
    account_type: AccountType = Field(..., description="savings, checking, business or fixed-deposit")
    initial_deposit: str = Field("0.00", description="Decimal amount as string")
    name: Optional[str] = None
    account_number: Optional[str] = None


class UpdateAccountRequest(BaseModel):
    """Only the display name and product type can change"""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    account_type: Optional[AccountType] = None


class AccountModel(BaseModel):
    id: str
    user_id: str
    account_number: str
    name: str
    account_type: str
    balance: str
    opening_balance: str
    created_at: str
    updated_at: str

    @classmethod
    def fields_from(cls, account: Account) -> dict:
        return {
            "id": account.id,
            "user_id": account.user_id,
            "account_number": account.account_number,
            "name": account.name,
            "account_type": account.account_type.value,
            "balance": format_amount(account.balance),
            "opening_balance": format_amount(account.opening_balance),
            "created_at": account.created_at.isoformat(),
            "updated_at": account.updated_at.isoformat()
        }

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(**cls.fields_from(account))


class AccountStatsModel(AccountModel):
    transaction_count: int
    last_transaction_at: Optional[str] = None

    @classmethod
    def from_stats(cls, stats: AccountStats) -> 'AccountStatsModel':
        last = stats.last_transaction_at
        return cls(
            **cls.fields_from(stats.account),
            transaction_count=stats.transaction_count,
            last_transaction_at=last.isoformat() if last else None
        )


class ReconciliationModel(BaseModel):
    account_id: str
    stored_balance: str
    derived_balance: str
    balanced: bool

    @classmethod
    def from_reconciliation(cls, result: BalanceReconciliation) -> 'ReconciliationModel':
        return cls(
            account_id=result.account_id,
            stored_balance=format_amount(result.stored),
            derived_balance=format_amount(result.derived),
            balanced=result.balanced
        )


# Dashboard schemas
class DashboardStatsModel(BaseModel):
    total_accounts: int
    total_deposits: int
    total_withdrawals: int
    active_users: int
    accounts_growth: Optional[str] = Field(None, description="Percent change, null without a prior period")
    deposits_growth: Optional[str] = None
    withdrawals_growth: Optional[str] = None
    users_growth: Optional[str] = None
