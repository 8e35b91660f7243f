"""
Ledger Store

Typed persistence for accounts and transactions on top of a storage backend.
Multi-row writes go through ``atomic()``; rows a unit will update are locked
with ``lock_accounts()`` before they are read. Listings are newest first.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from contextlib import contextmanager

from .accounts import Account
from .transactions import Transaction
from .storage import StorageInterface, DuplicateRecordError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(records: list) -> list:
    records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
    return records


class LedgerStore:
    """
    Account and transaction records with an atomic-unit primitive
    """

    def __init__(self, storage: StorageInterface, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.clock = clock or utc_now
        self.accounts_table = "accounts"
        self.transactions_table = "transactions"

    def now(self) -> datetime:
        """Current time according to the store clock"""
        return self.clock()

    @contextmanager
    def atomic(self):
        """All-or-nothing unit isolated from other units on the same rows"""
        with self.storage.atomic():
            yield self

    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        """Lock account rows until the current unit ends"""
        self.storage.lock_rows(self.accounts_table, account_ids)

    # Accounts

    def insert_account(self, account: Account) -> None:
        """Insert a new account; account numbers are unique"""
        with self.atomic():
            if self.storage.find(self.accounts_table, {"account_number": account.account_number}):
                raise DuplicateRecordError(f"Account number {account.account_number} already exists")
            self.storage.insert(self.accounts_table, account.id, account.to_dict())

    def save_account(self, account: Account) -> None:
        """Persist changes to an existing account"""
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        found = self.storage.find(self.accounts_table, {"account_number": account_number})
        if found:
            return Account.from_dict(found[0])
        return None

    def list_accounts_by_user(self, user_id: str) -> List[Account]:
        """Get all accounts owned by a user"""
        found = self.storage.find(self.accounts_table, {"user_id": user_id})
        return _newest_first([Account.from_dict(data) for data in found])

    def list_accounts(self) -> List[Account]:
        """Get every account"""
        return _newest_first([Account.from_dict(data) for data in self.storage.load_all(self.accounts_table)])

    def delete_account(self, account_id: str) -> bool:
        """
        Delete an account.

        Its source transactions are deleted with it; transfers into it keep
        their row but lose the destination reference.
        """
        with self.atomic():
            self.lock_accounts([account_id])
            if not self.storage.exists(self.accounts_table, account_id):
                return False

            for data in self.storage.find(self.transactions_table, {"account_id": account_id}):
                self.storage.delete(self.transactions_table, data['id'])

            for data in self.storage.find(self.transactions_table, {"destination_account_id": account_id}):
                data['destination_account_id'] = None
                self.storage.save(self.transactions_table, data['id'], data)

            return self.storage.delete(self.accounts_table, account_id)

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> None:
        """Insert a transaction; there is no update path"""
        self.storage.insert(self.transactions_table, transaction.id, transaction.to_dict())

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.transactions_table, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def list_transactions_by_account(self, account_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions where the account is the source or the destination"""
        records = {}
        for filters in ({"account_id": account_id}, {"destination_account_id": account_id}):
            for data in self.storage.find(self.transactions_table, filters):
                records[data['id']] = data
        transactions = _newest_first([Transaction.from_dict(data) for data in records.values()])
        return transactions[:limit] if limit else transactions

    def list_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        """All transactions, newest first, optionally capped"""
        transactions = _newest_first(
            [Transaction.from_dict(data) for data in self.storage.load_all(self.transactions_table)]
        )
        return transactions[:limit] if limit else transactions

    def list_transactions_for_accounts(self, account_ids: Iterable[str]) -> List[Transaction]:
        """Transactions whose source is any of the given accounts"""
        wanted = set(account_ids)
        if not wanted:
            return []
        return [t for t in self.list_transactions() if t.account_id in wanted]

    def close(self) -> None:
        """Close the underlying storage"""
        self.storage.close()
