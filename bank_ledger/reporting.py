"""
Dashboard Aggregator

Read-side summaries over the ledger: dashboard counts with period-over-period
growth, transaction listings enriched with account details, per-account
activity, and balance reconciliation against the transaction history.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timedelta
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .accounts import Account
from .errors import ErrorKind, LedgerError
from .ledger import LedgerStore
from .money import CENT, format_amount
from .transactions import Transaction, TransactionType


def growth_rate(current: int, previous: int) -> Optional[Decimal]:
    """
    Percentage change from the previous window to the current one.

    None when the previous window is empty, where a rate is undefined.
    """
    if previous == 0:
        return None
    rate = Decimal(current - previous) / Decimal(previous) * 100
    return rate.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class DashboardStats:
    """Dashboard counters and their growth against the preceding window"""
    total_accounts: int
    total_deposits: int
    total_withdrawals: int
    active_users: int
    accounts_growth: Optional[Decimal]
    deposits_growth: Optional[Decimal]
    withdrawals_growth: Optional[Decimal]
    users_growth: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        def rate(value: Optional[Decimal]) -> Optional[str]:
            return format_amount(value) if value is not None else None

        return {
            "total_accounts": self.total_accounts,
            "total_deposits": self.total_deposits,
            "total_withdrawals": self.total_withdrawals,
            "active_users": self.active_users,
            "accounts_growth": rate(self.accounts_growth),
            "deposits_growth": rate(self.deposits_growth),
            "withdrawals_growth": rate(self.withdrawals_growth),
            "users_growth": rate(self.users_growth),
        }


@dataclass
class TransactionDetails:
    """Transaction with the names and numbers of the accounts involved"""
    transaction: Transaction
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    destination_account_name: Optional[str] = None
    destination_account_number: Optional[str] = None


@dataclass
class AccountStats:
    """Account with its outgoing transaction activity"""
    account: Account
    transaction_count: int
    last_transaction_at: Optional[datetime] = None


@dataclass
class BalanceReconciliation:
    """Stored balance against the balance replayed from history"""
    account_id: str
    stored: Decimal
    derived: Decimal

    @property
    def balanced(self) -> bool:
        return self.stored == self.derived


class DashboardAggregator:
    """
    Computes dashboard statistics from the ledger store
    """

    def __init__(self, ledger: LedgerStore, growth_window_days: int = 30):
        if growth_window_days <= 0:
            raise ValueError("Growth window must be at least one day")
        self.ledger = ledger
        self.growth_window = timedelta(days=growth_window_days)

    def stats(self, user_id: Optional[str] = None) -> DashboardStats:
        """
        Dashboard statistics, scoped to one user's accounts when user_id is given

        Active users and user growth are always global. Growth compares
        the window ending now against the window before it.
        """
        all_accounts = self.ledger.list_accounts()
        if user_id:
            accounts = [a for a in all_accounts if a.user_id == user_id]
            transactions = self.ledger.list_transactions_for_accounts(a.id for a in accounts)
        else:
            accounts = all_accounts
            transactions = self.ledger.list_transactions()

        deposits = [t.created_at for t in transactions if t.transaction_type == TransactionType.DEPOSIT]
        withdrawals = [t.created_at for t in transactions if t.transaction_type == TransactionType.WITHDRAWAL]

        # A user joins when their first account is opened
        first_seen: Dict[str, datetime] = {}
        for account in all_accounts:
            seen = first_seen.get(account.user_id)
            if seen is None or account.created_at < seen:
                first_seen[account.user_id] = account.created_at

        now = self.ledger.now()
        return DashboardStats(
            total_accounts=len(accounts),
            total_deposits=len(deposits),
            total_withdrawals=len(withdrawals),
            active_users=len(first_seen),
            accounts_growth=self._growth([a.created_at for a in accounts], now),
            deposits_growth=self._growth(deposits, now),
            withdrawals_growth=self._growth(withdrawals, now),
            users_growth=self._growth(first_seen.values(), now),
        )

    def transactions_with_details(self, limit: Optional[int] = None) -> List[TransactionDetails]:
        """Recent transactions joined with their source and destination accounts"""
        accounts = {a.id: a for a in self.ledger.list_accounts()}
        details = []
        for transaction in self.ledger.list_transactions(limit):
            source = accounts.get(transaction.account_id)
            destination = accounts.get(transaction.destination_account_id) if transaction.destination_account_id else None
            details.append(TransactionDetails(
                transaction=transaction,
                account_name=source.name if source else None,
                account_number=source.account_number if source else None,
                destination_account_name=destination.name if destination else None,
                destination_account_number=destination.account_number if destination else None
            ))
        return details

    def accounts_with_stats(self, user_id: str) -> List[AccountStats]:
        """A user's accounts with the count and time of their outgoing transactions"""
        result = []
        for account in self.ledger.list_accounts_by_user(user_id):
            outgoing = [
                t for t in self.ledger.list_transactions_by_account(account.id)
                if t.account_id == account.id
            ]
            result.append(AccountStats(
                account=account,
                transaction_count=len(outgoing),
                last_transaction_at=outgoing[0].created_at if outgoing else None
            ))
        return result

    def reconcile(self, account_id: str) -> BalanceReconciliation:
        """
        Replay an account's history: opening balance plus the signed effect
        of every transaction it took part in must equal the stored balance.
        """
        with self.ledger.atomic():
            account = self.ledger.get_account(account_id)
            if not account:
                raise LedgerError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {account_id} not found")
            history = self.ledger.list_transactions_by_account(account_id)

        derived = account.opening_balance
        for transaction in history:
            derived += transaction.signed_delta(account_id)

        return BalanceReconciliation(account_id=account_id, stored=account.balance, derived=derived)

    def _growth(self, timestamps: Iterable[datetime], now: datetime) -> Optional[Decimal]:
        window_start = now - self.growth_window
        previous_start = window_start - self.growth_window
        current = previous = 0
        for ts in timestamps:
            if window_start < ts <= now:
                current += 1
            elif previous_start < ts <= window_start:
                previous += 1
        return growth_rate(current, previous)
