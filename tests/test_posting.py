"""
Tests for the balance mutator

Covers the posting algorithm, the all-or-nothing guarantee and concurrent
withdrawals against one account.
"""

import pytest
import threading
from decimal import Decimal

from bank_ledger.accounts import AccountType
from bank_ledger.errors import ErrorKind, LedgerError
from bank_ledger.storage import InMemoryStorage, SQLiteStorage, StorageUnavailableError
from bank_ledger.system import LedgerSystem
from bank_ledger.transactions import TransactionRequest, TransactionStatus, TransactionType

from conftest import FixedClock


def balance_of(system, account_id):
    return system.ledger.get_account(account_id).balance


class TestBalanceMutator:
    """Test posting deposits, withdrawals and transfers"""

    def setup_method(self):
        """Set up test fixtures"""
        self.clock = FixedClock()
        self.system = LedgerSystem(InMemoryStorage(), clock=self.clock)
        self.mutator = self.system.mutator
        self.alice = self.system.account_manager.create_account("alice", AccountType.SAVINGS, "100.00")
        self.bob = self.system.account_manager.create_account("bob", AccountType.CHECKING)

    def teardown_method(self):
        self.system.close()

    def _assert_fails(self, kind, call, *args):
        before = self.system.ledger.list_transactions()
        balances = (balance_of(self.system, self.alice.id), balance_of(self.system, self.bob.id))

        with pytest.raises(LedgerError) as exc_info:
            call(*args)

        assert exc_info.value.kind == kind
        assert self.system.ledger.list_transactions() == before
        assert (balance_of(self.system, self.alice.id), balance_of(self.system, self.bob.id)) == balances
        return exc_info.value

    def test_deposit(self):
        """Test a deposit credits the account and records the transaction"""
        transaction = self.mutator.deposit(self.alice.id, "25.50", description="Paycheck")

        assert transaction.transaction_type == TransactionType.DEPOSIT
        assert transaction.amount == Decimal("25.50")
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.created_at == self.clock.current
        assert transaction.destination_account_id is None
        assert transaction.description == "Paycheck"
        assert balance_of(self.system, self.alice.id) == Decimal("125.50")
        assert self.system.ledger.get_transaction(transaction.id) == transaction

    def test_withdrawal(self):
        self.mutator.withdraw(self.alice.id, "40.00")
        assert balance_of(self.system, self.alice.id) == Decimal("60.00")

    def test_transfer(self):
        transaction = self.mutator.transfer(self.alice.id, self.bob.id, "30.00")

        assert transaction.is_transfer
        assert transaction.destination_account_id == self.bob.id
        assert balance_of(self.system, self.alice.id) == Decimal("70.00")
        assert balance_of(self.system, self.bob.id) == Decimal("30.00")

    def test_worked_example(self):
        """Test deposit, withdrawal, transfer and an overdrawing transfer in sequence"""
        carol = self.system.account_manager.create_account("carol", AccountType.SAVINGS)
        dave = self.system.account_manager.create_account("dave", AccountType.SAVINGS)

        self.mutator.deposit(carol.id, "100.00")
        assert balance_of(self.system, carol.id) == Decimal("100.00")

        self.mutator.withdraw(carol.id, "40.00")
        assert balance_of(self.system, carol.id) == Decimal("60.00")

        self.mutator.transfer(carol.id, dave.id, "60.00")
        assert balance_of(self.system, carol.id) == Decimal("0.00")
        assert balance_of(self.system, dave.id) == Decimal("60.00")

        with pytest.raises(LedgerError) as exc_info:
            self.mutator.transfer(carol.id, dave.id, "0.01")
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_FUNDS
        assert balance_of(self.system, carol.id) == Decimal("0.00")
        assert balance_of(self.system, dave.id) == Decimal("60.00")
        assert len(self.system.ledger.list_transactions_by_account(carol.id)) == 3

    def test_deposit_then_withdraw_round_trip(self):
        """Test no precision is lost on a deposit and matching withdrawal"""
        self.mutator.deposit(self.alice.id, "12.34")
        self.mutator.withdraw(self.alice.id, "12.34")

        balance = balance_of(self.system, self.alice.id)
        assert balance == Decimal("100.00")
        assert str(balance) == "100.00"

    def test_insufficient_funds_is_a_no_op(self):
        self._assert_fails(ErrorKind.INSUFFICIENT_FUNDS, self.mutator.withdraw, self.alice.id, "100.01")
        self._assert_fails(ErrorKind.INSUFFICIENT_FUNDS, self.mutator.transfer, self.bob.id, self.alice.id, "0.01")

    def test_self_transfer_is_a_no_op(self):
        self._assert_fails(ErrorKind.SELF_TRANSFER, self.mutator.transfer, self.alice.id, self.alice.id, "1.00")

    def test_unknown_accounts(self):
        self._assert_fails(ErrorKind.ACCOUNT_NOT_FOUND, self.mutator.deposit, "missing", "1.00")
        self._assert_fails(ErrorKind.ACCOUNT_NOT_FOUND, self.mutator.transfer, self.alice.id, "missing", "1.00")

    def test_invalid_amounts(self):
        self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.deposit, self.alice.id, "0.00")
        self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.deposit, self.alice.id, "1.005")
        self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.deposit, self.alice.id, 2.5)

    def test_out_of_range_amounts(self):
        """Test oversized amounts are rejected as invalid, not as internal errors"""
        for amount in ("10000000000.00", "1e30", 10 ** 40):
            error = self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.deposit, self.alice.id, amount)
            assert not error.retryable
        self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.withdraw, self.alice.id, "1e30")
        self._assert_fails(ErrorKind.INVALID_AMOUNT, self.mutator.transfer, self.alice.id, self.bob.id, "1e30")

    def test_credit_overflow_is_rejected(self):
        """Test a credit past the largest storable balance is refused"""
        rich = self.system.account_manager.create_account("rich", AccountType.BUSINESS, "9999999999.99")

        with pytest.raises(LedgerError) as exc_info:
            self.mutator.deposit(rich.id, "0.01")
        assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT
        assert self.system.ledger.list_transactions() == []
        assert balance_of(self.system, rich.id) == Decimal("9999999999.99")

    def test_deposit_ignores_destination(self):
        transaction = self.mutator.post(TransactionRequest(
            account_id=self.alice.id,
            transaction_type=TransactionType.DEPOSIT,
            amount="5.00",
            destination_account_id=self.bob.id
        ))

        assert transaction.destination_account_id is None
        assert balance_of(self.system, self.bob.id) == Decimal("0.00")

    def test_each_post_creates_one_transaction(self):
        """Test identical requests are not deduplicated"""
        self.mutator.deposit(self.alice.id, "1.00")
        self.mutator.deposit(self.alice.id, "1.00")

        assert len(self.system.ledger.list_transactions()) == 2
        assert balance_of(self.system, self.alice.id) == Decimal("102.00")

    def test_failure_after_insert_rolls_back(self):
        """Test a failing balance write also removes the transaction row"""
        def broken_save(account):
            raise RuntimeError("disk full")

        self.system.ledger.save_account = broken_save
        error = self._assert_fails(ErrorKind.INTERNAL, self.mutator.deposit, self.alice.id, "10.00")
        assert "disk full" in error.message
        assert not error.retryable

    def test_cancellation_rolls_back(self):
        """Test an interrupt mid-posting leaves the store unchanged"""
        def interrupted_save(account):
            raise KeyboardInterrupt()

        self.system.ledger.save_account = interrupted_save
        with pytest.raises(KeyboardInterrupt):
            self.mutator.transfer(self.alice.id, self.bob.id, "10.00")

        assert self.system.ledger.list_transactions() == []
        assert balance_of(self.system, self.alice.id) == Decimal("100.00")

    def test_store_unavailable_is_retryable(self):
        def busy(account_ids):
            raise StorageUnavailableError("database is locked")

        self.system.ledger.lock_accounts = busy
        error = self._assert_fails(ErrorKind.STORE_UNAVAILABLE, self.mutator.deposit, self.alice.id, "10.00")
        assert error.retryable

    def test_balances_reconcile_after_activity(self):
        """Test opening balance plus history equals the stored balance"""
        self.mutator.deposit(self.alice.id, "19.99")
        self.mutator.transfer(self.alice.id, self.bob.id, "70.00")
        self.mutator.withdraw(self.bob.id, "0.01")
        self.mutator.transfer(self.bob.id, self.alice.id, "9.99")

        for account in (self.alice, self.bob):
            result = self.system.aggregator.reconcile(account.id)
            assert result.balanced

        assert balance_of(self.system, self.alice.id) == Decimal("59.98")
        assert balance_of(self.system, self.bob.id) == Decimal("60.00")


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_worked_example_on_each_backend(backend, tmp_path):
    storage = InMemoryStorage() if backend == "memory" else SQLiteStorage(tmp_path / "ledger.db")
    with LedgerSystem(storage) as system:
        a = system.account_manager.create_account("user-a", AccountType.SAVINGS)
        b = system.account_manager.create_account("user-b", AccountType.SAVINGS)

        system.mutator.deposit(a.id, "100.00")
        system.mutator.withdraw(a.id, "40.00")
        system.mutator.transfer(a.id, b.id, "60.00")
        with pytest.raises(LedgerError):
            system.mutator.transfer(a.id, b.id, "0.01")

        assert balance_of(system, a.id) == Decimal("0.00")
        assert balance_of(system, b.id) == Decimal("60.00")
        assert len(system.ledger.list_transactions()) == 3


class TestConcurrentWithdrawals:
    """Test concurrent postings never overdraw an account"""

    ATTEMPTS = 20
    AMOUNT = "10.00"

    def _race(self, systems, account_id):
        """Fire ATTEMPTS withdrawals at once, spread across the given systems"""
        start = threading.Barrier(self.ATTEMPTS)
        successes = []
        failures = []

        def withdraw(system):
            start.wait()
            try:
                successes.append(system.mutator.withdraw(account_id, self.AMOUNT))
            except LedgerError as e:
                failures.append(e.kind)

        threads = [
            threading.Thread(target=withdraw, args=(systems[i % len(systems)],))
            for i in range(self.ATTEMPTS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return successes, failures

    def _assert_no_overdraft(self, system, account_id, successes, failures):
        assert len(successes) == 10
        assert failures == [ErrorKind.INSUFFICIENT_FUNDS] * 10
        assert balance_of(system, account_id) == Decimal("0.00")
        assert len(system.ledger.list_transactions_by_account(account_id)) == 10

    def test_in_memory(self):
        system = LedgerSystem(InMemoryStorage(timeout=10.0))
        account = system.account_manager.create_account("user-1", AccountType.SAVINGS, "100.00")

        successes, failures = self._race([system], account.id)
        self._assert_no_overdraft(system, account.id, successes, failures)

    def test_sqlite_single_connection(self, tmp_path):
        system = LedgerSystem(SQLiteStorage(tmp_path / "ledger.db", timeout=10.0))
        account = system.account_manager.create_account("user-1", AccountType.SAVINGS, "100.00")

        successes, failures = self._race([system], account.id)
        self._assert_no_overdraft(system, account.id, successes, failures)
        system.close()

    def test_sqlite_two_connections(self, tmp_path):
        """Test two stores on one database file behave like two server processes"""
        path = tmp_path / "shared.db"
        first = LedgerSystem(SQLiteStorage(path, timeout=10.0))
        second = LedgerSystem(SQLiteStorage(path, timeout=10.0))
        account = first.account_manager.create_account("user-1", AccountType.SAVINGS, "100.00")

        successes, failures = self._race([first, second], account.id)
        self._assert_no_overdraft(second, account.id, successes, failures)
        first.close()
        second.close()
