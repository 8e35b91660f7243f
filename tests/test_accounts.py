"""
Tests for account management
"""

import pytest
import re
from decimal import Decimal

from bank_ledger.accounts import AccountManager, AccountType
from bank_ledger.errors import ErrorKind, LedgerError
from bank_ledger.ledger import LedgerStore
from bank_ledger.storage import DuplicateRecordError, InMemoryStorage

from conftest import FixedClock


class TestAccountManager:
    """Test account creation and maintenance"""

    def setup_method(self):
        """Set up test fixtures"""
        self.clock = FixedClock()
        self.ledger = LedgerStore(InMemoryStorage(), clock=self.clock)
        self.account_manager = AccountManager(self.ledger)

    def test_create_savings_account(self):
        """Test creating a savings account with an opening deposit"""
        account = self.account_manager.create_account(
            user_id="user-1",
            account_type=AccountType.SAVINGS,
            initial_deposit="1500.00"
        )

        assert account.user_id == "user-1"
        assert account.account_type == AccountType.SAVINGS
        assert account.name == "Savings Account"
        assert account.balance == Decimal("1500.00")
        assert account.opening_balance == Decimal("1500.00")
        assert account.created_at == self.clock.current
        assert re.fullmatch(r"\d{4}-\d{4}", account.account_number)
        assert self.ledger.get_account(account.id) == account

    def test_create_account_defaults_to_zero_balance(self):
        account = self.account_manager.create_account("user-1", AccountType.CHECKING, name="Bills")

        assert account.balance == Decimal("0.00")
        assert account.name == "Bills"

    def test_create_account_with_number(self):
        account = self.account_manager.create_account(
            "user-1", AccountType.BUSINESS, account_number="4321-8765"
        )
        assert account.account_number == "4321-8765"

    def test_invalid_initial_deposit(self):
        """Test negative, float and sub-cent deposits are refused"""
        for deposit in ("-1.00", 10.5, "1.234", "lots", "10000000000.00"):
            with pytest.raises(LedgerError) as exc_info:
                self.account_manager.create_account("user-1", AccountType.SAVINGS, deposit)
            assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT

        assert self.ledger.list_accounts() == []

    def test_out_of_range_initial_deposit(self):
        """Test deposits past the ceiling or decimal precision are typed errors"""
        for deposit in ("10000000000.00", "1e30", 10 ** 40):
            with pytest.raises(LedgerError) as exc_info:
                self.account_manager.create_account("user-1", AccountType.SAVINGS, deposit)
            assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT

        assert self.ledger.list_accounts() == []

    def test_duplicate_supplied_number(self):
        self.account_manager.create_account("user-1", AccountType.SAVINGS, account_number="1111-2222")
        with pytest.raises(DuplicateRecordError):
            self.account_manager.create_account("user-1", AccountType.SAVINGS, account_number="1111-2222")

    def test_generated_number_collision_is_retried(self):
        """Test a taken generated number is replaced by a fresh one"""
        numbers = iter(["1111-1111", "1111-1111", "2222-2222"])
        self.account_manager._generate_account_number = lambda: next(numbers)

        first = self.account_manager.create_account("user-1", AccountType.SAVINGS)
        second = self.account_manager.create_account("user-2", AccountType.SAVINGS)

        assert first.account_number == "1111-1111"
        assert second.account_number == "2222-2222"
        assert len(self.ledger.list_accounts()) == 2

    def test_get_user_accounts(self):
        self.account_manager.create_account("user-1", AccountType.SAVINGS)
        self.account_manager.create_account("user-1", AccountType.CHECKING)
        self.account_manager.create_account("user-2", AccountType.SAVINGS)

        assert len(self.account_manager.get_user_accounts("user-1")) == 2
        assert self.account_manager.get_account("missing") is None

    def test_update_account(self):
        """Test renaming and retyping leaves balance and owner alone"""
        account = self.account_manager.create_account("user-1", AccountType.SAVINGS, "75.00")
        self.clock.advance(hours=1)

        updated = self.account_manager.update_account(
            account.id, name="Holiday Fund", account_type=AccountType.FIXED_DEPOSIT
        )

        assert updated.name == "Holiday Fund"
        assert updated.account_type == AccountType.FIXED_DEPOSIT
        assert updated.balance == Decimal("75.00")
        assert updated.user_id == "user-1"
        assert updated.updated_at == self.clock.current
        assert self.ledger.get_account(account.id) == updated

    def test_update_missing_account(self):
        with pytest.raises(LedgerError) as exc_info:
            self.account_manager.update_account("missing", name="Nope")
        assert exc_info.value.kind == ErrorKind.ACCOUNT_NOT_FOUND

    def test_delete_account(self):
        account = self.account_manager.create_account("user-1", AccountType.SAVINGS)
        self.account_manager.delete_account(account.id)

        assert self.account_manager.get_account(account.id) is None
        with pytest.raises(LedgerError) as exc_info:
            self.account_manager.delete_account(account.id)
        assert exc_info.value.kind == ErrorKind.ACCOUNT_NOT_FOUND

    def test_account_type_labels(self):
        assert AccountType.CHECKING.label == "Checking Account"
        assert AccountType.FIXED_DEPOSIT.label == "Fixed Deposit"

    def test_account_type_values(self):
        """Test the stored and wire values of each type"""
        assert [t.value for t in AccountType] == ["savings", "checking", "business", "fixed-deposit"]
        assert AccountType("fixed-deposit") is AccountType.FIXED_DEPOSIT
