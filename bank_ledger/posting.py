"""
Balance Mutator

Posts deposits, withdrawals and transfers. Each posting is one atomic unit:
lock the affected account rows, re-validate, insert the transaction record,
apply the balance delta(s), commit. Any failure rolls the whole unit back,
so no transaction row or balance change survives a failed posting.

Postings are not idempotent: every successful call creates exactly one
transaction.
"""

from decimal import Decimal
from typing import Optional
import uuid

from .errors import ErrorKind, LedgerError
from .ledger import LedgerStore
from .money import MAX_AMOUNT, AmountLike, format_amount
from .storage import StorageUnavailableError
from .transactions import Transaction, TransactionRequest, TransactionStatus, TransactionType
from .validation import Rejection, TransactionValidator, ValidatedRequest
from .logging_config import get_logger, log_action


class BalanceMutator:
    """
    Applies transactions to account balances with all-or-nothing semantics
    """

    def __init__(self, ledger: LedgerStore, validator: Optional[TransactionValidator] = None):
        self.ledger = ledger
        self.validator = validator or TransactionValidator(ledger)
        self.logger = get_logger("bank_ledger.posting")

    def post(self, request: TransactionRequest, user_id: Optional[str] = None) -> Transaction:
        """
        Post a transaction

        Args:
            request: What to post
            user_id: Acting user, for the log only; ownership is the caller's concern

        Returns:
            The completed Transaction

        Raises:
            LedgerError: With a validation kind, STORE_UNAVAILABLE or INTERNAL.
                The store is unchanged in every case.
        """
        try:
            with self.ledger.atomic():
                # Lock first so the checks below see the state we will write over
                self.ledger.lock_accounts(request.account_ids)

                outcome = self.validator.validate(request)
                if isinstance(outcome, Rejection):
                    raise outcome.to_error()

                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    created_at=self.ledger.now(),
                    account_id=outcome.source.id,
                    transaction_type=request.transaction_type,
                    amount=outcome.amount,
                    destination_account_id=outcome.destination.id if outcome.destination else None,
                    description=request.description,
                    status=TransactionStatus.COMPLETED
                )
                self.ledger.insert_transaction(transaction)
                self._apply(outcome)

        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Posting rejected: {e.kind.value}",
                user_id=user_id, action="post_transaction",
                resource=f"account:{request.account_id}",
                extra={
                    "transaction_type": request.transaction_type.value,
                    "amount": str(request.amount),
                    "reason": e.message
                }
            )
            raise
        except StorageUnavailableError as e:
            self.logger.warning(f"Posting rolled back, store unavailable: {e}")
            raise LedgerError(ErrorKind.STORE_UNAVAILABLE, str(e)) from e
        except Exception as e:
            self.logger.exception("Posting rolled back after unexpected failure")
            raise LedgerError(ErrorKind.INTERNAL, str(e)) from e

        log_action(
            self.logger, "info", f"Transaction posted: {transaction.transaction_type.value}",
            user_id=user_id, action="post_transaction",
            resource=f"transaction:{transaction.id}",
            extra={
                "transaction_id": transaction.id,
                "transaction_type": transaction.transaction_type.value,
                "amount": format_amount(transaction.amount),
                "from_account": transaction.account_id,
                "to_account": transaction.destination_account_id
            }
        )
        return transaction

    def deposit(self, account_id: str, amount: AmountLike,
                description: Optional[str] = None, user_id: Optional[str] = None) -> Transaction:
        """Convenience method for deposits"""
        return self.post(TransactionRequest(
            account_id=account_id,
            transaction_type=TransactionType.DEPOSIT,
            amount=amount,
            description=description
        ), user_id=user_id)

    def withdraw(self, account_id: str, amount: AmountLike,
                 description: Optional[str] = None, user_id: Optional[str] = None) -> Transaction:
        """Convenience method for withdrawals"""
        return self.post(TransactionRequest(
            account_id=account_id,
            transaction_type=TransactionType.WITHDRAWAL,
            amount=amount,
            description=description
        ), user_id=user_id)

    def transfer(self, from_account_id: str, to_account_id: str, amount: AmountLike,
                 description: Optional[str] = None, user_id: Optional[str] = None) -> Transaction:
        """Convenience method for transfers between accounts"""
        return self.post(TransactionRequest(
            account_id=from_account_id,
            transaction_type=TransactionType.TRANSFER,
            amount=amount,
            destination_account_id=to_account_id,
            description=description
        ), user_id=user_id)

    def _apply(self, validated: ValidatedRequest) -> None:
        """Write the new balance(s); runs inside the posting unit"""
        now = self.ledger.now()
        transaction_type = validated.request.transaction_type
        source = validated.source

        if transaction_type == TransactionType.DEPOSIT:
            source.balance = self._credit(source.balance, validated.amount)
        else:
            source.balance = source.balance - validated.amount
        source.updated_at = now
        self.ledger.save_account(source)

        if transaction_type == TransactionType.TRANSFER:
            destination = validated.destination
            destination.balance = self._credit(destination.balance, validated.amount)
            destination.updated_at = now
            self.ledger.save_account(destination)

    @staticmethod
    def _credit(balance: Decimal, amount: Decimal) -> Decimal:
        new_balance = balance + amount
        if new_balance > MAX_AMOUNT:
            raise LedgerError(
                ErrorKind.INVALID_AMOUNT,
                f"Credit would push balance past {format_amount(MAX_AMOUNT)}"
            )
        return new_balance
