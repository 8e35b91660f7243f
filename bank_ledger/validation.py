"""
Transaction Validator

Pure precondition checks for a posting request. Run inside the same atomic
unit as the mutation so the snapshot it checks is the one that gets
written. The first failing check wins.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Optional, Union

from .accounts import Account
from .errors import ErrorKind, LedgerError
from .ledger import LedgerStore
from .money import MAX_AMOUNT, ZERO, format_amount, to_amount
from .transactions import TransactionRequest, TransactionType


@dataclass(frozen=True)
class ValidatedRequest:
    """A request that passed every check, with the accounts it touches"""
    request: TransactionRequest
    amount: Decimal
    source: Account
    destination: Optional[Account] = None


@dataclass(frozen=True)
class Rejection:
    """Why a request was refused"""
    kind: ErrorKind
    message: str

    def to_error(self) -> LedgerError:
        return LedgerError(self.kind, self.message)


ValidationResult = Union[ValidatedRequest, Rejection]


class TransactionValidator:
    """Checks account existence, amount, self-transfer and fund sufficiency"""

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    def validate(self, request: TransactionRequest) -> ValidationResult:
        """
        Validate a posting request against the current store state

        Args:
            request: The transaction request

        Returns:
            ValidatedRequest on success, otherwise the first Rejection
        """
        source = self.ledger.get_account(request.account_id)
        if not source:
            return Rejection(ErrorKind.ACCOUNT_NOT_FOUND, f"Source account {request.account_id} not found")

        try:
            amount = to_amount(request.amount)
        except (TypeError, ValueError) as e:
            return Rejection(ErrorKind.INVALID_AMOUNT, str(e))
        if amount <= ZERO:
            return Rejection(ErrorKind.INVALID_AMOUNT, "Amount must be greater than zero")
        if amount > MAX_AMOUNT:
            return Rejection(ErrorKind.INVALID_AMOUNT, f"Amount exceeds {format_amount(MAX_AMOUNT)}")

        destination = None
        if request.transaction_type == TransactionType.TRANSFER:
            if not request.destination_account_id:
                return Rejection(ErrorKind.ACCOUNT_NOT_FOUND, "Destination account is required for transfers")
            destination = self.ledger.get_account(request.destination_account_id)
            if not destination:
                return Rejection(
                    ErrorKind.ACCOUNT_NOT_FOUND,
                    f"Destination account {request.destination_account_id} not found"
                )
            if destination.id == source.id:
                return Rejection(ErrorKind.SELF_TRANSFER, "Cannot transfer to the same account")

        if request.transaction_type in (TransactionType.WITHDRAWAL, TransactionType.TRANSFER):
            if source.balance < amount:
                return Rejection(
                    ErrorKind.INSUFFICIENT_FUNDS,
                    f"Insufficient funds: available {format_amount(source.balance)}, "
                    f"requested {format_amount(amount)}"
                )

        return ValidatedRequest(request=request, amount=amount, source=source, destination=destination)
