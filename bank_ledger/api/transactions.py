"""
Transaction endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import current_user_id, get_ledger_system
from .schemas import PostTransactionRequest, TransactionDetailsModel, TransactionModel
from ..config import get_config
from ..errors import ErrorKind, LedgerError
from ..system import LedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=TransactionModel)
def post_transaction(
    request: PostTransactionRequest,
    user_id: str = Depends(current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Post a deposit, withdrawal or transfer"""
    transaction = system.mutator.post(request.to_request(), user_id=user_id)
    return TransactionModel.from_transaction(transaction)


@router.get("")
def list_transactions(
    account_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List transactions, newest first, optionally for one account"""
    if account_id:
        if not system.ledger.get_account(account_id):
            raise LedgerError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {account_id} not found")
        transactions = system.ledger.list_transactions_by_account(account_id, limit)
    else:
        transactions = system.ledger.list_transactions(limit)

    return {"transactions": [TransactionModel.from_transaction(t) for t in transactions]}


@router.get("/details")
def list_transaction_details(
    limit: Optional[int] = Query(None, ge=1),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Recent transactions with the names and numbers of their accounts"""
    details = system.aggregator.transactions_with_details(limit or get_config().recent_transactions_limit)
    return {"transactions": [TransactionDetailsModel.from_details(d) for d in details]}


@router.get("/{transaction_id}", response_model=TransactionModel)
def get_transaction(
    transaction_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get transaction details"""
    transaction = system.ledger.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionModel.from_transaction(transaction)
