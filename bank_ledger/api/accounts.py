"""
Account management endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import current_user_id, get_ledger_system
from .schemas import (
    AccountModel, AccountStatsModel, CreateAccountRequest,
    ReconciliationModel, UpdateAccountRequest
)
from ..errors import ErrorKind, LedgerError
from ..system import LedgerSystem


router = APIRouter()


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id query parameter is required")
    return user_id


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountModel)
def create_account(
    request: CreateAccountRequest,
    user_id: str = Depends(current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open an account for the calling user"""
    account = system.account_manager.create_account(
        user_id=user_id,
        account_type=request.account_type,
        initial_deposit=request.initial_deposit,
        name=request.name,
        account_number=request.account_number
    )
    return AccountModel.from_account(account)


@router.get("")
def list_accounts(
    user_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List a user's accounts"""
    accounts = system.account_manager.get_user_accounts(_require_user_id(user_id))
    return {"accounts": [AccountModel.from_account(a) for a in accounts]}


@router.get("/stats")
def list_account_stats(
    user_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List a user's accounts with their transaction activity"""
    stats = system.aggregator.accounts_with_stats(_require_user_id(user_id))
    return {"accounts": [AccountStatsModel.from_stats(s) for s in stats]}


@router.get("/{account_id}", response_model=AccountModel)
def get_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details, including its current balance"""
    account = system.account_manager.get_account(account_id)
    if not account:
        raise LedgerError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {account_id} not found")
    return AccountModel.from_account(account)


@router.get("/{account_id}/reconciliation", response_model=ReconciliationModel)
def reconcile_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Compare the stored balance with the balance replayed from history"""
    return ReconciliationModel.from_reconciliation(system.aggregator.reconcile(account_id))


@router.patch("/{account_id}", response_model=AccountModel)
def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Rename or retype an account"""
    account = system.account_manager.update_account(
        account_id,
        name=request.name,
        account_type=request.account_type
    )
    return AccountModel.from_account(account)


@router.delete("/{account_id}")
def delete_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete an account together with its transactions"""
    system.account_manager.delete_account(account_id)
    return {"account_id": account_id, "message": "Account deleted successfully"}
