"""
Request dependencies: the ledger system and the acting user
"""

from typing import Optional
from fastapi import Header, HTTPException, Request, status

from ..errors import ErrorKind, LedgerError
from ..system import LedgerSystem


def get_ledger_system(request: Request) -> LedgerSystem:
    system = getattr(request.app.state, "system", None)
    if system is None:
        raise LedgerError(ErrorKind.STORE_UNAVAILABLE, "Ledger store is not open")
    return system


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Identify the caller from the X-User-Id header

    Authentication happens upstream; the ledger only needs to know who is
    acting, and never checks account ownership itself.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id
