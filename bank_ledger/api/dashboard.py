"""
Dashboard endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system
from .schemas import DashboardStatsModel
from ..system import LedgerSystem


router = APIRouter()


@router.get("", response_model=DashboardStatsModel)
def get_dashboard(
    user_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Dashboard counters and growth, for one user when user_id is given"""
    return DashboardStatsModel(**system.aggregator.stats(user_id).to_dict())
