"""
Settlement endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import CreditSystem, get_credit_system
from .schemas import SchedulerStatusResponse, SettlementRunRequest, SweepResponse


router = APIRouter()


@router.post("/run", response_model=SweepResponse)
def run_settlement(
    request: Optional[SettlementRunRequest] = None,
    system: CreditSystem = Depends(get_credit_system)
):
    """Run one settlement sweep now"""
    as_of = request.as_of if request else None
    return SweepResponse.from_result(system.scheduler.run_once(as_of))


@router.get("/status", response_model=SchedulerStatusResponse)
def get_settlement_status(system: CreditSystem = Depends(get_credit_system)):
    """Scheduler state and the outcome of the last sweep"""
    scheduler = system.scheduler
    last_result = scheduler.last_result
    return SchedulerStatusResponse(
        state=scheduler.state.value,
        interval_seconds=scheduler.interval_seconds,
        last_result=SweepResponse.from_result(last_result) if last_result else None,
    )
