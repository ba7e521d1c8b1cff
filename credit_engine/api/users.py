"""
Per-user credit endpoints
"""

from typing import List

from fastapi import APIRouter, Depends

from .dependencies import CreditSystem, get_credit_system
from .schemas import CreditAnalyticsResponse, CreditResponse


router = APIRouter()


@router.get("/{user_id}/credits", response_model=List[CreditResponse])
def get_user_credits(
    user_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """List a user's credits, oldest first"""
    credits = system.credit_service.get_credits_by_user_id(user_id)
    return [CreditResponse.from_credit(credit) for credit in credits]


@router.get("/{user_id}/credit-analytics", response_model=CreditAnalyticsResponse)
def get_credit_analytics(
    user_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Aggregate figures over a user's credits"""
    analytics = system.credit_service.get_credit_analytics(user_id)
    return CreditAnalyticsResponse.from_analytics(analytics)
