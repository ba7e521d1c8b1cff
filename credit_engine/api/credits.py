"""
Credit endpoints
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from .dependencies import CreditSystem, get_credit_system
from .schemas import (
    CreateCreditRequest, CreditPaymentResponse, CreditResponse, DefaultCreditRequest, InstallmentResponse,
    PaymentRequest, PaymentResponse
)
from ..currency import Currency


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreditResponse)
def create_credit(
    request: CreateCreditRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    """Originate a credit and its repayment schedule"""
    credit = system.credit_service.create_credit(
        user_id=request.user_id,
        account_id=request.account_id,
        amount=request.amount,
        interest_rate=request.interest_rate,
        term_months=request.term_months,
        currency=Currency.from_code(request.currency) if request.currency else None,
        start_date=request.start_date
    )
    return CreditResponse.from_credit(credit)


@router.get("/overdue", response_model=List[InstallmentResponse])
def get_overdue_payments(
    as_of: Optional[date] = None,
    system: CreditSystem = Depends(get_credit_system)
):
    """Open installments of active credits that are past due"""
    installments = system.credit_service.get_overdue_payments(as_of)
    return [InstallmentResponse.from_installment(inst) for inst in installments]


@router.get("/{credit_id}", response_model=CreditResponse)
def get_credit(
    credit_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Get credit details"""
    return CreditResponse.from_credit(system.credit_service.get_credit_by_id(credit_id))


@router.get("/{credit_id}/schedule", response_model=List[InstallmentResponse])
def get_payment_schedule(
    credit_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Get the installment schedule of a credit"""
    schedule = system.credit_service.get_payment_schedule(credit_id)
    return [InstallmentResponse.from_installment(inst) for inst in schedule]


@router.get("/{credit_id}/payments", response_model=List[CreditPaymentResponse])
def get_credit_payments(
    credit_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Payment history of a credit"""
    payments = system.credit_service.get_credit_payments(credit_id)
    return [CreditPaymentResponse.from_payment(payment) for payment in payments]


@router.post("/{credit_id}/payments", response_model=PaymentResponse)
def pay_credit(
    credit_id: str,
    request: PaymentRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    """Apply a manual payment"""
    result = system.credit_service.pay_credit(credit_id, request.amount)
    return PaymentResponse.from_result(result)


@router.post("/{credit_id}/default", response_model=CreditResponse)
def default_credit(
    credit_id: str,
    request: DefaultCreditRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    """Declare an active credit in default"""
    return CreditResponse.from_credit(system.credit_service.default_credit(credit_id, request.reason))


@router.post("/{credit_id}/close", response_model=CreditResponse)
def close_credit(
    credit_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Close a completed or defaulted credit"""
    return CreditResponse.from_credit(system.credit_service.close_credit(credit_id))
