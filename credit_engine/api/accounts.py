"""
Funding account endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import CreditSystem, get_credit_system
from .schemas import AccountResponse, DepositRequest, OpenAccountRequest
from ..currency import Money, Currency, parse_amount


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def open_account(
    request: OpenAccountRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    """Open a funding account"""
    currency = Currency.from_code(request.currency or system.config.default_currency)
    initial_balance = None
    if request.initial_balance is not None:
        initial_balance = Money(parse_amount(request.initial_balance), currency)

    account = system.account_ledger.open_account(
        user_id=request.user_id,
        currency=currency,
        initial_balance=initial_balance,
        account_id=request.account_id
    )
    return AccountResponse.from_account(account)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    system: CreditSystem = Depends(get_credit_system)
):
    """Get account balance"""
    return AccountResponse.from_account(system.account_ledger.get_account(account_id))


@router.post("/{account_id}/deposit", response_model=AccountResponse)
def deposit(
    account_id: str,
    request: DepositRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    """Credit funds to an account"""
    account = system.account_ledger.get_account(account_id)
    system.account_ledger.deposit(account_id, Money(parse_amount(request.amount), account.balance.currency))
    return AccountResponse.from_account(system.account_ledger.get_account(account_id))
