"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..accounts import Account
from ..credits import CreditAnalytics, PaymentResult
from ..currency import Money, Currency, parse_amount
from ..models import Credit, CreditPayment, Installment
from ..settlement import SweepResult


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")

    def to_money(self) -> Money:
        return Money(parse_amount(self.amount), Currency.from_code(self.currency))

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Credit schemas
class CreateCreditRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    amount: str = Field(..., description="Principal as decimal string")
    interest_rate: str = Field(..., description="Annual rate in percent, e.g. '12' for 12%")
    term_months: int
    currency: Optional[str] = Field(None, description="Defaults to the configured currency")
    start_date: Optional[date] = None


class PaymentRequest(BaseModel):
    amount: str = Field(..., description="Payment as decimal string")


class DefaultCreditRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class CreditResponse(BaseModel):
    id: str
    user_id: str
    account_id: str
    amount: MoneyModel
    interest_rate: str
    term_months: int
    remaining_amount: MoneyModel
    monthly_payment: MoneyModel
    start_date: date
    status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_credit(cls, credit: Credit) -> 'CreditResponse':
        return cls(
            id=credit.id,
            user_id=credit.user_id,
            account_id=credit.account_id,
            amount=MoneyModel.from_money(credit.amount),
            interest_rate=str(credit.interest_rate),
            term_months=credit.term_months,
            remaining_amount=MoneyModel.from_money(credit.remaining_amount),
            monthly_payment=MoneyModel.from_money(credit.monthly_payment),
            start_date=credit.start_date,
            status=credit.status.value,
            created_at=credit.created_at,
            updated_at=credit.updated_at,
        )


class InstallmentResponse(BaseModel):
    id: str
    credit_id: str
    sequence_number: int
    due_date: date
    amount: MoneyModel
    principal: MoneyModel
    interest: MoneyModel
    paid_amount: MoneyModel
    penalty_amount: MoneyModel
    outstanding: MoneyModel
    status: str
    paid_at: Optional[datetime] = None

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentResponse':
        return cls(
            id=installment.id,
            credit_id=installment.credit_id,
            sequence_number=installment.sequence_number,
            due_date=installment.due_date,
            amount=MoneyModel.from_money(installment.amount),
            principal=MoneyModel.from_money(installment.principal),
            interest=MoneyModel.from_money(installment.interest),
            paid_amount=MoneyModel.from_money(installment.paid_amount),
            penalty_amount=MoneyModel.from_money(installment.penalty_amount),
            outstanding=MoneyModel.from_money(installment.outstanding),
            status=installment.status.value,
            paid_at=installment.paid_at,
        )


class PaymentApplicationResponse(BaseModel):
    installment_id: str
    sequence_number: int
    applied: MoneyModel
    principal_applied: MoneyModel
    interest_applied: MoneyModel
    status: str


class PaymentResponse(BaseModel):
    credit_id: str
    amount: MoneyModel
    remaining_amount: MoneyModel
    credit_status: str
    applications: List[PaymentApplicationResponse]

    @classmethod
    def from_result(cls, result: PaymentResult) -> 'PaymentResponse':
        return cls(
            credit_id=result.credit_id,
            amount=MoneyModel.from_money(result.amount),
            remaining_amount=MoneyModel.from_money(result.remaining_amount),
            credit_status=result.credit_status.value,
            applications=[
                PaymentApplicationResponse(
                    installment_id=a.installment_id,
                    sequence_number=a.sequence_number,
                    applied=MoneyModel.from_money(a.applied),
                    principal_applied=MoneyModel.from_money(a.principal_applied),
                    interest_applied=MoneyModel.from_money(a.interest_applied),
                    status=a.status.value,
                )
                for a in result.applications
            ],
        )


class CreditPaymentResponse(BaseModel):
    id: str
    credit_id: str
    amount: MoneyModel
    payment_date: datetime
    source: str
    principal_applied: MoneyModel
    interest_applied: MoneyModel
    penalty: MoneyModel
    account_id: Optional[str] = None
    installments: List[int]

    @classmethod
    def from_payment(cls, payment: CreditPayment) -> 'CreditPaymentResponse':
        return cls(
            id=payment.id,
            credit_id=payment.credit_id,
            amount=MoneyModel.from_money(payment.amount),
            payment_date=payment.payment_date,
            source=payment.source.value,
            principal_applied=MoneyModel.from_money(payment.principal_applied),
            interest_applied=MoneyModel.from_money(payment.interest_applied),
            penalty=MoneyModel.from_money(payment.penalty),
            account_id=payment.account_id,
            installments=payment.installments,
        )


class CreditAnalyticsResponse(BaseModel):
    user_id: str
    credit_count: int
    total_principal: str
    total_paid: str
    total_remaining: str
    average_interest_rate: str
    status_counts: Dict[str, int]
    next_payment_date: Optional[date] = None
    next_payment_amount: Optional[str] = None
    next_payment_credit_id: Optional[str] = None

    @classmethod
    def from_analytics(cls, analytics: CreditAnalytics) -> 'CreditAnalyticsResponse':
        return cls(
            user_id=analytics.user_id,
            credit_count=analytics.credit_count,
            total_principal=str(analytics.total_principal),
            total_paid=str(analytics.total_paid),
            total_remaining=str(analytics.total_remaining),
            average_interest_rate=str(analytics.average_interest_rate),
            status_counts=analytics.status_counts,
            next_payment_date=analytics.next_payment_date,
            next_payment_amount=(
                str(analytics.next_payment_amount) if analytics.next_payment_amount is not None else None
            ),
            next_payment_credit_id=analytics.next_payment_credit_id,
        )


# Account schemas
class OpenAccountRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    currency: Optional[str] = Field(None, description="Defaults to the configured currency")
    initial_balance: Optional[str] = None
    account_id: Optional[str] = None


class DepositRequest(BaseModel):
    amount: str = Field(..., description="Deposit as decimal string")


class AccountResponse(BaseModel):
    id: str
    user_id: str
    balance: MoneyModel

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(id=account.id, user_id=account.user_id, balance=MoneyModel.from_money(account.balance))


# Settlement schemas
class SettlementRunRequest(BaseModel):
    as_of: Optional[date] = Field(None, description="Settle installments due on or before this date")


class SweepResponse(BaseModel):
    as_of: date
    examined: int
    settled: int
    skipped: int
    failed: int
    penalties_applied: int
    late_flagged: int
    aborted: bool

    @classmethod
    def from_result(cls, result: SweepResult) -> 'SweepResponse':
        return cls(
            as_of=result.as_of,
            examined=result.examined,
            settled=result.settled,
            skipped=result.skipped,
            failed=result.failed,
            penalties_applied=result.penalties_applied,
            late_flagged=result.late_flagged,
            aborted=result.aborted,
        )


class SchedulerStatusResponse(BaseModel):
    state: str
    interval_seconds: float
    last_result: Optional[SweepResponse] = None
