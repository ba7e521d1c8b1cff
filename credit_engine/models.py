"""
Credit Domain Models

Credits, their installments, and the closed status enumerations that drive
every lifecycle transition.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from .currency import Money, Currency
from .storage import StorageRecord
from .errors import InvalidStateError


class CreditStatus(Enum):
    """Credit lifecycle states"""
    ACTIVE = "active"          # Repaying on schedule
    COMPLETED = "completed"    # Principal fully repaid
    DEFAULTED = "defaulted"    # Borrower in default, open installments missed
    CLOSED = "closed"          # Terminal, no further activity


class InstallmentStatus(Enum):
    """Installment states"""
    PENDING = "pending"    # Nothing paid yet
    PARTIAL = "partial"    # Some of the amount paid
    LATE = "late"          # Past due beyond the grace period, still collectable
    PAID = "paid"          # Fully paid
    MISSED = "missed"      # Written off when the credit defaulted

    @property
    def is_open(self) -> bool:
        """Whether the installment can still absorb payments"""
        if self in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL, InstallmentStatus.LATE):
            return True
        elif self in (InstallmentStatus.PAID, InstallmentStatus.MISSED):
            return False
        raise InvalidStateError(f"Unhandled installment status: {self}")


CREDIT_TRANSITIONS: Dict[CreditStatus, FrozenSet[CreditStatus]] = {
    CreditStatus.ACTIVE: frozenset({CreditStatus.COMPLETED, CreditStatus.DEFAULTED}),
    CreditStatus.COMPLETED: frozenset({CreditStatus.CLOSED}),
    CreditStatus.DEFAULTED: frozenset({CreditStatus.CLOSED}),
    CreditStatus.CLOSED: frozenset(),
}


def ensure_credit_transition(current: CreditStatus, target: CreditStatus) -> None:
    """
    Raises:
        InvalidStateError: If the transition is not in CREDIT_TRANSITIONS
    """
    if current not in CREDIT_TRANSITIONS:
        raise InvalidStateError(f"Unhandled credit status: {current}")
    if target not in CREDIT_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Credit cannot move from {current.value} to {target.value}"
        )


def _money_from(data: Dict[str, Any], field: str, currency: Currency) -> Money:
    return Money(Decimal(data[field]), currency)


@dataclass
class Credit(StorageRecord):
    """
    An amortized credit.

    remaining_amount is the outstanding principal: the principal amount minus
    the principal share of every payment applied so far.
    """
    user_id: str
    account_id: str
    amount: Money
    interest_rate: Decimal      # Annual, in percent (12 means 12%)
    term_months: int
    remaining_amount: Money
    monthly_payment: Money
    start_date: date
    status: CreditStatus = CreditStatus.ACTIVE

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def is_active(self) -> bool:
        return self.status == CreditStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'user_id': self.user_id,
            'account_id': self.account_id,
            'currency': self.currency.code,
            'amount': str(self.amount.amount),
            'interest_rate': str(self.interest_rate),
            'term_months': self.term_months,
            'remaining_amount': str(self.remaining_amount.amount),
            'monthly_payment': str(self.monthly_payment.amount),
            'start_date': self.start_date.isoformat(),
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Credit':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            account_id=data['account_id'],
            amount=_money_from(data, 'amount', currency),
            interest_rate=Decimal(data['interest_rate']),
            term_months=data['term_months'],
            remaining_amount=_money_from(data, 'remaining_amount', currency),
            monthly_payment=_money_from(data, 'monthly_payment', currency),
            start_date=date.fromisoformat(data['start_date']),
            status=CreditStatus(data['status']),
        )


@dataclass
class Installment(StorageRecord):
    """
    One scheduled payment obligation of a credit.

    amount is what the borrower owes for the period: principal + interest,
    plus any penalty added at settlement. paid_amount accumulates every
    payment applied; the split of what was paid is kept in principal_paid
    and interest_paid (penalties are paid last).
    """
    credit_id: str
    sequence_number: int
    due_date: date
    amount: Money
    principal: Money
    interest: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Optional[Money] = None
    principal_paid: Optional[Money] = None
    interest_paid: Optional[Money] = None
    penalty_amount: Optional[Money] = None
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        zero = Money.zero(self.amount.currency)
        if self.paid_amount is None:
            self.paid_amount = zero
        if self.principal_paid is None:
            self.principal_paid = zero
        if self.interest_paid is None:
            self.interest_paid = zero
        if self.penalty_amount is None:
            self.penalty_amount = zero

    @property
    def outstanding(self) -> Money:
        return (self.amount - self.paid_amount).floor_zero()

    @property
    def outstanding_principal(self) -> Money:
        return (self.principal - self.principal_paid).floor_zero()

    @property
    def outstanding_interest(self) -> Money:
        return (self.interest - self.interest_paid).floor_zero()

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'credit_id': self.credit_id,
            'sequence_number': self.sequence_number,
            'due_date': self.due_date.isoformat(),
            'currency': self.amount.currency.code,
            'amount': str(self.amount.amount),
            'principal': str(self.principal.amount),
            'interest': str(self.interest.amount),
            'status': self.status.value,
            'paid_amount': str(self.paid_amount.amount),
            'principal_paid': str(self.principal_paid.amount),
            'interest_paid': str(self.interest_paid.amount),
            'penalty_amount': str(self.penalty_amount.amount),
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            credit_id=data['credit_id'],
            sequence_number=data['sequence_number'],
            due_date=date.fromisoformat(data['due_date']),
            amount=_money_from(data, 'amount', currency),
            principal=_money_from(data, 'principal', currency),
            interest=_money_from(data, 'interest', currency),
            status=InstallmentStatus(data['status']),
            paid_amount=_money_from(data, 'paid_amount', currency),
            principal_paid=_money_from(data, 'principal_paid', currency),
            interest_paid=_money_from(data, 'interest_paid', currency),
            penalty_amount=_money_from(data, 'penalty_amount', currency),
            paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
        )


class PaymentSource(Enum):
    """Where a credit payment came from"""
    MANUAL = "manual"            # pay_credit by the borrower
    SETTLEMENT = "settlement"    # Auto-debit by the settlement sweep


@dataclass
class CreditPayment(StorageRecord):
    """
    A payment received against a credit, written in the same ledger
    transaction that applied it.

    amount is the full amount received, penalty included; installments
    lists the sequence numbers it was applied to.
    """
    credit_id: str
    amount: Money
    payment_date: datetime
    source: PaymentSource
    principal_applied: Money
    interest_applied: Money
    penalty: Optional[Money] = None
    account_id: Optional[str] = None
    installments: List[int] = field(default_factory=list)

    def __post_init__(self):
        if self.penalty is None:
            self.penalty = Money.zero(self.amount.currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'credit_id': self.credit_id,
            'currency': self.amount.currency.code,
            'amount': str(self.amount.amount),
            'payment_date': self.payment_date.isoformat(),
            'source': self.source.value,
            'principal_applied': str(self.principal_applied.amount),
            'interest_applied': str(self.interest_applied.amount),
            'penalty': str(self.penalty.amount),
            'account_id': self.account_id,
            'installments': list(self.installments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreditPayment':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            credit_id=data['credit_id'],
            amount=_money_from(data, 'amount', currency),
            payment_date=datetime.fromisoformat(data['payment_date']),
            source=PaymentSource(data['source']),
            principal_applied=_money_from(data, 'principal_applied', currency),
            interest_applied=_money_from(data, 'interest_applied', currency),
            penalty=_money_from(data, 'penalty', currency),
            account_id=data.get('account_id'),
            installments=list(data.get('installments', [])),
        )
