"""
Amortization Module

Annuity payment calculation and installment schedule generation.

The monthly payment follows the standard annuity formula

    M = P * i * (1 + i)^n / ((1 + i)^n - 1),   i = r / 12 / 100

with the degenerate M = P / n for a zero rate. Each period's interest is
charged on the remaining principal and rounded to the currency's minor unit;
the last period pays off the remaining principal exactly so that the schedule
leaves no residual balance.
"""

import calendar
from datetime import date, datetime, timezone
from decimal import Decimal, localcontext
from typing import List
import uuid

from .currency import Money
from .errors import InvalidArgumentError
from .models import Installment, InstallmentStatus


MONTHS_PER_YEAR = Decimal('12')
PERCENT = Decimal('100')
# Digits carried through the annuity factor, whatever the calling thread's context
ANNUITY_PRECISION = 28


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    """Convert an annual percentage rate to a monthly fraction"""
    return annual_rate_percent / MONTHS_PER_YEAR / PERCENT


def compound_factor(rate: Decimal, periods: int) -> Decimal:
    """(1 + rate) ** periods by repeated multiplication"""
    growth = Decimal('1') + rate
    factor = Decimal('1')
    for _ in range(periods):
        factor *= growth
    return factor


def calculate_monthly_payment(principal: Decimal, annual_rate_percent: Decimal, term_months: int) -> Decimal:
    """
    Calculate the fixed monthly annuity payment (unrounded).

    Args:
        principal: Amount borrowed, > 0
        annual_rate_percent: Annual interest rate in percent, >= 0
        term_months: Number of monthly periods, > 0

    Returns:
        Monthly payment as Decimal

    Raises:
        InvalidArgumentError: If any input is out of range
    """
    if principal <= 0:
        raise InvalidArgumentError("Principal must be positive")
    if annual_rate_percent < 0:
        raise InvalidArgumentError("Interest rate cannot be negative")
    if term_months <= 0:
        raise InvalidArgumentError("Term must be at least one month")

    with localcontext() as ctx:
        ctx.prec = ANNUITY_PRECISION
        rate = monthly_rate(annual_rate_percent)
        if rate == 0:
            return principal / Decimal(term_months)

        factor = compound_factor(rate, term_months)
        return principal * rate * factor / (factor - Decimal('1'))


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def generate_schedule(
    credit_id: str,
    principal: Money,
    annual_rate_percent: Decimal,
    term_months: int,
    start_date: date
) -> List[Installment]:
    """
    Build the ordered installment schedule for a credit.

    Installment k (1-based) is due k months after start_date. All
    installments are PENDING.

    Returns:
        term_months Installment objects ordered by sequence number
    """
    payment = Money(
        calculate_monthly_payment(principal.amount, annual_rate_percent, term_months),
        principal.currency
    )
    rate = monthly_rate(annual_rate_percent)
    zero = Money.zero(principal.currency)
    now = datetime.now(timezone.utc)

    remaining_principal = principal
    schedule = []

    for number in range(1, term_months + 1):
        interest = remaining_principal * rate

        if number == term_months:
            # Last period absorbs accumulated rounding
            principal_part = remaining_principal
            amount = principal_part + interest
        else:
            principal_part = payment - interest
            if principal_part > remaining_principal:
                principal_part = remaining_principal
            if principal_part.is_negative():
                principal_part = zero
            amount = principal_part + interest

        remaining_principal = remaining_principal - principal_part

        schedule.append(Installment(
            id=installment_id(credit_id, number),
            created_at=now,
            updated_at=now,
            credit_id=credit_id,
            sequence_number=number,
            due_date=add_months(start_date, number),
            amount=amount,
            principal=principal_part,
            interest=interest,
            status=InstallmentStatus.PENDING,
        ))

    return schedule


def installment_id(credit_id: str, sequence_number: int) -> str:
    return f"{credit_id}_{sequence_number}"


def new_credit_id() -> str:
    return str(uuid.uuid4())
