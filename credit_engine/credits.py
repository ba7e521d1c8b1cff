"""
Credit Service Module

Business rules of the credit lifecycle: origination with an amortization
schedule, manual payment application, automatic settlement of a due
installment, overdue flagging, default and closure, and per-user analytics.

Every mutation runs inside CreditLedger.transaction() for the credit it
touches, so manual payments and settlement of the same credit serialize and
either apply completely or not at all.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union
import uuid

from .accounts import AccountLedger
from .amortization import generate_schedule, new_credit_id, calculate_monthly_payment
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, parse_amount
from .errors import (
    InvalidArgumentError, InvalidStateError,
    NoPendingPaymentError, NotFoundError
)
from .ledger import CreditLedger, LedgerTransaction
from .logging_config import get_logger, log_action
from .models import (
    Credit, CreditPayment, CreditStatus, Installment, InstallmentStatus, PaymentSource,
    ensure_credit_transition
)


DEFAULT_PENALTY_RATE = Decimal('0.10')

AmountInput = Union[Money, Decimal, int, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InstallmentApplication:
    """How much of a payment landed on one installment"""
    installment_id: str
    sequence_number: int
    applied: Money
    principal_applied: Money
    interest_applied: Money
    status: InstallmentStatus


@dataclass
class PaymentResult:
    """Outcome of a manual payment"""
    credit_id: str
    amount: Money
    applications: List[InstallmentApplication]
    remaining_amount: Money
    credit_status: CreditStatus

    @property
    def principal_applied(self) -> Money:
        total = Money.zero(self.amount.currency)
        for application in self.applications:
            total = total + application.principal_applied
        return total


@dataclass
class SettlementOutcome:
    """Outcome of settling one credit's next due installment"""
    credit_id: str
    settled: bool
    installment_id: Optional[str] = None
    charged: Optional[Money] = None
    penalty: Optional[Money] = None
    credit_status: Optional[CreditStatus] = None
    reason: Optional[str] = None


@dataclass
class CreditAnalytics:
    """Aggregate view over all credits of a user"""
    user_id: str
    credit_count: int = 0
    total_principal: Decimal = Decimal('0')
    total_paid: Decimal = Decimal('0')
    total_remaining: Decimal = Decimal('0')
    average_interest_rate: Decimal = Decimal('0')
    status_counts: Dict[str, int] = field(default_factory=dict)
    next_payment_date: Optional[date] = None
    next_payment_amount: Optional[Decimal] = None
    next_payment_credit_id: Optional[str] = None


def apply_to_installment(installment: Installment, amount: Money, paid_at: datetime) -> InstallmentApplication:
    """
    Apply up to amount to an open installment: interest first, then
    principal, then any penalty.

    Raises:
        InvalidStateError: If the installment is not open
    """
    if not installment.is_open:
        raise InvalidStateError(
            f"Installment {installment.id} is {installment.status.value} and cannot take payments"
        )

    applied = min(amount, installment.outstanding)
    interest_part = min(applied, installment.outstanding_interest)
    principal_part = min(applied - interest_part, installment.outstanding_principal)

    installment.paid_amount = installment.paid_amount + applied
    installment.interest_paid = installment.interest_paid + interest_part
    installment.principal_paid = installment.principal_paid + principal_part

    if installment.outstanding.is_zero():
        installment.status = InstallmentStatus.PAID
        installment.paid_at = paid_at
    elif installment.status == InstallmentStatus.LATE:
        pass
    elif installment.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL):
        installment.status = InstallmentStatus.PARTIAL
    else:
        raise InvalidStateError(f"Unhandled installment status: {installment.status}")

    return InstallmentApplication(
        installment_id=installment.id,
        sequence_number=installment.sequence_number,
        applied=applied,
        principal_applied=principal_part,
        interest_applied=interest_part,
        status=installment.status,
    )


class CreditService:
    """
    Orchestrates credit creation, payments and status transitions
    """

    def __init__(
        self,
        ledger: CreditLedger,
        account_ledger: AccountLedger,
        audit_trail: Optional[AuditTrail] = None,
        penalty_rate: Decimal = DEFAULT_PENALTY_RATE,
        default_currency: Currency = Currency.USD,
        clock: Callable[[], datetime] = utc_now
    ):
        self.ledger = ledger
        self.account_ledger = account_ledger
        self.audit_trail = audit_trail
        self.penalty_rate = penalty_rate
        self.default_currency = default_currency
        self.clock = clock
        self.logger = get_logger("credit_engine.credits")

    def create_credit(
        self,
        user_id: str,
        account_id: str,
        amount: AmountInput,
        interest_rate: Union[Decimal, int, str],
        term_months: int,
        currency: Optional[Currency] = None,
        start_date: Optional[date] = None
    ) -> Credit:
        """
        Originate a credit and its amortization schedule.

        Args:
            user_id: Borrower
            account_id: Funding account debited by settlement
            amount: Principal, > 0
            interest_rate: Annual rate in percent, > 0
            term_months: Number of monthly installments, > 0
            currency: Defaults to the service's default currency
            start_date: Defaults to today; installment k is due k months later

        Returns:
            The persisted Credit

        Raises:
            InvalidArgumentError: If any argument is out of range
        """
        principal = self._to_money(amount, currency or self.default_currency)
        rate = parse_amount(interest_rate)

        if not user_id or not account_id:
            raise InvalidArgumentError("user_id and account_id are required")
        if not principal.is_positive():
            raise InvalidArgumentError("Credit amount must be positive")
        if rate <= 0:
            raise InvalidArgumentError("Interest rate must be positive")
        if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months <= 0:
            raise InvalidArgumentError("Term must be a positive number of months")

        now = self.clock()
        start = start_date or now.date()
        credit_id = new_credit_id()

        credit = Credit(
            id=credit_id,
            created_at=now,
            updated_at=now,
            user_id=user_id,
            account_id=account_id,
            amount=principal,
            interest_rate=rate,
            term_months=term_months,
            remaining_amount=principal,
            monthly_payment=Money(
                calculate_monthly_payment(principal.amount, rate, term_months),
                principal.currency
            ),
            start_date=start,
            status=CreditStatus.ACTIVE,
        )
        schedule = generate_schedule(credit_id, principal, rate, term_months, start)

        self.ledger.create_credit_with_schedule(credit, schedule)

        log_action(self.logger, "info", "Credit created", user_id=user_id,
                   action="create_credit", resource=f"credit:{credit_id}",
                   extra={"amount": str(principal.amount), "interest_rate": str(rate),
                          "term_months": term_months})
        self._audit(AuditEventType.CREDIT_CREATED, credit, {
            "account_id": account_id,
            "amount": principal.to_string(),
            "interest_rate": str(rate),
            "term_months": term_months,
            "monthly_payment": credit.monthly_payment.to_string(),
            "start_date": start.isoformat(),
        })
        return credit

    def pay_credit(self, credit_id: str, amount: AmountInput) -> PaymentResult:
        """
        Apply a manual payment to the earliest open installments.

        A payment larger than the head installment spills into the following
        ones; a remainder smaller than an installment leaves it PARTIAL.

        Raises:
            NotFoundError: Unknown credit
            InvalidStateError: Credit is not ACTIVE
            NoPendingPaymentError: No open installment is left
            InvalidArgumentError: Amount is not positive or exceeds the outstanding total
        """
        if isinstance(amount, Money):
            if not amount.is_positive():
                raise InvalidArgumentError("Payment amount must be positive")
        elif parse_amount(amount) <= 0:
            raise InvalidArgumentError("Payment amount must be positive")

        with self.ledger.transaction(credit_id) as txn:
            credit = txn.require_credit(credit_id)
            if credit.status != CreditStatus.ACTIVE:
                raise InvalidStateError(f"Credit {credit_id} is {credit.status.value}, not active")

            payment = self._to_money(amount, credit.currency)
            if not payment.is_positive():
                raise InvalidArgumentError("Payment amount must be positive")

            open_installments = [inst for inst in txn.get_schedule(credit_id) if inst.is_open]
            if not open_installments:
                raise NoPendingPaymentError(f"Credit {credit_id} has no pending installments")

            outstanding_due = Money.zero(credit.currency)
            for installment in open_installments:
                outstanding_due = outstanding_due + installment.outstanding
            if payment > outstanding_due:
                raise InvalidArgumentError(
                    f"Payment {payment.to_string()} exceeds outstanding {outstanding_due.to_string()}"
                )

            now = self.clock()
            pool = payment
            applications = []
            for installment in open_installments:
                if pool.is_zero():
                    break
                application = apply_to_installment(installment, pool, now)
                txn.save_installment(installment)
                applications.append(application)
                pool = pool - application.applied

            principal_applied = Money.zero(credit.currency)
            interest_applied = Money.zero(credit.currency)
            for application in applications:
                principal_applied = principal_applied + application.principal_applied
                interest_applied = interest_applied + application.interest_applied
            credit = self._reduce_remaining(txn, credit, principal_applied)

            txn.add_payment(self._payment_record(
                credit, payment, now, PaymentSource.MANUAL, principal_applied, interest_applied,
                installments=[a.sequence_number for a in applications]
            ))

        result = PaymentResult(
            credit_id=credit_id,
            amount=payment,
            applications=applications,
            remaining_amount=credit.remaining_amount,
            credit_status=credit.status,
        )

        log_action(self.logger, "info", "Credit payment applied", user_id=credit.user_id,
                   action="pay_credit", resource=f"credit:{credit_id}",
                   extra={"amount": str(payment.amount),
                          "installments": [a.sequence_number for a in applications],
                          "remaining_amount": str(credit.remaining_amount.amount)})
        self._audit(AuditEventType.CREDIT_PAYMENT_APPLIED, credit, {
            "amount": payment.to_string(),
            "principal_applied": result.principal_applied.to_string(),
            "installments": [
                {"sequence_number": a.sequence_number, "applied": str(a.applied.amount), "status": a.status}
                for a in applications
            ],
            "remaining_amount": credit.remaining_amount.to_string(),
        })
        if credit.status == CreditStatus.COMPLETED:
            self._audit(AuditEventType.CREDIT_COMPLETED, credit, {"via": "manual_payment"})
        return result

    def settle_next_due_installment(self, credit_id: str, as_of: Optional[date] = None) -> SettlementOutcome:
        """
        Auto-debit the credit's earliest open installment due on or before as_of.

        On a balance shortfall the installment is first increased by the
        penalty rate, and the increased amount is what gets debited. If the
        debit fails nothing about the credit changes. If the ledger commit
        fails after a successful debit, the debit is refunded.

        Raises:
            InsufficientFundsError, AccountNotFoundError: From the account ledger
            NotFoundError: Unknown credit
            InternalError: Storage failure
        """
        as_of = as_of or self.clock().date()
        debited: Optional[Money] = None
        account_id: Optional[str] = None

        try:
            with self.ledger.transaction(credit_id) as txn:
                credit = txn.require_credit(credit_id)
                account_id = credit.account_id
                if not credit.is_active:
                    return SettlementOutcome(credit_id=credit_id, settled=False,
                                             reason=f"credit is {credit.status.value}")

                installment = txn.get_next_due_installment(credit_id, as_of)
                if installment is None:
                    return SettlementOutcome(credit_id=credit_id, settled=False,
                                             reason="no installment due")

                penalty = Money.zero(credit.currency)
                if installment.outstanding.is_zero():
                    # Rounds to nothing for tiny principals; closes without a debit
                    charge = installment.outstanding
                    application = apply_to_installment(installment, charge, self.clock())
                    txn.save_installment(installment)
                    credit = self._reduce_remaining(txn, credit, application.principal_applied)
                    return SettlementOutcome(
                        credit_id=credit_id,
                        settled=True,
                        installment_id=installment.id,
                        charged=charge,
                        penalty=penalty,
                        credit_status=credit.status,
                        reason="nothing owed",
                    )

                charge = installment.outstanding
                balance = self.account_ledger.get_balance(credit.account_id)
                if balance < charge:
                    penalty = charge * self.penalty_rate
                    installment.amount = installment.amount + penalty
                    installment.penalty_amount = installment.penalty_amount + penalty
                    charge = installment.outstanding
                    self.logger.warning(
                        f"Insufficient funds for credit {credit_id}: balance {balance.to_string()}, "
                        f"applying penalty of {penalty.to_string()}"
                    )

                self.account_ledger.debit(credit.account_id, charge)
                debited = charge

                now = self.clock()
                application = apply_to_installment(installment, charge, now)
                txn.save_installment(installment)
                credit = self._reduce_remaining(txn, credit, application.principal_applied)

                txn.add_payment(self._payment_record(
                    credit, charge, now, PaymentSource.SETTLEMENT, application.principal_applied,
                    application.interest_applied, penalty=penalty,
                    installments=[installment.sequence_number]
                ))
        except Exception:
            if debited is not None:
                self._refund(credit_id, account_id, debited)
            raise

        outcome = SettlementOutcome(
            credit_id=credit_id,
            settled=True,
            installment_id=installment.id,
            charged=charge,
            penalty=penalty,
            credit_status=credit.status,
        )

        log_action(self.logger, "info", "Installment settled", user_id=credit.user_id,
                   action="settle_installment", resource=f"credit:{credit_id}",
                   extra={"installment": installment.sequence_number, "charged": str(charge.amount),
                          "penalty": str(penalty.amount)})
        if penalty.is_positive():
            self._audit(AuditEventType.INSTALLMENT_PENALTY_APPLIED, credit, {
                "installment_id": installment.id,
                "penalty": penalty.to_string(),
                "rate": str(self.penalty_rate),
            })
        self._audit(AuditEventType.INSTALLMENT_SETTLED, credit, {
            "installment_id": installment.id,
            "sequence_number": installment.sequence_number,
            "charged": charge.to_string(),
            "remaining_amount": credit.remaining_amount.to_string(),
        })
        if credit.status == CreditStatus.COMPLETED:
            self._audit(AuditEventType.CREDIT_COMPLETED, credit, {"via": "settlement"})
        return outcome

    def mark_overdue_installments(self, as_of: Optional[date] = None, grace_days: int = 0) -> int:
        """
        Flag PENDING and PARTIAL installments due more than grace_days before
        as_of as LATE.

        Returns:
            Number of installments flagged
        """
        as_of = as_of or self.clock().date()
        cutoff = as_of - timedelta(days=grace_days)

        credit_ids = []
        for installment in self.ledger.find_overdue_installments(cutoff):
            if installment.credit_id not in credit_ids:
                credit_ids.append(installment.credit_id)

        flagged = 0
        for credit_id in credit_ids:
            with self.ledger.transaction(credit_id) as txn:
                credit = txn.require_credit(credit_id)
                if credit.status != CreditStatus.ACTIVE:
                    continue
                late = [
                    inst for inst in txn.get_schedule(credit_id)
                    if inst.due_date < cutoff
                    and inst.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL)
                ]
                for installment in late:
                    txn.update_installment_status(installment.id, InstallmentStatus.LATE)

            flagged += len(late)
            for installment in late:
                self._audit(AuditEventType.INSTALLMENT_MARKED_LATE, credit, {
                    "installment_id": installment.id,
                    "due_date": installment.due_date.isoformat(),
                })

        if flagged:
            self.logger.info(f"Flagged {flagged} installments as late (cutoff {cutoff.isoformat()})")
        return flagged

    def default_credit(self, credit_id: str, reason: str) -> Credit:
        """
        Move an ACTIVE credit to DEFAULTED; its open installments become MISSED.

        Raises:
            NotFoundError, InvalidStateError
        """
        with self.ledger.transaction(credit_id) as txn:
            credit = txn.require_credit(credit_id)
            ensure_credit_transition(credit.status, CreditStatus.DEFAULTED)

            missed = [inst for inst in txn.get_schedule(credit_id) if inst.is_open]
            for installment in missed:
                txn.update_installment_status(installment.id, InstallmentStatus.MISSED)

            credit.status = CreditStatus.DEFAULTED
            txn.save_credit(credit)

        self.logger.warning(f"Credit {credit_id} defaulted: {reason}")
        self._audit(AuditEventType.CREDIT_DEFAULTED, credit, {
            "reason": reason,
            "missed_installments": len(missed),
            "remaining_amount": credit.remaining_amount.to_string(),
        })
        return credit

    def close_credit(self, credit_id: str) -> Credit:
        """
        Archive a COMPLETED or DEFAULTED credit.

        Raises:
            NotFoundError, InvalidStateError
        """
        with self.ledger.transaction(credit_id) as txn:
            credit = txn.require_credit(credit_id)
            ensure_credit_transition(credit.status, CreditStatus.CLOSED)
            credit.status = CreditStatus.CLOSED
            txn.save_credit(credit)

        self._audit(AuditEventType.CREDIT_CLOSED, credit, {
            "written_off": credit.remaining_amount.to_string(),
        })
        return credit

    def get_credit_by_id(self, credit_id: str) -> Credit:
        """
        Raises:
            NotFoundError: Unknown credit
        """
        credit = self.ledger.get_credit(credit_id)
        if credit is None:
            raise NotFoundError(f"Credit {credit_id} not found")
        return credit

    def get_credits_by_user_id(self, user_id: str) -> List[Credit]:
        return self.ledger.get_credits_by_user(user_id)

    def get_payment_schedule(self, credit_id: str) -> List[Installment]:
        """
        Raises:
            NotFoundError: Unknown credit
        """
        self.get_credit_by_id(credit_id)
        return self.ledger.get_schedule(credit_id)

    def get_credit_payments(self, credit_id: str) -> List[CreditPayment]:
        """
        Payment history of a credit, manual and settled, oldest first.

        Raises:
            NotFoundError: Unknown credit
        """
        self.get_credit_by_id(credit_id)
        return self.ledger.get_payments(credit_id)

    def get_overdue_payments(self, as_of: Optional[date] = None) -> List[Installment]:
        """Open installments of active credits due before as_of"""
        return self.ledger.find_overdue_installments(as_of or self.clock().date())

    def get_credit_analytics(self, user_id: str) -> CreditAnalytics:
        """
        Read-only aggregation over a user's credits and schedules. Amounts
        are summed as plain decimals regardless of currency.
        """
        analytics = CreditAnalytics(
            user_id=user_id,
            status_counts={status.value: 0 for status in CreditStatus}
        )
        credits = self.ledger.get_credits_by_user(user_id)
        if not credits:
            return analytics

        rate_total = Decimal('0')
        for credit in credits:
            analytics.credit_count += 1
            analytics.total_principal += credit.amount.amount
            analytics.status_counts[credit.status.value] += 1
            rate_total += credit.interest_rate

            for installment in self.ledger.get_schedule(credit.id):
                analytics.total_paid += installment.paid_amount.amount
                if installment.status != InstallmentStatus.PAID:
                    analytics.total_remaining += installment.outstanding.amount
                if installment.is_open and (
                    analytics.next_payment_date is None
                    or installment.due_date < analytics.next_payment_date
                ):
                    analytics.next_payment_date = installment.due_date
                    analytics.next_payment_amount = installment.outstanding.amount
                    analytics.next_payment_credit_id = credit.id

        analytics.average_interest_rate = rate_total / Decimal(len(credits))
        return analytics

    def _reduce_remaining(self, txn: LedgerTransaction, credit: Credit, principal_applied: Money) -> Credit:
        remaining = (credit.remaining_amount - principal_applied).floor_zero()
        if not any(inst.is_open for inst in txn.get_schedule(credit.id)):
            remaining = Money.zero(credit.currency)

        status = None
        if remaining.is_zero():
            ensure_credit_transition(credit.status, CreditStatus.COMPLETED)
            status = CreditStatus.COMPLETED
        return txn.update_credit_remaining(credit.id, remaining, status)

    def _payment_record(
        self,
        credit: Credit,
        amount: Money,
        paid_at: datetime,
        source: PaymentSource,
        principal_applied: Money,
        interest_applied: Money,
        penalty: Optional[Money] = None,
        installments: Optional[List[int]] = None
    ) -> CreditPayment:
        return CreditPayment(
            id=str(uuid.uuid4()),
            created_at=paid_at,
            updated_at=paid_at,
            credit_id=credit.id,
            amount=amount,
            payment_date=paid_at,
            source=source,
            principal_applied=principal_applied,
            interest_applied=interest_applied,
            penalty=penalty,
            account_id=credit.account_id if source == PaymentSource.SETTLEMENT else None,
            installments=installments or [],
        )

    def _refund(self, credit_id: str, account_id: str, amount: Money) -> None:
        try:
            self.account_ledger.deposit(account_id, amount)
            self.logger.warning(f"Refunded {amount.to_string()} to account {account_id} after failed settlement of credit {credit_id}")
        except Exception as e:
            log_action(self.logger, "error", "Settlement refund failed", action="refund",
                       resource=f"account:{account_id}",
                       extra={"credit_id": credit_id, "amount": str(amount.amount), "reason": str(e)})

    def _to_money(self, amount: AmountInput, currency: Currency) -> Money:
        if isinstance(amount, Money):
            if amount.currency != currency:
                raise InvalidArgumentError(
                    f"Amount currency {amount.currency.code} does not match {currency.code}"
                )
            return amount
        return Money(parse_amount(amount), currency)

    def _audit(self, event_type: AuditEventType, credit: Credit, metadata: Dict) -> None:
        """Audit a committed change; a failed write is logged, never raised"""
        if self.audit_trail is None:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="credit",
                entity_id=credit.id,
                metadata=metadata,
                user_id=credit.user_id
            )
        except Exception as e:
            log_action(self.logger, "error", "Audit write failed", user_id=credit.user_id,
                       action=event_type.value, resource=f"credit:{credit.id}",
                       extra={"reason": str(e)})
