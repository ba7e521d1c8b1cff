"""
Credit Ledger Module

Persistence for credits and their installment schedules.

All writes go through CreditLedger.transaction(): a scoped unit of work that
serializes writers of the same credit with a per-credit lock, stages every
write in memory, and applies the staged writes in one storage transaction
when the block exits normally. If the block raises, nothing is written.
Different credits never share a lock.
"""

from contextlib import contextmanager, nullcontext
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional, Set

from .currency import Money
from .errors import (
    CreditEngineError, InternalError, InvalidArgumentError, NotFoundError
)
from .locks import KeyedLock
from .logging_config import get_logger
from .models import Credit, CreditPayment, CreditStatus, Installment, InstallmentStatus
from .storage import StorageInterface


CREDITS_TABLE = "credits"
INSTALLMENTS_TABLE = "installments"
PAYMENTS_TABLE = "credit_payments"


class LedgerTransaction:
    """
    Transactional view of the ledger handed out by CreditLedger.transaction().

    Reads see committed state overlaid with this transaction's own staged
    writes. A transaction opened for a credit may only write that credit's rows.
    """

    def __init__(self, ledger: 'CreditLedger', credit_id: Optional[str] = None):
        self._ledger = ledger
        self.credit_id = credit_id
        self._credits: Dict[str, Credit] = {}
        self._installments: Dict[str, Installment] = {}
        self._payments: List[CreditPayment] = []

    def _check_scope(self, credit_id: str) -> None:
        if self.credit_id is not None and credit_id != self.credit_id:
            raise InternalError(
                f"Transaction for credit {self.credit_id} cannot write credit {credit_id}"
            )

    # Reads

    def get_credit(self, credit_id: str) -> Optional[Credit]:
        if credit_id in self._credits:
            return self._credits[credit_id]
        return self._ledger.get_credit(credit_id)

    def require_credit(self, credit_id: str) -> Credit:
        credit = self.get_credit(credit_id)
        if credit is None:
            raise NotFoundError(f"Credit {credit_id} not found")
        return credit

    def get_schedule(self, credit_id: str) -> List[Installment]:
        committed = {inst.id: inst for inst in self._ledger.get_schedule(credit_id)}
        for installment_id, installment in self._installments.items():
            if installment.credit_id == credit_id:
                committed[installment_id] = installment
        return sorted(committed.values(), key=lambda inst: inst.sequence_number)

    def get_next_due_installment(self, credit_id: str, as_of: date) -> Optional[Installment]:
        for installment in self.get_schedule(credit_id):
            if installment.is_open and installment.due_date <= as_of:
                return installment
        return None

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        if installment_id in self._installments:
            return self._installments[installment_id]
        return self._ledger.get_installment(installment_id)

    # Writes

    def add_credit(self, credit: Credit) -> None:
        self._check_scope(credit.id)
        self._credits[credit.id] = credit

    def add_installments(self, installments: List[Installment]) -> None:
        for installment in installments:
            self.save_installment(installment)

    def save_installment(self, installment: Installment) -> None:
        self._check_scope(installment.credit_id)
        installment.updated_at = datetime.now(timezone.utc)
        self._installments[installment.id] = installment

    def save_credit(self, credit: Credit) -> None:
        self._check_scope(credit.id)
        credit.updated_at = datetime.now(timezone.utc)
        self._credits[credit.id] = credit

    def update_installment_status(
        self,
        installment_id: str,
        status: InstallmentStatus,
        new_amount: Optional[Money] = None
    ) -> Installment:
        installment = self.get_installment(installment_id)
        if installment is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        installment.status = status
        if new_amount is not None:
            installment.amount = new_amount
        self.save_installment(installment)
        return installment

    def update_credit_remaining(
        self,
        credit_id: str,
        remaining: Money,
        status: Optional[CreditStatus] = None
    ) -> Credit:
        credit = self.require_credit(credit_id)
        credit.remaining_amount = remaining
        if status is not None:
            credit.status = status
        self.save_credit(credit)
        return credit

    def add_payment(self, payment: CreditPayment) -> None:
        self._check_scope(payment.credit_id)
        self._payments.append(payment)

    def _commit(self) -> None:
        storage = self._ledger.storage
        with storage.atomic():
            for credit in self._credits.values():
                storage.save(CREDITS_TABLE, credit.id, credit.to_dict())
            for installment in self._installments.values():
                storage.save(INSTALLMENTS_TABLE, installment.id, installment.to_dict())
            for payment in self._payments:
                storage.save(PAYMENTS_TABLE, payment.id, payment.to_dict())


class CreditLedger:
    """
    Store of credits and installment schedules
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("credit_engine.ledger")
        self._credit_locks = KeyedLock()

    @contextmanager
    def transaction(self, credit_id: Optional[str] = None) -> Iterator[LedgerTransaction]:
        """
        Scoped transaction over one credit's rows.

        Commits on normal exit; on any exception nothing is written. Domain
        errors propagate unchanged, anything else surfaces as InternalError.
        """
        held = self._credit_locks.hold(credit_id) if credit_id is not None else nullcontext()
        with held:
            txn = LedgerTransaction(self, credit_id)
            try:
                yield txn
            except CreditEngineError:
                raise
            except Exception as e:
                self.logger.error(f"Transaction for credit {credit_id} aborted: {e}")
                raise InternalError(f"Transaction aborted: {e}") from e

            try:
                txn._commit()
            except Exception as e:
                self.logger.error(f"Commit for credit {credit_id} failed: {e}")
                raise InternalError(f"Commit failed: {e}") from e

    def create_credit_with_schedule(self, credit: Credit, installments: List[Installment]) -> Credit:
        """
        Persist a credit and its full schedule atomically.

        Raises:
            InvalidArgumentError: If the schedule does not belong to the credit,
                is not numbered 1..n, has non-increasing due dates, or its
                principal does not add up to the credit amount
        """
        self._validate_schedule(credit, installments)

        with self.transaction(credit.id) as txn:
            if self.storage.exists(CREDITS_TABLE, credit.id):
                raise InvalidArgumentError(f"Credit {credit.id} already exists")
            txn.add_credit(credit)
            txn.add_installments(installments)

        return credit

    def _validate_schedule(self, credit: Credit, installments: List[Installment]) -> None:
        if len(installments) != credit.term_months:
            raise InvalidArgumentError(
                f"Schedule has {len(installments)} installments, term is {credit.term_months} months"
            )
        previous_due: Optional[date] = None
        for expected_number, installment in enumerate(installments, start=1):
            if installment.credit_id != credit.id:
                raise InvalidArgumentError("Installment belongs to a different credit")
            if installment.sequence_number != expected_number:
                raise InvalidArgumentError("Installments must be numbered 1..n in order")
            if previous_due is not None and installment.due_date <= previous_due:
                raise InvalidArgumentError("Installment due dates must be strictly increasing")
            previous_due = installment.due_date

        principal_total = Money.zero(credit.currency)
        for installment in installments:
            principal_total = principal_total + installment.principal
        if principal_total != credit.amount:
            raise InvalidArgumentError(
                f"Schedule principal {principal_total.to_string()} does not match credit amount {credit.amount.to_string()}"
            )

    def get_credit(self, credit_id: str) -> Optional[Credit]:
        data = self.storage.load(CREDITS_TABLE, credit_id)
        if data:
            return Credit.from_dict(data)
        return None

    def get_credits_by_user(self, user_id: str) -> List[Credit]:
        credits = [Credit.from_dict(data) for data in self.storage.find(CREDITS_TABLE, {"user_id": user_id})]
        credits.sort(key=lambda credit: credit.created_at)
        return credits

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        data = self.storage.load(INSTALLMENTS_TABLE, installment_id)
        if data:
            return Installment.from_dict(data)
        return None

    def get_schedule(self, credit_id: str) -> List[Installment]:
        """Installments of a credit ordered by sequence number (= due date)"""
        schedule = [
            Installment.from_dict(data)
            for data in self.storage.find(INSTALLMENTS_TABLE, {"credit_id": credit_id})
        ]
        schedule.sort(key=lambda inst: inst.sequence_number)
        return schedule

    def get_next_due_installment(self, credit_id: str, as_of: date) -> Optional[Installment]:
        for installment in self.get_schedule(credit_id):
            if installment.is_open and installment.due_date <= as_of:
                return installment
        return None

    def _open_installments_due(self, as_of: date, inclusive: bool) -> List[Installment]:
        result = []
        for data in self.storage.load_all(INSTALLMENTS_TABLE):
            installment = Installment.from_dict(data)
            if not installment.is_open:
                continue
            if installment.due_date < as_of or (inclusive and installment.due_date == as_of):
                result.append(installment)
        return result

    def find_active_credits_with_due_payments(self, as_of: date) -> List[Credit]:
        """ACTIVE credits having at least one open installment due on or before as_of"""
        due_credit_ids: Set[str] = {
            installment.credit_id for installment in self._open_installments_due(as_of, inclusive=True)
        }
        credits = [
            Credit.from_dict(data)
            for data in self.storage.find(CREDITS_TABLE, {"status": CreditStatus.ACTIVE.value})
            if data['id'] in due_credit_ids
        ]
        credits.sort(key=lambda credit: credit.created_at)
        return credits

    def find_overdue_installments(self, as_of: date) -> List[Installment]:
        """Open installments of ACTIVE credits due strictly before as_of"""
        active_ids = {
            data['id'] for data in self.storage.find(CREDITS_TABLE, {"status": CreditStatus.ACTIVE.value})
        }
        overdue = [
            installment for installment in self._open_installments_due(as_of, inclusive=False)
            if installment.credit_id in active_ids
        ]
        overdue.sort(key=lambda inst: (inst.due_date, inst.credit_id, inst.sequence_number))
        return overdue

    def get_payments(self, credit_id: str) -> List[CreditPayment]:
        """Payments received against a credit, oldest first"""
        payments = [
            CreditPayment.from_dict(data)
            for data in self.storage.find(PAYMENTS_TABLE, {"credit_id": credit_id})
        ]
        payments.sort(key=lambda payment: (payment.payment_date, payment.created_at))
        return payments
