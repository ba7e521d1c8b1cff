"""
Test suite for the credit ledger

Atomic credit creation, scoped transactions and due-installment queries.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from credit_engine.amortization import calculate_monthly_payment, generate_schedule
from credit_engine.currency import Money, Currency
from credit_engine.errors import InternalError, InvalidArgumentError, NotFoundError
from credit_engine.ledger import CreditLedger, CREDITS_TABLE, INSTALLMENTS_TABLE
from credit_engine.models import Credit, CreditPayment, CreditStatus, InstallmentStatus, PaymentSource
from credit_engine.storage import InMemoryStorage


def make_credit(credit_id="credit-1", amount="1200.00", rate="12", term=12,
                start=date(2024, 1, 15), user_id="user-1", account_id="acct-1"):
    """Build an unsaved credit and its schedule"""
    principal = Money(Decimal(amount), Currency.USD)
    now = datetime.now(timezone.utc)
    credit = Credit(
        id=credit_id,
        created_at=now,
        updated_at=now,
        user_id=user_id,
        account_id=account_id,
        amount=principal,
        interest_rate=Decimal(rate),
        term_months=term,
        remaining_amount=principal,
        monthly_payment=Money(calculate_monthly_payment(principal.amount, Decimal(rate), term), Currency.USD),
        start_date=start,
    )
    return credit, generate_schedule(credit_id, principal, Decimal(rate), term, start)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger(storage):
    return CreditLedger(storage)


class TestCreateCreditWithSchedule:
    """Test atomic persistence of a credit and its schedule"""

    def test_persists_credit_and_schedule(self, ledger):
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)

        stored = ledger.get_credit("credit-1")
        assert stored.amount == credit.amount
        assert stored.status == CreditStatus.ACTIVE
        assert stored.start_date == date(2024, 1, 15)

        stored_schedule = ledger.get_schedule("credit-1")
        assert [inst.sequence_number for inst in stored_schedule] == list(range(1, 13))
        assert stored_schedule[0].amount == schedule[0].amount

    def test_wrong_installment_count_rejected(self, ledger, storage):
        """Nothing is written when the schedule is invalid"""
        credit, schedule = make_credit()

        with pytest.raises(InvalidArgumentError):
            ledger.create_credit_with_schedule(credit, schedule[:-1])

        assert storage.count(CREDITS_TABLE) == 0
        assert storage.count(INSTALLMENTS_TABLE) == 0

    def test_out_of_order_schedule_rejected(self, ledger):
        credit, schedule = make_credit()
        schedule[0], schedule[1] = schedule[1], schedule[0]

        with pytest.raises(InvalidArgumentError):
            ledger.create_credit_with_schedule(credit, schedule)

    def test_foreign_installment_rejected(self, ledger):
        credit, schedule = make_credit()
        _, other_schedule = make_credit(credit_id="credit-2")
        schedule[3] = other_schedule[3]

        with pytest.raises(InvalidArgumentError):
            ledger.create_credit_with_schedule(credit, schedule)

    def test_principal_mismatch_rejected(self, ledger):
        """Schedule principal must add up to the credit amount"""
        credit, _ = make_credit(amount="1200.00")
        _, schedule = make_credit(amount="1000.00")

        with pytest.raises(InvalidArgumentError):
            ledger.create_credit_with_schedule(credit, schedule)

    def test_duplicate_credit_rejected(self, ledger):
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)

        with pytest.raises(InvalidArgumentError):
            ledger.create_credit_with_schedule(credit, schedule)


class TestTransaction:
    """Test the scoped transaction"""

    def test_staged_writes_visible_inside(self, ledger):
        """Reads inside a transaction see its own staged writes"""
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)

        with ledger.transaction("credit-1") as txn:
            txn.update_installment_status("credit-1_1", InstallmentStatus.LATE)
            assert txn.get_schedule("credit-1")[0].status == InstallmentStatus.LATE
            assert ledger.get_schedule("credit-1")[0].status == InstallmentStatus.PENDING

        assert ledger.get_schedule("credit-1")[0].status == InstallmentStatus.LATE

    def test_domain_error_discards_writes(self, ledger):
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)

        with pytest.raises(NotFoundError):
            with ledger.transaction("credit-1") as txn:
                txn.update_credit_remaining("credit-1", Money(Decimal('1.00'), Currency.USD))
                txn.require_credit("missing")

        assert ledger.get_credit("credit-1").remaining_amount == credit.amount

    def test_unexpected_error_becomes_internal(self, ledger):
        """Non-domain exceptions roll back and surface as InternalError"""
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)

        with pytest.raises(InternalError):
            with ledger.transaction("credit-1") as txn:
                txn.update_credit_remaining("credit-1", Money(Decimal('1.00'), Currency.USD))
                raise KeyError("storage hiccup")

        assert ledger.get_credit("credit-1").remaining_amount == credit.amount

    def test_cannot_write_other_credit(self, ledger):
        """A transaction only writes the credit it was opened for"""
        first, first_schedule = make_credit(credit_id="credit-1")
        second, second_schedule = make_credit(credit_id="credit-2")
        ledger.create_credit_with_schedule(first, first_schedule)
        ledger.create_credit_with_schedule(second, second_schedule)

        with pytest.raises(InternalError):
            with ledger.transaction("credit-1") as txn:
                txn.update_credit_remaining("credit-2", Money(Decimal('1.00'), Currency.USD))

    def test_commit_failure_writes_nothing(self, ledger, storage, monkeypatch):
        """A failing storage write rolls back the whole unit of work"""
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)
        original_save = storage.save

        def failing_save(table, record_id, data):
            if table == CREDITS_TABLE:
                raise OSError("disk full")
            return original_save(table, record_id, data)

        monkeypatch.setattr(storage, "save", failing_save)

        with pytest.raises(InternalError):
            with ledger.transaction("credit-1") as txn:
                txn.update_installment_status("credit-1_1", InstallmentStatus.PAID)
                txn.update_credit_remaining("credit-1", Money(Decimal('0'), Currency.USD))

        monkeypatch.undo()
        assert ledger.get_schedule("credit-1")[0].status == InstallmentStatus.PENDING
        assert ledger.get_credit("credit-1").remaining_amount == credit.amount

    def test_payment_committed_with_transaction(self, ledger):
        """A payment record is written only if the transaction commits"""
        credit, schedule = make_credit()
        ledger.create_credit_with_schedule(credit, schedule)
        now = datetime(2024, 2, 15, tzinfo=timezone.utc)

        def payment(payment_id):
            return CreditPayment(
                id=payment_id, created_at=now, updated_at=now, credit_id="credit-1",
                amount=Money(Decimal('106.62'), Currency.USD), payment_date=now,
                source=PaymentSource.MANUAL,
                principal_applied=Money(Decimal('94.62'), Currency.USD),
                interest_applied=Money(Decimal('12.00'), Currency.USD),
                installments=[1],
            )

        with pytest.raises(NotFoundError):
            with ledger.transaction("credit-1") as txn:
                txn.add_payment(payment("p-rolled-back"))
                txn.require_credit("missing")

        with ledger.transaction("credit-1") as txn:
            txn.add_payment(payment("p-1"))

        payments = ledger.get_payments("credit-1")
        assert [p.id for p in payments] == ["p-1"]
        assert payments[0].source == PaymentSource.MANUAL
        assert payments[0].installments == [1]
        assert payments[0].penalty.is_zero()

    def test_credit_locks_released_after_use(self, ledger):
        """The per-credit lock table does not grow with the number of credits"""
        for number in range(5):
            credit, schedule = make_credit(credit_id=f"credit-{number}")
            ledger.create_credit_with_schedule(credit, schedule)
            with ledger.transaction(credit.id) as txn:
                txn.update_installment_status(f"credit-{number}_1", InstallmentStatus.LATE)

        assert len(ledger._credit_locks) == 0


class TestQueries:
    """Test due-installment queries"""

    def test_get_credits_by_user(self, ledger):
        first, first_schedule = make_credit(credit_id="credit-1")
        second, second_schedule = make_credit(credit_id="credit-2")
        other, other_schedule = make_credit(credit_id="credit-3", user_id="user-2")
        for credit, schedule in [(first, first_schedule), (second, second_schedule), (other, other_schedule)]:
            ledger.create_credit_with_schedule(credit, schedule)

        assert [c.id for c in ledger.get_credits_by_user("user-1")] == ["credit-1", "credit-2"]
        assert ledger.get_credits_by_user("nobody") == []

    def test_active_credits_with_due_payments(self, ledger):
        """A credit is due once its first installment's due date arrives"""
        credit, schedule = make_credit(start=date(2024, 1, 15))
        ledger.create_credit_with_schedule(credit, schedule)

        assert ledger.find_active_credits_with_due_payments(date(2024, 2, 14)) == []
        due = ledger.find_active_credits_with_due_payments(date(2024, 2, 15))
        assert [c.id for c in due] == ["credit-1"]

    def test_next_due_installment(self, ledger):
        credit, schedule = make_credit(start=date(2024, 1, 15))
        ledger.create_credit_with_schedule(credit, schedule)

        assert ledger.get_next_due_installment("credit-1", date(2024, 2, 1)) is None
        assert ledger.get_next_due_installment("credit-1", date(2024, 4, 20)).sequence_number == 1

        with ledger.transaction("credit-1") as txn:
            txn.update_installment_status("credit-1_1", InstallmentStatus.PAID)

        assert ledger.get_next_due_installment("credit-1", date(2024, 4, 20)).sequence_number == 2

    def test_overdue_is_strictly_before(self, ledger):
        """Installments due on the as-of date are not overdue yet"""
        credit, schedule = make_credit(start=date(2024, 1, 15))
        ledger.create_credit_with_schedule(credit, schedule)

        assert ledger.find_overdue_installments(date(2024, 2, 15)) == []
        overdue = ledger.find_overdue_installments(date(2024, 3, 16))
        assert [inst.sequence_number for inst in overdue] == [1, 2]

    def test_inactive_credits_excluded(self, ledger):
        credit, schedule = make_credit(start=date(2024, 1, 15))
        ledger.create_credit_with_schedule(credit, schedule)

        with ledger.transaction("credit-1") as txn:
            stored = txn.require_credit("credit-1")
            stored.status = CreditStatus.DEFAULTED
            txn.save_credit(stored)

        assert ledger.find_active_credits_with_due_payments(date(2025, 6, 1)) == []
        assert ledger.find_overdue_installments(date(2025, 6, 1)) == []
