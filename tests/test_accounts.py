"""
Test suite for the storage-backed account ledger
"""

import threading
import time
import pytest
from decimal import Decimal

from credit_engine.accounts import StorageAccountLedger
from credit_engine.currency import Money, Currency
from credit_engine.errors import (
    AccountNotFoundError, InsufficientFundsError, InvalidArgumentError, NotFoundError
)
from credit_engine.locks import KeyedLock
from credit_engine.storage import InMemoryStorage


def usd(amount: str) -> Money:
    return Money(Decimal(amount), Currency.USD)


@pytest.fixture
def accounts():
    return StorageAccountLedger(InMemoryStorage())


class TestAccountLedger:
    """Test balances, debits and deposits"""

    def test_open_account(self, accounts):
        account = accounts.open_account("user-1", initial_balance=usd('250.00'), account_id="acct-1")

        assert account.id == "acct-1"
        assert accounts.get_balance("acct-1") == usd('250.00')
        assert accounts.get_account("acct-1").user_id == "user-1"

    def test_unknown_account(self, accounts):
        """Unknown accounts raise AccountNotFoundError, a NotFoundError"""
        with pytest.raises(AccountNotFoundError):
            accounts.get_balance("missing")
        with pytest.raises(NotFoundError):
            accounts.debit("missing", usd('1.00'))

    def test_debit(self, accounts):
        accounts.open_account("user-1", initial_balance=usd('100.00'), account_id="acct-1")

        assert accounts.debit("acct-1", usd('40.00')) == usd('60.00')
        assert accounts.get_balance("acct-1") == usd('60.00')

    def test_insufficient_funds(self, accounts):
        """A debit larger than the balance fails and changes nothing"""
        accounts.open_account("user-1", initial_balance=usd('90.00'), account_id="acct-1")

        with pytest.raises(InsufficientFundsError):
            accounts.debit("acct-1", usd('110.00'))
        assert accounts.get_balance("acct-1") == usd('90.00')

    def test_deposit(self, accounts):
        accounts.open_account("user-1", account_id="acct-1")

        assert accounts.deposit("acct-1", usd('15.50')) == usd('15.50')

    def test_invalid_amounts(self, accounts):
        accounts.open_account("user-1", initial_balance=usd('100.00'), account_id="acct-1")

        with pytest.raises(InvalidArgumentError):
            accounts.debit("acct-1", usd('0'))
        with pytest.raises(InvalidArgumentError):
            accounts.deposit("acct-1", usd('-5'))
        with pytest.raises(InvalidArgumentError):
            accounts.debit("acct-1", Money(Decimal('1'), Currency.EUR))
        with pytest.raises(InvalidArgumentError):
            accounts.open_account("user-1", initial_balance=usd('-1'))

    def test_concurrent_debits(self, accounts):
        """Concurrent debits never lose an update or overdraw"""
        accounts.open_account("user-1", initial_balance=usd('100.00'), account_id="acct-1")
        barrier = threading.Barrier(12)
        declined = []

        def debit():
            barrier.wait()
            try:
                accounts.debit("acct-1", usd('10.00'))
            except InsufficientFundsError:
                declined.append(True)

        threads = [threading.Thread(target=debit) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert accounts.get_balance("acct-1") == usd('0.00')
        assert len(declined) == 2
        assert len(accounts._account_locks) == 0


class TestKeyedLock:
    """Test per-key mutual exclusion"""

    def test_same_key_serializes(self):
        locks = KeyedLock()
        inside = []
        overlaps = []
        barrier = threading.Barrier(4)

        def work():
            barrier.wait()
            with locks.hold("acct-1"):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert len(locks) == 0

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        with locks.hold("acct-1"):
            acquired = threading.Event()

            def other():
                with locks.hold("acct-2"):
                    acquired.set()

            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(5)
            thread.join()
            assert len(locks) == 1

    def test_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(ValueError):
            with locks.hold("acct-1"):
                raise ValueError("boom")

        assert len(locks) == 0
        with locks.hold("acct-1"):
            pass
