"""
Account Ledger Module

Balance-mutation interface the credit engine debits funding accounts through,
and a storage-backed implementation of it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from .currency import Money, Currency
from .errors import AccountNotFoundError, InsufficientFundsError, InvalidArgumentError
from .locks import KeyedLock
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class AccountLedger(ABC):
    """Collaborator contract for account balances"""

    @abstractmethod
    def get_balance(self, account_id: str) -> Money:
        """
        Raises:
            AccountNotFoundError: If the account does not exist
        """
        pass

    @abstractmethod
    def debit(self, account_id: str, amount: Money) -> Money:
        """
        Withdraw amount and return the new balance.

        Raises:
            InsufficientFundsError: If the balance cannot cover amount
            AccountNotFoundError: If the account does not exist
        """
        pass

    @abstractmethod
    def deposit(self, account_id: str, amount: Money) -> Money:
        """Add amount and return the new balance"""
        pass


@dataclass
class Account(StorageRecord):
    """Funding account with a single book balance"""
    user_id: str
    balance: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'user_id': self.user_id,
            'balance': str(self.balance.amount),
            'currency': self.balance.currency.code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            balance=Money(Decimal(data['balance']), Currency[data['currency']]),
        )


class StorageAccountLedger(AccountLedger):
    """
    Account ledger persisted in the shared storage backend.

    Balance read-modify-write is serialized per account.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name
        self.logger = get_logger("credit_engine.accounts")
        self._account_locks = KeyedLock()

    def open_account(
        self,
        user_id: str,
        currency: Currency = Currency.USD,
        initial_balance: Optional[Money] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """Open an account, optionally funded"""
        balance = initial_balance or Money.zero(currency)
        if balance.currency != currency:
            raise InvalidArgumentError("Initial balance currency must match account currency")
        if balance.is_negative():
            raise InvalidArgumentError("Initial balance cannot be negative")

        now = datetime.now(timezone.utc)
        account = Account(
            id=account_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            balance=balance,
        )
        self.storage.save(self.table_name, account.id, account.to_dict())
        return account

    def get_account(self, account_id: str) -> Account:
        data = self.storage.load(self.table_name, account_id)
        if not data:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account.from_dict(data)

    def get_balance(self, account_id: str) -> Money:
        return self.get_account(account_id).balance

    def debit(self, account_id: str, amount: Money) -> Money:
        self._check_amount(amount)
        with self._account_locks.hold(account_id):
            account = self.get_account(account_id)
            if account.balance.currency != amount.currency:
                raise InvalidArgumentError("Debit currency must match account currency")
            if account.balance < amount:
                raise InsufficientFundsError(
                    f"Account {account_id} balance {account.balance.to_string()} "
                    f"cannot cover {amount.to_string()}"
                )
            account.balance = account.balance - amount
            self._save(account)

        log_action(self.logger, "info", "Account debited", user_id=account.user_id,
                   action="debit", resource=f"account:{account_id}",
                   extra={"amount": str(amount.amount), "balance": str(account.balance.amount)})
        return account.balance

    def deposit(self, account_id: str, amount: Money) -> Money:
        self._check_amount(amount)
        with self._account_locks.hold(account_id):
            account = self.get_account(account_id)
            if account.balance.currency != amount.currency:
                raise InvalidArgumentError("Deposit currency must match account currency")
            account.balance = account.balance + amount
            self._save(account)

        log_action(self.logger, "info", "Account credited", user_id=account.user_id,
                   action="deposit", resource=f"account:{account_id}",
                   extra={"amount": str(amount.amount), "balance": str(account.balance.amount)})
        return account.balance

    def _check_amount(self, amount: Money) -> None:
        if not amount.is_positive():
            raise InvalidArgumentError("Amount must be positive")

    def _save(self, account: Account) -> None:
        account.updated_at = datetime.now(timezone.utc)
        with self.storage.atomic():
            self.storage.save(self.table_name, account.id, account.to_dict())
