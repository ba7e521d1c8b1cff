"""
Error Taxonomy Module

Every failure the credit engine reports carries an ErrorKind so that callers
(the HTTP layer, the settlement scheduler) can react to the kind of failure
without parsing messages.
"""

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure exposed by the credit engine"""
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_PENDING_PAYMENT = "no_pending_payment"
    INTERNAL = "internal"


class CreditEngineError(Exception):
    """Base exception for the credit engine"""
    kind = ErrorKind.INTERNAL


class InvalidArgumentError(CreditEngineError, ValueError):
    """Input has a bad shape or is out of range"""
    kind = ErrorKind.INVALID_ARGUMENT


class NotFoundError(CreditEngineError):
    """Unknown credit, installment or account"""
    kind = ErrorKind.NOT_FOUND


class AccountNotFoundError(NotFoundError):
    """Account ledger has no such account"""
    pass


class InvalidStateError(CreditEngineError):
    """Operation is not valid for the current status"""
    kind = ErrorKind.INVALID_STATE


class InsufficientFundsError(CreditEngineError):
    """Account balance cannot cover a debit"""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class NoPendingPaymentError(CreditEngineError):
    """No open installment is left to apply a payment to"""
    kind = ErrorKind.NO_PENDING_PAYMENT


class InternalError(CreditEngineError):
    """Storage or transaction failure"""
    kind = ErrorKind.INTERNAL
