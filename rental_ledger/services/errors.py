from __future__ import annotations


class LedgerError(RuntimeError):
    """Base class for failures raised by the ledger core."""


class NotFoundError(LedgerError):
    pass


class InsufficientQuantityError(LedgerError):
    pass


class InvalidQuantityError(LedgerError):
    pass


class CapacityExceededError(LedgerError):
    pass


class PaymentIncompleteError(LedgerError):
    pass


class InvalidStateError(LedgerError):
    pass


class UnauthorizedError(LedgerError):
    pass


class ContentionError(LedgerError):
    """Lock wait timed out or the store reported a deadlock; the caller may retry."""
