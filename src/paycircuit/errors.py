"""Shared error types for paycircuit."""


class PaycircuitError(Exception):
    """Base exception for the paycircuit package."""


class TransientError(PaycircuitError):
    """Generic retry-safe transient dependency failure."""


class PersistenceError(PaycircuitError):
    """Raised when a state snapshot cannot be read or written."""
