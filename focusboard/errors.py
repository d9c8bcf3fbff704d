"""Error taxonomy for focusboard."""

from __future__ import annotations


class FocusboardError(Exception):
    """Base class for all focusboard errors."""


class ConflictError(FocusboardError):
    """A session is already active for this user."""


class NotFoundError(FocusboardError):
    """No session exists for this user."""


class PersistenceError(FocusboardError):
    """The durable store failed to read or write."""


class TransientStoreError(PersistenceError):
    """A retryable store failure (timeout, lost connection)."""


class ClockSkewWarning(UserWarning):
    """Resumed elapsed time was negative or implausibly large."""
