# /backend/storage/exceptions.py
"""
Exception types raised by the `storage` package.

Guidelines
----------
- Reads never raise these: a failed read is logged and degrades to an empty
  result. Writes raise `StorageError` so the caller can answer with a 500.
- Log the underlying failure with `logger.exception` before raising, with
  the owning user / record ids in `extra`.
"""

from __future__ import annotations

__all__ = [
    "StorageError",
    "InvalidStatusTransition",
]


class StorageError(Exception):
    """
    Raised when a write against the persistence layer fails.

    The message is generic and safe to show to a client
    ("Failed to create trading account"); the underlying driver error is
    chained as ``__cause__`` and logged server-side.
    """
    pass


class InvalidStatusTransition(ValueError):
    """
    Raised when a referral earning would move backwards in its lifecycle.

    Parameters
    ----------
    current:
        The stored status.
    requested:
        The status the caller asked for.

    Example
    -------
    >>> raise InvalidStatusTransition(current="paid", requested="pending")
    Traceback (most recent call last):
        ...
    InvalidStatusTransition: Cannot move referral earning from 'paid' to 'pending'
    """

    __slots__ = ("current", "requested")

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move referral earning from '{current}' to '{requested}'")
