from typing import List, Optional


class LibraryError(Exception):
    """Base exception for ledger errors."""


class NotFoundError(LibraryError):
    """No matching book, member, transaction or reservation."""


class AmbiguousMatchError(LibraryError):
    """A lookup query matched more than one record."""

    def __init__(self, message: str, candidates: Optional[List[object]] = None) -> None:
        super().__init__(message)
        self.candidates = list(candidates or [])


class ValidationError(LibraryError):
    """A user-supplied value is malformed or out of range."""


class LimitExceededError(LibraryError):
    """The member already holds the maximum number of books."""


class UnavailableError(LibraryError):
    """No free copies of the book are left."""


class ConflictError(LibraryError):
    """The operation conflicts with the current state of a record."""


class OperationCancelledError(LibraryError):
    """The user declined a confirmation prompt."""


class StorageError(LibraryError):
    """The document on disk could not be read."""
