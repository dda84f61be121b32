"""Exception hierarchy for the transaction coordinator."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of a failed transaction attempt."""

    NOT_FOUND = "not_found"
    LOCK_TIMEOUT = "lock_timeout"
    APPLICATION_FAILURE = "application_failure"
    STORE_FAILURE = "store_failure"


class TransactionException(Exception):
    """Base class for all exceptions raised by the coordinator."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class DocumentNotFoundError(TransactionException):
    """A registered participant does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, collection: str, doc_id):
        super().__init__(f"cannot find document in {collection}: _id={doc_id!r}")
        self.collection = collection
        self.doc_id = doc_id


class LockTimeoutError(TransactionException):
    """Lock acquisition passed its deadline or was cancelled."""

    kind = ErrorKind.LOCK_TIMEOUT


class StoreError(TransactionException):
    """An operation against the backing store failed."""

    kind = ErrorKind.STORE_FAILURE


class DocumentValidationError(StoreError):
    """The store rejected a write because of a validation rule."""


class TransactionStateError(TransactionException):
    """An operation was attempted in a state that does not allow it."""


class TransactionConflictError(TransactionException):
    """The stored record moved on without us; another executor owns it now."""

    kind = ErrorKind.STORE_FAILURE


class RollbackException(TransactionException):
    """A transaction failed and was rolled back.

    ``cause`` holds the original exception. When the rollback itself failed,
    ``rollback_error`` holds that failure and the transaction was left pending
    for the recovery sweeper.
    """

    def __init__(
        self,
        kind: ErrorKind,
        cause: BaseException,
        rollback_error: Optional[BaseException] = None,
    ):
        super().__init__(f"cause: {_describe(cause)}", kind)
        self.cause = cause
        self.rollback_error = rollback_error

    @property
    def rolled_back(self) -> bool:
        return self.rollback_error is None


def _describe(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    return message if isinstance(message, str) else str(exc)


def classify(exc: BaseException, default: ErrorKind) -> ErrorKind:
    """Return the error kind carried by ``exc``, or ``default``."""
    kind = getattr(exc, "kind", None)
    return kind if isinstance(kind, ErrorKind) else default
