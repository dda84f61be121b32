"""Multi-document transaction coordinator."""

import logging
import threading
import time
import uuid
from typing import Dict, Any, List, Optional, Callable

from .backup_manager import BackupManager
from .config import TransactionConfig
from .document_ref import DocumentRef
from .exceptions.transaction_exceptions import (
    ErrorKind,
    RollbackException,
    TransactionConflictError,
    TransactionStateError,
    classify,
)
from .lock_manager import LockManager
from .models.transaction import TransactionRecord, TransactionStatus
from .store import DocumentStore
from .transaction_log import TransactionLog

logger = logging.getLogger(__name__)

# Receives the locked participants in registration order plus the payload.
# Mutates ``ref.document`` in place and calls ``ref.mark_dirty()``.
UnitOfWork = Callable[[List[DocumentRef], Dict[str, Any]], Any]


def _generate_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


def _lock_order(ref: DocumentRef):
    return (ref.scope, ref.collection, repr(ref.doc_id))


class Transaction:
    """
    Applies one unit of work to several documents with all-or-nothing semantics.

    State machine: INITIAL -> PENDING -> {APPLIED | CANCELLED}.

    ``execute()`` runs the handler registered for the current state until a
    terminal state is reached, so a transaction rebuilt from a persisted
    PENDING record resumes at the apply step. Every failure after the backup
    is written is rolled back and re-raised as RollbackException.
    """

    def __init__(
        self,
        store: DocumentStore,
        unit_of_work: UnitOfWork,
        payload: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        config: Optional[TransactionConfig] = None,
        lock_manager: Optional[LockManager] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.unit_of_work = unit_of_work
        self.config = config or TransactionConfig()
        self.lock_manager = lock_manager or LockManager(store, self.config, clock=clock)
        self.transaction_log = TransactionLog(store, self.config)
        self.backup_manager = BackupManager()
        self.cancel = cancel
        self.clock = clock

        self.documents: List[DocumentRef] = []
        self.record = TransactionRecord(
            id=_generate_transaction_id(),
            status=TransactionStatus.INITIAL,
            timestamp=clock(),
            payload=payload if payload is not None else {},
            name=name,
        )
        self._locked: List[DocumentRef] = []

        self._transitions = {
            TransactionStatus.INITIAL: self._prepare,
            TransactionStatus.PENDING: self._apply,
        }
        self._rollbacks = {
            TransactionStatus.PENDING: self._cancel,
        }

    @classmethod
    def from_record(
        cls,
        store: DocumentStore,
        record: TransactionRecord,
        unit_of_work: UnitOfWork,
        **kwargs,
    ) -> "Transaction":
        """
        Rebuild a coordinator from a persisted record.

        For a PENDING record the participants are assumed to still carry the
        locks taken by the original owner, so they are released on completion.
        """
        transaction = cls(store, unit_of_work, payload=record.payload, name=record.name, **kwargs)
        transaction.record = record
        transaction.documents = [DocumentRef.for_participant(p) for p in record.participants]
        if record.status is TransactionStatus.PENDING:
            transaction._locked = list(transaction.documents)
        return transaction

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def status(self) -> TransactionStatus:
        return self.record.status

    @property
    def payload(self) -> Dict[str, Any]:
        return self.record.payload

    def add_document(self, scope: str, collection: str, doc_id: Any) -> DocumentRef:
        """Register a participant. Only allowed before execution starts."""
        if self.status is not TransactionStatus.INITIAL:
            raise TransactionStateError(
                f"Transaction {self.id} is {self.status.value}; participants are fixed"
            )
        ref = DocumentRef(scope, collection, doc_id)
        self.documents.append(ref)
        self.record.participants.append(ref.participant)
        return ref

    def submit(self) -> None:
        """Persist the record in INITIAL status so an executor can pick it up."""
        if self.status is not TransactionStatus.INITIAL:
            raise TransactionStateError(f"Transaction {self.id} is {self.status.value}")
        self._save(TransactionStatus.INITIAL)
        logger.info("Transaction %s submitted", self.id)

    def execute(self) -> bool:
        """
        Drive the transaction to a terminal state.

        Returns:
            bool: True if APPLIED, False if CANCELLED (repeat calls are no-ops)

        Raises:
            RollbackException: If this call failed and rolled back
        """
        while not self.status.is_terminal:
            self._transitions[self.status]()
        return self.status is TransactionStatus.APPLIED

    def rollback(self) -> None:
        """Restore all participants from the backup. No-op unless PENDING."""
        handler = self._rollbacks.get(self.status)
        if handler is not None:
            handler()

    def _prepare(self) -> None:
        logger.info(
            "Transaction %s started with %d participant(s)", self.id, len(self.documents)
        )
        deadline = None
        if self.config.lock_timeout is not None:
            deadline = self.clock() + self.config.lock_timeout

        try:
            # Every coordinator locks in the same order, so waits never form a cycle
            for ref in sorted(self.documents, key=_lock_order):
                self.lock_manager.acquire(ref, deadline=deadline, cancel=self.cancel)
                self._locked.append(ref)

            self.record.backup = self.backup_manager.create_backup(self.documents)
            self._save(TransactionStatus.PENDING)
        except Exception as e:
            self._abort(classify(e, ErrorKind.STORE_FAILURE), e)

        logger.info("Transaction %s pending", self.id)

    def _apply(self) -> None:
        try:
            for ref in self.documents:
                ref.load(self.store)
        except Exception as e:
            self._fail(classify(e, ErrorKind.STORE_FAILURE), e)

        try:
            self.unit_of_work(list(self.documents), self.record.payload)
        except Exception as e:
            self._fail(ErrorKind.APPLICATION_FAILURE, e)

        try:
            self._save(TransactionStatus.PENDING)
            self._save_documents()
            self._save(TransactionStatus.APPLIED)
        except TransactionConflictError as e:
            self._relinquish(ErrorKind.STORE_FAILURE, e)
        except Exception as e:
            self._fail(classify(e, ErrorKind.STORE_FAILURE), e)

        self._release_locks()
        logger.info("Transaction %s applied", self.id)

    def _cancel(self) -> None:
        if self.record.backup is None:
            raise TransactionStateError(f"Transaction {self.id} has no backup to restore")

        logger.info("Rolling back transaction %s", self.id)
        self.backup_manager.restore_backup(self.documents, self.record.backup)
        self._save(TransactionStatus.PENDING)
        self._save_documents()
        self._save(TransactionStatus.CANCELLED)
        self._release_locks()
        logger.info("Transaction %s rolled back successfully", self.id)

    def _abort(self, kind: ErrorKind, cause: Exception) -> None:
        """Give up before anything was mutated: unlock and record the cancellation."""
        logger.warning("Transaction %s aborted before apply (%s): %s", self.id, kind.value, cause)
        try:
            self._release_locks()
            self.record.backup = None
            self._save(TransactionStatus.CANCELLED)
        except Exception as e:
            logger.error("Transaction %s could not record its cancellation: %s", self.id, e)
            raise RollbackException(kind, cause, rollback_error=e) from cause
        raise RollbackException(kind, cause) from cause

    def _fail(self, kind: ErrorKind, cause: Exception) -> None:
        logger.warning("Transaction %s failed (%s): %s", self.id, kind.value, cause)
        try:
            self.rollback()
        except TransactionConflictError as e:
            self._relinquish(kind, cause, e)
        except Exception as e:
            logger.error(
                "Rollback of transaction %s failed, left %s for recovery: %s",
                self.id, self.status.value, e,
            )
            raise RollbackException(kind, cause, rollback_error=e) from cause
        raise RollbackException(kind, cause) from cause

    def _relinquish(
        self,
        kind: ErrorKind,
        cause: Exception,
        conflict: Optional[TransactionConflictError] = None,
    ) -> None:
        """Stop touching participants whose record a recovery sweeper has claimed."""
        logger.warning(
            "Transaction %s was claimed by another executor: %s", self.id, conflict or cause
        )
        self._locked = []
        raise RollbackException(kind, cause) from cause

    def _save(self, status: TransactionStatus) -> None:
        """
        Persist a transition. Writes out of PENDING only land while the stored
        timestamp is still the one this coordinator last wrote.
        """
        previous = (self.record.status, self.record.timestamp)
        self.record.status = status
        self.record.timestamp = self.clock()
        try:
            if previous[0] is TransactionStatus.PENDING:
                written = self.transaction_log.save_if_pending(self.record, previous[1])
            else:
                self.transaction_log.save(self.record)
                written = True
        except Exception:
            self.record.status, self.record.timestamp = previous
            raise
        if not written:
            self.record.status, self.record.timestamp = previous
            raise TransactionConflictError(
                f"Transaction {self.id} was claimed by another executor"
            )

    def _save_documents(self) -> None:
        for ref in self.documents:
            ref.persist(self.store)

    def _release_locks(self) -> None:
        while self._locked:
            self.lock_manager.release(self._locked[0])
            self._locked.pop(0)
