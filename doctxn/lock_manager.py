"""Advisory per-document locks built on conditional updates."""

import logging
import random
import threading
import time
from typing import Callable, Optional

from .config import TransactionConfig
from .document_ref import DocumentRef
from .exceptions.transaction_exceptions import DocumentNotFoundError, LockTimeoutError
from .store import DocumentStore

logger = logging.getLogger(__name__)

JITTER_LOW = 0.9
JITTER_HIGH = 1.1


class LockManager:
    """
    Acquires and releases exclusive locks on participant documents.

    A lock is a timestamp stored in ``config.lock_field``. It is taken with a
    conditional update that only matches while the field is absent (or holds
    the broken-lock sentinel ``None``), so at most one holder exists at a time.
    A lock older than ``config.max_lock_age`` may be broken by anyone; the
    break is keyed on the exact timestamp observed, so only one breaker wins.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[TransactionConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config or TransactionConfig()
        self.clock = clock
        self.sleep = sleep

    @property
    def lock_field(self) -> str:
        return self.config.lock_field

    def acquire(
        self,
        ref: DocumentRef,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Lock ``ref``'s document, retrying with jittered backoff.

        On success the locked document becomes the ref's cached snapshot.

        Raises:
            DocumentNotFoundError: If the document does not exist
            LockTimeoutError: If ``deadline`` passes or ``cancel`` is set
        """
        attempts = 0
        while True:
            attempts += 1
            locked = self.store.find_one_and_update(
                ref.scope,
                ref.collection,
                {"_id": ref.doc_id, self.lock_field: None},
                {"$set": {self.lock_field: self.clock()}},
                return_after=True,
            )
            if locked is not None:
                ref.set_document(locked)
                logger.debug(
                    "Locked %s.%s _id=%r after %d attempt(s)",
                    ref.scope, ref.collection, ref.doc_id, attempts,
                )
                return

            if cancel is not None and cancel.is_set():
                raise LockTimeoutError(f"Lock acquisition cancelled for _id={ref.doc_id!r}")
            if deadline is not None and self.clock() >= deadline:
                raise LockTimeoutError(
                    f"Timed out locking _id={ref.doc_id!r} after {attempts} attempt(s)"
                )

            if not self.check_stuck_lock(ref):
                # Lock was cleared in the meantime, retry straight away
                continue

            self.sleep(self.backoff_interval())

    def check_stuck_lock(self, ref: DocumentRef) -> bool:
        """
        Inspect a lock that blocked acquisition, breaking it when stale.

        Returns True when the document is still locked (the caller should
        back off), False when the lock is already gone.

        Raises:
            DocumentNotFoundError: If the document has vanished
        """
        current = self.store.find_one(ref.scope, ref.collection, {"_id": ref.doc_id})
        if current is None:
            raise DocumentNotFoundError(ref.collection, ref.doc_id)

        locked_at = current.get(self.lock_field)
        if locked_at is None:
            return False

        age = self.clock() - locked_at
        if age > self.config.max_lock_age:
            self.break_lock(ref, locked_at)
        return True

    def break_lock(self, ref: DocumentRef, observed: float) -> bool:
        """Clear a stale lock only if it still holds ``observed``. Returns True on success."""
        broken = self.store.find_one_and_update(
            ref.scope,
            ref.collection,
            {"_id": ref.doc_id, self.lock_field: observed},
            {"$set": {self.lock_field: None}},
        )
        if broken is not None:
            logger.warning(
                "Broke stale lock on %s.%s _id=%r (locked at %s)",
                ref.scope, ref.collection, ref.doc_id, observed,
            )
            return True
        return False

    def release(self, ref: DocumentRef) -> None:
        """Clear the lock field unconditionally. Safe to repeat."""
        self.store.find_one_and_update(
            ref.scope,
            ref.collection,
            {"_id": ref.doc_id},
            {"$unset": {self.lock_field: 1}},
        )
        logger.debug("Released %s.%s _id=%r", ref.scope, ref.collection, ref.doc_id)

    def backoff_interval(self) -> float:
        jitter = JITTER_LOW + (JITTER_HIGH - JITTER_LOW) * random.random()
        return self.config.backoff_interval * jitter
