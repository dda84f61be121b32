"""Recovery of transactions left behind by crashed executors."""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Callable

from .config import TransactionConfig
from .exceptions.transaction_exceptions import RollbackException
from .models.transaction import TransactionRecord, TransactionStatus
from .store import DocumentStore
from .transaction import Transaction, UnitOfWork
from .transaction_log import TransactionLog

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep over stale pending transactions."""

    resumed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.resumed) + len(self.cancelled) + len(self.failed) + len(self.skipped)


def _refuse(documents, payload):
    raise RuntimeError("no unit of work registered for this transaction")


class RecoverySweeper:
    """
    Drives abandoned transactions to a terminal state.

    ``sweep()`` finds PENDING records whose last transition is older than
    ``config.sweeper_stale_after`` and claims each one with a conditional
    update on its exact timestamp, so concurrent sweepers never process the
    same record twice. Under the "cancel" policy a claimed transaction is
    rolled back from its backup. Under "resume" it is re-applied with the unit
    of work registered under the record's name, falling back to cancel when no
    unit is registered.

    The staleness threshold should stay below ``config.max_lock_age``: once a
    crashed owner's locks are old enough to be broken, another transaction may
    modify the participants and restoring the backup would undo its work.

    ``pick_transaction()`` serves the work-queue mode: it claims one submitted
    INITIAL record and executes it.
    """

    def __init__(
        self,
        store: DocumentStore,
        units: Optional[Dict[str, UnitOfWork]] = None,
        config: Optional[TransactionConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.units = dict(units or {})
        self.config = config or TransactionConfig()
        self.clock = clock
        self.transaction_log = TransactionLog(store, self.config)

    def register(self, name: str, unit_of_work: UnitOfWork) -> None:
        self.units[name] = unit_of_work

    def pick_transaction(self) -> Optional[Transaction]:
        """
        Claim and execute one submitted transaction.

        Returns the executed transaction, or None when the queue is empty.
        A RollbackException from the execution propagates to the caller.
        """
        record = self.transaction_log.claim_initial(self.clock())
        if record is None:
            return None

        unit_of_work = self.units.get(record.name)
        if unit_of_work is None:
            logger.warning(
                "No unit of work registered for %r, cancelling transaction %s",
                record.name, record.id,
            )
            record.status = TransactionStatus.CANCELLED
            record.timestamp = self.clock()
            self.transaction_log.save(record)
            return self._rebuild(record, _refuse)

        transaction = self._rebuild(record, unit_of_work)
        transaction.execute()
        return transaction

    def sweep(self) -> SweepReport:
        """Process every stale pending transaction once."""
        report = SweepReport()
        cutoff = self.clock() - self.config.sweeper_stale_after

        for stale in self.transaction_log.find_stale_pending(cutoff):
            record = self.transaction_log.claim_pending(stale, self.clock())
            if record is None:
                logger.debug("Transaction %s claimed elsewhere, skipping", stale.id)
                report.skipped.append(stale.id)
                continue
            self._recover(record, report)

        if report.total:
            logger.info(
                "Sweep finished: %d resumed, %d cancelled, %d failed, %d skipped",
                len(report.resumed), len(report.cancelled),
                len(report.failed), len(report.skipped),
            )
        return report

    def _recover(self, record: TransactionRecord, report: SweepReport) -> None:
        unit_of_work = self.units.get(record.name)

        if self.config.recovery_policy == "resume" and unit_of_work is not None:
            transaction = self._rebuild(record, unit_of_work)
            try:
                transaction.execute()
            except RollbackException as e:
                if not e.rolled_back:
                    logger.error("Transaction %s still pending after resume: %s", record.id, e)
                    report.failed.append(record.id)
                    return
                report.cancelled.append(record.id)
                return
            logger.info("Resumed transaction %s", record.id)
            report.resumed.append(record.id)
            return

        transaction = self._rebuild(record, unit_of_work or _refuse)
        try:
            transaction.rollback()
        except Exception as e:
            logger.error("Could not cancel transaction %s: %s", record.id, e)
            report.failed.append(record.id)
            return
        logger.info("Cancelled transaction %s", record.id)
        report.cancelled.append(record.id)

    def _rebuild(self, record: TransactionRecord, unit_of_work: UnitOfWork) -> Transaction:
        return Transaction.from_record(
            self.store, record, unit_of_work, config=self.config, clock=self.clock
        )
