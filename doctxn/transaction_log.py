"""Persistence of transaction records."""

import logging
from typing import List, Optional

from .config import TransactionConfig
from .models.transaction import TransactionRecord, TransactionStatus
from .store import DocumentStore

logger = logging.getLogger(__name__)


class TransactionLog:
    """Reads and writes transaction records in the configured collection."""

    def __init__(self, store: DocumentStore, config: Optional[TransactionConfig] = None):
        self.store = store
        self.config = config or TransactionConfig()

    @property
    def scope(self) -> str:
        return self.config.transaction_scope

    @property
    def collection(self) -> str:
        return self.config.transaction_collection

    def save(self, record: TransactionRecord) -> None:
        """Upsert the full record."""
        self.store.replace_one(
            self.scope, self.collection, record.id, record.to_document(), upsert=True
        )
        logger.debug("Transaction %s saved as %s", record.id, record.status.value)

    def save_if_pending(self, record: TransactionRecord, expected_ts: float) -> bool:
        """
        Overwrite a pending record only if its timestamp is still ``expected_ts``.

        Returns False when the record was claimed or finished elsewhere.
        """
        fields = record.to_document()
        del fields["_id"]
        updated = self.store.find_one_and_update(
            self.scope,
            self.collection,
            {"_id": record.id, "status": TransactionStatus.PENDING.value, "ts": expected_ts},
            {"$set": fields},
        )
        if updated is None:
            logger.warning("Transaction %s no longer pending at ts=%s", record.id, expected_ts)
            return False
        logger.debug("Transaction %s saved as %s", record.id, record.status.value)
        return True

    def get(self, txn_id: str) -> Optional[TransactionRecord]:
        document = self.store.find_one(self.scope, self.collection, {"_id": txn_id})
        return TransactionRecord.from_document(document) if document else None

    def find_by_status(self, status: TransactionStatus) -> List[TransactionRecord]:
        documents = self.store.find(self.scope, self.collection, {"status": status.value})
        return [TransactionRecord.from_document(d) for d in documents]

    def find_stale_pending(self, older_than: float) -> List[TransactionRecord]:
        """Pending records whose last transition happened before ``older_than``."""
        documents = self.store.find(
            self.scope,
            self.collection,
            {"status": TransactionStatus.PENDING.value, "ts": {"$lt": older_than}},
        )
        return [TransactionRecord.from_document(d) for d in documents]

    def claim_initial(self, now: float) -> Optional[TransactionRecord]:
        """Atomically claim one unclaimed initial record."""
        document = self.store.find_one_and_update(
            self.scope,
            self.collection,
            {"status": TransactionStatus.INITIAL.value, "claimed": None},
            {"$set": {"claimed": now}},
            return_after=True,
        )
        if document is None:
            return None
        logger.info("Claimed initial transaction %s", document["_id"])
        return TransactionRecord.from_document(document)

    def claim_pending(self, record: TransactionRecord, now: float) -> Optional[TransactionRecord]:
        """
        Claim a stale pending record by bumping its timestamp.

        The update is keyed on the exact timestamp previously observed, so
        only one of several concurrent sweepers can win the claim.
        """
        document = self.store.find_one_and_update(
            self.scope,
            self.collection,
            {
                "_id": record.id,
                "status": TransactionStatus.PENDING.value,
                "ts": record.timestamp,
            },
            {"$set": {"ts": now}},
            return_after=True,
        )
        if document is None:
            return None
        logger.info("Claimed stale pending transaction %s", record.id)
        return TransactionRecord.from_document(document)
