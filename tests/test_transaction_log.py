"""Unit tests for TransactionLog."""

import pytest

from doctxn.config import TransactionConfig
from doctxn.models.participant import Participant
from doctxn.models.transaction import TransactionRecord, TransactionStatus
from doctxn.store import InMemoryDocumentStore
from doctxn.transaction_log import TransactionLog


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def transaction_log(store):
    return TransactionLog(store, TransactionConfig(transaction_scope="meta", transaction_collection="txns"))


def make_record(txn_id, status=TransactionStatus.PENDING, timestamp=100.0, **kwargs):
    return TransactionRecord(id=txn_id, status=status, timestamp=timestamp, **kwargs)


class TestSaveAndGet:
    """Tests for persisting records."""

    def test_save_upserts_into_configured_collection(self, transaction_log, store):
        """Test that records land in the configured scope and collection."""
        transaction_log.save(make_record("txn_1"))
        assert store.find_one("meta", "txns", {"_id": "txn_1"})["status"] == "pending"

    def test_save_overwrites(self, transaction_log):
        """Test that saving again replaces the stored record."""
        record = make_record("txn_1", participants=[Participant("db", "c", 1)])
        transaction_log.save(record)
        record.status = TransactionStatus.APPLIED
        transaction_log.save(record)

        loaded = transaction_log.get("txn_1")
        assert loaded.status is TransactionStatus.APPLIED
        assert loaded.participants == [Participant("db", "c", 1)]

    def test_get_missing(self, transaction_log):
        """Test that unknown ids return None."""
        assert transaction_log.get("nope") is None

    def test_find_by_status(self, transaction_log):
        """Test filtering records by status."""
        transaction_log.save(make_record("txn_1"))
        transaction_log.save(make_record("txn_2", status=TransactionStatus.APPLIED))
        assert [r.id for r in transaction_log.find_by_status(TransactionStatus.APPLIED)] == ["txn_2"]


class TestClaims:
    """Tests for stale scans and atomic claims."""

    def test_find_stale_pending(self, transaction_log):
        """Test that only pending records older than the cutoff are returned."""
        transaction_log.save(make_record("old", timestamp=10.0))
        transaction_log.save(make_record("new", timestamp=500.0))
        transaction_log.save(make_record("done", status=TransactionStatus.APPLIED, timestamp=10.0))

        assert [r.id for r in transaction_log.find_stale_pending(100.0)] == ["old"]

    def test_claim_pending_once(self, transaction_log):
        """Test that a stale record can only be claimed with the observed timestamp."""
        transaction_log.save(make_record("old", timestamp=10.0))
        stale = transaction_log.find_stale_pending(100.0)[0]

        claimed = transaction_log.claim_pending(stale, 200.0)
        assert claimed.timestamp == 200.0
        assert transaction_log.claim_pending(stale, 201.0) is None

    def test_claim_initial(self, transaction_log):
        """Test that each initial record is claimed only once."""
        transaction_log.save(make_record("q1", status=TransactionStatus.INITIAL))

        claimed = transaction_log.claim_initial(50.0)
        assert claimed.id == "q1"
        assert claimed.claimed == 50.0
        assert claimed.status is TransactionStatus.INITIAL
        assert transaction_log.claim_initial(51.0) is None

    def test_save_if_pending_requires_observed_timestamp(self, transaction_log):
        """Test that a pending record is only overwritten at the timestamp last written."""
        transaction_log.save(make_record("txn_1", timestamp=100.0))
        record = make_record("txn_1", status=TransactionStatus.APPLIED, timestamp=101.0)

        assert transaction_log.save_if_pending(record, 99.0) is False
        assert transaction_log.get("txn_1").status is TransactionStatus.PENDING

        assert transaction_log.save_if_pending(record, 100.0) is True
        loaded = transaction_log.get("txn_1")
        assert loaded.status is TransactionStatus.APPLIED
        assert loaded.timestamp == 101.0

    def test_save_if_pending_refuses_terminal_record(self, transaction_log):
        """Test that a record finished elsewhere is never overwritten."""
        transaction_log.save(make_record("txn_1", status=TransactionStatus.CANCELLED, timestamp=100.0))
        record = make_record("txn_1", status=TransactionStatus.APPLIED, timestamp=101.0)

        assert transaction_log.save_if_pending(record, 100.0) is False
        assert transaction_log.get("txn_1").status is TransactionStatus.CANCELLED
