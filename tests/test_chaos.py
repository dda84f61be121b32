"""Tests for the chaos store proxy and its effect on transactions."""

import pytest
from unittest.mock import patch

from chaos.chaos_config import ChaosConfig
from chaos.chaos_proxy import ChaosStore
from chaos.chaos_runner import run
from chaos.exceptions.chaos_exception import ChaosException
from doctxn.config import TransactionConfig
from doctxn.exceptions.transaction_exceptions import ErrorKind, RollbackException, StoreError
from doctxn.models.transaction import TransactionStatus
from doctxn.store import InMemoryDocumentStore
from doctxn.transaction_log import TransactionLog
from doctxn.transfers import create_transfer


@pytest.fixture
def real_store():
    store = InMemoryDocumentStore()
    store.insert_one("bank", "accounts", {"_id": "a", "value": 100})
    store.insert_one("bank", "accounts", {"_id": "b", "value": 50})
    return store


class TestChaosConfig:
    """Tests for failure and delay injection."""

    def test_disabled_never_fails(self):
        """Test that a disabled config only counts operations."""
        config = ChaosConfig(enabled=False, failure_rate=1.0)
        for _ in range(10):
            config.maybe_fail("op")
        assert config.get_metrics()["Summary"]["total_operations"] == 10
        assert config.failures_injected == 0

    def test_always_fails(self):
        """Test that failure_rate=1.0 always raises ChaosException."""
        config = ChaosConfig(enabled=True, failure_rate=1.0)
        with pytest.raises(ChaosException) as exc_info:
            config.maybe_fail("replace_one")
        assert str(exc_info.value) == "ChaosException: Chaos failure occurred during replace_one."
        assert config.failures_by_context == {"replace_one": 1}

    def test_contexts_restrict_injection(self):
        """Test that only listed contexts receive chaos."""
        config = ChaosConfig(enabled=True, failure_rate=1.0, contexts={"replace_one"})
        config.maybe_fail("find_one")
        with pytest.raises(ChaosException):
            config.maybe_fail("replace_one")

    @patch("chaos.chaos_config.time.sleep")
    def test_delay_recorded(self, mock_sleep):
        """Test that injected delays are slept and recorded."""
        config = ChaosConfig(enabled=True, delay_chance=1.0, max_delay=0.5)
        config.maybe_delay("find")
        mock_sleep.assert_called_once()
        assert config.delays_injected == 1
        assert 0 <= config.total_delay_time <= 0.5

    def test_chaos_exception_is_store_error(self):
        """Test that injected faults classify as store failures."""
        assert ChaosException("x").kind is ErrorKind.STORE_FAILURE
        assert issubclass(ChaosException, StoreError)

    @patch("builtins.print")
    def test_print_metrics(self, mock_print):
        """Test that metrics are printed."""
        ChaosConfig().print_metrics()
        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        assert "Chaos Metrics Summary" in printed
        assert "No failures recorded." in printed


class TestChaosStore:
    """Tests for transactions running over a faulty store."""

    def test_passthrough_when_disabled(self, real_store):
        """Test that a disabled proxy behaves like the wrapped store."""
        store = ChaosStore(real_store, ChaosConfig(enabled=False))
        assert create_transfer(store, "bank", "accounts", "a", "b", 10,
                               config=TransactionConfig.for_testing()).execute() is True
        assert real_store.find_one("bank", "accounts", {"_id": "a"})["value"] == 90

    def test_record_write_failure_aborts(self, real_store):
        """Test that a store failing every replace aborts before any mutation."""
        chaos = ChaosConfig(enabled=True, failure_rate=1.0, contexts={"replace_one"})
        store = ChaosStore(real_store, chaos)
        config = TransactionConfig.for_testing()
        transaction = create_transfer(store, "bank", "accounts", "a", "b", 10, config=config)

        # The pending record itself is written with replace_one, so the
        # transaction aborts before any participant is touched
        with pytest.raises(RollbackException) as exc_info:
            transaction.execute()

        assert exc_info.value.kind is ErrorKind.STORE_FAILURE
        assert real_store.find_one("bank", "accounts", {"_id": "a"}) == {"_id": "a", "value": 100}

    def test_lock_failure_aborts(self, real_store):
        """Test that a store failure while locking aborts without mutation."""
        chaos = ChaosConfig(enabled=True, failure_rate=1.0, contexts={"find_one_and_update"})
        store = ChaosStore(real_store, chaos)
        config = TransactionConfig.for_testing()
        transaction = create_transfer(store, "bank", "accounts", "a", "b", 10, config=config)

        with pytest.raises(RollbackException) as exc_info:
            transaction.execute()

        assert exc_info.value.kind is ErrorKind.STORE_FAILURE
        assert isinstance(exc_info.value.cause, ChaosException)
        assert TransactionLog(real_store, config).get(transaction.id).status is TransactionStatus.CANCELLED
        assert real_store.find_one("bank", "accounts", {"_id": "b"})["value"] == 50

    def test_participant_write_failure_restores_values(self, real_store):
        """Test that a failed participant write is rolled back from the backup."""
        config = TransactionConfig.for_testing()
        chaos = ChaosConfig(enabled=False, failure_rate=1.0)
        store = ChaosStore(real_store, chaos)
        transaction = create_transfer(store, "bank", "accounts", "a", "b", 10, config=config)
        original_persist = transaction.documents[1].persist
        calls = []

        def persist_failing_once(target_store):
            calls.append(target_store)
            chaos.enabled = len(calls) == 1
            try:
                return original_persist(target_store)
            finally:
                chaos.enabled = False

        transaction.documents[1].persist = persist_failing_once

        with pytest.raises(RollbackException) as exc_info:
            transaction.execute()

        assert exc_info.value.kind is ErrorKind.STORE_FAILURE
        assert exc_info.value.rolled_back
        assert transaction.status is TransactionStatus.CANCELLED
        assert real_store.find_one("bank", "accounts", {"_id": "a"}) == {"_id": "a", "value": 100}
        assert real_store.find_one("bank", "accounts", {"_id": "b"}) == {"_id": "b", "value": 50}


class TestChaosRunner:
    """Tests for the contention script."""

    @patch("builtins.print")
    def test_run_reports_config_and_leftovers(self, mock_print):
        """Test that a short run prints its config and the records still pending."""
        total = run(duration=0.1, workers=2)

        printed = [str(call.args[0]) for call in mock_print.call_args_list if call.args]
        assert any(line.startswith("[CHAOS TEST] Transaction config: {") for line in printed)
        assert any("'sweeper_stale_after': 0.5" in line for line in printed)
        assert any(line.startswith("[CHAOS TEST] Still pending after sweep:") for line in printed)
        assert isinstance(total, int)
