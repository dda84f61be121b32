"""Concurrent transfers against a store that fails and stalls at random.

Run with ``python -m chaos.chaos_runner``.
"""

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor

from doctxn.config import TransactionConfig
from doctxn.exceptions.transaction_exceptions import RollbackException
from doctxn.models.transaction import TransactionStatus
from doctxn.recovery import RecoverySweeper
from doctxn.store import InMemoryDocumentStore
from doctxn.transaction_log import TransactionLog
from doctxn.transfers import UNITS, create_transfer
from .chaos_config import ChaosConfig
from .chaos_proxy import ChaosStore
from .exceptions.chaos_exception import ChaosException

SCOPE = "bank"
COLLECTION = "accounts"
ACCOUNTS = [f"account_{i}" for i in range(5)]
INITIAL_BALANCE = 100


def worker(store, config, deadline, outcomes):
    while time.time() < deadline:
        source, target = random.sample(ACCOUNTS, 2)
        transaction = create_transfer(
            store, SCOPE, COLLECTION, source, target, random.randint(1, 20), config=config
        )
        try:
            transaction.execute()
            outcomes["applied"] += 1
        except RollbackException as e:
            key = "cancelled" if e.rolled_back else "stuck"
            outcomes[key] += 1
            print(f"[CHAOS TEST] txn {transaction.id} {key}: {e.kind.value} ({e})")
        except ChaosException as e:
            # Lock release failed after the transaction was applied
            outcomes["applied"] += 1
            print(f"[CHAOS TEST] txn {transaction.id} applied, lock left behind: {e}")


def run(duration: float = 10.0, workers: int = 4) -> int:
    chaos = ChaosConfig(enabled=True, failure_rate=0.05, delay_chance=0.1, max_delay=0.05)
    real_store = InMemoryDocumentStore()
    store = ChaosStore(real_store, chaos)
    config = TransactionConfig(
        backoff_interval=0.01, max_lock_age=1.0, lock_timeout=2.0, sweeper_stale_after=0.5
    )

    print(f"[CHAOS TEST] Transaction config: {config.to_dict()}")

    for account in ACCOUNTS:
        real_store.insert_one(SCOPE, COLLECTION, {"_id": account, "value": INITIAL_BALANCE})

    deadline = time.time() + duration
    outcomes_per_worker = [{"applied": 0, "cancelled": 0, "stuck": 0} for _ in range(workers)]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(worker, store, config, deadline, outcomes)
            for outcomes in outcomes_per_worker
        ]
        for future in futures:
            future.result()

    time.sleep(config.sweeper_stale_after)
    report = RecoverySweeper(real_store, UNITS, config).sweep()

    print("[CHAOS TEST] Outcomes:")
    for key in ("applied", "cancelled", "stuck"):
        print(f"  {key}: {sum(o[key] for o in outcomes_per_worker)}")
    print(f"[CHAOS TEST] Sweeper cancelled {len(report.cancelled)}, failed {len(report.failed)}")
    stuck = TransactionLog(real_store, config).find_by_status(TransactionStatus.PENDING)
    print(f"[CHAOS TEST] Still pending after sweep: {len(stuck)}")
    for record in stuck:
        print(f"  {record.id} ({record.name})")

    total = sum(d["value"] for d in real_store.find(SCOPE, COLLECTION, {}))
    print(f"[CHAOS TEST] Total balance: {total} (expected {INITIAL_BALANCE * len(ACCOUNTS)})")

    print("\n[CHAOS TEST] Chaos metrics:")
    store.print_chaos_metrics()
    return total


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    run()
