"""Demonstration of multi-document transactions over a single-document-atomic store."""

import logging

from doctxn.config import TransactionConfig
from doctxn.exceptions.transaction_exceptions import RollbackException
from doctxn.store import InMemoryDocumentStore
from doctxn.transfers import create_transfer

SCOPE = "bank"
COLLECTION = "accounts"


def print_status(store: InMemoryDocumentStore, config: TransactionConfig) -> None:
    print("\n=== STORE STATUS ===")
    for account in store.find(SCOPE, COLLECTION, {}):
        print(f"{account['_id']}: value={account['value']!r} locked={'lock' in account}")
    for record in store.find(config.transaction_scope, config.transaction_collection, {}):
        print(f"{record['_id']}: {record['status']} payload={record['payload']}")
    print("====================\n")


def reset_accounts(store: InMemoryDocumentStore, accounts, validator=None) -> None:
    store.create_collection(SCOPE, COLLECTION, validator=validator)
    for account_id, value in accounts.items():
        if value is not None:
            store.insert_one(SCOPE, COLLECTION, {"_id": account_id, "value": value})


def run_transfer(store, config, amount) -> None:
    transaction = create_transfer(store, SCOPE, COLLECTION, "A", "B", amount, config=config)
    try:
        transaction.execute()
        print(f"✓ Transaction {transaction.id} applied")
    except RollbackException as e:
        print(f"✗ Transaction {transaction.id} failed ({e.kind.value}): {e}")
        print(f"✓ Rolled back, record status: {transaction.status.value}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    store = InMemoryDocumentStore()
    config = TransactionConfig()

    print("=== MULTI-DOCUMENT TRANSACTION DEMO ===\n")

    print("1. Transfer 10 from A(100) to B(50)...")
    reset_accounts(store, {"A": 100, "B": 50})
    run_transfer(store, config, 10)
    print_status(store, config)

    print("2. Transfer when B does not exist...")
    reset_accounts(store, {"A": 100, "B": None})
    run_transfer(store, config, 10)
    print_status(store, config)

    print("3. Transfer when B holds a non-numeric value...")
    reset_accounts(store, {"A": 100, "B": "dummy"})
    run_transfer(store, config, 10)
    print_status(store, config)

    print("4. Transfer that breaks the store rule value <= 100...")
    reset_accounts(store, {"A": 20, "B": 100}, validator=lambda d: d.get("value", 0) <= 100)
    run_transfer(store, config, 10)
    print_status(store, config)


if __name__ == "__main__":
    main()
