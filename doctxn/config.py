"""
Transaction coordinator configuration.

Usage:
    from doctxn.config import TransactionConfig

    # Defaults (100 ms backoff, 10 s maximum lock age)
    config = TransactionConfig()

    # For unit tests
    config = TransactionConfig.for_testing()

    # From environment
    config = TransactionConfig.from_env()
"""

import os
from dataclasses import dataclass
from typing import Optional, Dict, Any


RECOVERY_POLICIES = ("cancel", "resume")


@dataclass
class TransactionConfig:
    """
    Settings shared by the coordinator, the lock protocol and the sweeper.

    Attributes:
        transaction_scope: Database/scope holding transaction records
        transaction_collection: Collection holding transaction records
        lock_field: Field name of the lock marker on participant documents
        backoff_interval: Base sleep between lock attempts, in seconds
        max_lock_age: Age in seconds after which a lock may be broken
        lock_timeout: Optional deadline for acquiring all locks, in seconds
        sweeper_stale_after: Age in seconds after which a pending record is swept
        recovery_policy: "cancel" or "resume" for swept pending transactions
    """

    transaction_scope: str = "txn"
    transaction_collection: str = "transactions"
    lock_field: str = "lock"
    backoff_interval: float = 0.1
    max_lock_age: float = 10.0
    lock_timeout: Optional[float] = None
    sweeper_stale_after: float = 5.0
    recovery_policy: str = "cancel"

    def __post_init__(self):
        if self.backoff_interval <= 0:
            raise ValueError("backoff_interval must be positive")
        if self.max_lock_age <= 0:
            raise ValueError("max_lock_age must be positive")
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")
        if self.recovery_policy not in RECOVERY_POLICIES:
            raise ValueError(f"Unknown recovery policy: {self.recovery_policy}")

    @classmethod
    def for_testing(cls) -> "TransactionConfig":
        """Config for unit tests with millisecond timings."""
        return cls(
            backoff_interval=0.001,
            max_lock_age=0.2,
            sweeper_stale_after=0.05,
        )

    @classmethod
    def from_env(cls) -> "TransactionConfig":
        """
        Create config from environment variables.

        Environment variables:
            DOCTXN_SCOPE, DOCTXN_COLLECTION, DOCTXN_LOCK_FIELD,
            DOCTXN_BACKOFF, DOCTXN_MAX_LOCK_AGE, DOCTXN_LOCK_TIMEOUT,
            DOCTXN_SWEEPER_STALE_AFTER, DOCTXN_RECOVERY_POLICY
        """
        lock_timeout = os.getenv("DOCTXN_LOCK_TIMEOUT")
        return cls(
            transaction_scope=os.getenv("DOCTXN_SCOPE", "txn"),
            transaction_collection=os.getenv("DOCTXN_COLLECTION", "transactions"),
            lock_field=os.getenv("DOCTXN_LOCK_FIELD", "lock"),
            backoff_interval=float(os.getenv("DOCTXN_BACKOFF", "0.1")),
            max_lock_age=float(os.getenv("DOCTXN_MAX_LOCK_AGE", "10")),
            lock_timeout=float(lock_timeout) if lock_timeout else None,
            sweeper_stale_after=float(os.getenv("DOCTXN_SWEEPER_STALE_AFTER", "5")),
            recovery_policy=os.getenv("DOCTXN_RECOVERY_POLICY", "cancel"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "transaction_scope": self.transaction_scope,
            "transaction_collection": self.transaction_collection,
            "lock_field": self.lock_field,
            "backoff_interval": self.backoff_interval,
            "max_lock_age": self.max_lock_age,
            "lock_timeout": self.lock_timeout,
            "sweeper_stale_after": self.sweeper_stale_after,
            "recovery_policy": self.recovery_policy,
        }
