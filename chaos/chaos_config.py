import logging
import random
import threading
import time
from collections import defaultdict
from typing import Iterable, Optional

from .exceptions.chaos_exception import ChaosException

logger = logging.getLogger(__name__)


class ChaosConfig:
    """
    Configuration class for the Chaos library.
    This class allows you to set parameters for enabling chaos, such as failure rates,
    delay chances, and maximum delays, optionally restricted to some store operations.
    It also collects runtime metrics for observability.

    Args:
        enabled (bool): Whether to enable chaos. Defaults to False.
        failure_rate (float): Probability of a failure occurring. Defaults to 0.1.
        delay_chance (float): Probability of a delay occurring. Defaults to 0.2.
        max_delay (float): Maximum delay time in seconds. Defaults to 2.0.
        contexts (Iterable[str]): Operation names chaos applies to. Defaults to all.
    """

    def __init__(
            self,
            enabled: bool = False,
            failure_rate: float = 0.1,
            delay_chance: float = 0.2,
            max_delay: float = 2.0,
            contexts: Optional[Iterable[str]] = None,
    ):
        self.enabled = enabled
        self.failure_rate = failure_rate
        self.delay_chance = delay_chance
        self.max_delay = max_delay
        self.contexts = set(contexts) if contexts is not None else None
        self.lock = threading.Lock()

        # Chaos metrics
        self.total_operations = 0
        self.failures_injected = 0
        self.delays_injected = 0
        self.total_delay_time = 0.0
        self.failures_by_context = defaultdict(int)
        self.delays_by_context = defaultdict(int)

    def applies_to(self, context: str) -> bool:
        return self.enabled and (self.contexts is None or context in self.contexts)

    def maybe_fail(self, context: str) -> None:
        """
        Randomly injects a failure if chaos applies to the context and the random
        chance meets the failure rate.

        Raises ChaosException: If a failure is injected.
        """
        with self.lock:
            self.total_operations += 1
            if not (self.applies_to(context) and random.random() < self.failure_rate):
                return
            self.failures_injected += 1
            self.failures_by_context[context] += 1
        logger.warning("[CHAOS] Injected failure in %s", context)
        raise ChaosException(f"Chaos failure occurred during {context}.")

    def maybe_delay(self, context: str) -> None:
        # Sleeps for a random duration up to the maximum delay.
        if not (self.applies_to(context) and random.random() < self.delay_chance):
            return
        delay = random.uniform(0, self.max_delay)
        with self.lock:
            self.delays_injected += 1
            self.delays_by_context[context] += 1
            self.total_delay_time += delay
        logger.info("[CHAOS] Injected delay of %.2f seconds in %s", delay, context)
        time.sleep(delay)

    def get_metrics(self):
        """
        Returns collected metrics for chaos execution, such as total operations,
        failures injected, delays introduced, and per-context statistics.
        """
        with self.lock:
            return {
                "Summary": {
                    "total_operations": self.total_operations,
                    "failures_injected": self.failures_injected,
                    "delays_injected": self.delays_injected,
                    "total_delay_time": round(self.total_delay_time, 2),
                },
                "Failures by Context": dict(self.failures_by_context),
                "Delays by Context": dict(self.delays_by_context),
            }

    def print_metrics(self):
        metrics = self.get_metrics()

        print("\n=== Chaos Metrics Summary ===")
        for key, value in metrics["Summary"].items():
            print(f"{key.replace('_', ' ').capitalize()}: {value}")

        print("\n--- Failures by Context ---")
        if metrics["Failures by Context"]:
            for context, count in metrics["Failures by Context"].items():
                print(f"{context}: {count}")
        else:
            print("No failures recorded.")

        print("\n--- Delays by Context ---")
        if metrics["Delays by Context"]:
            for context, count in metrics["Delays by Context"].items():
                print(f"{context}: {count}")
        else:
            print("No delays recorded.")
        print("===========================\n")
