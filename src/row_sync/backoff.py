"""
Backoff Policies
tenacity wait strategies for the sync loops and the loop supervisor
"""

from typing import Callable

from tenacity import RetryCallState, wait_exponential, wait_fixed

from .config import BackoffConfig

# Any tenacity wait strategy: wait_fixed, wait_exponential, or a plain callable
WaitStrategy = Callable[[RetryCallState], float]


def build_wait(config: BackoffConfig) -> WaitStrategy:
    """Select the wait strategy named by the configuration"""
    if config.strategy == "fixed":
        return wait_fixed(config.delay_seconds)
    if config.strategy == "exponential":
        return wait_exponential(
            multiplier=config.delay_seconds,
            max=config.max_delay_seconds,
            exp_base=config.multiplier,
        )
    raise ValueError(f"Unknown backoff strategy: {config.strategy}")


def delay_for(wait: WaitStrategy, attempt: int) -> float:
    """Seconds the strategy prescribes after the given consecutive failure (1-based).

    Used where the waiting happens outside a Retrying loop, between sync cycles
    or before a loop restart.
    """
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = max(attempt, 1)
    return wait(state)
