# ============================================================================
# Stock Token Ledger v1.0.0
# Query Retry Policy - Ledger Read Backoff
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Attempt budget and delays for HTTP 429 / 5xx / transport errors
#
# Only read-only ledger queries are retried. Submissions (create, mint,
# burn, associate, transfer) are sent exactly once.
#
# ============================================================================

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class QueryRetryPolicy:
    """
    Exponential backoff schedule for ledger queries.

    Example Usage:
        policy = QueryRetryPolicy()
        for attempt in range(policy.attempts):
            ...
            await asyncio.sleep(policy.delay_for(attempt))
    """
    attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    jitter: float = 0.25

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after the given zero-based failed attempt."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter > 0:
            delay += delay * self.jitter * random.random()
        return delay

    def has_next(self, attempt: int) -> bool:
        return attempt + 1 < self.attempts

    def attempt_timeout(self, call_budget: float) -> float:
        """
        Per-attempt HTTP timeout that fits every attempt and the delays
        between them inside call_budget seconds, with one attempt's share
        left over.
        """
        worst_delays = sum(
            min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
            * (1 + self.jitter)
            for attempt in range(self.attempts - 1)
        )
        remaining = max(call_budget - worst_delays, call_budget / 2)
        return remaining / (self.attempts + 1)
