"""Retry policy: exponential backoff with jitter, and per-queue defaults.

Delay formula (attempt is 1-based, the attempt that just failed)::

    delay = min(base_delay * multiplier ** (attempt - 1), max_delay) ± jitter
    delay = max(delay, retry_after)      # ledger Retry-After hint is a floor

Example:
    >>> backoff = ExponentialBackoff(base_delay=2.0, jitter=False)
    >>> [backoff.next_delay(a) for a in (1, 2, 3)]
    [2.0, 4.0, 8.0]
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from ledgersync.core.enums import Priority
from ledgersync.execution.models import QueueName, TriggerSource


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Attributes:
        base_delay: Delay after the first failed attempt, in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 5.0
    max_delay: float = 3600.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait before the attempt following *attempt*."""
        exponent = max(0, attempt - 1)
        delay = min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        if retry_after is not None:
            delay = max(delay, float(retry_after))
        return delay


@dataclass(frozen=True)
class QueuePolicy:
    """Static policy for one named queue."""

    name: QueueName
    concurrency: int
    max_attempts: int
    backoff_base_seconds: float
    max_stalled: int


QUEUE_POLICIES: dict[QueueName, QueuePolicy] = {
    QueueName.HIGH: QueuePolicy(QueueName.HIGH, concurrency=3, max_attempts=5,
                                backoff_base_seconds=2.0, max_stalled=1),
    QueueName.NORMAL: QueuePolicy(QueueName.NORMAL, concurrency=5, max_attempts=3,
                                  backoff_base_seconds=5.0, max_stalled=2),
    QueueName.BATCH: QueuePolicy(QueueName.BATCH, concurrency=2, max_attempts=2,
                                 backoff_base_seconds=10.0, max_stalled=1),
}


def select_queue(
    priority: Priority,
    trigger: TriggerSource,
    metadata: dict | None = None,
    migration_id: str | None = None,
) -> QueueName:
    """Route a job to its named queue.

    Migration jobs always go to ``batch``.  Approval events and explicit
    high priority go to ``high``; everything else to ``normal``.
    """
    if migration_id is not None:
        return QueueName.BATCH
    if priority is Priority.HIGH:
        return QueueName.HIGH
    if trigger is TriggerSource.EVENT and (metadata or {}).get("reason") == "approval":
        return QueueName.HIGH
    return QueueName.NORMAL


def backoff_for(
    queue: QueueName,
    *,
    multiplier: float = 2.0,
    max_delay: float = 3600.0,
    jitter_range: float = 0.25,
) -> ExponentialBackoff:
    """Build the backoff strategy for *queue* from its policy."""
    policy = QUEUE_POLICIES[queue]
    return ExponentialBackoff(
        base_delay=policy.backoff_base_seconds,
        max_delay=max_delay,
        multiplier=multiplier,
        jitter=jitter_range > 0,
        jitter_range=jitter_range,
    )
