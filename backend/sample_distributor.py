"""
Sample Distributor

Partitions a sampled population across a pool of auditors.

Strategies:
1. round-robin (default): record i goes to auditor i mod M
2. random: each record draws a uniform auditor index
3. balanced: same bucket sizes as round-robin, filled in contiguous
   blocks of the original sample order

Coverage invariant: every input record lands in exactly one bucket.
"""

from typing import Dict, List, Optional, Sequence, TypeVar, Union
import logging
import random

from audit_models import AssignmentStrategy, Auditor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition_samples(
    samples: Sequence[T],
    auditor_count: int,
    strategy: Union[AssignmentStrategy, str] = AssignmentStrategy.ROUND_ROBIN,
    rng: Optional[random.Random] = None
) -> List[List[T]]:
    """
    Split `samples` into `auditor_count` buckets.

    Args:
        samples: Records in original sample order
        auditor_count: Number of buckets (M)
        strategy: Strategy enum or tag ("round-robin", "random", "balanced")
        rng: Random source for the random strategy (defaults to module random)

    Returns:
        List of M buckets. An empty list when M is zero.

    Raises:
        InvalidStrategyError: If the strategy tag is not recognized
    """
    strategy = AssignmentStrategy.parse(strategy)
    buckets: List[List[T]] = [[] for _ in range(max(auditor_count, 0))]

    if auditor_count <= 0:
        if samples:
            logger.warning(f"No auditors to distribute {len(samples)} samples across")
        return buckets

    if strategy == AssignmentStrategy.ROUND_ROBIN:
        for index, sample in enumerate(samples):
            buckets[index % auditor_count].append(sample)

    elif strategy == AssignmentStrategy.RANDOM:
        rng = rng or random
        for sample in samples:
            # randrange draws uniformly over [0, M)
            buckets[rng.randrange(auditor_count)].append(sample)

    elif strategy == AssignmentStrategy.BALANCED:
        base_count, remainder = divmod(len(samples), auditor_count)
        start = 0
        for auditor_index in range(auditor_count):
            count = base_count + (1 if auditor_index < remainder else 0)
            buckets[auditor_index].extend(samples[start:start + count])
            start += count

    logger.debug(
        f"Distributed {len(samples)} samples across {auditor_count} auditors "
        f"({strategy.value}): {[len(b) for b in buckets]}"
    )
    return buckets


def assign_samples_to_auditors(
    samples: Sequence[T],
    auditors: Sequence[Auditor],
    strategy: Union[AssignmentStrategy, str] = AssignmentStrategy.ROUND_ROBIN,
    rng: Optional[random.Random] = None
) -> Dict[str, List[T]]:
    """
    Assign samples to auditors, keyed by auditor id in roster order.

    Every auditor gets an entry, even when their bucket is empty.
    """
    buckets = partition_samples(samples, len(auditors), strategy, rng)
    assignments: Dict[str, List[T]] = {}
    for auditor, bucket in zip(auditors, buckets):
        # Repeated roster entries share one bucket rather than dropping records
        assignments.setdefault(auditor.id, []).extend(bucket)
    return assignments
