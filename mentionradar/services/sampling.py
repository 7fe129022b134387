"""
Representative sampling for batch enrichment

A batch summary sees only a sample of the new results. The sample mixes
the most engaged, most recent, lowest rated and longest items, then fills
the remaining slots at random.
"""
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

MIN_SAMPLE_SIZE = 25
MAX_SAMPLE_SIZE = 150
TARGET_COVERAGE_PERCENT = 15
PER_HEURISTIC = 5


@dataclass
class SampleItem:
    id: str
    content: str
    title: Optional[str] = None
    engagement: Optional[float] = None
    rating: Optional[float] = None
    created_at: Optional[datetime] = None


def adaptive_sample_size(total_count: int) -> int:
    """15% of the batch, never fewer than 25 nor more than 150"""
    target = math.ceil(total_count * TARGET_COVERAGE_PERCENT / 100)
    return max(MIN_SAMPLE_SIZE, min(target, MAX_SAMPLE_SIZE))


def select_representative_sample(
    items: Sequence[SampleItem],
    sample_size: int,
    shuffle: Optional[Callable[[List[SampleItem]], None]] = None,
) -> List[SampleItem]:
    if len(items) <= sample_size:
        return list(items)

    selected: List[SampleItem] = []
    seen = set()

    def add(candidates):
        for item in candidates[:PER_HEURISTIC]:
            if len(selected) >= sample_size:
                return
            if item.id not in seen:
                seen.add(item.id)
                selected.append(item)

    add(sorted((i for i in items if i.engagement is not None), key=lambda i: i.engagement, reverse=True))
    add(sorted((i for i in items if i.created_at is not None), key=lambda i: i.created_at, reverse=True))
    add(sorted((i for i in items if i.rating is not None), key=lambda i: i.rating))
    add(sorted(items, key=lambda i: len(i.content or ""), reverse=True))

    remaining = [i for i in items if i.id not in seen]
    (shuffle or random.shuffle)(remaining)
    selected.extend(remaining[: max(sample_size - len(selected), 0)])
    return selected
