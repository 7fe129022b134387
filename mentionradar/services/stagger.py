"""
Stagger scheduling

Spreads one platform's due monitors across a time window so a scan cycle
does not hit a rate-limited upstream API with every tenant at once. The
delay is awaited before each monitor's fetch; it orders timing only and
never blocks processing of other monitors.
"""
import math
import random
from typing import Callable, Optional

MINUTE_MS = 60 * 1000
DEFAULT_WINDOW_MS = 5 * MINUTE_MS

# Higher-volume platforms get longer windows
STAGGER_WINDOWS_MS = {
    # Low-volume and developer platforms
    "reddit": 5 * MINUTE_MS,
    "hackernews": 5 * MINUTE_MS,
    "producthunt": 5 * MINUTE_MS,
    "quora": 5 * MINUTE_MS,
    "indiehackers": 5 * MINUTE_MS,
    "github": 5 * MINUTE_MS,
    "devto": 5 * MINUTE_MS,
    "hashnode": 5 * MINUTE_MS,
    "x": 5 * MINUTE_MS,
    # Review sites and app stores
    "trustpilot": 8 * MINUTE_MS,
    "googlereviews": 8 * MINUTE_MS,
    "g2": 8 * MINUTE_MS,
    "yelp": 8 * MINUTE_MS,
    "appstore": 8 * MINUTE_MS,
    "playstore": 8 * MINUTE_MS,
    # High-volume platforms
    "youtube": 10 * MINUTE_MS,
    "amazonreviews": 10 * MINUTE_MS,
}

# Batches this small never stagger
STAGGER_MIN_BATCH = 3


def calculate_stagger_delay(index: int, total: int, window_ms: int = DEFAULT_WINDOW_MS) -> int:
    """floor(index * window / total); 0 for the first monitor or a batch of one"""
    if total <= 1 or index <= 0:
        return 0
    return int(math.floor(index * window_ms / total))


def add_jitter(delay_ms: int, jitter_percent: float = 10, rng: Callable[[], float] = random.random) -> int:
    """Shift a delay by up to +/- jitter_percent of itself, never below zero"""
    if delay_ms <= 0:
        return 0
    max_jitter = delay_ms * jitter_percent / 100
    offset = (rng() * 2 - 1) * max_jitter
    return max(0, int(math.floor(delay_ms + offset)))


def get_stagger_window(platform: str) -> int:
    return STAGGER_WINDOWS_MS.get(platform, DEFAULT_WINDOW_MS)


def should_stagger(index: int, total: int) -> bool:
    return index > 0 and total > STAGGER_MIN_BATCH


def get_stagger_delay(
    platform: str,
    index: int,
    total: int,
    jitter_percent: float = 10,
    rng: Optional[Callable[[], float]] = None,
) -> int:
    """Delay in milliseconds before fetching for the monitor at `index`"""
    if not should_stagger(index, total):
        return 0
    base = calculate_stagger_delay(index, total, get_stagger_window(platform))
    return add_jitter(base, jitter_percent, rng or random.random)


def format_stagger_duration(delay_ms: int) -> str:
    if delay_ms <= 0:
        return "0s"
    seconds = delay_ms // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    if remaining == 0:
        return f"{minutes}m"
    return f"{minutes}m{remaining}s"
