"""Three-tier crawl frontier with a per-run visited set."""

from collections import deque
from itertools import count
from typing import Deque, Dict, Iterable, Optional, Set

from .constants import CRITICAL_KEYWORDS, PRIORITY_KEYWORDS
from .models import CrawlTask, CrawlTier
from .urls import normalize_url, origin_of

TIER_ORDER = (CrawlTier.critical, CrawlTier.priority, CrawlTier.normal)


def classify_tier(url: str) -> CrawlTier:
    """Tier for a discovered link, decided by keywords in its path."""
    path = url[len(origin_of(url)):].lower()
    if any(keyword in path for keyword in CRITICAL_KEYWORDS):
        return CrawlTier.critical
    if any(keyword in path for keyword in PRIORITY_KEYWORDS):
        return CrawlTier.priority
    return CrawlTier.normal


class Frontier:
    """
    Pending URLs in three FIFO tiers.

    Critical tasks always pop before priority ones, priority before normal.
    A URL is queued at most once per run and is never queued again after it
    has been visited.
    """

    def __init__(self):
        self._queues: Dict[CrawlTier, Deque[CrawlTask]] = {tier: deque() for tier in TIER_ORDER}
        self._pending: Dict[str, CrawlTier] = {}
        self._pending_counts: Dict[CrawlTier, int] = {tier: 0 for tier in TIER_ORDER}
        self._visited: Set[str] = set()
        self._sequence = count()

    def _enqueue(self, url: str, tier: CrawlTier, front: bool) -> bool:
        key = normalize_url(url)
        if key in self._pending or key in self._visited:
            return False
        self._pending[key] = tier
        self._pending_counts[tier] += 1
        task = CrawlTask(url=key, tier=tier, sequence=next(self._sequence))
        if front:
            self._queues[tier].appendleft(task)
        else:
            self._queues[tier].append(task)
        return True

    def push(self, url: str, tier: CrawlTier = CrawlTier.normal) -> bool:
        return self._enqueue(url, tier, front=False)

    def push_front(self, url: str, tier: CrawlTier = CrawlTier.normal) -> bool:
        """Queue ahead of everything already waiting in the tier."""
        return self._enqueue(url, tier, front=True)

    def extend(self, urls: Iterable[str], tier: Optional[CrawlTier] = None) -> int:
        """Push many URLs, classifying each one when no tier is given."""
        added = 0
        for url in urls:
            if self.push(url, tier or classify_tier(url)):
                added += 1
        return added

    def pop(self) -> Optional[CrawlTask]:
        """Next pending task in tier order, or None when drained."""
        for tier in TIER_ORDER:
            queue = self._queues[tier]
            while queue:
                task = queue.popleft()
                if self._pending.get(task.url) is not tier:
                    # visited through another route after being queued
                    continue
                del self._pending[task.url]
                self._pending_counts[tier] -= 1
                return task
        return None

    def has_pending(self, tier: CrawlTier) -> bool:
        return self._pending_counts[tier] > 0

    def mark_visited(self, url: str) -> None:
        key = normalize_url(url)
        tier = self._pending.pop(key, None)
        if tier is not None:
            self._pending_counts[tier] -= 1
        self._visited.add(key)

    def is_visited(self, url: str) -> bool:
        return normalize_url(url) in self._visited

    @property
    def visited(self) -> Set[str]:
        return set(self._visited)

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)
