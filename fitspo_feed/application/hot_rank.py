"""
Hot posts ranking cache
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import time

from ..domain.models import Post, RankedEntry
from .aggregator import CandidateAggregator

logger = logging.getLogger(__name__)


def rank_posts(candidates: Sequence[Post], top_n: int) -> List[Tuple[RankedEntry, Post]]:
    """Order by like count, more recent first on ties, and keep the top N"""
    ordered = sorted(candidates, key=lambda p: (p.likes, p.timestamp), reverse=True)
    return [
        (RankedEntry(post_id=post.id, score=post.likes, rank=idx), post)
        for idx, post in enumerate(ordered[:top_n], start=1)
    ]


@dataclass(frozen=True)
class RankingSnapshot:
    """Complete ranking as of one refresh; replaced as a whole"""
    entries: Tuple[RankedEntry, ...] = ()
    posts: Tuple[Post, ...] = ()
    by_id: Dict[str, RankedEntry] = field(default_factory=dict)
    refreshed_at: Optional[float] = None
    refreshed_wall: Optional[datetime] = None


class HotRankStore:
    """
    Cached Top-N ranking shared by every consumer in the process.

    rank() is a synchronous lookup against the last good snapshot.
    refresh_if_needed() recomputes it when older than the TTL, with at most
    one refresh in flight.
    """

    def __init__(
        self,
        aggregator: CandidateAggregator,
        ttl_seconds: float = 300,
        top_n: int = 10,
        clock: Callable[[], float] = time.monotonic
    ):
        self.aggregator = aggregator
        self.ttl_seconds = ttl_seconds
        self.top_n = top_n
        self._clock = clock
        self._snapshot = RankingSnapshot()
        self._inflight: Optional[asyncio.Task] = None

    @property
    def refreshed_at(self) -> Optional[datetime]:
        return self._snapshot.refreshed_wall

    def is_stale(self) -> bool:
        refreshed = self._snapshot.refreshed_at
        if refreshed is None:
            return True
        return self._clock() - refreshed > self.ttl_seconds

    def rank(self, post_id: str) -> Optional[int]:
        """1-based rank of the post in the cached ranking, or None"""
        entry = self._snapshot.by_id.get(post_id)
        return entry.rank if entry else None

    def entries(self) -> List[RankedEntry]:
        return list(self._snapshot.entries)

    def top_posts(self) -> List[Post]:
        return list(self._snapshot.posts)

    async def refresh_if_needed(self) -> bool:
        """
        Refresh the ranking if it is stale.

        Callers arriving while a refresh is running wait for that refresh
        instead of starting another. Cancelling one caller does not cancel
        the shared refresh. Returns True when a fresh ranking is cached.
        """
        if not self.is_stale():
            return True

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())

        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> bool:
        try:
            candidates = await self.aggregator.collect()
        except Exception as e:
            logger.warning(f"Hot rank refresh failed, keeping previous ranking: {e}")
            return False
        finally:
            self._inflight = None

        ranked = rank_posts(candidates, self.top_n)
        self._snapshot = RankingSnapshot(
            entries=tuple(entry for entry, _ in ranked),
            posts=tuple(post for _, post in ranked),
            by_id={entry.post_id: entry for entry, _ in ranked},
            refreshed_at=self._clock(),
            refreshed_wall=datetime.now(timezone.utc)
        )
        logger.info(f"Hot rank refreshed: {len(ranked)} of {len(candidates)} candidates ranked")
        return True
