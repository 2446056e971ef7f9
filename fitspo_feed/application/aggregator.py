"""
Candidate aggregation over a bounded window of the post stream
"""
from collections import Counter
from typing import List
import logging

from ..domain.models import Post
from ..domain.repositories import IDocumentStore
from .pagination import FeedPaginator

logger = logging.getLogger(__name__)


class CandidateAggregator:
    """
    Scan up to `max_pages` pages of the newest-first post stream.

    The store has no server-side top-K by likes, so ranking works on this
    bounded recency window; older popular posts outside it are missed.
    """

    def __init__(self, store: IDocumentStore, page_size: int = 50, max_pages: int = 3):
        self.store = store
        self.page_size = page_size
        self.max_pages = max_pages

    async def collect(self) -> List[Post]:
        """Return the deduplicated candidate set; store errors propagate"""
        paginator = FeedPaginator(self.store, page_size=self.page_size)
        pages = 0

        while pages < self.max_pages:
            await paginator.load_more()
            pages += 1
            if paginator.reached_end:
                break

        logger.info(f"Collected {len(paginator.posts)} candidate posts from {pages} page(s)")
        return paginator.posts

    async def top_hashtags(self, limit: int = 20) -> List[str]:
        """Most used hashtags across the candidate window"""
        counts: Counter = Counter()
        for post in await self.collect():
            counts.update(sorted(post.hashtags))
        return [tag for tag, _ in counts.most_common(limit)]
