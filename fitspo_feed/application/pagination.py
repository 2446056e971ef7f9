"""
Cursor pagination for the home and explore feeds
"""
from typing import Any, Iterable, List, Optional, Sequence
import logging

from ..domain.models import Page, Post
from ..domain.repositories import IDocumentStore
from ..schemas import decode_posts
from ..config import settings

logger = logging.getLogger(__name__)


def merge_page(existing: Sequence[Post], incoming: Iterable[Post]) -> List[Post]:
    """
    Append the posts of a new page that are not already present.

    Relative order of both sequences is kept and re-applying the same page
    adds nothing.
    """
    seen = {post.id for post in existing}
    merged = list(existing)
    for post in incoming:
        if post.id in seen:
            continue
        seen.add(post.id)
        merged.append(post)
    return merged


async def fetch_post_page(
    store: IDocumentStore,
    limit: int,
    cursor: Optional[Any] = None,
    collection: Optional[str] = None
) -> Page:
    """Fetch one page of the newest-first post stream, dropping malformed posts"""
    record_page = await store.query_page(
        collection or settings.POSTS_COLLECTION,
        order_by="timestamp",
        descending=True,
        limit=limit,
        start_after=cursor
    )
    return Page(posts=decode_posts(record_page.records), next_cursor=record_page.next_cursor)


class FeedPaginator:
    """
    Accumulated feed state for one consumer (home feed, explore grid).

    A cursor of None means "start" before the first fetch and "no more pages"
    after it; `started` tells the two apart.
    """

    def __init__(self, store: IDocumentStore, page_size: int = 12):
        self.store = store
        self.page_size = page_size
        self.posts: List[Post] = []
        self.cursor: Optional[Any] = None
        self.started = False
        self.reached_end = False
        self.is_loading = False
        self._generation = 0

    async def _fetch(self, cursor: Optional[Any], page_size: Optional[int]) -> Optional[Page]:
        """Fetch a page; returns None if the result arrived after a reset"""
        generation = self._generation
        self.is_loading = True
        try:
            page = await fetch_post_page(self.store, page_size or self.page_size, cursor)
        finally:
            if generation == self._generation:
                self.is_loading = False

        if generation != self._generation:
            logger.debug("Discarding page that arrived after feed reset")
            return None
        return page

    def _advance(self, page: Page) -> None:
        self.cursor = page.next_cursor
        self.reached_end = page.is_last
        self.started = True

    async def load_first(self, page_size: Optional[int] = None) -> List[Post]:
        """Load the first page if nothing has been loaded yet"""
        if self.started or self.is_loading:
            return self.posts

        page = await self._fetch(None, page_size)
        if page is None:
            return self.posts

        self.posts = merge_page([], page.posts)
        self._advance(page)
        logger.info(f"Loaded first feed page with {len(self.posts)} posts")
        return self.posts

    async def load_more(self, page_size: Optional[int] = None) -> List[Post]:
        """Append the next page; no-op while loading or once the end is reached"""
        if not self.started:
            return await self.load_first(page_size)
        if self.is_loading or self.reached_end:
            return []

        page = await self._fetch(self.cursor, page_size)
        if page is None:
            return []

        before = len(self.posts)
        self.posts = merge_page(self.posts, page.posts)
        self._advance(page)
        return self.posts[before:]

    async def refresh(self, page_size: Optional[int] = None) -> List[Post]:
        """Replace the feed with a fresh first page (pull-to-refresh)"""
        self._generation += 1
        self.is_loading = False

        page = await self._fetch(None, page_size)
        if page is None:
            return self.posts

        self.posts = merge_page([], page.posts)
        self._advance(page)
        return self.posts

    def close(self) -> None:
        """Abandon any in-flight fetch; its result will be ignored"""
        self._generation += 1
        self.is_loading = False
