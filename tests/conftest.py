"""Shared fixtures and in-memory collaborators for the FitSpo feed tests"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from fitspo_feed.domain.exceptions import SearchUnavailableError, StoreUnavailableError
from fitspo_feed.domain.models import Post, Record, RecordPage, WeatherReading
from fitspo_feed.domain.repositories import IBlobStore, IDocumentStore, ISearchIndex, IWeatherLookup
from fitspo_feed.infrastructure.mongo_store import PageCursor

BASE_TIME = datetime(2024, 7, 15, 12, 0, 0)


def post_doc(
    user_id: str = "owner",
    likes: int = 0,
    timestamp: Optional[datetime] = None,
    caption: str = "fit check",
    hashtags: Optional[List[str]] = None,
    **extra: Any
) -> Dict[str, Any]:
    """A well-formed stored post document"""
    doc = {
        "userId": user_id,
        "imageURL": "http://localhost:9000/fitspo-media/post_images/a.jpg",
        "caption": caption,
        "timestamp": timestamp or BASE_TIME,
        "likes": likes,
        "likedBy": [],
        "hashtags": hashtags or [],
    }
    doc.update(extra)
    return doc


def make_post(
    post_id: str,
    likes: int = 0,
    timestamp: Optional[datetime] = None,
    **fields: Any
) -> Post:
    return Post(
        id=post_id,
        user_id=fields.pop("user_id", "owner"),
        image_url="http://localhost:9000/fitspo-media/post_images/a.jpg",
        caption=fields.pop("caption", ""),
        timestamp=timestamp or BASE_TIME,
        likes=likes,
        **fields
    )


class FakeDocumentStore(IDocumentStore):
    """
    Dict-backed document store.

    `failures` makes the next N query_page calls raise StoreUnavailableError.
    `gate`, when set to an unset Event, holds query_page until it is set.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.query_calls = 0
        self.failures = 0
        self.gate: Optional[asyncio.Event] = None
        self.feeds: Dict[str, asyncio.Queue] = {}
        self.closed_subscriptions: List[str] = []
        self._next_id = 0

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(name, {})

    def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._collection(collection)[doc_id] = dict(data)

    async def query_page(self, collection, order_by, descending, limit, start_after=None):
        self.query_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise StoreUnavailableError("store offline")

        rows = sorted(
            self._collection(collection).items(),
            key=lambda item: (item[1].get(order_by), item[0]),
            reverse=descending
        )
        if start_after is not None:
            value, last_id = start_after
            if descending:
                rows = [r for r in rows if (r[1].get(order_by), r[0]) < (value, last_id)]
            else:
                rows = [r for r in rows if (r[1].get(order_by), r[0]) > (value, last_id)]

        page = rows[:limit]
        next_cursor = None
        if len(page) == limit:
            last_id, last = page[-1]
            next_cursor = PageCursor(value=last.get(order_by), doc_id=last_id)
        return RecordPage(records=[Record(id=k, data=dict(v)) for k, v in page], next_cursor=next_cursor)

    async def get(self, collection, doc_id):
        data = self._collection(collection).get(doc_id)
        return Record(id=doc_id, data=dict(data)) if data is not None else None

    async def find_where(self, collection, field, value, limit=None, order_by=None, descending=True):
        matches = []
        for doc_id, data in self._collection(collection).items():
            current = data.get(field)
            if current == value or (isinstance(current, list) and value in current):
                matches.append(Record(id=doc_id, data=dict(data)))
        if order_by:
            matches.sort(key=lambda r: r.data.get(order_by), reverse=descending)
        return matches[:limit] if limit else matches

    async def insert(self, collection, data):
        self._next_id += 1
        doc_id = f"{collection}-{self._next_id}"
        self.put(collection, doc_id, data)
        return Record(id=doc_id, data=dict(data))

    async def update_membership(self, collection, doc_id, set_field, counter_field, member, add):
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None, False
        members = list(data.get(set_field, []))
        changed = False
        if add and member not in members:
            data[set_field] = members + [member]
            data[counter_field] = data.get(counter_field, 0) + 1
            changed = True
        elif not add and member in members and data.get(counter_field, 0) > 0:
            members.remove(member)
            data[set_field] = members
            data[counter_field] -= 1
            changed = True
        return Record(id=doc_id, data=dict(data)), changed

    async def delete(self, collection, doc_id):
        return self._collection(collection).pop(doc_id, None) is not None

    async def commit_batch(self, operations):
        for op, collection, doc_id, data in operations:
            if op == "set":
                self.put(collection, doc_id, data or {})
            else:
                self._collection(collection).pop(doc_id, None)

    def push(self, collection: str, doc_id: str) -> None:
        """Emit the current state of a watched document"""
        self.feeds[f"{collection}/{doc_id}"].put_nowait(doc_id)

    @asynccontextmanager
    async def subscribe(self, collection, doc_id):
        key = f"{collection}/{doc_id}"
        queue: asyncio.Queue = asyncio.Queue()
        self.feeds[key] = queue
        queue.put_nowait(doc_id)

        async def snapshots():
            while True:
                await queue.get()
                record = await self.get(collection, doc_id)
                if record is None:
                    return
                yield record

        try:
            yield snapshots()
        finally:
            self.closed_subscriptions.append(key)
            del self.feeds[key]


class FakeBlobStore(IBlobStore):
    base_url = "http://localhost:9000/fitspo-media"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail_delete = False

    async def upload(self, data, key, content_type="image/jpeg"):
        self.objects[key] = data
        return f"{self.base_url}/{key}"

    async def delete(self, key):
        if self.fail_delete:
            return False
        return self.objects.pop(key, None) is not None

    async def signed_url(self, key, expiration=3600):
        return f"{self.base_url}/{key}?expires={expiration}"

    def key_for_url(self, url):
        prefix = f"{self.base_url}/"
        return url[len(prefix):] if url.startswith(prefix) else None


class FakeSearchIndex(ISearchIndex):
    def __init__(self, hits: Optional[List[Record]] = None, available: bool = True):
        self.hits = hits or []
        self.available = available
        self.facets: List[str] = []

    async def search_posts(self, query, limit=40):
        if not self.available:
            raise SearchUnavailableError("index offline")
        return self.hits[:limit]

    async def suggest_hashtags(self, prefix, limit=10):
        if not self.available:
            raise SearchUnavailableError("index offline")
        return [f for f in self.facets if f.startswith(prefix)][:limit]


class FakeWeather(IWeatherLookup):
    def __init__(self, reading: Optional[WeatherReading] = None):
        self.reading = reading
        self.calls = []

    async def current(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        return self.reading


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed_posts(store: FakeDocumentStore, count: int, collection: str = "posts") -> List[str]:
    """Insert `count` posts, newest first by id order"""
    ids = []
    for i in range(count):
        doc_id = f"p{i:03d}"
        store.put(collection, doc_id, post_doc(likes=i % 7, timestamp=BASE_TIME - timedelta(minutes=i)))
        ids.append(doc_id)
    return ids


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def events():
    """Stand-in for the Kafka producer"""
    return AsyncMock()


@pytest.fixture
def cache():
    """Stand-in for the Redis cache; always misses"""
    mock = AsyncMock()
    mock.get_top_hashtags.return_value = None
    return mock


@pytest.fixture
def clock():
    return FakeClock()
