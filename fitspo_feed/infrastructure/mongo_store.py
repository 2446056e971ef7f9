"""
MongoDB document store
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, DeleteOne, ReplaceOne, ReturnDocument
from pymongo.errors import PyMongoError
from bson import ObjectId
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional, Sequence, Tuple
import base64
import json
import logging

from ..config import settings
from ..domain.exceptions import StoreUnavailableError
from ..domain.models import Record, RecordPage
from ..domain.repositories import BatchOp, IDocumentStore

logger = logging.getLogger(__name__)


class PageCursor(NamedTuple):
    """Position after the last document of a page: sort value plus id"""
    value: Any
    doc_id: str


def encode_cursor(cursor: Optional[PageCursor]) -> Optional[str]:
    """Serialize a page cursor into an opaque URL-safe token"""
    if cursor is None:
        return None
    value = cursor.value
    payload = {"id": cursor.doc_id}
    if isinstance(value, datetime):
        payload["ts"] = value.isoformat()
    else:
        payload["v"] = value
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_cursor(token: Optional[str]) -> Optional[PageCursor]:
    """Parse a token produced by encode_cursor; raises ValueError on garbage"""
    if not token:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        value = datetime.fromisoformat(payload["ts"]) if "ts" in payload else payload["v"]
        return PageCursor(value=value, doc_id=str(payload["id"]))
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid cursor: {e}") from e


def _key(doc_id: str) -> Any:
    """Server-assigned ids are ObjectIds, explicit ids are kept as strings"""
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id


def _to_record(doc: Dict[str, Any]) -> Record:
    data = dict(doc)
    doc_id = data.pop("_id")
    return Record(id=str(doc_id), data=data)


@contextmanager
def _store_errors(operation: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"MongoDB {operation} failed: {e}")
        raise StoreUnavailableError(f"{operation} failed: {e}") from e


class MongoDocumentStore(IDocumentStore):
    """Document store implementation using MongoDB"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """Connect to MongoDB"""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        self.db = self.client[settings.MONGODB_DATABASE]

        # Create indexes
        await self.create_indexes()

        logger.info(f"Connected to MongoDB database {settings.MONGODB_DATABASE}")

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    async def create_indexes(self):
        """Create database indexes for optimization"""
        posts = self.db[settings.POSTS_COLLECTION]

        # Feed ordering with a tie-breaker on id for stable cursors
        await posts.create_index([("timestamp", DESCENDING), ("_id", DESCENDING)])

        # Index on hashtags for hashtag search
        await posts.create_index("hashtags")

        await posts.create_index("userId")

        notifications = self.db[settings.NOTIFICATIONS_COLLECTION]
        await notifications.create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
        await notifications.create_index("postId")

        await self.db[settings.POST_TAGS_COLLECTION].create_index("postId")
        await self.db[settings.USERS_COLLECTION].create_index("username_lc")

        logger.info("MongoDB indexes created")

    async def query_page(
        self,
        collection: str,
        order_by: str,
        descending: bool,
        limit: int,
        start_after: Optional[PageCursor] = None
    ) -> RecordPage:
        """Fetch one page ordered by (order_by, _id)"""
        direction = DESCENDING if descending else ASCENDING
        query: Dict[str, Any] = {}

        if start_after is not None:
            op = "$lt" if descending else "$gt"
            last_id = _key(start_after.doc_id)
            query = {"$or": [
                {order_by: {op: start_after.value}},
                {order_by: start_after.value, "_id": {op: last_id}},
            ]}

        with _store_errors("query_page"):
            cursor = (
                self.db[collection]
                .find(query)
                .sort([(order_by, direction), ("_id", direction)])
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)

        records = [_to_record(doc) for doc in docs]
        next_cursor = None
        if docs and len(docs) >= limit:
            last = docs[-1]
            next_cursor = PageCursor(value=last.get(order_by), doc_id=str(last["_id"]))

        return RecordPage(records=records, next_cursor=next_cursor)

    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        """Get a single document by id"""
        with _store_errors("get"):
            doc = await self.db[collection].find_one({"_id": _key(doc_id)})
        return _to_record(doc) if doc else None

    async def find_where(
        self,
        collection: str,
        field: str,
        value: Any,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        descending: bool = True
    ) -> List[Record]:
        """Find documents by field equality (array fields match on membership)"""
        with _store_errors("find_where"):
            cursor = self.db[collection].find({field: value})
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        return [_to_record(doc) for doc in docs]

    async def insert(self, collection: str, data: Dict[str, Any]) -> Record:
        """Insert a document with a server-assigned id"""
        doc = dict(data)
        with _store_errors("insert"):
            result = await self.db[collection].insert_one(doc)
        return Record(id=str(result.inserted_id), data=data)

    async def update_membership(
        self,
        collection: str,
        doc_id: str,
        set_field: str,
        counter_field: str,
        member: str,
        add: bool
    ) -> Tuple[Optional[Record], bool]:
        """Toggle set membership and the matching counter in one update"""
        key = _key(doc_id)
        if add:
            query = {"_id": key, set_field: {"$ne": member}}
            update = {"$addToSet": {set_field: member}, "$inc": {counter_field: 1}}
        else:
            query = {"_id": key, set_field: member, counter_field: {"$gt": 0}}
            update = {"$pull": {set_field: member}, "$inc": {counter_field: -1}}

        with _store_errors("update_membership"):
            doc = await self.db[collection].find_one_and_update(
                query,
                update,
                return_document=ReturnDocument.AFTER
            )
            changed = doc is not None
            if not changed:
                # membership already in the requested state, or no such document
                doc = await self.db[collection].find_one({"_id": key})
        return (_to_record(doc) if doc else None), changed

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document"""
        with _store_errors("delete"):
            result = await self.db[collection].delete_one({"_id": _key(doc_id)})
        return result.deleted_count > 0

    async def commit_batch(self, operations: Sequence[BatchOp]) -> None:
        """Apply writes grouped by collection"""
        by_collection: Dict[str, list] = {}
        for op, collection, doc_id, data in operations:
            if op == "set":
                request = ReplaceOne({"_id": _key(doc_id)}, dict(data or {}), upsert=True)
            elif op == "delete":
                request = DeleteOne({"_id": _key(doc_id)})
            else:
                raise ValueError(f"Unknown batch operation: {op}")
            by_collection.setdefault(collection, []).append(request)

        with _store_errors("commit_batch"):
            for collection, requests in by_collection.items():
                await self.db[collection].bulk_write(requests, ordered=True)

    @asynccontextmanager
    async def subscribe(self, collection: str, doc_id: str) -> AsyncIterator[AsyncIterator[Record]]:
        """Stream snapshots of one document via a change stream"""
        key = _key(doc_id)
        pipeline = [{"$match": {"documentKey._id": key}}]

        initial = await self.get(collection, doc_id)
        with _store_errors("subscribe"):
            stream = self.db[collection].watch(pipeline, full_document="updateLookup")
        try:
            yield self._snapshots(stream, initial)
        finally:
            await stream.close()
            logger.debug(f"Closed change stream for {collection}/{doc_id}")

    async def _snapshots(self, stream, initial: Optional[Record]) -> AsyncIterator[Record]:
        if initial is not None:
            yield initial
        with _store_errors("change stream"):
            async for change in stream:
                if change.get("operationType") == "delete":
                    return
                doc = change.get("fullDocument")
                if doc:
                    yield _to_record(doc)


# Global MongoDB instance
mongodb = MongoDocumentStore()


async def get_document_store() -> MongoDocumentStore:
    """Dependency for getting the document store"""
    return mongodb
