"""
Repository interfaces - Define contracts for the external collaborators
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .models import Record, RecordPage, WeatherReading


# (operation, collection, document id, data); operation is "set" or "delete"
BatchOp = Tuple[str, str, Optional[str], Optional[Dict[str, Any]]]


class IDocumentStore(ABC):
    """Document store interface"""

    @abstractmethod
    async def query_page(
        self,
        collection: str,
        order_by: str,
        descending: bool,
        limit: int,
        start_after: Optional[Any] = None
    ) -> RecordPage:
        """Fetch one ordered page; next_cursor is None when there are no more pages"""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        """Get a single document by id"""
        pass

    @abstractmethod
    async def find_where(
        self,
        collection: str,
        field: str,
        value: Any,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        descending: bool = True
    ) -> List[Record]:
        """Find documents whose field equals value (or whose array field contains it)"""
        pass

    @abstractmethod
    async def insert(self, collection: str, data: Dict[str, Any]) -> Record:
        """Insert a document with a server-assigned id"""
        pass

    @abstractmethod
    async def update_membership(
        self,
        collection: str,
        doc_id: str,
        set_field: str,
        counter_field: str,
        member: str,
        add: bool
    ) -> Tuple[Optional[Record], bool]:
        """
        Atomically add/remove member to set_field and adjust counter_field by one.

        The update only applies when membership actually changes, so the counter
        and the set never drift. Returns the document after the update (None if
        it does not exist) and whether this call changed it.
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document"""
        pass

    @abstractmethod
    async def commit_batch(self, operations: Sequence[BatchOp]) -> None:
        """Apply several writes together"""
        pass

    @abstractmethod
    def subscribe(self, collection: str, doc_id: str) -> AsyncContextManager[AsyncIterator[Record]]:
        """Open a realtime stream of snapshots of one document; closed on exit"""
        pass


class IBlobStore(ABC):
    """Object/blob store interface"""

    @abstractmethod
    async def upload(self, data: bytes, key: str, content_type: str = "image/jpeg") -> str:
        """Upload bytes and return their public URL"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an object"""
        pass

    @abstractmethod
    async def signed_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        """Issue a temporary signed URL"""
        pass

    @abstractmethod
    def key_for_url(self, url: str) -> Optional[str]:
        """Recover the object key from a public URL"""
        pass


class ISearchIndex(ABC):
    """Full-text/attribute search index interface"""

    @abstractmethod
    async def search_posts(self, query: str, limit: int = 40) -> List[Record]:
        """Search post-shaped records"""
        pass

    @abstractmethod
    async def suggest_hashtags(self, prefix: str, limit: int = 10) -> List[str]:
        """Suggest hashtags starting with prefix"""
        pass


class IWeatherLookup(ABC):
    """Weather lookup interface"""

    @abstractmethod
    async def current(self, latitude: float, longitude: float) -> Optional[WeatherReading]:
        """Current weather, or None when unavailable"""
        pass
