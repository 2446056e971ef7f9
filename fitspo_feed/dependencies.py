"""
FastAPI dependencies for FitSpo Feed Service
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from typing import Optional

from .config import settings
from .cache import RedisCache, get_cache
from .kafka_producer import KafkaProducerManager, get_kafka_producer
from .schemas import User
from .application.aggregator import CandidateAggregator
from .application.hot_rank import HotRankStore
from .application.services import NotificationService, PostService, SearchService
from .domain.repositories import IBlobStore, IDocumentStore, ISearchIndex, IWeatherLookup
from .infrastructure.mongo_store import get_document_store
from .infrastructure.search_index import get_search_index
from .infrastructure.storage import get_storage
from .infrastructure.weather import get_weather_client

security = HTTPBearer()

_credentials_error = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    Validate JWT token and return current user
    """
    token = credentials.credentials

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        raise _credentials_error

    user_id = payload.get("sub")
    if user_id is None:
        raise _credentials_error

    return User(id=str(user_id), username=payload.get("username"))


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False))
) -> Optional[User]:
    """
    Optional authentication - returns None if no valid token provided
    """
    if not credentials:
        return None

    try:
        return await get_current_user(credentials)
    except HTTPException:
        return None


def get_aggregator(store: IDocumentStore = Depends(get_document_store)) -> CandidateAggregator:
    """Candidate window used by hot ranking, explore and hashtag aggregates"""
    return CandidateAggregator(
        store,
        page_size=settings.HOT_CANDIDATE_PAGE_SIZE,
        max_pages=settings.HOT_CANDIDATE_MAX_PAGES
    )


# Process-wide ranking cache, created on first use
hot_rank_store: Optional[HotRankStore] = None


def init_hot_rank_store(store: IDocumentStore) -> HotRankStore:
    """Create the shared hot rank cache"""
    global hot_rank_store
    hot_rank_store = HotRankStore(
        get_aggregator(store),
        ttl_seconds=settings.HOT_RANK_TTL_SECONDS,
        top_n=settings.HOT_RANK_TOP_N
    )
    return hot_rank_store


async def get_hot_rank_store(store: IDocumentStore = Depends(get_document_store)) -> HotRankStore:
    """Dependency for getting the shared hot rank cache"""
    if hot_rank_store is None:
        return init_hot_rank_store(store)
    return hot_rank_store


def get_notification_service(store: IDocumentStore = Depends(get_document_store)) -> NotificationService:
    return NotificationService(store)


def get_post_service(
    store: IDocumentStore = Depends(get_document_store),
    blob_store: IBlobStore = Depends(get_storage),
    weather: IWeatherLookup = Depends(get_weather_client),
    notifications: NotificationService = Depends(get_notification_service),
    kafka_producer: KafkaProducerManager = Depends(get_kafka_producer),
) -> PostService:
    """Get PostService instance with dependencies"""
    return PostService(store, blob_store, weather, notifications, kafka_producer)


def get_search_service(
    store: IDocumentStore = Depends(get_document_store),
    index: Optional[ISearchIndex] = Depends(get_search_index),
    cache: RedisCache = Depends(get_cache),
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> SearchService:
    """Get SearchService instance with dependencies"""
    return SearchService(store, index, cache, aggregator)
