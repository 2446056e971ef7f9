"""
FastAPI application for FitSpo Feed Service
"""
from fastapi import (
    FastAPI, Depends, HTTPException, status, Query, File, Form, UploadFile, WebSocket, WebSocketDisconnect
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import TypeAdapter, ValidationError
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Type
from zoneinfo import ZoneInfo
import logging
import uuid

from .config import settings
from .cache import cache, get_cache, RedisCache
from .kafka_producer import kafka_producer
from .dependencies import (
    get_aggregator,
    get_current_user,
    get_current_user_optional,
    get_hot_rank_store,
    get_notification_service,
    get_post_service,
    get_search_service,
    init_hot_rank_store,
)
from .application.aggregator import CandidateAggregator
from .application.hot_rank import HotRankStore
from .application.pagination import fetch_post_page
from .application.services import NotificationService, PostService, SearchService
from .domain.exceptions import (
    FitSpoError, PermissionDeniedError, PostNotFoundError, StoreUnavailableError, UploadError
)
from .domain.filters import (
    Filter, Season, TempBand, TimeBand, WeatherCategory, apply_filter, compute_trending_tags, has_coordinate
)
from .domain.models import OutfitItem, OutfitTag, Post, UserTag
from .domain.repositories import IDocumentStore
from .infrastructure.mongo_store import decode_cursor, encode_cursor, get_document_store, mongodb
from .infrastructure.search_index import search_index
from .infrastructure.storage import storage
from .infrastructure.weather import weather_client
from .schemas import (
    User,
    FeedResponse,
    HashtagListResponse,
    HotPostsResponse,
    LikeResponse,
    MessageResponse,
    NotificationListResponse,
    NotificationResponse,
    OutfitItemSchema,
    OutfitTagSchema,
    PostListResponse,
    PostResponse,
    RankResponse,
    UserTagSchema,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting FitSpo Feed Service...")

    await mongodb.connect()
    logger.info("Document store connected")

    await cache.connect()
    logger.info("Redis cache initialized")

    storage.connect()
    logger.info("Blob storage initialized")

    await search_index.start()
    await weather_client.start()

    await kafka_producer.start()
    logger.info("Kafka producer started")

    init_hot_rank_store(mongodb)

    logger.info(f"FitSpo Feed Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down FitSpo Feed Service...")

    await kafka_producer.stop()
    await weather_client.stop()
    await search_index.stop()
    await cache.disconnect()
    await mongodb.disconnect()

    logger.info("FitSpo Feed Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="FitSpo Feed Service - outfit feed, hot ranking and explore filters",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: FitSpoError) -> HTTPException:
    """Map a service error to its HTTP status"""
    if isinstance(e, PostNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, StoreUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Post store unavailable")
    if isinstance(e, UploadError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")


def _chip(enum_cls: Type[Enum], value: Optional[str], name: str):
    """Filter chip value; "all" or missing means no filter"""
    if value is None or value.strip().lower() in ("", "all"):
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name}: {value}"
        )


def get_filter(
    season: Optional[str] = Query(None, description="spring, summer, fall, winter or all"),
    time: Optional[str] = Query(None, description="morning, afternoon, evening, night or all"),
    temp: Optional[str] = Query(None, description="cold, cool, warm, hot or all"),
    weather: Optional[str] = Query(None, description="sunny, cloudy or all"),
    tag: Optional[str] = Query(None, description="Hashtag chip"),
    q: Optional[str] = Query(None, description="Hashtag search text"),
    prefix: bool = Query(False, description="Match q as a hashtag prefix"),
) -> Filter:
    """Explore/map filter from query parameters"""
    return Filter(
        season=_chip(Season, season, "season"),
        time_band=_chip(TimeBand, time, "time"),
        temp_band=_chip(TempBand, temp, "temp"),
        weather=_chip(WeatherCategory, weather, "weather"),
        tag=tag or None,
        text=q or None,
        text_prefix=prefix,
    )


def _display_tz():
    return ZoneInfo(settings.DISPLAY_TIMEZONE)


def _responses(posts: List[Post], viewer: Optional[User], hot: Optional[HotRankStore] = None) -> List[PostResponse]:
    viewer_id = viewer.id if viewer else None
    return [
        PostResponse.from_post(p, viewer_id, hot.rank(p.id) if hot else None)
        for p in posts
    ]


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


# Feed endpoints
@app.get("/api/v1/feed", response_model=FeedResponse, tags=["Feed"], summary="Get home feed page")
async def get_feed(
    cursor: Optional[str] = Query(None, description="Opaque cursor from the previous page"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Items per page"
    ),
    current_user: Optional[User] = Depends(get_current_user_optional),
    store: IDocumentStore = Depends(get_document_store),
    hot: HotRankStore = Depends(get_hot_rank_store),
):
    """
    Newest-first feed page

    - Pass `next_cursor` from the previous response to get the following page
    - `next_cursor` is null once the last page is reached
    - Posts in the hot ranking carry their `hot_rank`
    """
    try:
        start_after = decode_cursor(cursor)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")

    if start_after is None:
        await hot.refresh_if_needed()

    try:
        page = await fetch_post_page(store, page_size, start_after)
    except FitSpoError as e:
        logger.error(f"Error getting feed page: {e}")
        raise _http_error(e)

    return FeedResponse(
        posts=_responses(page.posts, current_user, hot),
        next_cursor=encode_cursor(page.next_cursor),
        has_more=not page.is_last,
    )


# Hot ranking endpoints
@app.get("/api/v1/posts/hot", response_model=HotPostsResponse, tags=["Hot"])
async def get_hot_posts(
    current_user: Optional[User] = Depends(get_current_user_optional),
    hot: HotRankStore = Depends(get_hot_rank_store),
):
    """Top liked posts across the recent window, refreshed every few minutes"""
    fresh = await hot.refresh_if_needed()
    if not fresh and hot.refreshed_at is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hot ranking unavailable"
        )

    return HotPostsResponse(
        posts=_responses(hot.top_posts(), current_user, hot),
        refreshed_at=hot.refreshed_at,
    )


@app.get("/api/v1/posts/{post_id}/rank", response_model=RankResponse, tags=["Hot"])
async def get_post_rank(
    post_id: str,
    hot: HotRankStore = Depends(get_hot_rank_store),
):
    """Position of a post in the hot ranking, null when not ranked"""
    await hot.refresh_if_needed()
    return RankResponse(post_id=post_id, rank=hot.rank(post_id))


# Explore endpoints
@app.get("/api/v1/explore", response_model=PostListResponse, tags=["Explore"])
async def explore(
    filter: Filter = Depends(get_filter),
    current_user: Optional[User] = Depends(get_current_user_optional),
    aggregator: CandidateAggregator = Depends(get_aggregator),
    hot: HotRankStore = Depends(get_hot_rank_store),
):
    """Recent posts narrowed by the season, time, temperature, weather and hashtag chips"""
    try:
        candidates = await aggregator.collect()
    except FitSpoError as e:
        logger.error(f"Error loading explore posts: {e}")
        raise _http_error(e)

    posts = apply_filter(candidates, filter, tz=_display_tz())
    return PostListResponse(posts=_responses(posts, current_user, hot), total=len(posts))


@app.get("/api/v1/map", response_model=PostListResponse, tags=["Explore"])
async def map_posts(
    filter: Filter = Depends(get_filter),
    current_user: Optional[User] = Depends(get_current_user_optional),
    aggregator: CandidateAggregator = Depends(get_aggregator),
):
    """Filtered posts that carry coordinates"""
    try:
        candidates = await aggregator.collect()
    except FitSpoError as e:
        logger.error(f"Error loading map posts: {e}")
        raise _http_error(e)

    posts = apply_filter(candidates, filter, has_coordinate, tz=_display_tz())
    return PostListResponse(posts=_responses(posts, current_user), total=len(posts))


@app.get("/api/v1/hashtags/trending", response_model=HashtagListResponse, tags=["Explore"])
async def trending_hashtags(
    limit: int = Query(settings.TRENDING_TAGS_LIMIT, ge=1, le=50),
    aggregator: CandidateAggregator = Depends(get_aggregator),
):
    """Most used hashtags of the last days"""
    try:
        candidates = await aggregator.collect()
    except FitSpoError as e:
        raise _http_error(e)

    tags = compute_trending_tags(
        candidates,
        datetime.now(timezone.utc),
        days=settings.TRENDING_TAGS_DAYS,
        limit=limit
    )
    return HashtagListResponse(hashtags=tags)


# Search endpoints
@app.get("/api/v1/search/posts", response_model=PostListResponse, tags=["Search"])
async def search_posts(
    q: str = Query(..., min_length=1, description="Search text or hashtag"),
    current_user: Optional[User] = Depends(get_current_user_optional),
    service: SearchService = Depends(get_search_service),
):
    """Search posts; falls back to exact hashtag lookup when the index is down"""
    try:
        posts = await service.search_posts(q, settings.SEARCH_HITS_PER_PAGE)
    except FitSpoError as e:
        logger.error(f"Error searching posts for '{q}': {e}")
        raise _http_error(e)
    return PostListResponse(posts=_responses(posts, current_user), total=len(posts))


@app.get("/api/v1/search/hashtags", response_model=HashtagListResponse, tags=["Search"])
async def search_hashtags(
    prefix: str = Query("", description="Typed hashtag prefix; empty returns top hashtags"),
    limit: int = Query(10, ge=1, le=50),
    service: SearchService = Depends(get_search_service),
):
    """Hashtag suggestions"""
    try:
        if prefix.strip().lstrip("#"):
            hashtags = await service.suggest_hashtags(prefix, limit)
        else:
            hashtags = await service.top_hashtags(limit)
    except FitSpoError as e:
        raise _http_error(e)
    return HashtagListResponse(hashtags=hashtags)


# Post endpoints
_user_tags = TypeAdapter(List[UserTagSchema])
_outfit_items = TypeAdapter(List[OutfitItemSchema])
_outfit_tags = TypeAdapter(List[OutfitTagSchema])


@app.post("/api/v1/posts", response_model=PostResponse, status_code=status.HTTP_201_CREATED, tags=["Posts"])
async def create_post(
    image: UploadFile = File(...),
    caption: str = Form("", max_length=2200),
    latitude: Optional[float] = Form(None, ge=-90, le=90),
    longitude: Optional[float] = Form(None, ge=-180, le=180),
    tags: str = Form("[]", description="JSON list of user tags"),
    outfit_items: str = Form("[]", description="JSON list of outfit items"),
    outfit_tags: str = Form("[]", description="JSON list of outfit tag pins"),
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
    cache: RedisCache = Depends(get_cache),
):
    """
    Upload a new post

    - **image**: Outfit photo, stored as JPEG
    - **caption**: Hashtags and @mentions are extracted from it
    - **latitude/longitude**: Optional; used for the weather reading
    - Requires authentication
    """
    try:
        user_tags = _user_tags.validate_json(tags)
        items = _outfit_items.validate_json(outfit_items)
        pins = _outfit_tags.validate_json(outfit_tags)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors())

    image_data = await image.read()
    if not image_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty image")

    try:
        post = await service.upload_post(
            current_user.id,
            image_data,
            caption,
            latitude=latitude,
            longitude=longitude,
            tags=[UserTag(t.user_id, t.display_name, t.x_norm, t.y_norm) for t in user_tags],
            outfit_items=[OutfitItem(i.id or str(uuid.uuid4()), i.label, i.shop_url, i.brand) for i in items],
            outfit_tags=[OutfitTag(t.id or str(uuid.uuid4()), t.item_id, t.x_norm, t.y_norm) for t in pins],
        )
    except FitSpoError as e:
        logger.error(f"Error uploading post for user {current_user.id}: {e}")
        raise _http_error(e)

    await cache.invalidate_top_hashtags()
    return PostResponse.from_post(post, current_user.id)


@app.get("/api/v1/posts/{post_id}", response_model=PostResponse, tags=["Posts"])
async def get_post(
    post_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    service: PostService = Depends(get_post_service),
    hot: HotRankStore = Depends(get_hot_rank_store),
):
    """Get a single post"""
    try:
        post = await service.get_post(post_id)
    except FitSpoError as e:
        raise _http_error(e)
    return PostResponse.from_post(post, current_user.id if current_user else None, hot.rank(post_id))


@app.get("/api/v1/posts/{post_id}/image", tags=["Posts"])
async def get_post_image(
    post_id: str,
    service: PostService = Depends(get_post_service),
):
    """Redirect to a temporary signed URL of the post image"""
    try:
        url = await service.image_link(post_id)
    except FitSpoError as e:
        raise _http_error(e)
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@app.get("/api/v1/posts/{post_id}/tags", response_model=List[UserTagSchema], tags=["Posts"])
async def get_post_tags(
    post_id: str,
    service: PostService = Depends(get_post_service),
):
    """Users tagged in the post image"""
    try:
        tags = await service.fetch_tags(post_id)
    except FitSpoError as e:
        raise _http_error(e)
    return [
        UserTagSchema(user_id=t.user_id, display_name=t.display_name, x_norm=t.x_norm, y_norm=t.y_norm)
        for t in tags
    ]


@app.delete("/api/v1/posts/{post_id}", response_model=MessageResponse, tags=["Posts"])
async def delete_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
    cache: RedisCache = Depends(get_cache),
):
    """
    Delete a post

    - Only the post owner can delete
    - Also removes its tags, notifications and image
    """
    try:
        await service.delete_post(post_id, current_user.id)
    except FitSpoError as e:
        logger.error(f"Error deleting post {post_id}: {e}")
        raise _http_error(e)

    await cache.invalidate_top_hashtags()
    return MessageResponse(message="Post deleted successfully")


async def _set_like(post_id: str, user: User, service: PostService, liked: bool) -> LikeResponse:
    try:
        post = await service.set_like(post_id, user.id, liked)
    except FitSpoError as e:
        logger.error(f"Error updating like on post {post_id}: {e}")
        raise _http_error(e)
    return LikeResponse(post_id=post.id, is_liked=post.is_liked_by(user.id), like_count=post.likes)


@app.post("/api/v1/posts/{post_id}/like", response_model=LikeResponse, tags=["Interactions"])
async def like_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    """Like a post; liking twice is a no-op"""
    return await _set_like(post_id, current_user, service, True)


@app.delete("/api/v1/posts/{post_id}/like", response_model=LikeResponse, tags=["Interactions"])
async def unlike_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    """Remove a like"""
    return await _set_like(post_id, current_user, service, False)


# Notification endpoints
@app.get("/api/v1/notifications", response_model=NotificationListResponse, tags=["Notifications"])
async def list_notifications(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Activity notifications of the current user, newest first"""
    try:
        notifications = await service.list_for_user(current_user.id)
    except FitSpoError as e:
        raise _http_error(e)

    return NotificationListResponse(notifications=[
        NotificationResponse(
            id=n.id,
            post_id=n.post_id,
            from_user_id=n.from_user_id,
            from_username=n.from_username,
            from_avatar_url=n.from_avatar_url,
            text=n.text,
            kind=n.kind,
            timestamp=n.timestamp,
        )
        for n in notifications
    ])


@app.delete("/api/v1/notifications/{notification_id}", response_model=MessageResponse, tags=["Notifications"])
async def delete_notification(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Dismiss a notification"""
    try:
        deleted = await service.delete(current_user.id, notification_id)
    except FitSpoError as e:
        raise _http_error(e)

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return MessageResponse(message="Notification deleted")


# Live post updates
@app.websocket("/ws/posts/{post_id}")
async def watch_post(
    websocket: WebSocket,
    post_id: str,
    service: PostService = Depends(get_post_service),
):
    """Push a post snapshot whenever its likes or comments change"""
    await websocket.accept()
    try:
        async with service.watch_post(post_id) as snapshots:
            async for post in snapshots:
                await websocket.send_json(PostResponse.from_post(post).model_dump(mode="json"))
        await websocket.close()
    except WebSocketDisconnect:
        logger.debug(f"Watcher of post {post_id} disconnected")
    except StoreUnavailableError as e:
        logger.error(f"Live updates for post {post_id} failed: {e}")
        await websocket.close(code=1011)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fitspo_feed.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
