"""
Pydantic schemas for FitSpo Feed Service
"""
from pydantic import BaseModel, Field, StrictInt, StrictStr, ValidationError
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import logging
import uuid

from .domain.models import (
    NotificationKind, OutfitItem, OutfitTag, Post, Record, UserNotification, UserTag
)

logger = logging.getLogger(__name__)


# Stored document schemas
class OutfitItemRecord(BaseModel):
    """Outfit item as stored in the post document"""
    id: Optional[StrictStr] = None
    label: StrictStr
    brand: StrictStr = ""
    shop_url: StrictStr = Field(alias="shopURL")

    class Config:
        populate_by_name = True


class OutfitTagRecord(BaseModel):
    """Outfit tag pin as stored in the post document"""
    id: Optional[StrictStr] = None
    item_id: StrictStr = Field(alias="itemId")
    x_norm: float = Field(alias="xNorm")
    y_norm: float = Field(alias="yNorm")

    class Config:
        populate_by_name = True


class PostRecord(BaseModel):
    """Post document schema; the first five fields are required"""
    user_id: StrictStr = Field(alias="userId")
    image_url: StrictStr = Field(alias="imageURL")
    caption: StrictStr
    timestamp: datetime
    likes: StrictInt = Field(ge=0)
    liked_by: List[StrictStr] = Field(default_factory=list, alias="likedBy")
    hashtags: List[StrictStr] = Field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temp: Optional[float] = None
    weather_icon: Optional[StrictStr] = Field(None, alias="weatherIcon")
    username: Optional[StrictStr] = None
    comments_count: StrictInt = Field(0, alias="commentsCount")
    scan_results: Any = Field(None, alias="scanResults")
    outfit_tags: Any = Field(None, alias="outfitTags")
    object_id: Optional[StrictStr] = Field(None, alias="objectID")

    class Config:
        populate_by_name = True


class UserTagRecord(BaseModel):
    """Face tag sub-document"""
    uid: StrictStr
    display_name: StrictStr = Field(alias="displayName")
    x_norm: float = Field(alias="xNorm")
    y_norm: float = Field(alias="yNorm")

    class Config:
        populate_by_name = True


class NotificationRecord(BaseModel):
    """Notification document schema"""
    user_id: StrictStr = Field(alias="userId")
    post_id: StrictStr = Field(alias="postId")
    from_user_id: StrictStr = Field(alias="fromUserId")
    from_username: StrictStr = Field(alias="fromUsername")
    from_avatar_url: Optional[StrictStr] = Field(None, alias="fromAvatarURL")
    text: StrictStr
    kind: NotificationKind
    timestamp: datetime

    class Config:
        populate_by_name = True


def parse_outfit_items(raw: Any) -> List[OutfitItem]:
    """Parse stored outfit items, dropping entries without label or shop URL"""
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            rec = OutfitItemRecord(**entry)
        except ValidationError:
            continue
        items.append(OutfitItem(
            id=rec.id or str(uuid.uuid4()),
            label=rec.label,
            shop_url=rec.shop_url,
            brand=rec.brand
        ))
    return items


def parse_outfit_tags(raw: Any) -> List[OutfitTag]:
    """Parse stored outfit tag pins, dropping incomplete entries"""
    if not isinstance(raw, list):
        return []
    tags = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            rec = OutfitTagRecord(**entry)
        except ValidationError:
            continue
        tags.append(OutfitTag(
            id=rec.id or str(uuid.uuid4()),
            item_id=rec.item_id,
            x_norm=rec.x_norm,
            y_norm=rec.y_norm
        ))
    return tags


def _as_utc(ts: datetime) -> datetime:
    # the document store hands back naive UTC datetimes
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def decode_post(record: Record) -> Optional[Post]:
    """
    Decode a stored post document.

    Malformed documents are not an error: they return None and callers drop
    them from results.
    """
    try:
        rec = PostRecord(**record.data)
    except (ValidationError, TypeError) as e:
        logger.debug(f"Dropping malformed post {record.id}: {e}")
        return None

    return Post(
        id=record.id,
        user_id=rec.user_id,
        image_url=rec.image_url,
        caption=rec.caption,
        timestamp=_as_utc(rec.timestamp),
        likes=rec.likes,
        liked_by=frozenset(rec.liked_by),
        hashtags=frozenset(tag.lower() for tag in rec.hashtags),
        latitude=rec.latitude,
        longitude=rec.longitude,
        temp=rec.temp,
        weather_icon=rec.weather_icon,
        outfit_items=parse_outfit_items(rec.scan_results),
        outfit_tags=parse_outfit_tags(rec.outfit_tags),
        username=rec.username,
        comments_count=rec.comments_count,
        object_id=rec.object_id
    )


def decode_posts(records: List[Record]) -> List[Post]:
    """Decode a list of records, silently dropping malformed ones"""
    posts = []
    for record in records:
        post = decode_post(record)
        if post is not None:
            posts.append(post)
    return posts


def decode_user_tag(record: Record) -> Optional[UserTag]:
    try:
        rec = UserTagRecord(**record.data)
    except ValidationError:
        return None
    return UserTag(user_id=rec.uid, display_name=rec.display_name, x_norm=rec.x_norm, y_norm=rec.y_norm)


def decode_notification(record: Record) -> Optional[UserNotification]:
    try:
        rec = NotificationRecord(**record.data)
    except ValidationError:
        return None
    return UserNotification(
        id=record.id,
        user_id=rec.user_id,
        post_id=rec.post_id,
        from_user_id=rec.from_user_id,
        from_username=rec.from_username,
        from_avatar_url=rec.from_avatar_url,
        text=rec.text,
        kind=rec.kind,
        timestamp=_as_utc(rec.timestamp)
    )


# User schema (from bearer token)
class User(BaseModel):
    """Authenticated user"""
    id: str
    username: Optional[str] = None


# Post schemas
class OutfitItemSchema(BaseModel):
    id: Optional[str] = None
    label: str
    brand: str = ""
    shop_url: str


class OutfitTagSchema(BaseModel):
    id: Optional[str] = None
    item_id: str
    x_norm: float
    y_norm: float


class UserTagSchema(BaseModel):
    user_id: str
    display_name: str
    x_norm: float = Field(..., ge=0, le=1)
    y_norm: float = Field(..., ge=0, le=1)


class PostResponse(BaseModel):
    """Post response"""
    id: str
    user_id: str
    image_url: str
    caption: str
    timestamp: datetime
    likes: int
    is_liked: bool = False
    hashtags: List[str] = []
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temp: Optional[float] = None
    temp_fahrenheit: Optional[float] = None
    weather_icon: Optional[str] = None
    weather_symbol: Optional[str] = None
    outfit_items: List[OutfitItemSchema] = []
    outfit_tags: List[OutfitTagSchema] = []
    username: Optional[str] = None
    comments_count: int = 0
    hot_rank: Optional[int] = None

    @classmethod
    def from_post(cls, post: Post, viewer_id: Optional[str] = None, hot_rank: Optional[int] = None) -> "PostResponse":
        return cls(
            id=post.id,
            user_id=post.user_id,
            image_url=post.image_url,
            caption=post.caption,
            timestamp=post.timestamp,
            likes=post.likes,
            is_liked=post.is_liked_by(viewer_id),
            hashtags=sorted(post.hashtags),
            latitude=post.latitude,
            longitude=post.longitude,
            temp=post.temp,
            temp_fahrenheit=post.temp_fahrenheit,
            weather_icon=post.weather_icon,
            weather_symbol=post.weather_symbol_name,
            outfit_items=[OutfitItemSchema(**vars(i)) for i in post.outfit_items],
            outfit_tags=[OutfitTagSchema(**vars(t)) for t in post.outfit_tags],
            username=post.username,
            comments_count=post.comments_count,
            hot_rank=hot_rank
        )


class FeedResponse(BaseModel):
    """Feed page with cursor pagination"""
    posts: List[PostResponse]
    next_cursor: Optional[str] = None
    has_more: bool


class PostListResponse(BaseModel):
    """Post list response"""
    posts: List[PostResponse]
    total: int


class HotPostsResponse(BaseModel):
    """Hot posts response"""
    posts: List[PostResponse]
    refreshed_at: Optional[datetime] = None


class RankResponse(BaseModel):
    """Hot rank lookup response"""
    post_id: str
    rank: Optional[int] = None


class HashtagListResponse(BaseModel):
    """Hashtag list response"""
    hashtags: List[str]


class LikeResponse(BaseModel):
    """Like action response"""
    post_id: str
    is_liked: bool
    like_count: int


class NotificationResponse(BaseModel):
    """Notification response"""
    id: str
    post_id: str
    from_user_id: str
    from_username: str
    from_avatar_url: Optional[str] = None
    text: str
    kind: NotificationKind
    timestamp: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]


class MessageResponse(BaseModel):
    """Generic message response"""
    message: str
    success: bool = True


# Kafka event schemas
class PostEvent(BaseModel):
    """Post lifecycle event published to Kafka"""
    event_type: str
    post_id: str
    user_id: str
    data: Dict[str, Any] = {}
    timestamp: str
