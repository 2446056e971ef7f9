"""
Application services - Business logic layer

This module contains the business logic around posts:
- Post upload, like/unlike, delete with cascade
- Live post snapshots
- Notifications
- Post and hashtag search
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
import logging
import re
import uuid

from PIL import Image, UnidentifiedImageError

from ..config import settings
from ..domain.exceptions import (
    PermissionDeniedError, PostNotFoundError, SearchUnavailableError, UploadError
)
from ..domain.filters import normalize_tag
from ..domain.models import (
    NotificationKind, OutfitItem, OutfitTag, Post, Record, UserNotification, UserTag
)
from ..domain.repositories import IBlobStore, IDocumentStore, ISearchIndex, IWeatherLookup
from ..schemas import decode_notification, decode_post, decode_posts, decode_user_tag

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"(?:\s|^)#(\w+)")
MENTION_PATTERN = re.compile(r"(?:\s|^)@([A-Za-z0-9_]+)")


def extract_hashtags(text: str) -> List[str]:
    """Extract lowercased unique hashtags from text"""
    if not text:
        return []
    return sorted({tag.lower() for tag in HASHTAG_PATTERN.findall(text)})


def extract_mentions(text: str) -> List[str]:
    """Extract lowercased unique mentions from text"""
    if not text:
        return []
    return sorted({name.lower() for name in MENTION_PATTERN.findall(text)})


def to_jpeg(image_data: bytes, quality: int) -> bytes:
    """Re-encode an uploaded image as JPEG"""
    try:
        with Image.open(BytesIO(image_data)) as img:
            if img.mode == 'RGBA':
                background = Image.new('RGB', img.size, (255, 255, 255))
                background.paste(img, mask=img.split()[3])
                img = background
            elif img.mode != 'RGB':
                img = img.convert('RGB')

            buffer = BytesIO()
            img.save(buffer, format='JPEG', quality=quality, optimize=True)
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise UploadError(f"Image conversion failed: {e}") from e


class NotificationService:
    """Notification service - creates and removes activity notifications"""

    def __init__(self, store: IDocumentStore):
        self.store = store

    async def _sender_profile(self, user_id: str) -> Dict[str, Optional[str]]:
        record = await self.store.get(settings.USERS_COLLECTION, user_id)
        data = record.data if record else {}
        return {
            "name": data.get("displayName") or data.get("username") or "User",
            "avatar": data.get("avatarURL"),
        }

    async def add(self, notification: UserNotification) -> UserNotification:
        """Store a notification for its recipient"""
        record = await self.store.insert(settings.NOTIFICATIONS_COLLECTION, notification.to_document())
        notification.id = record.id
        return notification

    async def _notify(
        self,
        recipient_id: str,
        post_id: str,
        from_user_id: str,
        text: str,
        kind: NotificationKind,
        profile: Optional[Dict[str, Optional[str]]] = None
    ) -> UserNotification:
        profile = profile or await self._sender_profile(from_user_id)
        return await self.add(UserNotification(
            id="",
            user_id=recipient_id,
            post_id=post_id,
            from_user_id=from_user_id,
            from_username=profile["name"],
            from_avatar_url=profile["avatar"],
            text=text,
            kind=kind,
            timestamp=datetime.now(timezone.utc)
        ))

    async def notify_like(self, post_owner_id: str, post_id: str, from_user_id: str) -> Optional[UserNotification]:
        """Notify the post owner about a like; self-likes are ignored"""
        if post_owner_id == from_user_id:
            return None
        return await self._notify(post_owner_id, post_id, from_user_id, "", NotificationKind.LIKE)

    async def notify_tags(
        self,
        post_id: str,
        caption: str,
        from_user_id: str,
        tagged_user_ids: Sequence[str]
    ) -> List[UserNotification]:
        """Notify users tagged in a post"""
        targets = [uid for uid in dict.fromkeys(tagged_user_ids) if uid != from_user_id]
        if not targets:
            return []

        profile = await self._sender_profile(from_user_id)
        return [
            await self._notify(uid, post_id, from_user_id, caption, NotificationKind.TAG, profile)
            for uid in targets
        ]

    async def notify_mentions(
        self,
        post_id: str,
        text: str,
        from_user_id: str,
        exclude: Sequence[str] = ()
    ) -> List[UserNotification]:
        """Notify users mentioned with @username in text"""
        sent = []
        skip = set(exclude) | {from_user_id}
        for name in extract_mentions(text):
            users = await self.store.find_where(settings.USERS_COLLECTION, "username_lc", name, limit=1)
            if not users or users[0].id in skip:
                continue
            skip.add(users[0].id)
            sent.append(await self._notify(users[0].id, post_id, from_user_id, text, NotificationKind.MENTION))
        return sent

    async def list_for_user(self, user_id: str) -> List[UserNotification]:
        """Notifications for a user, newest first"""
        records = await self.store.find_where(
            settings.NOTIFICATIONS_COLLECTION,
            "userId",
            user_id,
            order_by="timestamp",
            descending=True
        )
        notifications = [decode_notification(r) for r in records]
        return [n for n in notifications if n is not None]

    async def delete_for_post(self, post_id: str) -> int:
        """Delete every notification referencing the post"""
        records = await self.store.find_where(settings.NOTIFICATIONS_COLLECTION, "postId", post_id)
        if not records:
            return 0
        await self.store.commit_batch([
            ("delete", settings.NOTIFICATIONS_COLLECTION, r.id, None) for r in records
        ])
        logger.info(f"Deleted {len(records)} notifications for post {post_id}")
        return len(records)

    async def delete(self, user_id: str, notification_id: str) -> bool:
        """Delete a single notification owned by user"""
        record = await self.store.get(settings.NOTIFICATIONS_COLLECTION, notification_id)
        if record is None or record.data.get("userId") != user_id:
            return False
        return await self.store.delete(settings.NOTIFICATIONS_COLLECTION, notification_id)


class PostService:
    """Post service - handles post lifecycle and interactions"""

    def __init__(
        self,
        store: IDocumentStore,
        blob_store: IBlobStore,
        weather: Optional[IWeatherLookup],
        notifications: NotificationService,
        events=None
    ):
        self.store = store
        self.blob_store = blob_store
        self.weather = weather
        self.notifications = notifications
        self.events = events

    async def get_post(self, post_id: str) -> Post:
        record = await self.store.get(settings.POSTS_COLLECTION, post_id)
        post = decode_post(record) if record else None
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    async def upload_post(
        self,
        user_id: str,
        image_data: bytes,
        caption: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        tags: Sequence[UserTag] = (),
        outfit_items: Sequence[OutfitItem] = (),
        outfit_tags: Sequence[OutfitTag] = ()
    ) -> Post:
        """
        Upload a new post

        Args:
            user_id: Author ID
            image_data: Raw image bytes
            caption: Post caption; hashtags and mentions are extracted from it
            latitude/longitude: Optional coordinates, used for weather lookup
            tags: Face tags of other users
            outfit_items: Items worn in the outfit
            outfit_tags: Pins placed on the image for outfit items

        Returns:
            The stored post
        """
        jpeg = to_jpeg(image_data, settings.IMAGE_QUALITY)
        key = f"post_images/{uuid.uuid4()}.jpg"
        image_url = await self.blob_store.upload(jpeg, key, content_type="image/jpeg")

        data: Dict[str, Any] = {
            "userId": user_id,
            "imageURL": image_url,
            "caption": caption,
            "timestamp": datetime.now(timezone.utc),
            "likes": 0,
            "likedBy": [],
            "hashtags": extract_hashtags(caption),
            "scanResults": [
                {"id": i.id, "label": i.label, "brand": i.brand, "shopURL": i.shop_url}
                for i in outfit_items
            ],
            "outfitTags": [
                {"id": t.id, "itemId": t.item_id, "xNorm": t.x_norm, "yNorm": t.y_norm}
                for t in outfit_tags
            ],
        }
        if latitude is not None:
            data["latitude"] = latitude
        if longitude is not None:
            data["longitude"] = longitude

        if latitude is not None and longitude is not None and self.weather:
            reading = await self.weather.current(latitude, longitude)
            if reading:
                if reading.icon:
                    data["weatherIcon"] = reading.icon
                if reading.temp is not None:
                    data["temp"] = reading.temp

        record = await self.store.insert(settings.POSTS_COLLECTION, data)
        logger.info(f"User {user_id} uploaded post {record.id}")

        if tags:
            await self.store.commit_batch([
                ("set", settings.POST_TAGS_COLLECTION, f"{record.id}_{t.user_id}", {
                    "postId": record.id,
                    "uid": t.user_id,
                    "displayName": t.display_name,
                    "xNorm": t.x_norm,
                    "yNorm": t.y_norm,
                })
                for t in tags
            ])
            await self.notifications.notify_tags(record.id, caption, user_id, [t.user_id for t in tags])

        await self.notifications.notify_mentions(record.id, caption, user_id, exclude=[t.user_id for t in tags])

        if self.events:
            await self.events.publish_post_created(record.id, user_id, {
                "image_url": image_url,
                "hashtags": data["hashtags"],
            })

        post = decode_post(record)
        if post is None:
            raise UploadError(f"Stored post {record.id} could not be decoded")
        return post

    async def set_like(self, post_id: str, user_id: str, liked: bool) -> Post:
        """Like or unlike a post; repeating the same action changes nothing"""
        record, changed = await self.store.update_membership(
            settings.POSTS_COLLECTION,
            post_id,
            set_field="likedBy",
            counter_field="likes",
            member=user_id,
            add=liked
        )
        post = decode_post(record) if record else None
        if post is None:
            raise PostNotFoundError(post_id)

        # only the call whose update applied reports the like
        if changed:
            if liked:
                await self.notifications.notify_like(post.user_id, post.id, user_id)
            if self.events:
                await self.events.publish_post_liked(post.id, post.user_id, user_id, liked)
        return post

    async def toggle_like(self, post_id: str, user_id: str) -> Post:
        """Flip the like state of the post for user"""
        post = await self.get_post(post_id)
        return await self.set_like(post_id, user_id, not post.is_liked_by(user_id))

    async def delete_post(self, post_id: str, user_id: str) -> None:
        """Delete a post with its tags, notifications and stored image"""
        record = await self.store.get(settings.POSTS_COLLECTION, post_id)
        if record is None:
            raise PostNotFoundError(post_id)
        if record.data.get("userId") != user_id:
            raise PermissionDeniedError("You don't have permission to delete this post")

        await self.store.delete(settings.POSTS_COLLECTION, post_id)
        await self.notifications.delete_for_post(post_id)

        tag_records = await self.store.find_where(settings.POST_TAGS_COLLECTION, "postId", post_id)
        if tag_records:
            await self.store.commit_batch([
                ("delete", settings.POST_TAGS_COLLECTION, r.id, None) for r in tag_records
            ])

        image_url = record.data.get("imageURL")
        key = self.blob_store.key_for_url(image_url) if isinstance(image_url, str) else None
        if key and not await self.blob_store.delete(key):
            logger.warning(f"Image {key} of deleted post {post_id} was not removed")

        if self.events:
            await self.events.publish_post_deleted(post_id, user_id)
        logger.info(f"Deleted post {post_id}")

    async def image_link(self, post_id: str) -> str:
        """Temporary signed link to the post image, or its public URL"""
        post = await self.get_post(post_id)
        key = self.blob_store.key_for_url(post.image_url)
        if key is None:
            return post.image_url
        signed = await self.blob_store.signed_url(key, settings.SIGNED_URL_EXPIRATION)
        return signed or post.image_url

    async def fetch_tags(self, post_id: str) -> List[UserTag]:
        """Face tags of a post"""
        records = await self.store.find_where(settings.POST_TAGS_COLLECTION, "postId", post_id)
        tags = [decode_user_tag(r) for r in records]
        return [t for t in tags if t is not None]

    @asynccontextmanager
    async def watch_post(self, post_id: str) -> AsyncIterator[AsyncIterator[Post]]:
        """
        Live snapshots of a post (like and comment counts).

        The subscription is released when the context exits.
        """
        async with self.store.subscribe(settings.POSTS_COLLECTION, post_id) as snapshots:
            yield self._decoded(snapshots)

    async def _decoded(self, snapshots: AsyncIterator[Record]) -> AsyncIterator[Post]:
        async for record in snapshots:
            post = decode_post(record)
            if post is not None:
                yield post


class SearchService:
    """Search service - post and hashtag search with document store fallback"""

    def __init__(
        self,
        store: IDocumentStore,
        index: Optional[ISearchIndex],
        cache,
        aggregator
    ):
        self.store = store
        self.index = index
        self.cache = cache
        self.aggregator = aggregator

    async def search_posts(self, query: str, limit: int = 40) -> List[Post]:
        """Search posts in the index, falling back to exact hashtag lookup"""
        query = query.strip()
        if not query:
            return []

        if self.index:
            try:
                hits = await self.index.search_posts(query, limit)
                return decode_posts(hits)
            except SearchUnavailableError as e:
                logger.warning(f"Search index unavailable, falling back to hashtag lookup: {e}")

        return await self.search_by_hashtag(query, limit)

    async def search_by_hashtag(self, raw: str, limit: int = 40) -> List[Post]:
        """Posts whose hashtags contain the tag, most liked first"""
        tag = normalize_tag(raw)
        if not tag:
            return []

        records = await self.store.find_where(settings.POSTS_COLLECTION, "hashtags", tag, limit=limit)
        posts = decode_posts(records)
        posts.sort(key=lambda p: p.likes, reverse=True)
        return posts

    async def top_hashtags(self, limit: int = 20) -> List[str]:
        """Most used hashtags across recent posts, cached"""
        cached = await self.cache.get_top_hashtags()
        if cached is not None:
            return cached[:limit]

        hashtags = await self.aggregator.top_hashtags(settings.TOP_HASHTAGS_LIMIT)
        await self.cache.set_top_hashtags(hashtags)
        return hashtags[:limit]

    async def suggest_hashtags(self, prefix: str, limit: int = 10) -> List[str]:
        """Hashtag suggestions for a typed prefix"""
        prefix = normalize_tag(prefix)
        if not prefix:
            return []

        if self.index:
            try:
                return await self.index.suggest_hashtags(prefix, limit)
            except SearchUnavailableError as e:
                logger.warning(f"Hashtag suggestions unavailable from index: {e}")

        top = await self.top_hashtags(settings.TOP_HASHTAGS_LIMIT)
        return [tag for tag in top if tag.startswith(prefix)][:limit]
