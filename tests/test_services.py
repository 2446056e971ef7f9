"""Tests for post, notification and search services"""
import asyncio
from io import BytesIO
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import EndpointConnectionError
from PIL import Image

from fitspo_feed.application.services import (
    NotificationService,
    PostService,
    SearchService,
    extract_hashtags,
    extract_mentions,
    to_jpeg,
)
from fitspo_feed.domain.exceptions import PermissionDeniedError, PostNotFoundError, UploadError
from fitspo_feed.domain.models import NotificationKind, OutfitItem, Record, UserTag, WeatherReading
from fitspo_feed.infrastructure.storage import StorageManager

from conftest import FakeSearchIndex, FakeWeather, post_doc


def png_bytes(mode="RGBA"):
    buffer = BytesIO()
    Image.new(mode, (4, 4)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def notifications(store):
    return NotificationService(store)


@pytest.fixture
def weather():
    return FakeWeather(WeatherReading(icon="01d", temp=24.0))


@pytest.fixture
def service(store, blob_store, weather, notifications, events):
    return PostService(store, blob_store, weather, notifications, events)


def notifications_in(store):
    return list(store.collections.get("notifications", {}).values())


def test_extract_hashtags_and_mentions():
    caption = "#OOTD with @Anna and @bob_1 #ootd #denim email@x.com x#no"
    assert extract_hashtags(caption) == ["denim", "ootd"]
    assert extract_mentions(caption) == ["anna", "bob_1"]
    assert extract_hashtags("") == []


def test_to_jpeg_converts_transparent_images():
    jpeg = to_jpeg(png_bytes(), quality=80)
    with Image.open(BytesIO(jpeg)) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"


def test_to_jpeg_rejects_non_images():
    with pytest.raises(UploadError):
        to_jpeg(b"not an image", quality=80)


class TestLikes:
    @pytest.mark.asyncio
    async def test_like_updates_count_and_members_together(self, store, service, events):
        store.put("posts", "p1", post_doc(user_id="owner"))

        post = await service.set_like("p1", "fan", True)

        assert post.likes == 1
        assert post.liked_by == frozenset({"fan"})
        events.publish_post_liked.assert_awaited_once_with("p1", "owner", "fan", True)
        notes = notifications_in(store)
        assert len(notes) == 1
        assert notes[0]["kind"] == NotificationKind.LIKE.value
        assert notes[0]["userId"] == "owner"

    @pytest.mark.asyncio
    async def test_repeated_like_is_a_no_op(self, store, service, events):
        store.put("posts", "p1", post_doc(user_id="owner"))

        await service.set_like("p1", "fan", True)
        post = await service.set_like("p1", "fan", True)

        assert post.likes == 1
        assert events.publish_post_liked.await_count == 1
        assert len(notifications_in(store)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_double_like_notifies_once(self, store, blob_store, weather, events):
        class InterleavingStore(type(store)):
            async def get(self, collection, doc_id):
                record = await super().get(collection, doc_id)
                await asyncio.sleep(0)
                return record

            async def update_membership(self, *args, **kwargs):
                await asyncio.sleep(0)
                return await super().update_membership(*args, **kwargs)

        racy = InterleavingStore()
        racy.put("posts", "p1", post_doc(user_id="owner"))
        service = PostService(racy, blob_store, weather, NotificationService(racy), events)

        first, second = await asyncio.gather(
            service.set_like("p1", "fan", True),
            service.set_like("p1", "fan", True),
        )

        assert (first.likes, second.likes) == (1, 1)
        assert len(notifications_in(racy)) == 1
        assert events.publish_post_liked.await_count == 1

    @pytest.mark.asyncio
    async def test_unlike_without_like_does_not_go_negative(self, store, service):
        store.put("posts", "p1", post_doc(user_id="owner"))

        post = await service.set_like("p1", "fan", False)

        assert post.likes == 0

    @pytest.mark.asyncio
    async def test_toggle_like_flips_state(self, store, service):
        store.put("posts", "p1", post_doc(user_id="owner"))

        liked = await service.toggle_like("p1", "fan")
        unliked = await service.toggle_like("p1", "fan")

        assert liked.likes == 1 and liked.is_liked_by("fan")
        assert unliked.likes == 0 and not unliked.is_liked_by("fan")

    @pytest.mark.asyncio
    async def test_self_like_is_not_notified(self, store, service):
        store.put("posts", "p1", post_doc(user_id="owner"))

        await service.set_like("p1", "owner", True)

        assert notifications_in(store) == []

    @pytest.mark.asyncio
    async def test_like_on_missing_post(self, service):
        with pytest.raises(PostNotFoundError):
            await service.set_like("missing", "fan", True)


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_cascades(self, store, blob_store, service, events):
        blob_store.objects["post_images/a.jpg"] = b"jpeg"
        store.put("posts", "p1", post_doc(user_id="owner"))
        store.put("post_tags", "p1_friend", {"postId": "p1", "uid": "friend", "displayName": "F", "xNorm": 0.1, "yNorm": 0.1})
        store.put("notifications", "n1", {"postId": "p1", "userId": "owner"})
        store.put("notifications", "n2", {"postId": "other", "userId": "owner"})

        await service.delete_post("p1", "owner")

        assert "p1" not in store.collections["posts"]
        assert store.collections["post_tags"] == {}
        assert list(store.collections["notifications"]) == ["n2"]
        assert blob_store.objects == {}
        events.publish_post_deleted.assert_awaited_once_with("p1", "owner")

    @pytest.mark.asyncio
    async def test_unreachable_blob_store_does_not_fail_delete(self, store, weather, notifications, events):
        storage = StorageManager()
        storage.client = MagicMock()
        storage.client.delete_object.side_effect = EndpointConnectionError(endpoint_url=storage.base_url)
        store.put("posts", "p1", post_doc(user_id="owner", imageURL=storage.url_for_key("post_images/a.jpg")))
        service = PostService(store, storage, weather, notifications, events)

        await service.delete_post("p1", "owner")

        storage.client.delete_object.assert_called_once_with(Bucket=storage.bucket_name, Key="post_images/a.jpg")
        assert "p1" not in store.collections["posts"]
        events.publish_post_deleted.assert_awaited_once_with("p1", "owner")

    @pytest.mark.asyncio
    async def test_only_owner_can_delete(self, store, service):
        store.put("posts", "p1", post_doc(user_id="owner"))

        with pytest.raises(PermissionDeniedError):
            await service.delete_post("p1", "someone-else")
        assert "p1" in store.collections["posts"]

    @pytest.mark.asyncio
    async def test_blob_failure_does_not_fail_delete(self, store, blob_store, service):
        blob_store.fail_delete = True
        store.put("posts", "p1", post_doc(user_id="owner"))

        await service.delete_post("p1", "owner")

        assert "p1" not in store.collections["posts"]

    @pytest.mark.asyncio
    async def test_delete_missing_post(self, service):
        with pytest.raises(PostNotFoundError):
            await service.delete_post("missing", "owner")


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_stores_post_with_weather_and_hashtags(self, store, blob_store, weather, service, events):
        post = await service.upload_post(
            "owner",
            png_bytes(),
            "Sunday #OOTD #denim",
            latitude=40.7,
            longitude=-74.0,
            outfit_items=[OutfitItem(id="i1", label="Jacket", shop_url="https://shop/jacket")],
        )

        assert post.likes == 0
        assert post.hashtags == frozenset({"ootd", "denim"})
        assert post.weather_icon == "01d"
        assert post.temp == 24.0
        assert [i.label for i in post.outfit_items] == ["Jacket"]
        assert weather.calls == [(40.7, -74.0)]

        [key] = blob_store.objects
        assert key.startswith("post_images/") and key.endswith(".jpg")
        assert post.image_url.endswith(key)
        events.publish_post_created.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_weather_is_skipped_without_coordinates(self, weather, service):
        post = await service.upload_post("owner", png_bytes("RGB"), "plain", latitude=40.7)

        assert weather.calls == []
        assert post.weather_icon is None

    @pytest.mark.asyncio
    async def test_tags_and_mentions_notify_once_per_user(self, store, service):
        store.put("users", "u-anna", {"username": "Anna", "username_lc": "anna"})
        store.put("users", "owner", {"displayName": "Olive", "username_lc": "olive"})

        post = await service.upload_post(
            "owner",
            png_bytes(),
            "with @anna and @olive",
            tags=[UserTag("u-anna", "Anna", 0.5, 0.5), UserTag("owner", "Olive", 0.1, 0.1)],
        )

        notes = notifications_in(store)
        assert [(n["userId"], n["kind"]) for n in notes] == [("u-anna", "tag")]
        assert notes[0]["fromUsername"] == "Olive"
        assert set(store.collections["post_tags"]) == {f"{post.id}_u-anna", f"{post.id}_owner"}
        assert [t.user_id for t in await service.fetch_tags(post.id)] == ["u-anna", "owner"]


@pytest.mark.asyncio
async def test_watch_post_streams_snapshots_and_releases_subscription(store, service):
    store.put("posts", "p1", post_doc(user_id="owner", likes=1))

    async with service.watch_post("p1") as snapshots:
        first = await snapshots.__anext__()
        store.put("posts", "p1", post_doc(user_id="owner", likes=2))
        store.push("posts", "p1")
        second = await asyncio.wait_for(snapshots.__anext__(), timeout=1)

    assert (first.likes, second.likes) == (1, 2)
    assert store.closed_subscriptions == ["posts/p1"]


class TestNotifications:
    @pytest.mark.asyncio
    async def test_list_for_user_is_newest_first(self, store, notifications):
        await notifications.notify_like("owner", "p1", "fan")
        await notifications.notify_like("owner", "p2", "fan")
        await notifications.notify_like("someone", "p3", "fan")

        listed = await notifications.list_for_user("owner")

        assert sorted(n.post_id for n in listed) == ["p1", "p2"]
        assert all(n.user_id == "owner" for n in listed)
        assert listed[0].timestamp >= listed[-1].timestamp

    @pytest.mark.asyncio
    async def test_delete_checks_recipient(self, store, notifications):
        note = await notifications.notify_like("owner", "p1", "fan")

        assert await notifications.delete("fan", note.id) is False
        assert await notifications.delete("owner", note.id) is True
        assert notifications_in(store) == []


class TestSearch:
    def make_service(self, store, cache, index):
        aggregator = AsyncMock()
        aggregator.top_hashtags.return_value = ["street", "streetwear", "denim"]
        return SearchService(store, index, cache, aggregator)

    @pytest.mark.asyncio
    async def test_index_results_are_decoded(self, store, cache):
        index = FakeSearchIndex(hits=[
            Record(id="h1", data=post_doc(objectID="h1")),
            Record(id="h2", data={"objectID": "h2"}),
        ])
        service = self.make_service(store, cache, index)

        posts = await service.search_posts("fit")

        assert [p.id for p in posts] == ["h1"]

    @pytest.mark.asyncio
    async def test_falls_back_to_hashtag_lookup_when_index_is_down(self, store, cache):
        store.put("posts", "a", post_doc(likes=1, hashtags=["street"]))
        store.put("posts", "b", post_doc(likes=9, hashtags=["street", "denim"]))
        store.put("posts", "c", post_doc(likes=5, hashtags=["denim"]))
        service = self.make_service(store, cache, FakeSearchIndex(available=False))

        posts = await service.search_posts("#Street")

        assert [p.id for p in posts] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_blank_query_returns_nothing(self, store, cache):
        service = self.make_service(store, cache, FakeSearchIndex())
        assert await service.search_posts("   ") == []

    @pytest.mark.asyncio
    async def test_top_hashtags_are_cached(self, store, cache):
        service = self.make_service(store, cache, None)

        assert await service.top_hashtags(2) == ["street", "streetwear"]
        cache.set_top_hashtags.assert_awaited_once_with(["street", "streetwear", "denim"])

        cache.get_top_hashtags.return_value = ["denim", "street"]
        assert await service.top_hashtags(1) == ["denim"]
        assert service.aggregator.top_hashtags.await_count == 1

    @pytest.mark.asyncio
    async def test_suggestions_fall_back_to_top_hashtags(self, store, cache):
        service = self.make_service(store, cache, FakeSearchIndex(available=False))
        assert await service.suggest_hashtags("#Str") == ["street", "streetwear"]

    @pytest.mark.asyncio
    async def test_suggestions_from_index(self, store, cache):
        index = FakeSearchIndex()
        index.facets = ["denim", "dress"]
        service = self.make_service(store, cache, index)
        assert await service.suggest_hashtags("d", limit=1) == ["denim"]
