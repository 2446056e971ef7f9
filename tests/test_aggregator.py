"""Tests for the bounded candidate window"""
import pytest

from fitspo_feed.application.aggregator import CandidateAggregator
from fitspo_feed.domain.exceptions import StoreUnavailableError

from conftest import BASE_TIME, post_doc, seed_posts


@pytest.mark.asyncio
async def test_stops_when_store_reports_no_more_pages(store):
    seed_posts(store, 30)
    aggregator = CandidateAggregator(store, page_size=50, max_pages=3)

    candidates = await aggregator.collect()

    assert len(candidates) == 30
    assert store.query_calls == 1


@pytest.mark.asyncio
async def test_page_limit_bounds_the_window(store):
    seed_posts(store, 500)
    aggregator = CandidateAggregator(store, page_size=50, max_pages=3)

    candidates = await aggregator.collect()

    assert len(candidates) == 150
    assert store.query_calls == 3
    # newest posts only
    assert candidates[0].id == "p000"
    assert candidates[-1].id == "p149"


@pytest.mark.asyncio
async def test_short_final_page_ends_collection(store):
    seed_posts(store, 70)
    aggregator = CandidateAggregator(store, page_size=50, max_pages=3)

    candidates = await aggregator.collect()

    assert len(candidates) == 70
    assert store.query_calls == 2


@pytest.mark.asyncio
async def test_store_failure_propagates(store):
    seed_posts(store, 10)
    store.failures = 1
    aggregator = CandidateAggregator(store, page_size=50, max_pages=3)

    with pytest.raises(StoreUnavailableError):
        await aggregator.collect()


@pytest.mark.asyncio
async def test_top_hashtags_counts_across_window(store):
    store.put("posts", "a", post_doc(hashtags=["street", "denim"], timestamp=BASE_TIME))
    store.put("posts", "b", post_doc(hashtags=["street"], timestamp=BASE_TIME))
    store.put("posts", "c", post_doc(hashtags=["street", "vintage", "denim"], timestamp=BASE_TIME))
    aggregator = CandidateAggregator(store, page_size=50, max_pages=3)

    assert await aggregator.top_hashtags(limit=2) == ["street", "denim"]
