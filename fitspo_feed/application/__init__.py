from .aggregator import CandidateAggregator
from .hot_rank import HotRankStore, rank_posts
from .pagination import FeedPaginator, fetch_post_page, merge_page


__all__ = [
    # aggregator.py
    "CandidateAggregator",
    # hot_rank.py
    "HotRankStore",
    "rank_posts",
    # pagination.py
    "FeedPaginator",
    "fetch_post_page",
    "merge_page",
]
