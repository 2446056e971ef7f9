"""
Client-side facet filtering for explore and map views
"""
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .models import Post

PostPredicate = Callable[[Post], bool]


class Season(str, Enum):
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"


class TimeBand(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class TempBand(str, Enum):
    COLD = "cold"
    COOL = "cool"
    WARM = "warm"
    HOT = "hot"


class WeatherCategory(str, Enum):
    SUNNY = "sunny"
    CLOUDY = "cloudy"


@dataclass(frozen=True)
class Filter:
    """Active facets; None means the facet is not applied"""
    season: Optional[Season] = None
    time_band: Optional[TimeBand] = None
    temp_band: Optional[TempBand] = None
    weather: Optional[WeatherCategory] = None
    tag: Optional[str] = None
    text: Optional[str] = None
    text_prefix: bool = False

    @property
    def is_empty(self) -> bool:
        return not any((self.season, self.time_band, self.temp_band, self.weather, self.tag, self.text))


def _localize(ts: datetime, tz: tzinfo) -> datetime:
    # naive timestamps are stored as UTC by the document store
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz)


def season_for_month(month: int) -> Season:
    if month in (3, 4, 5):
        return Season.SPRING
    if month in (6, 7, 8):
        return Season.SUMMER
    if month in (9, 10, 11):
        return Season.FALL
    return Season.WINTER


def time_band_for_hour(hour: int) -> TimeBand:
    if 5 <= hour < 11:
        return TimeBand.MORNING
    if 11 <= hour < 17:
        return TimeBand.AFTERNOON
    if 17 <= hour < 21:
        return TimeBand.EVENING
    return TimeBand.NIGHT


def temp_band_for_celsius(celsius: float) -> TempBand:
    fahrenheit = celsius * 9 / 5 + 32
    if fahrenheit < 40:
        return TempBand.COLD
    if fahrenheit < 60:
        return TempBand.COOL
    if fahrenheit < 80:
        return TempBand.WARM
    return TempBand.HOT


def matches_weather(post: Post, category: WeatherCategory) -> bool:
    symbol = post.weather_symbol_name
    if symbol is None:
        return False
    if category == WeatherCategory.SUNNY:
        return symbol in ("sun.max", "cloud.sun")
    return symbol.startswith("cloud")


def normalize_tag(raw: str) -> str:
    """Lowercase and drop surrounding whitespace and a leading '#'"""
    tag = raw.strip().lower()
    return tag[1:] if tag.startswith("#") else tag


def build_predicates(filter: Filter, tz: tzinfo = timezone.utc) -> List[PostPredicate]:
    """Translate the active facets of a filter into independent predicates"""
    predicates: List[PostPredicate] = []

    if filter.season is not None:
        season = Season(filter.season)
        predicates.append(lambda p: season_for_month(_localize(p.timestamp, tz).month) == season)

    if filter.time_band is not None:
        band = TimeBand(filter.time_band)
        predicates.append(lambda p: time_band_for_hour(_localize(p.timestamp, tz).hour) == band)

    if filter.temp_band is not None:
        temp_band = TempBand(filter.temp_band)
        predicates.append(lambda p: p.temp is not None and temp_band_for_celsius(p.temp) == temp_band)

    if filter.weather is not None:
        weather = WeatherCategory(filter.weather)
        predicates.append(lambda p: matches_weather(p, weather))

    if filter.tag:
        chip = normalize_tag(filter.tag)
        predicates.append(lambda p: chip in {t.lower() for t in p.hashtags})

    if filter.text:
        text = normalize_tag(filter.text)
        if filter.text_prefix:
            predicates.append(lambda p: any(t.lower().startswith(text) for t in p.hashtags))
        else:
            predicates.append(lambda p: text in {t.lower() for t in p.hashtags})

    return predicates


def apply_filter(
    posts: Iterable[Post],
    filter: Filter,
    *extra_predicates: PostPredicate,
    tz: tzinfo = timezone.utc
) -> List[Post]:
    """
    Keep the posts matching every active facet and every extra predicate.

    Input order is preserved.
    """
    predicates = build_predicates(filter, tz) + list(extra_predicates)
    return [p for p in posts if all(pred(p) for pred in predicates)]


def has_coordinate(post: Post) -> bool:
    """Extra predicate used by the map view"""
    return post.coordinate is not None


def compute_trending_tags(
    posts: Iterable[Post],
    now: datetime,
    days: int = 7,
    limit: int = 12
) -> List[str]:
    """Most frequent hashtags among posts from the last `days` days"""
    since = _localize(now, timezone.utc) - timedelta(days=days)
    counts: Counter = Counter()
    for post in posts:
        if _localize(post.timestamp, timezone.utc) >= since:
            counts.update(sorted(post.hashtags))
    return [tag for tag, _ in counts.most_common(limit)]
