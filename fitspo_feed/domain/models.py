"""
Domain models - Core business entities
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class OutfitItem:
    """A piece of clothing shown in a post"""
    id: str
    label: str
    shop_url: str
    brand: str = ""


@dataclass(frozen=True)
class OutfitTag:
    """Pin placed on the post image pointing at an outfit item"""
    id: str
    item_id: str
    x_norm: float
    y_norm: float


@dataclass(frozen=True)
class UserTag:
    """Face tag placed on the post image pointing at a user"""
    user_id: str
    display_name: str
    x_norm: float
    y_norm: float


# OpenWeather icon prefix -> symbol name. Day/night variants only differ for
# clear and few-clouds conditions.
_WEATHER_SYMBOLS = {
    "03": "cloud",
    "04": "cloud",
    "09": "cloud.drizzle",
    "10": "cloud.rain",
    "11": "cloud.bolt",
    "13": "snow",
    "50": "cloud.fog",
}


@dataclass
class Post:
    """Post domain model"""
    id: str
    user_id: str
    image_url: str
    caption: str
    timestamp: datetime
    likes: int
    liked_by: FrozenSet[str] = frozenset()
    hashtags: FrozenSet[str] = frozenset()
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temp: Optional[float] = None
    weather_icon: Optional[str] = None
    outfit_items: List[OutfitItem] = field(default_factory=list)
    outfit_tags: List[OutfitTag] = field(default_factory=list)
    username: Optional[str] = None
    comments_count: int = 0
    object_id: Optional[str] = None

    def is_liked_by(self, user_id: Optional[str]) -> bool:
        """Check if the given user has liked this post"""
        return user_id is not None and user_id in self.liked_by

    @property
    def coordinate(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def temp_fahrenheit(self) -> Optional[float]:
        if self.temp is None:
            return None
        return self.temp * 9 / 5 + 32

    @property
    def weather_symbol_name(self) -> Optional[str]:
        """Map the OpenWeather icon code to a display symbol name"""
        if not self.weather_icon:
            return None
        day = self.weather_icon.endswith("d")
        prefix = self.weather_icon[:2]
        if prefix == "01":
            return "sun.max" if day else "moon"
        if prefix == "02":
            return "cloud.sun" if day else "cloud.moon"
        return _WEATHER_SYMBOLS.get(prefix)


@dataclass(frozen=True)
class RankedEntry:
    """Position of a post in the hot ranking"""
    post_id: str
    score: int
    rank: int


@dataclass
class Page:
    """One page of posts from the time-ordered post stream"""
    posts: List[Post]
    next_cursor: Optional[Any] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


@dataclass
class Record:
    """Raw document as returned by the document store"""
    id: str
    data: Dict[str, Any]


@dataclass
class RecordPage:
    """Raw page of documents plus the cursor for the following page"""
    records: List[Record]
    next_cursor: Optional[Any] = None


@dataclass
class WeatherReading:
    """Current weather at a location"""
    icon: Optional[str]
    temp: Optional[float]


class NotificationKind(str, Enum):
    """Notification kind enumeration"""
    MENTION = "mention"
    COMMENT = "comment"
    LIKE = "like"
    TAG = "tag"


@dataclass
class UserNotification:
    """In-app notification shown on the activity screen"""
    id: str
    user_id: str
    post_id: str
    from_user_id: str
    from_username: str
    text: str
    kind: NotificationKind
    timestamp: datetime
    from_avatar_url: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "postId": self.post_id,
            "fromUserId": self.from_user_id,
            "fromUsername": self.from_username,
            "fromAvatarURL": self.from_avatar_url,
            "text": self.text,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
        }
