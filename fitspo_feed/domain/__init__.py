from .exceptions import (
    FitSpoError,
    StoreUnavailableError,
    PostNotFoundError,
    PermissionDeniedError,
    SearchUnavailableError,
    UploadError,
)
from .filters import Filter, Season, TimeBand, TempBand, WeatherCategory, apply_filter
from .models import Post, Page, RankedEntry, Record, RecordPage


__all__ = [
    # exceptions.py
    "FitSpoError",
    "StoreUnavailableError",
    "PostNotFoundError",
    "PermissionDeniedError",
    "SearchUnavailableError",
    "UploadError",
    # filters.py
    "Filter",
    "Season",
    "TimeBand",
    "TempBand",
    "WeatherCategory",
    "apply_filter",
    # models.py
    "Post",
    "Page",
    "RankedEntry",
    "Record",
    "RecordPage",
]
