"""FitSpo feed service: home feed, hot ranking, explore filters."""

__version__ = "1.0.0"
