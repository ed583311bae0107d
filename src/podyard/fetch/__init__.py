"""Source fetching for package roots."""

from .cache import SourceCache, cache_key
from .commands import CommandRunner, hint_for_command
from .fetcher import FetchResult, Fetcher, SourceFetcher

__all__ = [
    "CommandRunner",
    "FetchResult",
    "Fetcher",
    "SourceCache",
    "SourceFetcher",
    "cache_key",
    "hint_for_command",
]
