"""
app/connectors package marker.
"""

from app.connectors.feed_fetcher import FeedFetcher, FeedFetchError
from app.connectors.feed_parser import FeedParseError, JobFeedParser

__all__ = [
    "FeedFetchError",
    "FeedFetcher",
    "FeedParseError",
    "JobFeedParser",
]
