"""Feed retrieval and raw parsing."""

from ical_feeds.feeds.parser import parse_feed
from ical_feeds.feeds.retriever import FeedRetriever, validate_feed_url

__all__ = [
    "FeedRetriever",
    "parse_feed",
    "validate_feed_url",
]
