"""Services built on the relay client.

Attributes:
    SimilarityFeed: Live, deduplicated feed of similarity relations.
        See [SimilarityFeed][shelfstr.services.feed.SimilarityFeed].
"""

from .feed import SimilarityFeed


__all__ = ["SimilarityFeed"]
