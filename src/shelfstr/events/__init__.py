"""Domain parsing of relay events.

Attributes:
    parse_similarity_event: Kind-1729 event to
        [SimilarityRelation][shelfstr.models.similarity.SimilarityRelation].
    build_similarity_event: Unsigned kind-1729 event for two ISBNs.
    parse_profile_event: Kind-0 event to
        [Profile][shelfstr.models.profile.Profile].
"""

from .profile import parse_profile_content, parse_profile_event
from .similarity import (
    build_similarity_event,
    parse_similarity_event,
    validate_similarity_event,
)


__all__ = [
    "build_similarity_event",
    "parse_profile_content",
    "parse_profile_event",
    "parse_similarity_event",
    "validate_similarity_event",
]
