"""Similarity relations between two books.

A similarity relation is the domain reading of a kind-1729 event: an author
asserts that two items, each identified by ISBN, are similar with a strength
``score`` in ``[0, 1]``. Instances are produced by
[parse_similarity_event()][shelfstr.events.similarity.parse_similarity_event]
and never by hand from relay input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ._validation import (
    validate_instance,
    validate_str_no_null,
    validate_str_not_empty,
    validate_timestamp,
)
from .constants import ItemScheme


@dataclass(frozen=True, slots=True)
class ItemRef:
    """Reference to an item by scheme and identifier.

    Examples:
        ```python
        ItemRef.from_tag_value("isbn:9781729527085").identifier  # '9781729527085'
        str(ItemRef(identifier="1639940251"))                    # 'isbn:1639940251'
        ```
    """

    identifier: str
    scheme: ItemScheme = ItemScheme.ISBN

    def __post_init__(self) -> None:
        validate_str_not_empty(self.identifier, "identifier")
        object.__setattr__(self, "scheme", ItemScheme(self.scheme))

    def __str__(self) -> str:
        return f"{self.scheme}:{self.identifier}"

    @classmethod
    def from_tag_value(cls, value: str) -> ItemRef:
        """Build a reference from an ``i`` tag value, stripping the scheme prefix."""
        prefix = f"{ItemScheme.ISBN}:"
        identifier = value[len(prefix) :] if value.startswith(prefix) else value
        return cls(identifier=identifier)


@dataclass(frozen=True, slots=True)
class SimilarityRelation:
    """A validated similarity relation between two items.

    Attributes:
        id: Id of the source event.
        author: Public key of the event author.
        created_at: Unix timestamp of the source event.
        content: Free-text justification (may be empty).
        item_a: First item, in tag order.
        item_b: Second item, in tag order.
        score: Finite similarity strength in ``[0, 1]``.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If ``score`` is not finite or lies outside ``[0, 1]``.
    """

    id: str
    author: str
    created_at: int
    content: str
    item_a: ItemRef
    item_b: ItemRef
    score: float

    def __post_init__(self) -> None:
        validate_str_not_empty(self.id, "id")
        validate_str_not_empty(self.author, "author")
        validate_timestamp(self.created_at, "created_at")
        validate_str_no_null(self.content, "content")
        validate_instance(self.item_a, ItemRef, "item_a")
        validate_instance(self.item_b, ItemRef, "item_b")
        if isinstance(self.score, bool) or not isinstance(self.score, int | float):
            raise TypeError(f"score must be a float, got {type(self.score).__name__}")
        if not math.isfinite(self.score) or not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score must be a finite number in [0, 1], got {self.score}")
        object.__setattr__(self, "score", float(self.score))
