"""
Kind-1729 similarity events: validation, parsing and building.

A similarity event carries its payload entirely in tags::

    ["i", "isbn:9781729527085"], ["kind", "isbn"],
    ["i", "isbn:1639940251"],    ["kind", "isbn"],
    ["similarity", "0.92"]

[parse_similarity_event()][shelfstr.events.similarity.parse_similarity_event]
checks the tag shape first (exactly two ``i`` tags, exactly two ``kind``
tags equal to ``isbn``, exactly one ``similarity`` tag) and only then parses
the score. It never raises for malformed input: anything that fails is a
filtered-out event and yields ``None``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from shelfstr.core.exceptions import ValidationError
from shelfstr.models import Event, EventKind, ItemRef, ItemScheme, SimilarityRelation, UnsignedEvent


logger = logging.getLogger("events.similarity")

ITEM_TAG = "i"
KIND_TAG = "kind"
SCORE_TAG = "similarity"

_ITEM_COUNT = 2


def _coerce_event(raw: Event | Mapping[str, Any]) -> Event:
    if isinstance(raw, Event):
        return raw
    try:
        return Event.from_dict(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"not a well-formed event: {e}") from e


def _parse_score(value: str) -> float:
    try:
        score = float(value)
    except ValueError:
        raise ValidationError(f"score is not numeric: {value!r}") from None
    if math.isnan(score):
        raise ValidationError("score is NaN")
    if math.isinf(score) or not 0.0 <= score <= 1.0:
        raise ValidationError(f"score out of range [0, 1]: {value}")
    return score


def _tag_values(event: Event, name: str) -> list[str]:
    # Counts every tag with this name, valueless ones included.
    tags = [tag for tag in event.tags if tag and tag[0] == name]
    if any(len(tag) < 2 for tag in tags):  # noqa: PLR2004
        raise ValidationError(f"'{name}' tag without a value")
    return [tag[1] for tag in tags]


def validate_similarity_event(event: Event) -> SimilarityRelation:
    """Validate the tag shape of *event* and build the relation.

    Raises:
        ValidationError: If the shape or the score is invalid.
    """
    items = _tag_values(event, ITEM_TAG)
    if len(items) != _ITEM_COUNT:
        raise ValidationError(f"expected {_ITEM_COUNT} '{ITEM_TAG}' tags, got {len(items)}")

    kinds = _tag_values(event, KIND_TAG)
    if len(kinds) != _ITEM_COUNT:
        raise ValidationError(f"expected {_ITEM_COUNT} '{KIND_TAG}' tags, got {len(kinds)}")
    if any(k != ItemScheme.ISBN for k in kinds):
        raise ValidationError(f"unsupported item kind in {kinds}")

    scores = _tag_values(event, SCORE_TAG)
    if len(scores) != 1:
        raise ValidationError(f"expected one '{SCORE_TAG}' tag, got {len(scores)}")

    score = _parse_score(scores[0])

    try:
        item_a, item_b = (ItemRef.from_tag_value(v) for v in items)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid item reference: {e}") from e

    return SimilarityRelation(
        id=event.id,
        author=event.pubkey,
        created_at=event.created_at,
        content=event.content,
        item_a=item_a,
        item_b=item_b,
        score=score,
    )


def parse_similarity_event(raw: Event | Mapping[str, Any]) -> SimilarityRelation | None:
    """Return the similarity relation in *raw*, or ``None`` if it is malformed.

    Args:
        raw: An [Event][shelfstr.models.event.Event] or its wire mapping.

    Examples:
        ```python
        relation = parse_similarity_event(event)
        relation.item_a.identifier   # '9781729527085'
        relation.item_b.identifier   # '1639940251'
        relation.score               # 0.92
        ```
    """
    try:
        return validate_similarity_event(_coerce_event(raw))
    except ValidationError as e:
        logger.debug("similarity_event_rejected reason=%s", e)
        return None


def build_similarity_event(
    item_a: str | ItemRef,
    item_b: str | ItemRef,
    score: float,
    content: str = "",
    *,
    created_at: int = 0,
) -> UnsignedEvent:
    """Build the unsigned kind-1729 event for a similarity between two ISBNs.

    Raises:
        ValueError: If *score* is not a finite number in ``[0, 1]`` or an
            identifier is empty.
    """
    if isinstance(score, bool) or not math.isfinite(score) or not 0.0 <= score <= 1.0:
        raise ValueError(f"score must be a finite number in [0, 1], got {score}")
    tags: list[tuple[str, ...]] = []
    for item in (item_a, item_b):
        ref = item if isinstance(item, ItemRef) else ItemRef.from_tag_value(item)
        tags.append((ITEM_TAG, str(ref)))
        tags.append((KIND_TAG, ref.scheme.value))
    tags.append((SCORE_TAG, str(score)))
    return UnsignedEvent(
        kind=EventKind.SIMILARITY,
        content=content,
        tags=tuple(tags),
        created_at=created_at,
    )
