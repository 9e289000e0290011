"""Canonical entity records for restaurants, dishes and attributes.

An entity is identified by its type and normalized name. Alternative
spellings seen in mentions accumulate in ``aliases``; they never produce a
second entity for the same identity.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field

_WHITESPACE = re.compile(r"\s+")


class EntityType(str, Enum):
    """Kinds of entity the resolver knows how to create."""

    RESTAURANT = "restaurant"
    DISH_OR_CATEGORY = "dish_or_category"
    FOOD_ATTRIBUTE = "food_attribute"
    RESTAURANT_ATTRIBUTE = "restaurant_attribute"


def normalize_name(text: str | None) -> str:
    """Case-fold, trim and collapse whitespace. Returns "" for None."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()


def merge_aliases(existing: Iterable[str], *additions: str | None) -> tuple[str, ...]:
    """Append new aliases, skipping blanks and normalized duplicates.

    Order of first appearance is preserved.
    """
    merged: list[str] = []
    seen: set[str] = set()
    for alias in (*existing, *additions):
        key = normalize_name(alias)
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(alias.strip())  # type: ignore[union-attr]
    return tuple(merged)


class Entity(BaseModel):
    """A canonical restaurant, dish/category or attribute record."""

    model_config = {"frozen": True}

    entity_id: str = Field(description="Storage-assigned unique identifier.")
    entity_type: EntityType
    name: str = Field(description="Normalized canonical name.")
    aliases: tuple[str, ...] = Field(
        default=(),
        description="Alternative spellings seen in mentions.",
    )
    created_at: datetime
    last_updated: datetime | None = None
    general_praise_upvotes: int = Field(
        default=0,
        ge=0,
        description="Upvotes from mentions praising the restaurant as a whole.",
    )
    restaurant_quality_score: float | None = Field(
        default=None,
        description="Latest restaurant score, used as context for food scores.",
    )
    metadata: dict = Field(default_factory=dict)

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)

    def matches_name(self, name: str) -> bool:
        """True when ``name`` equals the canonical name or any alias after normalization."""
        key = normalize_name(name)
        if not key:
            return False
        return key == self.normalized_name or any(normalize_name(alias) == key for alias in self.aliases)
