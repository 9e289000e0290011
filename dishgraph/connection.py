"""Restaurant to dish connections and the mentions that support them.

A ``Connection`` is keyed by (restaurant_id, dish_or_category_id, selective
signature). The signature is the sorted, case-folded set of selective
attributes, so "Spicy, Large" and "large, spicy" describe the same variant.

Connections and mentions are frozen pydantic models; updates go through
``model_copy(update={...})`` and are written back through storage.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Literal

from pydantic import BaseModel, Field

from dishgraph.entity import normalize_name

SIGNATURE_SEPARATOR = "|"


class ActivityLevel(str, Enum):
    """Tiered classification of recent mention volume."""

    TRENDING = "trending"
    ACTIVE = "active"
    NORMAL = "normal"


def normalize_attributes(values: Iterable[str] | None) -> tuple[str, ...]:
    """Normalize and dedupe attribute names, keeping first-seen order."""
    result: list[str] = []
    for value in values or ():
        key = normalize_name(value)
        if key and key not in result:
            result.append(key)
    return tuple(result)


def selective_signature(attributes: Iterable[str] | None) -> str:
    """Order-independent, case-insensitive key for a selective attribute set."""
    return SIGNATURE_SEPARATOR.join(sorted(set(normalize_attributes(attributes))))


class TopMention(BaseModel):
    """Summary of one of the highest-scoring mentions of a connection."""

    model_config = {"frozen": True}

    mention_id: str
    score: float = Field(ge=0.0)
    upvotes: int = Field(ge=0)
    created_at: datetime
    source_url: str
    author: str | None = None
    content_excerpt: str = ""


class ConnectionAttributes(BaseModel):
    model_config = {"frozen": True}

    categories: tuple[str, ...] = ()
    selective_attributes: tuple[str, ...] = ()
    descriptive_attributes: tuple[str, ...] = ()
    restaurant_attributes: tuple[str, ...] = ()
    is_menu_item: bool = False

    @property
    def signature(self) -> str:
        return selective_signature(self.selective_attributes)


class ConnectionMetrics(BaseModel):
    model_config = {"frozen": True}

    mention_count: int = Field(default=0, ge=0)
    total_upvotes: int = Field(default=0, ge=0)
    recent_mention_count: int = Field(default=0, ge=0)
    last_mentioned_at: datetime
    activity_level: ActivityLevel = ActivityLevel.NORMAL
    top_mentions: tuple[TopMention, ...] = ()


class Connection(BaseModel):
    """Scored association between one restaurant and one dish or category."""

    model_config = {"frozen": True}

    connection_id: str
    restaurant_id: str
    dish_or_category_id: str
    attributes: ConnectionAttributes = Field(default_factory=ConnectionAttributes)
    metrics: ConnectionMetrics
    food_quality_score: float | None = None
    created_at: datetime
    last_updated: datetime | None = None

    @property
    def signature(self) -> str:
        return self.attributes.signature

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.restaurant_id, self.dish_or_category_id, self.signature)


class Mention(BaseModel):
    """An append-only record of one social excerpt supporting a connection.

    Unique per (source_type, source_id).
    """

    model_config = {"frozen": True}

    mention_id: str
    connection_id: str
    source_type: Literal["post", "comment"]
    source_id: str
    source_url: str
    subreddit: str
    content_excerpt: str
    author: str | None = None
    upvotes: int = Field(ge=0)
    created_at: datetime

    @property
    def source_key(self) -> tuple[str, str]:
        return (self.source_type, self.source_id)
