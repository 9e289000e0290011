"""Batch input model for mentions produced by the upstream extraction step.

``ProcessedMention`` mirrors the loosely-shaped upstream payload, where most
fields are optional depending on what the excerpt talked about. It is
normalized exactly once into a ``NormalizedMention`` carrying a strict
``MentionShape`` tag, and everything downstream works on that.

Text fields are assumed to be sanitized and length-capped upstream.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from dishgraph.connection import normalize_attributes
from dishgraph.entity import normalize_name


class MentionShape(str, Enum):
    """Which entities a mention carries."""

    FULL_PAIR = "full_pair"
    """Both a restaurant and a dish or category."""

    RESTAURANT_ONLY = "restaurant_only"
    """A restaurant with no dish and no restaurant attributes."""

    ATTRIBUTE_ONLY = "attribute_only"
    """A restaurant with restaurant attributes but no dish."""

    DISH_ONLY = "dish_only"
    """A dish or category without restaurant context."""

    EMPTY = "empty"
    """Neither a restaurant nor a dish."""


class ProcessedMention(BaseModel):
    """One mention as emitted by the extraction step."""

    model_config = {"frozen": True}

    temp_id: str

    restaurant_normalized_name: str | None = None
    restaurant_original_text: str | None = None
    restaurant_temp_id: str | None = None
    restaurant_attributes: tuple[str, ...] = ()

    dish_or_category_normalized_name: str | None = None
    dish_or_category_original_text: str | None = None
    dish_or_category_temp_id: str | None = None
    dish_categories: tuple[str, ...] = ()
    dish_primary_category: str | None = None

    dish_attributes_selective: tuple[str, ...] = ()
    dish_attributes_descriptive: tuple[str, ...] = ()

    is_menu_item: bool = False
    general_praise: bool = False

    source_type: Literal["post", "comment"]
    source_id: str
    source_url: str
    subreddit: str
    content_excerpt: str = ""
    author: str | None = None
    upvotes: int = Field(default=0, ge=0)
    created_at: datetime

    def normalize(self) -> NormalizedMention:
        """Collapse optional-field combinations into a tagged mention."""
        restaurant_name = normalize_name(self.restaurant_normalized_name)
        dish_name = normalize_name(self.dish_or_category_normalized_name)
        restaurant_attributes = normalize_attributes(self.restaurant_attributes)

        if restaurant_name and dish_name:
            shape = MentionShape.FULL_PAIR
        elif restaurant_name and restaurant_attributes:
            shape = MentionShape.ATTRIBUTE_ONLY
        elif restaurant_name:
            shape = MentionShape.RESTAURANT_ONLY
        elif dish_name:
            shape = MentionShape.DISH_ONLY
        else:
            shape = MentionShape.EMPTY

        categories = normalize_attributes(
            (self.dish_primary_category,) + self.dish_categories
            if self.dish_primary_category
            else self.dish_categories
        )

        return NormalizedMention(
            shape=shape,
            temp_id=self.temp_id,
            restaurant_name=restaurant_name or None,
            restaurant_text=self.restaurant_original_text or self.restaurant_normalized_name,
            restaurant_temp_id=(self.restaurant_temp_id or f"{self.temp_id}:restaurant") if restaurant_name else None,
            dish_name=dish_name or None,
            dish_text=self.dish_or_category_original_text or self.dish_or_category_normalized_name,
            dish_temp_id=(self.dish_or_category_temp_id or f"{self.temp_id}:dish") if dish_name else None,
            categories=categories,
            selective_attributes=normalize_attributes(self.dish_attributes_selective),
            descriptive_attributes=normalize_attributes(self.dish_attributes_descriptive),
            restaurant_attributes=restaurant_attributes,
            is_menu_item=self.is_menu_item,
            general_praise=self.general_praise,
            source_type=self.source_type,
            source_id=self.source_id,
            source_url=self.source_url,
            subreddit=self.subreddit,
            content_excerpt=self.content_excerpt,
            author=self.author,
            upvotes=self.upvotes,
            created_at=self.created_at,
        )


class NormalizedMention(BaseModel):
    """A mention with a definite shape and normalized names and attributes."""

    model_config = {"frozen": True}

    shape: MentionShape
    temp_id: str

    restaurant_name: str | None = None
    restaurant_text: str | None = None
    restaurant_temp_id: str | None = None

    dish_name: str | None = None
    dish_text: str | None = None
    dish_temp_id: str | None = None

    categories: tuple[str, ...] = ()
    selective_attributes: tuple[str, ...] = ()
    descriptive_attributes: tuple[str, ...] = ()
    restaurant_attributes: tuple[str, ...] = ()

    is_menu_item: bool = False
    general_praise: bool = False

    source_type: Literal["post", "comment"]
    source_id: str
    source_url: str
    subreddit: str
    content_excerpt: str
    author: str | None = None
    upvotes: int
    created_at: datetime

    @property
    def has_restaurant(self) -> bool:
        return self.shape in (MentionShape.FULL_PAIR, MentionShape.RESTAURANT_ONLY, MentionShape.ATTRIBUTE_ONLY)

    @property
    def has_dish(self) -> bool:
        return self.shape in (MentionShape.FULL_PAIR, MentionShape.DISH_ONLY)

    @property
    def source_key(self) -> tuple[str, str]:
        return (self.source_type, self.source_id)

    def with_attributes(
        self,
        selective: tuple[str, ...],
        descriptive: tuple[str, ...],
        restaurant: tuple[str, ...],
    ) -> NormalizedMention:
        """Copy with attribute names replaced by their canonical forms."""
        return self.model_copy(
            update={
                "selective_attributes": selective,
                "descriptive_attributes": descriptive,
                "restaurant_attributes": restaurant,
            }
        )
