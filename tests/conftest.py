"""Test fixtures and factories shared across the test suite.

This module provides:
- Pytest fixtures for fresh in-memory storages, a fixed processing clock and
  a fully wired ``MentionBatchProcessor``
- Factory helpers for mentions, entities and connections with sensible
  defaults, so each test only states the fields it cares about
- Fake storages that fail or stall on demand, for error-isolation tests
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from dishgraph.clock import ProcessingClock
from dishgraph.config import DishGraphConfig
from dishgraph.connection import Connection, ConnectionAttributes, ConnectionMetrics, Mention
from dishgraph.entity import Entity, EntityType
from dishgraph.ingest import MentionBatchProcessor
from dishgraph.mention import ProcessedMention
from dishgraph.storage.memory import (
    InMemoryConnectionStorage,
    InMemoryEntityStorage,
    InMemoryMentionStorage,
)

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# --- Factories ---


def make_mention(
    source_id: str = "c1",
    restaurant: str | None = "Franklin BBQ",
    dish: str | None = "brisket",
    upvotes: int = 10,
    created_at: datetime | None = None,
    temp_id: str | None = None,
    **overrides,
) -> ProcessedMention:
    """Create a ProcessedMention with defaults for a Reddit comment.

    ``restaurant`` and ``dish`` are the normalized names; pass None to leave
    the entity out.
    """
    fields = dict(
        temp_id=temp_id or f"m-{source_id}",
        restaurant_normalized_name=restaurant.lower() if restaurant else None,
        restaurant_original_text=restaurant,
        dish_or_category_normalized_name=dish.lower() if dish else None,
        dish_or_category_original_text=dish,
        source_type="comment",
        source_id=source_id,
        source_url=f"https://reddit.com/r/austinfood/comments/{source_id}",
        subreddit="austinfood",
        content_excerpt=f"excerpt {source_id}",
        author="foodie",
        upvotes=upvotes,
        created_at=created_at or FIXED_NOW - timedelta(days=1),
    )
    fields.update(overrides)
    return ProcessedMention(**fields)


def make_entity(
    name: str,
    entity_type: EntityType = EntityType.RESTAURANT,
    aliases: tuple[str, ...] = (),
    **overrides,
) -> Entity:
    fields = dict(
        entity_id=str(uuid.uuid4()),
        entity_type=entity_type,
        name=name,
        aliases=aliases,
        created_at=FIXED_NOW - timedelta(days=30),
    )
    fields.update(overrides)
    return Entity(**fields)


def make_connection(
    restaurant_id: str = "r1",
    dish_or_category_id: str = "d1",
    mention_count: int = 5,
    total_upvotes: int = 50,
    days_ago: float = 1.0,
    selective: tuple[str, ...] = (),
    descriptive: tuple[str, ...] = (),
    categories: tuple[str, ...] = (),
    connection_id: str | None = None,
    food_quality_score: float | None = None,
) -> Connection:
    """Create a Connection whose last mention was ``days_ago`` before FIXED_NOW."""
    return Connection(
        connection_id=connection_id or str(uuid.uuid4()),
        restaurant_id=restaurant_id,
        dish_or_category_id=dish_or_category_id,
        attributes=ConnectionAttributes(
            categories=categories,
            selective_attributes=selective,
            descriptive_attributes=descriptive,
        ),
        metrics=ConnectionMetrics(
            mention_count=mention_count,
            total_upvotes=total_upvotes,
            last_mentioned_at=FIXED_NOW - timedelta(days=days_ago),
        ),
        food_quality_score=food_quality_score,
        created_at=FIXED_NOW - timedelta(days=60),
    )


# --- Fakes ---


class FailingEntityStorage(InMemoryEntityStorage):
    """Entity storage whose ``get`` raises for selected entity ids."""

    def __init__(self, failing_ids: Sequence[str] = ()) -> None:
        super().__init__()
        self.failing_ids = set(failing_ids)

    async def get(self, entity_id: str) -> Entity | None:
        if entity_id in self.failing_ids:
            raise ConnectionError(f"lookup of {entity_id} failed")
        return await super().get(entity_id)


class SlowConnectionStorage(InMemoryConnectionStorage):
    """Connection storage whose ``get`` stalls for selected connection ids."""

    def __init__(self, slow_ids: Sequence[str] = (), delay: float = 1.0) -> None:
        super().__init__()
        self.slow_ids = set(slow_ids)
        self.delay = delay

    async def get(self, connection_id: str) -> Connection | None:
        if connection_id in self.slow_ids:
            await asyncio.sleep(self.delay)
        return await super().get(connection_id)


class StaleReadConnectionStorage(InMemoryConnectionStorage):
    """Connection storage whose lookups miss rows, as if another process had just inserted them."""

    async def find_connections(self, restaurant_id: str, dish_or_category_id: str) -> list[Connection]:
        return []


class StaleSourceMentionStorage(InMemoryMentionStorage):
    """Mention log whose source lookup misses rows, as if another process had just recorded them."""

    async def find_by_source(self, source_type: str, source_id: str) -> Mention | None:
        return None


class SlowEntityStorage(InMemoryEntityStorage):
    """Entity storage whose ``get`` stalls, leaving other writers time to run."""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay

    async def get(self, entity_id: str) -> Entity | None:
        await asyncio.sleep(self.delay)
        return await super().get(entity_id)


class CountingEntityStorage(InMemoryEntityStorage):
    """Entity storage that counts how often fuzzy candidates are listed."""

    def __init__(self) -> None:
        super().__init__()
        self.list_calls = 0

    async def list_by_type(self, entity_type: EntityType) -> list[Entity]:
        self.list_calls += 1
        return await super().list_by_type(entity_type)


# --- Fixtures ---


@pytest.fixture
def clock() -> ProcessingClock:
    """Provide a ProcessingClock frozen at FIXED_NOW for deterministic decay math."""
    return ProcessingClock(now=FIXED_NOW)


@pytest.fixture
def config() -> DishGraphConfig:
    return DishGraphConfig()


@pytest.fixture
def entity_storage() -> InMemoryEntityStorage:
    """Provide a fresh in-memory entity storage instance.

    Each test receives an empty storage, ensuring test isolation.
    """
    return InMemoryEntityStorage()


@pytest.fixture
def connection_storage() -> InMemoryConnectionStorage:
    """Provide a fresh in-memory connection storage instance."""
    return InMemoryConnectionStorage()


@pytest.fixture
def mention_storage() -> InMemoryMentionStorage:
    """Provide a fresh in-memory mention storage instance."""
    return InMemoryMentionStorage()


@pytest.fixture
def processor(
    entity_storage: InMemoryEntityStorage,
    connection_storage: InMemoryConnectionStorage,
    mention_storage: InMemoryMentionStorage,
    config: DishGraphConfig,
) -> MentionBatchProcessor:
    """Provide a MentionBatchProcessor wired to the in-memory storages."""
    return MentionBatchProcessor(
        entity_storage=entity_storage,
        connection_storage=connection_storage,
        mention_storage=mention_storage,
        config=config,
    )
