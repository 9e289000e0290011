"""Tests for the exact / alias / fuzzy / new entity resolution tiers."""

import asyncio

import pytest

from dishgraph.clock import ProcessingClock
from dishgraph.config import EntityResolutionConfig
from dishgraph.entity import EntityType
from dishgraph.errors import UnknownEntityType
from dishgraph.pipeline.resolver import EntityResolutionInput, EntityResolver, ResolutionTier, similarity
from dishgraph.storage.memory import InMemoryEntityStorage

from tests.conftest import CountingEntityStorage, make_entity


def _input(temp_id: str, name: str | None, entity_type=EntityType.RESTAURANT, text: str | None = None) -> EntityResolutionInput:
    return EntityResolutionInput(temp_id=temp_id, entity_type=entity_type, normalized_name=name, original_text=text)


class TestResolutionTiers:
    """Each tier is tried in order and reported on the result."""

    async def test_creates_new_entity(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "franklin bbq", text="Franklin BBQ")], clock)

        assert result.new_entities_created == 1
        assert result.total_processed == 1
        entity = await entity_storage.get(result.temp_id_map["t1"])
        assert entity.name == "franklin bbq"
        assert entity.created_at == clock.now
        assert result.results[0].tier == ResolutionTier.NEW

    async def test_exact_match(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        existing = await entity_storage.create_entity(make_entity("franklin bbq"))
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "Franklin BBQ")], clock)

        assert result.temp_id_map["t1"] == existing.entity_id
        assert result.exact_matches == 1
        assert result.new_entities_created == 0

    async def test_alias_match(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        existing = await entity_storage.create_entity(make_entity("franklin bbq", aliases=("Franklin Barbecue",)))
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "franklin barbecue")], clock)

        assert result.temp_id_map["t1"] == existing.entity_id
        assert result.alias_matches == 1

    async def test_fuzzy_match_attaches_alias(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        existing = await entity_storage.create_entity(make_entity("franklin bbq"))
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "franklins bbq", text="Franklins BBQ")], clock)

        assert result.temp_id_map["t1"] == existing.entity_id
        assert result.fuzzy_matches == 1
        assert result.results[0].confidence >= 0.85
        stored = await entity_storage.get(existing.entity_id)
        assert "Franklins BBQ" in stored.aliases
        assert await entity_storage.count() == 1

    async def test_fuzzy_match_is_type_scoped(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        await entity_storage.create_entity(make_entity("brisket", EntityType.DISH_OR_CATEGORY))
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "briskets", EntityType.RESTAURANT)], clock)

        assert result.new_entities_created == 1

    async def test_fuzzy_disabled(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        await entity_storage.create_entity(make_entity("franklin bbq"))
        resolver = EntityResolver(entity_storage, EntityResolutionConfig(enable_fuzzy_matching=False))

        result = await resolver.resolve_batch([_input("t1", "franklins bbq")], clock)

        assert result.new_entities_created == 1
        assert await entity_storage.count() == 2

    async def test_edit_distance_bounds_fuzzy_match(
        self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock
    ) -> None:
        """A high ratio alone is not enough when the edit distance is too large."""
        await entity_storage.create_entity(make_entity("the salt lick bbq restaurant"))
        config = EntityResolutionConfig(fuzzy_match_threshold=0.5, max_edit_distance=3)
        resolver = EntityResolver(entity_storage, config)

        result = await resolver.resolve_batch([_input("t1", "salt lick bbq")], clock)

        assert result.fuzzy_matches == 0
        assert result.new_entities_created == 1

    async def test_dissimilar_names_create_new(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        await entity_storage.create_entity(make_entity("franklin bbq"))
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("t1", "la barbecue")], clock)

        assert result.new_entities_created == 1


class TestBatchCache:
    """Repeated names within a batch resolve once."""

    async def test_same_name_twice_same_id(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch(
            [_input("t1", "franklin bbq"), _input("t2", "Franklin BBQ"), _input("t3", "franklin bbq")],
            clock,
        )

        assert result.temp_id_map["t1"] == result.temp_id_map["t2"] == result.temp_id_map["t3"]
        assert result.new_entities_created == 1
        assert result.total_processed == 3
        assert await entity_storage.count() == 1

    async def test_same_name_different_types(self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock) -> None:
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch(
            [_input("t1", "bbq", EntityType.RESTAURANT), _input("t2", "bbq", EntityType.DISH_OR_CATEGORY)],
            clock,
        )

        assert result.temp_id_map["t1"] != result.temp_id_map["t2"]

    async def test_concurrent_batches_create_once(
        self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock
    ) -> None:
        resolver = EntityResolver(entity_storage)

        results = await asyncio.gather(
            *(resolver.resolve_batch([_input(f"t{i}", "franklin bbq")], clock) for i in range(5))
        )

        assert len({r.temp_id_map[f"t{i}"] for i, r in enumerate(results)}) == 1
        assert await entity_storage.count() == 1


class TestCandidateListing:
    """Fuzzy candidates are listed once per ``batch_size`` chunk."""

    async def test_one_listing_per_chunk(self, clock: ProcessingClock) -> None:
        storage = CountingEntityStorage()
        resolver = EntityResolver(storage, EntityResolutionConfig(batch_size=2))
        names = ["franklin bbq", "uchi", "veracruz tacos", "odd duck", "kemuri tatsu-ya"]

        result = await resolver.resolve_batch([_input(f"t{i}", name) for i, name in enumerate(names)], clock)

        assert result.new_entities_created == 5
        assert storage.list_calls == 3

    async def test_chunk_sees_entities_it_created(self, clock: ProcessingClock) -> None:
        """A near-duplicate later in the same chunk fuzzy-matches the entity created before it."""
        storage = CountingEntityStorage()
        resolver = EntityResolver(storage, EntityResolutionConfig(batch_size=10))

        result = await resolver.resolve_batch(
            [_input("t1", "franklin bbq"), _input("t2", "franklins bbq", text="Franklins BBQ")], clock
        )

        assert result.temp_id_map["t1"] == result.temp_id_map["t2"]
        assert result.new_entities_created == 1
        assert result.fuzzy_matches == 1
        assert storage.list_calls == 1
        entity = await storage.get(result.temp_id_map["t1"])
        assert "Franklins BBQ" in entity.aliases

    async def test_exact_hits_skip_listing(self, clock: ProcessingClock) -> None:
        storage = CountingEntityStorage()
        await storage.create_entity(make_entity("franklin bbq"))
        resolver = EntityResolver(storage)

        await resolver.resolve_batch([_input("t1", "franklin bbq")], clock)

        assert storage.list_calls == 0


class TestResolutionErrors:
    """Blank names fail per item; unknown types fail the batch."""

    async def test_missing_identifier_is_isolated(
        self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock
    ) -> None:
        resolver = EntityResolver(entity_storage)

        result = await resolver.resolve_batch([_input("blank", "   "), _input("ok", "franklin bbq")], clock)

        assert "blank" not in result.temp_id_map
        assert "ok" in result.temp_id_map
        assert len(result.failures) == 1
        assert "blank" in result.failures[0]

    async def test_unknown_entity_type_fails_batch(
        self, entity_storage: InMemoryEntityStorage, clock: ProcessingClock
    ) -> None:
        resolver = EntityResolver(entity_storage)

        with pytest.raises(UnknownEntityType):
            await resolver.resolve_batch([_input("ok", "franklin bbq"), _input("bad", "x", entity_type="spaceship")], clock)

        assert await entity_storage.count() == 0


class TestSimilarity:
    def test_similarity_returns_ratio_and_distance(self) -> None:
        score, distance = similarity("franklin bbq", "franklins bbq")

        assert score == pytest.approx(0.96)
        assert distance == 1
