"""Entity resolution: map per-batch temporary ids to canonical entity ids.

Each input is resolved through four tiers, in order:

1. **Exact**: the normalized name equals a stored entity's canonical name.
2. **Alias**: the normalized name equals one of a stored entity's aliases.
3. **Fuzzy**: rapidfuzz similarity against same-type candidates reaches
   ``fuzzy_match_threshold`` and the Levenshtein distance stays within
   ``max_edit_distance``. The input's text is attached as a new alias.
4. **New**: nothing matched, so a new entity is created.

A batch-scoped cache keyed by (type, normalized name) is consulted before any
storage lookup, so repeated names in one batch resolve to the same id without
a second search. Fuzzy candidates are listed once per ``batch_size`` chunk of
each type. Lookup-then-create for one key runs under a per-key lock so
concurrent batches sharing a resolver cannot fork an identity.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Sequence

from pydantic import BaseModel, Field
from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from dishgraph.clock import ProcessingClock
from dishgraph.config import EntityResolutionConfig
from dishgraph.entity import Entity, EntityType, merge_aliases, normalize_name
from dishgraph.errors import DuplicateEntityError, MissingIdentifier, UnknownEntityType
from dishgraph.locks import KeyedLockTable
from dishgraph.storage.interfaces import EntityStorageInterface

logger = logging.getLogger(__name__)


class ResolutionTier(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    NEW = "new"


class EntityResolutionInput(BaseModel):
    """One name to resolve, tagged with the batch-local id that refers to it."""

    model_config = {"frozen": True}

    temp_id: str
    entity_type: EntityType | str
    normalized_name: str | None = None
    original_text: str | None = None
    aliases: tuple[str, ...] = ()


class EntityResolutionResult(BaseModel):
    model_config = {"frozen": True}

    temp_id: str
    entity_id: str
    entity_type: EntityType
    name: str
    tier: ResolutionTier
    confidence: float = Field(ge=0.0, le=1.0)


class BatchResolutionResult(BaseModel):
    """Outcome of resolving one batch of inputs.

    ``temp_id_map`` omits every temp id that failed; the reason is listed in
    ``failures``. ``entities`` caches the resolved entity records by id for the
    rest of the batch.
    """

    model_config = {"frozen": True}

    temp_id_map: dict[str, str] = Field(default_factory=dict)
    results: tuple[EntityResolutionResult, ...] = ()
    entities: dict[str, Entity] = Field(default_factory=dict)
    exact_matches: int = 0
    alias_matches: int = 0
    fuzzy_matches: int = 0
    new_entities_created: int = 0
    total_processed: int = 0
    processing_time_ms: float = 0.0
    failures: tuple[str, ...] = ()

    def entity_id_for(self, temp_id: str | None) -> str | None:
        if temp_id is None:
            return None
        return self.temp_id_map.get(temp_id)

    def entity_for(self, temp_id: str | None) -> Entity | None:
        entity_id = self.entity_id_for(temp_id)
        if entity_id is None:
            return None
        return self.entities.get(entity_id)


def _coerce_type(value: EntityType | str) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        raise UnknownEntityType(value) from None


def similarity(query: str, candidate: str) -> tuple[float, int]:
    """Return (normalized similarity in [0, 1], Levenshtein distance)."""
    return fuzz.ratio(query, candidate) / 100.0, Levenshtein.distance(query, candidate)


class _CandidatePool:
    """Fuzzy-match candidates of one type, loaded once per chunk of inputs.

    Entities the chunk creates or re-aliases are written back, so later inputs
    of the same chunk match against them without another scan.
    """

    def __init__(self, storage: EntityStorageInterface, entity_type: EntityType):
        self._storage = storage
        self._entity_type = entity_type
        self._entities: dict[str, Entity] | None = None

    async def entities(self) -> list[Entity]:
        if self._entities is None:
            self._entities = {e.entity_id: e for e in await self._storage.list_by_type(self._entity_type)}
        return list(self._entities.values())

    def remember(self, entity: Entity) -> None:
        if self._entities is not None:
            self._entities[entity.entity_id] = entity


class _BatchState:
    """Mutable bookkeeping for one ``resolve_batch`` call."""

    def __init__(self) -> None:
        self.cache: dict[tuple[EntityType, str], EntityResolutionResult] = {}
        self.temp_id_map: dict[str, str] = {}
        self.results: list[EntityResolutionResult] = []
        self.entities: dict[str, Entity] = {}
        self.counts = {tier: 0 for tier in ResolutionTier}
        self.total = 0
        self.failures: list[str] = []


class EntityResolver:
    """Resolves batches of names into canonical entities.

    The resolver holds no per-batch state between calls; its lock table is
    shared so that concurrent batches serialize creation of the same identity.

    Example:
        ```python
        resolver = EntityResolver(entity_storage)
        resolved = await resolver.resolve_batch(inputs, clock)
        restaurant_id = resolved.temp_id_map["m1:restaurant"]
        ```
    """

    def __init__(
        self,
        entity_storage: EntityStorageInterface,
        config: EntityResolutionConfig | None = None,
        locks: KeyedLockTable | None = None,
    ):
        self.entity_storage = entity_storage
        self.config = config or EntityResolutionConfig()
        self._locks = locks or KeyedLockTable()

    async def resolve_batch(
        self,
        inputs: Sequence[EntityResolutionInput],
        clock: ProcessingClock | None = None,
    ) -> BatchResolutionResult:
        """Resolve every input, grouped by entity type.

        Args:
            inputs: Names to resolve. Inputs sharing a temp id are resolved once.
            clock: Supplies creation timestamps for new entities.

        Returns:
            A ``BatchResolutionResult`` with the temp id map and tier counters.

        Raises:
            UnknownEntityType: If any input names a type the resolver does not
                handle. Raised before any storage work is done.
        """
        clock = clock or ProcessingClock.utcnow()
        start = time.perf_counter()

        groups: dict[EntityType, list[EntityResolutionInput]] = {t: [] for t in EntityType}
        for item in inputs:
            groups[_coerce_type(item.entity_type)].append(item)

        state = _BatchState()
        for entity_type, items in groups.items():
            for offset in range(0, len(items), self.config.batch_size):
                pool = _CandidatePool(self.entity_storage, entity_type)
                for item in items[offset : offset + self.config.batch_size]:
                    if item.temp_id in state.temp_id_map:
                        continue
                    state.total += 1
                    try:
                        await self._resolve_one(entity_type, item, state, pool, clock)
                    except MissingIdentifier as e:
                        state.failures.append(str(e))
            if items:
                logger.debug(
                    "Resolved %d %s inputs (exact=%d alias=%d fuzzy=%d new=%d)",
                    len(items),
                    entity_type.value,
                    state.counts[ResolutionTier.EXACT],
                    state.counts[ResolutionTier.ALIAS],
                    state.counts[ResolutionTier.FUZZY],
                    state.counts[ResolutionTier.NEW],
                )

        return BatchResolutionResult(
            temp_id_map=state.temp_id_map,
            results=tuple(state.results),
            entities=state.entities,
            exact_matches=state.counts[ResolutionTier.EXACT],
            alias_matches=state.counts[ResolutionTier.ALIAS],
            fuzzy_matches=state.counts[ResolutionTier.FUZZY],
            new_entities_created=state.counts[ResolutionTier.NEW],
            total_processed=state.total,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            failures=tuple(state.failures),
        )

    async def _resolve_one(
        self,
        entity_type: EntityType,
        item: EntityResolutionInput,
        state: _BatchState,
        pool: _CandidatePool,
        clock: ProcessingClock,
    ) -> None:
        key = normalize_name(item.normalized_name)
        if not key:
            raise MissingIdentifier(item.temp_id, entity_type.value)

        cached = state.cache.get((entity_type, key))
        if cached is not None:
            state.temp_id_map[item.temp_id] = cached.entity_id
            state.results.append(cached.model_copy(update={"temp_id": item.temp_id}))
            return

        async with self._locks.hold((entity_type, key)):
            entity, tier, confidence = await self._lookup_or_create(entity_type, key, item, pool, clock)

        result = EntityResolutionResult(
            temp_id=item.temp_id,
            entity_id=entity.entity_id,
            entity_type=entity_type,
            name=entity.name,
            tier=tier,
            confidence=confidence,
        )
        state.cache[(entity_type, key)] = result
        state.temp_id_map[item.temp_id] = entity.entity_id
        state.entities[entity.entity_id] = entity
        state.results.append(result)
        state.counts[tier] += 1

    async def _lookup_or_create(
        self,
        entity_type: EntityType,
        key: str,
        item: EntityResolutionInput,
        pool: _CandidatePool,
        clock: ProcessingClock,
    ) -> tuple[Entity, ResolutionTier, float]:
        entity = await self.entity_storage.find_entity(entity_type, key)
        if entity is not None:
            tier = ResolutionTier.EXACT if entity.normalized_name == key else ResolutionTier.ALIAS
            return entity, tier, 1.0

        if self.config.enable_fuzzy_matching:
            match = await self._fuzzy_match(key, item, pool)
            if match is not None:
                candidate, score = match
                aliases = merge_aliases(candidate.aliases, item.original_text or key, *item.aliases)
                if aliases != candidate.aliases:
                    candidate = candidate.model_copy(update={"aliases": aliases, "last_updated": clock.now})
                    await self.entity_storage.update(candidate)
                    pool.remember(candidate)
                return candidate, ResolutionTier.FUZZY, score

        extra = item.original_text if normalize_name(item.original_text) != key else None
        entity = Entity(
            entity_id=str(uuid.uuid4()),
            entity_type=entity_type,
            name=key,
            aliases=tuple(a for a in merge_aliases((), extra, *item.aliases) if normalize_name(a) != key),
            created_at=clock.now,
            last_updated=clock.now,
        )
        try:
            created = await self.entity_storage.create_entity(entity)
        except DuplicateEntityError as e:
            # Another writer created it between our lookup and insert.
            existing = await self.entity_storage.get(e.existing_entity_id)
            if existing is None:
                raise
            return existing, ResolutionTier.EXACT, 1.0
        pool.remember(created)
        return created, ResolutionTier.NEW, 1.0

    async def _fuzzy_match(
        self,
        key: str,
        item: EntityResolutionInput,
        pool: _CandidatePool,
    ) -> tuple[Entity, float] | None:
        """Return the best same-type candidate passing both thresholds."""
        queries = {key}
        for text in (item.original_text, *item.aliases):
            normalized = normalize_name(text)
            if normalized:
                queries.add(normalized)

        best: tuple[Entity, float] | None = None
        for candidate in await pool.entities():
            names = {candidate.normalized_name, *(normalize_name(a) for a in candidate.aliases)}
            for query in queries:
                for name in names:
                    score, distance = similarity(query, name)
                    if score < self.config.fuzzy_match_threshold or distance > self.config.max_edit_distance:
                        continue
                    if best is None or score > best[1]:
                        best = (candidate, score)
        return best
