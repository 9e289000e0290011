"""Batch orchestrator for mention ingestion.

`MentionBatchProcessor` runs one batch of mentions end to end:

    1. Normalize each `ProcessedMention` into a tagged `NormalizedMention`,
       keeping the first mention of each source item
    2. Resolve restaurant, dish and attribute names to canonical entities
    3. Replace attribute names with their canonical forms
    4. Route every mention through its component processors, applying the
       resulting operations through the merge engine
    5. Recompute quality scores for every connection the batch touched

All ephemeral state (resolution map, per-mention contexts) lives for the
duration of one `process_batch` call only.

Example usage:
    ```python
    processor = MentionBatchProcessor(
        entity_storage=InMemoryEntityStorage(),
        connection_storage=InMemoryConnectionStorage(),
        mention_storage=InMemoryMentionStorage(),
        config=load_config(),
    )
    result = await processor.process_batch(mentions)
    print(f"Created {result.metrics.connections_created} connections")
    ```
"""

import asyncio
import time
import uuid
from typing import Sequence

from pydantic import BaseModel, Field

from dishgraph.clock import ProcessingClock
from dishgraph.config import DishGraphConfig
from dishgraph.connection import normalize_attributes
from dishgraph.dedup import remove_duplicates_by_key
from dishgraph.entity import EntityType
from dishgraph.errors import ComponentProcessingError
from dishgraph.locks import KeyedLockTable
from dishgraph.logging import setup_logging
from dishgraph.mention import MentionShape, NormalizedMention, ProcessedMention
from dishgraph.pipeline.attributes import AttributeProcessor
from dishgraph.pipeline.interfaces import ComponentProcessingContext, ComponentResult
from dishgraph.pipeline.merge import ConnectionMergeEngine
from dishgraph.pipeline.quality import QualityScoreEngine, QualityScoreUpdateResult
from dishgraph.pipeline.resolver import BatchResolutionResult, EntityResolutionInput, EntityResolver
from dishgraph.pipeline.router import ComponentRouter
from dishgraph.storage.interfaces import (
    ConnectionStorageInterface,
    EntityStorageInterface,
    MentionStorageInterface,
)


class BatchMetrics(BaseModel):
    """Counters for one batch.

    Attributes:
        connections_created: New connection rows.
        connections_updated: Existing connections changed by the batch, each
            counted once per mention that changed it.
        mentions_created: New mention rows.
        entities_updated: Entity rows changed by processors (general praise).
        errors_encountered: Length of the batch's ``errors``.
    """

    model_config = {"frozen": True}

    connections_created: int = 0
    connections_updated: int = 0
    mentions_created: int = 0
    entities_updated: int = 0
    errors_encountered: int = 0


class ComponentProcessingResult(BaseModel):
    """Structured summary of one processed batch.

    Attributes:
        batch_id: Identifier of the batch, generated when not supplied.
        total_mentions_processed: Number of mentions submitted.
        component_results: Every processor result, grouped by mention in input order.
        overall_success: False if any processor failed.
        processing_time_ms: Wall time for the whole batch.
        metrics: Aggregate counters.
        errors: Resolution failures and processor errors, as messages.
        resolution: The batch's entity resolution outcome.
        quality_scores: Outcome of the score refresh, if one ran.
    """

    model_config = {"frozen": True}

    batch_id: str
    total_mentions_processed: int
    component_results: tuple[ComponentResult, ...] = ()
    overall_success: bool = True
    processing_time_ms: float = 0.0
    metrics: BatchMetrics = Field(default_factory=BatchMetrics)
    errors: tuple[str, ...] = ()
    resolution: BatchResolutionResult | None = None
    quality_scores: QualityScoreUpdateResult | None = None


def _attribute_temp_id(mention_temp_id: str, kind: str, name: str) -> str:
    return f"{mention_temp_id}:{kind}:{name}"


def build_resolution_inputs(mentions: Sequence[NormalizedMention]) -> list[EntityResolutionInput]:
    """Collect every name a batch needs resolved, restaurants and dishes first."""
    inputs: list[EntityResolutionInput] = []
    for mention in mentions:
        if mention.restaurant_temp_id:
            inputs.append(
                EntityResolutionInput(
                    temp_id=mention.restaurant_temp_id,
                    entity_type=EntityType.RESTAURANT,
                    normalized_name=mention.restaurant_name,
                    original_text=mention.restaurant_text,
                )
            )
        if mention.dish_temp_id:
            inputs.append(
                EntityResolutionInput(
                    temp_id=mention.dish_temp_id,
                    entity_type=EntityType.DISH_OR_CATEGORY,
                    normalized_name=mention.dish_name,
                    original_text=mention.dish_text,
                )
            )
    for mention in mentions:
        for kind, names, entity_type in (
            ("selective", mention.selective_attributes, EntityType.FOOD_ATTRIBUTE),
            ("descriptive", mention.descriptive_attributes, EntityType.FOOD_ATTRIBUTE),
            ("restaurant", mention.restaurant_attributes, EntityType.RESTAURANT_ATTRIBUTE),
        ):
            for name in names:
                inputs.append(
                    EntityResolutionInput(
                        temp_id=_attribute_temp_id(mention.temp_id, kind, name),
                        entity_type=entity_type,
                        normalized_name=name,
                    )
                )
    return inputs


def canonicalize_attributes(mention: NormalizedMention, resolved: BatchResolutionResult) -> NormalizedMention:
    """Swap attribute names for the canonical names they resolved to.

    Names that failed to resolve are kept as written.
    """

    def canonical(kind: str, names: tuple[str, ...]) -> tuple[str, ...]:
        result = []
        for name in names:
            entity = resolved.entity_for(_attribute_temp_id(mention.temp_id, kind, name))
            result.append(entity.name if entity is not None else name)
        return normalize_attributes(result)

    return mention.with_attributes(
        canonical("selective", mention.selective_attributes),
        canonical("descriptive", mention.descriptive_attributes),
        canonical("restaurant", mention.restaurant_attributes),
    )


class MentionBatchProcessor:
    """Orchestrates resolution, routing, merging and scoring for mention batches.

    The resolver and merge engine share one lock table, so several batches
    may run concurrently against the same storage.
    """

    def __init__(
        self,
        entity_storage: EntityStorageInterface,
        connection_storage: ConnectionStorageInterface,
        mention_storage: MentionStorageInterface,
        config: DishGraphConfig | None = None,
        locks: KeyedLockTable | None = None,
    ):
        self.entity_storage = entity_storage
        self.connection_storage = connection_storage
        self.mention_storage = mention_storage
        self.config = config or DishGraphConfig()
        self.locks = locks or KeyedLockTable()

        self.attributes = AttributeProcessor(self.config.components.attribute_processing)
        self.resolver = EntityResolver(entity_storage, self.config.resolution, self.locks)
        self.merge_engine = ConnectionMergeEngine(
            connection_storage,
            mention_storage,
            entity_storage,
            config=self.config.merge,
            attributes=self.attributes,
            locks=self.locks,
        )
        self.router = ComponentRouter(self.merge_engine, self.attributes, enable_metrics=self.config.components.enable_metrics)
        self.quality = QualityScoreEngine(connection_storage, entity_storage, self.config.quality_score, self.locks)

    async def process_batch(
        self,
        mentions: Sequence[ProcessedMention],
        batch_id: str | None = None,
        clock: ProcessingClock | None = None,
        update_quality_scores: bool = True,
    ) -> ComponentProcessingResult:
        """Process one batch of mentions.

        Args:
            mentions: Validated mentions from the extraction step.
            batch_id: Optional identifier; a UUID is generated otherwise.
            clock: Shared "now" for the batch. Defaults to the current time.
            update_quality_scores: Refresh scores of touched connections afterwards.

        Returns:
            A `ComponentProcessingResult` summarizing the batch.

        Raises:
            UnknownEntityType: If resolution is misconfigured.
            ComponentProcessingError: If a processor fails while error recovery
                is disabled.
        """
        logger = setup_logging()
        clock = clock or ProcessingClock.utcnow()
        batch_id = batch_id or str(uuid.uuid4())
        start = time.perf_counter()
        components = self.config.components

        logger.info(
            {"message": "Starting mention batch", "batch_id": batch_id, "mentions": len(mentions)},
            pprint=True,
        )

        normalized = remove_duplicates_by_key((m.normalize() for m in mentions), lambda m: m.source_key)
        if len(normalized) < len(mentions):
            logger.debug(
                {"message": "Dropped repeated source items", "dropped": len(mentions) - len(normalized)},
                pprint=True,
            )
        resolved = await self.resolver.resolve_batch(build_resolution_inputs(normalized), clock)
        logger.debug(
            {
                "message": "Entity resolution finished",
                "exact": resolved.exact_matches,
                "alias": resolved.alias_matches,
                "fuzzy": resolved.fuzzy_matches,
                "new": resolved.new_entities_created,
                "failures": len(resolved.failures),
            },
            pprint=True,
        )
        normalized = [canonicalize_attributes(m, resolved) for m in normalized]

        aborted = False

        async def run(mention: NormalizedMention) -> list[ComponentResult]:
            nonlocal aborted
            if aborted or mention.shape == MentionShape.EMPTY:
                return []
            context = ComponentProcessingContext(
                batch_id=batch_id,
                mention=mention,
                resolved=resolved,
                clock=clock,
                connection_storage=self.connection_storage,
                attribute_config=components.attribute_processing,
            )
            results = await self.router.process_mention(context)
            if not components.enable_error_recovery:
                for result in results:
                    if not result.success:
                        aborted = True
                        raise ComponentProcessingError(
                            result.component.value,
                            "process",
                            result.error or "processor failed",
                            {"batch_id": batch_id, "mention": mention.temp_id},
                        )
            return results

        if components.enable_parallel_processing:
            semaphore = asyncio.Semaphore(components.max_concurrent_components)

            async def bounded(mention: NormalizedMention) -> list[ComponentResult]:
                async with semaphore:
                    return await run(mention)

            per_mention = await asyncio.gather(*(bounded(m) for m in normalized))
        else:
            per_mention = [await run(m) for m in normalized]

        created = updated = mentions_created = entities_updated = 0
        touched: dict[str, None] = {}
        errors: list[str] = list(resolved.failures)
        for results in per_mention:
            created_ids: set[str] = set()
            updated_ids: set[str] = set()
            entity_ids: set[str] = set()
            for result in results:
                created_ids.update(result.outcome.connections_created)
                updated_ids.update(result.outcome.connections_updated)
                entity_ids.update(result.outcome.entities_updated)
                mentions_created += result.outcome.mentions_created
                touched.update(dict.fromkeys(result.outcome.connections_created + result.outcome.connections_updated))
                if not result.success:
                    errors.append(f"{result.mention_temp_id}: {result.error}")
            created += len(created_ids)
            updated += len(updated_ids - created_ids)
            entities_updated += len(entity_ids)

        component_results = tuple(r for results in per_mention for r in results)
        quality_scores = None
        if update_quality_scores and touched:
            quality_scores = await self.quality.update_quality_scores_for_connections(list(touched), clock)
            errors.extend(f"{e.connection_id or e.restaurant_id}: {e.message}" for e in quality_scores.errors)

        result = ComponentProcessingResult(
            batch_id=batch_id,
            total_mentions_processed=len(mentions),
            component_results=component_results,
            overall_success=all(r.success for r in component_results),
            processing_time_ms=(time.perf_counter() - start) * 1000,
            metrics=BatchMetrics(
                connections_created=created,
                connections_updated=updated,
                mentions_created=mentions_created,
                entities_updated=entities_updated,
                errors_encountered=len(errors),
            ),
            errors=tuple(errors),
            resolution=resolved,
            quality_scores=quality_scores,
        )
        logger.info(
            {
                "message": "Finished mention batch",
                "batch_id": batch_id,
                "metrics": result.metrics,
                "overall_success": result.overall_success,
                "processing_time_ms": round(result.processing_time_ms, 1),
            },
            pprint=True,
        )
        return result
