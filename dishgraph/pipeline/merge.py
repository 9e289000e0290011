"""Connection merge engine: idempotent create-or-update of connections.

Writes to one (restaurant, dish) pair are serialized with a partitioned lock
table, and every connection write happens inside the lock for the mention's
source item, so a resubmitted mention is recognized before it can be counted
twice. Locks are always taken in the order source item, pair, so two writers
can never wait on each other.

The mention row is inserted before its connection is written. Its unique
(source_type, source_id) key is the claim on the source item, so a mention is
folded into a connection only by the writer that recorded it. A failed
connection write releases the claim.

If storage still reports a duplicate key on create (another process won the
race), the later writer merges into the earlier row instead of failing.
"""

import logging
import math
import uuid

from dishgraph.clock import ProcessingClock, ensure_aware
from dishgraph.config import MergeConfig
from dishgraph.connection import (
    ActivityLevel,
    Connection,
    ConnectionAttributes,
    ConnectionMetrics,
    Mention,
    TopMention,
)
from dishgraph.dedup import reddit_content_key
from dishgraph.errors import (
    AttributeProcessingError,
    ComponentProcessingError,
    DuplicateConnectionRace,
    DuplicateMentionError,
)
from dishgraph.locks import KeyedLockTable
from dishgraph.mention import NormalizedMention
from dishgraph.pipeline.attributes import AttributeProcessor, union_attributes
from dishgraph.pipeline.interfaces import ComponentOperation, OperationOutcome, OperationType
from dishgraph.storage.interfaces import (
    ConnectionStorageInterface,
    EntityStorageInterface,
    MentionStorageInterface,
)

logger = logging.getLogger(__name__)

PRAISE_SOURCES_KEY = "praise_sources"


def mention_score(upvotes: int, created_at, clock: ProcessingClock, decay_days: float) -> float:
    """Per-mention ranking score: upvotes decayed by age."""
    return upvotes * math.exp(-clock.days_since(created_at) / decay_days)


def activity_level_for(recent_mention_count: int, config: MergeConfig) -> ActivityLevel:
    if recent_mention_count >= config.trending_threshold:
        return ActivityLevel.TRENDING
    if recent_mention_count >= config.active_threshold:
        return ActivityLevel.ACTIVE
    return ActivityLevel.NORMAL


class ConnectionMergeEngine:
    """Applies component operations against connection, mention and entity storage.

    Example:
        ```python
        engine = ConnectionMergeEngine(connections, mentions, entities)
        outcome = await engine.apply(operation, clock)
        ```
    """

    def __init__(
        self,
        connection_storage: ConnectionStorageInterface,
        mention_storage: MentionStorageInterface,
        entity_storage: EntityStorageInterface,
        config: MergeConfig | None = None,
        attributes: AttributeProcessor | None = None,
        locks: KeyedLockTable | None = None,
    ):
        self.connection_storage = connection_storage
        self.mention_storage = mention_storage
        self.entity_storage = entity_storage
        self.config = config or MergeConfig()
        self.attributes = attributes or AttributeProcessor()
        self._locks = locks or KeyedLockTable()

    async def apply(self, operation: ComponentOperation, clock: ProcessingClock) -> OperationOutcome:
        """Execute one operation.

        Raises:
            ComponentProcessingError: If the operation is malformed or its
                target no longer exists.
        """
        if operation.operation_type == OperationType.UPSERT_CONNECTION:
            return await self.upsert_connection(operation, clock)
        if operation.operation_type in (OperationType.MERGE_ATTRIBUTES, OperationType.SET_MENU_ITEM):
            return await self.merge_attributes(operation, clock)
        if operation.operation_type == OperationType.UPDATE_ENTITY:
            return await self.credit_general_praise(operation, clock)
        raise ComponentProcessingError("merge", operation.operation_type.value, "unsupported operation")

    async def upsert_connection(self, operation: ComponentOperation, clock: ProcessingClock) -> OperationOutcome:
        """Create the connection for a mention, or extend the matching one.

        A mention whose source item was already recorded changes nothing and
        reports ``duplicate_mention``.
        """
        mention = operation.mention
        if mention is None or operation.restaurant_id is None or operation.dish_or_category_id is None:
            raise ComponentProcessingError("merge", "upsert_connection", "operation lacks mention or pair ids")
        restaurant_id = operation.restaurant_id
        dish_id = operation.dish_or_category_id

        mention_id = str(uuid.uuid4())

        async with self._locks.hold(("source", *mention.source_key)):
            recorded = await self.mention_storage.find_by_source(*mention.source_key)
            if recorded is not None:
                logger.debug("Mention %s:%s already recorded, skipping", *mention.source_key)
                return OperationOutcome(duplicate_mention=True)

            async with self._locks.hold(("pair", restaurant_id, dish_id)):
                candidates = await self.connection_storage.find_connections(restaurant_id, dish_id)
                existing = self.attributes.select_connection(candidates, operation.selective_attributes)
                connection_id = existing.connection_id if existing is not None else str(uuid.uuid4())

                # The mention row claims the source item; the connection is
                # only touched once the claim holds.
                record = self._mention_record(mention_id, connection_id, mention)
                try:
                    await self.mention_storage.create_mention_record(record)
                except DuplicateMentionError:
                    logger.warning("Mention %s:%s recorded concurrently, skipping", *mention.source_key)
                    return OperationOutcome(duplicate_mention=True)

                try:
                    written = await self._write_connection(operation, existing, record, clock)
                except Exception:
                    await self.mention_storage.delete_mention_record(mention_id)
                    raise
                if written is None:
                    return OperationOutcome(duplicate_mention=True)
                connection, created = written

        if created:
            return OperationOutcome(
                connection_ids=(connection.connection_id,),
                connections_created=(connection.connection_id,),
                mentions_created=1,
            )
        return OperationOutcome(
            connection_ids=(connection.connection_id,),
            connections_updated=(connection.connection_id,),
            mentions_created=1,
        )

    async def _write_connection(
        self,
        operation: ComponentOperation,
        existing: Connection | None,
        record: Mention,
        clock: ProcessingClock,
    ) -> tuple[Connection, bool] | None:
        """Create or extend the connection a claimed mention belongs to.

        Returns:
            The written connection and whether it was created, or None if the
            claim was lost while being moved to the winner of a create race.
        """
        mention = operation.mention
        if existing is None:
            connection = self._new_connection(operation, mention, record, clock)
            try:
                await self.connection_storage.create_connection(connection)
                return connection, True
            except DuplicateConnectionRace as race:
                logger.info(
                    "Connection race on %s recovered: merging into %s",
                    race.key,
                    race.existing_connection_id,
                )
                existing = await self.connection_storage.get(race.existing_connection_id)
                if existing is None:
                    raise
            if not await self._move_claim(record, existing.connection_id):
                return None
        return await self._extend_connection(existing, mention, record.mention_id, clock), False

    async def _move_claim(self, record: Mention, connection_id: str) -> bool:
        """Re-point a claimed mention at another connection."""
        await self.mention_storage.delete_mention_record(record.mention_id)
        try:
            await self.mention_storage.create_mention_record(record.model_copy(update={"connection_id": connection_id}))
        except DuplicateMentionError:
            logger.warning("Mention %s:%s recorded concurrently, skipping", *record.source_key)
            return False
        return True

    def _new_connection(
        self,
        operation: ComponentOperation,
        mention: NormalizedMention,
        record: Mention,
        clock: ProcessingClock,
    ) -> Connection:
        descriptive, _ = self.attributes.merge_descriptive((), operation.descriptive_attributes)
        recent = 1 if ensure_aware(mention.created_at) >= clock.window_start(self.config.recent_mention_window_days) else 0
        top = TopMention(
            mention_id=record.mention_id,
            score=mention_score(mention.upvotes, mention.created_at, clock, self.config.mention_score_decay_days),
            upvotes=mention.upvotes,
            created_at=mention.created_at,
            source_url=mention.source_url,
            author=mention.author,
            content_excerpt=mention.content_excerpt,
        )
        connection = Connection(
            connection_id=record.connection_id,
            restaurant_id=operation.restaurant_id,
            dish_or_category_id=operation.dish_or_category_id,
            attributes=ConnectionAttributes(
                categories=operation.categories,
                selective_attributes=operation.selective_attributes,
                descriptive_attributes=descriptive,
                restaurant_attributes=operation.restaurant_attributes,
                is_menu_item=operation.is_menu_item,
            ),
            metrics=ConnectionMetrics(
                mention_count=1,
                total_upvotes=mention.upvotes,
                recent_mention_count=recent,
                last_mentioned_at=mention.created_at,
                activity_level=activity_level_for(recent, self.config),
                top_mentions=(top,),
            ),
            created_at=clock.now,
            last_updated=clock.now,
        )
        return connection

    async def _extend_connection(
        self,
        connection: Connection,
        mention: NormalizedMention,
        mention_id: str,
        clock: ProcessingClock,
    ) -> Connection:
        """Fold one more mention into an existing connection's metrics."""
        metrics = connection.metrics
        window_start = clock.window_start(self.config.recent_mention_window_days)

        history = await self.mention_storage.list_for_connection(connection.connection_id)
        recent = sum(
            1 for m in history if m.mention_id != mention_id and ensure_aware(m.created_at) >= window_start
        )
        if ensure_aware(mention.created_at) >= window_start:
            recent += 1

        decay_days = self.config.mention_score_decay_days
        rescored = [
            top.model_copy(update={"score": mention_score(top.upvotes, top.created_at, clock, decay_days)})
            for top in metrics.top_mentions
        ]
        rescored.append(
            TopMention(
                mention_id=mention_id,
                score=mention_score(mention.upvotes, mention.created_at, clock, decay_days),
                upvotes=mention.upvotes,
                created_at=mention.created_at,
                source_url=mention.source_url,
                author=mention.author,
                content_excerpt=mention.content_excerpt,
            )
        )
        rescored.sort(key=lambda t: (t.score, ensure_aware(t.created_at), t.mention_id), reverse=True)

        updated = connection.model_copy(
            update={
                "metrics": ConnectionMetrics(
                    mention_count=metrics.mention_count + 1,
                    total_upvotes=metrics.total_upvotes + mention.upvotes,
                    recent_mention_count=recent,
                    last_mentioned_at=max(
                        ensure_aware(metrics.last_mentioned_at), ensure_aware(mention.created_at)
                    ),
                    activity_level=activity_level_for(recent, self.config),
                    top_mentions=tuple(rescored[: self.config.top_mentions_limit]),
                ),
                "last_updated": clock.now,
            }
        )
        if not await self.connection_storage.update_connection(updated):
            raise ComponentProcessingError("merge", "update_connection", f"connection {connection.connection_id} vanished")
        return updated

    def _mention_record(self, mention_id: str, connection_id: str, mention: NormalizedMention) -> Mention:
        return Mention(
            mention_id=mention_id,
            connection_id=connection_id,
            source_type=mention.source_type,
            source_id=mention.source_id,
            source_url=mention.source_url,
            subreddit=mention.subreddit,
            content_excerpt=mention.content_excerpt,
            author=mention.author,
            upvotes=mention.upvotes,
            created_at=mention.created_at,
        )

    async def merge_attributes(self, operation: ComponentOperation, clock: ProcessingClock) -> OperationOutcome:
        """Union attributes into each target connection; unchanged ones are not rewritten."""
        changed: list[str] = []
        for connection_id in operation.connection_ids:
            connection = await self.connection_storage.get(connection_id)
            if connection is None:
                raise AttributeProcessingError(
                    "merge",
                    operation.operation_type.value,
                    f"connection {connection_id} not found",
                    attribute_type="descriptive",
                )
            async with self._locks.hold(("pair", connection.restaurant_id, connection.dish_or_category_id)):
                # re-read under the lock; another writer may have extended it
                connection = await self.connection_storage.get(connection_id) or connection
                current = connection.attributes
                descriptive, _ = self.attributes.merge_descriptive(
                    current.descriptive_attributes, operation.descriptive_attributes
                )
                attributes = current.model_copy(
                    update={
                        "categories": union_attributes(current.categories, operation.categories),
                        "descriptive_attributes": descriptive,
                        "restaurant_attributes": union_attributes(
                            current.restaurant_attributes, operation.restaurant_attributes
                        ),
                        "is_menu_item": current.is_menu_item or operation.is_menu_item,
                    }
                )
                if attributes == current:
                    continue
                await self.connection_storage.update_connection(
                    connection.model_copy(update={"attributes": attributes, "last_updated": clock.now})
                )
                changed.append(connection_id)
        return OperationOutcome(connection_ids=operation.connection_ids, connections_updated=tuple(changed))

    async def credit_general_praise(self, operation: ComponentOperation, clock: ProcessingClock) -> OperationOutcome:
        """Add a praise mention's upvotes to its restaurant, once per source item."""
        if operation.entity_id is None or operation.mention is None:
            raise ComponentProcessingError("merge", "update_entity", "operation lacks entity id or mention")
        source = reddit_content_key(*operation.mention.source_key)

        async with self._locks.hold(("entity", operation.entity_id)):
            entity = await self.entity_storage.get(operation.entity_id)
            if entity is None:
                raise ComponentProcessingError("merge", "update_entity", f"entity {operation.entity_id} not found")
            credited = entity.metadata.get(PRAISE_SOURCES_KEY, [])
            if source in credited:
                return OperationOutcome(duplicate_mention=True)
            updated = entity.model_copy(
                update={
                    "general_praise_upvotes": entity.general_praise_upvotes + operation.praise_upvotes,
                    "metadata": {**entity.metadata, PRAISE_SOURCES_KEY: [*credited, source]},
                    "last_updated": clock.now,
                }
            )
            await self.entity_storage.update(updated)
        return OperationOutcome(entities_updated=(operation.entity_id,))
