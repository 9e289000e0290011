"""Quality score engine: time-decayed food, restaurant and category scores.

Food score for one connection::

    mention_term  = min(max, log1p(mention_count * exp(-days / mention_window)) * mention_scale)
    upvote_term   = min(max, log1p(total_upvotes * exp(-days / upvote_window)) * upvote_scale)
    strength      = w_mentions * mention_term + w_upvotes * upvote_term
    food_score    = w_strength * strength + w_context * restaurant_score

where ``days`` is the time since the connection was last mentioned and
``restaurant_score`` is the restaurant's stored score (0 when unknown).

Restaurant score::

    w_top * mean(top N food scores) + w_overall * mean(all food scores)

Both results are clamped to ``[score_min, score_max]``.
"""

import asyncio
import logging
import math
import time
from typing import Iterable, Sequence

from pydantic import BaseModel

from dishgraph.clock import ProcessingClock
from dishgraph.config import QualityScoreConfig
from dishgraph.connection import Connection, normalize_attributes
from dishgraph.entity import normalize_name
from dishgraph.errors import QualityScoreTimeout, RestaurantContextUnavailable
from dishgraph.locks import KeyedLockTable
from dishgraph.storage.interfaces import ConnectionStorageInterface, EntityStorageInterface

logger = logging.getLogger(__name__)


class QualityScoreError(BaseModel):
    """One failed calculation, keyed by the connection or restaurant it concerns."""

    model_config = {"frozen": True}

    connection_id: str | None = None
    restaurant_id: str | None = None
    error_type: str
    message: str


class QualityScoreUpdateResult(BaseModel):
    model_config = {"frozen": True}

    connections_updated: int = 0
    restaurants_updated: int = 0
    processing_time_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    errors: tuple[QualityScoreError, ...] = ()


def decay(value: float, days: float, window_days: float) -> float:
    """Exponential decay of ``value`` over ``days`` with time constant ``window_days``."""
    return value * math.exp(-max(0.0, days) / window_days)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _chunks(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for offset in range(0, len(items), size):
        yield items[offset : offset + size]


class QualityScoreEngine:
    """Computes and persists quality scores.

    Example:
        ```python
        engine = QualityScoreEngine(connection_storage, entity_storage)
        result = await engine.update_quality_scores_for_connections(ids, clock)
        ```
    """

    def __init__(
        self,
        connection_storage: ConnectionStorageInterface,
        entity_storage: EntityStorageInterface,
        config: QualityScoreConfig | None = None,
        locks: KeyedLockTable | None = None,
    ):
        self.connection_storage = connection_storage
        self.entity_storage = entity_storage
        self.config = config or QualityScoreConfig()
        self._locks = locks or KeyedLockTable()

    def _clamp(self, score: float) -> float:
        norm = self.config.normalization
        return min(norm.score_max, max(norm.score_min, score))

    def connection_strength(self, connection: Connection, clock: ProcessingClock) -> float:
        """Blend of the decayed mention-count and upvote terms, on the score scale."""
        days = clock.days_since(connection.metrics.last_mentioned_at)
        norm = self.config.normalization
        time_decay = self.config.time_decay
        weights = self.config.weights

        mentions = decay(connection.metrics.mention_count, days, time_decay.mention_count_decay_days)
        upvotes = decay(connection.metrics.total_upvotes, days, time_decay.upvote_decay_days)
        mention_term = min(norm.score_max, math.log1p(mentions) * norm.mention_scale)
        upvote_term = min(norm.score_max, math.log1p(upvotes) * norm.upvote_scale)
        return weights.mention_count_weight * mention_term + weights.upvote_weight * upvote_term

    def food_quality_score(self, connection: Connection, restaurant_context: float, clock: ProcessingClock) -> float:
        weights = self.config.weights
        score = (
            weights.food_connection_strength * self.connection_strength(connection, clock)
            + weights.food_restaurant_context * restaurant_context
        )
        return self._clamp(score)

    def connection_weight(self, connection: Connection, clock: ProcessingClock) -> float:
        """Volume weight used by the category and attribute performance scores."""
        days = clock.days_since(connection.metrics.last_mentioned_at)
        time_decay = self.config.time_decay
        return math.log1p(
            decay(connection.metrics.mention_count, days, time_decay.mention_count_decay_days)
        ) + math.log1p(decay(connection.metrics.total_upvotes, days, time_decay.upvote_decay_days))

    async def restaurant_context(self, restaurant_id: str) -> float:
        """Return the restaurant's stored score, 0 if the restaurant or score is unknown.

        Raises:
            RestaurantContextUnavailable: If the lookup itself fails.
        """
        try:
            restaurant = await self.entity_storage.get(restaurant_id)
        except Exception as e:
            raise RestaurantContextUnavailable(restaurant_id, str(e)) from e
        if restaurant is None or restaurant.restaurant_quality_score is None:
            return 0.0
        return restaurant.restaurant_quality_score

    async def calculate_food_quality_score(self, connection: Connection, clock: ProcessingClock) -> float:
        context = await self.restaurant_context(connection.restaurant_id)
        return self.food_quality_score(connection, context, clock)

    def _stored_or_computed(self, connection: Connection, clock: ProcessingClock) -> float:
        if connection.food_quality_score is not None:
            return connection.food_quality_score
        return self.food_quality_score(connection, 0.0, clock)

    async def calculate_restaurant_quality_score(self, restaurant_id: str, clock: ProcessingClock) -> float | None:
        """Score a restaurant from its connections' food scores.

        Connections without a stored food score are scored on the fly with no
        restaurant context, so a restaurant's own score never feeds back into itself.

        Returns:
            The clamped score, or None if the restaurant has no connections.
        """
        connections = await self.connection_storage.list_connections_for_restaurant(restaurant_id)
        if not connections:
            return None
        scores = sorted((self._stored_or_computed(c, clock) for c in connections), reverse=True)
        top = scores[: self.config.batch.top_food_count]
        weights = self.config.weights
        return self._clamp(weights.restaurant_top_food * _mean(top) + weights.restaurant_overall_consistency * _mean(scores))

    def weighted_performance(self, connections: Iterable[Connection], clock: ProcessingClock) -> float | None:
        """Volume-weighted mean food score; zero-weight connections are left out.

        Returns None rather than 0 when nothing qualifies.
        """
        total = 0.0
        weight_sum = 0.0
        for connection in connections:
            weight = self.connection_weight(connection, clock)
            if weight <= 0:
                continue
            total += weight * self._stored_or_computed(connection, clock)
            weight_sum += weight
        if weight_sum == 0:
            return None
        return self._clamp(total / weight_sum)

    async def calculate_category_performance_score(
        self,
        restaurant_id: str,
        category: str,
        clock: ProcessingClock,
    ) -> float | None:
        """How well a restaurant does across dishes of one category."""
        key = normalize_name(category)
        connections = await self.connection_storage.list_connections_for_restaurant(restaurant_id)
        relevant = [c for c in connections if key in c.attributes.categories]
        return self.weighted_performance(relevant, clock)

    async def calculate_attribute_performance_score(
        self,
        restaurant_id: str,
        attribute: str,
        clock: ProcessingClock,
    ) -> float | None:
        """How well a restaurant does on dishes carrying one food attribute."""
        key = normalize_name(attribute)
        connections = await self.connection_storage.list_connections_for_restaurant(restaurant_id)
        relevant = [
            c
            for c in connections
            if key in normalize_attributes((*c.attributes.selective_attributes, *c.attributes.descriptive_attributes))
        ]
        return self.weighted_performance(relevant, clock)

    async def _update_connection_score(
        self,
        connection_id: str,
        clock: ProcessingClock,
        semaphore: asyncio.Semaphore,
        context_cache: dict[str, float],
    ) -> Connection:
        async with semaphore:
            connection = await self.connection_storage.get(connection_id)
            if connection is None:
                raise LookupError(f"Connection {connection_id} not found")
            context = context_cache.get(connection.restaurant_id)
            if context is None:
                context = await self.restaurant_context(connection.restaurant_id)
                context_cache[connection.restaurant_id] = context

            # score the row as it is now; a merge may have extended it meanwhile
            async with self._locks.hold(("pair", connection.restaurant_id, connection.dish_or_category_id)):
                current = await self.connection_storage.get(connection_id)
                if current is None:
                    raise LookupError(f"Connection {connection_id} disappeared during scoring")
                updated = current.model_copy(
                    update={
                        "food_quality_score": self.food_quality_score(current, context, clock),
                        "last_updated": clock.now,
                    }
                )
                if not await self.connection_storage.update_connection(updated):
                    raise LookupError(f"Connection {connection_id} disappeared during scoring")
            return updated

    async def update_quality_scores_for_connections(
        self,
        connection_ids: Sequence[str],
        clock: ProcessingClock | None = None,
    ) -> QualityScoreUpdateResult:
        """Recompute food scores for connections, then their restaurants' scores.

        Connections are processed in chunks of ``batch.batch_size`` with at most
        ``batch.max_concurrent_calculations`` in flight. Calculations still
        running when a chunk's ``batch.timeout_seconds`` expires are cancelled
        and reported as ``QualityScoreTimeout``. Every failure is recorded and
        the run continues with the remaining connections.

        Args:
            connection_ids: Connections to rescore. Duplicates are ignored.
            clock: Reference time for decay. Defaults to now.

        Returns:
            Aggregate counters, elapsed time and per-item errors.
        """
        clock = clock or ProcessingClock.utcnow()
        start = time.perf_counter()
        batch = self.config.batch
        ids = list(dict.fromkeys(connection_ids))
        semaphore = asyncio.Semaphore(batch.max_concurrent_calculations)
        context_cache: dict[str, float] = {}
        updated: list[Connection] = []
        errors: list[QualityScoreError] = []

        for chunk in _chunks(ids, batch.batch_size):
            tasks = {
                asyncio.create_task(self._update_connection_score(cid, clock, semaphore, context_cache)): cid
                for cid in chunk
            }
            done, pending = await asyncio.wait(tasks, timeout=batch.timeout_seconds)
            for task in pending:
                task.cancel()
                timeout = QualityScoreTimeout(tasks[task], batch.timeout_seconds)
                logger.warning(str(timeout))
                errors.append(
                    QualityScoreError(connection_id=tasks[task], error_type=type(timeout).__name__, message=str(timeout))
                )
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                connection_id = tasks[task]
                error = task.exception()
                if error is not None:
                    logger.warning("Quality score for %s failed: %s", connection_id, error)
                    errors.append(
                        QualityScoreError(connection_id=connection_id, error_type=type(error).__name__, message=str(error))
                    )
                else:
                    updated.append(task.result())

        restaurants_updated = 0
        for restaurant_id in dict.fromkeys(c.restaurant_id for c in updated):
            try:
                if await self._update_restaurant_score(restaurant_id, clock):
                    restaurants_updated += 1
            except Exception as e:
                logger.warning("Restaurant score for %s failed: %s", restaurant_id, e)
                errors.append(QualityScoreError(restaurant_id=restaurant_id, error_type=type(e).__name__, message=str(e)))

        elapsed_ms = (time.perf_counter() - start) * 1000
        return QualityScoreUpdateResult(
            connections_updated=len(updated),
            restaurants_updated=restaurants_updated,
            processing_time_ms=elapsed_ms,
            average_processing_time_ms=elapsed_ms / len(ids) if ids else 0.0,
            errors=tuple(errors),
        )

    async def _update_restaurant_score(self, restaurant_id: str, clock: ProcessingClock) -> bool:
        score = await self.calculate_restaurant_quality_score(restaurant_id, clock)
        if score is None:
            return False
        restaurant = await self.entity_storage.get(restaurant_id)
        if restaurant is None:
            return False
        return await self.entity_storage.update(
            restaurant.model_copy(update={"restaurant_quality_score": score, "last_updated": clock.now})
        )
