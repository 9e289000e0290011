"""Storage interface definitions for the dish graph.

Every method is atomic at single-row granularity. No cross-call transaction
is assumed; callers that need read-then-write consistency serialize through
``dishgraph.locks.KeyedLockTable`` and rely on the unique constraints below.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from dishgraph.connection import Connection, Mention
from dishgraph.entity import Entity, EntityType


class EntityStorageInterface(ABC):
    """Abstract interface for entity storage operations.

    Implementations keep at most one entity per (entity_type, normalized name).
    """

    @abstractmethod
    async def get(self, entity_id: str) -> Entity | None:
        """Retrieve an entity by ID, or None if not found."""

    @abstractmethod
    async def get_batch(self, entity_ids: Sequence[str]) -> list[Entity | None]:
        """Retrieve multiple entities by ID.

        Returns a list in the same order as input IDs, with None for missing entities.
        """

    @abstractmethod
    async def find_entity(self, entity_type: EntityType, name_or_alias: str) -> Entity | None:
        """Find the entity of ``entity_type`` whose name or an alias matches.

        Matching is on normalized text. A canonical-name match is preferred
        over an alias match when both exist.
        """

    @abstractmethod
    async def list_by_type(self, entity_type: EntityType) -> list[Entity]:
        """Return every entity of one type, used as fuzzy-match candidates."""

    @abstractmethod
    async def create_entity(self, entity: Entity) -> Entity:
        """Store a new entity.

        Raises:
            DuplicateEntityError: If an entity with the same type and
                normalized name already exists.
        """

    @abstractmethod
    async def update(self, entity: Entity) -> bool:
        """Update an existing entity.

        Returns True if the entity was found and updated, False otherwise.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return total entity count."""


class ConnectionStorageInterface(ABC):
    """Abstract interface for restaurant to dish connection storage.

    Implementations keep at most one connection per (restaurant_id,
    dish_or_category_id, selective signature).
    """

    @abstractmethod
    async def get(self, connection_id: str) -> Connection | None:
        """Retrieve a connection by ID, or None if not found."""

    @abstractmethod
    async def get_batch(self, connection_ids: Sequence[str]) -> list[Connection | None]:
        """Retrieve multiple connections by ID, None for missing ones."""

    @abstractmethod
    async def find_connection(
        self,
        restaurant_id: str,
        dish_or_category_id: str,
        signature: str = "",
    ) -> Connection | None:
        """Find the connection for one pair and selective signature."""

    @abstractmethod
    async def find_connections(self, restaurant_id: str, dish_or_category_id: str) -> list[Connection]:
        """Return every variant connection of one pair, whatever its signature."""

    @abstractmethod
    async def list_connections_for_restaurant(self, restaurant_id: str) -> list[Connection]:
        """Return all connections of one restaurant."""

    @abstractmethod
    async def create_connection(self, connection: Connection) -> str:
        """Store a new connection and return its ID.

        Raises:
            DuplicateConnectionRace: If a connection with the same key already
                exists. The error carries the existing connection's ID.
        """

    @abstractmethod
    async def update_connection(self, connection: Connection) -> bool:
        """Replace a stored connection.

        Returns True if the connection was found and updated, False otherwise.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return total connection count."""


class MentionStorageInterface(ABC):
    """Abstract interface for the mention log.

    Inserting a mention claims its source item. Rows are only removed to
    release a claim whose connection write did not happen.
    """

    @abstractmethod
    async def create_mention_record(self, mention: Mention) -> str:
        """Append a mention and return its ID.

        Raises:
            DuplicateMentionError: If a mention with the same
                (source_type, source_id) was already recorded.
        """

    @abstractmethod
    async def delete_mention_record(self, mention_id: str) -> bool:
        """Remove a mention, freeing its source item.

        Returns True if the mention existed, False otherwise.
        """

    @abstractmethod
    async def find_by_source(self, source_type: str, source_id: str) -> Mention | None:
        """Return the mention recorded for a source item, if any."""

    @abstractmethod
    async def list_for_connection(self, connection_id: str) -> list[Mention]:
        """Return all mentions of one connection, oldest first."""

    @abstractmethod
    async def count(self) -> int:
        """Return total mention count."""
