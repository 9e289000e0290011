"""In-memory storage implementations for development and testing.

These keep everything in dictionaries and enforce the same unique
constraints a database backend would, so tests exercise the real
duplicate-handling paths.

Thread safety: Not thread-safe. Each method runs without awaiting, so within
a single asyncio event loop every call is atomic; that is the only guarantee.
"""

from typing import Sequence

from dishgraph.connection import Connection, Mention
from dishgraph.entity import Entity, EntityType, normalize_name
from dishgraph.errors import DuplicateConnectionRace, DuplicateEntityError, DuplicateMentionError
from dishgraph.storage.interfaces import (
    ConnectionStorageInterface,
    EntityStorageInterface,
    MentionStorageInterface,
)


class InMemoryEntityStorage(EntityStorageInterface):
    """In-memory entity storage with a (type, normalized name) unique index.

    Alias lookups are an O(n) scan over entities of the requested type.

    Example:
        ```python
        storage = InMemoryEntityStorage()
        await storage.create_entity(entity)
        found = await storage.find_entity(EntityType.RESTAURANT, "franklin bbq")
        ```
    """

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}
        self._by_name: dict[tuple[EntityType, str], str] = {}

    async def get(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    async def get_batch(self, entity_ids: Sequence[str]) -> list[Entity | None]:
        return [self._entities.get(eid) for eid in entity_ids]

    async def find_entity(self, entity_type: EntityType, name_or_alias: str) -> Entity | None:
        """Finds an entity by canonical name first, then by alias.

        Args:
            entity_type: The type to search within.
            name_or_alias: Raw or normalized text.

        Returns:
            The matching entity, or `None`.
        """
        key = normalize_name(name_or_alias)
        if not key:
            return None
        entity_id = self._by_name.get((entity_type, key))
        if entity_id is not None:
            return self._entities[entity_id]
        for entity in self._entities.values():
            if entity.entity_type == entity_type and entity.matches_name(key):
                return entity
        return None

    async def list_by_type(self, entity_type: EntityType) -> list[Entity]:
        return [e for e in self._entities.values() if e.entity_type == entity_type]

    async def create_entity(self, entity: Entity) -> Entity:
        """Stores a new entity, enforcing the (type, normalized name) constraint.

        Args:
            entity: The entity to store.

        Returns:
            The stored entity.

        Raises:
            DuplicateEntityError: If the identity is already taken.
        """
        key = (entity.entity_type, entity.normalized_name)
        existing_id = self._by_name.get(key)
        if existing_id is not None:
            raise DuplicateEntityError(entity.entity_type.value, entity.normalized_name, existing_id)
        self._entities[entity.entity_id] = entity
        self._by_name[key] = entity.entity_id
        return entity

    async def update(self, entity: Entity) -> bool:
        """Replaces a stored entity. The canonical name is not re-indexed.

        Args:
            entity: The entity with updated data.

        Returns:
            `True` if the entity existed, `False` otherwise.
        """
        if entity.entity_id not in self._entities:
            return False
        self._entities[entity.entity_id] = entity
        return True

    async def count(self) -> int:
        return len(self._entities)


class InMemoryConnectionStorage(ConnectionStorageInterface):
    """In-memory connection storage keyed by (restaurant, dish, signature).

    Example:
        ```python
        storage = InMemoryConnectionStorage()
        connection_id = await storage.create_connection(connection)
        same = await storage.find_connection(restaurant_id, dish_id, "spicy")
        ```
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._by_key: dict[tuple[str, str, str], str] = {}

    async def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    async def get_batch(self, connection_ids: Sequence[str]) -> list[Connection | None]:
        return [self._connections.get(cid) for cid in connection_ids]

    async def find_connection(
        self,
        restaurant_id: str,
        dish_or_category_id: str,
        signature: str = "",
    ) -> Connection | None:
        connection_id = self._by_key.get((restaurant_id, dish_or_category_id, signature))
        if connection_id is None:
            return None
        return self._connections[connection_id]

    async def find_connections(self, restaurant_id: str, dish_or_category_id: str) -> list[Connection]:
        return [
            c
            for c in self._connections.values()
            if c.restaurant_id == restaurant_id and c.dish_or_category_id == dish_or_category_id
        ]

    async def list_connections_for_restaurant(self, restaurant_id: str) -> list[Connection]:
        return [c for c in self._connections.values() if c.restaurant_id == restaurant_id]

    async def create_connection(self, connection: Connection) -> str:
        """Stores a new connection.

        Args:
            connection: The connection to store.

        Returns:
            The connection's ID.

        Raises:
            DuplicateConnectionRace: If the key is already taken.
        """
        key = connection.key
        existing_id = self._by_key.get(key)
        if existing_id is not None:
            raise DuplicateConnectionRace(existing_id, key)
        self._connections[connection.connection_id] = connection
        self._by_key[key] = connection.connection_id
        return connection.connection_id

    async def update_connection(self, connection: Connection) -> bool:
        """Replaces a stored connection, keeping the key index consistent.

        Args:
            connection: The connection with updated data.

        Returns:
            `True` if the connection existed, `False` otherwise.
        """
        previous = self._connections.get(connection.connection_id)
        if previous is None:
            return False
        if previous.key != connection.key:
            del self._by_key[previous.key]
            self._by_key[connection.key] = connection.connection_id
        self._connections[connection.connection_id] = connection
        return True

    async def count(self) -> int:
        return len(self._connections)

    async def list_all(self) -> list[Connection]:
        return list(self._connections.values())


class InMemoryMentionStorage(MentionStorageInterface):
    """In-memory mention log with a (source_type, source_id) unique index."""

    def __init__(self) -> None:
        self._mentions: dict[str, Mention] = {}
        self._by_source: dict[tuple[str, str], str] = {}

    async def create_mention_record(self, mention: Mention) -> str:
        """Appends a mention.

        Args:
            mention: The mention to record.

        Returns:
            The mention's ID.

        Raises:
            DuplicateMentionError: If the source item was already recorded.
        """
        existing_id = self._by_source.get(mention.source_key)
        if existing_id is not None:
            raise DuplicateMentionError(mention.source_type, mention.source_id, existing_id)
        self._mentions[mention.mention_id] = mention
        self._by_source[mention.source_key] = mention.mention_id
        return mention.mention_id

    async def delete_mention_record(self, mention_id: str) -> bool:
        mention = self._mentions.pop(mention_id, None)
        if mention is None:
            return False
        self._by_source.pop(mention.source_key, None)
        return True

    async def find_by_source(self, source_type: str, source_id: str) -> Mention | None:
        mention_id = self._by_source.get((source_type, source_id))
        if mention_id is None:
            return None
        return self._mentions[mention_id]

    async def list_for_connection(self, connection_id: str) -> list[Mention]:
        mentions = [m for m in self._mentions.values() if m.connection_id == connection_id]
        return sorted(mentions, key=lambda m: m.created_at)

    async def count(self) -> int:
        return len(self._mentions)
