"""Error taxonomy for mention processing.

Component and score failures are captured into result objects and never
escape a batch. Only configuration problems (``UnknownEntityType``) and
programming errors propagate to the caller.
"""

from typing import Any, Literal


class DishGraphError(Exception):
    """Base class for all dishgraph errors."""


class MissingIdentifier(DishGraphError):
    """A resolution input lacked a usable normalized name."""

    def __init__(self, temp_id: str, entity_type: str):
        self.temp_id = temp_id
        self.entity_type = entity_type
        super().__init__(f"Missing normalized name for {entity_type} input '{temp_id}'")


class UnknownEntityType(DishGraphError, ValueError):
    """The resolver was asked to handle an entity type it does not know."""

    def __init__(self, entity_type: Any):
        self.entity_type = entity_type
        super().__init__(f"Unsupported entity type: {entity_type!r}")


class ComponentProcessingError(DishGraphError):
    """A component processor failed while handling one mention."""

    def __init__(
        self,
        component_name: str,
        operation: str,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        self.component_name = component_name
        self.operation = operation
        self.message = message
        self.context = context or {}
        super().__init__(f"[{component_name}] {operation}: {message}")


class AttributeProcessingError(ComponentProcessingError):
    """Attribute handling failed; tags whether selective or descriptive."""

    def __init__(
        self,
        component_name: str,
        operation: str,
        message: str,
        attribute_type: Literal["selective", "descriptive"],
        context: dict[str, Any] | None = None,
    ):
        self.attribute_type = attribute_type
        super().__init__(component_name, operation, message, context)


class DuplicateConnectionRace(DishGraphError):
    """A connection with the same key was created by a concurrent writer."""

    def __init__(self, existing_connection_id: str, key: tuple[str, str, str]):
        self.existing_connection_id = existing_connection_id
        self.key = key
        super().__init__(f"Connection {key} already exists as {existing_connection_id}")


class DuplicateMentionError(DishGraphError):
    """A mention row with the same (source_type, source_id) already exists."""

    def __init__(self, source_type: str, source_id: str, existing_mention_id: str):
        self.source_type = source_type
        self.source_id = source_id
        self.existing_mention_id = existing_mention_id
        super().__init__(f"Mention {source_type}:{source_id} already recorded as {existing_mention_id}")


class RestaurantContextUnavailable(DishGraphError):
    """The restaurant quality score needed as scoring context could not be read."""

    def __init__(self, restaurant_id: str, reason: str):
        self.restaurant_id = restaurant_id
        super().__init__(f"Restaurant context unavailable for {restaurant_id}: {reason}")


class QualityScoreTimeout(DishGraphError):
    """A quality score calculation did not finish within the batch timeout."""

    def __init__(self, connection_id: str, timeout_seconds: float):
        self.connection_id = connection_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Quality score for {connection_id} timed out after {timeout_seconds}s")


class DuplicateEntityError(DishGraphError):
    """An entity with the same (type, normalized name) already exists."""

    def __init__(self, entity_type: str, name: str, existing_entity_id: str):
        self.entity_type = entity_type
        self.name = name
        self.existing_entity_id = existing_entity_id
        super().__init__(f"{entity_type} '{name}' already exists as {existing_entity_id}")
