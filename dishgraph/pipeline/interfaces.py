"""Component processor interfaces and the records they exchange.

A mention is handled by a fixed, ordered set of component processors. Each
processor decides applicability with a pure ``should_process`` predicate and,
when applicable, describes the changes it wants as ``ComponentOperation``
records. The router hands those operations to the merge engine and folds the
``OperationOutcome`` back into the processor's ``ComponentResult``.

Typical flow for one mention:
    1. ComponentRouter.route picks the applicable processors in order
    2. Each processor's ``process`` returns operations for its concern
    3. ConnectionMergeEngine.apply executes the operations
    4. Connection ids touched so far are threaded to later processors
       through ``ComponentProcessingContext.with_connections``
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from dishgraph.clock import ProcessingClock
from dishgraph.config import AttributeProcessingConfig
from dishgraph.mention import NormalizedMention
from dishgraph.pipeline.resolver import BatchResolutionResult
from dishgraph.storage.interfaces import ConnectionStorageInterface


class ComponentType(str, Enum):
    """The closed set of processing rules, in execution order."""

    RESTAURANT_DISH_CONNECTION = "restaurant_dish_connection"
    GENERAL_PRAISE = "general_praise"
    DISH_ONLY = "dish_only"
    ATTRIBUTE_ENRICHMENT = "attribute_enrichment"
    MENU_ITEM = "menu_item"
    DESCRIPTIVE_ADDITION = "descriptive_addition"


COMPONENT_ORDER: tuple[ComponentType, ...] = tuple(ComponentType)


class OperationType(str, Enum):
    UPSERT_CONNECTION = "upsert_connection"
    MERGE_ATTRIBUTES = "merge_attributes"
    SET_MENU_ITEM = "set_menu_item"
    UPDATE_ENTITY = "update_entity"


class AttributeOutcome(str, Enum):
    """Which kinds of dish attribute a mention carried."""

    SELECTIVE_ONLY = "selective_only"
    DESCRIPTIVE_ONLY = "descriptive_only"
    MIXED = "mixed"
    NONE = "none"


class ComponentOperation(BaseModel):
    """One change a processor wants applied.

    Only the fields relevant to ``operation_type`` are populated.
    """

    model_config = {"frozen": True}

    operation_type: OperationType
    restaurant_id: str | None = None
    dish_or_category_id: str | None = None
    connection_ids: tuple[str, ...] = ()
    entity_id: str | None = None

    categories: tuple[str, ...] = ()
    selective_attributes: tuple[str, ...] = ()
    descriptive_attributes: tuple[str, ...] = ()
    restaurant_attributes: tuple[str, ...] = ()
    is_menu_item: bool = False
    praise_upvotes: int = Field(default=0, ge=0)

    mention: NormalizedMention | None = Field(
        default=None,
        description="Source mention, carried by operations that record or credit it.",
    )


class OperationOutcome(BaseModel):
    """What the merge engine actually did for one or more operations."""

    model_config = {"frozen": True}

    connection_ids: tuple[str, ...] = Field(
        default=(),
        description="Connections the operation resolved to, whether or not they changed.",
    )
    connections_created: tuple[str, ...] = ()
    connections_updated: tuple[str, ...] = ()
    mentions_created: int = 0
    entities_updated: tuple[str, ...] = ()
    duplicate_mention: bool = False

    def combine(self, other: OperationOutcome) -> OperationOutcome:
        def union(a: tuple[str, ...], b: tuple[str, ...]) -> tuple[str, ...]:
            return tuple(dict.fromkeys(a + b))

        return OperationOutcome(
            connection_ids=union(self.connection_ids, other.connection_ids),
            connections_created=union(self.connections_created, other.connections_created),
            connections_updated=union(self.connections_updated, other.connections_updated),
            mentions_created=self.mentions_created + other.mentions_created,
            entities_updated=union(self.entities_updated, other.entities_updated),
            duplicate_mention=self.duplicate_mention or other.duplicate_mention,
        )


class ComponentResult(BaseModel):
    """Transaction log entry for one processor run on one mention.

    A skipped processor has ``processed=False`` and ``success=True`` with a
    ``skip_reason``. A failed processor has ``success=False`` and ``error``.
    """

    model_config = {"frozen": True}

    component: ComponentType
    mention_temp_id: str
    success: bool = True
    processed: bool = True
    operations: tuple[ComponentOperation, ...] = ()
    outcome: OperationOutcome = Field(default_factory=OperationOutcome)
    metrics: dict[str, float] = Field(default_factory=dict)
    attribute_outcome: AttributeOutcome | None = None
    skip_reason: str | None = None
    error: str | None = None


class ComponentProcessingContext(BaseModel):
    """Everything a processor may read while handling one mention.

    The context is scoped to a single mention within a single batch and is
    discarded afterwards.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    batch_id: str
    mention: NormalizedMention
    resolved: BatchResolutionResult
    clock: ProcessingClock
    connection_storage: ConnectionStorageInterface
    attribute_config: AttributeProcessingConfig = Field(default_factory=AttributeProcessingConfig)
    connection_ids: tuple[str, ...] = Field(
        default=(),
        description="Connections touched by earlier processors for this mention.",
    )

    @property
    def restaurant_id(self) -> str | None:
        return self.resolved.entity_id_for(self.mention.restaurant_temp_id)

    @property
    def dish_or_category_id(self) -> str | None:
        return self.resolved.entity_id_for(self.mention.dish_temp_id)

    def with_connections(self, connection_ids: tuple[str, ...]) -> ComponentProcessingContext:
        merged = tuple(dict.fromkeys(self.connection_ids + connection_ids))
        return self.model_copy(update={"connection_ids": merged})


class ComponentProcessorInterface(ABC):
    """A single mention-processing rule."""

    component_type: ComponentType

    @abstractmethod
    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        """Decide applicability from mention flags and resolution success.

        Must not touch storage or mutate anything.
        """

    @abstractmethod
    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        """Describe the changes for this mention.

        Implementations may read storage through the context but never write;
        writes happen when the router applies the returned operations.

        Raises:
            ComponentProcessingError: If the mention cannot be handled. The
                router converts this into a failed ``ComponentResult``.
        """

    def _result(self, context: ComponentProcessingContext, **kwargs) -> ComponentResult:
        return ComponentResult(component=self.component_type, mention_temp_id=context.mention.temp_id, **kwargs)
