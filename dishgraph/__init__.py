"""
Dish Graph - restaurant and dish connections mined from social mentions.

Batches of extracted mentions are resolved to canonical entities, routed
through a fixed set of processing rules, merged into deduplicated
restaurant to dish connections and scored with time-decayed quality scores.

    from dishgraph import MentionBatchProcessor, ProcessedMention
    from dishgraph.storage import InMemoryConnectionStorage, InMemoryEntityStorage, InMemoryMentionStorage
"""

from dishgraph.clock import ProcessingClock
from dishgraph.config import DishGraphConfig, load_config
from dishgraph.connection import (
    ActivityLevel,
    Connection,
    ConnectionAttributes,
    ConnectionMetrics,
    Mention,
    TopMention,
)
from dishgraph.entity import Entity, EntityType
from dishgraph.errors import (
    AttributeProcessingError,
    ComponentProcessingError,
    DishGraphError,
    DuplicateConnectionRace,
    DuplicateEntityError,
    DuplicateMentionError,
    MissingIdentifier,
    QualityScoreTimeout,
    RestaurantContextUnavailable,
    UnknownEntityType,
)
from dishgraph.ingest import BatchMetrics, ComponentProcessingResult, MentionBatchProcessor
from dishgraph.mention import MentionShape, NormalizedMention, ProcessedMention

__version__ = "0.1.0"

__all__ = [
    # Models
    "Entity",
    "EntityType",
    "Connection",
    "ConnectionAttributes",
    "ConnectionMetrics",
    "TopMention",
    "Mention",
    "ActivityLevel",
    "ProcessedMention",
    "NormalizedMention",
    "MentionShape",
    # Orchestration
    "MentionBatchProcessor",
    "ComponentProcessingResult",
    "BatchMetrics",
    "ProcessingClock",
    # Configuration
    "DishGraphConfig",
    "load_config",
    # Errors
    "DishGraphError",
    "MissingIdentifier",
    "UnknownEntityType",
    "ComponentProcessingError",
    "AttributeProcessingError",
    "DuplicateConnectionRace",
    "DuplicateEntityError",
    "DuplicateMentionError",
    "QualityScoreTimeout",
    "RestaurantContextUnavailable",
]
