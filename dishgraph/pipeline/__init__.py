"""Mention processing pipeline: resolution, routing, merging and scoring."""

from dishgraph.pipeline.attributes import AttributeProcessor, classify_attributes
from dishgraph.pipeline.components import (
    AttributeEnrichmentProcessor,
    DescriptiveAdditionProcessor,
    DishOnlyProcessor,
    GeneralPraiseProcessor,
    MenuItemProcessor,
    RestaurantDishConnectionProcessor,
    default_processors,
)
from dishgraph.pipeline.interfaces import (
    AttributeOutcome,
    ComponentOperation,
    ComponentProcessingContext,
    ComponentProcessorInterface,
    ComponentResult,
    ComponentType,
    OperationOutcome,
    OperationType,
)
from dishgraph.pipeline.merge import ConnectionMergeEngine
from dishgraph.pipeline.quality import QualityScoreEngine, QualityScoreError, QualityScoreUpdateResult
from dishgraph.pipeline.resolver import (
    BatchResolutionResult,
    EntityResolutionInput,
    EntityResolutionResult,
    EntityResolver,
    ResolutionTier,
)
from dishgraph.pipeline.router import ComponentRouter

__all__ = [
    # Resolution
    "EntityResolver",
    "EntityResolutionInput",
    "EntityResolutionResult",
    "BatchResolutionResult",
    "ResolutionTier",
    # Components
    "ComponentType",
    "ComponentOperation",
    "ComponentResult",
    "ComponentProcessingContext",
    "ComponentProcessorInterface",
    "OperationType",
    "OperationOutcome",
    "AttributeOutcome",
    "RestaurantDishConnectionProcessor",
    "GeneralPraiseProcessor",
    "DishOnlyProcessor",
    "AttributeEnrichmentProcessor",
    "MenuItemProcessor",
    "DescriptiveAdditionProcessor",
    "default_processors",
    "ComponentRouter",
    # Attributes
    "AttributeProcessor",
    "classify_attributes",
    # Merge and scoring
    "ConnectionMergeEngine",
    "QualityScoreEngine",
    "QualityScoreError",
    "QualityScoreUpdateResult",
]
