"""Configuration models for mention processing and quality scoring.

Every setting has a default, so ``DishGraphConfig()`` is a complete working
configuration. Overrides can be supplied in code or loaded from TOML:

    ```toml
    [components]
    max_concurrent_components = 4
    enable_error_recovery = false

    [components.attribute_processing]
    max_attributes_per_connection = 8

    [quality_score.weights]
    food_connection_strength = 0.9
    food_restaurant_context = 0.1
    ```

The TOML file is looked up in order:
  1. Explicit ``path`` argument to ``load_config``
  2. Path in the ``DISHGRAPH_CONFIG`` env var (if set)
  3. ``dishgraph.toml`` in the current working directory
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

WEIGHT_TOLERANCE = 1e-6
CONFIG_ENV_VAR = "DISHGRAPH_CONFIG"
DEFAULT_CONFIG_FILENAME = "dishgraph.toml"


class AttributeProcessingConfig(BaseModel, frozen=True):
    """Controls how selective and descriptive dish attributes are applied."""

    enable_selective_matching: bool = Field(
        default=True,
        description="Use selective attributes to tell dish variants apart.",
    )
    enable_descriptive_addition: bool = Field(
        default=True,
        description="Union descriptive attributes into matched connections.",
    )
    require_exact_attribute_match: bool = Field(
        default=True,
        description="Selective sets must match exactly; otherwise any overlap matches.",
    )
    max_attributes_per_connection: int = Field(
        default=20,
        ge=1,
        description="Cap on descriptive attributes per connection; extras are dropped.",
    )


class ComponentProcessorConfig(BaseModel, frozen=True):
    """Batch-level processing switches."""

    enable_parallel_processing: bool = Field(default=True)
    max_concurrent_components: int = Field(default=5, ge=1)
    enable_metrics: bool = Field(default=True)
    enable_error_recovery: bool = Field(
        default=True,
        description="Isolate processor failures per mention instead of aborting the batch.",
    )
    attribute_processing: AttributeProcessingConfig = Field(default_factory=AttributeProcessingConfig)


class EntityResolutionConfig(BaseModel, frozen=True):
    """Thresholds for the exact / alias / fuzzy resolution tiers."""

    fuzzy_match_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    enable_fuzzy_matching: bool = Field(default=True)
    max_edit_distance: int = Field(default=3, ge=0)
    batch_size: int = Field(default=100, gt=0)


class MergeConfig(BaseModel, frozen=True):
    """Connection metric maintenance settings."""

    recent_mention_window_days: float = Field(default=30, gt=0)
    top_mentions_limit: int = Field(default=5, ge=1)
    mention_score_decay_days: float = Field(
        default=60,
        gt=0,
        description="Decay constant of the per-mention score upvotes * exp(-days / N).",
    )
    trending_threshold: int = Field(default=3, ge=1, description="Recent mentions needed for 'trending'.")
    active_threshold: int = Field(default=1, ge=1, description="Recent mentions needed for 'active'.")

    @model_validator(mode="after")
    def tiers_are_ordered(self) -> MergeConfig:
        if self.active_threshold > self.trending_threshold:
            raise ValueError("active_threshold must not exceed trending_threshold")
        return self


class TimeDecayConfig(BaseModel, frozen=True):
    mention_count_decay_days: float = Field(default=180, gt=0)
    upvote_decay_days: float = Field(default=120, gt=0)


class QualityScoreWeights(BaseModel, frozen=True):
    """Blend weights for the three score formulas.

    Each pair must sum to 1.0.
    """

    food_connection_strength: float = Field(default=0.87, ge=0.85, le=0.90)
    food_restaurant_context: float = Field(default=0.13, ge=0.10, le=0.15)
    restaurant_top_food: float = Field(default=0.80, ge=0.0, le=1.0)
    restaurant_overall_consistency: float = Field(default=0.20, ge=0.0, le=1.0)
    mention_count_weight: float = Field(default=0.60, ge=0.0, le=1.0)
    upvote_weight: float = Field(default=0.40, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def pairs_sum_to_one(self) -> QualityScoreWeights:
        pairs = {
            "food": (self.food_connection_strength, self.food_restaurant_context),
            "restaurant": (self.restaurant_top_food, self.restaurant_overall_consistency),
            "connection strength": (self.mention_count_weight, self.upvote_weight),
        }
        for label, (first, second) in pairs.items():
            if abs(first + second - 1.0) > WEIGHT_TOLERANCE:
                raise ValueError(f"{label} weights must sum to 1.0, got {first + second}")
        return self


class QualityScoreNormalization(BaseModel, frozen=True):
    """Maps decayed raw counts onto the score scale via log1p(x) * scale."""

    mention_scale: float = Field(default=20.0, gt=0)
    upvote_scale: float = Field(default=12.0, gt=0)
    score_min: float = Field(default=0.0)
    score_max: float = Field(default=100.0)

    @model_validator(mode="after")
    def bounds_are_ordered(self) -> QualityScoreNormalization:
        if self.score_min >= self.score_max:
            raise ValueError("score_min must be below score_max")
        return self


class QualityScoreBatchConfig(BaseModel, frozen=True):
    batch_size: int = Field(default=50, gt=0)
    max_concurrent_calculations: int = Field(default=10, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    top_food_count: int = Field(default=5, ge=3, le=5)


class QualityScoreConfig(BaseModel, frozen=True):
    time_decay: TimeDecayConfig = Field(default_factory=TimeDecayConfig)
    weights: QualityScoreWeights = Field(default_factory=QualityScoreWeights)
    normalization: QualityScoreNormalization = Field(default_factory=QualityScoreNormalization)
    batch: QualityScoreBatchConfig = Field(default_factory=QualityScoreBatchConfig)


class DishGraphConfig(BaseModel, frozen=True):
    """Top-level configuration bundle."""

    components: ComponentProcessorConfig = Field(default_factory=ComponentProcessorConfig)
    resolution: EntityResolutionConfig = Field(default_factory=EntityResolutionConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    quality_score: QualityScoreConfig = Field(default_factory=QualityScoreConfig)


def _default_config_paths() -> list[Path]:
    """Return paths to check for a config file (first existing wins)."""
    paths: list[Path] = []
    if os.environ.get(CONFIG_ENV_VAR):
        paths.append(Path(os.environ[CONFIG_ENV_VAR]))
    paths.append(Path.cwd() / DEFAULT_CONFIG_FILENAME)
    return paths


def load_config(path: str | Path | None = None) -> DishGraphConfig:
    """Load configuration from TOML, falling back to defaults.

    Args:
        path: Explicit config file. When given it must exist.

    Returns:
        A validated ``DishGraphConfig``.

    Raises:
        FileNotFoundError: If ``path`` is given but does not exist.
        pydantic.ValidationError: If the file contains out-of-range values.
    """
    if path is not None:
        candidates = [Path(path)]
        if not candidates[0].is_file():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        candidates = _default_config_paths()

    for candidate in candidates:
        if candidate.is_file():
            with open(candidate, "rb") as f:
                data: dict[str, Any] = tomllib.load(f)
            return DishGraphConfig.model_validate(data)
    return DishGraphConfig()
