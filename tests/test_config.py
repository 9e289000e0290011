"""Tests for configuration models and the TOML loader."""

import pytest
from pydantic import ValidationError

from dishgraph.config import (
    DishGraphConfig,
    MergeConfig,
    QualityScoreBatchConfig,
    QualityScoreWeights,
    load_config,
)


class TestDefaults:
    """A bare DishGraphConfig carries the documented defaults."""

    def test_component_defaults(self) -> None:
        config = DishGraphConfig()

        assert config.components.enable_parallel_processing is True
        assert config.components.max_concurrent_components == 5
        assert config.components.enable_error_recovery is True
        assert config.components.attribute_processing.max_attributes_per_connection == 20

    def test_quality_defaults(self) -> None:
        config = DishGraphConfig().quality_score

        assert config.weights.food_connection_strength == pytest.approx(0.87)
        assert config.weights.food_restaurant_context == pytest.approx(0.13)
        assert config.time_decay.mention_count_decay_days == 180
        assert config.time_decay.upvote_decay_days == 120
        assert config.batch.batch_size == 50
        assert config.batch.max_concurrent_calculations == 10
        assert config.batch.timeout_seconds == 30

    def test_weight_pairs_sum_to_one(self) -> None:
        weights = QualityScoreWeights()

        assert weights.food_connection_strength + weights.food_restaurant_context == pytest.approx(1.0)
        assert weights.restaurant_top_food + weights.restaurant_overall_consistency == pytest.approx(1.0)
        assert weights.mention_count_weight + weights.upvote_weight == pytest.approx(1.0)

    def test_configs_are_frozen(self) -> None:
        config = MergeConfig()

        with pytest.raises(ValidationError):
            config.top_mentions_limit = 10  # type: ignore[misc]


class TestValidation:
    """Out-of-range values are rejected at construction."""

    def test_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValidationError):
            QualityScoreWeights(food_connection_strength=0.88, food_restaurant_context=0.13)

    def test_food_weight_range(self) -> None:
        with pytest.raises(ValidationError):
            QualityScoreWeights(food_connection_strength=0.8, food_restaurant_context=0.2)

    def test_valid_alternate_weights(self) -> None:
        weights = QualityScoreWeights(food_connection_strength=0.9, food_restaurant_context=0.1)

        assert weights.food_connection_strength == 0.9

    def test_top_food_count_range(self) -> None:
        with pytest.raises(ValidationError):
            QualityScoreBatchConfig(top_food_count=2)

    def test_activity_tiers_ordered(self) -> None:
        with pytest.raises(ValidationError):
            MergeConfig(trending_threshold=2, active_threshold=3)


class TestLoadConfig:
    """load_config reads TOML from an explicit path, the env var or cwd."""

    def test_explicit_path(self, tmp_path) -> None:
        path = tmp_path / "custom.toml"
        path.write_text(
            "[components]\nmax_concurrent_components = 2\n"
            "[components.attribute_processing]\nmax_attributes_per_connection = 3\n"
        )

        config = load_config(path)

        assert config.components.max_concurrent_components == 2
        assert config.components.attribute_processing.max_attributes_per_connection == 3
        assert config.merge.top_mentions_limit == 5

    def test_missing_explicit_path_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_env_var(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "env.toml"
        path.write_text("[merge]\ntop_mentions_limit = 3\n")
        monkeypatch.setenv("DISHGRAPH_CONFIG", str(path))
        monkeypatch.chdir(tmp_path)

        assert load_config().merge.top_mentions_limit == 3

    def test_cwd_file(self, tmp_path, monkeypatch) -> None:
        (tmp_path / "dishgraph.toml").write_text("[resolution]\nfuzzy_match_threshold = 0.9\n")
        monkeypatch.delenv("DISHGRAPH_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)

        assert load_config().resolution.fuzzy_match_threshold == 0.9

    def test_defaults_when_nothing_found(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("DISHGRAPH_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)

        assert load_config() == DishGraphConfig()

    def test_invalid_values_raise(self, tmp_path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text("[quality_score.weights]\nfood_connection_strength = 0.5\n")

        with pytest.raises(ValidationError):
            load_config(path)
