"""
Unit Tests for Configuration
============================

Tests for ScoringConfig construction, validation and YAML round-tripping.

Author: Sleepscore Project Team
License: MIT
"""

import pytest

from sleepscore.dbn import DBNConfig
from sleepscore.features import FeatureConfig, SLEEP_BANDS
from sleepscore.pipeline import ScoringConfig, create_pipeline_from_config
from sleepscore.plotting import PlotConfig
from sleepscore.records import DEFAULT_CATALOG, RecordConfig
from sleepscore.selection import SearchConfig


class TestScoringConfig:
    """Tests for ScoringConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ScoringConfig()
        assert config.seed is None
        assert config.records.epoch_seconds == 30.0
        assert config.records.catalog == DEFAULT_CATALOG
        assert list(config.features.bands) == list(SLEEP_BANDS)
        assert config.search.population_size == 5
        assert config.dbn.rbm_epochs == 50
        assert config.plot.output_dir is None

    def test_from_dict(self):
        """Test nested dictionaries build nested configurations."""
        config = ScoringConfig.from_dict({
            "seed": 3,
            "records": {"synthetic_epochs": 10},
            "search": {"generations": 2},
            "plot": {"figsize": [4, 3]},
        })
        assert config.seed == 3
        assert config.records.synthetic_epochs == 10
        assert config.search.generations == 2
        assert config.plot.figsize == (4.0, 3.0)

    def test_unknown_key(self):
        """Test unknown keys are rejected."""
        with pytest.raises(TypeError):
            ScoringConfig.from_dict({"records": {"colour": "blue"}})

    def test_yaml_round_trip(self, tmp_path):
        """Test to_yaml followed by from_yaml restores the configuration."""
        config = ScoringConfig(
            seed=11,
            records=RecordConfig(data_dir="/data/psg", synthetic_epochs=12),
            features=FeatureConfig(welch_seconds=2.0),
            search=SearchConfig(mutation_rate=0.1),
            dbn=DBNConfig(batch_size=32),
            plot=PlotConfig(output_dir="plots", dpi=150),
        )
        path = tmp_path / "config.yaml"
        config.to_yaml(str(path))
        restored = ScoringConfig.from_yaml(str(path))
        assert restored.to_dict() == config.to_dict()
        assert restored.features.bands == config.features.bands

    def test_empty_yaml(self, tmp_path):
        """Test an empty file gives the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ScoringConfig.from_yaml(str(path)).to_dict() == ScoringConfig().to_dict()

    def test_shipped_default_config(self, project_root_path):
        """Test configs/default.yaml matches the built-in defaults."""
        path = project_root_path / "configs" / "default.yaml"
        assert ScoringConfig.from_yaml(str(path)).to_dict() == ScoringConfig().to_dict()

    def test_create_pipeline_from_config(self, tmp_path):
        """Test a pipeline can be built from a YAML file."""
        path = tmp_path / "config.yaml"
        ScoringConfig(seed=5).to_yaml(str(path))
        pipeline = create_pipeline_from_config(str(path))
        assert pipeline.config.seed == 5


class TestNestedValidation:
    """Tests for validation of the nested configurations."""

    def test_invalid_records(self):
        """Test invalid record settings raise errors."""
        with pytest.raises(ValueError):
            RecordConfig(epoch_seconds=0)
        with pytest.raises(ValueError):
            RecordConfig(catalog=[])

    def test_invalid_bands(self):
        """Test inverted or clashing bands raise errors."""
        with pytest.raises(ValueError):
            FeatureConfig(bands={"Delta": (4.0, 0.5)})
        with pytest.raises(ValueError):
            FeatureConfig(bands={"Mean": (1.0, 2.0)})

    def test_invalid_dbn(self):
        """Test invalid DBN settings raise errors."""
        with pytest.raises(ValueError):
            DBNConfig(batch_size=0)
        with pytest.raises(ValueError):
            DBNConfig(validation_fraction=1.0)

    def test_invalid_plot(self):
        """Test invalid plot settings raise errors."""
        with pytest.raises(ValueError):
            PlotConfig(dpi=0)
