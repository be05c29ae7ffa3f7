"""
Unit Tests for DBN Reducer
==========================

Tests for RBM pre-training, the unrolled autoencoder and the dbnify
feature contract.

Author: Sleepscore Project Team
License: MIT
"""

import numpy as np
import pytest
import torch

from sleepscore.dbn import (
    RBM,
    DBNConfig,
    DeepAutoencoder,
    dbnify,
    normalize_columns,
)
from sleepscore.pipeline import ScoringPipeline
from sleepscore.streams import CommandError


@pytest.fixture
def fast_dbn_config():
    """DBN configuration with very short training."""
    return DBNConfig(rbm_epochs=2, finetune_epochs=2, batch_size=8)


class TestDBNConfig:
    """Tests for DBNConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = DBNConfig()
        assert config.rbm_epochs == 50
        assert config.finetune_epochs == 20
        assert config.batch_size == 100
        assert config.validation_fraction == pytest.approx(1 / 6)

    def test_invalid_epochs(self):
        """Test negative epoch counts raise."""
        with pytest.raises(ValueError):
            DBNConfig(rbm_epochs=-1)


class TestNetwork:
    """Tests for the RBM and autoencoder components."""

    def test_normalize_columns(self):
        """Test columns are scaled to [0, 1] and constant columns to 0."""
        data = np.array([[1.0, 5.0], [3.0, 5.0], [2.0, 5.0]])
        normalized = normalize_columns(data)
        np.testing.assert_allclose(normalized[:, 0], [0.0, 1.0, 0.5])
        np.testing.assert_allclose(normalized[:, 1], 0.0)

    def test_rbm_update(self):
        """Test a CD-1 step changes the weights and reports an error."""
        generator = torch.Generator().manual_seed(0)
        rbm = RBM(6, 3, generator)
        before = rbm.weight.clone()
        v = torch.rand(10, 6, generator=generator)
        error = rbm.contrastive_divergence(v, learning_rate=0.1)
        assert error >= 0.0
        assert not torch.equal(before, rbm.weight)

    def test_autoencoder_shapes(self):
        """Test the unrolled network reconstructs the input dimension."""
        generator = torch.Generator().manual_seed(0)
        network = DeepAutoencoder([RBM(6, 4, generator), RBM(4, 2, generator)])
        x = torch.rand(5, 6, generator=generator)
        assert network(x).shape == (5, 6)
        assert [a.shape[1] for a in network.layer_activations(x)] == [4, 2]


class TestDbnify:
    """Tests for dbnify."""

    def test_appends_top_layer_features(self, feature_space, rng, fast_dbn_config):
        """Test F1..Fn are appended for the top layer size n."""
        extended = dbnify(feature_space, [4, 2], rng, fast_dbn_config)
        assert extended.feature_names == feature_space.feature_names + ("F1", "F2")
        np.testing.assert_array_equal(
            extended.matrix[:, :feature_space.dimension], feature_space.matrix
        )
        new = extended.matrix[:, -2:]
        assert np.all((new >= 0.0) & (new <= 1.0))
        assert extended.labels.tolist() == feature_space.labels.tolist()

    def test_no_layers(self, feature_space, rng):
        """Test an empty layer list raises."""
        with pytest.raises(ValueError, match="You specified no layer sizes for the DBN."):
            dbnify(feature_space, [], rng)

    def test_too_few_vectors(self, feature_space, rng):
        """Test a single vector cannot train a DBN."""
        with pytest.raises(ValueError):
            dbnify(feature_space.take([0]), [2], rng)

    def test_deterministic(self, feature_space, fast_dbn_config):
        """Test equal seeds give equal features."""
        a = dbnify(feature_space, [3], np.random.default_rng(4), fast_dbn_config)
        b = dbnify(feature_space, [3], np.random.default_rng(4), fast_dbn_config)
        np.testing.assert_allclose(a.matrix, b.matrix)

    def test_organize_dbn_stage(self, scoring_config, feature_space, fast_dbn_config):
        """Test the organize dbn stage appends one feature per top unit."""
        scoring_config.dbn = fast_dbn_config
        extended = ScoringPipeline(scoring_config).run("organize dbn 5 3", feature_space)
        assert extended.feature_names[-3:] == ("F1", "F2", "F3")

    def test_organize_dbn_partition(self, scoring_config, feature_space, fast_dbn_config):
        """Test organize dbn on a partition extends both sides independently."""
        scoring_config.dbn = fast_dbn_config
        partition = ScoringPipeline(scoring_config).run(
            "partition 1:1 | organize dbn 4 2", feature_space
        )
        for side in (partition.training_set, partition.testing_set):
            assert len(side) == 15
            assert side.feature_names[-2:] == ("F1", "F2")
            assert side.dimension == feature_space.dimension + 2

    def test_organize_dbn_bad_layer(self, scoring_config, feature_space):
        """Test non-numeric layer sizes raise CommandError."""
        with pytest.raises(CommandError):
            ScoringPipeline(scoring_config).run("organize dbn 5 big", feature_space)
