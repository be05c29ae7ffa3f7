"""
Deep Belief Network Reducer
===========================

Learns new features for a feature space with an unsupervised deep belief
network and appends the top hidden layer's activations as features
F1..Fn.

Procedure:
    1. Min-max normalize every feature column to [0, 1]
    2. Randomly hold out 1/6 of the vectors for validation
    3. Greedy layer-wise pre-training of a stack of RBMs (CD-1)
    4. Unroll the stack into an autoencoder and fine-tune by backprop
       on reconstruction error
    5. Propagate all vectors through the encoder; the top layer's
       activations become features F1..Fn

Mathematical Background:

    Restricted Boltzmann Machine (Bernoulli units):
        p(h_j = 1 | v) = σ(c_j + Σ_i W_ji v_i)
        p(v_i = 1 | h) = σ(b_i + Σ_j W_ji h_j)

    Contrastive divergence (CD-1) update:
        ΔW = ε (<h v^T>_data - <h v^T>_recon) / batch_size

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn

from .features import FeatureSpace

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class DBNConfig:
    """
    Configuration for DBN training.

    Attributes:
        rbm_epochs: Pre-training epochs per RBM layer
        finetune_epochs: Autoencoder fine-tuning epochs
        batch_size: Mini-batch size for both phases
        rbm_learning_rate: CD-1 learning rate
        finetune_learning_rate: Adam learning rate for fine-tuning
        validation_fraction: Share of vectors held out for validation
        feature_prefix: Prefix of the appended feature names
    """
    rbm_epochs: int = 50
    finetune_epochs: int = 20
    batch_size: int = 100
    rbm_learning_rate: float = 0.1
    finetune_learning_rate: float = 1e-3
    validation_fraction: float = 1.0 / 6.0
    feature_prefix: str = "F"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.rbm_epochs < 0 or self.finetune_epochs < 0:
            raise ValueError("Epoch counts must be non-negative")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if not 0 < self.validation_fraction < 1:
            raise ValueError(
                f"validation_fraction must be in (0, 1), got {self.validation_fraction}"
            )


# =============================================================================
# Network Components
# =============================================================================

class RBM(nn.Module):
    """
    Bernoulli-Bernoulli restricted Boltzmann machine trained with CD-1.
    """

    def __init__(self, n_visible: int, n_hidden: int, generator: torch.Generator) -> None:
        super().__init__()
        self.weight = nn.Parameter(
            torch.randn(n_hidden, n_visible, generator=generator) * 0.01,
            requires_grad=False,
        )
        self.visible_bias = nn.Parameter(torch.zeros(n_visible), requires_grad=False)
        self.hidden_bias = nn.Parameter(torch.zeros(n_hidden), requires_grad=False)
        self.generator = generator

    def hidden_probs(self, v: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(v @ self.weight.t() + self.hidden_bias)

    def visible_probs(self, h: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(h @ self.weight + self.visible_bias)

    def contrastive_divergence(self, v0: torch.Tensor, learning_rate: float) -> float:
        """
        One CD-1 update on a mini-batch.

        Returns:
            Mean squared reconstruction error of the batch
        """
        h0 = self.hidden_probs(v0)
        h0_sample = torch.bernoulli(h0, generator=self.generator)
        v1 = self.visible_probs(h0_sample)
        h1 = self.hidden_probs(v1)

        batch = v0.shape[0]
        self.weight += learning_rate * (h0.t() @ v0 - h1.t() @ v1) / batch
        self.visible_bias += learning_rate * (v0 - v1).mean(dim=0)
        self.hidden_bias += learning_rate * (h0 - h1).mean(dim=0)

        return float(((v0 - v1) ** 2).mean())

    def reconstruction_error(self, v: torch.Tensor) -> float:
        """Mean squared error of a deterministic up-down pass."""
        return float(((v - self.visible_probs(self.hidden_probs(v))) ** 2).mean())


class DeepAutoencoder(nn.Module):
    """
    Autoencoder unrolled from a stack of pre-trained RBMs.

    The encoder reuses each RBM's weights and hidden biases; the decoder
    starts from their transposes and visible biases.
    """

    def __init__(self, rbms: Sequence[RBM]) -> None:
        super().__init__()
        encoder = []
        for rbm in rbms:
            layer = nn.Linear(rbm.weight.shape[1], rbm.weight.shape[0])
            with torch.no_grad():
                layer.weight.copy_(rbm.weight)
                layer.bias.copy_(rbm.hidden_bias)
            encoder.append(layer)

        decoder = []
        for rbm in reversed(rbms):
            layer = nn.Linear(rbm.weight.shape[0], rbm.weight.shape[1])
            with torch.no_grad():
                layer.weight.copy_(rbm.weight.t())
                layer.bias.copy_(rbm.visible_bias)
            decoder.append(layer)

        self.encoder = nn.ModuleList(encoder)
        self.decoder = nn.ModuleList(decoder)

    def layer_activations(self, x: torch.Tensor) -> List[torch.Tensor]:
        """Activations of every encoder layer."""
        activations = []
        for layer in self.encoder:
            x = torch.sigmoid(layer(x))
            activations.append(x)
        return activations

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        code = self.layer_activations(x)[-1]
        for layer in self.decoder:
            code = torch.sigmoid(layer(code))
        return code


# =============================================================================
# Training
# =============================================================================

def normalize_columns(data: np.ndarray) -> np.ndarray:
    """Scale every column to [0, 1]; constant columns become 0."""
    shifted = data - data.min(axis=0)
    spans = shifted.max(axis=0)
    spans[spans == 0] = 1.0
    return shifted / spans


def _batches(n: int, batch_size: int, generator: torch.Generator):
    order = torch.randperm(n, generator=generator)
    for start in range(0, n, batch_size):
        yield order[start:start + batch_size]


def greedy_layer_train(
    train_data: torch.Tensor,
    val_data: torch.Tensor,
    layer_sizes: Sequence[int],
    config: DBNConfig,
    generator: torch.Generator,
) -> List[RBM]:
    """Pre-train one RBM per layer on the previous layer's activations."""
    rbms = []
    v_train, v_val = train_data, val_data
    for depth, n_hidden in enumerate(layer_sizes, start=1):
        rbm = RBM(v_train.shape[1], n_hidden, generator)
        for epoch in range(config.rbm_epochs):
            for batch in _batches(v_train.shape[0], config.batch_size, generator):
                rbm.contrastive_divergence(v_train[batch], config.rbm_learning_rate)
            if (epoch + 1) % 10 == 0:
                logger.debug(
                    f"RBM {depth} epoch {epoch + 1}: "
                    f"validation error {rbm.reconstruction_error(v_val):.5f}"
                )
        rbms.append(rbm)
        v_train = rbm.hidden_probs(v_train)
        v_val = rbm.hidden_probs(v_val)
    return rbms


def finetune(
    network: DeepAutoencoder,
    train_data: torch.Tensor,
    val_data: torch.Tensor,
    config: DBNConfig,
    generator: torch.Generator,
) -> None:
    """Backpropagate reconstruction error through the unrolled network."""
    optimizer = torch.optim.Adam(network.parameters(), lr=config.finetune_learning_rate)
    loss_fn = nn.MSELoss()

    for epoch in range(config.finetune_epochs):
        network.train()
        for batch in _batches(train_data.shape[0], config.batch_size, generator):
            optimizer.zero_grad()
            loss = loss_fn(network(train_data[batch]), train_data[batch])
            loss.backward()
            optimizer.step()

        network.eval()
        with torch.no_grad():
            val_loss = float(loss_fn(network(val_data), val_data))
        logger.debug(f"Fine-tune epoch {epoch + 1}: validation loss {val_loss:.5f}")


def dbnify(
    space: FeatureSpace,
    layer_sizes: Sequence[int],
    rng: np.random.Generator,
    config: Optional[DBNConfig] = None,
) -> FeatureSpace:
    """
    Extend a feature space with DBN-derived features.

    Args:
        space: Input feature space (at least two vectors)
        layer_sizes: Hidden units per layer, nearest the input first
        rng: Random source for the split and torch seeding
        config: DBN training configuration

    Returns:
        FeatureSpace with features F1..F{layer_sizes[-1]} appended
    """
    config = config if config is not None else DBNConfig()
    if not layer_sizes:
        raise ValueError("You specified no layer sizes for the DBN.")
    if any(size < 1 for size in layer_sizes):
        raise ValueError(f"Layer sizes must be positive, got {list(layer_sizes)}")
    if len(space) < 2:
        raise ValueError("A DBN needs at least two vectors")

    generator = torch.Generator().manual_seed(int(rng.integers(2**31 - 1)))
    data = torch.as_tensor(normalize_columns(space.matrix), dtype=torch.float32)

    train_idx, val_idx = _split_indices(len(space), config.validation_fraction, rng)
    train_data = data[torch.as_tensor(train_idx)]
    val_data = data[torch.as_tensor(val_idx)]

    logger.info("Unsupervised pre-training...")
    rbms = greedy_layer_train(train_data, val_data, layer_sizes, config, generator)
    network = DeepAutoencoder(rbms)
    logger.info("Unsupervised backprop...")
    finetune(network, train_data, val_data, config, generator)
    logger.info("DBN training finished.")

    network.eval()
    with torch.no_grad():
        top = network.layer_activations(data)[-1].numpy()

    extended = space
    for i in range(top.shape[1]):
        extended = extended.extend(f"{config.feature_prefix}{i + 1}", top[:, i])
    return extended


def _split_indices(
    n: int, validation_fraction: float, rng: np.random.Generator
) -> Tuple[np.ndarray, np.ndarray]:
    order = rng.permutation(n)
    n_train = min(n - 1, max(1, int(np.floor(n * (1.0 - validation_fraction)))))
    return order[:n_train], order[n_train:]
