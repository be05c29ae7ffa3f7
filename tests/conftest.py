"""
Pytest Configuration and Fixtures
==================================

Shared test configuration and fixtures for all test modules.
Handles path setup for importing the sleepscore package from src/.

Author: Sleepscore Project Team
License: MIT
"""

import sys
from pathlib import Path

# Add src directory to path for imports
project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from sleepscore.features import FeatureSpace
from sleepscore.pipeline import ScoringConfig
from sleepscore.records import RecordConfig

STAGE_LABELS = ["1", "2", "3", "4", "R", "W", "M"]


# =============================================================================
# Global Fixtures
# =============================================================================

@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root


@pytest.fixture
def feature_space():
    """30 vectors of 8 random features with labels drawn from all stages."""
    generator = np.random.default_rng(0)
    matrix = generator.random((30, 8))
    labels = generator.choice(STAGE_LABELS, size=30)
    return FeatureSpace(matrix, labels, [f"C{i}" for i in range(1, 9)])


@pytest.fixture
def separable_space():
    """
    Two well-separated classes in three features.

    Only feature X separates the classes; Y and Z are noise.
    """
    generator = np.random.default_rng(1)
    n = 40
    labels = np.array(["W"] * (n // 2) + ["3"] * (n // 2))
    x = np.where(labels == "W", 5.0, -5.0) + generator.normal(0, 0.5, n)
    y = generator.normal(0, 1, n)
    z = generator.normal(0, 1, n)
    return FeatureSpace(np.column_stack([x, y, z]), labels, ["X", "Y", "Z"])


@pytest.fixture
def record_config(tmp_path):
    """Small synthetic record configuration with a temporary cache."""
    return RecordConfig(
        data_dir=str(tmp_path / "data"),
        cache_dir=str(tmp_path / "cache"),
        synthetic_epochs=20,
    )


@pytest.fixture
def scoring_config(record_config):
    """Seeded pipeline configuration using the small synthetic record."""
    return ScoringConfig(seed=42, records=record_config)


@pytest.fixture
def temp_data_dir(tmp_path):
    """Create temporary data directory for tests."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
