"""Pytest configuration and shared fixtures for celltype_tree tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.fixtures import (
    create_exact_reference,
    create_query,
    create_reference,
    create_type_means,
)


# ============================================================================
# Synthetic Data Fixtures
# ============================================================================


@pytest.fixture
def type_means() -> pd.DataFrame:
    """Mean expression of types A, B and C (60 genes)."""
    return create_type_means()


@pytest.fixture
def reference():
    """Labelled reference: 20 Poisson cells per type."""
    return create_reference()


@pytest.fixture
def query():
    """Independent query: 10 Poisson cells per type."""
    return create_query()


@pytest.fixture
def exact_reference(type_means):
    """Noise-free reference whose cells equal their type mean."""
    return create_exact_reference(type_means)


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def config():
    """Default classifier configuration."""
    from celltype_tree.core.config import ClassifierConfig

    return ClassifierConfig.default()


@pytest.fixture
def store(reference, config):
    """Profile store built from the Poisson reference (log1p scale)."""
    from celltype_tree.core.profiles import build_profile_store

    frame, labels = reference
    return build_profile_store(frame, labels, config=config.profiles)


@pytest.fixture
def taxonomy(store, config):
    """Taxonomy over A, B and C."""
    from celltype_tree.core.taxonomy import build_taxonomy

    return build_taxonomy(store, config=config.tree, profile_config=config.profiles)


@pytest.fixture
def exact_store(exact_reference):
    """Profile store on the identity scale built from the noise-free reference."""
    from celltype_tree.core.config import ProfileConfig
    from celltype_tree.core.profiles import build_profile_store

    frame, labels = exact_reference
    return build_profile_store(frame, labels, config=ProfileConfig(scale="identity"))


@pytest.fixture
def exact_taxonomy(exact_store):
    from celltype_tree.core.taxonomy import build_taxonomy

    return build_taxonomy(exact_store)


# ============================================================================
# File Fixtures
# ============================================================================


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def reference_files(tmp_path, reference):
    """Reference matrix and label table written as CSV."""
    frame, labels = reference
    matrix_path = tmp_path / "reference.csv"
    labels_path = tmp_path / "reference_labels.csv"
    frame.to_csv(matrix_path)
    labels.rename_axis("cell_id").reset_index().to_csv(labels_path, index=False)
    return matrix_path, labels_path


@pytest.fixture
def query_file(tmp_path, query) -> Path:
    frame, _ = query
    path = tmp_path / "query.csv"
    frame.to_csv(path)
    return path


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Create sample classifier configuration file."""
    import yaml

    config = {
        "celltype_tree": {
            "profiles": {"scale": "log1p"},
            "genes": {"n_genes": 50, "max_missing_frac": 0.3},
            "flat": {"method": "pearson", "fine_tune_delta": 0.1},
            "tree": {"threshold": 0.2},
            "parallel": {"n_workers": 1, "batch_size": 8},
        },
    }

    path = tmp_path / "classifier.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)
