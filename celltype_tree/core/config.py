"""Configuration classes for reference building and classification.

All parameters are configurable and can be loaded from a YAML file.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

import yaml

CORRELATION_METHODS = ("pearson", "spearman")
SCALES = ("log1p", "identity")


def _check_method(method: str) -> None:
    if method not in CORRELATION_METHODS:
        raise ValueError(
            f"Unknown correlation method '{method}', expected one of {CORRELATION_METHODS}"
        )


@dataclass
class ProfileConfig:
    """Configuration for reference profile aggregation.

    Attributes
    ----------
    scale : str
        Numeric scale the expression values are averaged on (log1p or identity).
        Query cells are put on the same scale before comparison.
    weight_by_cells : bool
        Weight member leaves by their cell counts when deriving internal
        taxonomy node profiles. False gives every leaf equal weight.
    """

    scale: str = "log1p"
    weight_by_cells: bool = False

    def __post_init__(self):
        if self.scale not in SCALES:
            raise ValueError(f"Unknown scale '{self.scale}', expected one of {SCALES}")


@dataclass
class GeneSelectionConfig:
    """Configuration for discriminating gene selection.

    Attributes
    ----------
    n_genes : int
        Maximum number of discriminating genes per comparison (K)
    max_missing_frac : float
        Fraction of selected genes absent from the query above which
        the loss is reported as a warning
    """

    n_genes: int = 200
    max_missing_frac: float = 0.2

    def __post_init__(self):
        if self.n_genes < 1:
            raise ValueError("n_genes must be >= 1")
        if not 0.0 <= self.max_missing_frac <= 1.0:
            raise ValueError("max_missing_frac must be within [0, 1]")


@dataclass
class FlatConfig:
    """Configuration for the flat nearest-reference classifier.

    Attributes
    ----------
    method : str
        Correlation method (pearson or spearman)
    fine_tune : bool
        Run iterative candidate narrowing after the first pass
    fine_tune_delta : float
        Candidates within this distance of the top score enter fine-tuning
    fine_tune_epsilon : float
        Fine-tuning stops once candidate scores span less than this
    min_shared_genes : int
        Minimum genes shared between a cell and the reference
    """

    method: str = "spearman"
    fine_tune: bool = True
    fine_tune_delta: float = 0.05
    fine_tune_epsilon: float = 1e-3
    min_shared_genes: int = 10

    def __post_init__(self):
        _check_method(self.method)


@dataclass
class TreeConfig:
    """Configuration for taxonomy building and hierarchical classification.

    Attributes
    ----------
    method : str
        Correlation method for taxonomy distances and profile scores
    threshold : float
        Confidence threshold; 0 forces every cell down to a leaf
    min_shared_genes : int
        Minimum genes shared between a cell and the reference
    """

    method: str = "spearman"
    threshold: float = 0.1
    min_shared_genes: int = 10

    def __post_init__(self):
        _check_method(self.method)
        if self.threshold < 0:
            raise ValueError("threshold must be >= 0")


@dataclass
class ParallelConfig:
    """Configuration for the per-cell worker pool.

    Attributes
    ----------
    n_workers : int
        Number of parallel workers (1 = sequential)
    batch_size : int
        Cells per work item
    backend : str
        joblib backend name
    """

    n_workers: int = 1
    batch_size: int = 256
    backend: str = "loky"

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")


@dataclass
class ClassifierConfig:
    """Master configuration for reference building and classification.

    Attributes
    ----------
    profiles : ProfileConfig
        Profile aggregation configuration
    genes : GeneSelectionConfig
        Discriminating gene selection configuration
    flat : FlatConfig
        Flat classifier configuration
    tree : TreeConfig
        Taxonomy and hierarchical classifier configuration
    parallel : ParallelConfig
        Worker pool configuration
    """

    profiles: ProfileConfig = field(default_factory=ProfileConfig)
    genes: GeneSelectionConfig = field(default_factory=GeneSelectionConfig)
    flat: FlatConfig = field(default_factory=FlatConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    parallel: ParallelConfig = field(default_factory=ParallelConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifierConfig":
        """Build configuration from a (possibly partial) nested dictionary."""
        data = data or {}
        if "celltype_tree" in data:
            data = data["celltype_tree"] or {}

        return cls(
            profiles=ProfileConfig(**data.get("profiles", {})),
            genes=GeneSelectionConfig(**data.get("genes", {})),
            flat=FlatConfig(**data.get("flat", {})),
            tree=TreeConfig(**data.get("tree", {})),
            parallel=ParallelConfig(**data.get("parallel", {})),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ClassifierConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClassifierConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
