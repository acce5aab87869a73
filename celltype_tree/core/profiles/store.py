"""Reference profile store.

Aggregates a labelled reference matrix into one mean profile per cell type.
Profiles share the union of all reference genes; a gene missing from one of
the reference matrices counts as zero expression for that matrix's cells.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import ProfileConfig
from ..errors import EmptyGroupError, ReferenceBuildError
from ..matrix import ExpressionMatrix
from ...utils.stats import apply_scale


@dataclass(frozen=True)
class Profile:
    """Aggregate expression vector of one cell type.

    Attributes:
        name: Cell-type label
        values: Gene → aggregate value on the store's scale
        n_cells: Number of reference cells averaged
    """

    name: str
    values: pd.Series
    n_cells: int


class ProfileStore:
    """Read-only collection of reference profiles sharing one gene universe.

    Example:
        >>> store = build_profile_store(reference, labels)
        >>> store.names
        ['B cell', 'T cell']
        >>> store.profile("T cell").n_cells
        120
    """

    def __init__(self, matrix: pd.DataFrame, n_cells: Mapping[str, int], scale: str = "log1p"):
        matrix = pd.DataFrame(matrix, dtype=float)
        matrix.index = matrix.index.astype(str)
        matrix.columns = matrix.columns.astype(str)
        if matrix.shape[1] == 0:
            raise ReferenceBuildError(
                "Profile store needs at least one cell type",
                suggestion="Provide a label mapping covering the reference cells",
            )
        if matrix.columns.has_duplicates or matrix.index.has_duplicates:
            raise ValueError("Profile names and gene identifiers must be unique")

        values = matrix.to_numpy(copy=True)
        values.flags.writeable = False
        self._values = values
        self._genes = pd.Index(matrix.index, name="gene")
        self._names = [str(c) for c in matrix.columns]
        self._n_cells = {name: int(n_cells.get(name, 0)) for name in self._names}
        self.scale = scale

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def genes(self) -> pd.Index:
        return self._genes

    @property
    def values(self) -> np.ndarray:
        """Read-only genes × types array."""
        return self._values

    @property
    def n_cells(self) -> Dict[str, int]:
        return dict(self._n_cells)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._values.copy(), index=self._genes, columns=self._names)

    def profile(self, name: str) -> Profile:
        if name not in self._n_cells:
            raise KeyError(f"Unknown profile: {name}")
        idx = self._names.index(name)
        return Profile(
            name=name,
            values=pd.Series(self._values[:, idx], index=self._genes, name=name),
            n_cells=self._n_cells[name],
        )

    def subset(self, names: Sequence[str]) -> "ProfileStore":
        frame = self.to_frame()[list(names)]
        return ProfileStore(frame, self._n_cells, scale=self.scale)

    def __iter__(self) -> Iterator[Profile]:
        for name in self._names:
            yield self.profile(name)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._n_cells

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scale": self.scale,
            "genes": list(self._genes),
            "names": self.names,
            "n_cells": self.n_cells,
            "values": self._values.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileStore":
        frame = pd.DataFrame(
            np.asarray(data["values"], dtype=float).reshape(len(data["genes"]), len(data["names"])),
            index=data["genes"],
            columns=data["names"],
        )
        return cls(frame, data.get("n_cells", {}), scale=data.get("scale", "log1p"))

    def __repr__(self) -> str:
        return (
            f"ProfileStore(n_types={len(self._names)}, n_genes={len(self._genes)}, "
            f"scale={self.scale!r})"
        )


ReferenceInput = Union[ExpressionMatrix, pd.DataFrame, Any]


def build_profile_store(
    references: Union[ReferenceInput, Sequence[ReferenceInput]],
    labels: Union[Mapping[str, str], pd.Series],
    config: Optional[ProfileConfig] = None,
    cell_types: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> ProfileStore:
    """Aggregate labelled reference cells into one profile per cell type.

    Args:
        references: One reference matrix (genes × cells) or a sequence of them.
            Genes are united across matrices; missing genes count as zero.
        labels: Cell identifier → cell-type label
        config: Profile configuration (scale)
        cell_types: Expected labels. Any of them without member cells raises
            EmptyGroupError. Defaults to the distinct values of ``labels``.
        logger: Logger instance

    Returns:
        ProfileStore with profiles in sorted label order (or cell_types order)

    Raises:
        EmptyGroupError: if an expected label has zero member cells
        ValueError: if a cell identifier occurs in more than one matrix
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    config = config or ProfileConfig()

    if isinstance(references, (list, tuple)):
        matrices = [ExpressionMatrix.coerce(ref) for ref in references]
    else:
        matrices = [ExpressionMatrix.coerce(references)]
    if not matrices:
        raise ReferenceBuildError("No reference matrices given")

    label_map = {
        str(cell): str(label)
        for cell, label in dict(labels).items()
        if label is not None and not (isinstance(label, float) and np.isnan(label))
    }

    seen_cells: set = set()
    for matrix in matrices:
        overlap = seen_cells.intersection(matrix.cells)
        if overlap:
            raise ValueError(
                f"Cell identifiers occur in more than one reference matrix: {sorted(overlap)[:5]}"
            )
        seen_cells.update(matrix.cells)

    unlabelled = len(seen_cells) - len(seen_cells.intersection(label_map))
    if unlabelled:
        logger.warning("%d reference cells have no label and are not aggregated", unlabelled)
    unknown = len(set(label_map) - seen_cells)
    if unknown:
        logger.warning("%d labelled cells are absent from the reference matrices", unknown)

    if not seen_cells.intersection(label_map):
        raise ReferenceBuildError(
            "No labelled reference cells found",
            suggestion="Check that label cell identifiers match the reference matrix columns",
        )
    if cell_types is None:
        types = sorted(set(label_map.values()))
    else:
        types = [str(t) for t in cell_types]
    if not types:
        raise ReferenceBuildError("No cell types given")

    genes = pd.Index(sorted(set().union(*[set(m.genes) for m in matrices])), name="gene")
    type_index = {name: i for i, name in enumerate(types)}
    sums = np.zeros((len(genes), len(types)), dtype=float)
    counts = np.zeros(len(types), dtype=int)

    for matrix in matrices:
        cell_labels = [label_map.get(cell) for cell in matrix.cells]
        columns = np.array([type_index.get(lab, -1) if lab else -1 for lab in cell_labels])
        if not (columns >= 0).any():
            continue
        scaled = apply_scale(matrix.values, config.scale)
        n_nan = int(np.isnan(scaled).sum())
        if n_nan:
            logger.debug("Treating %d unmeasured reference values as zero", n_nan)
        scaled = np.nan_to_num(scaled, nan=0.0)
        rows = genes.get_indexer(matrix.genes)
        for col in np.unique(columns[columns >= 0]):
            member = columns == col
            sums[rows, col] += scaled[:, member].sum(axis=1)
            counts[col] += int(member.sum())

    for name, col in type_index.items():
        if counts[col] == 0:
            raise EmptyGroupError(name)

    means = sums / counts[None, :]
    store = ProfileStore(
        pd.DataFrame(means, index=genes, columns=types),
        n_cells={name: int(counts[col]) for name, col in type_index.items()},
        scale=config.scale,
    )
    logger.info(
        "Built %d reference profiles over %d genes (scale=%s)",
        len(types), len(genes), config.scale,
    )
    return store
