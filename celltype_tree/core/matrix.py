"""Genes × cells expression matrix used as input to the core.

The matrix is validated once and treated as read-only afterwards.
NaN entries mark genes that were not measured in a cell; they are skipped
per cell rather than read as zero.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import anndata as ad
import numpy as np
import pandas as pd
from scipy import sparse


class ExpressionMatrix:
    """Immutable genes × cells matrix of non-negative expression values.

    Example:
        >>> frame = pd.DataFrame(
        ...     [[1.0, 0.0], [3.0, 2.0]],
        ...     index=["GeneA", "GeneB"],
        ...     columns=["cell_1", "cell_2"],
        ... )
        >>> matrix = ExpressionMatrix(frame)
        >>> matrix.n_genes, matrix.n_cells
        (2, 2)
    """

    def __init__(self, frame: pd.DataFrame):
        frame = pd.DataFrame(frame).copy()
        frame.index = frame.index.astype(str)
        frame.columns = frame.columns.astype(str)

        if frame.index.has_duplicates:
            dupes = sorted(set(frame.index[frame.index.duplicated()]))[:5]
            raise ValueError(f"Gene identifiers must be unique, duplicates: {dupes}")
        if frame.columns.has_duplicates:
            dupes = sorted(set(frame.columns[frame.columns.duplicated()]))[:5]
            raise ValueError(f"Cell identifiers must be unique, duplicates: {dupes}")

        values = frame.to_numpy(dtype=float, copy=True)
        finite = values[np.isfinite(values)]
        if finite.size and finite.min() < 0:
            raise ValueError("Expression values must be non-negative")
        if np.isinf(values).any():
            raise ValueError("Expression values must be finite or NaN")

        values.flags.writeable = False
        self._values = values
        self._genes = pd.Index(frame.index, name="gene")
        self._cells = pd.Index(frame.columns, name="cell_id")

    @classmethod
    def from_anndata(cls, adata: "ad.AnnData", layer: Optional[str] = None) -> "ExpressionMatrix":
        """Build from an AnnData object (cells × genes).

        Args:
            adata: AnnData with cells in obs and genes in var
            layer: Layer to read (None = adata.X)
        """
        if layer is not None and layer in adata.layers:
            matrix = adata.layers[layer]
        else:
            matrix = adata.X
        matrix = matrix.toarray() if sparse.issparse(matrix) else np.asarray(matrix)
        frame = pd.DataFrame(
            matrix.T,
            index=adata.var_names.astype(str),
            columns=adata.obs_names.astype(str),
        )
        return cls(frame)

    @classmethod
    def coerce(cls, data, layer: Optional[str] = None) -> "ExpressionMatrix":
        """Accept an ExpressionMatrix, a genes × cells DataFrame or an AnnData."""
        if isinstance(data, cls):
            return data
        if isinstance(data, pd.DataFrame):
            return cls(data)
        if isinstance(data, ad.AnnData):
            return cls.from_anndata(data, layer=layer)
        raise TypeError(
            f"Expected ExpressionMatrix, DataFrame or AnnData, got {type(data).__name__}"
        )

    @property
    def genes(self) -> pd.Index:
        return self._genes

    @property
    def cells(self) -> pd.Index:
        return self._cells

    @property
    def values(self) -> np.ndarray:
        """Read-only genes × cells array."""
        return self._values

    @property
    def n_genes(self) -> int:
        return len(self._genes)

    @property
    def n_cells(self) -> int:
        return len(self._cells)

    def column(self, cell_id: str) -> pd.Series:
        """Expression vector of one cell indexed by gene."""
        idx = self._cells.get_loc(str(cell_id))
        return pd.Series(self._values[:, idx], index=self._genes, name=str(cell_id))

    def subset_cells(self, cells: Iterable[str]) -> "ExpressionMatrix":
        cells = [str(c) for c in cells]
        idx = self._cells.get_indexer(cells)
        if (idx < 0).any():
            missing: List[str] = [c for c, i in zip(cells, idx) if i < 0][:5]
            raise KeyError(f"Cells not found in matrix: {missing}")
        return ExpressionMatrix(self.to_frame().iloc[:, idx])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._values.copy(), index=self._genes, columns=self._cells)

    def __repr__(self) -> str:
        return f"ExpressionMatrix(n_genes={self.n_genes}, n_cells={self.n_cells})"
