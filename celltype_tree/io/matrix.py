"""Matrix and label I/O for the command-line interface.

Loading is kept outside the core: these helpers turn files into the
ExpressionMatrix and label mappings the engines consume.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd

from ..core.matrix import ExpressionMatrix

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create an output directory (and parents) for a CLI run."""
    out_dir = Path(path)
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def load_expression_matrix(
    path: PathLike,
    layer: Optional[str] = None,
) -> ExpressionMatrix:
    """Read a genes × cells expression matrix.

    Parameters
    ----------
    path : PathLike
        CSV/TSV file with gene identifiers in the first column and one column
        per cell, or an .h5ad file (cells × genes AnnData).
    layer : str, optional
        AnnData layer to read (h5ad only).

    Returns
    -------
    ExpressionMatrix
        Validated expression matrix.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty.
    """
    matrix_path = Path(path)
    if not matrix_path.exists():
        raise FileNotFoundError(f"Expression matrix not found: {matrix_path}")

    if matrix_path.suffix == ".h5ad":
        import anndata as ad

        adata = ad.read_h5ad(matrix_path)
        logger.info("Loaded %s: %d cells, %d genes", matrix_path.name, adata.n_obs, adata.n_vars)
        return ExpressionMatrix.from_anndata(adata, layer=layer)

    sep = "\t" if matrix_path.suffix in (".tsv", ".txt") else ","
    df = pd.read_csv(matrix_path, sep=sep, index_col=0)
    if df.empty:
        raise ValueError(f"Expression matrix {matrix_path} is empty")
    logger.info("Loaded %s: %d genes, %d cells", matrix_path.name, df.shape[0], df.shape[1])
    return ExpressionMatrix(df)


def load_labels(
    path: PathLike,
    cell_col: str = "cell_id",
    label_col: str = "cell_type",
) -> Dict[str, str]:
    """Read a cell → cell-type label table.

    Parameters
    ----------
    path : PathLike
        CSV file with at least cell_col and label_col.
    cell_col : str
        Column with cell identifiers.
    label_col : str
        Column with cell-type labels.

    Returns
    -------
    Dict[str, str]
        Mapping from cell identifier to label (rows without a label are dropped).
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Label table not found: {csv_path}")
    df = pd.read_csv(csv_path, dtype={cell_col: str})
    missing = [col for col in (cell_col, label_col) if col not in df.columns]
    if missing:
        raise ValueError(f"Label table missing columns: {missing}")
    df = df.dropna(subset=[label_col])
    return dict(zip(df[cell_col].astype(str), df[label_col].astype(str)))


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write a result table as CSV, creating parent directories as needed.

    Cell-indexed tables are written with index=True so the cell_id column
    survives the round trip.
    """
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=index)
    return out_path
