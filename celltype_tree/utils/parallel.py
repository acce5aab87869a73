"""
Per-cell parallel map for classification.

Cells are split into contiguous batches which are processed independently:
1. The caller provides a worker taking a list of cell ids plus read-only
   shared arguments
2. Batches run sequentially (n_workers=1) or in joblib worker processes
3. Results are returned in the original batch order, so output never
   depends on which worker finished first
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from joblib import Parallel, delayed

T = TypeVar("T")


def make_batches(items: Sequence[str], batch_size: int) -> List[List[str]]:
    """Split items into contiguous batches of at most batch_size."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def map_cell_batches(
    worker: Callable[..., List[T]],
    cell_ids: Sequence[str],
    n_workers: int = 1,
    batch_size: int = 256,
    backend: str = "loky",
    logger: Optional[logging.Logger] = None,
    **shared: Any,
) -> List[T]:
    """Run worker over batches of cells and concatenate results in input order.

    Parameters
    ----------
    worker : Callable
        Function called as worker(batch, **shared) returning one result per cell
    cell_ids : Sequence[str]
        Cells to process
    n_workers : int
        Number of parallel workers (1 = sequential)
    batch_size : int
        Cells per work item
    backend : str
        joblib backend
    logger : logging.Logger, optional
        Logger for progress tracking
    **shared
        Read-only arguments passed to every batch

    Returns
    -------
    List
        Flattened worker results, ordered like cell_ids
    """
    _logger = logger or logging.getLogger(__name__)
    batches = make_batches(list(cell_ids), batch_size)
    if not batches:
        return []

    _logger.info(
        "Processing %d cells in %d batches with %d workers",
        len(cell_ids), len(batches), n_workers,
    )
    start_time = time.time()

    if n_workers == 1 or len(batches) == 1:
        results = [worker(batch, **shared) for batch in batches]
    else:
        results = Parallel(n_jobs=n_workers, backend=backend)(
            delayed(worker)(batch, **shared) for batch in batches
        )

    _logger.info("Processed %d cells in %.2f seconds", len(cell_ids), time.time() - start_time)

    merged: List[T] = []
    for batch_result in results:
        merged.extend(batch_result)
    return merged
