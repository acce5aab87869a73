"""I/O utilities for celltype_tree.

Provides logging, matrix/label loading and reference persistence.
"""

from .logging import (
    close_file_handlers,
    get_logger,
    get_timestamped_log_path,
    log_json,
    log_yaml,
)
from .matrix import (
    ensure_output_dir,
    load_expression_matrix,
    load_labels,
    write_dataframe,
)
from .reference import FORMAT_MARKER, load_reference, save_reference

__all__ = [
    # Logging
    "close_file_handlers",
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Matrix I/O
    "ensure_output_dir",
    "load_expression_matrix",
    "load_labels",
    "write_dataframe",
    # Reference blob
    "FORMAT_MARKER",
    "save_reference",
    "load_reference",
]
