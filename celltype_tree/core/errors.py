"""
Error types with actionable diagnostics for reference building and classification.

Two families are kept strictly apart:

- ReferenceBuildError: the reference cannot be turned into a usable Profile
  Store / Taxonomy. Fatal for the whole run; the caller must fix the
  reference data.
- CellClassificationError: a single query cell cannot be classified. Recorded
  on that cell's result; the batch continues.

Error Codes:
    E101_EMPTY_GROUP: A reference label has no member cells
    E201_INSUFFICIENT_OVERLAP: Too few shared genes between query cell and reference
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CellTypeTreeError(Exception):
    """Base class for errors with actionable diagnostics.

    Attributes
    ----------
    message : str
        Human-readable error description
    error_code : str
        Machine-readable error code for programmatic handling
    suggestion : str
        Actionable suggestion for fixing the error
    context : Dict[str, Any]
        Additional context for debugging
    """

    error_code: str = "E000_UNKNOWN"

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.context = dict(context or {})

    def __str__(self) -> str:
        """Format error as human-readable multi-line string."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.suggestion:
            parts.append(f"  Suggestion: {self.suggestion}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "suggestion": self.suggestion,
            "context": self.context,
        }


class ReferenceBuildError(CellTypeTreeError):
    """The reference data cannot produce a usable Profile Store or Taxonomy."""

    error_code = "E100_REFERENCE"


class EmptyGroupError(ReferenceBuildError):
    """A reference cell-type label has zero member cells."""

    error_code = "E101_EMPTY_GROUP"

    def __init__(self, label: str, suggestion: str = "", context: Optional[Dict[str, Any]] = None):
        self.label = str(label)
        super().__init__(
            f"Reference label '{self.label}' has no member cells",
            suggestion=suggestion
            or "Remove the label or check that its cell identifiers match the reference matrix",
            context={"label": self.label, **(context or {})},
        )


class CellClassificationError(CellTypeTreeError):
    """A single query cell cannot be classified."""

    error_code = "E200_CELL"


class InsufficientOverlapError(CellClassificationError):
    """Too few genes are shared between a query cell and the reference."""

    error_code = "E201_INSUFFICIENT_OVERLAP"

    def __init__(self, cell_id: str, n_shared: int, min_shared: int):
        self.cell_id = str(cell_id)
        self.n_shared = int(n_shared)
        self.min_shared = int(min_shared)
        super().__init__(
            f"Cell '{self.cell_id}' shares {self.n_shared} genes with the reference "
            f"(minimum {self.min_shared})",
            suggestion="Check gene identifiers of the query against the reference",
            context={
                "cell_id": self.cell_id,
                "n_shared": self.n_shared,
                "min_shared": self.min_shared,
            },
        )
