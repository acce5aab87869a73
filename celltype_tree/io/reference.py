"""Reference blob persistence.

Stores a Profile Store and its Taxonomy as a single JSON document. The blob
is a cache, not an exchange format: only files written by this module with
the same format marker are accepted.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Union

from ..core.config import ClassifierConfig
from ..core.profiles import ProfileStore
from ..core.taxonomy import Taxonomy

PathLike = Union[str, Path]

FORMAT_MARKER = "celltype_tree.reference/1"


def save_reference(
    path: PathLike,
    store: ProfileStore,
    taxonomy: Optional[Taxonomy] = None,
    config: Optional[ClassifierConfig] = None,
) -> Path:
    """Write profiles, taxonomy and build configuration to path."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "format": FORMAT_MARKER,
        "created": datetime.now().isoformat(timespec="seconds"),
        "config": (config or ClassifierConfig()).to_dict(),
        "profiles": store.to_dict(),
        "taxonomy": taxonomy.to_dict() if taxonomy is not None else None,
    }
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle)
    return output_path


def load_reference(path: PathLike) -> Tuple[ProfileStore, Optional[Taxonomy], ClassifierConfig]:
    """Read a reference blob written by save_reference.

    Returns
    -------
    Tuple[ProfileStore, Optional[Taxonomy], ClassifierConfig]

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is not a reference blob of this format.
    """
    blob_path = Path(path)
    if not blob_path.exists():
        raise FileNotFoundError(f"Reference not found: {blob_path}")
    with blob_path.open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as e:
            raise ValueError(f"Reference {blob_path} is not valid JSON: {e}") from e

    if not isinstance(payload, dict) or payload.get("format") != FORMAT_MARKER:
        raise ValueError(f"Unsupported reference format in {blob_path}")

    store = ProfileStore.from_dict(payload["profiles"])
    taxonomy = Taxonomy.from_dict(payload["taxonomy"]) if payload.get("taxonomy") else None
    config = ClassifierConfig.from_dict(payload.get("config") or {})
    return store, taxonomy, config
