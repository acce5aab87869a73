"""Command-line interface for celltype_tree.

Provides commands to build a reference, classify query cells and re-derive
hierarchical labels under a new confidence threshold.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from celltype_tree import __version__

SCORE_ID_COLUMNS = ("cell_id", "node_id", "left", "right", "selected")


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        handler.setLevel(level)
    return logging.getLogger("celltype_tree")


def _load_config(config: Optional[str]):
    from celltype_tree.core.config import ClassifierConfig

    if config:
        return ClassifierConfig.from_yaml(Path(config))
    return ClassifierConfig.default()


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="celltype-tree")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """celltype-tree: reference-based cell-type classification.

    Labels query cells by correlation with reference cell-type profiles,
    either directly (flat) or by descending a taxonomy of the reference
    types that stops where the evidence runs out (tree).

    Examples:

        # Build profiles and taxonomy from labelled reference cells
        celltype-tree build-reference --matrix ref.csv --labels ref_labels.csv --out ref.json

        # Classify query cells with both classifiers
        celltype-tree classify --reference ref.json --query query.h5ad --out results/

        # Re-derive tree labels under a stricter threshold
        celltype-tree rethreshold --scores results/tree_scores.csv --reference ref.json \\
            --threshold 0.3 --out strict_labels.csv
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command("build-reference")
@click.option("--matrix", "-m", "matrix_paths", required=True, multiple=True,
              type=click.Path(exists=True),
              help="Reference genes × cells matrix (.csv/.tsv/.h5ad); repeat for several")
@click.option("--labels", "-l", "labels_path", required=True, type=click.Path(exists=True),
              help="CSV mapping reference cells to cell types")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output reference file (.json)")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Classifier configuration file (YAML)")
@click.option("--layer", default=None, help="AnnData layer to read (h5ad only)")
@click.option("--cell-col", default="cell_id", help="Cell identifier column of the label table")
@click.option("--label-col", default="cell_type", help="Cell-type column of the label table")
@click.pass_context
def build_reference(
    ctx: click.Context,
    matrix_paths: Tuple[str, ...],
    labels_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    cell_col: str,
    label_col: str,
) -> None:
    """Build the Profile Store and Taxonomy from labelled reference cells."""
    logger = ctx.obj["logger"]

    from celltype_tree.core.errors import CellTypeTreeError
    from celltype_tree.core.profiles import build_profile_store
    from celltype_tree.core.taxonomy import build_taxonomy
    from celltype_tree.io import load_expression_matrix, load_labels, save_reference

    cfg = _load_config(config)
    matrices = [load_expression_matrix(path, layer=layer) for path in matrix_paths]
    labels = load_labels(labels_path, cell_col=cell_col, label_col=label_col)
    logger.info(f"Loaded {len(matrices)} reference matrices, {len(labels)} labelled cells")

    try:
        store = build_profile_store(matrices, labels, config=cfg.profiles, logger=logger)
        taxonomy = build_taxonomy(store, config=cfg.tree, profile_config=cfg.profiles, logger=logger)
    except CellTypeTreeError as e:
        _fail(str(e))

    saved = save_reference(output_path, store, taxonomy, cfg)
    click.echo(f"Reference built: {len(store)} cell types, {len(store.genes)} genes")
    click.echo(f"Output saved to: {saved}")


@cli.command()
@click.option("--reference", "-r", "reference_path", required=True, type=click.Path(exists=True),
              help="Reference file written by build-reference")
@click.option("--query", "-q", "query_path", required=True, type=click.Path(exists=True),
              help="Query genes × cells matrix (.csv/.tsv/.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--mode", type=click.Choice(["flat", "tree", "both"]), default="both",
              help="Classifier(s) to run")
@click.option("--threshold", type=click.FloatRange(min=0.0), default=None,
              help="Confidence threshold for the tree classifier (0 = always reach a leaf)")
@click.option("--workers", type=click.IntRange(min=1), default=None,
              help="Number of parallel workers")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Classifier configuration file (YAML); defaults to the reference's")
@click.option("--layer", default=None, help="AnnData layer to read (h5ad only)")
@click.pass_context
def classify(
    ctx: click.Context,
    reference_path: str,
    query_path: str,
    output_path: str,
    mode: str,
    threshold: Optional[float],
    workers: Optional[int],
    config: Optional[str],
    layer: Optional[str],
) -> None:
    """Classify query cells against a reference.

    Writes flat_labels.csv and/or tree_labels.csv, tree_scores.csv (cached
    per-node scores for rethreshold), gene_loss.csv and errors.csv.
    """
    logger = ctx.obj["logger"]

    import pandas as pd

    from celltype_tree.core.flat import FlatClassifier
    from celltype_tree.core.hierarchy import HierarchicalClassifier
    from celltype_tree.io import (
        close_file_handlers,
        ensure_output_dir,
        get_logger,
        load_expression_matrix,
        load_reference,
        log_json,
        log_yaml,
        write_dataframe,
    )

    out_dir = ensure_output_dir(output_path)
    _, log_path = get_logger("celltype_tree", out_dir / "classify.log")

    store, taxonomy, ref_cfg = load_reference(reference_path)
    cfg = _load_config(config) if config else ref_cfg
    if workers is not None:
        cfg.parallel.n_workers = workers
    if mode in ("tree", "both") and taxonomy is None:
        _fail(f"Reference {reference_path} has no taxonomy; use --mode flat")

    query = load_expression_matrix(query_path, layer=layer)
    log_yaml(out_dir / "classify_config.yaml", cfg.to_dict())

    summary = {
        "command": "classify",
        "reference": str(reference_path),
        "query": str(query_path),
        "mode": mode,
        "n_cells": query.n_cells,
    }
    error_frames = []

    if mode in ("flat", "both"):
        flat = FlatClassifier(store, config=cfg, logger=logger).classify(query)
        write_dataframe(flat.to_frame(), out_dir / "flat_labels.csv", index=True)
        errors = flat.errors()
        errors.insert(1, "mode", "flat")
        error_frames.append(errors)
        summary["flat_label_counts"] = flat.labels().value_counts().to_dict()
        click.echo(f"Flat classification: {len(flat.cells)} cells, {len(errors)} errors")

    if mode in ("tree", "both"):
        tree = HierarchicalClassifier(taxonomy, config=cfg, logger=logger).classify(
            query, threshold=threshold
        )
        write_dataframe(tree.to_frame(), out_dir / "tree_labels.csv", index=True)
        write_dataframe(tree.scores, out_dir / "tree_scores.csv")
        write_dataframe(tree.gene_loss, out_dir / "gene_loss.csv")
        errors = tree.errors_frame()
        errors.insert(1, "mode", "tree")
        error_frames.append(errors)
        summary["threshold"] = tree.threshold
        summary["tree_label_counts"] = tree.labels().value_counts().to_dict()
        click.echo(
            f"Tree classification: {len(tree.results)} cells at threshold {tree.threshold:g}, "
            f"{len(tree.errors)} errors"
        )

    write_dataframe(pd.concat(error_frames, ignore_index=True), out_dir / "errors.csv")
    log_json(out_dir / "runs.jsonl", summary)
    close_file_handlers(logging.getLogger("celltype_tree"))
    click.echo(f"Output saved to: {out_dir} (log: {log_path.name})")


@cli.command()
@click.option("--scores", "-s", "scores_path", required=True, type=click.Path(exists=True),
              help="tree_scores.csv written by classify")
@click.option("--reference", "-r", "reference_path", required=True, type=click.Path(exists=True),
              help="Reference file the scores were computed with")
@click.option("--threshold", "-t", required=True, type=click.FloatRange(min=0.0),
              help="New confidence threshold")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output label table (.csv)")
@click.option("--errors", "errors_path", type=click.Path(exists=True),
              help="errors.csv written by classify (default: errors.csv next to --scores)")
@click.pass_context
def rethreshold(
    ctx: click.Context,
    scores_path: str,
    reference_path: str,
    threshold: float,
    output_path: str,
    errors_path: Optional[str],
) -> None:
    """Re-derive tree labels from cached scores without recomputation."""
    logger = ctx.obj["logger"]

    import pandas as pd

    from celltype_tree.core.hierarchy import ThresholdController, results_to_frame
    from celltype_tree.io import load_reference, write_dataframe

    _, taxonomy, _ = load_reference(reference_path)
    if taxonomy is None:
        _fail(f"Reference {reference_path} has no taxonomy")

    scores = pd.read_csv(scores_path, dtype={col: str for col in SCORE_ID_COLUMNS})
    if errors_path is None:
        sibling = Path(scores_path).with_name("errors.csv")
        if sibling.exists():
            errors_path = str(sibling)
        else:
            logger.warning(
                "No errors.csv next to %s; cells that failed classification are omitted",
                scores_path,
            )
    errors = {}
    if errors_path:
        table = pd.read_csv(errors_path, dtype={"cell_id": str})
        if "mode" in table.columns:
            table = table[table["mode"] == "tree"]
        errors = {
            row.cell_id: {"error_code": row.error_code, "message": row.message}
            for row in table.itertuples(index=False)
        }
    logger.info(f"Loaded {len(scores)} cached scores, {len(errors)} failed cells")

    try:
        controller = ThresholdController(taxonomy, scores, errors=errors)
        results = controller.apply(threshold)
    except ValueError as e:
        _fail(str(e))

    output_file = write_dataframe(results_to_frame(results), output_path, index=True)
    counts = pd.Series([r.status for r in results.values()]).value_counts()
    click.echo(
        f"Threshold {threshold:g}: "
        + ", ".join(f"{int(n)} {status}" for status, n in counts.items())
    )
    click.echo(f"Output saved to: {output_file}")


@cli.command("show-taxonomy")
@click.option("--reference", "-r", "reference_path", required=True, type=click.Path(exists=True),
              help="Reference file written by build-reference")
@click.option("--no-heights", is_flag=True, help="Hide merge distances of internal nodes")
@click.pass_context
def show_taxonomy(ctx: click.Context, reference_path: str, no_heights: bool) -> None:
    """Print the reference taxonomy as an ASCII tree."""
    from celltype_tree.io import load_reference

    _, taxonomy, _ = load_reference(reference_path)
    if taxonomy is None:
        _fail(f"Reference {reference_path} has no taxonomy")
    click.echo(taxonomy.render_ascii(show_height=not no_heights))


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
