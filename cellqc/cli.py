"""Command-line interface for cellqc."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__, export, io, qc
from .utils.deps import MissingDependency


# Configure logging
def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _fail(message: str):
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


def _build_parameters(params_file, **overrides) -> qc.QCParameters:
    try:
        params = qc.load_parameters(params_file) if params_file else qc.QCParameters()
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            params = qc.QCParameters.from_dict({**params.to_dict(), **updates})
        is_valid, errors = qc.validate_parameters(params)
    except (ValueError, TypeError, OSError) as e:
        _fail(f"Invalid parameters: {e}")

    if not is_valid:
        _fail("; ".join(errors))
    return params


def _load_with_controls(input_file: str, params: qc.QCParameters):
    dataset = io.load_dataset(input_file, orientation=params.matrix_orientation)

    if params.control_config:
        config = io.load_control_config(params.control_config)
        dataset = dataset.with_controls(
            feature_controls=io.resolve_control_sets(
                dataset.feature_names, config["feature_controls"]
            ),
            cell_controls=io.resolve_control_sets(dataset.cell_names, config["cell_controls"]),
        )
    return dataset


def qc_options(f):
    """Options shared by commands that compute QC metrics."""
    options = [
        click.option("--params", "params_file", type=click.Path(exists=True), help="JSON file with QC parameters"),
        click.option("--controls", "control_config", type=click.Path(exists=True), help="JSON file with control sets"),
        click.option("--detection-limit", type=float, help="Detection limit [default: 0]"),
        click.option("--nmads", type=float, help="MADs from the median for outlier flags [default: 5]"),
        click.option(
            "--orientation",
            "matrix_orientation",
            type=click.Choice(["features_x_cells", "cells_x_features"]),
            help="Layout of delimited input [default: features_x_cells]",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose):
    """cellqc: QC metrics for single-cell expression matrices."""
    setup_logging(verbose)


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--strict", is_flag=True, help="Require raw counts")
@click.option(
    "--orientation",
    type=click.Choice(["features_x_cells", "cells_x_features"]),
    default="features_x_cells",
    help="Layout of delimited input",
)
def validate(input_file, strict, orientation):
    """
    Validate an expression matrix.

    INPUT_FILE: Path to H5AD or delimited matrix
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Validating {input_file}")

    try:
        if Path(input_file).suffix.lower() == ".h5ad":
            matrix = io.load_h5ad(input_file).exprs
        else:
            matrix = io.load_matrix(input_file, orientation=orientation)
    except (io.ValidationError, ValueError, OSError) as e:
        _fail(str(e))

    is_valid, messages = io.validate_matrix(matrix, strict=strict)

    click.echo("\n=== Validation Results ===")
    click.echo(f"Status: {'PASSED' if is_valid else 'FAILED'}")
    click.echo(f"Shape: {matrix.shape[0]} features × {matrix.shape[1]} cells")
    click.echo("\nMessages:")
    for msg in messages:
        click.echo(f"  {msg}")

    sys.exit(0 if is_valid else 1)


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output-dir", "-o", type=click.Path(), required=True, help="Output directory")
@qc_options
@click.option("--ranks", "compute_ranks", is_flag=True, help="Also write within-cell ranks")
@click.option("--format", "table_format", type=click.Choice(["csv", "parquet"]), default="csv")
@click.option("--h5ad", "h5ad_output", type=click.Path(), help="Also save dataset with metrics as H5AD")
def compute(
    input_file, output_dir, params_file, control_config, detection_limit, nmads,
    matrix_orientation, compute_ranks, table_format, h5ad_output,
):
    """
    Compute per-cell and per-feature QC metrics.

    INPUT_FILE: Path to H5AD or delimited matrix
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Computing QC metrics for {input_file}")

    params = _build_parameters(
        params_file,
        control_config=control_config,
        detection_limit=detection_limit,
        nmads=nmads,
        matrix_orientation=matrix_orientation,
        compute_ranks=compute_ranks or None,
    )

    try:
        dataset = _load_with_controls(input_file, params).with_qc_metrics(params)
        outputs = export.export_metrics(
            dataset.cell_metrics,
            dataset.feature_metrics,
            output_dir,
            format=table_format,
            exprs_rank=dataset.exprs_rank,
        )
    except (io.ValidationError, MissingDependency, ValueError, OSError) as e:
        _fail(str(e))

    if h5ad_output:
        io.save_h5ad(dataset, h5ad_output)
        outputs["h5ad"] = h5ad_output

    manifest = export.create_manifest(
        input_files=[input_file],
        n_features=dataset.n_features,
        n_cells=dataset.n_cells,
        parameters=params.to_dict(),
        qc_summary=qc.compute_qc_summary(dataset.cell_metrics),
        outputs=outputs,
    )
    manifest_file = Path(output_dir) / "qc_manifest.json"
    export.save_manifest(manifest, str(manifest_file))

    click.echo("\n=== Exported Files ===")
    for key, path in outputs.items():
        click.echo(f"  {key}: {path}")
    click.echo(f"  manifest: {manifest_file}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output JSON file")
@qc_options
def summarize(input_file, output, params_file, control_config, detection_limit, nmads, matrix_orientation):
    """
    Summarize QC metrics and outlier flags.

    INPUT_FILE: Path to H5AD or delimited matrix
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Summarizing {input_file}")

    params = _build_parameters(
        params_file,
        control_config=control_config,
        detection_limit=detection_limit,
        nmads=nmads,
        matrix_orientation=matrix_orientation,
    )

    try:
        dataset = _load_with_controls(input_file, params).with_qc_metrics(params)
    except (io.ValidationError, ValueError, OSError) as e:
        _fail(str(e))

    summary = {
        "dataset": io.summarize_dataset(dataset),
        "cells": qc.compute_qc_summary(dataset.cell_metrics),
        "features": qc.compute_feature_summary(dataset.feature_metrics),
        "parameters": params.to_dict(),
    }

    if output:
        with open(output, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Summary saved to {output}")
        click.echo(f"Summary: {output}")
    else:
        click.echo(json.dumps(summary, indent=2, default=str))


@main.command("filter")
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), required=True, help="Output H5AD file")
@qc_options
@click.option("--min-cells", type=int, help="Keep features detected in at least this many cells")
@click.option("--exclude-cell-controls", is_flag=True, help="Drop control cells")
@click.option("--exclude-feature-controls", is_flag=True, help="Drop control features")
@click.option("--decisions", type=click.Path(), help="CSV with the per-cell keep/drop decision")
def filter_cmd(
    input_file, output, params_file, control_config, detection_limit, nmads, matrix_orientation,
    min_cells, exclude_cell_controls, exclude_feature_controls, decisions,
):
    """
    Drop outlier cells and undetected features, then recompute metrics.

    INPUT_FILE: Path to H5AD or delimited matrix
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Filtering {input_file}")

    params = _build_parameters(
        params_file,
        control_config=control_config,
        detection_limit=detection_limit,
        nmads=nmads,
        matrix_orientation=matrix_orientation,
        min_cells=min_cells,
        exclude_cell_controls=exclude_cell_controls or None,
        exclude_feature_controls=exclude_feature_controls or None,
    )

    try:
        dataset = _load_with_controls(input_file, params).with_qc_metrics(params)
    except (io.ValidationError, ValueError, OSError) as e:
        _fail(str(e))

    cell_mask = qc.build_qc_mask(
        dataset.cell_metrics,
        use_flags=params.filter_flags,
        exclude_cell_controls=params.exclude_cell_controls,
    )
    feature_mask = qc.feature_keep_mask(
        dataset.feature_metrics,
        min_cells=params.min_cells,
        exclude_controls=params.exclude_feature_controls,
    )
    if not cell_mask.any() or not feature_mask.any():
        _fail("Filtering would remove every cell or every feature")

    stats = qc.compute_filter_stats(cell_mask)
    if decisions:
        export.export_filtered_cells(dataset.cell_names, cell_mask, decisions)

    filtered = qc.apply_qc_filters(dataset, cell_mask=cell_mask, feature_mask=feature_mask)
    filtered = filtered.with_qc_metrics(params)
    io.save_h5ad(filtered, output)

    click.echo(
        f"Kept {stats['n_kept']} of {stats['n_total']} cells ({stats['percent_kept']:.1f}%) "
        f"and {filtered.n_features} of {dataset.n_features} features"
    )
    click.echo(f"Filtered dataset: {output}")


if __name__ == "__main__":
    main()
