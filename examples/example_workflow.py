"""
Example workflow demonstrating the cellqc pipeline.

This script shows how to:
1. Load a features × cells count matrix
2. Validate it
3. Resolve spike-in and mitochondrial control sets
4. Compute QC metrics and outlier flags
5. Filter cells and features, then recompute metrics
6. Export tables and a manifest
"""

import logging
from pathlib import Path

from cellqc import export, io, qc

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Run the example workflow."""

    # ==================== 1. Load Data ====================
    input_file = "data/counts.csv"  # Replace with your file
    dataset = io.load_dataset(input_file)

    # ==================== 2. Validate ====================
    is_valid, messages = io.validate_matrix(dataset.exprs)
    if not is_valid:
        for msg in messages:
            logger.error(msg)
        return

    # ==================== 3. Control Sets ====================
    dataset = dataset.with_controls(
        feature_controls=io.resolve_control_sets(
            dataset.feature_names, {"ERCC": "^ERCC-", "MT": "^MT-"}
        )
    )

    # ==================== 4. QC Metrics ====================
    params = qc.QCParameters(nmads=5.0, min_cells=3)
    dataset = dataset.with_qc_metrics(params)

    summary = qc.compute_qc_summary(dataset.cell_metrics)
    logger.info(f"Flag counts: {summary['flags']}")

    # ==================== 5. Filtering ====================
    cell_mask = qc.build_qc_mask(dataset.cell_metrics)
    feature_mask = qc.feature_keep_mask(dataset.feature_metrics, min_cells=params.min_cells)
    stats = qc.compute_filter_stats(cell_mask)
    logger.info(f"Keeping {stats['n_kept']} cells ({stats['percent_kept']:.1f}%)")

    filtered = qc.apply_qc_filters(dataset, cell_mask=cell_mask, feature_mask=feature_mask)
    filtered = filtered.with_qc_metrics(params)

    # ==================== 6. Export ====================
    output_dir = Path("results")
    outputs = export.export_metrics(
        filtered.cell_metrics, filtered.feature_metrics, str(output_dir)
    )
    io.save_h5ad(filtered, str(output_dir / "filtered.h5ad"))

    manifest = export.create_manifest(
        input_files=[input_file],
        n_features=dataset.n_features,
        n_cells=dataset.n_cells,
        parameters=params.to_dict(),
        qc_summary=summary,
        filter_stats=stats,
        outputs=outputs,
    )
    export.save_manifest(manifest, str(output_dir / "qc_manifest.json"))

    logger.info("Workflow complete")


if __name__ == "__main__":
    main()
