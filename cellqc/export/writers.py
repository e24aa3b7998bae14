"""Writers for QC metric tables and filter results."""

import logging
from pathlib import Path
from typing import Dict, Literal, Optional

import numpy as np
import pandas as pd

from ..utils.deps import require_package

logger = logging.getLogger(__name__)

TableFormat = Literal["csv", "parquet"]


def write_table(
    df: pd.DataFrame,
    output_file: str,
    format: TableFormat = "csv",
    index_label: str = "id",
) -> str:
    """
    Write a metrics table with its index as the first column.

    Parameters
    ----------
    df : pd.DataFrame
        Table to write.
    output_file : str
        Output path.
    format : {'csv', 'parquet'}
        Output format. Parquet requires pyarrow.
    index_label : str
        Name of the index column in the output.

    Returns
    -------
    str
        Path written.
    """
    out = df.copy()
    out.index = out.index.astype(str)
    out = out.rename_axis(index_label).reset_index()

    if format == "parquet":
        require_package("pyarrow")
        out.to_parquet(output_file, index=False)
    elif format == "csv":
        out.to_csv(output_file, index=False)
    else:
        raise ValueError(f"Unknown format: {format}")

    logger.info(f"Wrote {len(out)} rows to {output_file}")
    return str(output_file)


def export_cell_metrics(cell_metrics: pd.DataFrame, output_file: str, format: TableFormat = "csv") -> str:
    """Write per-cell metrics keyed by ``cell_id``."""
    return write_table(cell_metrics, output_file, format=format, index_label="cell_id")


def export_feature_metrics(
    feature_metrics: pd.DataFrame, output_file: str, format: TableFormat = "csv"
) -> str:
    """Write per-feature metrics keyed by ``feature_id``."""
    return write_table(feature_metrics, output_file, format=format, index_label="feature_id")


def export_filtered_cells(
    cell_names, mask: np.ndarray, output_file: str
) -> str:
    """
    Write the keep/drop decision for every cell.

    Parameters
    ----------
    cell_names : sequence of str
        Cell identifiers in matrix order.
    mask : np.ndarray
        Boolean keep-mask.
    output_file : str
        Output CSV path with columns cell_id and qc_pass.

    Returns
    -------
    str
        Path written.
    """
    mask = np.asarray(mask, dtype=bool)
    if len(mask) != len(cell_names):
        raise ValueError(
            f"mask length ({len(mask)}) does not match number of cells ({len(cell_names)})"
        )
    df = pd.DataFrame({"cell_id": [str(c) for c in cell_names], "qc_pass": mask})
    df.to_csv(output_file, index=False)
    logger.info(f"Exported QC decisions for {len(df)} cells ({int(mask.sum())} pass) to {output_file}")
    return str(output_file)


def export_metrics(
    cell_metrics: pd.DataFrame,
    feature_metrics: pd.DataFrame,
    output_dir: str,
    format: TableFormat = "csv",
    exprs_rank: Optional[np.ndarray] = None,
) -> Dict[str, str]:
    """
    Write all QC tables into ``output_dir``.

    Returns
    -------
    dict
        Table name to written path.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    ext = "parquet" if format == "parquet" else "csv"

    exported = {
        "cell_metrics": export_cell_metrics(
            cell_metrics, str(out_dir / f"cell_metrics.{ext}"), format=format
        ),
        "feature_metrics": export_feature_metrics(
            feature_metrics, str(out_dir / f"feature_metrics.{ext}"), format=format
        ),
    }

    if exprs_rank is not None:
        ranks = pd.DataFrame(
            exprs_rank, index=feature_metrics.index, columns=cell_metrics.index.astype(str)
        )
        exported["exprs_rank"] = write_table(
            ranks, str(out_dir / f"exprs_rank.{ext}"), format=format, index_label="feature_id"
        )

    return exported
