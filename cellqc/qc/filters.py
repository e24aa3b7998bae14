"""QC filtering functions."""

import logging
from typing import Dict, List, Literal, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation

from .parameters import MAD_NORMAL_CONSTANT

logger = logging.getLogger(__name__)

DEFAULT_FILTER_FLAGS = ("filter_on_total_counts", "filter_on_total_features")


def mad(values, constant: float = MAD_NORMAL_CONSTANT) -> float:
    """
    Median absolute deviation, scaled by ``constant``.

    NaN values are ignored.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0 or np.all(np.isnan(values)):
        return 0.0
    return float(median_abs_deviation(values, scale=1.0 / constant, nan_policy="omit"))


def is_outlier(
    values,
    nmads: float = 5.0,
    log: bool = False,
    type: Literal["both", "lower", "higher"] = "both",
    constant: float = MAD_NORMAL_CONSTANT,
) -> np.ndarray:
    """
    Flag values more than ``nmads`` MADs away from the median.

    Parameters
    ----------
    values : array-like
        Metric values, one per cell.
    nmads : float
        Number of MADs from the median to use as threshold.
    log : bool
        If True, apply log10(x + 1) before computing median and MAD.
    type : {'both', 'lower', 'higher'}
        Which tail(s) to flag.
    constant : float
        MAD scale factor (see :func:`mad`).

    Returns
    -------
    np.ndarray
        Boolean array, True for outliers. All False when the MAD is zero,
        since no finite threshold exists then.
    """
    if type not in ("both", "lower", "higher"):
        raise ValueError(f"Unknown outlier type: {type}")

    values = np.asarray(values, dtype=np.float64)
    if log:
        with np.errstate(divide="ignore", invalid="ignore"):
            values = np.log10(values + 1)

    if values.size == 0 or np.all(np.isnan(values)):
        return np.zeros(values.shape, dtype=bool)

    center = np.nanmedian(values)
    spread = mad(values, constant=constant)

    if not spread > 0:
        logger.debug("MAD is zero; outlier filter disabled for this metric")
        return np.zeros(values.shape, dtype=bool)

    threshold = nmads * spread
    deviation = values - center

    if type == "both":
        return np.abs(deviation) > threshold
    elif type == "lower":
        return deviation < -threshold
    return deviation > threshold


def create_filter_mask(
    metrics: pd.DataFrame, filter_criteria: Dict[str, tuple]
) -> np.ndarray:
    """
    Create a boolean mask for filtering rows of a metrics table.

    Parameters
    ----------
    metrics : pd.DataFrame
        Cell or feature metrics table.
    filter_criteria : dict
        Dictionary mapping column names to (min_value, max_value) tuples.
        Use None for unbounded. Example:
        {'total_counts': (1000, None), 'total_features': (200, 8000)}

    Returns
    -------
    np.ndarray
        Boolean mask where True indicates rows that pass all filters.
    """
    mask = np.ones(len(metrics), dtype=bool)

    for col_name, (min_val, max_val) in filter_criteria.items():
        if col_name not in metrics.columns:
            logger.warning(f"Column '{col_name}' not found in metrics. Skipping.")
            continue

        col_data = metrics[col_name].to_numpy()

        if min_val is not None:
            mask &= col_data >= min_val

        if max_val is not None:
            mask &= col_data <= max_val

        logger.info(
            f"Filter '{col_name}' [{min_val}, {max_val}]: "
            f"{np.sum(~mask)} filtered, {np.sum(mask)} remaining"
        )

    return mask


def filter_by_boolean_flags(
    metrics: pd.DataFrame,
    flag_columns: List[str],
    require_all: bool = True,
    invert: bool = False,
) -> np.ndarray:
    """
    Filter rows based on boolean flag columns.

    Parameters
    ----------
    metrics : pd.DataFrame
        Cell or feature metrics table.
    flag_columns : list of str
        List of boolean column names.
    require_all : bool
        If True, require all flags to be True (AND logic).
        If False, require at least one flag to be True (OR logic).
    invert : bool
        If True, invert the logic (keep rows where flags are False).

    Returns
    -------
    np.ndarray
        Boolean mask indicating rows that pass the filter.
    """
    masks = []
    for col in flag_columns:
        if col not in metrics.columns:
            logger.warning(f"Flag column '{col}' not found. Skipping.")
            continue

        masks.append(metrics[col].astype(bool).to_numpy())

    if not masks:
        logger.warning("No valid flag columns found. Returning all True mask.")
        return np.ones(len(metrics), dtype=bool)

    if require_all:
        combined_mask = np.all(masks, axis=0)
    else:
        combined_mask = np.any(masks, axis=0)

    if invert:
        combined_mask = ~combined_mask

    return combined_mask


def build_qc_mask(
    cell_metrics: pd.DataFrame,
    use_flags: Sequence[str] = DEFAULT_FILTER_FLAGS,
    exclude_cell_controls: bool = False,
) -> np.ndarray:
    """
    Keep-mask for cells not flagged by any of the outlier columns.

    Parameters
    ----------
    cell_metrics : pd.DataFrame
        Output of :func:`cellqc.qc.metrics.compute_qc_metrics`.
    use_flags : sequence of str
        ``filter_on_*`` columns to honour.
    exclude_cell_controls : bool
        If True, control cells are dropped as well.

    Returns
    -------
    np.ndarray
        Boolean mask, True for cells to keep.
    """
    flags = list(use_flags)
    if exclude_cell_controls:
        flags.append("is_cell_control")

    if not flags:
        return np.ones(len(cell_metrics), dtype=bool)

    mask = filter_by_boolean_flags(cell_metrics, flags, require_all=False, invert=True)
    logger.info(
        f"QC mask from {flags}: {int(mask.sum())} cells kept, {int((~mask).sum())} removed"
    )
    return mask


def feature_keep_mask(
    feature_metrics: pd.DataFrame,
    min_cells: int = 1,
    exclude_controls: bool = False,
) -> np.ndarray:
    """
    Keep-mask for features detected in at least ``min_cells`` cells.

    Parameters
    ----------
    feature_metrics : pd.DataFrame
        Per-feature metrics with ``n_cells_exprs`` and ``is_feature_control``.
    min_cells : int
        Minimum number of cells in which the feature must be detected.
    exclude_controls : bool
        If True, control features are dropped as well.

    Returns
    -------
    np.ndarray
        Boolean mask, True for features to keep.
    """
    mask = feature_metrics["n_cells_exprs"].to_numpy() >= min_cells
    if exclude_controls:
        mask &= ~feature_metrics["is_feature_control"].to_numpy(dtype=bool)

    logger.info(
        f"Feature filter (min_cells={min_cells}, exclude_controls={exclude_controls}): "
        f"{int(mask.sum())} features kept, {int((~mask).sum())} removed"
    )
    return mask


def filter_outliers_mad(
    metrics: pd.DataFrame,
    column: str,
    n_mads: float = 5.0,
    only_upper: bool = False,
    log: bool = False,
    constant: float = MAD_NORMAL_CONSTANT,
) -> np.ndarray:
    """
    Keep-mask excluding MAD outliers of one metrics column.

    Parameters
    ----------
    metrics : pd.DataFrame
        Cell or feature metrics table.
    column : str
        Column name to filter on.
    n_mads : float
        Number of MADs from the median to use as threshold.
    only_upper : bool
        If True, only filter upper outliers.
    log : bool
        If True, test log10(x + 1) of the column.
    constant : float
        MAD scale factor.

    Returns
    -------
    np.ndarray
        Boolean mask indicating rows that are not outliers.
    """
    if column not in metrics.columns:
        raise ValueError(f"Column '{column}' not found in metrics")

    outliers = is_outlier(
        metrics[column].to_numpy(),
        nmads=n_mads,
        log=log,
        type="higher" if only_upper else "both",
        constant=constant,
    )
    logger.info(f"MAD filter ({column}): removed {int(outliers.sum())} outliers")

    return ~outliers


def apply_qc_filters(dataset, cell_mask: Optional[np.ndarray] = None, feature_mask=None):
    """
    Subset a dataset with cell and feature keep-masks.

    Parameters
    ----------
    dataset : cellqc.dataset.ExpressionDataset
        Input dataset. Not modified.
    cell_mask : np.ndarray, optional
        Boolean mask over cells. If None, uses :func:`build_qc_mask` on the
        dataset's stored cell metrics.
    feature_mask : np.ndarray, optional
        Boolean mask over features. If None, all features are kept.

    Returns
    -------
    cellqc.dataset.ExpressionDataset
        Filtered copy. Its metric tables are cleared and must be recomputed.
    """
    if cell_mask is None:
        if dataset.cell_metrics is None:
            raise ValueError("No cell mask given and dataset has no cell metrics")
        cell_mask = build_qc_mask(dataset.cell_metrics)

    n_before = dataset.n_cells
    filtered = dataset.subset(cell_mask=cell_mask, feature_mask=feature_mask)

    n_removed = n_before - filtered.n_cells
    logger.info(
        f"QC filtering complete: {filtered.n_cells} cells kept, {n_removed} cells filtered "
        f"({100 * n_removed / n_before:.1f}%), {filtered.n_features} features kept"
    )

    return filtered
