"""QC summary and statistics functions."""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def compute_qc_summary(
    cell_metrics: pd.DataFrame,
    qc_columns: Optional[List[str]] = None,
    groups: Optional[pd.Series] = None,
) -> Dict:
    """
    Compute summary statistics for QC metrics.

    Parameters
    ----------
    cell_metrics : pd.DataFrame
        Per-cell metrics table.
    qc_columns : list of str, optional
        Columns to summarize. If None, uses all numeric, non-boolean columns.
    groups : pd.Series, optional
        Group label per cell (e.g. sample or batch), aligned to
        ``cell_metrics``.

    Returns
    -------
    dict
        Dictionary containing summary statistics.
    """
    summary = {}

    if qc_columns is None:
        qc_columns = [
            col
            for col in cell_metrics.columns
            if pd.api.types.is_numeric_dtype(cell_metrics[col])
            and not pd.api.types.is_bool_dtype(cell_metrics[col])
        ]

    summary["qc_columns"] = qc_columns
    summary["n_cells"] = len(cell_metrics)

    # Overall statistics
    summary["overall"] = {}
    for col in qc_columns:
        if col in cell_metrics.columns:
            col_data = cell_metrics[col]
            summary["overall"][col] = {
                "mean": float(col_data.mean()),
                "median": float(col_data.median()),
                "std": float(col_data.std()),
                "min": float(col_data.min()),
                "max": float(col_data.max()),
                "q25": float(col_data.quantile(0.25)),
                "q75": float(col_data.quantile(0.75)),
            }

    # Flag counts
    flag_columns = [
        col
        for col in cell_metrics.columns
        if col.startswith(("filter_on_", "is_cell_control"))
        and pd.api.types.is_bool_dtype(cell_metrics[col])
    ]
    summary["flags"] = {col: int(cell_metrics[col].sum()) for col in flag_columns}

    # Group-wise statistics
    if groups is not None:
        groups = pd.Series(np.asarray(groups), index=cell_metrics.index)
        summary["by_group"] = {}
        for group_name, group_data in cell_metrics.groupby(groups):
            group_summary = {"n_cells": len(group_data)}
            for col in qc_columns:
                if col in group_data.columns:
                    col_data = group_data[col]
                    group_summary[col] = {
                        "mean": float(col_data.mean()),
                        "median": float(col_data.median()),
                    }
            summary["by_group"][str(group_name)] = group_summary

    return summary


def compute_feature_summary(feature_metrics: pd.DataFrame, n_top: int = 10) -> Dict:
    """Summarize per-feature metrics: control counts and the top features by share of counts."""
    top = feature_metrics.sort_values("pct_total_counts", ascending=False).head(n_top)
    return {
        "n_features": len(feature_metrics),
        "n_feature_controls": int(feature_metrics["is_feature_control"].sum()),
        "n_undetected": int((feature_metrics["n_cells_exprs"] == 0).sum()),
        "median_pct_dropout": float(feature_metrics["pct_dropout"].median()),
        "top_features": {str(k): float(v) for k, v in top["pct_total_counts"].items()},
    }


def compute_filter_stats(
    mask: np.ndarray, groups: Optional[pd.Series] = None
) -> Dict:
    """
    Compute statistics about filtering results.

    Parameters
    ----------
    mask : np.ndarray
        Boolean mask indicating cells that passed filters.
    groups : pd.Series, optional
        Group label per cell for per-group statistics.

    Returns
    -------
    dict
        Dictionary with filtering statistics including:
        - n_total, n_kept, n_filtered
        - percent_kept, percent_filtered
        - by_group: Optional per-group statistics

    Raises
    ------
    ValueError
        If mask has invalid type, or groups has a different length.
    """
    if not isinstance(mask, (np.ndarray, pd.Series)):
        raise ValueError(f"mask must be numpy array or pandas Series, got {type(mask)}")

    mask = np.asarray(mask, dtype=bool)
    total = len(mask)

    n_kept = int(np.sum(mask))
    n_filtered = total - n_kept

    stats = {
        "n_total": total,
        "n_kept": n_kept,
        "n_filtered": n_filtered,
        "percent_kept": float(100 * n_kept / total) if total > 0 else 0.0,
        "percent_filtered": float(100 * n_filtered / total) if total > 0 else 0.0,
    }

    if groups is not None:
        groups = np.asarray(groups)
        if len(groups) != total:
            raise ValueError(
                f"groups length ({len(groups)}) does not match mask length ({total})"
            )
        stats["by_group"] = {}
        for group_name in pd.unique(groups):
            group_mask = groups == group_name
            group_total = int(np.sum(group_mask))
            group_kept = int(np.sum(mask & group_mask))

            stats["by_group"][str(group_name)] = {
                "n_total": group_total,
                "n_kept": group_kept,
                "n_filtered": group_total - group_kept,
                "percent_kept": float(100 * group_kept / group_total) if group_total > 0 else 0.0,
            }

    return stats


def identify_flagged_cells(
    cell_metrics: pd.DataFrame, flag_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    List cells raised by any flag column, with the flags that caught them.

    Parameters
    ----------
    cell_metrics : pd.DataFrame
        Per-cell metrics table.
    flag_columns : list of str, optional
        Boolean columns to check. Defaults to all ``filter_on_*`` columns.

    Returns
    -------
    pd.DataFrame
        DataFrame with cell_id, n_failures and reasons.
    """
    if flag_columns is None:
        flag_columns = [c for c in cell_metrics.columns if c.startswith("filter_on_")]
    flag_columns = [c for c in flag_columns if c in cell_metrics.columns]

    flagged = []
    for cell_id, row in cell_metrics[flag_columns].iterrows():
        reasons = [col for col in flag_columns if bool(row[col])]
        if reasons:
            flagged.append(
                {
                    "cell_id": cell_id,
                    "n_failures": len(reasons),
                    "reasons": "; ".join(reasons),
                }
            )

    if flagged:
        return pd.DataFrame(flagged)
    else:
        return pd.DataFrame(columns=["cell_id", "n_failures", "reasons"])


def compare_pre_post_filtering(
    metrics_pre: pd.DataFrame,
    metrics_post: pd.DataFrame,
    metrics: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Compare metric means before and after filtering.

    Parameters
    ----------
    metrics_pre : pd.DataFrame
        Cell metrics before filtering.
    metrics_post : pd.DataFrame
        Cell metrics recomputed after filtering.
    metrics : list of str, optional
        Metrics to compare. If None, uses common numeric columns.

    Returns
    -------
    pd.DataFrame
        DataFrame comparing pre and post filtering statistics.
    """
    if metrics is None:
        numeric_pre = set(metrics_pre.select_dtypes(include=[np.number]).columns)
        numeric_post = set(metrics_post.select_dtypes(include=[np.number]).columns)
        metrics = sorted(numeric_pre & numeric_post)

    comparison = []

    for metric in metrics:
        pre_mean = metrics_pre[metric].mean()
        post_mean = metrics_post[metric].mean()

        comparison.append(
            {
                "metric": metric,
                "pre_mean": pre_mean,
                "post_mean": post_mean,
                "change": post_mean - pre_mean,
                "percent_change": 100 * (post_mean - pre_mean) / pre_mean if pre_mean != 0 else 0,
            }
        )

    return pd.DataFrame(comparison, columns=["metric", "pre_mean", "post_mean", "change", "percent_change"])
