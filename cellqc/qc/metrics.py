"""Per-cell and per-feature QC metric computation."""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy.stats import rankdata

from ..io.validator import as_matrix, validate_control_sets
from .filters import is_outlier
from .parameters import DEFAULT_TOP_N_FEATURES, MAD_NORMAL_CONSTANT

logger = logging.getLogger(__name__)

CELL_METRIC_COLUMNS = [
    "total_counts",
    "log10_total_counts",
    "total_features",
    "counts_feature_controls",
    "counts_endogenous_features",
    "log10_counts_feature_controls",
    "log10_counts_endogenous_features",
    "pct_counts_feature_controls",
    "n_detected_feature_controls",
    "filter_on_total_counts",
    "filter_on_total_features",
    "filter_on_pct_counts_feature_controls",
    "is_cell_control",
]

FEATURE_METRIC_COLUMNS = [
    "mean_exprs",
    "total_feature_counts",
    "log10_total_feature_counts",
    "pct_total_counts",
    "is_feature_control",
    "n_cells_exprs",
    "pct_dropout",
]


@dataclass
class QCMetrics:
    """Per-cell and per-feature QC tables computed from one expression matrix."""

    cell_metrics: pd.DataFrame
    feature_metrics: pd.DataFrame
    exprs_rank: Optional[np.ndarray] = None
    parameters: Dict = field(default_factory=dict)


def _axis_sum(data, axis: int) -> np.ndarray:
    return np.asarray(data.sum(axis=axis)).ravel()


def _detected(data, detection_limit: float):
    """Boolean matrix of entries strictly above the detection limit."""
    if sp.issparse(data) and detection_limit < 0:
        # implicit zeros are detected too
        return data.toarray() > detection_limit
    return data > detection_limit


def _log10p1(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    if np.any(values <= -1):
        logger.warning(
            f"{int(np.sum(values <= -1))} values <= -1 have no log10(x + 1); "
            "reporting NaN for them"
        )
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.log10(values + 1)
    out[values <= -1] = np.nan
    return out


def _safe_percent(numerator: np.ndarray, denominator) -> np.ndarray:
    """100 * numerator / denominator, with 0 wherever the denominator is 0."""
    numerator = np.asarray(numerator, dtype=np.float64)
    denominator = np.broadcast_to(np.asarray(denominator, dtype=np.float64), numerator.shape)
    out = np.zeros(numerator.shape, dtype=np.float64)
    nonzero = denominator != 0
    out[nonzero] = 100.0 * numerator[nonzero] / denominator[nonzero]
    return out


def _top_feature_counts(data, top_n: Sequence[int]) -> Dict[int, np.ndarray]:
    """Sum of each cell's ``n`` highest values, for every ``n`` in ``top_n``."""
    if not top_n:
        return {}

    n_cells = data.shape[1]
    sums = {n: np.zeros(n_cells, dtype=np.float64) for n in top_n}
    if sp.issparse(data):
        for j in range(n_cells):
            column = np.sort(data[:, j].toarray().ravel())[::-1]
            cumulative = np.cumsum(column)
            for n in top_n:
                sums[n][j] = cumulative[n - 1]
    else:
        cumulative = np.cumsum(-np.sort(-data, axis=0), axis=0)
        for n in top_n:
            sums[n] = cumulative[n - 1]
    return sums


def _rank_within_cells(data) -> np.ndarray:
    dense = data.toarray() if sp.issparse(data) else data
    return rankdata(dense, method="average", axis=0).astype(np.float64)


def _resolve_names(matrix, names: Optional[Iterable], size: int, axis: str, prefix: str) -> pd.Index:
    if names is None and isinstance(matrix, pd.DataFrame):
        names = matrix.index if axis == "feature" else matrix.columns
    if names is None:
        return pd.Index([f"{prefix}_{i}" for i in range(size)])
    names = pd.Index(names).astype(str)
    if len(names) != size:
        raise ValueError(f"Got {len(names)} {axis} names for {size} {axis}s")
    return names


def _check_scalars(detection_limit, nmads, mad_constant, top_n_features) -> None:
    if not isinstance(detection_limit, (int, float, np.number)) or not math.isfinite(
        detection_limit
    ):
        raise ValueError(f"detection_limit must be a finite number, got {detection_limit!r}")
    if not isinstance(nmads, (int, float, np.number)) or not nmads > 0:
        raise ValueError(f"nmads must be a positive number, got {nmads!r}")
    if not mad_constant > 0:
        raise ValueError(f"mad_constant must be positive, got {mad_constant!r}")
    for n in top_n_features:
        if isinstance(n, (bool, np.bool_)) or not isinstance(n, (int, np.integer)) or n < 1:
            raise ValueError(f"top_n_features entries must be positive integers, got {n!r}")


def compute_qc_metrics(
    matrix,
    feature_controls: Optional[Mapping[str, Iterable[int]]] = None,
    cell_controls: Optional[Mapping[str, Iterable[int]]] = None,
    detection_limit: float = 0.0,
    nmads: float = 5.0,
    compute_ranks: bool = False,
    top_n_features: Sequence[int] = DEFAULT_TOP_N_FEATURES,
    mad_constant: float = MAD_NORMAL_CONSTANT,
    feature_names: Optional[Iterable] = None,
    cell_names: Optional[Iterable] = None,
) -> QCMetrics:
    """
    Compute per-cell and per-feature quality-control metrics.

    Parameters
    ----------
    matrix : array-like, scipy.sparse matrix or pd.DataFrame
        Expression matrix with features as rows and cells as columns. Counts
        or already-transformed values. Never modified.
    feature_controls : mapping, optional
        Named sets of 0-based row indices marking control features
        (e.g. spike-ins). Sets may overlap; aggregate control metrics use
        their union.
    cell_controls : mapping, optional
        Named sets of 0-based column indices marking control cells.
    detection_limit : float
        An entry is detected iff it is strictly greater than this value.
    nmads : float
        Number of MADs from the median beyond which a cell is flagged by the
        ``filter_on_*`` columns.
    compute_ranks : bool
        If True, also return the within-cell rank matrix ``exprs_rank``
        (features × cells, average ranks for ties).
    top_n_features : sequence of int
        Sizes N for the ``pct_counts_top_N_features`` columns. Sizes larger
        than the number of features are skipped.
    mad_constant : float
        Scale factor applied to the raw MAD. The default 1.4826 makes it
        consistent with the standard deviation of normal data, as R's
        ``mad()`` does. Pass 1.0 for the plain, unscaled MAD that scater's
        documentation describes for its 5-MAD filters.
    feature_names, cell_names : iterable, optional
        Row and column labels. Taken from a DataFrame's index and columns
        when not given, else ``feature_<i>`` / ``cell_<j>``.

    Returns
    -------
    QCMetrics
        ``cell_metrics`` (one row per column of ``matrix``),
        ``feature_metrics`` (one row per row of ``matrix``), optional
        ``exprs_rank`` and the ``parameters`` used.

    Raises
    ------
    EmptyMatrixError
        If the matrix has zero rows or columns.
    NonNumericInputError
        If the matrix is not numeric or has NaN/Inf entries.
    InvalidIndexError
        If a control index is outside the matrix bounds.
    ValueError
        If a scalar argument is out of range, or a ``top_n_features`` entry is
        not a positive integer.
    """
    _check_scalars(detection_limit, nmads, mad_constant, top_n_features)

    data = as_matrix(matrix)
    n_features, n_cells = data.shape
    feature_sets = validate_control_sets(feature_controls, n_features, "feature")
    cell_sets = validate_control_sets(cell_controls, n_cells, "cell")
    feature_index = _resolve_names(matrix, feature_names, n_features, "feature", "feature")
    cell_index = _resolve_names(matrix, cell_names, n_cells, "cell", "cell")

    logger.info(
        f"Computing QC metrics for {n_features} features × {n_cells} cells "
        f"({len(feature_sets)} feature-control sets, {len(cell_sets)} cell-control sets)"
    )

    detected = _detected(data, detection_limit)

    # Per-cell reductions
    total_counts = _axis_sum(data, axis=0)
    total_features = _axis_sum(detected, axis=0).astype(np.int64)

    is_feature_control = np.zeros(n_features, dtype=bool)
    for indices in feature_sets.values():
        is_feature_control[indices] = True
    control_rows = np.flatnonzero(is_feature_control)

    if control_rows.size:
        counts_feature_controls = _axis_sum(data[control_rows, :], axis=0)
        n_detected_feature_controls = _axis_sum(detected[control_rows, :], axis=0).astype(
            np.int64
        )
    else:
        counts_feature_controls = np.zeros(n_cells, dtype=np.float64)
        n_detected_feature_controls = np.zeros(n_cells, dtype=np.int64)

    counts_endogenous_features = total_counts - counts_feature_controls
    log10_total_counts = _log10p1(total_counts)
    pct_counts_feature_controls = _safe_percent(counts_feature_controls, total_counts)

    is_cell_control = np.zeros(n_cells, dtype=bool)
    for indices in cell_sets.values():
        is_cell_control[indices] = True

    cell_metrics = pd.DataFrame(
        {
            "total_counts": total_counts,
            "log10_total_counts": log10_total_counts,
            "total_features": total_features,
            "counts_feature_controls": counts_feature_controls,
            "counts_endogenous_features": counts_endogenous_features,
            "log10_counts_feature_controls": _log10p1(counts_feature_controls),
            "log10_counts_endogenous_features": _log10p1(counts_endogenous_features),
            "pct_counts_feature_controls": pct_counts_feature_controls,
            "n_detected_feature_controls": n_detected_feature_controls,
            "filter_on_total_counts": is_outlier(
                log10_total_counts, nmads=nmads, constant=mad_constant
            ),
            "filter_on_total_features": is_outlier(
                total_features, nmads=nmads, constant=mad_constant
            ),
            "filter_on_pct_counts_feature_controls": is_outlier(
                pct_counts_feature_controls, nmads=nmads, type="higher", constant=mad_constant
            ),
            "is_cell_control": is_cell_control,
        },
        index=cell_index,
    )

    for name, indices in feature_sets.items():
        if indices.size:
            set_counts = _axis_sum(data[indices, :], axis=0)
            set_detected = _axis_sum(detected[indices, :], axis=0).astype(np.int64)
        else:
            set_counts = np.zeros(n_cells, dtype=np.float64)
            set_detected = np.zeros(n_cells, dtype=np.int64)
        cell_metrics[f"counts_feature_controls_{name}"] = set_counts
        cell_metrics[f"log10_counts_feature_controls_{name}"] = _log10p1(set_counts)
        cell_metrics[f"pct_counts_feature_controls_{name}"] = _safe_percent(
            set_counts, total_counts
        )
        cell_metrics[f"n_detected_feature_controls_{name}"] = set_detected

    top_n = [n for n in top_n_features if n <= n_features]
    skipped = sorted(set(top_n_features) - set(top_n))
    if skipped:
        logger.debug(f"Skipping top-feature sizes {skipped} larger than {n_features} features")
    for n, top_counts in _top_feature_counts(data, top_n).items():
        cell_metrics[f"pct_counts_top_{n}_features"] = _safe_percent(top_counts, total_counts)

    for name, indices in cell_sets.items():
        flags = np.zeros(n_cells, dtype=bool)
        flags[indices] = True
        cell_metrics[f"is_cell_control_{name}"] = flags

    # Per-feature reductions
    total_feature_counts = _axis_sum(data, axis=1)
    n_cells_exprs = _axis_sum(detected, axis=1).astype(np.int64)
    grand_total = total_counts.sum()

    feature_metrics = pd.DataFrame(
        {
            "mean_exprs": total_feature_counts / n_cells,
            "total_feature_counts": total_feature_counts,
            "log10_total_feature_counts": _log10p1(total_feature_counts),
            "pct_total_counts": _safe_percent(total_feature_counts, grand_total),
            "is_feature_control": is_feature_control,
            "n_cells_exprs": n_cells_exprs,
            "pct_dropout": 100.0 * (n_cells - n_cells_exprs) / n_cells,
        },
        index=feature_index,
    )

    for name, indices in feature_sets.items():
        flags = np.zeros(n_features, dtype=bool)
        flags[indices] = True
        feature_metrics[f"is_feature_control_{name}"] = flags

    exprs_rank = _rank_within_cells(data) if compute_ranks else None

    n_flagged = int(
        (cell_metrics["filter_on_total_counts"] | cell_metrics["filter_on_total_features"]).sum()
    )
    logger.info(
        f"QC metrics complete: {n_flagged} of {n_cells} cells flagged as outliers "
        f"({nmads} MADs), {int(is_feature_control.sum())} control features"
    )

    parameters = {
        "detection_limit": float(detection_limit),
        "nmads": float(nmads),
        "mad_constant": float(mad_constant),
        "compute_ranks": bool(compute_ranks),
        "top_n_features": list(top_n),
        "feature_controls": {name: int(idx.size) for name, idx in feature_sets.items()},
        "cell_controls": {name: int(idx.size) for name, idx in cell_sets.items()},
    }

    return QCMetrics(
        cell_metrics=cell_metrics,
        feature_metrics=feature_metrics,
        exprs_rank=exprs_rank,
        parameters=parameters,
    )
