"""Quality control metrics, filters and summaries."""

from .metrics import QCMetrics, compute_qc_metrics
from .filters import (
    apply_qc_filters,
    build_qc_mask,
    create_filter_mask,
    feature_keep_mask,
    filter_by_boolean_flags,
    filter_outliers_mad,
    is_outlier,
    mad,
)
from .parameters import QCParameters, load_parameters, validate_parameters
from .summaries import (
    compare_pre_post_filtering,
    compute_feature_summary,
    compute_filter_stats,
    compute_qc_summary,
    identify_flagged_cells,
)

__all__ = [
    "QCMetrics",
    "compute_qc_metrics",
    "apply_qc_filters",
    "build_qc_mask",
    "create_filter_mask",
    "feature_keep_mask",
    "filter_by_boolean_flags",
    "filter_outliers_mad",
    "is_outlier",
    "mad",
    "QCParameters",
    "load_parameters",
    "validate_parameters",
    "compare_pre_post_filtering",
    "compute_feature_summary",
    "compute_filter_stats",
    "compute_qc_summary",
    "identify_flagged_cells",
]
