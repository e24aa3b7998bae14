"""
cellqc: quality-control metrics for single-cell expression matrices.

This package provides tools to:
- Load expression matrices from delimited text or H5AD
- Validate matrices and control-set annotations
- Compute per-cell and per-feature QC metrics with MAD outlier flags
- Filter cells and features on those metrics
- Export metric tables and a run manifest
"""

__version__ = "0.1.0"

from . import io, qc, export
from .dataset import ExpressionDataset
from .qc import compute_qc_metrics, QCMetrics, QCParameters

__all__ = [
    "io",
    "qc",
    "export",
    "ExpressionDataset",
    "compute_qc_metrics",
    "QCMetrics",
    "QCParameters",
    "__version__",
]
