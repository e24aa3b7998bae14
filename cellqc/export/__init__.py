"""Export utilities for QC tables and run manifests."""

from .writers import (
    export_cell_metrics,
    export_feature_metrics,
    export_filtered_cells,
    export_metrics,
    write_table,
)
from .manifest import create_manifest, save_manifest, validate_manifest

__all__ = [
    "export_cell_metrics",
    "export_feature_metrics",
    "export_filtered_cells",
    "export_metrics",
    "write_table",
    "create_manifest",
    "save_manifest",
    "validate_manifest",
]
