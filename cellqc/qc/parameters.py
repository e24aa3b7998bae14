"""Parameter management for QC metric runs."""

import json
import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional, Tuple

logger = logging.getLogger(__name__)

# Normal-consistency constant for the median absolute deviation
MAD_NORMAL_CONSTANT = 1.4826

DEFAULT_TOP_N_FEATURES = (50, 100, 200, 500)


@dataclass
class QCParameters:
    """Parameters for QC metric computation and filtering."""

    # Detection
    detection_limit: float = 0.0

    # Outlier flags
    nmads: float = 5.0
    mad_constant: float = MAD_NORMAL_CONSTANT  # 1.0 for plain MAD as in scater docs

    # Optional outputs
    compute_ranks: bool = False
    top_n_features: Tuple[int, ...] = DEFAULT_TOP_N_FEATURES

    # Filtering
    filter_flags: Tuple[str, ...] = ("filter_on_total_counts", "filter_on_total_features")
    exclude_cell_controls: bool = False
    min_cells: int = 1
    exclude_feature_controls: bool = False

    # Input
    matrix_orientation: Literal["features_x_cells", "cells_x_features"] = "features_x_cells"
    control_config: Optional[str] = None

    def to_dict(self):
        """Convert to dictionary."""
        d = asdict(self)
        d["top_n_features"] = list(self.top_n_features)
        d["filter_flags"] = list(self.filter_flags)
        return d

    @classmethod
    def from_dict(cls, d: dict):
        """Create from dictionary, ignoring unknown keys."""
        known = {k: v for k, v in d.items() if k in cls.__annotations__}
        unknown = sorted(set(d) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown QC parameters: {unknown}")
        for key in ("top_n_features", "filter_flags"):
            if key in known and known[key] is not None:
                known[key] = tuple(known[key])
        return cls(**known)


def load_parameters(file_path: str) -> QCParameters:
    """
    Load QC parameters from a JSON file.

    Parameters
    ----------
    file_path : str
        Path to JSON file with parameter names as keys.

    Returns
    -------
    QCParameters
        Parameters read from the file; missing keys take their defaults.
    """
    logger.info(f"Loading QC parameters from {file_path}")
    with open(Path(file_path)) as f:
        d = json.load(f)
    if not isinstance(d, dict):
        raise ValueError(f"Parameter file must contain a JSON object, got {type(d).__name__}")
    return QCParameters.from_dict(d)


def validate_parameters(params: QCParameters) -> Tuple[bool, list]:
    """
    Validate parameters.

    Parameters
    ----------
    params : QCParameters
        Parameters to validate.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    if not isinstance(params.detection_limit, (int, float)) or not math.isfinite(
        params.detection_limit
    ):
        errors.append("detection_limit must be a finite number")

    if not isinstance(params.nmads, (int, float)) or not params.nmads > 0:
        errors.append("nmads must be > 0")

    if not isinstance(params.mad_constant, (int, float)) or not params.mad_constant > 0:
        errors.append("mad_constant must be > 0")

    if any(not isinstance(n, int) or n < 1 for n in params.top_n_features):
        errors.append("top_n_features must contain positive integers")

    if params.min_cells < 0:
        errors.append("min_cells must be >= 0")

    if params.matrix_orientation not in ("features_x_cells", "cells_x_features"):
        errors.append(f"Unknown matrix_orientation: {params.matrix_orientation}")

    is_valid = len(errors) == 0

    return is_valid, errors
