"""Manifest creation for documenting QC run parameters and metadata."""

import hashlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def compute_file_hash(file_path: str, algorithm: str = "sha256") -> str:
    """
    Compute hash of a file.

    Parameters
    ----------
    file_path : str
        Path to file.
    algorithm : str
        Hash algorithm ('md5', 'sha256').

    Returns
    -------
    str
        Hex digest of file hash.
    """
    hash_func = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_func.update(chunk)

    return hash_func.hexdigest()


def create_manifest(
    input_files: list,
    n_features: int,
    n_cells: int,
    parameters: Optional[Dict[str, Any]] = None,
    qc_summary: Optional[Dict[str, Any]] = None,
    filter_stats: Optional[Dict[str, Any]] = None,
    outputs: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Create a manifest documenting the QC run.

    Parameters
    ----------
    input_files : list
        List of input file paths.
    n_features, n_cells : int
        Shape of the input matrix.
    parameters : dict, optional
        QC parameters used.
    qc_summary : dict, optional
        Output of :func:`cellqc.qc.compute_qc_summary`.
    filter_stats : dict, optional
        Output of :func:`cellqc.qc.compute_filter_stats`.
    outputs : dict, optional
        Name to path of files written by the run.

    Returns
    -------
    dict
        Manifest dictionary.
    """
    from .. import __version__

    manifest = {
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "input": {
            "files": [],
            "n_features": int(n_features),
            "n_cells": int(n_cells),
        },
        "parameters": parameters or {},
        "outputs": outputs or {},
    }

    for file_path in input_files:
        if Path(file_path).exists():
            manifest["input"]["files"].append(
                {
                    "path": str(file_path),
                    "name": Path(file_path).name,
                    "size_bytes": Path(file_path).stat().st_size,
                    "sha256": compute_file_hash(file_path, "sha256"),
                }
            )
        else:
            logger.warning(f"Input file not found, not hashed: {file_path}")

    if qc_summary is not None:
        manifest["qc_summary"] = qc_summary
    if filter_stats is not None:
        manifest["filtering"] = filter_stats

    import anndata
    import numpy as np
    import pandas as pd
    import scipy

    manifest["software"] = {
        "python_version": sys.version,
        "cellqc_version": __version__,
        "numpy_version": np.__version__,
        "pandas_version": pd.__version__,
        "scipy_version": scipy.__version__,
        "anndata_version": anndata.__version__,
    }

    return manifest


def save_manifest(manifest: Dict[str, Any], output_file: str) -> None:
    """
    Save manifest to JSON file.

    Parameters
    ----------
    manifest : dict
        Manifest dictionary.
    output_file : str
        Output JSON file path.
    """
    logger.info(f"Saving manifest to {output_file}")

    with open(output_file, "w") as f:
        json.dump(manifest, f, indent=2, default=str)

    logger.info("Manifest saved")


def validate_manifest(manifest: Dict[str, Any]) -> tuple:
    """
    Validate manifest structure.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    required_keys = ["timestamp", "version", "input", "parameters"]
    for key in required_keys:
        if key not in manifest:
            errors.append(f"Missing required key: {key}")

    if "input" in manifest:
        for key in ("files", "n_features", "n_cells"):
            if key not in manifest["input"]:
                errors.append(f"Missing '{key}' in input section")

    is_valid = len(errors) == 0

    return is_valid, errors
