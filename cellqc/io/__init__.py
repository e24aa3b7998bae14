"""I/O utilities for loading and validating expression matrices."""

from .validator import (
    ValidationError,
    EmptyMatrixError,
    NonNumericInputError,
    InvalidIndexError,
    validate_matrix,
    check_counts_data,
)
from .loader import load_matrix, load_h5ad, load_dataset, save_h5ad, summarize_dataset
from .controls import resolve_control_sets, load_control_config

__all__ = [
    "ValidationError",
    "EmptyMatrixError",
    "NonNumericInputError",
    "InvalidIndexError",
    "validate_matrix",
    "check_counts_data",
    "load_matrix",
    "load_h5ad",
    "load_dataset",
    "save_h5ad",
    "summarize_dataset",
    "resolve_control_sets",
    "load_control_config",
]
