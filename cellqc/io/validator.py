"""Validation of expression matrices and control-set annotations."""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Base exception for invalid QC inputs."""

    pass


class EmptyMatrixError(ValidationError):
    """Raised when the expression matrix has zero rows or zero columns."""

    pass


class NonNumericInputError(ValidationError):
    """Raised when the matrix holds non-numeric or undefined entries."""

    pass


class InvalidIndexError(ValidationError, IndexError):
    """Raised when a control-set index falls outside the matrix bounds."""

    def __init__(self, set_name: str, axis: str, index, bound: int):
        self.set_name = set_name
        self.axis = axis
        self.index = index
        self.bound = bound
        super().__init__(
            f"Control set '{set_name}' has {axis} index {index!r} outside [0, {bound})"
        )


def as_matrix(matrix):
    """
    Coerce a matrix-like input into a 2D numeric numpy array or CSC matrix.

    Parameters
    ----------
    matrix : array-like, scipy.sparse matrix or pd.DataFrame
        Expression matrix with features as rows and cells as columns.

    Returns
    -------
    np.ndarray or scipy.sparse.csc_matrix
        Validated matrix. Dense input is returned as float64 ndarray.

    Raises
    ------
    EmptyMatrixError
        If the matrix has no rows or no columns.
    NonNumericInputError
        If the matrix is not numeric or contains NaN/undefined values.
    """
    if matrix is None:
        raise NonNumericInputError("Expression matrix is None")

    if sp.issparse(matrix):
        data = sp.csc_matrix(matrix)
        values = data.data
    else:
        if isinstance(matrix, pd.DataFrame):
            non_numeric = [
                col for col, dtype in matrix.dtypes.items()
                if not pd.api.types.is_numeric_dtype(dtype)
            ]
            if non_numeric:
                raise NonNumericInputError(
                    f"Non-numeric columns in expression matrix: {non_numeric[:5]}"
                )
            raw = matrix.to_numpy()
        else:
            raw = np.asarray(matrix)
        data = raw
        values = raw

    if data.ndim != 2:
        raise NonNumericInputError(f"Expression matrix must be 2D, got {data.ndim}D")

    n_rows, n_cols = data.shape
    if n_rows == 0 or n_cols == 0:
        raise EmptyMatrixError(
            f"Expression matrix is empty ({n_rows} features × {n_cols} cells)"
        )

    if values.dtype == object:
        try:
            values = values.astype(np.float64)
        except (TypeError, ValueError) as e:
            raise NonNumericInputError(f"Expression matrix is not numeric: {e}") from e
    elif not (
        np.issubdtype(values.dtype, np.number) or np.issubdtype(values.dtype, np.bool_)
    ):
        raise NonNumericInputError(
            f"Expression matrix has non-numeric dtype '{values.dtype}'"
        )

    if np.issubdtype(values.dtype, np.complexfloating):
        raise NonNumericInputError("Complex values are not supported")

    values = values.astype(np.float64, copy=False)
    if not np.all(np.isfinite(values)):
        n_bad = int(np.sum(~np.isfinite(values)))
        raise NonNumericInputError(
            f"Expression matrix contains {n_bad} undefined (NaN/Inf) entries"
        )

    if sp.issparse(data):
        data = data.astype(np.float64)
    else:
        data = values
    return data


def validate_control_sets(
    control_sets: Optional[Mapping[str, Iterable]], bound: int, axis: str
) -> Dict[str, np.ndarray]:
    """
    Check control-set indices and convert them to sorted unique integer arrays.

    Parameters
    ----------
    control_sets : mapping, optional
        Mapping from set name to iterable of 0-based indices. None or empty
        means no controls.
    bound : int
        Number of rows (features) or columns (cells) in the matrix.
    axis : str
        'feature' or 'cell', used in error messages.

    Returns
    -------
    dict
        Mapping from set name to sorted unique ``np.intp`` index arrays,
        in the caller's set order.

    Raises
    ------
    InvalidIndexError
        If any index is negative, non-integer, or >= bound.
    ValidationError
        If two set names are equal once converted to strings.
    """
    if not control_sets:
        return {}

    validated = {}
    for name, indices in control_sets.items():
        if str(name) in validated:
            raise ValidationError(
                f"Duplicate {axis}-control set name '{name}' (names are compared as strings)"
            )
        idx_list = list(indices)
        for index in idx_list:
            if isinstance(index, (bool, np.bool_)) or not isinstance(
                index, (int, np.integer)
            ):
                raise InvalidIndexError(str(name), axis, index, bound)
            if index < 0 or index >= bound:
                raise InvalidIndexError(str(name), axis, index, bound)
        validated[str(name)] = np.unique(np.asarray(idx_list, dtype=np.intp))

    return validated


def check_counts_data(matrix) -> Dict:
    """
    Check if the matrix looks like raw counts.

    Parameters
    ----------
    matrix : array-like or scipy.sparse matrix
        Features × cells expression matrix.

    Returns
    -------
    dict
        Dictionary with statistics about the data:
        - 'is_integer': whether all values are integers
        - 'has_negative': whether there are negative values
        - 'max_value': maximum value
        - 'mean_value': mean value (over all entries)
        - 'sparsity': fraction of zero values
    """
    data = as_matrix(matrix)
    n_entries = data.shape[0] * data.shape[1]

    if sp.issparse(data):
        values = data.data
        n_zero = n_entries - np.count_nonzero(values)
        max_value = float(values.max()) if values.size else 0.0
        if values.size < n_entries:
            max_value = max(max_value, 0.0)
        has_negative = bool(np.any(values < 0))
        mean_value = float(values.sum() / n_entries)
    else:
        values = data.ravel()
        n_zero = int(np.sum(values == 0))
        max_value = float(values.max())
        has_negative = bool(np.any(values < 0))
        mean_value = float(values.mean())

    return {
        "is_integer": bool(np.allclose(values, np.round(values))),
        "has_negative": has_negative,
        "max_value": max_value,
        "mean_value": mean_value,
        "sparsity": float(n_zero / n_entries),
    }


def validate_matrix(matrix, strict: bool = False) -> Tuple[bool, List[str]]:
    """
    Validate an expression matrix without raising.

    Parameters
    ----------
    matrix : array-like, scipy.sparse matrix or pd.DataFrame
        Features × cells expression matrix.
    strict : bool
        If True, data that does not look like raw counts is an error
        rather than a warning.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of warning/error messages)
    """
    messages = []
    is_valid = True

    try:
        data = as_matrix(matrix)
    except ValidationError as e:
        messages.append(f"ERROR: {e}")
        is_valid = False
        data = None

    if data is not None:
        stats = check_counts_data(data)
        if stats["has_negative"] or not stats["is_integer"]:
            level = "ERROR" if strict else "WARNING"
            messages.append(
                f"{level}: Matrix does not look like raw counts "
                f"(integer={stats['is_integer']}, negative={stats['has_negative']}); "
                "count-based metrics will be computed on transformed values."
            )
            if strict:
                is_valid = False

        if isinstance(matrix, pd.DataFrame):
            if not matrix.index.is_unique:
                messages.append("ERROR: Feature names (index) are not unique.")
                is_valid = False
            if not matrix.columns.is_unique:
                messages.append("ERROR: Cell names (columns) are not unique.")
                is_valid = False

    logger.info(f"Validation completed: {'PASSED' if is_valid else 'FAILED'}")
    for msg in messages:
        if msg.startswith("ERROR"):
            logger.error(msg)
        else:
            logger.warning(msg)

    return is_valid, messages
