"""Loaders for delimited expression matrices and H5AD files."""

import logging
from pathlib import Path
from typing import Dict, Literal, Optional

import anndata
import pandas as pd

from ..dataset import ExpressionDataset

logger = logging.getLogger(__name__)

DELIMITED_SUFFIXES = {".csv": ",", ".tsv": "\t", ".txt": "\t", ".tab": "\t"}


def _delimiter_for(file_path: Path) -> str:
    suffixes = [s.lower() for s in file_path.suffixes]
    if suffixes and suffixes[-1] in (".gz", ".bz2", ".zip", ".xz"):
        suffixes = suffixes[:-1]
    if not suffixes or suffixes[-1] not in DELIMITED_SUFFIXES:
        raise ValueError(
            f"Cannot infer delimiter for '{file_path.name}'; "
            f"expected one of {sorted(DELIMITED_SUFFIXES)}"
        )
    return DELIMITED_SUFFIXES[suffixes[-1]]


def load_matrix(
    file_path: str,
    sep: Optional[str] = None,
    orientation: Literal["features_x_cells", "cells_x_features"] = "features_x_cells",
) -> pd.DataFrame:
    """
    Load a delimited expression matrix.

    The first column holds row names and the header row holds column names.

    Parameters
    ----------
    file_path : str
        Path to a .csv/.tsv/.txt file, optionally compressed.
    sep : str, optional
        Field separator. Inferred from the file extension if None.
    orientation : {'features_x_cells', 'cells_x_features'}
        Layout of the file. The result is always features × cells.

    Returns
    -------
    pd.DataFrame
        Features × cells matrix.
    """
    path = Path(file_path)
    sep = sep or _delimiter_for(path)

    logger.info(f"Loading expression matrix: {file_path}")
    df = pd.read_csv(path, sep=sep, index_col=0)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)

    if orientation == "cells_x_features":
        df = df.T
    elif orientation != "features_x_cells":
        raise ValueError(f"Unknown orientation: {orientation}")

    logger.info(f"Loaded {df.shape[0]} features × {df.shape[1]} cells from {file_path}")
    return df


def load_h5ad(file_path: str, layer: Optional[str] = None) -> ExpressionDataset:
    """
    Load an H5AD file as an expression dataset.

    Parameters
    ----------
    file_path : str
        Path to H5AD file (cells × features, AnnData convention).
    layer : str, optional
        Layer to use. If None, uses adata.X.

    Returns
    -------
    ExpressionDataset
        Dataset with features as rows.
    """
    logger.info(f"Loading H5AD file: {file_path}")
    adata = anndata.read_h5ad(file_path)
    logger.info(
        f"Loaded {adata.n_obs} cells × {adata.n_vars} features from {file_path}"
    )
    return ExpressionDataset.from_anndata(adata, layer=layer)


def load_dataset(
    file_path: str,
    orientation: Literal["features_x_cells", "cells_x_features"] = "features_x_cells",
    layer: Optional[str] = None,
) -> ExpressionDataset:
    """
    Load a dataset from H5AD or a delimited text matrix, chosen by extension.

    ``orientation`` applies to delimited files only; ``layer`` to H5AD only.
    """
    if Path(file_path).suffix.lower() == ".h5ad":
        return load_h5ad(file_path, layer=layer)
    return ExpressionDataset.from_matrix(load_matrix(file_path, orientation=orientation))


def save_h5ad(dataset: ExpressionDataset, file_path: str) -> None:
    """Write a dataset, with any QC tables, to an H5AD file."""
    logger.info(f"Saving H5AD file: {file_path}")
    dataset.to_anndata().write_h5ad(file_path)


def summarize_dataset(dataset: ExpressionDataset) -> Dict:
    """
    Generate a summary of the dataset.

    Parameters
    ----------
    dataset : ExpressionDataset
        Input dataset.

    Returns
    -------
    dict
        Shape and which auxiliary tables are present.
    """
    return {
        "n_features": dataset.n_features,
        "n_cells": dataset.n_cells,
        "has_cell_metrics": dataset.cell_metrics is not None,
        "has_feature_metrics": dataset.feature_metrics is not None,
        "has_exprs_rank": dataset.exprs_rank is not None,
        "has_reduced_dims": dataset.reduced_dims is not None,
        "has_distances": dataset.distances is not None,
        "feature_controls": {k: int(len(v)) for k, v in dataset.feature_controls.items()},
        "cell_controls": {k: int(len(v)) for k, v in dataset.cell_controls.items()},
    }
