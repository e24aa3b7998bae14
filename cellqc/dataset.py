"""Expression dataset: a matrix bundled with optional QC and embedding tables."""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import anndata
import numpy as np
import pandas as pd
import scipy.sparse as sp

from .io.validator import as_matrix, validate_control_sets

logger = logging.getLogger(__name__)


def _remap_indices(indices: np.ndarray, keep: np.ndarray) -> np.ndarray:
    """Translate old positions to positions among the kept entries, dropping removed ones."""
    new_positions = np.cumsum(keep) - 1
    kept = indices[keep[indices]]
    return new_positions[kept].astype(np.intp)


def _as_keep_mask(mask, size: int, axis: str) -> np.ndarray:
    if mask is None:
        return np.ones(size, dtype=bool)
    mask = np.asarray(mask)
    if mask.dtype != bool or mask.shape != (size,):
        raise ValueError(f"{axis} mask must be a boolean array of length {size}")
    return mask


@dataclass(frozen=True, eq=False)
class ExpressionDataset:
    """
    Features × cells expression matrix with optional auxiliary tables.

    Every auxiliary table is independently present or absent. Methods never
    modify the dataset; they return new instances.

    Attributes
    ----------
    exprs : np.ndarray or scipy.sparse matrix
        Expression values, features as rows and cells as columns.
    feature_names, cell_names : pd.Index
        Row and column labels.
    cell_metrics, feature_metrics : pd.DataFrame, optional
        QC tables from :func:`cellqc.qc.compute_qc_metrics`.
    exprs_rank : np.ndarray, optional
        Within-cell rank matrix, same shape as ``exprs``.
    reduced_dims : pd.DataFrame, optional
        Cells × components coordinates from an external reduction.
    distances : np.ndarray, optional
        Cells × cells distance matrix.
    feature_controls, cell_controls : dict
        Named control index sets.
    """

    exprs: Any
    feature_names: pd.Index
    cell_names: pd.Index
    cell_metrics: Optional[pd.DataFrame] = None
    feature_metrics: Optional[pd.DataFrame] = None
    exprs_rank: Optional[np.ndarray] = None
    reduced_dims: Optional[pd.DataFrame] = None
    distances: Optional[np.ndarray] = None
    feature_controls: Dict[str, np.ndarray] = field(default_factory=dict)
    cell_controls: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        n_features, n_cells = self.exprs.shape
        if len(self.feature_names) != n_features:
            raise ValueError(
                f"{len(self.feature_names)} feature names for {n_features} features"
            )
        if len(self.cell_names) != n_cells:
            raise ValueError(f"{len(self.cell_names)} cell names for {n_cells} cells")
        if self.cell_metrics is not None and len(self.cell_metrics) != n_cells:
            raise ValueError("cell_metrics must have one row per cell")
        if self.feature_metrics is not None and len(self.feature_metrics) != n_features:
            raise ValueError("feature_metrics must have one row per feature")
        if self.reduced_dims is not None and len(self.reduced_dims) != n_cells:
            raise ValueError("reduced_dims must have one row per cell")
        if self.distances is not None and self.distances.shape != (n_cells, n_cells):
            raise ValueError("distances must be a cells × cells matrix")

    @classmethod
    def from_matrix(
        cls,
        matrix,
        feature_names: Optional[Iterable] = None,
        cell_names: Optional[Iterable] = None,
        feature_controls: Optional[Mapping[str, Iterable[int]]] = None,
        cell_controls: Optional[Mapping[str, Iterable[int]]] = None,
    ) -> "ExpressionDataset":
        """
        Build a dataset from a features × cells matrix.

        Names default to a DataFrame's index/columns, else ``feature_<i>``
        and ``cell_<j>``.
        """
        if isinstance(matrix, pd.DataFrame):
            feature_names = matrix.index if feature_names is None else feature_names
            cell_names = matrix.columns if cell_names is None else cell_names

        exprs = as_matrix(matrix)
        n_features, n_cells = exprs.shape

        if feature_names is None:
            feature_names = [f"feature_{i}" for i in range(n_features)]
        if cell_names is None:
            cell_names = [f"cell_{j}" for j in range(n_cells)]

        return cls(
            exprs=exprs,
            feature_names=pd.Index(feature_names).astype(str),
            cell_names=pd.Index(cell_names).astype(str),
            feature_controls=validate_control_sets(feature_controls, n_features, "feature"),
            cell_controls=validate_control_sets(cell_controls, n_cells, "cell"),
        )

    @classmethod
    def from_anndata(cls, adata: anndata.AnnData, layer: Optional[str] = None) -> "ExpressionDataset":
        """
        Build a dataset from a cells × features AnnData object.

        QC tables, ranks, reduced dimensions, distances and control sets
        written by :meth:`to_anndata` are restored.
        """
        if layer is not None:
            if layer not in adata.layers:
                raise ValueError(f"Layer '{layer}' not found in adata.layers")
            data = adata.layers[layer]
        else:
            data = adata.X

        cell_metrics = adata.obs.copy() if "total_counts" in adata.obs.columns else None
        feature_metrics = (
            adata.var.copy() if "total_feature_counts" in adata.var.columns else None
        )
        exprs_rank = (
            np.asarray(adata.layers["exprs_rank"]).T if "exprs_rank" in adata.layers else None
        )

        reduced_dims = None
        if "X_reduced" in adata.obsm:
            coords = np.asarray(adata.obsm["X_reduced"])
            columns = adata.uns.get("reduced_dims_columns")
            if columns is None or len(columns) != coords.shape[1]:
                columns = [f"dim_{k + 1}" for k in range(coords.shape[1])]
            reduced_dims = pd.DataFrame(coords, index=adata.obs_names, columns=list(columns))

        distances = None
        if "distances" in adata.obsp:
            distances = adata.obsp["distances"]
            distances = distances.toarray() if sp.issparse(distances) else np.asarray(distances)

        return cls(
            exprs=as_matrix(data.T),
            feature_names=pd.Index(adata.var_names).astype(str),
            cell_names=pd.Index(adata.obs_names).astype(str),
            cell_metrics=cell_metrics,
            feature_metrics=feature_metrics,
            exprs_rank=exprs_rank,
            reduced_dims=reduced_dims,
            distances=distances,
            feature_controls=validate_control_sets(
                adata.uns.get("feature_controls"), adata.n_vars, "feature"
            ),
            cell_controls=validate_control_sets(
                adata.uns.get("cell_controls"), adata.n_obs, "cell"
            ),
        )

    @property
    def shape(self):
        return self.exprs.shape

    @property
    def n_features(self) -> int:
        return self.exprs.shape[0]

    @property
    def n_cells(self) -> int:
        return self.exprs.shape[1]

    def replace(self, **changes) -> "ExpressionDataset":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def with_controls(
        self,
        feature_controls: Optional[Mapping[str, Iterable[int]]] = None,
        cell_controls: Optional[Mapping[str, Iterable[int]]] = None,
    ) -> "ExpressionDataset":
        """
        Return a copy with new control sets.

        Stored QC tables are dropped since they were computed with the old
        control definitions.
        """
        return self.replace(
            feature_controls=validate_control_sets(feature_controls, self.n_features, "feature"),
            cell_controls=validate_control_sets(cell_controls, self.n_cells, "cell"),
            cell_metrics=None,
            feature_metrics=None,
        )

    def with_qc_metrics(self, params=None, **overrides) -> "ExpressionDataset":
        """
        Return a copy holding freshly computed QC tables.

        Parameters
        ----------
        params : cellqc.qc.QCParameters, optional
            Settings for the computation. Defaults to ``QCParameters()``.
        **overrides
            Individual settings overriding ``params`` (e.g. ``nmads=3``).
        """
        from .qc.metrics import compute_qc_metrics
        from .qc.parameters import QCParameters

        params = params or QCParameters()
        settings = {
            "detection_limit": params.detection_limit,
            "nmads": params.nmads,
            "mad_constant": params.mad_constant,
            "compute_ranks": params.compute_ranks,
            "top_n_features": params.top_n_features,
        }
        settings.update(overrides)

        result = compute_qc_metrics(
            self.exprs,
            feature_controls=self.feature_controls,
            cell_controls=self.cell_controls,
            feature_names=self.feature_names,
            cell_names=self.cell_names,
            **settings,
        )
        return self.replace(
            cell_metrics=result.cell_metrics,
            feature_metrics=result.feature_metrics,
            exprs_rank=result.exprs_rank,
        )

    def subset(self, cell_mask=None, feature_mask=None) -> "ExpressionDataset":
        """
        Return the dataset restricted to the kept cells and features.

        QC tables and ranks are dropped since they no longer describe the
        subset. Reduced dimensions and distances are subset by cell.
        Control sets are remapped to the new positions.
        """
        keep_cells = _as_keep_mask(cell_mask, self.n_cells, "cell")
        keep_features = _as_keep_mask(feature_mask, self.n_features, "feature")

        exprs = self.exprs[keep_features, :][:, keep_cells]
        if sp.issparse(exprs):
            exprs = sp.csc_matrix(exprs)

        reduced_dims = None
        if self.reduced_dims is not None:
            reduced_dims = self.reduced_dims.iloc[keep_cells].copy()

        distances = None
        if self.distances is not None:
            distances = self.distances[np.ix_(keep_cells, keep_cells)]

        return ExpressionDataset(
            exprs=exprs,
            feature_names=self.feature_names[keep_features],
            cell_names=self.cell_names[keep_cells],
            reduced_dims=reduced_dims,
            distances=distances,
            feature_controls={
                name: _remap_indices(idx, keep_features)
                for name, idx in self.feature_controls.items()
            },
            cell_controls={
                name: _remap_indices(idx, keep_cells) for name, idx in self.cell_controls.items()
            },
        )

    def to_anndata(self) -> anndata.AnnData:
        """
        Convert to a cells × features AnnData object.

        Cell metrics go to ``obs``, feature metrics to ``var``, ranks to
        ``layers['exprs_rank']``, reduced dimensions to ``obsm['X_reduced']``
        and distances to ``obsp['distances']``.
        """
        obs = (
            self.cell_metrics.copy()
            if self.cell_metrics is not None
            else pd.DataFrame(index=self.cell_names)
        )
        obs.index = self.cell_names
        var = (
            self.feature_metrics.copy()
            if self.feature_metrics is not None
            else pd.DataFrame(index=self.feature_names)
        )
        var.index = self.feature_names

        X = self.exprs.T
        if sp.issparse(X):
            X = sp.csr_matrix(X)

        adata = anndata.AnnData(X=X, obs=obs, var=var)

        if self.exprs_rank is not None:
            adata.layers["exprs_rank"] = self.exprs_rank.T
        if self.reduced_dims is not None:
            adata.obsm["X_reduced"] = self.reduced_dims.to_numpy()
            adata.uns["reduced_dims_columns"] = [str(c) for c in self.reduced_dims.columns]
        if self.distances is not None:
            adata.obsp["distances"] = self.distances
        if self.feature_controls:
            adata.uns["feature_controls"] = {
                name: np.asarray(idx, dtype=np.int64) for name, idx in self.feature_controls.items()
            }
        if self.cell_controls:
            adata.uns["cell_controls"] = {
                name: np.asarray(idx, dtype=np.int64) for name, idx in self.cell_controls.items()
            }

        return adata
