"""Tests for QC filters, summaries and parameters."""

import json

import numpy as np
import pandas as pd
import pytest

from cellqc.dataset import ExpressionDataset
from cellqc.qc import filters, parameters, summaries
from cellqc.qc.metrics import compute_qc_metrics


def create_test_metrics(n_cells=100, seed=0):
    """Create a minimal cell metrics table."""
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "total_counts": rng.integers(5, 1000, n_cells).astype(float),
            "total_features": rng.integers(1, 100, n_cells),
            "filter_on_total_counts": np.arange(n_cells) % 10 == 0,
            "filter_on_total_features": np.arange(n_cells) % 25 == 0,
            "is_cell_control": np.arange(n_cells) == 1,
        },
        index=[f"cell_{i}" for i in range(n_cells)],
    )


def create_test_dataset(n_features=50, n_cells=40, seed=0):
    """Create a dataset with Poisson counts and one control set."""
    rng = np.random.default_rng(seed)
    counts = rng.poisson(4, size=(n_features, n_cells)).astype(float)
    counts[:, 0] *= 100
    counts[-1, :] = 0
    return ExpressionDataset.from_matrix(counts, feature_controls={"ERCC": [0, 1, 2]})


class TestOutliers:
    """Tests for MAD and outlier detection."""

    def test_mad_scaling(self):
        """The scaled MAD is the raw MAD times the constant."""
        values = [1, 2, 3, 4, 100]

        assert filters.mad(values, constant=1.0) == pytest.approx(1.0)
        assert filters.mad(values) == pytest.approx(1.4826)

    def test_is_outlier_tails(self):
        """Tail selection restricts which side is flagged."""
        values = np.array([10, 11, 9, 10, 10, 11, 9, 100, -80], dtype=float)

        both = filters.is_outlier(values, nmads=3)
        higher = filters.is_outlier(values, nmads=3, type="higher")
        lower = filters.is_outlier(values, nmads=3, type="lower")

        assert list(np.flatnonzero(both)) == [7, 8]
        assert list(np.flatnonzero(higher)) == [7]
        assert list(np.flatnonzero(lower)) == [8]

    def test_is_outlier_zero_mad(self):
        """Constant values flag nothing."""
        assert not filters.is_outlier(np.full(10, 3.0)).any()

    def test_is_outlier_log(self):
        """log=True applies log10(x + 1) first."""
        # log10(x + 1) = [1, 2, 3, 2, 1, 2, 6]: median 2, MAD 1
        values = np.array([9, 99, 999, 99, 9, 99, 999999], dtype=float)

        logged = filters.is_outlier(values, nmads=2, log=True, constant=1.0)
        raw = filters.is_outlier(values, nmads=2, log=False, constant=1.0)

        assert logged.dtype == bool
        assert list(np.flatnonzero(logged)) == [6]
        assert list(np.flatnonzero(raw)) == [2, 6]

    def test_is_outlier_bad_type(self):
        """Unknown tail names are rejected."""
        with pytest.raises(ValueError):
            filters.is_outlier([1, 2, 3], type="upper")


class TestFilters:
    """Tests for filter functions."""

    def test_create_filter_mask(self):
        """Range criteria combine with AND."""
        metrics = create_test_metrics()

        mask = filters.create_filter_mask(
            metrics, {"total_counts": (10, 500), "total_features": (5, None)}
        )

        expected = (
            (metrics["total_counts"] >= 10)
            & (metrics["total_counts"] <= 500)
            & (metrics["total_features"] >= 5)
        )
        assert mask.dtype == bool
        np.testing.assert_array_equal(mask, expected.to_numpy())

    def test_create_filter_mask_missing_column(self):
        """Unknown columns are skipped."""
        metrics = create_test_metrics()

        mask = filters.create_filter_mask(metrics, {"nCount_RNA": (10, None)})

        assert mask.all()

    def test_filter_by_boolean_flags(self):
        """Flags combine with AND or OR."""
        metrics = create_test_metrics()
        flags = ["filter_on_total_counts", "filter_on_total_features"]

        both = filters.filter_by_boolean_flags(metrics, flags, require_all=True)
        either = filters.filter_by_boolean_flags(metrics, flags, require_all=False)

        assert both.sum() == 2  # cells 0 and 50
        assert either.sum() == 12

    def test_build_qc_mask(self):
        """Cells flagged by any listed column are dropped."""
        metrics = create_test_metrics()

        mask = filters.build_qc_mask(metrics)
        with_controls = filters.build_qc_mask(metrics, exclude_cell_controls=True)

        assert mask.sum() == 100 - 12
        assert with_controls.sum() == 100 - 13
        assert not with_controls[1]

    def test_feature_keep_mask(self):
        """Undetected and optionally control features are dropped."""
        result = compute_qc_metrics(
            create_test_dataset().exprs, feature_controls={"ERCC": [0, 1, 2]}
        )

        keep = filters.feature_keep_mask(result.feature_metrics, min_cells=1)
        keep_endogenous = filters.feature_keep_mask(
            result.feature_metrics, min_cells=1, exclude_controls=True
        )

        assert not keep[-1]
        assert keep.sum() == 49
        assert keep_endogenous.sum() == 46

    def test_filter_outliers_mad(self):
        """MAD-based outlier filtering keeps most cells."""
        metrics = create_test_metrics()

        mask = filters.filter_outliers_mad(metrics, column="total_counts", n_mads=3.0, only_upper=True)

        assert len(mask) == len(metrics)
        assert np.sum(mask) > len(metrics) * 0.9

    def test_filter_outliers_mad_missing_column(self):
        """A missing column raises."""
        with pytest.raises(ValueError):
            filters.filter_outliers_mad(create_test_metrics(), column="nCount_RNA")

    def test_apply_qc_filters(self):
        """The outlier cell is removed and metrics are cleared."""
        dataset = create_test_dataset().with_qc_metrics()
        assert dataset.cell_metrics["filter_on_total_counts"].iloc[0]

        filtered = filters.apply_qc_filters(dataset)

        assert filtered.n_cells < dataset.n_cells
        assert "cell_0" not in filtered.cell_names
        assert filtered.n_features == dataset.n_features
        assert filtered.cell_metrics is None
        assert filtered.feature_metrics is None

    def test_apply_qc_filters_requires_metrics(self):
        """Without a mask, the dataset must carry cell metrics."""
        with pytest.raises(ValueError):
            filters.apply_qc_filters(create_test_dataset())


class TestSummaries:
    """Tests for summary functions."""

    def test_compute_qc_summary(self):
        """Numeric columns are summarized and flags counted."""
        metrics = create_test_metrics()

        summary = summaries.compute_qc_summary(metrics)

        assert summary["n_cells"] == 100
        assert set(summary["qc_columns"]) == {"total_counts", "total_features"}
        assert summary["overall"]["total_counts"]["max"] == metrics["total_counts"].max()
        assert summary["flags"]["filter_on_total_counts"] == 10
        assert summary["flags"]["is_cell_control"] == 1

    def test_compute_qc_summary_groups(self):
        """Group labels split the summary."""
        metrics = create_test_metrics()
        groups = ["sample_1"] * 50 + ["sample_2"] * 50

        summary = summaries.compute_qc_summary(metrics, groups=groups)

        assert summary["by_group"]["sample_1"]["n_cells"] == 50
        assert "total_counts" in summary["by_group"]["sample_2"]

    def test_compute_feature_summary(self):
        """Feature summary counts controls and undetected features."""
        result = compute_qc_metrics(
            create_test_dataset().exprs, feature_controls={"ERCC": [0, 1, 2]}
        )

        summary = summaries.compute_feature_summary(result.feature_metrics, n_top=5)

        assert summary["n_features"] == 50
        assert summary["n_feature_controls"] == 3
        assert summary["n_undetected"] == 1
        assert len(summary["top_features"]) == 5

    def test_compute_filter_stats(self):
        """Counts and percentages add up."""
        mask = np.array([True] * 70 + [False] * 30)

        stats = summaries.compute_filter_stats(mask)

        assert stats["n_total"] == 100
        assert stats["n_kept"] == 70
        assert stats["n_kept"] + stats["n_filtered"] == 100
        assert stats["percent_kept"] == pytest.approx(70.0)

    def test_compute_filter_stats_groups(self):
        """Per-group statistics follow the group labels."""
        mask = np.array([True, False, True, True])
        groups = pd.Series(["a", "a", "b", "b"])

        stats = summaries.compute_filter_stats(mask, groups=groups)

        assert stats["by_group"]["a"]["n_kept"] == 1
        assert stats["by_group"]["b"]["percent_kept"] == 100.0

    def test_compute_filter_stats_invalid(self):
        """Lists and mismatched groups are rejected."""
        with pytest.raises(ValueError):
            summaries.compute_filter_stats([True, False])
        with pytest.raises(ValueError):
            summaries.compute_filter_stats(np.array([True, False]), groups=["a"])

    def test_identify_flagged_cells(self):
        """Flagged cells are listed with their reasons."""
        metrics = create_test_metrics()

        flagged = summaries.identify_flagged_cells(metrics)

        assert len(flagged) == 12
        cell_0 = flagged.set_index("cell_id").loc["cell_0"]
        assert cell_0["n_failures"] == 2
        assert "filter_on_total_features" in cell_0["reasons"]

    def test_compare_pre_post_filtering(self):
        """Means before and after filtering are compared per metric."""
        metrics = create_test_metrics()
        post = metrics[metrics["total_counts"] > 100]

        comparison = summaries.compare_pre_post_filtering(metrics, post)

        assert list(comparison["metric"]) == ["total_counts", "total_features"]
        assert (comparison.set_index("metric").loc["total_counts", "change"]) > 0


class TestParameters:
    """Tests for QC parameters."""

    def test_defaults_valid(self):
        """Default parameters validate."""
        is_valid, errors = parameters.validate_parameters(parameters.QCParameters())

        assert is_valid
        assert errors == []

    def test_invalid_values(self):
        """Out-of-range values are reported."""
        params = parameters.QCParameters(nmads=0, detection_limit=float("inf"), min_cells=-1)

        is_valid, errors = parameters.validate_parameters(params)

        assert not is_valid
        assert len(errors) == 3

    def test_dict_round_trip(self):
        """to_dict/from_dict preserve values and tuple fields."""
        params = parameters.QCParameters(nmads=3.0, top_n_features=(10, 20))

        restored = parameters.QCParameters.from_dict(params.to_dict())

        assert restored == params

    def test_load_parameters(self, tmp_path):
        """Parameters load from JSON, ignoring unknown keys."""
        path = tmp_path / "params.json"
        path.write_text(json.dumps({"nmads": 3, "compute_ranks": True, "unused": 1}))

        params = parameters.load_parameters(str(path))

        assert params.nmads == 3
        assert params.compute_ranks
        assert params.detection_limit == 0.0
