"""Tests for export module."""

import json
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from cellqc.export import manifest, writers
from cellqc.qc.metrics import compute_qc_metrics
from cellqc.utils import deps


def create_test_result(n_features=40, n_cells=25, compute_ranks=False):
    """Create QC metrics for a random count matrix."""
    counts = np.random.poisson(3, size=(n_features, n_cells))
    return compute_qc_metrics(
        counts, feature_controls={"ERCC": [0, 1]}, compute_ranks=compute_ranks
    )


class TestWriters:
    """Tests for export writers."""

    def test_export_cell_metrics_csv(self):
        """Cell metrics are written keyed by cell_id."""
        result = create_test_result()

        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "cell_metrics.csv"

            writers.export_cell_metrics(result.cell_metrics, str(output_file))

            df = pd.read_csv(output_file)
            assert df.columns[0] == "cell_id"
            assert "total_counts" in df.columns
            assert len(df) == len(result.cell_metrics)
            assert df["cell_id"].iloc[0] == "cell_0"

    def test_export_feature_metrics_parquet(self):
        """Feature metrics are written to Parquet."""
        pytest.importorskip("pyarrow")
        result = create_test_result()

        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "feature_metrics.parquet"

            writers.export_feature_metrics(result.feature_metrics, str(output_file), format="parquet")

            df = pd.read_parquet(output_file)
            assert df.columns[0] == "feature_id"
            assert len(df) == len(result.feature_metrics)
            assert df["is_feature_control"].sum() == 2

    def test_unknown_format(self):
        """Unknown formats are rejected."""
        result = create_test_result()

        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ValueError):
                writers.write_table(result.cell_metrics, str(Path(tmpdir) / "x.xlsx"), format="xlsx")

    def test_export_metrics(self):
        """All tables land in the output directory."""
        result = create_test_result(compute_ranks=True)

        with tempfile.TemporaryDirectory() as tmpdir:
            out_dir = Path(tmpdir) / "qc"

            exported = writers.export_metrics(
                result.cell_metrics,
                result.feature_metrics,
                str(out_dir),
                exprs_rank=result.exprs_rank,
            )

            assert set(exported) == {"cell_metrics", "feature_metrics", "exprs_rank"}
            for path in exported.values():
                assert Path(path).exists()
            ranks = pd.read_csv(exported["exprs_rank"], index_col=0)
            assert ranks.shape == result.exprs_rank.shape

    def test_export_filtered_cells(self):
        """Keep/drop decisions are written per cell."""
        cells = ["a", "b", "c"]

        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "decisions.csv"

            writers.export_filtered_cells(cells, np.array([True, False, True]), str(output_file))

            df = pd.read_csv(output_file)
            assert list(df["cell_id"]) == cells
            assert df["qc_pass"].sum() == 2

    def test_export_filtered_cells_length_mismatch(self):
        """Mask and names must line up."""
        with pytest.raises(ValueError):
            writers.export_filtered_cells(["a"], np.array([True, False]), "unused.csv")

    def test_parquet_requires_pyarrow(self, monkeypatch):
        """A missing parquet engine raises MissingDependency."""
        result = create_test_result()
        monkeypatch.setattr(deps, "check_package", lambda name: False)

        with pytest.raises(deps.MissingDependency) as excinfo:
            writers.write_table(result.cell_metrics, "unused.parquet", format="parquet")
        assert "pip install pyarrow" in excinfo.value.install_hint


class TestManifest:
    """Tests for manifest creation."""

    def test_create_manifest(self):
        """Manifest records inputs, parameters and software."""
        with tempfile.TemporaryDirectory() as tmpdir:
            input_file = Path(tmpdir) / "counts.csv"
            input_file.write_text("gene,cell_0\nA,1\n")

            m = manifest.create_manifest(
                input_files=[str(input_file), str(Path(tmpdir) / "missing.csv")],
                n_features=1,
                n_cells=1,
                parameters={"nmads": 5.0},
            )

            assert len(m["input"]["files"]) == 1
            assert m["input"]["files"][0]["sha256"] == manifest.compute_file_hash(str(input_file))
            assert m["parameters"]["nmads"] == 5.0
            assert "anndata_version" in m["software"]

            is_valid, errors = manifest.validate_manifest(m)
            assert is_valid
            assert errors == []

    def test_save_manifest(self):
        """Manifest is saved as JSON."""
        m = manifest.create_manifest(input_files=[], n_features=3, n_cells=4)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "manifest.json"
            manifest.save_manifest(m, str(output_file))

            with open(output_file) as f:
                loaded = json.load(f)
            assert loaded["input"]["n_cells"] == 4

    def test_validate_manifest_missing_keys(self):
        """Missing sections are reported."""
        is_valid, errors = manifest.validate_manifest({"timestamp": "now"})

        assert not is_valid
        assert any("version" in e for e in errors)
