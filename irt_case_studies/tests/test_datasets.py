"""
Tests for the datasets module: reading tables, seeded person samples,
covariate coding and long-form count grids.
"""
import pytest
import numpy as np
import pandas as pd

from irt_case_studies.datasets import (
    load_counts,
    load_item_responses,
    read_table,
    sample_rows,
)
from irt_case_studies.identification import PayloadError


class TestReadTable:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_table(tmp_path / "nope.csv")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "data.xlsx"
        path.write_text("x")
        with pytest.raises(ValueError, match="Unsupported"):
            read_table(path)

    def test_tsv(self, tmp_path):
        path = tmp_path / "data.tsv"
        path.write_text("a\tb\n1\t2\n")
        assert read_table(path).columns.tolist() == ["a", "b"]


class TestSampleRows:

    def test_keeps_all_when_n_is_none(self):
        frame = pd.DataFrame({"x": range(5)})
        assert len(sample_rows(frame, None)) == 5

    def test_seeded_and_ordered(self):
        frame = pd.DataFrame({"x": range(100)})
        a = sample_rows(frame, 10, seed=3)
        b = sample_rows(frame, 10, seed=3)
        assert a["x"].tolist() == b["x"].tolist()
        assert a["x"].is_monotonic_increasing


class TestItemResponses:

    def test_load(self, dichotomous_csv):
        data = load_item_responses(
            dichotomous_csv,
            item_columns=["item1", "item2", "item3", "item4"],
            covariate_columns=["age", "group"],
        )
        assert data.responses.shape == (10, 4)
        assert data.W.shape == (10, 3)
        np.testing.assert_array_equal(data.W[:, 0], 1.0)
        assert data.covariate_labels == ["(Intercept)", "age", "group_b"]

    def test_items_default_to_non_covariates(self, dichotomous_csv):
        data = load_item_responses(dichotomous_csv, covariate_columns=["age", "group"])
        assert data.item_labels == ["item1", "item2", "item3", "item4"]

    def test_sample_size(self, dichotomous_csv):
        data = load_item_responses(
            dichotomous_csv, covariate_columns=["age", "group"], sample_size=4, seed=1
        )
        assert data.responses.shape == (4, 4)

    def test_missing_column(self, dichotomous_csv):
        with pytest.raises(PayloadError, match="lacks columns"):
            load_item_responses(dichotomous_csv, item_columns=["item9"])

    def test_incomplete_rows_dropped(self, tmp_path):
        path = tmp_path / "gappy.csv"
        pd.DataFrame({"a": [0, 1, None], "b": [1, 1, 0]}).to_csv(path, index=False)
        data = load_item_responses(path)
        assert data.n_dropped == 1
        assert data.responses.shape == (2, 2)

    def test_non_integer_scores(self, tmp_path):
        path = tmp_path / "frac.csv"
        pd.DataFrame({"a": [0.5, 1.0], "b": [1, 0]}).to_csv(path, index=False)
        with pytest.raises(PayloadError, match="integer"):
            load_item_responses(path)


class TestCounts:

    def test_grid(self, counts_csv):
        data = load_counts(counts_csv)
        assert data.counts.shape == (2, 3)
        assert data.site_labels == ["A", "B", "C"]
        assert data.year_labels == ["2001", "2002"]
        assert int(np.isnan(data.counts).sum()) == 2
        assert data.counts[0, 2] == 7

    def test_duplicates_rejected(self, tmp_path):
        path = tmp_path / "dup.csv"
        pd.DataFrame(
            {"site": ["A", "A"], "year": [1, 1], "count": [1, 2]}
        ).to_csv(path, index=False)
        with pytest.raises(PayloadError, match="only once"):
            load_counts(path)

    def test_custom_columns(self, tmp_path):
        path = tmp_path / "custom.csv"
        pd.DataFrame(
            {"plot": ["x", "y"], "season": [1, 1], "n": [4, 6]}
        ).to_csv(path, index=False)
        data = load_counts(path, site_column="plot", year_column="season", count_column="n")
        assert data.counts.tolist() == [[4.0, 6.0]]
