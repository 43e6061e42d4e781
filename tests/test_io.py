"""Tests for the expression/trait loaders and the result writers."""

import logging

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import DataQualityError
from coexnet.io import (
    load_expression_matrix,
    load_sample_traits,
    sniff_delimiter,
    write_dendrogram,
    write_module_assignments,
    write_module_sizes,
    write_power_report,
)
from coexnet.pipeline import CoexpressionPipeline


EXPRESSION_TEXT = (
    "gene_id{d}S1{d}S2{d}S3{d}S4\n"
    "GENE_A{d}5.21{d}6.02{d}5.87{d}4.99\n"
    "GENE_B{d}7.10{d}7.33{d}6.95{d}7.41\n"
    "GENE_C{d}1.00{d}2.00{d}3.00{d}4.00\n"
)


@pytest.fixture
def small_result(small_matrix):
    return CoexpressionPipeline(min_cluster_size=4).detect_modules(
        small_matrix, power=6, deep_splits=[0, 2]
    )


class TestSniffDelimiter:

    @pytest.mark.parametrize("delimiter", ["\t", ",", ";"])
    def test_detects_delimiter(self, tmp_path, delimiter):
        path = tmp_path / "table.txt"
        path.write_text(EXPRESSION_TEXT.format(d=delimiter))
        assert sniff_delimiter(path) == delimiter

    def test_undetectable(self, tmp_path):
        path = tmp_path / "single.txt"
        path.write_text("GENE_A\nGENE_B\n")
        with pytest.raises(ValueError, match="delimiter"):
            sniff_delimiter(path)


class TestLoadExpressionMatrix:

    @pytest.mark.parametrize("suffix,delimiter", [(".csv", ","), (".tsv", "\t")])
    def test_loads_table(self, tmp_path, suffix, delimiter):
        path = tmp_path / f"expression{suffix}"
        path.write_text(EXPRESSION_TEXT.format(d=delimiter))

        matrix = load_expression_matrix(path)

        assert matrix.shape == (3, 4)
        assert matrix.gene_ids.tolist() == ["GENE_A", "GENE_B", "GENE_C"]
        assert matrix.sample_ids.tolist() == ["S1", "S2", "S3", "S4"]
        assert matrix.data[2].tolist() == [1.0, 2.0, 3.0, 4.0]

    def test_roundtrip_of_written_matrix(self, expression_csv, small_matrix):
        matrix = load_expression_matrix(expression_csv)
        assert matrix.gene_ids.equals(small_matrix.gene_ids)
        np.testing.assert_allclose(matrix.data, small_matrix.data)

    def test_explicit_delimiter(self, tmp_path):
        path = tmp_path / "expression.txt"
        path.write_text(EXPRESSION_TEXT.format(d="|"))
        assert load_expression_matrix(path, delimiter="|").shape == (3, 4)

    def test_numeric_gene_ids_stay_strings(self, tmp_path):
        path = tmp_path / "entrez.csv"
        path.write_text("gene,S1,S2\n7157,1.0,2.0\n672,3.0,1.0\n")
        matrix = load_expression_matrix(path)
        assert matrix.gene_ids.tolist() == ["7157", "672"]

    def test_non_numeric_cells_are_reported(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("gene,S1,S2\nGENE_A,1.0,high\nGENE_B,2.0,3.0\n")
        with pytest.raises(ValueError, match="non-numeric") as excinfo:
            load_expression_matrix(path)
        assert "GENE_A" in str(excinfo.value)
        assert "'high'" in str(excinfo.value)

    def test_duplicate_gene_ids(self, tmp_path):
        path = tmp_path / "dup.csv"
        path.write_text("gene,S1,S2\nGENE_A,1.0,2.0\nGENE_A,3.0,1.0\n")
        with pytest.raises(DataQualityError) as excinfo:
            load_expression_matrix(path)
        assert excinfo.value.gene_ids == ["GENE_A"]

    def test_missing_values_are_kept_with_warning(self, tmp_path, caplog):
        path = tmp_path / "gaps.csv"
        path.write_text("gene,S1,S2,S3\nGENE_A,1.0,,3.0\nGENE_B,2.0,3.0,1.0\n")

        with caplog.at_level(logging.WARNING, logger="coexnet.io.loaders"):
            matrix = load_expression_matrix(path)

        assert np.isnan(matrix.data[0, 1])
        assert "missing values" in caplog.text

    def test_header_only(self, tmp_path):
        path = tmp_path / "header.csv"
        path.write_text("gene,S1,S2\n")
        with pytest.raises(ValueError, match="no genes"):
            load_expression_matrix(path, delimiter=",")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_expression_matrix(tmp_path / "nope.csv")


class TestLoadSampleTraits:

    def test_aligned_to_sample_order(self, tmp_path):
        path = tmp_path / "traits.csv"
        path.write_text("sample,age,group\nS3,40,b\nS1,20,a\nS2,30,a\nS9,50,c\n")

        traits = load_sample_traits(path, ["S1", "S2", "S3"])

        assert traits.index.tolist() == ["S1", "S2", "S3"]
        assert traits["age"].tolist() == [20, 30, 40]

    def test_missing_sample(self, tmp_path):
        path = tmp_path / "traits.csv"
        path.write_text("sample,age\nS1,20\n")
        with pytest.raises(ValueError, match="S2"):
            load_sample_traits(path, ["S1", "S2"])

    def test_duplicated_sample(self, tmp_path):
        path = tmp_path / "traits.csv"
        path.write_text("sample,age\nS1,20\nS1,21\n")
        with pytest.raises(ValueError, match="Duplicated"):
            load_sample_traits(path, ["S1"])


class TestWriters:

    def test_power_report(self, small_matrix, tmp_path):
        report = CoexpressionPipeline().pick_soft_threshold(small_matrix, powers=[1, 2, 4])
        path = write_power_report(report, tmp_path / "nested" / "power_report.csv")

        frame = pd.read_csv(path, index_col="power")
        assert frame.index.tolist() == [1.0, 2.0, 4.0]
        assert "fit_index" in frame.columns
        assert "mean_connectivity" in frame.columns

    def test_power_report_type_checked(self, tmp_path):
        with pytest.raises(TypeError):
            write_power_report({"power": [1]}, tmp_path / "report.csv")

    def test_module_tables(self, small_result, small_matrix, tmp_path):
        assignments = pd.read_csv(
            write_module_assignments(small_result, tmp_path / "out" / "assignments.csv"),
            index_col=0,
        )
        sizes = pd.read_csv(write_module_sizes(small_result, tmp_path / "out" / "sizes.csv"))

        assert assignments.index.tolist() == small_matrix.gene_ids.tolist()
        assert assignments.columns.tolist() == ["deep_split_0", "deep_split_2"]
        assert sizes.columns.tolist() == ["deep_split", "module", "size"]
        assert sizes.groupby("deep_split")["size"].sum().tolist() == [small_matrix.n_genes] * 2

    def test_module_tables_need_assignments(self, small_matrix, tmp_path):
        result = CoexpressionPipeline().build_network(small_matrix, power=6)
        with pytest.raises(ValueError):
            write_module_assignments(result, tmp_path / "assignments.csv")
        with pytest.raises(ValueError):
            write_module_sizes(result, tmp_path / "sizes.csv")

    def test_dendrogram(self, small_result, small_matrix, tmp_path):
        merge_path, leaves_path = write_dendrogram(
            small_result.dendrogram, tmp_path / "tree" / "dendrogram.csv"
        )

        assert leaves_path.name == "dendrogram_leaves.csv"
        merges = pd.read_csv(merge_path, index_col="merge")
        leaves = pd.read_csv(leaves_path)

        assert len(merges) == small_matrix.n_genes - 1
        assert merges.columns.tolist() == ["left", "right", "height", "size"]
        assert merges["size"].iloc[-1] == small_matrix.n_genes
        assert leaves.columns.tolist() == ["position", "leaf", "gene_id"]
        assert sorted(leaves["gene_id"]) == sorted(small_matrix.gene_ids)
