import numpy as np
import pandas as pd
import pytest

from tsr_explorer import (
    CountSet,
    annotate_differential_tsrs,
    classify_changes,
    differential_expression,
    export_for_enrichment,
    fit_de_model,
    tsr_explorer,
)


@pytest.fixture(scope="module")
def results(de_counts):
    counts, groups = de_counts
    exp = tsr_explorer()
    exp.counts["tsr"] = CountSet(raw_matrix=counts)
    fit = fit_de_model(exp, "tsr", groups=groups)
    return differential_expression(fit, "tsr", compare_groups=["a", "b"])


def test_differential_table_layout(results):
    assert list(results.columns) == [
        "chrom", "start", "end", "strand", "log2FC", "logCPM", "F", "PValue", "FDR",
    ]
    assert results.loc[0, ["chrom", "start", "end", "strand"]].tolist() == ["chr1", 0, 50, "+"]
    assert (results["FDR"] >= results["PValue"] - 1e-12).all()


def test_simulated_increases_are_called(results):
    change = classify_changes(results)
    called_up = set(results.index[change == "Increased"])
    assert len(called_up & set(range(20))) >= 17
    assert len(called_up - set(range(20))) <= 3


def test_feature_tables_use_gene_id(de_counts):
    counts, groups = de_counts
    counts = counts.iloc[:60].copy()
    counts.index = pd.Index([f"gene{i}" for i in range(60)], name="feature_id")
    exp = tsr_explorer()
    exp.counts["features"] = CountSet(raw_matrix=counts)
    fit = fit_de_model(exp, "features", groups=groups)
    table = differential_expression(fit, compare_groups=[1, 2])
    assert table.columns[0] == "gene_id"
    assert table["gene_id"].iloc[0] == "gene0"


def test_classify_changes_cutoffs():
    t = pd.DataFrame({"log2FC": [2.0, -3.0, 0.5, 2.0, 1.0], "FDR": [0.01, 0.01, 0.01, 0.2, 0.05]})
    change = classify_changes(t)
    assert change.tolist() == ["Increased", "Decreased", "Unchanged", "Unchanged", "Increased"]
    assert list(change.cat.categories) == ["Decreased", "Unchanged", "Increased"]
    custom = classify_changes(t, labels=("down", "same", "up"))
    assert custom.iloc[1] == "down"


def test_annotate_and_export(gene_model):
    table = pd.DataFrame(
        {
            "chrom": ["chr1", "chr1", "chr1"],
            "start": [990, 5980, 3000],
            "end": [1010, 6010, 3010],
            "strand": ["+", "-", "+"],
            "log2FC": [2.5, -1.5, 0.2],
            "FDR": [0.001, 0.01, 0.9],
        }
    )
    annotated = annotate_differential_tsrs(table, gene_model)
    assert annotated["annotation"].tolist() == ["Promoter", "Promoter", "Downstream"]
    assert annotated["distance_to_tss"].iloc[0] == 0

    export = export_for_enrichment(annotated)
    assert export.to_dict("list") == {
        "gene_id": ["geneA", "geneB"],
        "log2FC": [2.5, -1.5],
        "FDR": [0.001, 0.01],
        "change": ["increase", "decrease"],
    }
    with pytest.raises(KeyError):
        export_for_enrichment(table)
