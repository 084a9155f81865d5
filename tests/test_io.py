import pandas as pd
import pytest

from tsr_explorer import (
    TSRExperiment,
    as_interval_frame,
    read_gtf,
    read_sample_sheet,
    read_tsr_table,
    read_tss_table,
    write_table,
)


def test_read_gtf_converts_to_zero_based(gtf_path):
    gtf = read_gtf(gtf_path)
    gene_a = gtf[(gtf["feature"] == "gene") & (gtf["gene_id"] == "geneA")].iloc[0]
    assert (gene_a["start"], gene_a["end"]) == (1000, 2000)
    exons = gtf[gtf["feature"] == "exon"]
    assert set(exons["transcript_id"]) == {"txA", "txB"}
    assert "attributes" not in gtf.columns


def test_read_gtf_accepts_gff3_ids(tmp_path):
    path = tmp_path / "genes.gff3"
    path.write_text(
        "chr1\tt\tgene\t101\t300\t.\t+\t.\tID=g1;Name=G1\n"
        "chr1\tt\tmRNA\t101\t300\t.\t+\t.\tID=t1;Parent=g1\n"
        "chr1\tt\texon\t101\t300\t.\t+\t.\tParent=t1\n"
    )
    gtf = read_gtf(path)
    exon = gtf[gtf["feature"] == "exon"].iloc[0]
    assert exon["transcript_id"] == "t1"
    assert exon["gene_id"] == "g1"
    assert "transcript" in set(gtf["feature"])


def test_read_tss_table_ctss_is_one_based(tmp_path):
    path = tmp_path / "s1.ctss"
    path.write_text("chr1\t100\t+\t5\nchr1\t50\t-\t2\n")
    tss = read_tss_table(path)
    assert list(tss.columns) == ["chrom", "start", "end", "strand", "score"]
    assert tss["start"].tolist() == [49, 99]
    assert (tss["end"] - tss["start"]).eq(1).all()


def test_read_bed_tables(tmp_path):
    path = tmp_path / "s1.bed"
    path.write_text("chr1\t99\t100\t.\t5\t+\nchr2\t10\t11\t.\t1\t-\n")
    assert read_tss_table(path)["score"].tolist() == [5.0, 1.0]
    tsr_path = tmp_path / "s1_tsr.bed"
    tsr_path.write_text("chr1\t90\t130\t.\t12\t+\n")
    tsr = read_tsr_table(tsr_path)
    assert tsr.loc[0, ["start", "end"]].tolist() == [90, 130]


def test_as_interval_frame_validates():
    bad = pd.DataFrame({"chrom": ["chr1"], "start": [10], "end": [11], "strand": ["."]})
    with pytest.raises(ValueError, match="Strand"):
        as_interval_frame(bad)
    with pytest.raises(ValueError, match="missing"):
        as_interval_frame(bad.drop(columns="strand"))
    ok = as_interval_frame(bad.assign(strand="+"))
    assert ok["score"].tolist() == [1.0]


def test_sample_sheet_resolves_paths_and_loads_experiment(tmp_path):
    (tmp_path / "a.ctss").write_text("chr1\t100\t+\t5\n")
    (tmp_path / "b.bed").write_text("chr1\t90\t130\t.\t12\t+\n")
    sheet_path = tmp_path / "samples.tsv"
    pd.DataFrame(
        {
            "sample_name": ["A", "B"],
            "file_1": ["a.ctss", "b.bed"],
            "condition": ["ctrl", "ctrl"],
            "data_type": ["tss", "tsr"],
        }
    ).to_csv(sheet_path, sep="\t", index=False)

    sheet = read_sample_sheet(sheet_path)
    assert sheet.index.tolist() == ["A", "B"]
    assert sheet.loc["A", "file_1"] == str(tmp_path / "a.ctss")

    exp = TSRExperiment.from_sample_sheet(sheet_path)
    assert exp.samples("tss") == ["A"]
    assert exp.samples("tsr") == ["B"]


def test_sample_sheet_rejects_duplicates(tmp_path):
    path = tmp_path / "samples.csv"
    pd.DataFrame({"sample_name": ["A", "A"], "file_1": ["x", "y"]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="duplicated"):
        read_sample_sheet(path)


def test_write_table_creates_directories(tmp_path):
    out = write_table(pd.DataFrame({"a": [1]}), tmp_path / "nested" / "t.tsv")
    assert out.read_text().splitlines() == ["a", "1"]
