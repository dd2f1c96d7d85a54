import numpy as np
import pandas as pd
import pytest

from faba.compare import BG_COLS, FG_COLS, SITE_COLUMNS, merge_statistics, score_sites, search_case_control
from faba.sifter import STAT_COLUMNS


def merged_frame(rows):
    """rows: (pos, fg counts, bg counts) on chr1 '+' for the combined sample."""
    data = [["chr1", pos, "+", ".", *fg, *bg] for pos, fg, bg in rows]
    return pd.DataFrame(data, columns=["chrom", "pos", "strand", "sample"] + FG_COLS + BG_COLS)


def test_merge_statistics_fills_missing_side():
    fg = pd.DataFrame([["chr1", 5, "+", ".", 1, 0, 2, 0]], columns=STAT_COLUMNS)
    bg = pd.DataFrame([["chr1", 9, "-", ".", 0, 4, 0, 0]], columns=STAT_COLUMNS)
    m = merge_statistics(fg, bg)
    assert m["pos"].tolist() == [5, 9]
    assert m.loc[0, BG_COLS].tolist() == [0, 0, 0, 0]
    assert m.loc[1, FG_COLS].tolist() == [0, 0, 0, 0]
    assert m.loc[1, "bg_T"] == 4


def test_score_sites_filters():
    merged = merged_frame(
        [
            (10, (0, 0, 5, 0), (5, 0, 0, 0)),  # discordant
            (11, (5, 0, 0, 0), (5, 0, 0, 0)),  # concordant
            (12, (1, 0, 0, 0), (0, 0, 0, 0)),  # no background coverage
            (13, (1, 0, 0, 0), (0, 0, 1, 0)),  # discordant, coverage 2
        ]
    )
    sites = score_sites(merged)
    assert list(sites.columns) == SITE_COLUMNS
    assert sites["start"].tolist() == [10, 13]
    assert sites["end"].tolist() == [11, 14]
    assert sites["fg_major"].tolist() == ["G", "A"]
    assert sites["bg_major"].tolist() == ["A", "G"]
    assert sites.loc[0, "score"] > 0

    assert score_sites(merged, min_coverage=3)["start"].tolist() == [10]
    assert score_sites(merged, min_score=1e6).empty


def test_score_sites_maf_cutoff():
    merged = merged_frame([(10, (8, 0, 2, 0), (10, 0, 0, 0))])
    assert len(score_sites(merged, maf_cutoff=0.9)) == 1
    assert score_sites(merged, maf_cutoff=0.7).empty


def test_search_case_control(fg_bam, bg_bam, tmp_path):
    header = str(tmp_path / "out" / "run")
    sites = search_case_control(fg_bam, bg_bam, threads=1, block_size=100, output=header)

    assert sites[["chrom", "start", "end", "strand", "sample"]].values.tolist() == [
        ["chr1", 104, 105, "+", "cell1"],
        ["chr1", 104, 105, "+", "cell2"],
    ]
    assert sites.loc[0, FG_COLS].tolist() == [1, 0, 1, 0]
    assert sites.loc[0, BG_COLS].tolist() == [3, 0, 0, 0]
    assert sites.loc[0, "fg_major"] == "G"
    assert sites.loc[0, "fg_maf"] == pytest.approx(0.5)
    assert sites.loc[1, "bg_maf"] == pytest.approx(1.0)
    assert np.isfinite(sites["score"]).all()

    written = pd.read_csv(header + ".sites.tsv.gz", sep="\t")
    assert list(written.columns) == SITE_COLUMNS
    assert len(written) == 2


def test_search_case_control_pooled_with_reference(fg_bam, bg_bam, fasta_file):
    sites = search_case_control(fg_bam, bg_bam, block_size=100, fasta=fasta_file, cell_barcode_tag=None)
    assert len(sites) == 1
    row = sites.iloc[0]
    assert row["sample"] == "."
    assert row[FG_COLS].tolist() == [1, 0, 2, 0]
    assert row[BG_COLS].tolist() == [4, 0, 0, 0]
    assert row["ref"] == "A"
    assert row["context"] == "GTACG"
