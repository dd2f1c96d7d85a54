import h5py
import numpy as np
import pandas as pd
import pytest

from faba.aggregate import (
    NO_FEATURE,
    FeatureIndex,
    annotate_features,
    feature_summary,
    read_sites,
    run_aggregate,
    sites_to_positions,
)
from faba.compare import search_case_control
from faba.errors import AnnotationError
from faba.gff import read_gff


def write_tsv(path, rows, columns):
    pd.DataFrame(rows, columns=columns).to_csv(path, sep="\t", index=False)
    return str(path)


def test_read_sites_dedups_and_sorts(tmp_path):
    path = write_tsv(
        tmp_path / "sites.tsv",
        [["chr2", 5, "-", "c1"], ["chr1", 9, "+", "c1"], ["chr1", 9, "+", "c2"]],
        ["chrom", "start", "strand", "sample"],
    )
    sites = read_sites(path)
    assert sites.values.tolist() == [["chr1", 9, "+"], ["chr2", 5, "-"]]

    forward, reverse = sites_to_positions(sites)
    assert forward == {"chr1": {9}}
    assert reverse == {"chr2": {5}}


def test_read_sites_rejects_bad_input(tmp_path):
    with pytest.raises(AnnotationError):
        read_sites(write_tsv(tmp_path / "a.tsv", [["chr1", 1]], ["chrom", "start"]))
    with pytest.raises(AnnotationError):
        read_sites(write_tsv(tmp_path / "b.tsv", [["chr1", 1, "."]], ["chrom", "start", "strand"]))


def test_annotate_features(gtf_file):
    sites = pd.DataFrame(
        [["chr1", 104, "+"], ["chr1", 104, "-"], ["chr1", 200, "-"], ["chr2", 10, "+"], ["chr1", 500, "+"]],
        columns=["chrom", "start", "strand"],
    )
    out = annotate_features(sites, FeatureIndex.from_records(read_gff(gtf_file)))
    assert out["feature"].tolist() == ["gene,exon", NO_FEATURE, "gene", "gene", NO_FEATURE]
    assert out["feature_name"].tolist() == ["geneA", ".", "geneB", "g3", "."]

    summary = feature_summary(out).set_index("feature")
    assert summary.loc["gene", "n_sites"] == 3
    assert summary.loc["exon", "n_sites"] == 1
    assert summary.loc[NO_FEATURE, "n_sites"] == 2
    assert summary.loc["gene", "fraction"] == pytest.approx(0.6)


def test_run_aggregate(fg_bam, bg_bam, gtf_file, tmp_path):
    header = str(tmp_path / "run")
    search_case_control(fg_bam, bg_bam, block_size=100, output=header)

    out = str(tmp_path / "agg")
    long = run_aggregate(
        header + ".sites.tsv.gz",
        fg_bam,
        bg_bam,
        out,
        gff=gtf_file,
        feature="gene",
        threads=1,
        block_size=100,
    )
    assert long["sample"].tolist() == ["cell1", "cell2"]
    assert long["feature"].tolist() == ["gene", "gene"]
    assert long["feature_name"].tolist() == ["geneA", "geneA"]

    with h5py.File(out + ".h5", "r") as f:
        assert f.attrs["bases"] == "A,T,G,C"
        assert f["samples"].asstr()[:].tolist() == ["cell1", "cell2"]
        assert f["sites/chrom"].asstr()[:].tolist() == ["chr1"]
        assert f["sites/start"][:].tolist() == [104]
        fg = f["fg/counts"][:]
        bg = f["bg/counts"][:]
    assert fg.shape == (1, 2, 4)
    np.testing.assert_array_equal(fg[0], [[1, 0, 1, 0], [0, 0, 1, 0]])
    np.testing.assert_array_equal(bg[0], [[3, 0, 0, 0], [1, 0, 0, 0]])

    summary = pd.read_csv(out + ".features.tsv", sep="\t")
    assert summary.values.tolist() == [["gene", 1, 1.0]]
    assert len(pd.read_csv(out + ".stats.tsv.gz", sep="\t")) == 2


def test_run_aggregate_without_annotation(fg_bam, bg_bam, tmp_path):
    sites = write_tsv(tmp_path / "sites.tsv", [["chr1", 205, "-"], ["chr1", 700, "+"]], ["chrom", "start", "strand"])
    out = str(tmp_path / "plain")
    long = run_aggregate(sites, fg_bam, bg_bam, out, cell_barcode_tag=None, block_size=100)

    assert long[["pos", "sample", "fg_C", "bg_C"]].values.tolist() == [[205, ".", 2, 1]]
    with h5py.File(out + ".h5", "r") as f:
        assert f["fg/counts"].shape == (2, 1, 4)
        # uncovered site stays zero
        assert f["fg/counts"][1].sum() == 0
