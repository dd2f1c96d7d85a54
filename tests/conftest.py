"""
Shared fixtures: tiny indexed BAM files, a GTF and a FASTA built in tmp_path.

Reference: chr1 = "ACGT" * 250, chr2 = "TTGCA" * 100.

Foreground reads at chr1:100-110 carry an A>G change at position 104
(two cells), background reads are all reference.
"""

import gzip
from pathlib import Path
from typing import Dict, List

import pysam
import pytest

from faba.config import get_settings

CHR1 = "ACGT" * 250
CHR2 = "TTGCA" * 100
CHROMS = (("chr1", len(CHR1)), ("chr2", len(CHR2)))

REF_READ = "ACGTACGTAC"  # CHR1[100:110] and CHR1[200:210]
EDITED_READ = "ACGTGCGTAC"  # A>G at position 104

FG_READS: List[Dict] = [
    dict(name="f1", pos=100, seq=REF_READ, tags={"CB": "cell1", "UB": "u1"}),
    dict(name="f2", pos=100, seq=EDITED_READ, tags={"CB": "cell1", "UB": "u2"}),
    dict(name="f3", pos=100, seq=EDITED_READ, tags={"CB": "cell2", "UB": "u3"}),
    dict(name="f4", pos=100, seq=EDITED_READ, dup=True, tags={"CB": "cell1", "UB": "u4"}),
    dict(name="f5", pos=200, seq=REF_READ, reverse=True, tags={"CB": "cell1", "UB": "u5"}),
    dict(name="f6", pos=200, seq=REF_READ, reverse=True),
]

BG_READS: List[Dict] = [
    dict(name="b1", pos=100, seq=REF_READ, tags={"CB": "cell1", "UB": "v1"}),
    dict(name="b2", pos=100, seq=REF_READ, tags={"CB": "cell1", "UB": "v2"}),
    dict(name="b3", pos=100, seq=REF_READ, tags={"CB": "cell1", "UB": "v3"}),
    dict(name="b4", pos=100, seq=REF_READ, tags={"CB": "cell2", "UB": "v4"}),
    dict(name="b5", pos=200, seq=REF_READ, reverse=True, tags={"CB": "cell1", "UB": "v5"}),
]

GTF_LINES = [
    "#!genome-build test",
    'chr1\ttest\tgene\t90\t120\t.\t+\t.\tgene_id "g1"; gene_name "geneA";',
    'chr1\ttest\texon\t100\t110\t.\t+\t0\tgene_id "g1"; gene_name "geneA"; exon_number "1";',
    'chr1\ttest\tgene\t190\t215\t.\t-\t.\tgene_id "g2"; gene_name "geneB";',
    'chr2\ttest\tgene\t1\t50\t.\t.\t.\tgene_id "g3";',
]


def write_bam(path: Path, reads: List[Dict], index: bool = True) -> str:
    """Write reads (dicts with name/pos/seq and optional chrom/reverse/dup/cigar/tags) as a sorted BAM."""
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in CHROMS],
    }
    ref_ids = {name: i for i, (name, _) in enumerate(CHROMS)}
    ordered = sorted(reads, key=lambda r: (ref_ids[r.get("chrom", "chr1")], r["pos"]))

    with pysam.AlignmentFile(str(path), "wb", header=header) as out:
        for r in ordered:
            a = pysam.AlignedSegment(out.header)
            a.query_name = r["name"]
            a.query_sequence = r["seq"]
            a.flag = (16 if r.get("reverse") else 0) | (1024 if r.get("dup") else 0)
            a.reference_id = ref_ids[r.get("chrom", "chr1")]
            a.reference_start = r["pos"]
            a.mapping_quality = 60
            a.cigarstring = r.get("cigar", f"{len(r['seq'])}M")
            a.query_qualities = pysam.qualitystring_to_array("I" * len(r["seq"]))
            for tag, value in r.get("tags", {}).items():
                a.set_tag(tag, value, value_type="Z")
            out.write(a)

    if index:
        pysam.index(str(path))
    return str(path)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Every test starts from default settings."""
    for name in (
        "FABA_LOG_LEVEL",
        "FABA_THREADS",
        "FABA_BLOCK_SIZE",
        "FABA_CELL_BARCODE_TAG",
        "FABA_UMI_TAG",
        "FABA_MIN_COVERAGE",
        "FABA_MAF_CUTOFF",
        "FABA_PSEUDOCOUNT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_bam(tmp_path):
    def _make(name: str, reads: List[Dict], index: bool = True) -> str:
        return write_bam(tmp_path / name, reads, index=index)

    return _make


@pytest.fixture
def fg_bam(make_bam) -> str:
    return make_bam("fg.bam", FG_READS)


@pytest.fixture
def bg_bam(make_bam) -> str:
    return make_bam("bg.bam", BG_READS)


@pytest.fixture
def gtf_file(tmp_path) -> str:
    p = tmp_path / "genes.gtf"
    p.write_text("\n".join(GTF_LINES) + "\n")
    return str(p)


@pytest.fixture
def gtf_gz_file(tmp_path) -> str:
    p = tmp_path / "genes.gtf.gz"
    with gzip.open(p, "wt") as f:
        f.write("\n".join(GTF_LINES) + "\n")
    return str(p)


@pytest.fixture
def fasta_file(tmp_path) -> str:
    p = tmp_path / "ref.fa"
    with open(p, "w") as f:
        for name, seq in (("chr1", CHR1), ("chr2", CHR2)):
            f.write(f">{name}\n")
            for i in range(0, len(seq), 60):
                f.write(seq[i : i + 60] + "\n")
    return str(p)
