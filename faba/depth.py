from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd

from .bam import COMBINED, check_bam_index, open_bam
from .gff import NAME_KEYS, read_gff, subset
from .output import write_table
from .parallel import imap_jobs

logger = logging.getLogger(__name__)

DEPTH_COLUMNS = ["chrom", "start", "end", "strand", "feature", "name", "sample", "sense", "antisense"]


@dataclass(frozen=True)
class FeatureTask:
    bam_file: str
    index_file: str
    chrom: str
    start: int  # 0-based
    end: int  # exclusive
    strand: str
    feature: str
    name: str
    cell_barcode_tag: Optional[str] = None


def _count_feature(task: FeatureTask) -> List[tuple]:
    """Sense/antisense read counts over one feature; unstranded features count everything as sense.

    A feature without reads (or on a contig missing from the BAM) gives one zero row
    for the combined sample.
    """
    reader = open_bam(task.bam_file, task.index_file)
    counts: Dict[str, List[int]] = {}
    if task.chrom not in reader.references or task.end <= task.start:
        records = []
    else:
        records = reader.fetch(task.chrom, task.start, task.end)

    for rec in records:
        if rec.is_duplicate or rec.is_unmapped:
            continue
        sample = str(COMBINED)
        if task.cell_barcode_tag and rec.has_tag(task.cell_barcode_tag):
            sample = str(rec.get_tag(task.cell_barcode_tag))

        read_strand = "-" if rec.is_reverse else "+"
        sense = task.strand == "." or read_strand == task.strand
        c = counts.setdefault(sample, [0, 0])
        c[0 if sense else 1] += 1

    if not counts:
        counts[str(COMBINED)] = [0, 0]

    return [
        (task.chrom, task.start, task.end, task.strand, task.feature, task.name, sample, s, a)
        for sample, (s, a) in counts.items()
    ]


def run_depth(
    bam_file: str,
    gff: str,
    output: Optional[str] = None,
    feature: str = "gene",
    bai_file: Optional[str] = None,
    seqname: Optional[str] = None,
    lb: Optional[int] = None,
    ub: Optional[int] = None,
    cell_barcode_tag: Optional[str] = None,
    threads: Optional[int] = 1,
) -> pd.DataFrame:
    """Strand-specific read depth for every `feature` record of the GFF.

    With cell_barcode_tag, counts are reported per cell barcode ('.' for untagged reads).
    """
    index_file = check_bam_index(bam_file, bai_file)
    records = subset(read_gff(gff), feature, seqname=seqname, lb=lb, ub=ub)
    logger.info("Counting reads over %d '%s' features", len(records), feature)

    tasks = [
        FeatureTask(
            bam_file=bam_file,
            index_file=index_file,
            chrom=r.seqname,
            start=max(r.start - 1, 0),
            end=r.end,
            strand=r.strand,
            feature=r.feature_type,
            name=r.name(NAME_KEYS),
            cell_barcode_tag=cell_barcode_tag,
        )
        for r in records
    ]

    rows: List[tuple] = []
    # no progress bar when the table itself goes to the terminal
    desc = "depth" if output is not None else None
    for feature_rows in imap_jobs(_count_feature, tasks, threads, desc=desc):
        rows.extend(feature_rows)

    df = pd.DataFrame(rows, columns=DEPTH_COLUMNS)
    df = df.sort_values(["chrom", "start", "end", "strand", "name", "sample"]).reset_index(drop=True)

    path = write_table(df, output, "depth.tsv.gz")
    if path is not None:
        logger.info("Wrote %s", path)
    return df
