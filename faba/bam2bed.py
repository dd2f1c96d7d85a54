from __future__ import annotations

import logging
from typing import List, Optional

import pandas as pd

from .bam import check_bam_index, open_bam
from .constants import DEFAULT_CELL_BARCODE_TAG, DNA_BASES
from .dna import get_dna_base_freq
from .errors import EmptyRegionError
from .output import write_table
from .utils import parse_region

logger = logging.getLogger(__name__)

BED_COLUMNS = ["chrom", "start", "end", "strand", "library", "sample", *DNA_BASES, "total"]


def region_frequency_table(
    bam_file: str,
    region: str,
    library: str,
    bai_file: Optional[str] = None,
    cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
    umi_tag: Optional[str] = None,
    keep_empty: bool = False,
) -> pd.DataFrame:
    """Per-position, per-strand, per-sample base counts over one region as BED rows."""
    chrom, lb, ub = parse_region(region)
    index_file = check_bam_index(bam_file, bai_file)
    reader = open_bam(bam_file, index_file)

    try:
        freq_map = get_dna_base_freq(reader, chrom, lb, ub, cell_barcode_tag=cell_barcode_tag, umi_tag=umi_tag)
    except EmptyRegionError:
        logger.warning("%s: no alignments in %s", bam_file, region)
        return pd.DataFrame(columns=BED_COLUMNS)

    rows: List[tuple] = []
    positions = freq_map.positions().tolist()
    for samp in freq_map.samples():
        for strand in ("+", "-"):
            mat = freq_map.counts(samp, strand)
            for g, c in zip(positions, mat.tolist()):
                tot = sum(c)
                if tot == 0 and not keep_empty:
                    continue
                rows.append((chrom, g, g + 1, strand, library, str(samp), *c, tot))

    df = pd.DataFrame(rows, columns=BED_COLUMNS)
    return df.sort_values(["chrom", "start", "strand", "sample"], kind="stable").reset_index(drop=True)


def run_bam2bed(
    fg_bam: str,
    bg_bam: str,
    region: str,
    output: Optional[str] = None,
    fg_bai: Optional[str] = None,
    bg_bai: Optional[str] = None,
    cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
    umi_tag: Optional[str] = None,
    keep_empty: bool = False,
) -> pd.DataFrame:
    """Dump fg and bg base frequencies over region side by side."""
    tables = [
        region_frequency_table(bam, region, lib, bai, cell_barcode_tag, umi_tag, keep_empty)
        for lib, bam, bai in (("fg", fg_bam, fg_bai), ("bg", bg_bam, bg_bai))
    ]
    df = pd.concat(tables, ignore_index=True)
    path = write_table(df, output, "bed.gz")
    if path is not None:
        logger.info("Wrote %s", path)
    return df
