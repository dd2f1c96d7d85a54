from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from .constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CELL_BARCODE_TAG,
    DEFAULT_MAF_CUTOFF,
    DEFAULT_MIN_COVERAGE,
    DEFAULT_PSEUDOCOUNT,
    DNA_BASES,
)
from .genome import ReferenceGenome
from .output import write_table
from .sifter import BamSifter
from .stats import is_discordant, local_bayes_factor, major_allele

logger = logging.getLogger(__name__)

KEYS = ["chrom", "pos", "strand", "sample"]
FG_COLS = [f"fg_{b}" for b in DNA_BASES]
BG_COLS = [f"bg_{b}" for b in DNA_BASES]
SITE_COLUMNS = (
    ["chrom", "start", "end", "strand", "sample"]
    + FG_COLS
    + BG_COLS
    + ["fg_major", "fg_maf", "bg_major", "bg_maf", "score"]
)


def merge_statistics(fg: pd.DataFrame, bg: pd.DataFrame) -> pd.DataFrame:
    """Outer-join fg/bg long tables on (chrom, pos, strand, sample); missing counts -> 0."""
    fg = fg.rename(columns={b: f"fg_{b}" for b in DNA_BASES})
    bg = bg.rename(columns={b: f"bg_{b}" for b in DNA_BASES})
    merged = fg.merge(bg, on=KEYS, how="outer")
    merged[FG_COLS + BG_COLS] = merged[FG_COLS + BG_COLS].fillna(0.0)
    merged["pos"] = merged["pos"].astype(np.int64)
    return merged.sort_values(KEYS).reset_index(drop=True)


def score_sites(
    merged: pd.DataFrame,
    min_coverage: int = DEFAULT_MIN_COVERAGE,
    maf_cutoff: float = DEFAULT_MAF_CUTOFF,
    pseudocount: float = DEFAULT_PSEUDOCOUNT,
    min_score: Optional[float] = None,
) -> pd.DataFrame:
    """Keep covered, discordant sites and attach the local Bayes factor score.

    A site needs coverage in both libraries and fg + bg coverage >= min_coverage;
    it is dropped when both sides agree on a major allele above maf_cutoff.
    """
    fg = merged[FG_COLS].to_numpy(dtype=np.float64)
    bg = merged[BG_COLS].to_numpy(dtype=np.float64)
    fg_tot = fg.sum(axis=1)
    bg_tot = bg.sum(axis=1)

    keep = (fg_tot + bg_tot >= min_coverage) & (fg_tot > 0) & (bg_tot > 0)
    df = merged.loc[keep].copy()
    fg, bg = fg[keep], bg[keep]

    fg_major, fg_maf = major_allele(fg)
    bg_major, bg_maf = major_allele(bg)
    df["fg_major"] = fg_major
    df["fg_maf"] = fg_maf
    df["bg_major"] = bg_major
    df["bg_maf"] = bg_maf
    df["score"] = local_bayes_factor(fg, bg, a0=pseudocount)

    disc = is_discordant(fg_major, fg_maf, bg_major, bg_maf, cutoff=maf_cutoff)
    df = df.loc[disc]
    if min_score is not None:
        df = df.loc[df["score"] >= min_score]

    df = df.rename(columns={"pos": "start"})
    df.insert(df.columns.get_loc("start") + 1, "end", df["start"] + 1)
    return df[SITE_COLUMNS].reset_index(drop=True)


def annotate_reference(sites: pd.DataFrame, genome: ReferenceGenome, flank: int = 2) -> pd.DataFrame:
    """Add strand-oriented reference base and +/- flank context."""
    refs: List[str] = []
    contexts: List[str] = []
    for chrom, start, strand in zip(sites["chrom"], sites["start"], sites["strand"]):
        if not genome.has_chrom(chrom):
            refs.append("N")
            contexts.append("N" * (2 * flank + 1))
            continue
        ctx = genome.base_context(chrom, int(start), strand=strand, flank=flank)
        refs.append(ctx[flank])
        contexts.append(ctx)
    out = sites.copy()
    out["ref"] = refs
    out["context"] = contexts
    return out


def search_case_control(
    fg_bam: str,
    bg_bam: str,
    fg_bai: Optional[str] = None,
    bg_bai: Optional[str] = None,
    threads: Optional[int] = 1,
    block_size: Optional[int] = DEFAULT_BLOCK_SIZE,
    output: Optional[str] = None,
    fasta: Optional[str] = None,
    cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
    umi_tag: Optional[str] = None,
    min_coverage: int = DEFAULT_MIN_COVERAGE,
    maf_cutoff: float = DEFAULT_MAF_CUTOFF,
    pseudocount: float = DEFAULT_PSEUDOCOUNT,
    min_score: Optional[float] = None,
) -> pd.DataFrame:
    """Sift fg/bg BAM files for candidate sites that differ between the two.

    Candidates are a starting pool, not calls: `aggregate` can revisit them all,
    regardless of score, to collect sufficient statistics for further tests.
    """
    logger.info("Establishing BAM file sifters...")
    sifter_fg = BamSifter.from_file(fg_bam, fg_bai, block_size, cell_barcode_tag, umi_tag)
    sifter_bg = BamSifter.from_file(bg_bam, bg_bai, block_size, cell_barcode_tag, umi_tag)

    logger.info("Searching for variable positions")
    sifter_fg.sweep_variable_positions(workers=threads)
    sifter_bg.sweep_variable_positions(workers=threads)

    # each library is revisited at the other's variable positions too
    sifter_bg.add_missing_positions(sifter_fg)
    sifter_fg.add_missing_positions(sifter_bg)

    logger.info("Collecting sufficient statistics")
    stat_fg = sifter_fg.populate_statistics(workers=threads)
    stat_bg = sifter_bg.populate_statistics(workers=threads)

    sites = score_sites(
        merge_statistics(stat_fg, stat_bg),
        min_coverage=min_coverage,
        maf_cutoff=maf_cutoff,
        pseudocount=pseudocount,
        min_score=min_score,
    )
    logger.info("Found %d candidate site/sample rows", len(sites))

    if fasta is not None:
        sites = annotate_reference(sites, ReferenceGenome(str(Path(fasta))))

    path = write_table(sites, output, "sites.tsv.gz")
    if path is not None:
        logger.info("Wrote %s", path)
    return sites
