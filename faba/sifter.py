from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from .bam import ChromJobs, check_bam_index, chromosome_jobs, open_bam
from .constants import DEFAULT_BLOCK_SIZE, DEFAULT_CELL_BARCODE_TAG, DNA_BASES, STRANDS
from .dna import get_dna_base_freq
from .errors import EmptyRegionError
from .parallel import imap_jobs
from .rules import BaseFilters

logger = logging.getLogger(__name__)

PositionMap = Dict[str, Set[int]]  # chrom -> 0-based positions
STAT_COLUMNS = ["chrom", "pos", "strand", "sample", *DNA_BASES]


@dataclass(frozen=True)
class BlockTask:
    """One genomic block of one BAM file; picklable for pool workers."""

    bam_file: str
    index_file: str
    chrom: str
    lb: int
    ub: int
    cell_barcode_tag: Optional[str] = None
    umi_tag: Optional[str] = None
    forward_positions: Tuple[int, ...] = ()
    reverse_positions: Tuple[int, ...] = ()


def _freq_map(task: BlockTask):
    reader = open_bam(task.bam_file, task.index_file)
    return get_dna_base_freq(
        reader,
        task.chrom,
        task.lb,
        task.ub,
        cell_barcode_tag=task.cell_barcode_tag,
        umi_tag=task.umi_tag,
    )


def _sweep_block(task: BlockTask) -> Tuple[str, List[int], List[int]]:
    """Variable positions of one block, forward and reverse."""
    try:
        freq_map = _freq_map(task)
    except EmptyRegionError:
        return task.chrom, [], []

    base_filter = BaseFilters()
    pos = freq_map.positions()
    forward: Set[int] = set()
    reverse: Set[int] = set()
    for samp in freq_map.samples():
        forward.update(pos[base_filter.variable_mask(freq_map.get_forward(samp))].tolist())
        reverse.update(pos[base_filter.variable_mask(freq_map.get_reverse(samp))].tolist())
    return task.chrom, sorted(forward), sorted(reverse)


def _collect_block(task: BlockTask) -> List[tuple]:
    """Per-sample counts at the requested positions of one block (covered rows only)."""
    try:
        freq_map = _freq_map(task)
    except EmptyRegionError:
        return []

    rows: List[tuple] = []
    for strand, wanted in (("+", task.forward_positions), ("-", task.reverse_positions)):
        if not wanted:
            continue
        gpos = np.asarray(wanted, dtype=np.int64)
        idx = gpos - task.lb
        for samp in freq_map.samples():
            mat = freq_map.counts(samp, strand)[idx]
            covered = mat.sum(axis=1) > 0
            for p, c in zip(gpos[covered].tolist(), mat[covered].tolist()):
                rows.append((task.chrom, p, strand, str(samp), *c))
    return rows


def _empty_statistics() -> pd.DataFrame:
    df = pd.DataFrame({c: pd.Series(dtype="object") for c in STAT_COLUMNS})
    df["pos"] = df["pos"].astype(np.int64)
    for b in DNA_BASES:
        df[b] = df[b].astype(np.float64)
    return df


def collect_statistics(
    bam_file: str,
    index_file: str,
    forward: PositionMap,
    reverse: PositionMap,
    chrom_sizes: Dict[str, int],
    block_size: int = DEFAULT_BLOCK_SIZE,
    cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
    umi_tag: Optional[str] = None,
    workers: Optional[int] = 1,
) -> pd.DataFrame:
    """Revisit only blocks holding requested positions; long table of per-sample counts."""
    # chrom -> block lb -> strand -> positions
    grouped: Dict[str, Dict[int, Dict[str, List[int]]]] = defaultdict(
        lambda: defaultdict(lambda: {"+": [], "-": []})
    )
    for strand, pos_map in (("+", forward), ("-", reverse)):
        for chrom, positions in pos_map.items():
            if chrom not in chrom_sizes:
                logger.warning("Skipping %d %s-strand positions on %s: not in %s",
                               len(positions), strand, chrom, bam_file)
                continue
            size = chrom_sizes[chrom]
            for p in positions:
                if 0 <= p < size:
                    grouped[chrom][(p // block_size) * block_size][strand].append(p)

    tasks = []
    for chrom, blocks in grouped.items():
        size = chrom_sizes[chrom]
        for lb, by_strand in sorted(blocks.items()):
            tasks.append(
                BlockTask(
                    bam_file=bam_file,
                    index_file=index_file,
                    chrom=chrom,
                    lb=lb,
                    ub=min(size, lb + block_size),
                    cell_barcode_tag=cell_barcode_tag,
                    umi_tag=umi_tag,
                    forward_positions=tuple(sorted(set(by_strand["+"]))),
                    reverse_positions=tuple(sorted(set(by_strand["-"]))),
                )
            )

    rows: List[tuple] = []
    for block_rows in imap_jobs(_collect_block, tasks, workers, desc="statistics"):
        rows.extend(block_rows)

    if not rows:
        return _empty_statistics()
    df = pd.DataFrame(rows, columns=STAT_COLUMNS)
    return df.sort_values(["chrom", "pos", "strand", "sample"]).reset_index(drop=True)


class BamSifter:
    """Sift one BAM file for strand-specific variable positions and their statistics."""

    def __init__(
        self,
        bam_file: str,
        index_file: str,
        jobs: ChromJobs,
        block_size: int = DEFAULT_BLOCK_SIZE,
        cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
        umi_tag: Optional[str] = None,
    ):
        self.bam_file = bam_file
        self.index_file = index_file
        self.jobs = jobs
        self.block_size = block_size
        self.cell_barcode_tag = cell_barcode_tag
        self.umi_tag = umi_tag
        self.chrom_sizes: Dict[str, int] = {
            chrom: (blocks[-1][1] if blocks else 0) for chrom, blocks in jobs
        }
        self.forward_variable_map: PositionMap = {}
        self.reverse_variable_map: PositionMap = {}
        self.statistics: Optional[pd.DataFrame] = None

    @classmethod
    def from_file(
        cls,
        bam_file: str,
        bai_file: Optional[str] = None,
        block_size: Optional[int] = None,
        cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
        umi_tag: Optional[str] = None,
    ) -> "BamSifter":
        """
        Create a sifter for bam_file.

        * bai_file   - index file name (default: <bam_file>.bai, built if missing)
        * block_size - genomic block visited per job (default: 10000)
        """
        block_size = block_size or DEFAULT_BLOCK_SIZE
        jobs = chromosome_jobs(bam_file, block_size)
        index_file = check_bam_index(bam_file, bai_file)
        return cls(
            bam_file=bam_file,
            index_file=index_file,
            jobs=jobs,
            block_size=block_size,
            cell_barcode_tag=cell_barcode_tag,
            umi_tag=umi_tag,
        )

    def _task(self, chrom: str, lb: int, ub: int) -> BlockTask:
        return BlockTask(
            bam_file=self.bam_file,
            index_file=self.index_file,
            chrom=chrom,
            lb=lb,
            ub=ub,
            cell_barcode_tag=self.cell_barcode_tag,
            umi_tag=self.umi_tag,
        )

    def sweep_variable_positions(self, workers: Optional[int] = 1) -> None:
        """Collect positions where any sample shows two or more alleles, per strand."""
        tasks = [self._task(chrom, lb, ub) for chrom, blocks in self.jobs for (lb, ub) in blocks]

        forward: PositionMap = {chrom: set() for chrom, _ in self.jobs}
        reverse: PositionMap = {chrom: set() for chrom, _ in self.jobs}
        for chrom, fwd, rev in imap_jobs(_sweep_block, tasks, workers, desc=f"sweep {self.bam_file}"):
            forward[chrom].update(fwd)
            reverse[chrom].update(rev)

        self.forward_variable_map = forward
        self.reverse_variable_map = reverse
        logger.info(
            "%s: %d forward / %d reverse variable positions",
            self.bam_file,
            sum(len(v) for v in forward.values()),
            sum(len(v) for v in reverse.values()),
        )

    def get_forward_variable_positions(self) -> PositionMap:
        return self.forward_variable_map

    def get_reverse_variable_positions(self) -> PositionMap:
        return self.reverse_variable_map

    def add_missing_positions(self, other: "BamSifter") -> None:
        """Union the other sifter's variable positions into ours."""
        for mine, theirs in (
            (self.forward_variable_map, other.get_forward_variable_positions()),
            (self.reverse_variable_map, other.get_reverse_variable_positions()),
        ):
            for chrom, positions in theirs.items():
                mine.setdefault(chrom, set()).update(positions)

    def num_variable_positions(self, strand: Optional[str] = None) -> int:
        strands = STRANDS if strand is None else (strand,)
        n = 0
        for s in strands:
            pos_map = self.forward_variable_map if s == "+" else self.reverse_variable_map
            n += sum(len(v) for v in pos_map.values())
        return n

    def populate_statistics(self, workers: Optional[int] = 1) -> pd.DataFrame:
        """Per-sample counts at every variable position (see collect_statistics)."""
        self.statistics = collect_statistics(
            self.bam_file,
            self.index_file,
            self.forward_variable_map,
            self.reverse_variable_map,
            self.chrom_sizes,
            block_size=self.block_size,
            cell_barcode_tag=self.cell_barcode_tag,
            umi_tag=self.umi_tag,
            workers=workers,
        )
        return self.statistics
