from __future__ import annotations

import logging
import multiprocessing as mp
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

import pysam
from pysam.utils import SamtoolsError

from .errors import BamIndexError
from .utils import Interval, make_intervals

logger = logging.getLogger(__name__)

ChromJobs = List[Tuple[str, List[Interval]]]


@dataclass(frozen=True)
class BamSample:
    """Sample a read is counted under: a cell barcode, or the combined pool (barcode=None)."""

    barcode: Optional[str] = None

    @property
    def is_combined(self) -> bool:
        return self.barcode is None

    def __str__(self) -> str:
        return "." if self.barcode is None else self.barcode


COMBINED = BamSample()


def check_bam_index(bam_file: str, index_file: Optional[str] = None, threads: Optional[int] = None) -> str:
    """Return the BAI path for bam_file, building it when it does not exist yet.

    index_file defaults to <bam_file>.bai.
    """
    idx = index_file or f"{bam_file}.bai"
    if Path(idx).exists():
        return idx

    if not Path(bam_file).exists():
        raise BamIndexError(f"BAM file not found: {bam_file}")

    ncore = threads if threads and threads > 0 else mp.cpu_count()
    logger.info("Creating a new index file %s using %d cores", idx, ncore)
    try:
        pysam.index("-@", str(ncore), bam_file, idx)
    except SamtoolsError as e:
        raise BamIndexError(f"failed to generate index for: {bam_file}") from e
    return idx


@lru_cache(maxsize=8)
def open_bam(bam_file: str, index_file: str) -> pysam.AlignmentFile:
    """Cached indexed reader per process (cleared in pool workers)."""
    return pysam.AlignmentFile(bam_file, "rb", index_filename=index_file)


def chromosome_jobs(bam_file: str, block_size: int) -> ChromJobs:
    """[(chrom, [(lb, ub), ...]), ...] following the BAM header order."""
    jobs: ChromJobs = []
    with pysam.AlignmentFile(bam_file, "rb") as br:
        for name, length in zip(br.references, br.lengths):
            jobs.append((str(name), make_intervals(int(length), block_size)))
    return jobs
