from __future__ import annotations

from typing import Dict, Tuple

DNA_BASES: Tuple[str, ...] = ("A", "T", "G", "C")
"""Column order of every base count matrix."""

BASE_INDEX: Dict[str, int] = {b: i for i, b in enumerate(DNA_BASES)}
BASE_INDEX.update({b.lower(): i for b, i in list(BASE_INDEX.items())})

DEFAULT_BLOCK_SIZE: int = 10_000
"""Genomic block (bp) visited per job."""

DEFAULT_PSEUDOCOUNT: float = 0.25
DEFAULT_MAF_CUTOFF: float = 0.9
DEFAULT_MIN_COVERAGE: int = 2

MAX_MAJOR_ALLELE_CUTOFF: float = 1.0 - 1e-4
MIN_MINOR_ALLELE_CUTOFF: float = 1e-4

DEFAULT_CELL_BARCODE_TAG = "CB"  # 10x cell barcode
DEFAULT_UMI_TAG = "UB"  # 10x corrected UMI

STRANDS: Tuple[str, str] = ("+", "-")
