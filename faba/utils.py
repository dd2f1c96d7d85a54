from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from .errors import InvalidRegionError

Interval = Tuple[int, int]  # (lb, ub), 0-based half-open

DNA_COMP = str.maketrans("ACGTNacgtn", "TGCANtgcan")

_region_re = re.compile(r"^\s*([^:\s]+):([\d,]+)-([\d,]+)\s*$")


def rc(seq: str) -> str:
    """Reverse-complement (DNA). Keeps N as N."""
    return seq.translate(DNA_COMP)[::-1]


def with_chr_prefix(chrom: str) -> str:
    c = str(chrom).strip()
    return c if c.lower().startswith("chr") else f"chr{c}"


def without_chr_prefix(chrom: str) -> str:
    c = str(chrom).strip()
    return c[3:] if c.lower().startswith("chr") else c


def make_intervals(max_size: int, block_size: int) -> List[Interval]:
    """Split [0, max_size) into consecutive blocks; the last block may be shorter."""
    if block_size <= 0:
        raise ValueError(f"block_size must be positive, got {block_size}")
    return [(lb, min(max_size, lb + block_size)) for lb in range(0, max_size, block_size)]


def paste(words: Sequence[str], indices: Sequence[int], sep: str) -> str:
    """Join words[indices] with sep. Out-of-range indices contribute an empty word."""
    picked = [words[j] if 0 <= j < len(words) else "" for j in indices]
    return sep.join(picked)


def parse_region(region: str) -> Tuple[str, int, int]:
    """Parse 'chr18:34304689-34304694' into (chrom, lb, ub)."""
    m = _region_re.match(region or "")
    if m is None:
        raise InvalidRegionError(f"Malformed region {region!r}; expected CHROM:LB-UB")
    chrom = m.group(1)
    lb = int(m.group(2).replace(",", ""))
    ub = int(m.group(3).replace(",", ""))
    if lb >= ub:
        raise InvalidRegionError(f"Empty region {region!r}: lb >= ub")
    return chrom, lb, ub
