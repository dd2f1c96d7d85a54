from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .constants import MAX_MAJOR_ALLELE_CUTOFF, MIN_MINOR_ALLELE_CUTOFF
from .dna import DnaBaseStat


@dataclass
class BaseFilters:
    """Simple per-position rules used while sifting BAM blocks."""

    max_major_allele_cutoff: float = MAX_MAJOR_ALLELE_CUTOFF
    min_minor_allele_cutoff: float = MIN_MINOR_ALLELE_CUTOFF

    def b_allele_frequency(self, stat: DnaBaseStat) -> float:
        bi = stat.bi_allelic_stat()
        return bi.n1 / max(bi.n1 + bi.n2, 1.0)

    def is_variable(self, stat: DnaBaseStat) -> bool:
        bi = stat.bi_allelic_stat()
        return bi.n1 > 0 and bi.n2 > 0

    def is_near_zero_variance(self, stat: DnaBaseStat) -> bool:
        maf = stat.major_allele_frequency()
        if maf is None:
            return True
        return maf[1] > self.max_major_allele_cutoff

    def variable_mask(self, counts: np.ndarray) -> np.ndarray:
        """is_variable over the rows of an (n, 4) count matrix."""
        if counts.shape[0] == 0:
            return np.zeros(0, dtype=bool)
        top2 = np.sort(counts, axis=1)[:, -2:]
        return (top2[:, 0] > 0) & (top2[:, 1] > 0)
