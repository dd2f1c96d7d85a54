from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.special import gammaln

from .constants import DEFAULT_MAF_CUTOFF, DEFAULT_PSEUDOCOUNT, DNA_BASES


def dm_log_marginal(counts, a0: float = DEFAULT_PSEUDOCOUNT):
    """Log marginal likelihood of (..., K) counts under a symmetric Dirichlet(a0) multinomial.

    The multinomial coefficient is left out; it cancels in the Bayes factor.
    """
    counts = np.asarray(counts, dtype=np.float64)
    k = counts.shape[-1]
    n = counts.sum(axis=-1)
    return (
        gammaln(k * a0)
        - gammaln(n + k * a0)
        + (gammaln(counts + a0) - gammaln(a0)).sum(axis=-1)
    )


def local_bayes_factor(fg: np.ndarray, bg: np.ndarray, a0: float = DEFAULT_PSEUDOCOUNT) -> np.ndarray:
    """Log Bayes factor for fg and bg having different base compositions.

    Separate Dirichlet-multinomials for fg and bg against one pooled model.
    fg, bg: (..., 4) count arrays in A,T,G,C order; returns shape (...,).
    Zero at no coverage, positive when the libraries disagree.
    """
    fg = np.asarray(fg, dtype=np.float64)
    bg = np.asarray(bg, dtype=np.float64)
    if fg.shape != bg.shape:
        raise ValueError(f"Shape mismatch: fg={fg.shape}, bg={bg.shape}")
    if fg.shape[-1] != len(DNA_BASES):
        raise ValueError(f"Expected (..., 4) counts, got {fg.shape}")

    return dm_log_marginal(fg, a0) + dm_log_marginal(bg, a0) - dm_log_marginal(fg + bg, a0)


def major_allele(counts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """(major base letters, major frequency) for (n, 4) counts.

    Uncovered rows give '' and NaN. Ties resolve to the later base in A,T,G,C.
    """
    counts = np.asarray(counts, dtype=np.float64)
    tot = counts.sum(axis=1)
    # argmax on the reversed columns picks the last maximum
    idx = counts.shape[1] - 1 - np.argmax(counts[:, ::-1], axis=1)
    top = counts[np.arange(counts.shape[0]), idx]

    letters = np.asarray(DNA_BASES)[idx].astype(object)
    freq = np.full(counts.shape[0], np.nan)
    covered = tot > 0
    freq[covered] = top[covered] / tot[covered]
    letters[~covered] = ""
    return letters, freq


def is_discordant(
    fg_major: np.ndarray,
    fg_maf: np.ndarray,
    bg_major: np.ndarray,
    bg_maf: np.ndarray,
    cutoff: float = DEFAULT_MAF_CUTOFF,
) -> np.ndarray:
    """True unless both sides agree on a confidently dominant major allele."""
    with np.errstate(invalid="ignore"):
        concordant = (fg_major == bg_major) & (fg_maf > cutoff) & (bg_maf > cutoff)
    return ~concordant
