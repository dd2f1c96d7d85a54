from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pysam

from .bam import COMBINED, BamSample
from .constants import BASE_INDEX, DNA_BASES
from .errors import EmptyRegionError, InvalidRegionError


class Dna(enum.IntEnum):
    """Bases in count-column order."""

    A = 0
    T = 1
    G = 2
    C = 3

    def __str__(self) -> str:
        return self.name


@dataclass
class BiAllele:
    a1: Dna
    a2: Dna
    n1: float
    n2: float


@dataclass
class DnaBaseStat:
    """A/T/G/C counts observed at one genomic position."""

    gpos: int
    data: np.ndarray = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = np.zeros(len(DNA_BASES), dtype=np.float32)
        else:
            self.data = np.asarray(self.data, dtype=np.float32)

    def position(self) -> int:
        return self.gpos

    def get(self, b: Dna) -> float:
        return float(self.data[b])

    def set(self, b: Dna, val: float) -> None:
        self.data[b] = val

    def add(self, b: Dna, val: float) -> None:
        self.data[b] += val

    def total(self) -> float:
        return float(self.data.sum())

    def _ranked(self) -> List[Tuple[Dna, float]]:
        # stable sort on count; among ties the later base ranks higher
        pairs = [(Dna(i), float(v)) for i, v in enumerate(self.data)]
        return sorted(pairs, key=lambda p: (p[1], int(p[0])), reverse=True)

    def most_frequent(self) -> Tuple[Dna, float]:
        return self._ranked()[0]

    def second_most_frequent(self) -> Tuple[Dna, float]:
        return self._ranked()[1]

    def bi_allelic_stat(self) -> BiAllele:
        (a1, n1), (a2, n2) = self._ranked()[:2]
        return BiAllele(a1=a1, a2=a2, n1=n1, n2=n2)

    def major_allele_frequency(self) -> Optional[Tuple[Dna, float]]:
        """(major allele, its share of coverage), or None without coverage."""
        tot = self.total()
        if tot <= 0:
            return None
        b, n = self.most_frequent()
        return b, n / tot


class DnaStatMap:
    """Per-sample forward/reverse base counts over one region [lb, ub).

    counts(sample, strand) is an (ub - lb, 4) float32 matrix; row i is lb + i.
    """

    def __init__(self, chrom: str, lb: int, ub: int):
        if lb >= ub:
            raise InvalidRegionError(f"lb >= ub: {chrom}:{lb}-{ub}")
        self.chrom = chrom
        self.lb = lb
        self.ub = ub
        self.forward: Dict[int, np.ndarray] = {}
        self.reverse: Dict[int, np.ndarray] = {}
        self.samp2id: Dict[BamSample, int] = {}
        self.id2samp: List[BamSample] = []

    def __len__(self) -> int:
        return self.ub - self.lb

    def has_sample(self, key: BamSample) -> bool:
        return key in self.samp2id

    def samples(self) -> List[BamSample]:
        return self.id2samp

    def new_sample(self, key: BamSample) -> None:
        if self.has_sample(key):
            return
        sid = len(self.id2samp)
        self.samp2id[key] = sid
        self.id2samp.append(key)
        self.forward[sid] = np.zeros((len(self), len(DNA_BASES)), dtype=np.float32)
        self.reverse[sid] = np.zeros((len(self), len(DNA_BASES)), dtype=np.float32)

    def get_forward(self, key: BamSample) -> Optional[np.ndarray]:
        sid = self.samp2id.get(key)
        return None if sid is None else self.forward[sid]

    def get_reverse(self, key: BamSample) -> Optional[np.ndarray]:
        sid = self.samp2id.get(key)
        return None if sid is None else self.reverse[sid]

    def counts(self, key: BamSample, strand: str) -> Optional[np.ndarray]:
        if strand == "-":
            return self.get_reverse(key)
        return self.get_forward(key)

    def positions(self) -> np.ndarray:
        return np.arange(self.lb, self.ub, dtype=np.int64)

    def base_stat(self, key: BamSample, strand: str, at: int) -> Optional[DnaBaseStat]:
        mat = self.counts(key, strand)
        if mat is None or not 0 <= at < len(self):
            return None
        return DnaBaseStat(gpos=self.lb + at, data=mat[at].copy())


def get_dna_base_freq(
    reader: pysam.AlignmentFile,
    chrom: str,
    lb: int,
    ub: int,
    cell_barcode_tag: Optional[str] = None,
    umi_tag: Optional[str] = None,
) -> DnaStatMap:
    """Tally bases of aligned reads over [lb, ub), split by strand and sample.

    Only aligned read/reference pairs contribute; duplicates are skipped. A read
    carrying cell_barcode_tag is counted under that barcode, otherwise under the
    combined sample. With umi_tag, each (sample, strand, position, UMI) counts once.
    """
    if lb >= ub:
        raise InvalidRegionError(f"lb >= ub: {chrom}:{lb}-{ub}")
    if chrom not in reader.references:
        raise InvalidRegionError(f"Unknown contig {chrom!r}: not in the BAM header")

    records = [rec for rec in reader.fetch(chrom, lb, ub) if not rec.is_duplicate]
    if not records:
        raise EmptyRegionError(f"Empty region {chrom}:{lb}-{ub}")

    ret = DnaStatMap(chrom, lb, ub)
    ret.new_sample(COMBINED)

    seen_umi: Set[Tuple[BamSample, bool, int, str]] = set()

    for rec in records:
        seq = rec.query_sequence
        if not seq:
            continue

        sample = COMBINED
        if cell_barcode_tag and rec.has_tag(cell_barcode_tag):
            sample = BamSample(str(rec.get_tag(cell_barcode_tag)))
            ret.new_sample(sample)

        umi = None
        if umi_tag and rec.has_tag(umi_tag):
            umi = str(rec.get_tag(umi_tag))

        freq = ret.reverse[ret.samp2id[sample]] if rec.is_reverse else ret.forward[ret.samp2id[sample]]

        # [read_pos, genome_pos], matches/mismatches only
        for rpos, gpos in rec.get_aligned_pairs(matches_only=True):
            if gpos < lb or gpos >= ub:
                continue
            j = BASE_INDEX.get(seq[rpos])
            if j is None:
                continue
            v = gpos - lb
            if umi is not None:
                key = (sample, rec.is_reverse, v, umi)
                if key in seen_umi:
                    continue
                seen_umi.add(key)
            freq[v, j] += 1.0

    return ret
