from __future__ import annotations

from dataclasses import dataclass

from pyfaidx import Fasta

from .utils import rc, with_chr_prefix, without_chr_prefix


@dataclass
class ReferenceGenome:
    """Reference FASTA reader used to annotate candidate sites."""

    fasta_path: str
    as_raw: bool = True
    sequence_always_upper: bool = True

    def __post_init__(self) -> None:
        # pyfaidx will create .fai if missing
        self.fa = Fasta(self.fasta_path, as_raw=self.as_raw, sequence_always_upper=self.sequence_always_upper)
        self._keys = set(self.fa.keys())
        self._has_chr = any(k.startswith("chr") for k in list(self._keys)[:10])

    def _normalize_key(self, chrom: str) -> str:
        c = str(chrom).strip()
        if c in self._keys:
            return c
        c = with_chr_prefix(c) if self._has_chr else without_chr_prefix(c)
        if c not in self._keys:
            raise KeyError(f"Chromosome {chrom!r} not found in FASTA. Example keys: {sorted(self._keys)[:5]}")
        return c

    def has_chrom(self, chrom: str) -> bool:
        try:
            self._normalize_key(chrom)
        except KeyError:
            return False
        return True

    def chrom_length(self, chrom: str) -> int:
        return len(self.fa[self._normalize_key(chrom)])

    def fetch_seq(self, chrom: str, start0: int, end0: int, strand: str = "+") -> str:
        """0-based half-open [start0, end0); reverse-complemented on '-'."""
        if start0 < 0:
            raise ValueError("start0 must be >= 0 (clip before calling fetch_seq)")
        if end0 < start0:
            raise ValueError("end0 must be >= start0")

        key = self._normalize_key(chrom)
        seq = str(self.fa[key][start0:end0]).upper()
        if strand == "-":
            seq = rc(seq)
        return seq

    def base_context(self, chrom: str, pos0: int, strand: str = "+", flank: int = 2) -> str:
        """Sequence pos0 +/- flank read in strand direction, N-padded off the chromosome ends."""
        length = self.chrom_length(chrom)
        start = pos0 - flank
        end = pos0 + flank + 1
        fetch_start = max(0, start)
        fetch_end = max(fetch_start, min(length, end))

        seq = self.fetch_seq(chrom, fetch_start, fetch_end, strand="+")
        seq = ("N" * (fetch_start - start)) + seq + ("N" * (end - fetch_end))
        return rc(seq) if strand == "-" else seq
