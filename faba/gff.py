"""
GFF3 / GTF helpers.

  - read_lines: plain text or gzip/bgzip (.gz, .bgz)
  - parse_gff_record: one line -> GffRecord (None unless 9 tab-separated fields)
  - FreqMap: feature-type and sequence-name frequencies
  - subset / to_bed: select features and render BED rows (0-based half-open)

https://en.wikipedia.org/wiki/General_feature_format
"""

from __future__ import annotations

import gzip
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

NUM_FIELDS = 9

_gtf_attr_re = re.compile(r'\s*([A-Za-z0-9_.\-]+)\s+"([^"]*)"\s*;?')

# attribute keys tried, in order, for a BED name column
NAME_KEYS = ("gene_name", "Name", "gene_id", "ID", "transcript_id")


@dataclass
class GffRecord:
    seqname: str
    source: str
    feature_type: str
    start: int  # 1-based inclusive
    end: int  # 1-based inclusive
    score: str
    strand: str  # '+', '-' or '.'
    phase: Optional[int]
    attributes: Dict[str, str] = field(default_factory=dict)

    def name(self, keys: Iterable[str] = NAME_KEYS) -> str:
        for k in keys:
            if self.attributes.get(k):
                return self.attributes[k]
        return "."

    def overlaps(self, lb: int, ub: int) -> bool:
        """Overlap with the closed interval [lb, ub] in the record's coordinates."""
        return not (self.end < lb or self.start > ub)


def read_lines(input_file: str) -> List[str]:
    """Read every line of input_file into memory."""
    p = Path(input_file)
    if p.suffix in {".gz", ".bgz"}:
        # bgzip is a gzip-compatible container
        with gzip.open(p, "rt", encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f]
    with open(p, "r", encoding="utf-8") as f:
        return [line.rstrip("\n") for line in f]


def parse_attributes(attr_str: str) -> Dict[str, str]:
    """GFF3 'k=v;k2=v2' or GTF 'k "v"; k2 "v2";'. First occurrence of a key wins."""
    attrs: Dict[str, str] = {}
    s = attr_str.strip()
    if not s or s == ".":
        return attrs

    if '"' in s:
        for m in _gtf_attr_re.finditer(s):
            attrs.setdefault(m.group(1), m.group(2))
        return attrs

    for part in s.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        attrs.setdefault(k.strip(), v.strip())
    return attrs


def _parse_int(s: str) -> int:
    try:
        return int(s)
    except ValueError:
        return 0


def parse_gff_record(line: str) -> Optional[GffRecord]:
    """Parse a GFF/GTF line to a record; comments and malformed lines give None."""
    if not line or line.startswith("#"):
        return None
    words = line.rstrip("\r\n").split("\t")
    if len(words) != NUM_FIELDS:
        return None

    strand = words[6] if words[6] in {"+", "-"} else "."
    phase = None if words[7] == "." else _parse_int(words[7])

    return GffRecord(
        seqname=words[0],
        source=words[1],
        feature_type=words[2],
        start=_parse_int(words[3]),
        end=_parse_int(words[4]),
        score=words[5],
        strand=strand,
        phase=phase,
        attributes=parse_attributes(words[8]),
    )


def read_gff(input_file: str) -> List[GffRecord]:
    records = (parse_gff_record(line) for line in read_lines(input_file))
    return [r for r in records if r is not None]


class FreqMap:
    def __init__(self) -> None:
        self.feature_map: Counter = Counter()
        self.seqname_map: Counter = Counter()

    def push(self, record: GffRecord) -> None:
        self.feature_map[record.feature_type] += 1
        self.seqname_map[record.seqname] += 1

    @classmethod
    def from_records(cls, records: Iterable[GffRecord]) -> "FreqMap":
        freq = cls()
        for r in records:
            freq.push(r)
        return freq

    def render(self) -> str:
        lines = ["# Feature Frequency"]
        lines += [f"{k}\t{n}" for k, n in self.feature_map.most_common()]
        lines.append("")
        lines.append("# Sequence Name Frequency")
        lines += [f"{k}\t{n}" for k, n in self.seqname_map.most_common()]
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.render()


def subset(
    records: Iterable[GffRecord],
    feature: str,
    seqname: Optional[str] = None,
    lb: Optional[int] = None,
    ub: Optional[int] = None,
) -> List[GffRecord]:
    """Records of one feature type, optionally on seqname and overlapping [lb, ub].

    lb/ub only apply together with seqname.
    """
    out = []
    for r in records:
        if r.feature_type != feature:
            continue
        if seqname is not None:
            if r.seqname != seqname:
                continue
            if lb is not None and ub is not None and not r.overlaps(lb, ub):
                continue
        out.append(r)
    return out


def to_bed(record: GffRecord, name_keys: Optional[Iterable[str]] = None) -> str:
    """seqname, start-1, end, strand[, name]."""
    cols = [record.seqname, str(max(record.start - 1, 0)), str(record.end), record.strand]
    if name_keys is not None:
        cols.append(record.name(name_keys))
    return "\t".join(cols)
