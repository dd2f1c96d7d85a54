from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import pandas as pd


def output_path(header: str, suffix: str) -> Path:
    """<header>.<suffix>, creating the parent directory."""
    p = Path(f"{header}.{suffix}")
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def write_table(df: pd.DataFrame, header: Optional[str], suffix: str = "tsv.gz") -> Optional[Path]:
    """Write df as TSV to <header>.<suffix> (gzip by extension), or stdout without a header."""
    if header is None:
        df.to_csv(sys.stdout, sep="\t", index=False, float_format="%.6g")
        return None
    p = output_path(header, suffix)
    df.to_csv(p, sep="\t", index=False, float_format="%.6g")
    return p
