# faba/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CELL_BARCODE_TAG,
    DEFAULT_MAF_CUTOFF,
    DEFAULT_MIN_COVERAGE,
    DEFAULT_PSEUDOCOUNT,
)

# values already in the OS environment win over .env
load_dotenv(override=False)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v != "" else default


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_tag(name: str, default: Optional[str]) -> Optional[str]:
    """Two-letter SAM tag; 'none' or '-' disables it."""
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    if v.lower() in {"", "none", "-"}:
        return None
    return v


@dataclass(frozen=True)
class Settings:
    log_level: str

    # 0 = cpu_count - 1
    threads: int
    block_size: int

    cell_barcode_tag: Optional[str]
    umi_tag: Optional[str]

    min_coverage: int
    maf_cutoff: float
    pseudocount: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    log_level = _env("FABA_LOG_LEVEL", "INFO")
    threads = _env_int("FABA_THREADS", 0)
    block_size = _env_int("FABA_BLOCK_SIZE", DEFAULT_BLOCK_SIZE)

    cell_barcode_tag = _env_tag("FABA_CELL_BARCODE_TAG", DEFAULT_CELL_BARCODE_TAG)
    umi_tag = _env_tag("FABA_UMI_TAG", None)

    min_coverage = _env_int("FABA_MIN_COVERAGE", DEFAULT_MIN_COVERAGE)
    maf_cutoff = _env_float("FABA_MAF_CUTOFF", DEFAULT_MAF_CUTOFF)
    pseudocount = _env_float("FABA_PSEUDOCOUNT", DEFAULT_PSEUDOCOUNT)

    if block_size <= 0:
        raise RuntimeError(f"Invalid FABA_BLOCK_SIZE={block_size}: must be positive")
    if not 0.0 <= maf_cutoff <= 1.0:
        raise RuntimeError(f"Invalid FABA_MAF_CUTOFF={maf_cutoff}: must be within [0, 1]")
    if pseudocount <= 0.0:
        raise RuntimeError(f"Invalid FABA_PSEUDOCOUNT={pseudocount}: must be positive")

    return Settings(
        log_level=log_level,
        threads=threads,
        block_size=block_size,
        cell_barcode_tag=cell_barcode_tag,
        umi_tag=umi_tag,
        min_coverage=min_coverage,
        maf_cutoff=maf_cutoff,
        pseudocount=pseudocount,
    )
