from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import h5py
import numpy as np
import pandas as pd

from .bam import check_bam_index, chromosome_jobs
from .compare import BG_COLS, FG_COLS, merge_statistics
from .constants import DEFAULT_BLOCK_SIZE, DEFAULT_CELL_BARCODE_TAG, DNA_BASES
from .errors import AnnotationError
from .gff import GffRecord, read_gff
from .output import output_path, write_table
from .sifter import PositionMap, collect_statistics

logger = logging.getLogger(__name__)

NO_FEATURE = "none"


def read_sites(path: str) -> pd.DataFrame:
    """Unique (chrom, start, strand) sites from a `compare` output (or any TSV with those columns)."""
    df = pd.read_csv(path, sep="\t", dtype={"chrom": str, "strand": str})
    required = {"chrom", "start", "strand"}
    missing = required - set(df.columns)
    if missing:
        raise AnnotationError(f"Sites file missing columns: {sorted(missing)}")

    bad = ~df["strand"].isin(["+", "-"])
    if bad.any():
        raise AnnotationError(f"Sites file has {int(bad.sum())} rows with strand other than '+'/'-'")

    sites = df[["chrom", "start", "strand"]].drop_duplicates()
    sites["start"] = sites["start"].astype(np.int64)
    return sites.sort_values(["chrom", "start", "strand"]).reset_index(drop=True)


def sites_to_positions(sites: pd.DataFrame) -> Tuple[PositionMap, PositionMap]:
    forward: PositionMap = {}
    reverse: PositionMap = {}
    for chrom, start, strand in zip(sites["chrom"], sites["start"], sites["strand"]):
        target = forward if strand == "+" else reverse
        target.setdefault(str(chrom), set()).add(int(start))
    return forward, reverse


@dataclass
class FeatureIndex:
    """Per-chromosome arrays of GFF features for overlap look-ups (1-based inclusive)."""

    index: Dict[str, Dict[str, np.ndarray]]

    @classmethod
    def from_records(cls, records: List[GffRecord]) -> "FeatureIndex":
        by_chrom: Dict[str, List[GffRecord]] = {}
        for r in records:
            by_chrom.setdefault(r.seqname, []).append(r)

        index: Dict[str, Dict[str, np.ndarray]] = {}
        for chrom, recs in by_chrom.items():
            recs = sorted(recs, key=lambda r: (r.start, r.end))
            index[chrom] = {
                "START": np.asarray([r.start for r in recs], dtype=np.int64),
                "END": np.asarray([r.end for r in recs], dtype=np.int64),
                "STRAND": np.asarray([r.strand for r in recs], dtype=object),
                "FEATURE": np.asarray([r.feature_type for r in recs], dtype=object),
                "NAME": np.asarray([r.name() for r in recs], dtype=object),
            }
        return cls(index=index)

    def find(self, chrom: str, pos_1b: int, strand: str) -> Tuple[List[str], List[str]]:
        """(feature types, names) overlapping pos_1b on the same strand (or unstranded)."""
        info = self.index.get(str(chrom))
        if info is None:
            return [], []
        mask = (info["START"] <= pos_1b) & (info["END"] >= pos_1b)
        mask &= (info["STRAND"] == strand) | (info["STRAND"] == ".")
        if not mask.any():
            return [], []
        return list(info["FEATURE"][mask]), list(info["NAME"][mask])


def annotate_features(sites: pd.DataFrame, features: FeatureIndex) -> pd.DataFrame:
    out = sites.copy()
    kinds: List[str] = []
    names: List[str] = []
    for chrom, start, strand in zip(out["chrom"], out["start"], out["strand"]):
        k, n = features.find(chrom, int(start) + 1, strand)
        kinds.append(",".join(dict.fromkeys(k)) if k else NO_FEATURE)
        names.append(",".join(dict.fromkeys(n)) if n else ".")
    out["feature"] = kinds
    out["feature_name"] = names
    return out


def feature_summary(sites: pd.DataFrame) -> pd.DataFrame:
    """Number of sites per overlapping feature type (a site may count under several)."""
    kinds = sites["feature"].str.split(",").explode()
    counts = kinds.value_counts().rename_axis("feature").reset_index(name="n_sites")
    counts["fraction"] = counts["n_sites"] / max(len(sites), 1)
    return counts


def build_tensors(sites: pd.DataFrame, stats: pd.DataFrame) -> Tuple[List[str], np.ndarray, np.ndarray]:
    """Dense (n_sites, n_samples, 4) fg and bg count tensors aligned to `sites` rows."""
    samples = sorted(stats["sample"].unique().tolist(), key=lambda s: (s != ".", s))
    n_sites, n_samples = len(sites), len(samples)
    fg = np.zeros((n_sites, n_samples, len(DNA_BASES)), dtype=np.float32)
    bg = np.zeros_like(fg)
    if n_sites == 0 or n_samples == 0:
        return samples, fg, bg

    site_idx = {
        (c, int(p), s): i for i, (c, p, s) in enumerate(zip(sites["chrom"], sites["start"], sites["strand"]))
    }
    samp_idx = {s: j for j, s in enumerate(samples)}

    rows = np.asarray(
        [site_idx[(c, int(p), s)] for c, p, s in zip(stats["chrom"], stats["pos"], stats["strand"])],
        dtype=np.int64,
    )
    cols = np.asarray([samp_idx[s] for s in stats["sample"]], dtype=np.int64)
    fg[rows, cols, :] = stats[FG_COLS].to_numpy(dtype=np.float32)
    bg[rows, cols, :] = stats[BG_COLS].to_numpy(dtype=np.float32)
    return samples, fg, bg


def save_to_hdf5(h5_path: Path, sites: pd.DataFrame, samples: List[str], fg: np.ndarray, bg: np.ndarray) -> None:
    """
    Single HDF5 file with:
        /sites/chrom, /sites/start, /sites/strand
        /samples
        /fg/counts, /bg/counts   (n_sites, n_samples, 4), bases A,T,G,C
    """
    str_dt = h5py.string_dtype(encoding="utf-8")
    with h5py.File(h5_path, "w") as f:
        f.attrs["bases"] = ",".join(DNA_BASES)

        g = f.create_group("sites")
        g.create_dataset("chrom", data=np.asarray(sites["chrom"].astype(str).tolist(), dtype=object), dtype=str_dt)
        g.create_dataset("start", data=sites["start"].to_numpy(dtype=np.int64))
        g.create_dataset("strand", data=np.asarray(sites["strand"].astype(str).tolist(), dtype=object), dtype=str_dt)

        f.create_dataset("samples", data=np.asarray(samples, dtype=object), dtype=str_dt)

        for name, arr in (("fg", fg), ("bg", bg)):
            grp = f.create_group(name)
            if arr.size:
                grp.create_dataset("counts", data=arr, compression="gzip", chunks=True)
            else:
                grp.create_dataset("counts", data=arr)


def run_aggregate(
    sites_file: str,
    fg_bam: str,
    bg_bam: str,
    output: str,
    fg_bai: Optional[str] = None,
    bg_bai: Optional[str] = None,
    gff: Optional[str] = None,
    feature: Optional[str] = None,
    threads: Optional[int] = 1,
    block_size: int = DEFAULT_BLOCK_SIZE,
    cell_barcode_tag: Optional[str] = DEFAULT_CELL_BARCODE_TAG,
    umi_tag: Optional[str] = None,
) -> pd.DataFrame:
    """Revisit every candidate site and collect per-sample fg/bg counts.

    Writes <output>.stats.tsv.gz, <output>.h5 and, with a GFF, <output>.features.tsv.
    """
    sites = read_sites(sites_file)
    logger.info("Aggregating %d sites from %s", len(sites), sites_file)
    forward, reverse = sites_to_positions(sites)

    per_condition = []
    for bam_file, bai_file in ((fg_bam, fg_bai), (bg_bam, bg_bai)):
        index_file = check_bam_index(bam_file, bai_file)
        chrom_sizes = {c: (blocks[-1][1] if blocks else 0) for c, blocks in chromosome_jobs(bam_file, block_size)}
        per_condition.append(
            collect_statistics(
                bam_file,
                index_file,
                forward,
                reverse,
                chrom_sizes,
                block_size=block_size,
                cell_barcode_tag=cell_barcode_tag,
                umi_tag=umi_tag,
                workers=threads,
            )
        )
    stats = merge_statistics(*per_condition)

    if gff is not None:
        records = read_gff(gff)
        if feature is not None:
            records = [r for r in records if r.feature_type == feature]
        sites = annotate_features(sites, FeatureIndex.from_records(records))
        p = output_path(output, "features.tsv")
        feature_summary(sites).to_csv(p, sep="\t", index=False, float_format="%.6g")
        logger.info("Wrote %s", p)

    samples, fg, bg = build_tensors(sites, stats)
    h5_path = output_path(output, "h5")
    save_to_hdf5(h5_path, sites, samples, fg, bg)
    logger.info("Wrote %s: %d sites x %d samples", h5_path, len(sites), len(samples))

    long = stats.merge(sites.rename(columns={"start": "pos"}), on=["chrom", "pos", "strand"], how="left")
    p = write_table(long, output, "stats.tsv.gz")
    logger.info("Wrote %s", p)
    return long
