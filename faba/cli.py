#!/usr/bin/env python3
"""
faba command line.

  faba compare   -f FG.bam -b BG.bam -o out/run        # candidate sites
  faba aggregate -s out/run.sites.tsv.gz -f FG.bam -b BG.bam -o out/run
  faba depth     -b FG.bam -g genes.gtf --feature gene  # strand-specific depth
  faba bam2bed   -f FG.bam -b BG.bam -r chr18:34304689-34304694
  faba gff freq FILE | faba gff subset FILE -f exon -s chr1 -l 1 -u 5000
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import Settings, get_settings
from .errors import FabaError

logger = logging.getLogger("faba")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _tag(value: Optional[str], default: Optional[str]) -> Optional[str]:
    """CLI tag option: unset -> settings default, 'none' -> disabled."""
    if value is None:
        return default
    v = value.strip()
    return None if v.lower() in {"", "none", "-"} else v


def _add_bam_pair(p: argparse.ArgumentParser) -> None:
    p.add_argument("-f", "--fg-bam", required=True, help="foreground BAM file")
    p.add_argument("-b", "--bg-bam", required=True, help="background BAM file")
    p.add_argument("--fg-bai", default=None, help="foreground BAI file (default: <FG_BAM>.bai)")
    p.add_argument("--bg-bai", default=None, help="background BAI file (default: <BG_BAM>.bai)")


def _add_tags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--cell-barcode-tag", default=None,
                   help="SAM tag holding the cell barcode (default: CB; 'none' pools all reads)")
    p.add_argument("--umi-tag", default=None,
                   help="SAM tag holding the UMI; count each molecule once per position (default: off)")


def _add_threads(p: argparse.ArgumentParser) -> None:
    p.add_argument("-t", "--threads", type=int, default=None, help="number of worker processes (0 = cpu_count-1)")
    p.add_argument("--block-size", type=int, default=None, help="block size in bp (default: 10000)")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="faba", description="Strand-specific case/control BAM sifting")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--log-level", default=None, help="logging level (default: FABA_LOG_LEVEL or INFO)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("compare", help="Sift through to collect statistics for putative editing sites")
    _add_bam_pair(p)
    _add_threads(p)
    _add_tags(p)
    p.add_argument("-o", "--output", default=None, help="output file header (default: stdout)")
    p.add_argument("--fasta", default=None, help="reference FASTA to annotate ref base and context")
    p.add_argument("--min-coverage", type=int, default=None, help="minimum fg + bg coverage (default: 2)")
    p.add_argument("--maf-cutoff", type=float, default=None, help="major allele frequency cut-off (default: 0.9)")
    p.add_argument("--pseudocount", type=float, default=None, help="Dirichlet pseudo-count (default: 0.25)")
    p.add_argument("--min-score", type=float, default=None, help="minimum log Bayes factor to report")

    p = sub.add_parser("aggregate", help="Aggregate sufficient statistics at candidate sites")
    p.add_argument("-s", "--sites", required=True, help="sites TSV (output of compare)")
    _add_bam_pair(p)
    _add_threads(p)
    _add_tags(p)
    p.add_argument("-g", "--gff", default=None, help="GFF/GTF file to annotate sites with features")
    p.add_argument("--feature", default=None, help="only annotate with this feature type")
    p.add_argument("-o", "--output", required=True, help="output file header")

    p = sub.add_parser("depth", help="Strand-specific read depth over GFF features")
    p.add_argument("-b", "--bam", required=True, help="BAM file")
    p.add_argument("--bai", default=None, help="BAI file (default: <BAM>.bai)")
    p.add_argument("-g", "--gff", required=True, help="GFF/GTF file")
    p.add_argument("--feature", default="gene", help="feature type to count over (default: gene)")
    p.add_argument("-s", "--seqname", default=None, help="restrict to this sequence")
    p.add_argument("-l", "--lb", type=int, default=None, help="region lower bound (with --seqname)")
    p.add_argument("-u", "--ub", type=int, default=None, help="region upper bound (with --seqname)")
    p.add_argument("--per-cell", action="store_true", help="report counts per cell barcode")
    p.add_argument("--cell-barcode-tag", default=None, help="SAM tag holding the cell barcode (default: CB)")
    p.add_argument("-t", "--threads", type=int, default=None, help="number of worker processes")
    p.add_argument("-o", "--output", default=None, help="output file header (default: stdout)")

    p = sub.add_parser("bam2bed", help="Dump per-base frequencies of a region")
    _add_bam_pair(p)
    _add_tags(p)
    p.add_argument("-r", "--region", required=True, help="region CHROM:LB-UB (0-based half-open)")
    p.add_argument("--keep-empty", action="store_true", help="also print uncovered positions")
    p.add_argument("-o", "--output", default=None, help="output file header (default: stdout)")

    p = sub.add_parser("gff", help="GFF/GTF utilities")
    gsub = p.add_subparsers(dest="gff_command", required=True)
    g = gsub.add_parser("freq", help="Feature and sequence name frequencies")
    g.add_argument("file", help="GFF file")
    g = gsub.add_parser("subset", help="Subset features as BED")
    g.add_argument("file", help="GFF file")
    g.add_argument("-f", "--feature", required=True, help="genomic feature name")
    g.add_argument("-s", "--seqname", default=None, help="sequence name")
    g.add_argument("-l", "--lb", type=int, default=None, help="region lower bound")
    g.add_argument("-u", "--ub", type=int, default=None, help="region upper bound")
    g.add_argument("--name-keys", default=None,
                   help="comma-separated attribute keys for a name column (e.g. gene_name,gene_id)")

    return ap


def _block_size(args: argparse.Namespace, settings: Settings) -> int:
    bs = args.block_size if args.block_size is not None else settings.block_size
    if bs <= 0:
        raise SystemExit(f"[ERROR] --block-size must be positive, got {bs}")
    return bs


def _threads(args: argparse.Namespace, settings: Settings) -> int:
    return args.threads if args.threads is not None else settings.threads


def _pick(value, default):
    return default if value is None else value


def _run(args: argparse.Namespace, settings: Settings) -> None:
    if args.command == "compare":
        from .compare import search_case_control

        search_case_control(
            fg_bam=args.fg_bam,
            bg_bam=args.bg_bam,
            fg_bai=args.fg_bai,
            bg_bai=args.bg_bai,
            threads=_threads(args, settings),
            block_size=_block_size(args, settings),
            output=args.output,
            fasta=args.fasta,
            cell_barcode_tag=_tag(args.cell_barcode_tag, settings.cell_barcode_tag),
            umi_tag=_tag(args.umi_tag, settings.umi_tag),
            min_coverage=_pick(args.min_coverage, settings.min_coverage),
            maf_cutoff=_pick(args.maf_cutoff, settings.maf_cutoff),
            pseudocount=_pick(args.pseudocount, settings.pseudocount),
            min_score=args.min_score,
        )

    elif args.command == "aggregate":
        from .aggregate import run_aggregate

        run_aggregate(
            sites_file=args.sites,
            fg_bam=args.fg_bam,
            bg_bam=args.bg_bam,
            output=args.output,
            fg_bai=args.fg_bai,
            bg_bai=args.bg_bai,
            gff=args.gff,
            feature=args.feature,
            threads=_threads(args, settings),
            block_size=_block_size(args, settings),
            cell_barcode_tag=_tag(args.cell_barcode_tag, settings.cell_barcode_tag),
            umi_tag=_tag(args.umi_tag, settings.umi_tag),
        )

    elif args.command == "depth":
        from .depth import run_depth

        run_depth(
            bam_file=args.bam,
            gff=args.gff,
            output=args.output,
            feature=args.feature,
            bai_file=args.bai,
            seqname=args.seqname,
            lb=args.lb,
            ub=args.ub,
            cell_barcode_tag=_tag(args.cell_barcode_tag, settings.cell_barcode_tag) if args.per_cell else None,
            threads=_threads(args, settings),
        )

    elif args.command == "bam2bed":
        from .bam2bed import run_bam2bed

        run_bam2bed(
            fg_bam=args.fg_bam,
            bg_bam=args.bg_bam,
            region=args.region,
            output=args.output,
            fg_bai=args.fg_bai,
            bg_bai=args.bg_bai,
            cell_barcode_tag=_tag(args.cell_barcode_tag, settings.cell_barcode_tag),
            umi_tag=_tag(args.umi_tag, settings.umi_tag),
            keep_empty=args.keep_empty,
        )

    elif args.command == "gff":
        from .gff import FreqMap, read_gff, subset, to_bed

        records = read_gff(args.file)
        if args.gff_command == "freq":
            sys.stdout.write(FreqMap.from_records(records).render())
        else:
            name_keys = None
            if args.name_keys:
                name_keys = [k.strip() for k in args.name_keys.split(",") if k.strip()]
            for r in subset(records, args.feature, seqname=args.seqname, lb=args.lb, ub=args.ub):
                sys.stdout.write(to_bed(r, name_keys) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except RuntimeError as e:
        raise SystemExit(f"[ERROR] {e}")
    _configure_logging(args.log_level or settings.log_level)

    try:
        _run(args, settings)
    except FabaError as e:
        logger.error("%s", e)
        raise SystemExit(f"[ERROR] {e}")
    except FileNotFoundError as e:
        raise SystemExit(f"[ERROR] {e}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
