"""Strand-specific BAM sifting utilities for case/control RNA modification studies.

The package collects per-cell, per-strand base frequencies from aligned reads:
  - sift foreground/background BAM files for variable positions
  - compare the two libraries at the union of those positions
  - revisit candidate sites to aggregate sufficient statistics
  - count strand-specific read depth over GFF/GTF features
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
