from __future__ import annotations


class FabaError(Exception):
    """Base exception for faba."""


class BamIndexError(FabaError):
    """BAM index is missing and could not be built."""


class InvalidRegionError(FabaError):
    """Genomic region is malformed or empty (lb >= ub)."""


class EmptyRegionError(FabaError):
    """No usable alignments in the requested region."""


class AnnotationError(FabaError):
    """Malformed GFF/GTF or sites file."""
