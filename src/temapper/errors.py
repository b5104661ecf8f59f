"""Exceptions raised by the mapping pipeline.

Ambiguous multi-mapping reads are not represented here: they are an
expected outcome and are classified as ``DISCARD`` by the classifier.
"""

from __future__ import annotations

from typing import Optional


class MalformedRecord(ValueError):
    """An input alignment record violates the record invariants."""

    def __init__(self, message: str, *, line_number: Optional[int] = None) -> None:
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class ConfigurationError(ValueError):
    """An invalid mapping parameter; raised before any processing starts."""


class ContigProcessingFailure(RuntimeError):
    """Processing of one contig was aborted; other contigs are unaffected."""

    def __init__(self, contig: str, cause: str) -> None:
        super().__init__(f"Contig '{contig}' failed: {cause}")
        self.contig = contig
        self.cause = cause
