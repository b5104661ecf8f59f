"""Normalize aligner output into :class:`~temapper.models.AlignedRead` records.

Two sources are supported:

- a tab-separated record file (``.tsv`` or ``.tsv.gz``) with the columns in
  :data:`RECORD_COLUMNS` and an optional trailing ``ambiguous`` flag;
- a pair of BAM files holding the same reads aligned to the genome and to the
  TE library.

Malformed records are skipped and counted, never fatal.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pysam

from .errors import MalformedRecord
from .models import GENOME, STRANDS, TARGETS, TE_LIBRARY, AlignedRead
from .utils import open_textmaybe_gzip, parse_flag

logger = logging.getLogger(__name__)

RECORD_COLUMNS = (
    "read_id",
    "contig",
    "position",
    "strand",
    "length",
    "clip_start",
    "clip_end",
    "target",
    "te_family",
    "mate",
)
_OPTIONAL_COLUMNS = ("ambiguous",)

# BAM CIGAR operations
_CIGAR_SOFT_CLIP = 4
_CIGAR_HARD_CLIP = 5

_MAX_INSERT_SIZE_SAMPLES = 200_000


def _parse_int(value: str, name: str, line_number: Optional[int]) -> int:
    try:
        return int(value)
    except ValueError:
        raise MalformedRecord(f"{name} is not an integer: {value!r}", line_number=line_number) from None


def parse_record(
    fields: Sequence[str],
    *,
    order: int = 0,
    line_number: Optional[int] = None,
) -> AlignedRead:
    """Parse one record (already split into columns) into an AlignedRead.

    Raises
    ------
    MalformedRecord
        If the record has the wrong number of columns or violates an
        AlignedRead invariant.
    """
    n_req = len(RECORD_COLUMNS)
    if not (n_req <= len(fields) <= n_req + len(_OPTIONAL_COLUMNS)):
        raise MalformedRecord(
            f"expected {n_req} or {n_req + len(_OPTIONAL_COLUMNS)} columns, got {len(fields)}",
            line_number=line_number,
        )
    vals = [f.strip() for f in fields]
    read_id, contig, pos_s, strand, len_s, cs_s, ce_s, target, te_family, mate = vals[:n_req]

    if not read_id:
        raise MalformedRecord("empty read_id", line_number=line_number)
    if not contig:
        raise MalformedRecord(f"read {read_id}: empty contig", line_number=line_number)

    position = _parse_int(pos_s, "position", line_number)
    length = _parse_int(len_s, "length", line_number)
    clip_start = _parse_int(cs_s, "clip_start", line_number)
    clip_end = _parse_int(ce_s, "clip_end", line_number)

    if position < 1:
        raise MalformedRecord(f"read {read_id}: position must be >= 1, got {position}", line_number=line_number)
    if length < 1:
        raise MalformedRecord(f"read {read_id}: length must be >= 1, got {length}", line_number=line_number)
    if clip_start < 0 or clip_end < 0:
        raise MalformedRecord(f"read {read_id}: negative clip length", line_number=line_number)
    if strand not in STRANDS:
        raise MalformedRecord(f"read {read_id}: strand must be + or -, got {strand!r}", line_number=line_number)

    target = target.upper()
    if target not in TARGETS:
        raise MalformedRecord(
            f"read {read_id}: target must be one of {TARGETS}, got {target!r}", line_number=line_number
        )
    if target == TE_LIBRARY and not te_family:
        raise MalformedRecord(
            f"read {read_id}: TE_LIBRARY record without te_family", line_number=line_number
        )

    ambiguous = False
    if len(vals) > n_req:
        try:
            ambiguous = parse_flag(vals[n_req])
        except ValueError as e:
            raise MalformedRecord(f"read {read_id}: ambiguous column: {e}", line_number=line_number) from None

    return AlignedRead(
        read_id=read_id,
        contig=contig,
        position=position,
        length=length,
        strand=strand,
        clip_start=clip_start,
        clip_end=clip_end,
        target=target,
        te_family=te_family,
        mate=mate or None,
        ambiguous=ambiguous,
        order=order,
    )


def adapt_rows(
    rows: Iterable[Tuple[int, Sequence[str]]],
) -> Tuple[List[AlignedRead], Dict[str, int]]:
    """Parse numbered rows, skipping and counting malformed ones.

    Parameters
    ----------
    rows:
        ``(line_number, fields)`` tuples.

    Returns
    -------
    reads:
        Valid records, in input order.
    stats:
        ``records_total`` and ``records_skipped`` counters.
    """
    reads: List[AlignedRead] = []
    stats = {"records_total": 0, "records_skipped": 0}
    for line_number, fields in rows:
        stats["records_total"] += 1
        try:
            reads.append(parse_record(fields, order=len(reads), line_number=line_number))
        except MalformedRecord as e:
            stats["records_skipped"] += 1
            logger.debug("Skipping malformed record: %s", e)
    if stats["records_skipped"]:
        logger.warning(
            "Skipped %d malformed record(s) out of %d.",
            stats["records_skipped"],
            stats["records_total"],
        )
    return reads, stats


def iter_record_rows(path: str | Path) -> Iterator[Tuple[int, List[str]]]:
    """Yield ``(line_number, fields)`` from a record file.

    Blank lines, ``#`` comments and a leading ``read_id`` header are skipped.
    """
    with open_textmaybe_gzip(path, "rt") as fh:
        for line_number, line in enumerate(fh, start=1):
            line = line.rstrip("\n").rstrip("\r")
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.split("\t")
            if fields[0] == "read_id":
                continue
            yield line_number, fields


def load_records(path: str | Path) -> Tuple[List[AlignedRead], Dict[str, int]]:
    """Load and validate a tab-separated record file."""
    reads, stats = adapt_rows(iter_record_rows(path))
    logger.info("Loaded %d records from %s", len(reads), path)
    return reads, stats


def _clips_from_cigar(cigartuples: Optional[List[Tuple[int, int]]]) -> Tuple[int, int]:
    """Soft-clip lengths at the left and right end of an alignment."""
    if not cigartuples:
        return 0, 0
    ops = [c for c in cigartuples if c[0] != _CIGAR_HARD_CLIP]
    if not ops:
        return 0, 0
    left = ops[0][1] if ops[0][0] == _CIGAR_SOFT_CLIP else 0
    right = ops[-1][1] if ops[-1][0] == _CIGAR_SOFT_CLIP and len(ops) > 1 else 0
    return left, right


def _is_ambiguous(seg: pysam.AlignedSegment) -> bool:
    # bwa reports the best alternative hit score in XS
    if seg.has_tag("XS") and seg.has_tag("AS"):
        return int(seg.get_tag("XS")) >= int(seg.get_tag("AS"))
    return False


def aligned_read_from_segment(
    seg: pysam.AlignedSegment, *, target: str, order: int = 0
) -> AlignedRead:
    """Convert one mapped pysam segment into an AlignedRead."""
    if seg.is_unmapped or seg.reference_name is None:
        raise MalformedRecord(f"read {seg.query_name}: segment is unmapped")
    clip_start, clip_end = _clips_from_cigar(seg.cigartuples)
    length = seg.reference_length or 0
    if length < 1:
        raise MalformedRecord(f"read {seg.query_name}: alignment has no reference span")
    ref_name = str(seg.reference_name)
    return AlignedRead(
        read_id=str(seg.query_name),
        contig=ref_name,
        position=int(seg.reference_start) + 1,
        length=int(length),
        strand="-" if seg.is_reverse else "+",
        clip_start=clip_start,
        clip_end=clip_end,
        target=target,
        te_family=ref_name if target == TE_LIBRARY else "",
        mate=str(seg.query_name) if seg.is_paired else None,
        ambiguous=_is_ambiguous(seg),
        order=order,
    )


def load_bam_records(
    genome_bam: str | Path,
    te_bam: str | Path,
    *,
    skip_duplicates: bool = True,
) -> Tuple[List[AlignedRead], Dict[str, int]]:
    """Read genome- and TE-library alignments of the same reads from two BAMs.

    Unmapped and secondary alignments are skipped (not counted as malformed);
    supplementary alignments are kept since split reads are reported that way.
    """
    reads: List[AlignedRead] = []
    stats = {
        "records_total": 0,
        "records_skipped": 0,
        "records_unmapped": 0,
        "records_secondary": 0,
        "records_duplicates": 0,
    }
    for path, target in ((genome_bam, GENOME), (te_bam, TE_LIBRARY)):
        with pysam.AlignmentFile(str(path), "rb") as bam:
            for seg in bam.fetch(until_eof=True):
                stats["records_total"] += 1
                if seg.is_unmapped:
                    stats["records_unmapped"] += 1
                    continue
                if seg.is_secondary:
                    stats["records_secondary"] += 1
                    continue
                if skip_duplicates and seg.is_duplicate:
                    stats["records_duplicates"] += 1
                    continue
                try:
                    reads.append(aligned_read_from_segment(seg, target=target, order=len(reads)))
                except MalformedRecord as e:
                    stats["records_skipped"] += 1
                    logger.debug("Skipping malformed alignment: %s", e)
        logger.info("Read %s alignments from %s", target, path)
    return reads, stats


def estimate_insert_size(
    bam_path: str | Path,
    *,
    max_samples: int = _MAX_INSERT_SIZE_SAMPLES,
) -> Optional[int]:
    """Median absolute template length of properly paired reads, or None."""
    tlens: List[int] = []
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        for seg in bam.fetch(until_eof=True):
            if not seg.is_proper_pair or seg.is_secondary or seg.is_supplementary:
                continue
            # count each pair once
            if not seg.is_read1 or seg.template_length == 0:
                continue
            tlens.append(abs(int(seg.template_length)))
            if len(tlens) >= max_samples:
                break
    if not tlens:
        logger.info("No properly paired reads in %s; insert size not estimated.", bam_path)
        return None
    est = int(round(float(np.median(np.asarray(tlens, dtype=np.int64)))))
    logger.info("Estimated insert size from %d pairs: %d bp", len(tlens), est)
    return est


def te_lengths_from_bam(te_bam: str | Path) -> Dict[str, int]:
    """TE consensus lengths from the @SQ lines of a TE-library BAM."""
    with pysam.AlignmentFile(str(te_bam), "rb") as bam:
        return {str(name): int(length) for name, length in zip(bam.references, bam.lengths)}


def te_lengths_from_fasta(te_fasta: str | Path) -> Dict[str, int]:
    """TE consensus lengths from a TE-library FASTA (indexed on first use)."""
    with pysam.FastaFile(str(te_fasta)) as fa:
        return {str(name): int(length) for name, length in zip(fa.references, fa.lengths)}


def group_by_read_id(reads: Iterable[AlignedRead]) -> "OrderedDict[str, List[AlignedRead]]":
    """Group segments by read id, keeping first-appearance order."""
    groups: "OrderedDict[str, List[AlignedRead]]" = OrderedDict()
    for r in reads:
        groups.setdefault(r.read_id, []).append(r)
    return groups
