from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

# Alignment targets
GENOME = "GENOME"
TE_LIBRARY = "TE_LIBRARY"
TARGETS = (GENOME, TE_LIBRARY)

# Read classes
JUNCTION = "JUNCTION"
ANCHOR = "ANCHOR"
DISCARD = "DISCARD"
READ_CLASSES = (JUNCTION, ANCHOR, DISCARD)

# Confidence tiers, lowest first
LOW = "LOW"
MEDIUM = "MEDIUM"
HIGH = "HIGH"
CONFIDENCE_TIERS = (LOW, MEDIUM, HIGH)

AMBIGUOUS = "AMBIGUOUS"

# Whether the called TE copy is already part of the reference assembly
REFERENCE = "reference"
NON_REFERENCE = "non-reference"

STRANDS = ("+", "-")


@dataclass(frozen=True)
class AlignedRead:
    """One aligned segment as reported by the aligner.

    Coordinates are 1-based and fully closed.

    Attributes
    ----------
    read_id:
        Read name, shared between the two mates of a pair.
    contig:
        Reference sequence name. For ``TE_LIBRARY`` segments this is the TE
        consensus the segment aligned to.
    position:
        Leftmost mapped reference coordinate.
    length:
        Number of reference bases covered by the alignment.
    strand:
        ``+`` or ``-``.
    clip_start, clip_end:
        Soft-clip lengths left of ``position`` and right of ``end``.
    target:
        ``GENOME`` or ``TE_LIBRARY``.
    te_family:
        TE family name; required when ``target == TE_LIBRARY``.
    mate:
        Read id of the paired segment, if the read is paired. This is a
        lookup key only.
    ambiguous:
        The aligner reported an equally good alternative hit.
    order:
        Position of the record in the input stream.
    """

    read_id: str
    contig: str
    position: int
    length: int
    strand: str
    clip_start: int
    clip_end: int
    target: str
    te_family: str = ""
    mate: Optional[str] = None
    ambiguous: bool = False
    order: int = 0

    @property
    def end(self) -> int:
        return self.position + self.length - 1

    @property
    def is_te(self) -> bool:
        return self.target == TE_LIBRARY

    @property
    def is_paired(self) -> bool:
        return bool(self.mate)


@dataclass(frozen=True)
class ClassifiedRead:
    """A read (or read pair) labelled with its evidence class.

    ``read`` is the genome-side segment. ``strand`` is the evidence (flank)
    strand: ``+`` when the TE lies right of ``breakpoint``, ``-`` when it
    lies left of it. ``te_strand`` is the TE orientation relative to the
    genome.
    """

    read: AlignedRead
    read_class: str  # 'JUNCTION', 'ANCHOR' or 'DISCARD'
    breakpoint: Optional[int] = None
    strand: str = "+"
    te_family: str = ""
    te_strand: str = "+"
    discard_reason: Optional[str] = None

    @property
    def read_id(self) -> str:
        return self.read.read_id

    @property
    def contig(self) -> str:
        return self.read.contig

    @property
    def order(self) -> int:
        return self.read.order


@dataclass
class Cluster:
    """A growing group of same-stream reads believed to support one event."""

    contig: str
    strand: str
    evidence: str
    breakpoint_min: int
    breakpoint_max: int
    members: List[ClassifiedRead] = field(default_factory=list)
    closed: bool = False

    @classmethod
    def seed(cls, read: ClassifiedRead, evidence: str) -> "Cluster":
        assert read.breakpoint is not None
        return cls(
            contig=read.contig,
            strand=read.strand,
            evidence=evidence,
            breakpoint_min=read.breakpoint,
            breakpoint_max=read.breakpoint,
            members=[read],
        )

    def add(self, read: ClassifiedRead) -> None:
        if self.closed:
            raise RuntimeError("Cannot add reads to a closed cluster")
        assert read.breakpoint is not None
        self.members.append(read)
        self.breakpoint_min = min(self.breakpoint_min, read.breakpoint)
        self.breakpoint_max = max(self.breakpoint_max, read.breakpoint)

    def close(self) -> None:
        self.closed = True

    @property
    def span(self) -> int:
        return self.breakpoint_max - self.breakpoint_min

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class InsertionCall:
    """A resolved TE insertion. Field order is the output column order."""

    contig: str
    estimated_position: int
    strand: str  # '+', '-' or '.' when TE orientation evidence is tied
    te_family: str
    junction_support: int
    anchor_support: int
    confidence: str
    interval_start: int
    interval_end: int
    upstream_breakpoint: Optional[int] = None
    downstream_breakpoint: Optional[int] = None
    flanks: str = "both"  # 'both', '+' or '-'
    reference_status: str = NON_REFERENCE

    @property
    def in_reference(self) -> bool:
        return self.reference_status == REFERENCE

    @property
    def total_support(self) -> int:
        return self.junction_support + self.anchor_support

    def sort_key(self):
        return (
            self.contig,
            self.estimated_position,
            self.strand,
            self.te_family,
            self.interval_start,
            self.interval_end,
        )
