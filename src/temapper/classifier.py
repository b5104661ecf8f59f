from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .config import MapperConfig
from .models import ANCHOR, DISCARD, JUNCTION, AlignedRead, ClassifiedRead

logger = logging.getLogger(__name__)

DISCARD_REASONS = (
    "ambiguous",
    "both_genome",
    "both_te",
    "no_te_evidence",
    "unmapped",
)

_CLIP_END = "end"
_CLIP_START = "start"


def _clip_matches(clip: int, te_seg: AlignedRead, slack: int) -> bool:
    return clip > 0 and abs(clip - te_seg.length) <= slack


def _junction_sides(
    seg: AlignedRead, te: Sequence[AlignedRead], config: MapperConfig
) -> Dict[str, List[AlignedRead]]:
    """Map clip side -> TE segments confirming that clip as TE sequence."""
    sides: Dict[str, List[AlignedRead]] = {}
    for side, clip in ((_CLIP_END, seg.clip_end), (_CLIP_START, seg.clip_start)):
        if clip < config.min_junction_clip:
            continue
        hits = [t for t in te if _clip_matches(clip, t, config.junction_clip_slack)]
        if hits:
            sides[side] = hits
    return sides


def _discard(read: AlignedRead, reason: str) -> ClassifiedRead:
    return ClassifiedRead(read=read, read_class=DISCARD, discard_reason=reason)


def _classify_junction(
    genome: Sequence[AlignedRead], te: Sequence[AlignedRead], config: MapperConfig
) -> Optional[ClassifiedRead]:
    for seg in genome:
        sides = _junction_sides(seg, te, config)
        if not sides:
            continue
        if len(sides) > 1:
            # both ends clipped into TE sequence: no single boundary
            return _discard(seg, "ambiguous")
        side, hits = next(iter(sides.items()))
        if len({t.te_family for t in hits}) > 1:
            return _discard(seg, "ambiguous")
        t = hits[0]
        if side == _CLIP_END:
            breakpoint, flank = seg.end, "+"
        else:
            breakpoint, flank = seg.position, "-"
        return ClassifiedRead(
            read=seg,
            read_class=JUNCTION,
            breakpoint=breakpoint,
            strand=flank,
            te_family=t.te_family,
            te_strand="+" if t.strand == seg.strand else "-",
        )
    return None


def classify_group(segments: Sequence[AlignedRead], config: MapperConfig) -> ClassifiedRead:
    """Classify the segments of one read or read pair.

    Rules, in priority order:

    1. JUNCTION: a genome segment soft-clipped by at least ``min_junction_clip``
       at one end, whose clipped tail is confirmed by a TE-library segment of
       matching aligned length.
    2. ANCHOR: exactly one mate on the genome and the other mate in the TE
       library.
    3. DISCARD otherwise, including any multi-mapping segment.
    """
    if not segments:
        raise ValueError("classify_group() needs at least one segment")

    genome = [s for s in segments if not s.is_te]
    te = [s for s in segments if s.is_te]

    if not genome:
        return _discard(segments[0], "both_te" if len(te) > 1 else "unmapped")
    if any(s.ambiguous for s in segments):
        return _discard(genome[0], "ambiguous")

    # a TE segment matching a qualifying clip has already returned above, so
    # every remaining paired segment is mate evidence
    junction = _classify_junction(genome, te, config)
    if junction is not None:
        return junction

    mates = [s for s in segments if s.is_paired]
    if len(mates) < 2:
        return _discard(genome[0], "no_te_evidence")
    if len(mates) > 2:
        return _discard(genome[0], "ambiguous")

    g_mates = [s for s in mates if not s.is_te]
    t_mates = [s for s in mates if s.is_te]
    if len(t_mates) == 0:
        return _discard(genome[0], "both_genome")
    if len(g_mates) == 0:
        return _discard(genome[0], "both_te")

    g, t = g_mates[0], t_mates[0]
    if g.strand == "+":
        breakpoint = g.end
    else:
        breakpoint = g.position
    return ClassifiedRead(
        read=g,
        read_class=ANCHOR,
        breakpoint=breakpoint,
        strand=g.strand,
        te_family=t.te_family,
        te_strand="+" if t.strand != g.strand else "-",
    )


def classify_groups(
    groups: Iterable[Sequence[AlignedRead]], config: MapperConfig
) -> Iterator[ClassifiedRead]:
    for segments in groups:
        yield classify_group(segments, config)


def count_classes(classified: Iterable[ClassifiedRead]) -> Tuple[Dict[str, int], Dict[str, int]]:
    """Return (per-class counts, per-discard-reason counts)."""
    classes = {JUNCTION: 0, ANCHOR: 0, DISCARD: 0}
    reasons = {r: 0 for r in DISCARD_REASONS}
    for c in classified:
        classes[c.read_class] += 1
        if c.read_class == DISCARD and c.discard_reason is not None:
            reasons[c.discard_reason] = reasons.get(c.discard_reason, 0) + 1
    return classes, reasons


def placement_contig(segments: Sequence[AlignedRead], config: MapperConfig) -> Optional[str]:
    """Genome contig whose evidence stream this group feeds, or None.

    A split read can align to more than one contig (a supplementary alignment
    elsewhere); its evidence belongs to the contig of the segment it is
    classified on, not to its first genome segment.
    """
    contigs = {s.contig for s in segments if not s.is_te}
    if not contigs:
        return None
    if len(contigs) == 1:
        return next(iter(contigs))
    return classify_group(segments, config).contig
