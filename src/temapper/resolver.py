"""Turn closed clusters of one contig into insertion calls.

Steps:

1. merge junction and anchor clusters of the same flank strand whose ranges
   overlap or lie within the anchor window (union-find over the links);
2. pair ``+`` and ``-`` flank events that bound the same TE: two junction
   flanks overlapping by a short target-site duplication are a non-reference
   insertion, two flanks about one TE length apart a copy in the reference;
3. resolve the TE family, orientation, position and confidence of each call.
"""

from __future__ import annotations

import bisect
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import MapperConfig
from .models import (
    AMBIGUOUS,
    ANCHOR,
    HIGH,
    JUNCTION,
    LOW,
    MEDIUM,
    NON_REFERENCE,
    REFERENCE,
    ClassifiedRead,
    Cluster,
    InsertionCall,
)

logger = logging.getLogger(__name__)


class _DisjointSet:
    def __init__(self, n: int) -> None:
        self.parent = list(range(n))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # keep the lower index as root so components are stable
            if rb < ra:
                ra, rb = rb, ra
            self.parent[rb] = ra


@dataclass
class FlankEvent:
    """Merged junction + anchor clusters on one flank strand."""

    strand: str
    clusters: List[Cluster] = field(default_factory=list)

    @property
    def start(self) -> int:
        return min(c.breakpoint_min for c in self.clusters)

    @property
    def end(self) -> int:
        return max(c.breakpoint_max for c in self.clusters)

    @property
    def members(self) -> List[ClassifiedRead]:
        return [r for c in self.clusters for r in c.members]

    @property
    def has_junction(self) -> bool:
        return any(c.evidence == JUNCTION for c in self.clusters)


def interval_gap(a_start: int, a_end: int, b_start: int, b_end: int) -> int:
    """Distance between two closed intervals; 0 when they overlap."""
    return max(a_start - b_end, b_start - a_end, 0)


class _IntervalIndex:
    """Lookup of closed intervals (sorted by start) intersecting a query range."""

    def __init__(self, starts: Sequence[int], ends: Sequence[int]) -> None:
        self.starts = list(starts)
        self.ends = list(ends)
        # running max of ends is monotonic even when intervals nest
        self.reach: List[int] = []
        top = None
        for e in self.ends:
            top = e if top is None else max(top, e)
            self.reach.append(top)

    def query(self, lo: int, hi: int) -> List[int]:
        left = bisect.bisect_left(self.reach, lo)
        right = bisect.bisect_right(self.starts, hi)
        return [i for i in range(left, right) if self.ends[i] >= lo]


def merge_flank(clusters: Sequence[Cluster], window: int) -> List[FlankEvent]:
    """Merge same-strand junction and anchor clusters into flank events.

    Junction clusters are linked only to anchor clusters (never directly to
    each other), so two junction clusters share an event only through a
    common anchor cluster.
    """
    if not clusters:
        return []
    strands = {c.strand for c in clusters}
    if len(strands) != 1:
        raise ValueError(f"merge_flank() expects one strand, got {sorted(strands)}")

    ordered = sorted(clusters, key=lambda c: (c.breakpoint_min, c.breakpoint_max, c.evidence))
    index = {id(c): i for i, c in enumerate(ordered)}
    anchors = [c for c in ordered if c.evidence == ANCHOR]
    lookup = _IntervalIndex([c.breakpoint_min for c in anchors], [c.breakpoint_max for c in anchors])

    ds = _DisjointSet(len(ordered))
    for j in ordered:
        if j.evidence != JUNCTION:
            continue
        for ia in lookup.query(j.breakpoint_min - window, j.breakpoint_max + window):
            ds.union(index[id(j)], index[id(anchors[ia])])

    components: Dict[int, FlankEvent] = {}
    for i, c in enumerate(ordered):
        root = ds.find(i)
        if root not in components:
            components[root] = FlankEvent(strand=c.strand)
        components[root].clusters.append(c)
    return sorted(components.values(), key=lambda e: (e.start, e.end))


def junction_mode(event: Optional[FlankEvent]) -> Optional[int]:
    """Dominant junction breakpoint of a flank event, or None."""
    if event is None:
        return None
    bps = [r.breakpoint for r in event.members if r.read_class == JUNCTION]
    return _mode(bps) if bps else None


def tsd_length(upstream: int, downstream: int) -> int:
    """Length of the target-site duplication bounded by two junctions.

    ``upstream`` is the last genome base before the TE (``+`` flank) and
    ``downstream`` the first genome base after it (``-`` flank). The
    duplicated site is ``[downstream, upstream]``, so a blunt insertion has
    length 0 and a negative length means the flanks leave a genomic gap.
    """
    return upstream - downstream + 1


def reference_span_bounds(
    plus: FlankEvent,
    minus: FlankEvent,
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]],
) -> Optional[Tuple[int, int]]:
    """Allowed ``downstream - upstream`` span for a TE copy in the reference.

    Both flanks must resolve to the same family with a known consensus length.
    """
    if not te_lengths:
        return None
    margin = config.family_ambiguity_margin
    family = resolve_family((r.te_family for r in plus.members), margin)
    if family == AMBIGUOUS or family not in te_lengths:
        return None
    if resolve_family((r.te_family for r in minus.members), margin) != family:
        return None
    length = te_lengths[family]
    return int(config.min_te_length_fraction * length), int(config.max_te_length_fraction * length)


def _pair_candidate(
    plus: FlankEvent,
    minus: FlankEvent,
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]],
) -> Optional[Tuple[int, int, str]]:
    """``(rank, score, reference_status)`` if the two events bound one TE.

    Junction flanks on both sides are directional: a non-reference insertion
    needs a TSD of 0..max_tsd_length, a reference copy needs the ``-`` flank
    one TE length to the right. Anything involving anchor-only flanks pairs
    by interval gap within the anchor window.
    """
    if plus.has_junction and minus.has_junction:
        upstream, downstream = junction_mode(plus), junction_mode(minus)
        assert upstream is not None and downstream is not None
        tsd = tsd_length(upstream, downstream)
        if 0 <= tsd <= config.max_tsd_length:
            return 0, tsd, NON_REFERENCE
        bounds = reference_span_bounds(plus, minus, config, te_lengths)
        if bounds is not None and bounds[0] <= downstream - upstream <= bounds[1]:
            return 1, downstream - upstream, REFERENCE
        return None
    gap = interval_gap(plus.start, plus.end, minus.start, minus.end)
    if gap <= config.anchor_window:
        return 0, gap, NON_REFERENCE
    return None


def pair_flanks(
    plus_events: Sequence[FlankEvent],
    minus_events: Sequence[FlankEvent],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]] = None,
) -> List[Tuple[Optional[FlankEvent], Optional[FlankEvent], str]]:
    """Pair opposite-flank events that bound the same TE.

    Non-reference candidates are accepted before reference ones, then by
    increasing TSD length or gap, then by position; each event is used at
    most once. Unpaired events are returned as single-flank entries.
    """
    max_reach = max(config.anchor_window, config.max_tsd_length + 1)
    if te_lengths:
        max_reach = max(max_reach, int(config.max_te_length_fraction * max(te_lengths.values())))
    minus_sorted = sorted(range(len(minus_events)), key=lambda i: minus_events[i].start)
    lookup = _IntervalIndex(
        [minus_events[i].start for i in minus_sorted], [minus_events[i].end for i in minus_sorted]
    )

    candidates: List[Tuple[int, int, int, int, int, int, str]] = []
    for ip, p in enumerate(plus_events):
        for k in lookup.query(p.start - max_reach, p.end + max_reach):
            im = minus_sorted[k]
            m = minus_events[im]
            found = _pair_candidate(p, m, config, te_lengths)
            if found is not None:
                rank, score, status = found
                candidates.append((rank, score, p.start, m.start, ip, im, status))
    candidates.sort()

    used_p: set = set()
    used_m: set = set()
    out: List[Tuple[Optional[FlankEvent], Optional[FlankEvent], str]] = []
    for _rank, _score, _ps, _ms, ip, im, status in candidates:
        if ip in used_p or im in used_m:
            continue
        used_p.add(ip)
        used_m.add(im)
        out.append((plus_events[ip], minus_events[im], status))

    out.extend((p, None, NON_REFERENCE) for i, p in enumerate(plus_events) if i not in used_p)
    out.extend((None, m, NON_REFERENCE) for i, m in enumerate(minus_events) if i not in used_m)
    return out


def resolve_family(families: Iterable[str], margin: int) -> str:
    """Plurality TE family, or AMBIGUOUS when the runner-up is within ``margin``."""
    counts = Counter(f for f in families if f)
    if not counts:
        return AMBIGUOUS
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    if len(ranked) > 1 and ranked[0][1] - ranked[1][1] <= margin:
        return AMBIGUOUS
    return ranked[0][0]


def resolve_orientation(te_strands: Iterable[str]) -> str:
    counts = Counter(te_strands)
    plus, minus = counts.get("+", 0), counts.get("-", 0)
    if plus > minus:
        return "+"
    if minus > plus:
        return "-"
    return "."


def assign_confidence(
    *,
    both_flanks: bool,
    junction_support: int,
    anchor_support: int,
    min_anchor_support: int,
) -> str:
    if junction_support == 0:
        return LOW
    if both_flanks and anchor_support >= min_anchor_support:
        return HIGH
    return MEDIUM


def _mode(values: Sequence[int]) -> int:
    # most frequent value; lowest wins ties
    counts = Counter(values)
    return min(counts, key=lambda v: (-counts[v], v))


def build_call(
    contig: str,
    plus: Optional[FlankEvent],
    minus: Optional[FlankEvent],
    config: MapperConfig,
    reference_status: str = NON_REFERENCE,
) -> InsertionCall:
    events = [e for e in (plus, minus) if e is not None]
    if not events:
        raise ValueError("build_call() needs at least one flank event")

    members = [r for e in events for r in e.members]
    junction_bps = [r.breakpoint for r in members if r.read_class == JUNCTION]
    anchor_bps = [r.breakpoint for r in members if r.read_class == ANCHOR]

    if junction_bps:
        position = _mode(junction_bps)
        interval = (min(junction_bps), max(junction_bps))
    else:
        lo, hi = min(anchor_bps), max(anchor_bps)
        position = (lo + hi) // 2
        interval = (lo, hi)

    both = plus is not None and minus is not None
    return InsertionCall(
        contig=contig,
        estimated_position=int(position),
        strand=resolve_orientation(r.te_strand for r in members),
        te_family=resolve_family((r.te_family for r in members), config.family_ambiguity_margin),
        junction_support=len(junction_bps),
        anchor_support=len(anchor_bps),
        confidence=assign_confidence(
            both_flanks=both,
            junction_support=len(junction_bps),
            anchor_support=len(anchor_bps),
            min_anchor_support=config.min_anchor_support,
        ),
        interval_start=int(interval[0]),
        interval_end=int(interval[1]),
        upstream_breakpoint=junction_mode(plus),
        downstream_breakpoint=junction_mode(minus),
        flanks="both" if both else events[0].strand,
        reference_status=reference_status,
    )


def resolve_contig(
    clusters: Sequence[Cluster],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]] = None,
) -> List[InsertionCall]:
    """Resolve all closed clusters of a single contig into calls.

    ``te_lengths`` maps TE family to consensus length; without it no call is
    labelled as a reference TE.
    """
    if not clusters:
        return []
    contigs = {c.contig for c in clusters}
    if len(contigs) != 1:
        raise ValueError(f"resolve_contig() expects one contig, got {sorted(contigs)}")
    contig = next(iter(contigs))
    if any(not c.closed for c in clusters):
        raise ValueError("resolve_contig() requires closed clusters")

    window = config.anchor_window
    plus_events = merge_flank([c for c in clusters if c.strand == "+"], window)
    minus_events = merge_flank([c for c in clusters if c.strand == "-"], window)

    calls = [
        build_call(contig, p, m, config, status)
        for p, m, status in pair_flanks(plus_events, minus_events, config, te_lengths)
    ]
    calls.sort(key=InsertionCall.sort_key)
    logger.debug(
        "%s: %d + events, %d - events -> %d calls",
        contig,
        len(plus_events),
        len(minus_events),
        len(calls),
    )
    return calls
