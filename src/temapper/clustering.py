"""Window-sweep clustering of breakpoint evidence.

Each ``(contig, strand, evidence)`` stream is swept independently: reads are
sorted by breakpoint and a read either extends the open cluster (gap to the
cluster's ``breakpoint_max`` within the window) or closes it and seeds a new
one. Because the sweep only compares a read to the running maximum, a long
run of closely spaced reads forms one cluster even if its total span exceeds
the window; adjacent tandem insertions inside such a run are not split.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .config import MapperConfig
from .models import ANCHOR, DISCARD, JUNCTION, ClassifiedRead, Cluster

logger = logging.getLogger(__name__)

# (contig, strand, evidence)
StreamKey = Tuple[str, str, str]


def stream_key(read: ClassifiedRead) -> StreamKey:
    if read.read_class == DISCARD or read.breakpoint is None:
        raise ValueError(f"DISCARD read {read.read_id} cannot be clustered")
    return (read.contig, read.strand, read.read_class)


def partition_streams(reads: Iterable[ClassifiedRead]) -> Dict[StreamKey, List[ClassifiedRead]]:
    streams: Dict[StreamKey, List[ClassifiedRead]] = {}
    for r in reads:
        streams.setdefault(stream_key(r), []).append(r)
    return streams


def window_for(evidence: str, config: MapperConfig) -> int:
    if evidence == JUNCTION:
        return config.window_size_junction
    if evidence == ANCHOR:
        return config.anchor_window
    raise ValueError(f"No clustering window for evidence type {evidence!r}")


def sweep(reads: Iterable[ClassifiedRead], *, window: int, evidence: str) -> List[Cluster]:
    """Sweep one stream in breakpoint order and return its closed clusters."""
    ordered = sorted(reads, key=lambda r: (r.breakpoint, r.order))
    clusters: List[Cluster] = []
    open_cluster: Optional[Cluster] = None

    for read in ordered:
        assert read.breakpoint is not None
        if open_cluster is None or read.breakpoint - open_cluster.breakpoint_max > window:
            if open_cluster is not None:
                open_cluster.close()
            open_cluster = Cluster.seed(read, evidence)
            clusters.append(open_cluster)
        else:
            open_cluster.add(read)

    if open_cluster is not None:
        open_cluster.close()
    return clusters


def cluster_reads(reads: Iterable[ClassifiedRead], config: MapperConfig) -> List[Cluster]:
    """Cluster JUNCTION/ANCHOR reads; one independent sweep per stream.

    Raises ValueError if a DISCARD read is passed in.
    """
    streams = partition_streams(reads)
    clusters: List[Cluster] = []
    for key in sorted(streams):
        contig, strand, evidence = key
        found = sweep(streams[key], window=window_for(evidence, config), evidence=evidence)
        logger.debug(
            "%s %s %s: %d reads -> %d clusters",
            contig,
            strand,
            evidence,
            len(streams[key]),
            len(found),
        )
        clusters.extend(found)
    return clusters
