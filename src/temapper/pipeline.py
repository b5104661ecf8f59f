"""Per-contig classify -> cluster -> resolve orchestration.

Contigs are independent: each one is processed from its own read groups and
the read-only config and returns a private :class:`ContigResult`. Results are
merged into a :class:`RunStats` by the driver, so no counters are shared
between workers.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .adapter import (
    estimate_insert_size,
    group_by_read_id,
    load_bam_records,
    load_records,
    te_lengths_from_bam,
    te_lengths_from_fasta,
)
from .classifier import DISCARD_REASONS, classify_groups, count_classes, placement_contig
from .clustering import cluster_reads
from .config import MapperConfig
from .emitter import sort_calls, write_calls
from .errors import ContigProcessingFailure
from .models import ANCHOR, CONFIDENCE_TIERS, DISCARD, JUNCTION, AlignedRead, InsertionCall
from .resolver import resolve_contig
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)

ReadGroup = List[AlignedRead]


@dataclass
class ContigResult:
    contig: str
    calls: List[InsertionCall] = field(default_factory=list)
    class_counts: Dict[str, int] = field(default_factory=dict)
    discard_reasons: Dict[str, int] = field(default_factory=dict)
    clusters: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class RunStats:
    """Run-level counters, built by merging per-contig results."""

    records_total: int = 0
    records_skipped: int = 0
    reads_classified: Dict[str, int] = field(
        default_factory=lambda: {JUNCTION: 0, ANCHOR: 0, DISCARD: 0}
    )
    discard_reasons: Dict[str, int] = field(default_factory=lambda: {r: 0 for r in DISCARD_REASONS})
    clusters_formed: Dict[str, int] = field(default_factory=lambda: {JUNCTION: 0, ANCHOR: 0})
    calls_emitted: int = 0
    calls_by_confidence: Dict[str, int] = field(default_factory=lambda: {t: 0 for t in CONFIDENCE_TIERS})
    reference_calls: int = 0
    contigs_processed: int = 0
    failed_contigs: Dict[str, str] = field(default_factory=dict)
    cancelled_contigs: List[str] = field(default_factory=list)
    runtime_seconds: float = 0.0

    def add_classes(self, class_counts: Dict[str, int], reasons: Dict[str, int]) -> None:
        for k, v in class_counts.items():
            self.reads_classified[k] = self.reads_classified.get(k, 0) + v
        for k, v in reasons.items():
            self.discard_reasons[k] = self.discard_reasons.get(k, 0) + v

    def add_contig(self, result: ContigResult) -> None:
        if result.error is not None:
            self.failed_contigs[result.contig] = result.error
            return
        self.contigs_processed += 1
        self.add_classes(result.class_counts, result.discard_reasons)
        for k, v in result.clusters.items():
            self.clusters_formed[k] = self.clusters_formed.get(k, 0) + v
        self.calls_emitted += len(result.calls)
        for c in result.calls:
            self.calls_by_confidence[c.confidence] += 1
            if c.in_reference:
                self.reference_calls += 1

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class MappingResult:
    calls: List[InsertionCall]
    stats: RunStats


def partition_by_contig(
    reads: Iterable[AlignedRead], config: MapperConfig
) -> Tuple[Dict[str, List[ReadGroup]], List[ReadGroup]]:
    """Group segments by read id, then bucket groups by genome contig.

    Returns ``(groups_by_contig, unplaced)`` where ``unplaced`` holds groups
    with no genome-side segment. A group whose genome segments span several
    contigs goes to the contig it is classified on.
    """
    by_contig: Dict[str, List[ReadGroup]] = {}
    unplaced: List[ReadGroup] = []
    for segments in group_by_read_id(reads).values():
        contig = placement_contig(segments, config)
        if contig is None:
            unplaced.append(segments)
        else:
            by_contig.setdefault(contig, []).append(segments)
    return by_contig, unplaced


def process_contig(
    contig: str,
    groups: Sequence[ReadGroup],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]] = None,
) -> ContigResult:
    """Classify, cluster and resolve one contig."""
    classified = list(classify_groups(groups, config))
    class_counts, reasons = count_classes(classified)

    evidence = [c for c in classified if c.read_class != DISCARD]
    clusters = cluster_reads(evidence, config)
    calls = resolve_contig(clusters, config, te_lengths=te_lengths)

    return ContigResult(
        contig=contig,
        calls=calls,
        class_counts=class_counts,
        discard_reasons=reasons,
        clusters={
            JUNCTION: sum(1 for c in clusters if c.evidence == JUNCTION),
            ANCHOR: sum(1 for c in clusters if c.evidence == ANCHOR),
        },
    )


def process_contig_isolated(
    contig: str,
    groups: Sequence[ReadGroup],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]] = None,
) -> ContigResult:
    """Run :func:`process_contig`, turning any failure into a failed result."""
    try:
        return process_contig(contig, groups, config, te_lengths)
    except Exception as e:
        failure = ContigProcessingFailure(contig, f"{e.__class__.__name__}: {e}")
        logger.error("%s", failure)
        return ContigResult(contig=contig, error=failure.cause)


def _run_sequential(
    work: Dict[str, List[ReadGroup]],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]],
    stats: RunStats,
    should_cancel: Optional[Callable[[], bool]],
    progress: bool,
) -> List[ContigResult]:
    results: List[ContigResult] = []
    contigs = sorted(work)
    it: Iterable[str] = contigs
    if progress:
        it = tqdm(contigs, unit="contig", desc="Mapping insertions")
    for contig in it:
        if should_cancel is not None and should_cancel():
            stats.cancelled_contigs = [c for c in contigs if c not in {r.contig for r in results}]
            logger.warning("Run cancelled; %d contig(s) not processed.", len(stats.cancelled_contigs))
            break
        results.append(process_contig_isolated(contig, work[contig], config, te_lengths))
    return results


def _future_result(fut: Future, contig: str) -> ContigResult:
    try:
        return fut.result()
    except Exception as e:
        # worker died before returning a result
        failure = ContigProcessingFailure(contig, f"{e.__class__.__name__}: {e}")
        logger.error("%s", failure)
        return ContigResult(contig=contig, error=failure.cause)


def _run_parallel(
    work: Dict[str, List[ReadGroup]],
    config: MapperConfig,
    te_lengths: Optional[Dict[str, int]],
    stats: RunStats,
    should_cancel: Optional[Callable[[], bool]],
    progress: bool,
) -> List[ContigResult]:
    results: List[ContigResult] = []
    with ProcessPoolExecutor(max_workers=config.workers) as ex:
        futures: Dict[Future, str] = {
            ex.submit(process_contig_isolated, contig, work[contig], config, te_lengths): contig
            for contig in sorted(work)
        }
        collected = set()
        done = as_completed(futures)
        if progress:
            done = tqdm(done, total=len(futures), unit="contig", desc="Mapping insertions")
        for fut in done:
            results.append(_future_result(fut, futures[fut]))
            collected.add(fut)
            if should_cancel is not None and should_cancel():
                break
        else:
            return results

        # cancelled: pending contigs are dropped, running ones are awaited and kept
        running = []
        for f, c in futures.items():
            if f in collected:
                continue
            if f.cancel():
                stats.cancelled_contigs.append(c)
            else:
                running.append(f)
        for f in running:
            results.append(_future_result(f, futures[f]))
    stats.cancelled_contigs.sort()
    logger.warning("Run cancelled; %d contig(s) not processed.", len(stats.cancelled_contigs))
    return results


def map_insertions(
    reads: Iterable[AlignedRead],
    config: MapperConfig,
    *,
    te_lengths: Optional[Dict[str, int]] = None,
    record_stats: Optional[Dict[str, int]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    progress: bool = False,
) -> MappingResult:
    """Map TE insertions from already-adapted reads.

    Parameters
    ----------
    reads:
        AlignedRead records (all contigs, any order).
    config:
        Mapper parameters; validated before any work starts.
    te_lengths:
        TE consensus length per family. Needed to call TEs already present
        in the reference; without it every call is non-reference.
    record_stats:
        Adapter counters (``records_total``/``records_skipped``) to carry
        into the run summary.
    should_cancel:
        Polled between contigs; when it returns True no further contig is
        started.
    progress:
        Show a tqdm progress bar over contigs.
    """
    t0 = time.time()
    config.validate()

    stats = RunStats()
    if record_stats:
        stats.records_total = int(record_stats.get("records_total", 0))
        stats.records_skipped = int(record_stats.get("records_skipped", 0))

    work, unplaced = partition_by_contig(reads, config)
    if unplaced:
        stats.add_classes(*count_classes(classify_groups(unplaced, config)))

    logger.info(
        "Mapping %d read group(s) over %d contig(s) with %d worker(s); anchor window %d bp.",
        sum(len(g) for g in work.values()),
        len(work),
        config.workers,
        config.anchor_window,
    )

    if config.workers > 1 and len(work) > 1:
        results = _run_parallel(work, config, te_lengths, stats, should_cancel, progress)
    else:
        results = _run_sequential(work, config, te_lengths, stats, should_cancel, progress)

    calls: List[InsertionCall] = []
    for result in sorted(results, key=lambda r: r.contig):
        stats.add_contig(result)
        calls.extend(result.calls)

    stats.runtime_seconds = float(time.time() - t0)
    if stats.failed_contigs:
        logger.warning("%d contig(s) failed: %s", len(stats.failed_contigs), ", ".join(sorted(stats.failed_contigs)))
    return MappingResult(calls=sort_calls(calls), stats=stats)


def support_histogram(calls: Sequence[InsertionCall]) -> Dict[int, int]:
    """Number of calls per total read support."""
    if not calls:
        return {}
    counts = np.bincount(np.asarray([c.total_support for c in calls], dtype=np.int64))
    return {int(k): int(v) for k, v in enumerate(counts) if v > 0}


def run_map(
    *,
    outdir: str | Path,
    config: MapperConfig,
    records: Optional[str | Path] = None,
    genome_bam: Optional[str | Path] = None,
    te_bam: Optional[str | Path] = None,
    te_fasta: Optional[str | Path] = None,
    output_format: str = "tsv",
    calls_path: Optional[str | Path] = None,
    skip_duplicates: bool = True,
    progress: bool = True,
) -> Tuple[Dict[str, object], List[InsertionCall]]:
    """Load alignments, map insertions, write calls and ``summary.json``.

    Returns the summary dict and the sorted calls.

    Exactly one input source is required: a record file (``records``) or a
    genome/TE BAM pair. When reading BAMs and no anchor window or insert
    size is configured, the insert size is estimated from the genome BAM.
    TE lengths for reference calls come from ``te_fasta`` when given,
    otherwise from the TE BAM header; record input without ``te_fasta``
    yields non-reference calls only.
    """
    config.validate()
    outdir_path = ensure_outdir(outdir)

    if records is not None and (genome_bam is not None or te_bam is not None):
        raise ValueError("Provide either a record file or a genome/TE BAM pair, not both.")
    te_lengths: Optional[Dict[str, int]] = None
    if records is not None:
        reads, record_stats = load_records(records)
        source: Dict[str, Optional[str]] = {"records": str(records)}
    elif genome_bam is not None and te_bam is not None:
        if config.window_size_anchor is None and config.insert_size is None:
            config = config.with_insert_size(estimate_insert_size(genome_bam))
        reads, record_stats = load_bam_records(genome_bam, te_bam, skip_duplicates=skip_duplicates)
        source = {"genome_bam": str(genome_bam), "te_bam": str(te_bam)}
        te_lengths = te_lengths_from_bam(te_bam)
    else:
        raise ValueError("An input is required: --records, or both --genome-bam and --te-bam.")
    if te_fasta is not None:
        te_lengths = te_lengths_from_fasta(te_fasta)
        source["te_fasta"] = str(te_fasta)
    if te_lengths is None:
        logger.info("No TE lengths available; reference TEs will not be called.")

    result = map_insertions(
        reads, config, te_lengths=te_lengths, record_stats=record_stats, progress=progress
    )

    if calls_path is None:
        calls_path = outdir_path / ("calls.json" if output_format == "json" else "calls.tsv")
    write_calls(result.calls, calls_path, fmt=output_format)

    summary: Dict[str, object] = {
        "inputs": source,
        "config": config.to_dict(),
        "calls_path": str(calls_path),
        "output_format": output_format,
        "record_stats": record_stats,
        "stats": result.stats.to_dict(),
        "support_hist": support_histogram(result.calls),
    }
    write_json(outdir_path / "summary.json", summary)
    return summary, result.calls
