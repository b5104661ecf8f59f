from __future__ import annotations

import random
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .adapter import RECORD_COLUMNS
from .models import GENOME, TE_LIBRARY, AlignedRead
from .utils import ensure_outdir, write_json

_READ_LEN = 100
_JUNCTION_CLIP = 30
_INSERT_SIZE = 300

GENOME_CONTIGS = {"chr1": 3000, "chr2": 2000}
TE_FAMILIES = {"TOY_LINE": 300, "TOY_SINE": 200}


def _write_fasta(path: Path, seqs: Dict[str, str]) -> None:
    lines: List[str] = []
    for name, seq in seqs.items():
        lines.append(f">{name}")
        for i in range(0, len(seq), 60):
            lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _seg(
    read_id: str,
    contig: str,
    position: int,
    strand: str,
    target: str,
    *,
    length: int = _READ_LEN,
    clip_start: int = 0,
    clip_end: int = 0,
    paired: bool = False,
) -> AlignedRead:
    return AlignedRead(
        read_id=read_id,
        contig=contig,
        position=position,
        length=length,
        strand=strand,
        clip_start=clip_start,
        clip_end=clip_end,
        target=target,
        te_family=contig if target == TE_LIBRARY else "",
        mate=read_id if paired else None,
    )


def toy_reads() -> Tuple[List[AlignedRead], Dict[str, object]]:
    """Segments for two planted insertions plus concordant background pairs.

    - chr1: TOY_LINE inserted between 1499 and 1500, supported on both
      flanks by split reads and discordant pairs;
    - chr2: TOY_SINE near 800, supported by discordant pairs on the left
      flank only.
    """
    segs: List[AlignedRead] = []

    # chr1, left flank: mates end before the insertion, TE mates point back
    for i in range(4):
        rid = f"c1_anchorL_{i}"
        segs.append(_seg(rid, "chr1", 1360 + 10 * i, "+", GENOME, paired=True))
        segs.append(_seg(rid, "TOY_LINE", 20 + 15 * i, "-", TE_LIBRARY, paired=True))
    # chr1, right flank
    for i in range(4):
        rid = f"c1_anchorR_{i}"
        segs.append(_seg(rid, "chr1", 1510 + 10 * i, "-", GENOME, paired=True))
        segs.append(_seg(rid, "TOY_LINE", 150 + 15 * i, "+", TE_LIBRARY, paired=True))

    te_len = TE_FAMILIES["TOY_LINE"]
    aligned = _READ_LEN - _JUNCTION_CLIP
    for i in range(3):
        # genome part ends at 1499, tail is the TE start
        rid = f"c1_splitL_{i}"
        segs.append(_seg(rid, "chr1", 1499 - aligned + 1, "+", GENOME, length=aligned, clip_end=_JUNCTION_CLIP))
        segs.append(
            _seg(rid, "TOY_LINE", 1, "+", TE_LIBRARY, length=_JUNCTION_CLIP, clip_end=aligned)
        )
        # genome part starts at 1500, head is the TE end
        rid = f"c1_splitR_{i}"
        segs.append(_seg(rid, "chr1", 1500, "+", GENOME, length=aligned, clip_start=_JUNCTION_CLIP))
        segs.append(
            _seg(
                rid,
                "TOY_LINE",
                te_len - _JUNCTION_CLIP + 1,
                "+",
                TE_LIBRARY,
                length=_JUNCTION_CLIP,
                clip_start=aligned,
            )
        )

    # chr2, left flank only
    for i in range(3):
        rid = f"c2_anchorL_{i}"
        segs.append(_seg(rid, "chr2", 650 + 20 * i, "+", GENOME, paired=True))
        segs.append(_seg(rid, "TOY_SINE", 30 + 20 * i, "-", TE_LIBRARY, paired=True))

    # background concordant pairs
    for contig in GENOME_CONTIGS:
        for i in range(5):
            rid = f"{contig}_bg_{i}"
            start = 200 + 40 * i
            segs.append(_seg(rid, contig, start, "+", GENOME, paired=True))
            segs.append(_seg(rid, contig, start + _INSERT_SIZE - _READ_LEN, "-", GENOME, paired=True))

    segs = [replace(s, order=i) for i, s in enumerate(segs)]
    expected = {
        "chr1": {"te_family": "TOY_LINE", "estimated_position": 1499, "confidence": "HIGH"},
        "chr2": {"te_family": "TOY_SINE", "confidence": "LOW"},
        "insert_size": _INSERT_SIZE,
    }
    return segs, expected


def write_records_tsv(reads: List[AlignedRead], path: str | Path) -> None:
    lines = ["\t".join(RECORD_COLUMNS)]
    for r in reads:
        lines.append(
            "\t".join(
                [
                    r.read_id,
                    r.contig,
                    str(r.position),
                    r.strand,
                    str(r.length),
                    str(r.clip_start),
                    str(r.clip_end),
                    r.target,
                    r.te_family,
                    r.mate or "",
                ]
            )
        )
    Path(path).write_text("\n".join(lines) + "\n", encoding="utf-8")


def _cigar(r: AlignedRead) -> List[Tuple[int, int]]:
    cig: List[Tuple[int, int]] = []
    if r.clip_start:
        cig.append((4, r.clip_start))
    cig.append((0, r.length))
    if r.clip_end:
        cig.append((4, r.clip_end))
    return cig


def _to_segment(
    r: AlignedRead,
    tid: int,
    rng: random.Random,
    *,
    read1: bool,
    proper_mate: AlignedRead | None = None,
) -> pysam.AlignedSegment:
    n = r.clip_start + r.length + r.clip_end
    a = pysam.AlignedSegment()
    a.query_name = r.read_id
    a.query_sequence = "".join(rng.choice("ACGT") for _ in range(n))
    a.flag = 0
    a.reference_id = tid
    a.reference_start = r.position - 1
    a.mapping_quality = 60
    a.cigartuples = _cigar(r)
    a.query_qualities = pysam.qualitystring_to_array("I" * n)
    a.is_reverse = r.strand == "-"
    a.set_tag("AS", r.length)
    if r.is_paired:
        a.is_paired = True
        a.is_read1 = read1
        a.is_read2 = not read1
        if proper_mate is None:
            a.mate_is_unmapped = True
        else:
            a.is_proper_pair = True
            a.next_reference_id = tid
            a.next_reference_start = proper_mate.position - 1
            a.mate_is_reverse = proper_mate.strand == "-"
            left = min(r.position, proper_mate.position)
            right = max(r.end, proper_mate.end)
            span = right - left + 1
            a.template_length = span if r.position <= proper_mate.position else -span
    return a


def _write_bam(path: Path, refs: Dict[str, int], segments: List[pysam.AlignedSegment]) -> None:
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": ln} for name, ln in refs.items()],
    }
    segments = sorted(segments, key=lambda s: (s.reference_id, s.reference_start))
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for s in segments:
            bam.write(s)
    pysam.index(str(path))


def make_toy_data(*, outdir: str | Path) -> Dict[str, object]:
    """Write a tiny genome, TE library, BAM pair and record file.

    Outputs:

    - ``toy_genome.fa`` and ``toy_te.fa``
    - ``genome.bam`` / ``te.bam`` (+ .bai)
    - ``records.tsv`` (the same alignments as a record file)
    - ``toy_summary.json`` (paths plus the expected calls)
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    genome_fa = outdir_p / "toy_genome.fa"
    te_fa = outdir_p / "toy_te.fa"
    _write_fasta(genome_fa, {c: "".join(rng.choice("ACGT") for _ in range(n)) for c, n in GENOME_CONTIGS.items()})
    _write_fasta(te_fa, {t: "".join(rng.choice("ACGT") for _ in range(n)) for t, n in TE_FAMILIES.items()})
    pysam.faidx(str(genome_fa))
    pysam.faidx(str(te_fa))

    reads, expected = toy_reads()

    genome_tid = {c: i for i, c in enumerate(GENOME_CONTIGS)}
    te_tid = {t: i for i, t in enumerate(TE_FAMILIES)}

    by_id: Dict[str, List[AlignedRead]] = {}
    for r in reads:
        by_id.setdefault(r.read_id, []).append(r)

    genome_segs: List[pysam.AlignedSegment] = []
    te_segs: List[pysam.AlignedSegment] = []
    for group in by_id.values():
        genome_side = [r for r in group if r.target == GENOME]
        concordant = len(genome_side) == 2
        for r in group:
            if r.target == GENOME:
                read1 = r is genome_side[0]
                mate = None
                if concordant:
                    mate = genome_side[1] if read1 else genome_side[0]
                genome_segs.append(_to_segment(r, genome_tid[r.contig], rng, read1=read1, proper_mate=mate))
            else:
                te_segs.append(_to_segment(r, te_tid[r.contig], rng, read1=False))

    genome_bam = outdir_p / "genome.bam"
    te_bam = outdir_p / "te.bam"
    _write_bam(genome_bam, GENOME_CONTIGS, genome_segs)
    _write_bam(te_bam, TE_FAMILIES, te_segs)

    records = outdir_p / "records.tsv"
    write_records_tsv(reads, records)

    summary: Dict[str, object] = {
        "genome_fa": str(genome_fa),
        "te_fa": str(te_fa),
        "genome_bam": str(genome_bam),
        "te_bam": str(te_bam),
        "records": str(records),
        "outdir": str(outdir_p),
        "expected": expected,
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
