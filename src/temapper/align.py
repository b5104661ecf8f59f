from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam

from .external import ensure_executable_in_path, run_command, run_pipe
from .utils import ensure_outdir

logger = logging.getLogger(__name__)

# files written by `bwa index`
_BWA_INDEX_SUFFIXES = (".amb", ".ann", ".bwt", ".pac", ".sa")


def bwa_index_exists(ref_fa: str | Path) -> bool:
    ref = str(ref_fa)
    return all(Path(ref + s).exists() for s in _BWA_INDEX_SUFFIXES)


def bam_index_exists(bam: Path) -> bool:
    return bam.with_suffix(bam.suffix + ".bai").exists() or bam.with_suffix(".bai").exists()


def _ensure_faidx(ref_fa: Path) -> None:
    fai = ref_fa.with_suffix(ref_fa.suffix + ".fai")
    if fai.exists():
        return
    logger.info("Creating FASTA index: %s", fai)
    pysam.faidx(str(ref_fa))


def _check_inputs(fastq: Sequence[str | Path], ref_fa: str | Path) -> tuple[List[Path], Path]:
    ref = Path(ref_fa).expanduser().resolve()
    reads = [Path(x).expanduser().resolve() for x in fastq]
    if not ref.exists():
        raise FileNotFoundError(f"Reference FASTA not found: {ref}")
    if not 1 <= len(reads) <= 2:
        raise ValueError(f"Expected one FASTQ (single-end) or two (paired-end), got {len(reads)}")
    for fq in reads:
        if not fq.exists():
            raise FileNotFoundError(f"FASTQ not found: {fq}")
    return reads, ref


def build_alignment_commands(
    *,
    fastq: Sequence[str | Path],
    ref_fa: str | Path,
    out_bam: str | Path,
    threads: int = 4,
    sort_mem: str = "1G",
    read_group: Optional[str] = None,
) -> Dict[str, List[str]]:
    """Build the bwa/samtools command lines for one reference.

    ``bwa mem -Y`` soft-clips supplementary alignments so that split reads
    keep their clipped tail length in the CIGAR.
    """
    reads, ref = _check_inputs(fastq, ref_fa)
    out = Path(out_bam).expanduser().resolve()

    mem = ["bwa", "mem", "-Y", "-t", str(int(threads))]
    if read_group:
        mem += ["-R", read_group]
    mem += [str(ref)] + [str(p) for p in reads]

    tmp_prefix = str(out.with_suffix("")) + ".tmp"
    sort = [
        "samtools",
        "sort",
        "-@",
        str(int(threads)),
        "-m",
        str(sort_mem),
        "-T",
        tmp_prefix,
        "-o",
        str(out),
        "-",
    ]
    return {
        "bwa_index": ["bwa", "index", str(ref)],
        "bwa_mem": mem,
        "samtools_sort": sort,
        "samtools_index": ["samtools", "index", str(out)],
    }


def align_reads(
    *,
    fastq: Sequence[str | Path],
    ref_fa: str | Path,
    out_bam: str | Path,
    threads: int = 4,
    sort_mem: str = "1G",
    read_group: Optional[str] = None,
    dry_run: bool = False,
    resume: bool = False,
) -> Dict[str, object]:
    """Align reads to a genome or TE library FASTA into a sorted, indexed BAM.

    Run once against the genome and once against the TE library to get the
    BAM pair that ``temapper map`` reads.

    Parameters
    ----------
    fastq:
        One FASTQ (single-end) or two (paired-end mates).
    ref_fa:
        Genome or TE-library FASTA. Indexed with ``bwa index`` if needed.
    out_bam:
        Coordinate-sorted output BAM.
    dry_run:
        Validate inputs and return the planned commands without running them.
    resume:
        Skip everything if ``out_bam`` and its index already exist.

    Returns
    -------
    dict
        Summary with the commands (``None`` when skipped) and runtime.
    """
    t0 = time.time()
    reads, ref = _check_inputs(fastq, ref_fa)
    out = Path(out_bam).expanduser().resolve()

    summary: Dict[str, object] = {
        "ref_fa": str(ref),
        "fastq": [str(p) for p in reads],
        "out_bam": str(out),
        "threads": int(threads),
        "sort_mem": sort_mem,
        "cmd_bwa_index": None,
        "cmd_bwa_mem": None,
        "cmd_samtools_sort": None,
        "cmd_samtools_index": None,
        "runtime_seconds": 0.0,
    }

    if resume and out.exists() and bam_index_exists(out):
        logger.info("Resume enabled: alignment outputs already exist: %s", out)
        summary["skipped"] = True
        return summary

    cmds = build_alignment_commands(
        fastq=reads,
        ref_fa=ref,
        out_bam=out,
        threads=threads,
        sort_mem=sort_mem,
        read_group=read_group,
    )
    need_index = not bwa_index_exists(ref)
    if need_index:
        summary["cmd_bwa_index"] = cmds["bwa_index"]
    summary["cmd_bwa_mem"] = cmds["bwa_mem"]
    summary["cmd_samtools_sort"] = cmds["samtools_sort"]
    summary["cmd_samtools_index"] = cmds["samtools_index"]

    if dry_run:
        summary["dry_run"] = True
        return summary

    ensure_executable_in_path("bwa")
    ensure_executable_in_path("samtools")
    ensure_outdir(out.parent)
    _ensure_faidx(ref)

    if need_index:
        logger.info("Building bwa index for %s", ref)
        run_command(cmds["bwa_index"], check=True)

    logger.info("Aligning %d FASTQ file(s) to %s with bwa mem...", len(reads), ref.name)
    run_pipe(cmds["bwa_mem"], cmds["samtools_sort"], check=True)

    logger.info("Indexing BAM: %s", out)
    run_command(cmds["samtools_index"], check=True)

    summary["runtime_seconds"] = float(time.time() - t0)
    return summary
