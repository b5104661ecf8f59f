import sys
from pathlib import Path

import pytest

from temapper.align import align_reads, build_alignment_commands
from temapper.doctor import collect_checks
from temapper.external import ExternalCommandError, cmd_to_str, run_command


def _inputs(tmp_path: Path):
    ref = tmp_path / "te_library.fa"
    ref.write_text(">L1\nACGTACGT\n", encoding="utf-8")
    r1 = tmp_path / "r1.fq"
    r2 = tmp_path / "r2.fq"
    for p in (r1, r2):
        p.write_text("@r\nACGT\n+\nIIII\n", encoding="utf-8")
    return ref, r1, r2


def test_paired_end_commands(tmp_path: Path) -> None:
    ref, r1, r2 = _inputs(tmp_path)
    cmds = build_alignment_commands(fastq=[r1, r2], ref_fa=ref, out_bam=tmp_path / "te.bam", threads=2)
    assert cmds["bwa_mem"][:5] == ["bwa", "mem", "-Y", "-t", "2"]
    assert cmds["bwa_mem"][-2:] == [str(r1.resolve()), str(r2.resolve())]
    assert cmds["samtools_sort"][-1] == "-"
    assert cmds["samtools_index"] == ["samtools", "index", str((tmp_path / "te.bam").resolve())]


def test_too_many_fastqs(tmp_path: Path) -> None:
    ref, r1, r2 = _inputs(tmp_path)
    with pytest.raises(ValueError):
        build_alignment_commands(fastq=[r1, r2, r1], ref_fa=ref, out_bam=tmp_path / "x.bam")


def test_missing_reference(tmp_path: Path) -> None:
    _, r1, _ = _inputs(tmp_path)
    with pytest.raises(FileNotFoundError):
        align_reads(fastq=[r1], ref_fa=tmp_path / "nope.fa", out_bam=tmp_path / "x.bam", dry_run=True)


def test_dry_run_skips_index_when_present(tmp_path: Path) -> None:
    ref, r1, _ = _inputs(tmp_path)
    for suffix in (".amb", ".ann", ".bwt", ".pac", ".sa"):
        Path(str(ref) + suffix).write_text("", encoding="utf-8")
    summary = align_reads(fastq=[r1], ref_fa=ref, out_bam=tmp_path / "x.bam", dry_run=True)
    assert summary["dry_run"] is True
    assert summary["cmd_bwa_index"] is None
    assert summary["cmd_bwa_mem"] is not None


def test_resume_skips_existing_bam(tmp_path: Path) -> None:
    ref, r1, _ = _inputs(tmp_path)
    bam = tmp_path / "x.bam"
    bam.write_bytes(b"")
    Path(str(bam) + ".bai").write_bytes(b"")
    summary = align_reads(fastq=[r1], ref_fa=ref, out_bam=bam, resume=True)
    assert summary["skipped"] is True
    assert summary["cmd_bwa_mem"] is None


def test_run_command_failure_raises() -> None:
    with pytest.raises(ExternalCommandError) as exc:
        run_command([sys.executable, "-c", "import sys; sys.stderr.write('nope'); sys.exit(3)"])
    assert exc.value.returncode == 3
    assert "nope" in str(exc.value)


def test_cmd_to_str_quotes() -> None:
    assert cmd_to_str(["bwa", "mem", "-R", "@RG\tID:x"]) == "bwa mem -R '@RG\tID:x'"


def test_doctor_checks_aligner_tools() -> None:
    checks = collect_checks()
    assert checks["python"].ok
    assert {"bwa", "samtools"} <= set(checks)
    for name in ("bwa", "samtools"):
        assert checks[name].ok or checks[name].howto
