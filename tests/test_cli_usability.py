import json
import subprocess
import sys
from pathlib import Path

from temapper.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "temapper"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "temapper map" in cp.stdout
    assert "temapper align" in cp.stdout


def test_map_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "map"
    cp = _run_cli(["map", "--records", toy["records"], "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_map(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(["map", "--records", str(toy_dir / "records.tsv"), "--outdir", str(outdir)])
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "calls.tsv").exists()
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "support_hist.png").exists()
    assert (outdir / "logs" / "map.log").exists()

    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert summary["stats"]["calls_emitted"] == 2
    assert summary["stats"]["calls_by_confidence"]["HIGH"] == 1
    assert summary["stats"]["records_skipped"] == 0


def test_map_bam_pair_json(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "map",
            "--genome-bam",
            toy["genome_bam"],
            "--te-bam",
            toy["te_bam"],
            "--outdir",
            str(outdir),
            "--format",
            "json",
            "--no-report",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    calls = json.loads((outdir / "calls.json").read_text(encoding="utf-8"))
    assert [c["contig"] for c in calls] == ["chr1", "chr2"]
    assert {c["reference_status"] for c in calls} == {"non-reference"}
    assert not (outdir / "report.html").exists()


def test_genome_bam_requires_te_bam(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["map", "--genome-bam", toy["genome_bam"], "--outdir", str(tmp_path / "out")])
    assert cp.returncode == 2
    assert "requires --te-bam" in cp.stderr


def test_invalid_parameter_is_reported(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["map", "--records", toy["records"], "--outdir", str(tmp_path / "out"), "--workers", "0"])
    assert cp.returncode == 2
    assert "ConfigurationError" in cp.stderr
    assert not (tmp_path / "out" / "summary.json").exists()


def test_align_dry_run_prints_commands(tmp_path: Path) -> None:
    ref = tmp_path / "genome.fa"
    ref.write_text(">chr1\nACGTACGTACGT\n", encoding="utf-8")
    fq = tmp_path / "reads.fq"
    fq.write_text("@r1\nACGT\n+\nIIII\n", encoding="utf-8")
    cp = _run_cli(
        ["align", "--fastq", str(fq), "--ref", str(ref), "--out-bam", str(tmp_path / "out.bam"), "--dry-run"]
    )
    assert cp.returncode == 0, cp.stderr
    assert "bwa mem -Y" in cp.stdout
    assert "samtools sort" in cp.stdout
    assert "bwa index" in cp.stdout
    assert not (tmp_path / "out.bam").exists()


def test_doctor_dry_run() -> None:
    cp = _run_cli(["doctor", "--dry-run"])
    assert cp.returncode == 0
    assert "bwa" in cp.stdout
    assert "samtools" in cp.stdout


def test_te_length_fractions_are_checked(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    base = ["map", "--records", toy["records"], "--te-fasta", toy["te_fa"], "--no-report"]
    cp = _run_cli(base + ["--outdir", str(tmp_path / "bad"), "--min-te-length-fraction", "2", "--max-te-length-fraction", "1.5"])
    assert cp.returncode == 2
    assert "min_te_length_fraction" in cp.stderr

    cp = _run_cli(base + ["--outdir", str(tmp_path / "ok"), "--min-te-length-fraction", "0.2"])
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((tmp_path / "ok" / "summary.json").read_text(encoding="utf-8"))
    assert summary["config"]["min_te_length_fraction"] == 0.2
    assert summary["inputs"]["te_fasta"] == toy["te_fa"]
