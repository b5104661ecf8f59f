from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from . import __version__
from .align import align_reads
from .config import MapperConfig, load_config
from .doctor import TOOLS, collect_checks
from .external import ExternalCommandError, cmd_to_str
from .plotting import write_plots
from .pipeline import run_map
from .report import render_report
from .toy_data import make_toy_data

# CLI flag dest -> MapperConfig field
_CONFIG_FLAGS = (
    "window_size_junction",
    "window_size_anchor",
    "insert_size",
    "min_junction_clip",
    "junction_clip_slack",
    "min_anchor_support",
    "family_ambiguity_margin",
    "max_tsd_length",
    "min_te_length_fraction",
    "max_te_length_fraction",
    "workers",
)


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_config_flags(a: argparse.ArgumentParser) -> None:
    d = MapperConfig()
    g = a.add_argument_group("mapping parameters (override --config)")
    g.add_argument(
        "--window-size-junction",
        type=int,
        default=None,
        help=f"Max breakpoint gap (bp) within a junction cluster (default: {d.window_size_junction}).",
    )
    g.add_argument(
        "--window-size-anchor",
        type=int,
        default=None,
        help="Max breakpoint gap (bp) within an anchor cluster (default: insert size).",
    )
    g.add_argument(
        "--insert-size",
        type=int,
        default=None,
        help="Library insert size (bp). Estimated from --genome-bam if omitted.",
    )
    g.add_argument(
        "--min-junction-clip",
        type=int,
        default=None,
        help=f"Min soft-clip length for a split read (default: {d.min_junction_clip}).",
    )
    g.add_argument(
        "--junction-clip-slack",
        type=int,
        default=None,
        help=f"Allowed clip vs TE-alignment length difference (default: {d.junction_clip_slack}).",
    )
    g.add_argument(
        "--min-anchor-support",
        type=int,
        default=None,
        help=f"Min anchor reads for a HIGH call (default: {d.min_anchor_support}).",
    )
    g.add_argument(
        "--family-ambiguity-margin",
        type=int,
        default=None,
        help=f"Vote margin at or below which the TE family is AMBIGUOUS (default: {d.family_ambiguity_margin}).",
    )
    g.add_argument(
        "--max-tsd-length",
        type=int,
        default=None,
        help=f"Max target-site duplication (bp) when pairing flanks (default: {d.max_tsd_length}).",
    )
    g.add_argument(
        "--min-te-length-fraction",
        type=float,
        default=None,
        help=(
            "Min flank distance, as a fraction of the TE length, for a TE present in the "
            f"reference (default: {d.min_te_length_fraction})."
        ),
    )
    g.add_argument(
        "--max-te-length-fraction",
        type=float,
        default=None,
        help=f"Max flank distance, as a fraction of the TE length (default: {d.max_te_length_fraction}).",
    )
    g.add_argument(
        "--workers",
        type=int,
        default=None,
        help=f"Contigs processed in parallel (default: {d.workers}).",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="temapper",
        description=(
            "TEMapper: map transposable-element insertion sites from split reads and "
            "discordant read pairs aligned to a genome and a TE library."
        ),
    )
    p.add_argument("--version", action="version", version=f"temapper {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny genome, TE library, BAM pair and record file for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # map
    # -----------------
    m = sub.add_parser(
        "map",
        help="Call TE insertions from alignment records or a genome/TE BAM pair.",
    )
    src = m.add_mutually_exclusive_group(required=True)
    src.add_argument("--records", type=_path_exists, help="Alignment record TSV (.tsv/.tsv.gz).")
    src.add_argument("--genome-bam", type=_path_exists, help="Reads aligned to the genome (BAM).")
    m.add_argument("--te-bam", type=_path_exists, help="Reads aligned to the TE library (BAM).")
    m.add_argument(
        "--te-fasta",
        type=_path_exists,
        default=None,
        help="TE library FASTA; its sequence lengths enable reference-TE calls (default: TE BAM header).",
    )
    m.add_argument("--outdir", required=True, help="Output directory.")
    m.add_argument(
        "--format",
        dest="output_format",
        choices=["tsv", "json"],
        default="tsv",
        help="Call output format.",
    )
    m.add_argument(
        "--calls",
        default=None,
        help="Optional path for the calls file (default: outdir/calls.tsv or calls.json).",
    )
    m.add_argument("--config", type=_path_exists, default=None, help="JSON file with mapping parameters.")
    _add_config_flags(m)
    m.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads (BAM input).")
    m.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    m.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    m.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    m.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # align
    # -----------------
    al = sub.add_parser(
        "align",
        help="Align FASTQ reads to a genome or TE library with bwa mem (sorted + indexed BAM).",
    )
    al.add_argument(
        "--fastq",
        required=True,
        nargs="+",
        type=_path_exists,
        help="One FASTQ (single-end) or two (paired-end).",
    )
    al.add_argument("--ref", required=True, type=_path_exists, help="Genome or TE-library FASTA.")
    al.add_argument("--out-bam", required=True, help="Output BAM path.")
    al.add_argument("--threads", type=int, default=4, help="Threads for bwa/samtools.")
    al.add_argument("--sort-mem", type=str, default="1G", help="samtools sort -m (memory per thread).")
    al.add_argument("--read-group", default=None, help="Optional bwa mem -R read group line.")
    al.add_argument("--dry-run", action="store_true", help="Validate inputs and print commands.")
    al.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    al.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser(
        "doctor",
        help="Check your environment for the external aligner tools (bwa/samtools).",
    )
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "TEMapper quickstart (copy/paste):",
        "",
        "1) Try it on toy data:",
        "   temapper make-toy-data --outdir toy/",
        "   temapper map --records toy/records.tsv --outdir toy_run/",
        "   Outputs: toy_run/calls.tsv, toy_run/report.html, toy_run/summary.json",
        "",
        "2) FASTQ -> BAM pair -> calls:",
        "   temapper align --fastq R1.fq.gz R2.fq.gz --ref genome.fa --out-bam genome.bam",
        "   temapper align --fastq R1.fq.gz R2.fq.gz --ref te_library.fa --out-bam te.bam",
        "   temapper map --genome-bam genome.bam --te-bam te.bam --outdir results/",
        "",
        "3) Existing alignment records, JSON output, 4 workers:",
        "   temapper map --records alignments.tsv.gz --format json --workers 4 --outdir results/",
        "",
        "Tip: use --dry-run to validate inputs and print the exact external commands.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    try:
        summary = make_toy_data(outdir=outdir)
    except Exception as e:
        return _handle_error(e)
    print(json.dumps(summary, indent=2))
    return 0


def _config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {name: getattr(args, name) for name in _CONFIG_FLAGS}


def cmd_map(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "map.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("temapper")
    logger.info("temapper %s", __version__)

    try:
        if args.genome_bam and not args.te_bam:
            raise ValueError("--genome-bam requires --te-bam")
        if args.records and args.te_bam:
            raise ValueError("--te-bam cannot be combined with --records")

        config = load_config(args.config, _config_overrides(args))

        calls_name = "calls.json" if args.output_format == "json" else "calls.tsv"
        calls_path = Path(args.calls).expanduser().resolve() if args.calls else outdir / calls_name

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print("No external commands required for map.")
            print("Configuration:")
            print(json.dumps(config.to_dict(), indent=2, sort_keys=True))
            print("Planned outputs:")
            print(f"  {calls_name} -> {calls_path}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        if args.resume and (outdir / "summary.json").exists() and calls_path.exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(calls_path))
            return 0

        summary, calls = run_map(
            outdir=outdir,
            config=config,
            records=args.records,
            genome_bam=args.genome_bam,
            te_bam=args.te_bam,
            te_fasta=args.te_fasta,
            output_format=args.output_format,
            calls_path=calls_path,
            skip_duplicates=not bool(args.keep_duplicates),
            progress=True,
        )

        if not args.no_report:
            plots = write_plots(summary, outdir / "plots")
            render_report(outdir=outdir, version=__version__, summary=summary, calls=calls, plots=plots)

        stats = summary["stats"]
        assert isinstance(stats, dict)
        if stats["failed_contigs"]:
            sys.stderr.write(
                f"Warning: {len(stats['failed_contigs'])} contig(s) failed; see summary.json and {log_path}\n"
            )
        print(str(calls_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def _print_command_list(cmds: Sequence[Optional[Sequence[str]]]) -> None:
    for cmd in cmds:
        if cmd is not None:
            print("  " + cmd_to_str(cmd))


def cmd_align(args: argparse.Namespace) -> int:
    out_bam = Path(args.out_bam).expanduser().resolve()
    log_path = _log_path(out_bam.parent, "alignment.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    try:
        summary = align_reads(
            fastq=args.fastq,
            ref_fa=args.ref,
            out_bam=out_bam,
            threads=int(args.threads),
            sort_mem=str(args.sort_mem),
            read_group=args.read_group,
            dry_run=bool(args.dry_run),
            resume=bool(args.resume),
        )

        if summary.get("skipped"):
            print("Resume enabled: alignment outputs already exist.")
            print(str(out_bam))
            return 0

        if args.dry_run:
            print("Planned commands:")
            print("  " + cmd_to_str(summary["cmd_bwa_mem"]) + " | " + cmd_to_str(summary["cmd_samtools_sort"]))  # type: ignore[arg-type]
            _print_command_list([summary["cmd_bwa_index"], summary["cmd_samtools_index"]])  # type: ignore[list-item]
            return 0

        summary_path = out_bam.with_suffix(".align_summary.json")
        summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")

        print(str(out_bam))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:9s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name in TOOLS:
        r = checks[name]
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "map":
        return cmd_map(args)
    if args.cmd == "align":
        return cmd_align(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
