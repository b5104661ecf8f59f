import gzip
import json
from pathlib import Path

import pytest

from temapper.emitter import CALL_COLUMNS, call_to_row, sort_calls, write_calls
from temapper.models import HIGH, LOW, InsertionCall


def call(contig: str, pos: int, **kw) -> InsertionCall:
    values = dict(
        contig=contig,
        estimated_position=pos,
        strand="+",
        te_family="L1",
        junction_support=2,
        anchor_support=5,
        confidence=HIGH,
        interval_start=pos,
        interval_end=pos + 3,
        upstream_breakpoint=pos,
        downstream_breakpoint=None,
        flanks="both",
    )
    values.update(kw)
    return InsertionCall(**values)


CALLS = [
    call("chr2", 50),
    call("chr1", 900),
    call("chr1", 100, te_family="Alu", confidence=LOW),
    call("chr1", 100, strand="-"),
]


def test_sort_order() -> None:
    ordered = sort_calls(CALLS)
    assert [(c.contig, c.estimated_position, c.strand) for c in ordered] == [
        ("chr1", 100, "+"),
        ("chr1", 100, "-"),
        ("chr1", 900, "+"),
        ("chr2", 50, "+"),
    ]
    assert sort_calls(reversed(CALLS)) == ordered


def test_row_uses_dot_for_missing_values() -> None:
    row = call_to_row(call("chr1", 10))
    assert len(row) == len(CALL_COLUMNS)
    assert row[CALL_COLUMNS.index("downstream_breakpoint")] == "."
    assert row[CALL_COLUMNS.index("upstream_breakpoint")] == "10"


def test_write_tsv_gzip(tmp_path: Path) -> None:
    path = tmp_path / "calls.tsv.gz"
    assert write_calls(CALLS, path) == 4
    with gzip.open(path, "rt") as fh:
        lines = fh.read().splitlines()
    assert lines[0].split("\t") == list(CALL_COLUMNS)
    assert lines[0].startswith("contig\testimated_position\tstrand\tte_family")
    assert [ln.split("\t")[0] for ln in lines[1:]] == ["chr1", "chr1", "chr1", "chr2"]


def test_write_json(tmp_path: Path) -> None:
    path = tmp_path / "calls.json"
    write_calls(CALLS, path, fmt="json")
    data = json.loads(path.read_text(encoding="utf-8"))
    assert [d["estimated_position"] for d in data] == [100, 100, 900, 50]
    assert data[0]["downstream_breakpoint"] is None
    assert list(data[0]) == list(CALL_COLUMNS)


def test_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        write_calls(CALLS, tmp_path / "calls.bed", fmt="bed")
