import gzip
from pathlib import Path

import pytest

from temapper.adapter import (
    RECORD_COLUMNS,
    _clips_from_cigar,
    adapt_rows,
    group_by_read_id,
    load_records,
    parse_record,
)
from temapper.errors import MalformedRecord
from temapper.models import GENOME, TE_LIBRARY


def _fields(**overrides: str) -> list[str]:
    values = {
        "read_id": "r1",
        "contig": "chr1",
        "position": "100",
        "strand": "+",
        "length": "50",
        "clip_start": "0",
        "clip_end": "20",
        "target": "GENOME",
        "te_family": "",
        "mate": "",
    }
    values.update(overrides)
    return [values[c] for c in RECORD_COLUMNS]


def test_parse_genome_record() -> None:
    r = parse_record(_fields(), order=3)
    assert r.read_id == "r1"
    assert r.position == 100
    assert r.end == 149
    assert r.clip_end == 20
    assert r.target == GENOME
    assert r.mate is None
    assert not r.is_paired
    assert r.order == 3


def test_parse_te_record_normalizes_target() -> None:
    r = parse_record(_fields(contig="L1HS", target="te_library", te_family="L1", mate="r1"))
    assert r.target == TE_LIBRARY
    assert r.is_te
    assert r.te_family == "L1"
    assert r.is_paired


def test_te_record_without_family_is_malformed() -> None:
    with pytest.raises(MalformedRecord, match="line 7"):
        parse_record(_fields(target="TE_LIBRARY", te_family=""), line_number=7)


@pytest.mark.parametrize(
    "overrides",
    [
        {"strand": "x"},
        {"position": "0"},
        {"position": "abc"},
        {"length": "0"},
        {"clip_start": "-1"},
        {"target": "PLASMID"},
        {"read_id": ""},
    ],
)
def test_invalid_fields_are_malformed(overrides) -> None:
    with pytest.raises(MalformedRecord):
        parse_record(_fields(**overrides))


def test_wrong_column_count() -> None:
    with pytest.raises(MalformedRecord, match="columns"):
        parse_record(_fields()[:5])


def test_ambiguous_column() -> None:
    assert parse_record(_fields() + ["1"]).ambiguous
    assert not parse_record(_fields() + ["false"]).ambiguous
    with pytest.raises(MalformedRecord):
        parse_record(_fields() + ["maybe"])


def test_adapt_rows_skips_and_counts() -> None:
    rows = [
        (1, _fields(read_id="a")),
        (2, _fields(read_id="b", target="TE_LIBRARY", te_family="")),
        (3, _fields(read_id="c")),
    ]
    reads, stats = adapt_rows(rows)
    assert [r.read_id for r in reads] == ["a", "c"]
    assert [r.order for r in reads] == [0, 1]
    assert stats == {"records_total": 3, "records_skipped": 1}


def test_load_records_gzip_with_header_and_comments(tmp_path: Path) -> None:
    path = tmp_path / "records.tsv.gz"
    lines = [
        "\t".join(RECORD_COLUMNS),
        "# a comment",
        "",
        "\t".join(_fields(read_id="a")),
        "\t".join(_fields(read_id="a", contig="L1HS", target="TE_LIBRARY", te_family="L1")),
        "not\tenough\tcolumns",
    ]
    with gzip.open(path, "wt") as fh:
        fh.write("\n".join(lines) + "\n")

    reads, stats = load_records(path)
    assert len(reads) == 2
    assert stats["records_total"] == 3
    assert stats["records_skipped"] == 1


def test_group_by_read_id_keeps_first_appearance_order() -> None:
    reads, _ = adapt_rows(
        [
            (1, _fields(read_id="b")),
            (2, _fields(read_id="a")),
            (3, _fields(read_id="b", contig="L1HS", target="TE_LIBRARY", te_family="L1")),
        ]
    )
    groups = group_by_read_id(reads)
    assert list(groups) == ["b", "a"]
    assert len(groups["b"]) == 2


def test_clips_from_cigar() -> None:
    assert _clips_from_cigar(None) == (0, 0)
    assert _clips_from_cigar([(0, 100)]) == (0, 0)
    assert _clips_from_cigar([(5, 10), (4, 30), (0, 70)]) == (30, 0)
    assert _clips_from_cigar([(0, 70), (4, 30), (5, 5)]) == (0, 30)
    assert _clips_from_cigar([(4, 10), (0, 80), (4, 10)]) == (10, 10)
