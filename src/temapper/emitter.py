from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .models import InsertionCall
from .utils import dataclass_to_jsonable, open_textmaybe_gzip

logger = logging.getLogger(__name__)

CALL_COLUMNS = tuple(f.name for f in fields(InsertionCall))

_MISSING = "."


def sort_calls(calls: Iterable[InsertionCall]) -> List[InsertionCall]:
    """Sort calls by (contig, estimated_position), with full-field tie breaks."""
    return sorted(calls, key=InsertionCall.sort_key)


def call_to_row(call: InsertionCall) -> List[str]:
    row = []
    for name in CALL_COLUMNS:
        v = getattr(call, name)
        row.append(_MISSING if v is None else str(v))
    return row


def call_to_dict(call: InsertionCall) -> Dict[str, Any]:
    return dict(dataclass_to_jsonable(call))


def write_calls_tsv(calls: Iterable[InsertionCall], path: str | Path) -> int:
    """Write calls as TSV (gzip if ``path`` ends with .gz); return the count."""
    ordered = sort_calls(calls)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(CALL_COLUMNS) + "\n")
        for call in ordered:
            fh.write("\t".join(call_to_row(call)) + "\n")
    logger.info("Wrote %d calls to %s", len(ordered), path)
    return len(ordered)


def write_calls_json(calls: Iterable[InsertionCall], path: str | Path) -> int:
    ordered = sort_calls(calls)
    with open(path, "wt", encoding="utf-8") as f:
        json.dump([call_to_dict(c) for c in ordered], f, indent=2)
    logger.info("Wrote %d calls to %s", len(ordered), path)
    return len(ordered)


def write_calls(calls: Iterable[InsertionCall], path: str | Path, *, fmt: str = "tsv") -> int:
    if fmt == "tsv":
        return write_calls_tsv(calls, path)
    if fmt == "json":
        return write_calls_json(calls, path)
    raise ValueError(f"Unknown output format: {fmt!r} (expected 'tsv' or 'json')")
