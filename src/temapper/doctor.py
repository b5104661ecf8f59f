"""Environment self-checks for ``temapper doctor``.

Mapping needs only Python packages; ``temapper align`` additionally needs
bwa and samtools on PATH.
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

import pysam

from .external import INSTALL_HINTS

logger = logging.getLogger(__name__)

TOOLS = ("bwa", "samtools")


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    return CheckResult(name="python", ok=True, detail=f"Python {platform.python_version()}")


def check_pysam() -> CheckResult:
    return CheckResult(name="pysam", ok=True, detail=f"pysam {pysam.__version__}")


def check_executable(name: str, *, howto: Optional[str] = None) -> CheckResult:
    p = shutil.which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=howto)
    return CheckResult(name=name, ok=True, detail=p)


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {
        "python": check_python(),
        "pysam": check_pysam(),
    }
    for tool in TOOLS:
        checks[tool] = check_executable(tool, howto=INSTALL_HINTS.get(tool))
    for name, r in checks.items():
        logger.debug("check %s: ok=%s (%s)", name, r.ok, r.detail)
    return checks
