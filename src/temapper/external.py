"""Wrappers for the external aligner tools (bwa, samtools).

The mapper itself is pure Python; these helpers only exist for the
``temapper align`` convenience command. Commands are passed as argv lists,
stdout/stderr are captured, and failures raise :class:`ExternalCommandError`
with the tail of stderr.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import textwrap
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_STDERR_TAIL = 3000

INSTALL_HINTS: Dict[str, str] = {
    "bwa": (
        "Ubuntu: sudo apt-get install -y bwa\n"
        "Conda/mamba: mamba install -c bioconda bwa"
    ),
    "samtools": (
        "Ubuntu: sudo apt-get install -y samtools\n"
        "Conda/mamba: mamba install -c bioconda samtools"
    ),
}


class ExternalCommandError(RuntimeError):
    """An external command (or one side of a pipe) exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> None:
    """Raise FileNotFoundError if ``exe`` is not on PATH."""
    if shutil.which(exe) is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        hint = hint or INSTALL_HINTS.get(exe)
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)


def _merged_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update({str(k): str(v) for k, v in env.items()})
    return merged


def _tail(s: Optional[str], n: int = _STDERR_TAIL) -> str:
    if not s:
        return "(empty)"
    s = str(s)
    if len(s) <= n:
        return s
    return "..." + s[-n:]


def _decode(b: Optional[bytes]) -> str:
    if not b:
        return ""
    return b.decode("utf-8", errors="replace")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` with captured text output.

    Raises ExternalCommandError on a non-zero exit when ``check`` is True.
    """
    logger.debug("Running command: %s", cmd_to_str(cmd))
    cp = subprocess.run(
        [str(x) for x in cmd],
        cwd=str(cwd) if cwd is not None else None,
        env=_merged_env(env),
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    if check and cp.returncode != 0:
        raise ExternalCommandError(
            textwrap.dedent(
                f"""
                External command failed (exit code {cp.returncode}).

                Command:
                  {cmd_to_str(cmd)}

                STDERR (tail):
                  {_tail(cp.stderr)}
                """
            ).strip(),
            cmd=cmd,
            returncode=cp.returncode,
            stderr=cp.stderr,
        )
    return cp


def run_pipe(
    producer: Sequence[str],
    consumer: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
) -> Tuple[subprocess.CompletedProcess, subprocess.CompletedProcess]:
    """Run ``producer | consumer`` (e.g. ``bwa mem | samtools sort``).

    Output is streamed as bytes between the two processes; only stderr of
    each side is kept for error messages.
    """
    cwd_s = str(cwd) if cwd is not None else None
    env_merged = _merged_env(env)
    logger.debug("Running pipe: %s | %s", cmd_to_str(producer), cmd_to_str(consumer))

    p1 = subprocess.Popen(
        [str(x) for x in producer],
        cwd=cwd_s,
        env=env_merged,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    p2 = subprocess.Popen(
        [str(x) for x in consumer],
        cwd=cwd_s,
        env=env_merged,
        stdin=p1.stdout,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    assert p1.stdout is not None
    # p1 gets SIGPIPE if p2 exits early
    p1.stdout.close()

    out2, err2 = p2.communicate()
    _out1, err1 = p1.communicate()

    cp1 = subprocess.CompletedProcess(args=list(producer), returncode=p1.returncode, stdout=None, stderr=err1)
    cp2 = subprocess.CompletedProcess(args=list(consumer), returncode=p2.returncode, stdout=out2, stderr=err2)

    if check and (cp1.returncode != 0 or cp2.returncode != 0):
        msg = textwrap.dedent(
            f"""
            External pipe failed.

            Producer:
              {cmd_to_str(producer)}
              exit={cp1.returncode}
              stderr tail: {_tail(_decode(err1))}

            Consumer:
              {cmd_to_str(consumer)}
              exit={cp2.returncode}
              stderr tail: {_tail(_decode(err2))}
            """
        ).strip()
        failed = consumer if cp2.returncode != 0 else producer
        raise ExternalCommandError(
            msg,
            cmd=failed,
            returncode=cp2.returncode if cp2.returncode != 0 else cp1.returncode,
            stderr=_decode(err2 if cp2.returncode != 0 else err1),
        )
    return cp1, cp2
