"""Typed outcomes for scanner invocations and report inputs.

Scanners run outside the gate.  What the gate needs from them is a
structured answer to "did it run, and where is its output?" rather than
inferring success from whether a log file happens to exist.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from secgate.core.models import Source

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectedInput:
    source: Source
    path: Path | None
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "source": self.source.value,
            "path": str(self.path) if self.path else None,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass(frozen=True)
class ScannerOutcome:
    argv: tuple[str, ...]
    ok: bool
    returncode: int | None
    output: Path | None
    error: str | None = None


def locate_input(source: Source, path: Path | None) -> CollectedInput:
    """Check that a declared scanner output exists and is a readable file."""
    if path is None:
        return CollectedInput(source=source, path=None, ok=False, error="no input declared")
    if not path.is_file():
        return CollectedInput(source=source, path=path, ok=False, error=f"input not found: {path}")
    if not os.access(path, os.R_OK):
        return CollectedInput(source=source, path=path, ok=False, error=f"input not readable: {path}")
    return CollectedInput(source=source, path=path, ok=True)


def run_scanner(
    argv: list[str],
    *,
    output: Path,
    timeout: float = 600.0,
    ok_returncodes: frozenset[int] = frozenset({0}),
    cwd: Path | None = None,
) -> ScannerOutcome:
    """Run a scanner and capture its stdout into *output*.

    - Requires an argv list; ``shell=True`` is never used.
    - The executable must resolve on PATH.
    - A missing executable, a timeout or a non-accepted return code are
      reported in the outcome instead of raised.

    Scanners that exit non-zero when they find something (``trivy
    --exit-code 1``) should pass that code in *ok_returncodes*: the gate,
    not the scanner, decides whether findings block.
    """
    args = tuple(argv)
    if not argv:
        return ScannerOutcome(argv=args, ok=False, returncode=None, output=None, error="empty command")
    if shutil.which(argv[0]) is None:
        return ScannerOutcome(
            argv=args, ok=False, returncode=None, output=None,
            error=f"executable not found on PATH: {argv[0]}",
        )

    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        with output.open("wb") as out:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                timeout=timeout,
                stdout=out,
                stderr=subprocess.PIPE,
                check=False,
            )
    except subprocess.TimeoutExpired:
        logger.warning("scanner_timeout", argv=list(args), timeout=timeout)
        return ScannerOutcome(
            argv=args, ok=False, returncode=None, output=output,
            error=f"timed out after {timeout:g}s",
        )
    except OSError as exc:
        return ScannerOutcome(argv=args, ok=False, returncode=None, output=None, error=str(exc))

    ok = proc.returncode in ok_returncodes
    stderr_tail = proc.stderr.decode("utf-8", errors="replace").strip()[-500:] if proc.stderr else ""
    logger.info("scanner_finished", argv=list(args), returncode=proc.returncode, ok=ok)
    return ScannerOutcome(
        argv=args,
        ok=ok,
        returncode=proc.returncode,
        output=output,
        error=None if ok else (stderr_tail or f"exit code {proc.returncode}"),
    )
