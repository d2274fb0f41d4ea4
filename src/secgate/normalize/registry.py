"""Finding normalizer entry points: dispatch raw scanner output by source."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import structlog

from secgate.core.errors import ParseError
from secgate.core.models import Source
from secgate.normalize import dependency, image, sast
from secgate.normalize.base import FindingCollector, NormalizeResult

logger = structlog.get_logger()

# Scanner reports are small; anything bigger is not a report.
_MAX_INPUT_BYTES = 64 * 1024 * 1024

_PARSERS: dict[Source, Callable[[str, FindingCollector], None]] = {
    Source.SAST: sast.parse,
    Source.DEPENDENCY: dependency.parse,
    Source.IMAGE: image.parse,
}


def normalize(source: Source, raw_text: str, *, started_at: datetime) -> NormalizeResult:
    """Normalize one scanner's raw output into findings.

    Malformed records are skipped and reported in ``result.warnings``.

    Raises
    ------
    ParseError
        If the input as a whole is not a recognized report for *source*.
    """
    if not raw_text.strip():
        raise ParseError(source.value, "input is empty")

    collector = FindingCollector(source, started_at=started_at)
    _PARSERS[source](raw_text, collector)
    result = collector.result()

    logger.info(
        "findings_normalized",
        source=source.value,
        records=result.records_seen,
        findings=len(result.findings),
        duplicates=result.duplicates,
        skipped=len(result.warnings),
    )
    return result


def normalize_file(source: Source, path: Path, *, started_at: datetime) -> NormalizeResult:
    """Read *path* and :func:`normalize` it.

    Raises
    ------
    ParseError
        If the file is unreadable, oversized, not UTF-8 or unrecognized.
    """
    try:
        size = path.stat().st_size
        if size > _MAX_INPUT_BYTES:
            raise ParseError(source.value, f"{path.name} is {size:,} bytes (limit {_MAX_INPUT_BYTES:,})")
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(source.value, f"{path.name} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise ParseError(source.value, f"{path.name} could not be read: {exc}") from exc
    return normalize(source, text, started_at=started_at)
