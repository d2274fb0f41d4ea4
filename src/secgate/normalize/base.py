"""Shared plumbing for the per-scanner normalizers.

Each scanner module exposes ``parse(text, collector)``.  It walks the raw
output and feeds records to a :class:`FindingCollector`; the collector
validates each one, turns rejects into warnings and deduplicates on
``(source, identifier, component)``.  A parser raises :class:`ParseError`
only when it cannot recognize the document at all.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from secgate.core.context import NormalizationWarning
from secgate.core.errors import ParseError
from secgate.core.models import Finding, Severity, Source
from secgate.modules.redact import sanitise_text, validate_component, validate_identifier


@dataclass
class NormalizeResult:
    """Private partial result of one source, merged after the join."""

    source: Source
    findings: list[Finding] = field(default_factory=list)
    warnings: list[NormalizationWarning] = field(default_factory=list)
    records_seen: int = 0
    duplicates: int = 0


def dedupe(findings: list[Finding]) -> tuple[list[Finding], int]:
    """Collapse findings sharing ``(source, identifier, component)``.

    The highest severity wins; ``first_seen`` keeps the earliest value
    across the duplicates.  Output order follows first appearance.

    Returns the deduplicated list and the number of records collapsed.
    """
    merged: dict[tuple[Source, str, str], Finding] = {}
    for f in findings:
        current = merged.get(f.key)
        if current is None:
            merged[f.key] = f
            continue
        keep = f if f.severity > current.severity else current
        merged[f.key] = replace(keep, first_seen=min(current.first_seen, f.first_seen))
    return list(merged.values()), len(findings) - len(merged)


class FindingCollector:
    def __init__(self, source: Source, *, started_at: datetime) -> None:
        self.source = source
        self.started_at = started_at
        self._findings: list[Finding] = []
        self._warnings: list[NormalizationWarning] = []
        self._seen = 0

    def skip(self, record: int | None, reason: str) -> None:
        self._warnings.append(
            NormalizationWarning(source=self.source.value, message=reason, record=record)
        )

    def add(
        self,
        record: int,
        *,
        identifier: Any,
        severity: Any,
        component: Any,
        description: Any = "",
        first_seen: datetime | None = None,
    ) -> Finding | None:
        """Validate one raw record; on failure record a warning and return None."""
        self._seen += 1
        try:
            finding = Finding(
                source=self.source,
                identifier=validate_identifier(identifier),
                severity=Severity.parse(severity),
                component=validate_component(component),
                description=sanitise_text(description if isinstance(description, str) else ""),
                first_seen=first_seen or self.started_at,
            )
        except ValueError as exc:
            self.skip(record, f"skipped malformed record: {exc}")
            return None
        self._findings.append(finding)
        return finding

    def amend_description(self, finding: Finding, extra: str) -> None:
        """Append wrapped text (table continuation lines) to the last finding."""
        for i in range(len(self._findings) - 1, -1, -1):
            if self._findings[i] is finding:
                text = f"{finding.description} {extra}".strip()
                self._findings[i] = replace(finding, description=sanitise_text(text))
                return

    @property
    def last(self) -> Finding | None:
        return self._findings[-1] if self._findings else None

    def result(self) -> NormalizeResult:
        findings, duplicates = dedupe(self._findings)
        return NormalizeResult(
            source=self.source,
            findings=findings,
            warnings=list(self._warnings),
            records_seen=self._seen,
            duplicates=duplicates,
        )


# ── Helpers ─────────────────────────────────────────────────
def load_json(source: Source, text: str) -> Any:
    """Parse a structured report.

    Raises
    ------
    ParseError
        If the text is not JSON.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(source.value, f"not a JSON document ({exc.msg} at line {exc.lineno})") from exc


def parse_timestamp(value: Any) -> datetime | None:
    """Best-effort ISO-8601 parse; ``None`` when absent or unparseable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            # SonarQube emits basic offsets: 2024-01-15T10:00:00+0000
            parsed = datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def severity_from_cvss(score: Any) -> Severity | None:
    """CVSS v3 qualitative rating for a numeric base score."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if value >= 9.0:
        return Severity.CRITICAL
    if value >= 7.0:
        return Severity.HIGH
    if value >= 4.0:
        return Severity.MEDIUM
    if value > 0.0:
        return Severity.LOW
    return Severity.INFO
