"""Gate report builder.

Each run gets its own directory under the reports dir, named by run id::

    reports/gate/<run_id>/
        verdict.json      # passed, blockingFindings[], evaluatedAt, status, ...
        report.json       # full record: policy snapshot, every finding, verdict
        summary.md        # the same, for humans
        report.json.sig   # HMAC-SHA256 of report.json (only with a signing key)

A report is written for every outcome, including fatal errors, in which
case ``verdict`` is ``None`` and ``error`` says what broke.  Existing run
directories are never reused or overwritten.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from secgate.core.context import NormalizationWarning, RunContext
from secgate.core.errors import ReportWriteFailed
from secgate.core.models import Finding, Severity, Verdict
from secgate.core.state import TransitionEvent
from secgate.evaluator import report_order
from secgate.policy import Policy

logger = structlog.get_logger()

REPORT_SCHEMA_VERSION = 1

VERDICT_FILE = "verdict.json"
REPORT_FILE = "report.json"
SUMMARY_FILE = "summary.md"
SIGNATURE_FILE = "report.json.sig"


@dataclass(frozen=True)
class GateReport:
    run_id: str
    started_at: datetime
    generated_at: datetime
    build: dict[str, str | None]
    policy: dict[str, Any] | None
    findings: tuple[Finding, ...]
    verdict: Verdict | None
    warnings: tuple[NormalizationWarning, ...]
    error: dict[str, str] | None = None
    states: tuple[TransitionEvent, ...] = ()
    inputs: tuple[dict[str, Any], ...] = ()

    @property
    def status(self) -> str:
        if self.verdict is None or self.error is not None:
            return "error"
        return "passed" if self.verdict.passed else "blocked"

    def verdict_document(self) -> dict[str, Any]:
        """The small machine-readable document pipelines branch on."""
        verdict = self.verdict
        return {
            "schemaVersion": REPORT_SCHEMA_VERSION,
            "runId": self.run_id,
            "status": self.status,
            "passed": verdict.passed if verdict and self.error is None else None,
            "blockingFindings": [f.to_dict() for f in verdict.blocking_findings] if verdict else [],
            "evaluatedAt": verdict.evaluated_at.isoformat() if verdict else None,
            "context": dict(self.build),
            "warnings": [w.to_dict() for w in self.warnings],
            "error": self.error,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.verdict_document(),
            "startedAt": self.started_at.isoformat(),
            "generatedAt": self.generated_at.isoformat(),
            "policy": self.policy,
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "findings": [f.to_dict() for f in self.findings],
            "severityCounts": severity_counts(self.findings),
            "inputs": list(self.inputs),
            "states": [e.to_dict() for e in self.states],
        }


def severity_counts(findings: tuple[Finding, ...] | list[Finding]) -> dict[str, int]:
    counts = Counter(f.severity for f in findings)
    return {sev.value: counts.get(sev, 0) for sev in sorted(Severity, reverse=True)}


def build_report(
    ctx: RunContext,
    *,
    policy: Policy | None,
    findings: list[Finding] | tuple[Finding, ...],
    verdict: Verdict | None,
    error: BaseException | None = None,
    failed_state: str | None = None,
    states: list[TransitionEvent] | tuple[TransitionEvent, ...] = (),
    inputs: list[dict[str, Any]] | tuple[dict[str, Any], ...] = (),
) -> GateReport:
    """Assemble the report for a run, successful or not."""
    error_doc = None
    if error is not None:
        error_doc = {
            "type": type(error).__name__,
            "message": str(error),
            "state": failed_state or "",
        }
    return GateReport(
        run_id=ctx.run_id,
        started_at=ctx.started_at,
        generated_at=datetime.now(timezone.utc),
        build=dict(ctx.build),
        policy=policy.snapshot() if policy is not None else None,
        findings=tuple(sorted(findings, key=report_order)),
        verdict=verdict,
        warnings=tuple(ctx.warnings),
        error=error_doc,
        states=tuple(states),
        inputs=tuple(inputs),
    )


# ── Rendering ───────────────────────────────────────────────
def render_summary(report: GateReport) -> str:
    """Markdown rendering of the verdict for build pages and PR comments."""
    headline = {
        "passed": "PASSED",
        "blocked": "BLOCKED",
        "error": "ERROR",
    }[report.status]

    lines: list[str] = [f"# Security gate: {headline}", ""]
    lines.append(f"- Run: `{report.run_id}`")
    for label, key in (("Build", "buildId"), ("Commit", "commit"), ("Image", "imageTag")):
        if report.build.get(key):
            lines.append(f"- {label}: `{report.build[key]}`")
    if report.verdict is not None:
        lines.append(f"- Evaluated at: {report.verdict.evaluated_at.isoformat()}")
    counts = severity_counts(report.findings)
    lines.append(
        "- Findings: "
        + ", ".join(f"{sev.lower()}={n}" for sev, n in counts.items())
        + f" (total {len(report.findings)})"
    )
    lines.append("")

    if report.error is not None:
        lines += [
            "## Error",
            "",
            f"`{report.error['type']}` in state `{report.error['state']}`: {report.error['message']}",
            "",
        ]

    if report.policy is not None:
        lines += ["## Thresholds", "", "| Source | Blocks above |", "|---|---|"]
        for src, sev in report.policy["thresholds"].items():
            lines.append(f"| {src} | {sev} |")
        lines.append("")

    if report.verdict is not None and report.verdict.blocking_findings:
        lines += [
            "## Blocking findings",
            "",
            "| Severity | Source | Identifier | Component | Description |",
            "|---|---|---|---|---|",
        ]
        for f in report.verdict.blocking_findings:
            lines.append(
                f"| {f.severity.value} | {f.source.value} | {f.identifier} | "
                f"{_md_cell(f.component)} | {_md_cell(f.description, 120)} |"
            )
        lines.append("")

    if report.verdict is not None and report.verdict.suppressed:
        lines += ["## Suppressed", ""]
        for f in report.verdict.suppressed:
            lines.append(f"- {f.identifier} ({f.severity.value}, {f.source.value}) in {f.component}")
        lines.append("")

    if report.warnings:
        lines += ["## Warnings", ""]
        for w in report.warnings:
            where = f" record {w.record}" if w.record is not None else ""
            lines.append(f"- [{w.source}{where}] {w.message}")
        lines.append("")

    return "\n".join(lines)


def _md_cell(text: str, limit: int = 200) -> str:
    text = text.replace("|", "\\|")
    return text if len(text) <= limit else text[: limit - 1] + "…"


# ── Writing ─────────────────────────────────────────────────
def write_report(
    report: GateReport,
    reports_dir: Path,
    *,
    signature: str | None = None,
) -> Path:
    """Persist *report* into a fresh ``reports_dir/<run_id>/`` directory.

    Returns
    -------
    Path
        The run directory.

    Raises
    ------
    ReportWriteFailed
        If the directory exists already or anything cannot be written.
    """
    run_dir = reports_dir / report.run_id
    try:
        reports_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ReportWriteFailed(f"cannot create reports directory {reports_dir}: {exc}") from exc
    try:
        run_dir.mkdir()
    except FileExistsError as exc:
        raise ReportWriteFailed(f"report directory already exists, refusing to overwrite: {run_dir}") from exc
    except OSError as exc:
        raise ReportWriteFailed(f"cannot create report directory {run_dir}: {exc}") from exc

    try:
        _atomic_write(run_dir / VERDICT_FILE, _dump(report.verdict_document()))
        _atomic_write(run_dir / REPORT_FILE, report_json(report))
        _atomic_write(run_dir / SUMMARY_FILE, render_summary(report))
        if signature:
            _atomic_write(run_dir / SIGNATURE_FILE, signature + "\n")
    except OSError as exc:
        raise ReportWriteFailed(f"cannot write report in {run_dir}: {exc}") from exc

    logger.info("report_written", path=str(run_dir), status=report.status)
    return run_dir


def report_json(report: GateReport) -> str:
    """Exact text written to ``report.json`` (what gets hashed and signed)."""
    return _dump(report.to_dict())


def _dump(doc: dict[str, Any]) -> str:
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def _atomic_write(target: Path, text: str) -> None:
    """Write via a temp file in the same directory + ``os.replace``.

    On crash the target is either absent or complete, never truncated.
    """
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
