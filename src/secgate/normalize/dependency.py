"""Dependency normalizer: OWASP Dependency-Check JSON report.

The pipeline asks Dependency-Check for its HTML report for humans; the gate
reads the JSON sidecar (``--format JSON`` or ``--format ALL``).  An HTML
file handed to the gate is rejected as unrecognized rather than guessed at.
"""

from __future__ import annotations

from typing import Any

from secgate.core.errors import ParseError
from secgate.core.models import Source
from secgate.normalize.base import FindingCollector, load_json, severity_from_cvss


def parse(text: str, collector: FindingCollector) -> None:
    if text.lstrip().startswith("<"):
        raise ParseError(
            Source.DEPENDENCY.value,
            "HTML/XML report is not supported; run Dependency-Check with --format JSON",
        )
    doc = load_json(Source.DEPENDENCY, text)
    if not isinstance(doc, dict) or not isinstance(doc.get("dependencies"), list):
        raise ParseError(
            Source.DEPENDENCY.value,
            "unrecognized dependency report: expected Dependency-Check {'dependencies': [...]}",
        )

    record = 0
    for dep in doc["dependencies"]:
        if not isinstance(dep, dict):
            collector.skip(record, "skipped malformed record: dependency is not an object")
            record += 1
            continue
        component = _component(dep)
        for vuln in dep.get("vulnerabilities") or []:
            idx = record
            record += 1
            if not isinstance(vuln, dict):
                collector.skip(idx, "skipped malformed record: vulnerability is not an object")
                continue
            collector.add(
                idx,
                identifier=vuln.get("name"),
                severity=_severity(vuln),
                component=component,
                description=vuln.get("description", ""),
            )


def _component(dep: dict[str, Any]) -> Any:
    # Prefer the package URL (pkg:npm/express@4.18.2) over the file name.
    for pkg in dep.get("packages") or []:
        if isinstance(pkg, dict) and pkg.get("id"):
            return pkg["id"]
    return dep.get("fileName") or dep.get("filePath")


def _severity(vuln: dict[str, Any]) -> Any:
    sev = vuln.get("severity")
    if isinstance(sev, str) and sev.strip():
        return sev
    for key in ("cvssv3", "cvssv2"):
        block = vuln.get(key)
        if not isinstance(block, dict):
            continue
        label = block.get("baseSeverity") or block.get("severity")
        if label:
            return label
        from_score = severity_from_cvss(block.get("baseScore") or block.get("score"))
        if from_score is not None:
            return from_score
    return sev
