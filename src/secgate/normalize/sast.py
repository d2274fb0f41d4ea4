"""SAST normalizer: SonarQube issues export and SARIF 2.1.0."""

from __future__ import annotations

from typing import Any

from secgate.core.errors import ParseError
from secgate.core.models import Severity, Source
from secgate.normalize.base import FindingCollector, load_json, parse_timestamp, severity_from_cvss

# Legacy SonarQube severities are one notch hotter than the gate's scale.
_SONAR_SEVERITY: dict[str, Severity] = {
    "BLOCKER": Severity.CRITICAL,
    "CRITICAL": Severity.HIGH,
    "MAJOR": Severity.MEDIUM,
    "MINOR": Severity.LOW,
    "INFO": Severity.INFO,
}

# Software-quality impacts (SonarQube 10.x).
_SONAR_IMPACT: dict[str, Severity] = {
    "BLOCKER": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "MEDIUM": Severity.MEDIUM,
    "LOW": Severity.LOW,
    "INFO": Severity.INFO,
}

_SARIF_LEVEL: dict[str, Severity] = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "note": Severity.LOW,
    "none": Severity.INFO,
}


def parse(text: str, collector: FindingCollector) -> None:
    doc = load_json(Source.SAST, text)
    if isinstance(doc, dict) and isinstance(doc.get("issues"), list):
        _parse_sonar(doc["issues"], collector)
    elif isinstance(doc, dict) and isinstance(doc.get("runs"), list):
        _parse_sarif(doc["runs"], collector)
    else:
        raise ParseError(
            Source.SAST.value,
            "unrecognized SAST report: expected SonarQube {'issues': [...]} or SARIF {'runs': [...]}",
        )


# ── SonarQube ───────────────────────────────────────────────
def _sonar_severity(issue: dict[str, Any]) -> Any:
    impacts = issue.get("impacts")
    if isinstance(impacts, list) and impacts:
        ranked = [
            _SONAR_IMPACT[str(i.get("severity", "")).upper()]
            for i in impacts
            if isinstance(i, dict) and str(i.get("severity", "")).upper() in _SONAR_IMPACT
        ]
        if ranked:
            return max(ranked)
    legacy = issue.get("severity")
    if isinstance(legacy, str) and legacy.upper() in _SONAR_SEVERITY:
        return _SONAR_SEVERITY[legacy.upper()]
    return legacy  # let the collector reject it


def _parse_sonar(issues: list[Any], collector: FindingCollector) -> None:
    for i, issue in enumerate(issues):
        if not isinstance(issue, dict):
            collector.skip(i, "skipped malformed record: issue is not an object")
            continue
        # Resolved issues (FIXED, WONTFIX, FALSE-POSITIVE) no longer apply.
        if issue.get("resolution"):
            continue
        collector.add(
            i,
            identifier=issue.get("rule"),
            severity=_sonar_severity(issue),
            component=issue.get("component"),
            description=issue.get("message", ""),
            first_seen=parse_timestamp(issue.get("creationDate")),
        )


# ── SARIF ───────────────────────────────────────────────────
def _sarif_rule_properties(run: dict[str, Any]) -> dict[str, dict[str, Any]]:
    driver = (run.get("tool") or {}).get("driver") or {}
    out: dict[str, dict[str, Any]] = {}
    for rule in driver.get("rules") or []:
        if isinstance(rule, dict) and isinstance(rule.get("id"), str):
            out[rule["id"]] = rule.get("properties") or {}
    return out


def _sarif_component(result: dict[str, Any]) -> Any:
    for loc in result.get("locations") or []:
        uri = (((loc or {}).get("physicalLocation") or {}).get("artifactLocation") or {}).get("uri")
        if uri:
            return uri
    return None


def _parse_sarif(runs: list[Any], collector: FindingCollector) -> None:
    record = 0
    for run in runs:
        if not isinstance(run, dict):
            collector.skip(None, "skipped malformed SARIF run")
            continue
        rule_props = _sarif_rule_properties(run)
        for result in run.get("results") or []:
            idx = record
            record += 1
            if not isinstance(result, dict):
                collector.skip(idx, "skipped malformed record: result is not an object")
                continue
            rule_id = result.get("ruleId")
            props = {**rule_props.get(rule_id, {}), **(result.get("properties") or {})}
            severity: Any = severity_from_cvss(props.get("security-severity"))
            if severity is None:
                severity = _SARIF_LEVEL.get(str(result.get("level", "warning")).lower(), result.get("level"))
            message = result.get("message")
            collector.add(
                idx,
                identifier=rule_id,
                severity=severity,
                component=_sarif_component(result),
                description=message.get("text", "") if isinstance(message, dict) else "",
            )
