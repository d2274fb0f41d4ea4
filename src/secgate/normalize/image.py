"""Image normalizer: Trivy JSON and Trivy table output.

The pipeline scans with ``trivy image --severity CRITICAL,HIGH`` and tees
the table to ``reports/trivy/trivy.txt``.  Severities are re-parsed here
rather than trusted from the scan-time filter, so the policy decides.

Table layout (box-drawing or ASCII pipes)::

    │ Library │ Vulnerability  │ Severity │ Status │ Installed Version │ ...
    │ express │ CVE-2024-29041 │ MEDIUM   │ fixed  │ 4.18.2            │ ...
    │         │ CVE-2024-43796 │ LOW      │        │                   │ ...

Blank Library / Severity / Installed Version cells were merged by Trivy
and inherit the value from the row above; rows with a blank Vulnerability
cell are wrapped Title text.
"""

from __future__ import annotations

import re
from typing import Any

from secgate.core.errors import ParseError
from secgate.core.models import Finding, Source
from secgate.normalize.base import FindingCollector, load_json, parse_timestamp

_TOTAL_RE = re.compile(r"^Total:\s*\d+")
_BORDER_RE = re.compile(r"^[\s┌├└─┬┼┴┐┤┘+\-=]*$")
_VULN_ID_RE = re.compile(r"^[A-Z][A-Z0-9]*-[A-Za-z0-9][\w.:-]*$")

_INHERITED = ("library", "severity", "installed version")
# Older Trivy releases print upper-case headers with "Vulnerability ID".
_HEADER_ALIASES = {"vulnerability id": "vulnerability"}


def parse(text: str, collector: FindingCollector) -> None:
    stripped = text.lstrip()
    if stripped.startswith(("{", "[")):
        _parse_json(load_json(Source.IMAGE, text), collector)
    else:
        _parse_table(text, collector)


# ── JSON ────────────────────────────────────────────────────
def _parse_json(doc: Any, collector: FindingCollector) -> None:
    if isinstance(doc, dict) and isinstance(doc.get("Results"), list):
        results = doc["Results"]
    elif isinstance(doc, dict) and "Results" not in doc and "ArtifactName" in doc:
        results = []  # clean image: Trivy omits Results entirely
    elif isinstance(doc, list):
        results = doc
    else:
        raise ParseError(Source.IMAGE.value, "unrecognized image report: expected Trivy {'Results': [...]}")

    record = 0
    for result in results:
        if not isinstance(result, dict):
            collector.skip(record, "skipped malformed record: result is not an object")
            record += 1
            continue
        for vuln in result.get("Vulnerabilities") or []:
            idx = record
            record += 1
            if not isinstance(vuln, dict):
                collector.skip(idx, "skipped malformed record: vulnerability is not an object")
                continue
            collector.add(
                idx,
                identifier=vuln.get("VulnerabilityID"),
                severity=vuln.get("Severity"),
                component=_component(vuln.get("PkgName"), vuln.get("InstalledVersion")),
                description=vuln.get("Title") or vuln.get("Description", ""),
                first_seen=parse_timestamp(vuln.get("PublishedDate")),
            )


def _component(name: Any, version: Any) -> Any:
    if isinstance(name, str) and name.strip() and isinstance(version, str) and version.strip():
        return f"{name.strip()}@{version.strip()}"
    return name


# ── Table ───────────────────────────────────────────────────
def _split_row(line: str) -> list[str] | None:
    s = line.strip()
    if not s or _BORDER_RE.match(s):
        return None
    if s.startswith("│"):
        sep = "│"
    elif s.startswith("|"):
        sep = "|"
    else:
        return None
    # Partial separators (│   ├────┼───┤) split into border-only cells.
    cells = ["" if _BORDER_RE.match(c) else c.strip() for c in s.split(sep)]
    return cells[1:-1] if len(cells) >= 3 else None


def _cell(cells: list[str], columns: dict[str, int], name: str) -> str:
    i = columns.get(name)
    return cells[i] if i is not None and i < len(cells) else ""


def _parse_table(text: str, collector: FindingCollector) -> None:
    columns: dict[str, int] | None = None
    recognized = False
    carried: dict[str, str] = {}
    last: Finding | None = None
    record = 0

    for line in text.splitlines():
        if _TOTAL_RE.match(line.strip()):
            recognized = True
            continue
        if line.strip().startswith("==="):
            # New target section; its table declares its own columns.
            columns = None
            continue
        cells = _split_row(line)
        if cells is None:
            continue

        lowered = [_HEADER_ALIASES.get(c.lower(), c.lower()) for c in cells]
        if "vulnerability" in lowered and "severity" in lowered:
            columns = {name: i for i, name in enumerate(lowered)}
            recognized = True
            carried = {}
            last = None
            continue
        if columns is None:
            continue

        vuln_id = _cell(cells, columns, "vulnerability")
        if not vuln_id:
            title = _cell(cells, columns, "title")
            if last is not None and title:
                collector.amend_description(last, title)
                last = collector.last
            continue

        idx = record
        record += 1
        for name in _INHERITED:
            value = _cell(cells, columns, name)
            if value:
                carried[name] = value
        if not _VULN_ID_RE.match(vuln_id):
            collector.skip(idx, f"skipped malformed record: unexpected vulnerability id {vuln_id!r}")
            last = None
            continue
        last = collector.add(
            idx,
            identifier=vuln_id,
            severity=carried.get("severity", ""),
            component=_component(carried.get("library"), carried.get("installed version")),
            description=_cell(cells, columns, "title"),
        )

    if not recognized:
        raise ParseError(
            Source.IMAGE.value,
            "unrecognized image report: neither Trivy JSON nor a Trivy table",
        )
