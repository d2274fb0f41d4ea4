"""Redaction + sanitising helpers for scanner-supplied text.

Scanner outputs are untrusted input: descriptions can echo environment
variables, tokens or whole configuration files, and identifiers end up as
keys in reports and the run ledger.  Every free-text field passes through
here before it becomes part of a :class:`~secgate.core.models.Finding`, and
the logging pipeline runs every string value through :func:`redact_secrets`.

Strategies:
- Regex-based redaction of common credential shapes
- Control-character stripping and hard length limits
- Whitelist validation of identifiers
"""

from __future__ import annotations

import re

# ── Secret regex patterns ───────────────────────────────────
# Ordered: most specific first to avoid partial matches.
_SECRET_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # SonarQube user / project / global analysis tokens
    ("SONAR_TOKEN", re.compile(r"\bsq[uapg]_[A-Za-z0-9]{40}\b")),
    # GitHub personal / OAuth / app tokens
    ("GITHUB_TOKEN", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,255}\b")),
    # AWS access key id
    ("AWS_KEY", re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")),
    # Authorization headers
    ("BEARER", re.compile(r"\bBearer\s+[A-Za-z0-9\-._~+/]{16,}=*", re.IGNORECASE)),
    # key=value / key: value assignments of credentials
    ("CREDENTIAL", re.compile(
        r"(?i)\b(password|passwd|secret|token|api[_-]?key)(\s*[=:]\s*)(\"[^\"]*\"|'[^']*'|\S+)"
    )),
]

# Identifiers: CVE-2024-1234, GHSA-xxxx-xxxx-xxxx, java:S2068, squid:S1234 ...
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-.:/@+]{1,200}$")

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_MAX_DESCRIPTION_CHARS = 2000
_MAX_COMPONENT_CHARS = 512


def redact_secrets(text: str) -> str:
    """Replace detected credentials with ``[REDACTED-<TYPE>]``.

    Best effort: the aim is to keep obvious tokens out of reports and logs,
    not to be a secret scanner.
    """
    result = text
    for label, pattern in _SECRET_PATTERNS:
        if label == "CREDENTIAL":
            result = pattern.sub(lambda m: f"{m.group(1)}{m.group(2)}[REDACTED-{label}]", result)
        else:
            result = pattern.sub(f"[REDACTED-{label}]", result)
    return result


def contains_secret(text: str) -> bool:
    return any(pattern.search(text) for _, pattern in _SECRET_PATTERNS)


def sanitise_text(text: str, *, limit: int = _MAX_DESCRIPTION_CHARS) -> str:
    """Strip control characters, collapse whitespace runs, cap length, redact."""
    text = _CONTROL_RE.sub("", text)
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 1] + "…"
    return redact_secrets(text)


def validate_identifier(identifier: object) -> str:
    """Validate a scanner identifier (CVE id, rule key, ...).

    Raises
    ------
    ValueError
        If the identifier is missing, too long or has disallowed characters.
    """
    if not isinstance(identifier, str):
        raise ValueError("identifier must be a string")
    identifier = identifier.strip()
    if not identifier:
        raise ValueError("identifier must not be empty")
    if not _SAFE_ID_RE.match(identifier):
        raise ValueError(
            f"identifier contains invalid characters or is too long (max 200): {identifier!r}"
        )
    return identifier


def validate_component(component: object) -> str:
    """Validate the affected package / file name.

    Raises
    ------
    ValueError
        If the component is missing or blank.
    """
    if not isinstance(component, str):
        raise ValueError("component must be a string")
    component = _CONTROL_RE.sub("", component).strip()
    if not component:
        raise ValueError("component must not be empty")
    return component[:_MAX_COMPONENT_CHARS]
