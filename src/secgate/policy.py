"""Gate policy loader.

Loads ``security-policy.yaml`` with safety guards:

* Size limit (default 256 KB) — rejects oversized files.
* ``yaml.safe_load`` only — no arbitrary Python objects.
* Encoding validated (UTF-8).
* Typed exceptions (:class:`PolicyNotFound`, :class:`PolicyInvalid`,
  :class:`PolicyTooLarge`), all of them :class:`ConfigError`.

Expected shape::

    thresholds:
      sast: high          # block on CRITICAL only
      dependency: high
      image: medium       # block on HIGH and CRITICAL
    suppressions:
      - identifier: CVE-2024-12345
        expires: 2026-12-31
        reason: "not reachable, tracked in SEC-42"
        source: image     # optional; omit to waive on every source
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from secgate.core.errors import PolicyInvalid, PolicyNotFound, PolicyTooLarge
from secgate.core.models import Finding, Severity, Source

# Default max policy size (bytes).
_DEFAULT_MAX_SIZE_BYTES = 256 * 1024

# A source without a declared threshold tolerates everything up to HIGH,
# i.e. it blocks only on CRITICAL.
DEFAULT_THRESHOLD = Severity.HIGH


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Pydantic v2 strict models ──────────────────────────────
class Suppression(BaseModel):
    """A time-bounded waiver for one finding identifier."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    identifier: str
    expires: datetime
    reason: str
    source: Source | None = None

    @field_validator("identifier", "reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("expires", mode="before")
    @classmethod
    def _expires_end_of_day(cls, v: Any) -> Any:
        # A bare date waives through the whole of that day (UTC).
        if isinstance(v, str) and len(v.strip()) == 10:
            v = date.fromisoformat(v.strip())
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.max, tzinfo=timezone.utc)
        return v

    @field_validator("expires")
    @classmethod
    def _expires_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("source", mode="before")
    @classmethod
    def _source_lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    def is_active(self, at: datetime) -> bool:
        """A suppression holds while ``at <= expires``."""
        return _as_utc(at) <= self.expires

    def covers(self, finding: Finding) -> bool:
        if finding.identifier != self.identifier:
            return False
        return self.source is None or self.source == finding.source


class Policy(BaseModel):
    """Thresholds and waivers applied at gate time. Read-only."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    thresholds: dict[Source, Severity] = Field(
        validation_alias=AliasChoices("thresholds", "max_severity_by_source", "maxSeverityBySource"),
    )
    suppressions: tuple[Suppression, ...] = ()

    @field_validator("thresholds", mode="before")
    @classmethod
    def _normalise_thresholds(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("thresholds must be a mapping of source -> severity")
        out: dict[Any, Any] = {}
        for key, sev in v.items():
            src = key.strip().lower() if isinstance(key, str) else key
            out[src] = Severity.parse(sev) if isinstance(sev, str) else sev
        return out

    @field_validator("suppressions", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return () if v is None else v

    def threshold_for(self, source: Source) -> Severity:
        return self.thresholds.get(source, DEFAULT_THRESHOLD)

    def matching_suppressions(self, finding: Finding) -> list[Suppression]:
        return [s for s in self.suppressions if s.covers(finding)]

    def snapshot(self) -> dict[str, Any]:
        """Serialisable copy recorded in every report."""
        return {
            "thresholds": {src.value: self.threshold_for(src).value for src in Source},
            "declaredThresholds": sorted(src.value for src in self.thresholds),
            "suppressions": [
                {
                    "identifier": s.identifier,
                    "expires": s.expires.isoformat(),
                    "reason": s.reason,
                    "source": s.source.value if s.source else None,
                }
                for s in self.suppressions
            ],
        }


# ── Loader ──────────────────────────────────────────────────
def load_policy(
    path: Path,
    *,
    max_size_bytes: int = _DEFAULT_MAX_SIZE_BYTES,
) -> Policy:
    """Load and validate the gate policy YAML.

    Parameters
    ----------
    path:
        Absolute or resolved path to the policy file.
    max_size_bytes:
        Reject files larger than this.

    Returns
    -------
    Policy
        Validated, frozen policy.

    Raises
    ------
    PolicyNotFound
        File does not exist.
    PolicyTooLarge
        File exceeds *max_size_bytes*.
    PolicyInvalid
        YAML parse error, empty document or schema validation failure.
    """
    if not path.is_file():
        raise PolicyNotFound(f"policy not found: {path}")

    size = path.stat().st_size
    if size > max_size_bytes:
        raise PolicyTooLarge(
            f"policy {path.name} is {size:,} bytes (limit {max_size_bytes:,})"
        )

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise PolicyInvalid(f"policy is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise PolicyInvalid(f"policy could not be read: {exc}") from exc

    try:
        raw: Any = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise PolicyInvalid(f"YAML parse error: {exc}") from exc

    # An empty policy would silently fall back to defaults for every source.
    if raw is None:
        raise PolicyInvalid("policy is empty")
    if not isinstance(raw, dict):
        raise PolicyInvalid("policy schema invalid: expected a mapping")
    if not any(k in raw for k in ("thresholds", "max_severity_by_source", "maxSeverityBySource")):
        raise PolicyInvalid("policy schema invalid: missing 'thresholds'")

    try:
        return Policy.model_validate(raw)
    except Exception as exc:
        raise PolicyInvalid(f"policy schema invalid: {exc}") from exc
