"""secgate domain models — enums and core value objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Source(str, Enum):
    SAST = "sast"
    DEPENDENCY = "dependency"
    IMAGE = "image"


class Severity(str, Enum):
    """Finding severity with an explicit total order.

    Comparison goes through :attr:`rank`, never through the string value
    (``"HIGH" < "LOW"`` alphabetically, but not semantically).
    """

    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: object) -> Severity:
        """Map a scanner severity label onto the gate's scale.

        Raises
        ------
        ValueError
            If the label is not recognized.
        """
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise ValueError(f"severity must be a string, got {type(value).__name__}")
        key = value.strip().upper()
        if key in cls.__members__:
            return cls[key]
        if key in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[key]
        raise ValueError(f"unknown severity: {value!r}")


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.LOW: 10,
    Severity.MEDIUM: 20,
    Severity.HIGH: 30,
    Severity.CRITICAL: 40,
}

# SonarQube (legacy), SARIF levels and a few scanner spellings.
_SEVERITY_ALIASES: dict[str, Severity] = {
    "BLOCKER": Severity.CRITICAL,
    "MAJOR": Severity.MEDIUM,
    "MINOR": Severity.LOW,
    "MODERATE": Severity.MEDIUM,
    "INFORMATIONAL": Severity.INFO,
    "NEGLIGIBLE": Severity.INFO,
    "UNKNOWN": Severity.INFO,
    "NONE": Severity.INFO,
    "ERROR": Severity.HIGH,
    "WARNING": Severity.MEDIUM,
    "NOTE": Severity.LOW,
}


class GateState(str, Enum):
    COLLECTING = "collecting"
    NORMALIZING = "normalizing"
    EVALUATING = "evaluating"
    REPORTING = "reporting"
    DONE = "done"
    FAILED_FATAL = "failed_fatal"


@dataclass(frozen=True)
class Finding:
    """One issue discovered by a scanner, after normalization."""

    source: Source
    identifier: str
    severity: Severity
    component: str
    description: str
    first_seen: datetime

    @property
    def key(self) -> tuple[Source, str, str]:
        return (self.source, self.identifier, self.component)

    def to_dict(self) -> dict[str, str]:
        return {
            "source": self.source.value,
            "identifier": self.identifier,
            "severity": self.severity.value,
            "component": self.component,
            "description": self.description,
            "firstSeen": self.first_seen.isoformat(),
        }


@dataclass(frozen=True)
class Verdict:
    """The gate's decision for one run.

    ``passed`` is derived from ``blocking_findings`` so the two can never
    disagree.
    """

    blocking_findings: tuple[Finding, ...]
    evaluated_at: datetime
    suppressed: tuple[Finding, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.blocking_findings

    def to_dict(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "blockingFindings": [f.to_dict() for f in self.blocking_findings],
            "suppressedFindings": [f.to_dict() for f in self.suppressed],
            "evaluatedAt": self.evaluated_at.isoformat(),
        }
