"""Policy evaluator — the gating decision.

A finding blocks the release when:

1. its severity is *strictly* greater than the threshold for its source
   (equal to the threshold passes: "block above", not "at or above"), and
2. no suppression covering its identifier is active at ``evaluated_at``.

The function is pure: the same findings, policy and instant always give
the same verdict, in the same order.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog

from secgate.core.context import RunContext
from secgate.core.errors import ConfigError
from secgate.core.models import Finding, Severity, Source, Verdict
from secgate.policy import Policy

logger = structlog.get_logger()

_SOURCE_ORDER: dict[Source, int] = {src: i for i, src in enumerate(Source)}


def report_order(finding: Finding) -> tuple[int, int, str, str]:
    """Severity descending, then source, then identifier (then component)."""
    return (
        -finding.severity.rank,
        _SOURCE_ORDER[finding.source],
        finding.identifier,
        finding.component,
    )


def exceeds_threshold(finding: Finding, threshold: Severity) -> bool:
    return finding.severity > threshold


def evaluate(
    findings: Iterable[Finding],
    policy: Policy | None,
    *,
    evaluated_at: datetime,
    ctx: RunContext | None = None,
) -> Verdict:
    """Compute the gate verdict.

    Parameters
    ----------
    findings:
        Normalized, deduplicated findings from every source.
    policy:
        The loaded policy.  ``None`` is a configuration error: running
        without thresholds would silently pass everything.
    evaluated_at:
        The instant suppressions are checked against.
    ctx:
        Optional run context; expired suppressions that would have
        covered a blocking finding are recorded on it as warnings.

    Raises
    ------
    ConfigError
        If *policy* is missing.
    """
    if policy is None:
        raise ConfigError("no policy loaded; refusing to evaluate without thresholds")

    blocking: list[Finding] = []
    suppressed: list[Finding] = []

    for finding in findings:
        if not exceeds_threshold(finding, policy.threshold_for(finding.source)):
            continue

        waivers = policy.matching_suppressions(finding)
        if any(w.is_active(evaluated_at) for w in waivers):
            suppressed.append(finding)
            continue

        if waivers and ctx is not None:
            expired = max(w.expires for w in waivers)
            ctx.warn(
                finding.source.value,
                f"suppression for {finding.identifier} expired at {expired.isoformat()}",
            )
        blocking.append(finding)

    blocking.sort(key=report_order)
    suppressed.sort(key=report_order)

    verdict = Verdict(
        blocking_findings=tuple(blocking),
        suppressed=tuple(suppressed),
        evaluated_at=evaluated_at,
    )
    logger.info(
        "policy_evaluated",
        passed=verdict.passed,
        blocking=len(verdict.blocking_findings),
        suppressed=len(verdict.suppressed),
    )
    return verdict
