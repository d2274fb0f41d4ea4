"""Tests for secgate.evaluator — the gating decision.

Covers:
1. Threshold semantics: strictly above blocks, ties pass.
2. Suppressions: active ones waive, expired ones block and warn.
3. Determinism: same inputs + instant → same verdict, same order.
4. A missing policy is a configuration error, never a silent pass.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from secgate.core.context import RunContext
from secgate.core.errors import ConfigError
from secgate.core.models import Finding, Severity, Source
from secgate.evaluator import evaluate, report_order
from secgate.policy import Policy, Suppression

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _f(
    identifier: str,
    severity: Severity,
    source: Source = Source.DEPENDENCY,
    component: str = "lodash@4.17.20",
) -> Finding:
    return Finding(
        source=source,
        identifier=identifier,
        severity=severity,
        component=component,
        description="",
        first_seen=NOW,
    )


def _waiver(identifier: str, expires: datetime, source: Source | None = None) -> Suppression:
    return Suppression(identifier=identifier, expires=expires, reason="accepted risk", source=source)


# ── Scenarios ───────────────────────────────────────────────
class TestScenarios:
    def test_above_threshold_blocks(self) -> None:
        policy = Policy(thresholds={Source.DEPENDENCY: Severity.HIGH})
        finding = _f("CVE-2024-1", Severity.CRITICAL)

        verdict = evaluate([finding], policy, evaluated_at=NOW)

        assert verdict.passed is False
        assert [f.identifier for f in verdict.blocking_findings] == ["CVE-2024-1"]

    def test_equal_to_threshold_passes(self) -> None:
        policy = Policy(thresholds={Source.DEPENDENCY: Severity.HIGH})
        verdict = evaluate([_f("CVE-2024-1", Severity.HIGH)], policy, evaluated_at=NOW)
        assert verdict.passed is True
        assert verdict.blocking_findings == ()

    def test_active_suppression_passes(self) -> None:
        policy = Policy(
            thresholds={Source.IMAGE: Severity.HIGH},
            suppressions=(_waiver("CVE-X", NOW + timedelta(days=30)),),
        )
        finding = _f("CVE-X", Severity.CRITICAL, source=Source.IMAGE, component="openssl@3.0.1")

        verdict = evaluate([finding], policy, evaluated_at=NOW)

        assert verdict.passed is True
        assert verdict.suppressed == (finding,)


# ── Threshold semantics ─────────────────────────────────────
class TestThresholds:
    def test_below_threshold_passes(self) -> None:
        policy = Policy(thresholds={Source.DEPENDENCY: Severity.HIGH})
        verdict = evaluate([_f("CVE-1", Severity.LOW)], policy, evaluated_at=NOW)
        assert verdict.passed

    def test_thresholds_are_per_source(self) -> None:
        policy = Policy(thresholds={Source.SAST: Severity.CRITICAL, Source.IMAGE: Severity.LOW})
        findings = [
            _f("java:S2068", Severity.CRITICAL, source=Source.SAST, component="src/App.java"),
            _f("CVE-2", Severity.MEDIUM, source=Source.IMAGE),
        ]
        verdict = evaluate(findings, policy, evaluated_at=NOW)
        assert [f.identifier for f in verdict.blocking_findings] == ["CVE-2"]

    def test_undeclared_source_blocks_only_critical(self) -> None:
        policy = Policy(thresholds={})
        findings = [
            _f("CVE-HIGH", Severity.HIGH, source=Source.IMAGE),
            _f("CVE-CRIT", Severity.CRITICAL, source=Source.IMAGE),
        ]
        verdict = evaluate(findings, policy, evaluated_at=NOW)
        assert [f.identifier for f in verdict.blocking_findings] == ["CVE-CRIT"]

    def test_no_findings_passes(self) -> None:
        verdict = evaluate([], Policy(thresholds={Source.IMAGE: Severity.INFO}), evaluated_at=NOW)
        assert verdict.passed
        assert verdict.evaluated_at == NOW

    def test_missing_policy_is_config_error(self) -> None:
        with pytest.raises(ConfigError):
            evaluate([_f("CVE-1", Severity.CRITICAL)], None, evaluated_at=NOW)


# ── Suppression expiry ──────────────────────────────────────
class TestSuppressionExpiry:
    def test_active_exactly_at_expiry(self) -> None:
        policy = Policy(thresholds={}, suppressions=(_waiver("CVE-1", NOW),))
        verdict = evaluate([_f("CVE-1", Severity.CRITICAL)], policy, evaluated_at=NOW)
        assert verdict.passed

    def test_blocks_after_expiry(self) -> None:
        policy = Policy(thresholds={}, suppressions=(_waiver("CVE-1", NOW),))
        later = NOW + timedelta(microseconds=1)
        verdict = evaluate([_f("CVE-1", Severity.CRITICAL)], policy, evaluated_at=later)
        assert not verdict.passed

    def test_expired_suppression_warns(self) -> None:
        ctx = RunContext.create(timeout_seconds=60)
        policy = Policy(thresholds={}, suppressions=(_waiver("CVE-1", NOW - timedelta(days=1)),))

        evaluate([_f("CVE-1", Severity.CRITICAL)], policy, evaluated_at=NOW, ctx=ctx)

        assert len(ctx.warnings) == 1
        assert "CVE-1" in ctx.warnings[0].message
        assert "expired" in ctx.warnings[0].message

    def test_any_active_waiver_wins(self) -> None:
        policy = Policy(
            thresholds={},
            suppressions=(
                _waiver("CVE-1", NOW - timedelta(days=1)),
                _waiver("CVE-1", NOW + timedelta(days=1)),
            ),
        )
        verdict = evaluate([_f("CVE-1", Severity.CRITICAL)], policy, evaluated_at=NOW)
        assert verdict.passed

    def test_scoped_waiver_ignores_other_source(self) -> None:
        policy = Policy(
            thresholds={},
            suppressions=(_waiver("CVE-1", NOW + timedelta(days=1), source=Source.IMAGE),),
        )
        verdict = evaluate([_f("CVE-1", Severity.CRITICAL, source=Source.DEPENDENCY)], policy, evaluated_at=NOW)
        assert not verdict.passed

    def test_suppression_for_non_blocking_finding_is_silent(self) -> None:
        ctx = RunContext.create(timeout_seconds=60)
        policy = Policy(thresholds={}, suppressions=(_waiver("CVE-1", NOW - timedelta(days=1)),))
        verdict = evaluate([_f("CVE-1", Severity.LOW)], policy, evaluated_at=NOW, ctx=ctx)
        assert verdict.passed
        assert verdict.suppressed == ()
        assert ctx.warnings == []


# ── Determinism / ordering ──────────────────────────────────
class TestDeterminism:
    def _findings(self) -> list[Finding]:
        return [
            _f("CVE-B", Severity.HIGH, source=Source.IMAGE),
            _f("CVE-A", Severity.CRITICAL, source=Source.IMAGE),
            _f("java:S5131", Severity.CRITICAL, source=Source.SAST, component="src/server.js"),
            _f("CVE-A", Severity.CRITICAL, source=Source.DEPENDENCY),
        ]

    def test_idempotent(self) -> None:
        policy = Policy(thresholds={src: Severity.MEDIUM for src in Source})
        first = evaluate(self._findings(), policy, evaluated_at=NOW)
        second = evaluate(self._findings(), policy, evaluated_at=NOW)
        assert first == second

    def test_blocking_order(self) -> None:
        policy = Policy(thresholds={src: Severity.MEDIUM for src in Source})
        verdict = evaluate(self._findings(), policy, evaluated_at=NOW)
        assert [(f.severity, f.source, f.identifier) for f in verdict.blocking_findings] == [
            (Severity.CRITICAL, Source.SAST, "java:S5131"),
            (Severity.CRITICAL, Source.DEPENDENCY, "CVE-A"),
            (Severity.CRITICAL, Source.IMAGE, "CVE-A"),
            (Severity.HIGH, Source.IMAGE, "CVE-B"),
        ]

    def test_order_independent_of_input_order(self) -> None:
        policy = Policy(thresholds={src: Severity.LOW for src in Source})
        forward = evaluate(self._findings(), policy, evaluated_at=NOW)
        backward = evaluate(list(reversed(self._findings())), policy, evaluated_at=NOW)
        assert forward.blocking_findings == backward.blocking_findings

    def test_report_order_key(self) -> None:
        crit = _f("CVE-Z", Severity.CRITICAL)
        low = _f("CVE-A", Severity.LOW)
        assert sorted([low, crit], key=report_order) == [crit, low]
