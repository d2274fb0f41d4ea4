"""Tests for secgate.policy — policy YAML loading and validation."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from secgate.core.errors import ConfigError, PolicyInvalid, PolicyNotFound, PolicyTooLarge
from secgate.core.models import Finding, Severity, Source
from secgate.policy import DEFAULT_THRESHOLD, Policy, Suppression, load_policy

VALID_POLICY = """\
thresholds:
  sast: high
  dependency: HIGH
  image: medium
suppressions:
  - identifier: CVE-2024-29041
    source: image
    expires: 2026-12-31
    reason: not reachable from our routes
"""


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "security-policy.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def _finding(identifier: str, source: Source = Source.IMAGE) -> Finding:
    return Finding(
        source=source,
        identifier=identifier,
        severity=Severity.HIGH,
        component="express@4.18.2",
        description="",
        first_seen=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


# ── load_policy ─────────────────────────────────────────────
class TestLoadPolicy:
    def test_valid_policy(self, tmp_path: Path) -> None:
        policy = load_policy(_write(tmp_path, VALID_POLICY))
        assert policy.thresholds == {
            Source.SAST: Severity.HIGH,
            Source.DEPENDENCY: Severity.HIGH,
            Source.IMAGE: Severity.MEDIUM,
        }
        assert len(policy.suppressions) == 1
        assert policy.suppressions[0].source is Source.IMAGE

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyNotFound):
            load_policy(tmp_path / "nope.yaml")

    def test_too_large(self, tmp_path: Path) -> None:
        p = _write(tmp_path, VALID_POLICY + "#" * 2048)
        with pytest.raises(PolicyTooLarge):
            load_policy(p, max_size_bytes=1024)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid, match="YAML parse error"):
            load_policy(_write(tmp_path, "thresholds: [unclosed\n"))

    def test_unsafe_yaml_tag_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid):
            load_policy(_write(tmp_path, "thresholds: !!python/object/apply:os.system ['true']\n"))

    def test_empty_file(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid, match="empty"):
            load_policy(_write(tmp_path, ""))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid, match="mapping"):
            load_policy(_write(tmp_path, "- sast\n- image\n"))

    def test_missing_thresholds(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid, match="thresholds"):
            load_policy(_write(tmp_path, "suppressions: []\n"))

    def test_unknown_severity(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid):
            load_policy(_write(tmp_path, "thresholds:\n  sast: severe\n"))

    def test_unknown_source(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid):
            load_policy(_write(tmp_path, "thresholds:\n  dast: high\n"))

    def test_unknown_top_level_key(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyInvalid):
            load_policy(_write(tmp_path, "thresholds:\n  sast: high\nfail_open: true\n"))

    def test_suppression_requires_reason(self, tmp_path: Path) -> None:
        text = "thresholds: {}\nsuppressions:\n  - identifier: CVE-1\n    expires: 2026-01-01\n    reason: '  '\n"
        with pytest.raises(PolicyInvalid):
            load_policy(_write(tmp_path, text))

    def test_not_utf8(self, tmp_path: Path) -> None:
        p = tmp_path / "security-policy.yaml"
        p.write_bytes(b"thresholds:\n  sast: \xff\xfe\n")
        with pytest.raises(PolicyInvalid, match="UTF-8"):
            load_policy(p)

    def test_legacy_key_accepted(self, tmp_path: Path) -> None:
        policy = load_policy(_write(tmp_path, "max_severity_by_source:\n  image: low\n"))
        assert policy.threshold_for(Source.IMAGE) is Severity.LOW

    def test_all_errors_are_config_errors(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_policy(tmp_path / "missing.yaml")


# ── Policy model ────────────────────────────────────────────
class TestPolicy:
    def test_missing_source_uses_default(self) -> None:
        policy = Policy(thresholds={Source.SAST: Severity.LOW})
        assert policy.threshold_for(Source.IMAGE) is DEFAULT_THRESHOLD
        assert DEFAULT_THRESHOLD is Severity.HIGH

    def test_snapshot(self) -> None:
        policy = Policy(thresholds={"image": "medium"})
        snap = policy.snapshot()
        assert snap["thresholds"] == {"sast": "HIGH", "dependency": "HIGH", "image": "MEDIUM"}
        assert snap["declaredThresholds"] == ["image"]
        assert snap["suppressions"] == []

    def test_frozen(self) -> None:
        policy = Policy(thresholds={})
        with pytest.raises(Exception):
            policy.suppressions = ()  # type: ignore[misc]


# ── Suppression ─────────────────────────────────────────────
class TestSuppression:
    def test_bare_date_expires_end_of_day_utc(self) -> None:
        s = Suppression(identifier="CVE-1", expires="2026-03-01", reason="r")
        assert s.is_active(datetime(2026, 3, 1, 23, 59, 59, tzinfo=timezone.utc))
        assert not s.is_active(datetime(2026, 3, 2, 0, 0, 0, tzinfo=timezone.utc))

    def test_active_at_exact_expiry(self) -> None:
        expires = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        s = Suppression(identifier="CVE-1", expires=expires, reason="r")
        assert s.is_active(expires) is True

    def test_naive_datetime_is_utc(self) -> None:
        s = Suppression(identifier="CVE-1", expires=datetime(2026, 3, 1, 12, 0), reason="r")
        assert s.expires.tzinfo is not None
        assert s.expires == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_covers_any_source_when_unscoped(self) -> None:
        s = Suppression(identifier="CVE-1", expires="2026-01-01", reason="r")
        assert s.covers(_finding("CVE-1", Source.IMAGE))
        assert s.covers(_finding("CVE-1", Source.DEPENDENCY))
        assert not s.covers(_finding("CVE-2"))

    def test_covers_only_its_source_when_scoped(self) -> None:
        s = Suppression(identifier="CVE-1", expires="2026-01-01", reason="r", source="IMAGE")
        assert s.covers(_finding("CVE-1", Source.IMAGE))
        assert not s.covers(_finding("CVE-1", Source.DEPENDENCY))
