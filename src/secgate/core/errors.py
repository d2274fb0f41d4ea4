"""secgate domain exceptions.

Every module raises typed exceptions so the controller can map failures to
an exit code explicitly instead of catching bare ValueError/RuntimeError.

A policy violation is *not* an exception: it is the expected outcome of a
gate run and is surfaced as ``Verdict.passed is False``.
"""

from __future__ import annotations


# ── Base ────────────────────────────────────────────────────
class GateError(Exception):
    """Root exception for all secgate errors."""


# ── Repo / filesystem ──────────────────────────────────────
class RepoRootNotFound(GateError):
    """Could not locate the repository root (no project marker in parent chain)."""

    def __init__(self, start_path: str | None = None) -> None:
        where = f" (searched from {start_path})" if start_path else ""
        super().__init__(f"Repository root not found{where}: no project marker in parent chain")
        self.start_path = start_path


# ── Normalization ──────────────────────────────────────────
class ParseError(GateError):
    """A scanner output could not be recognized at all."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class InputsUnusable(GateError):
    """Too few scanner outputs could be normalized to render a verdict."""


# ── Policy / configuration ─────────────────────────────────
class ConfigError(GateError):
    """The policy is missing or invalid; the gate cannot evaluate."""


class PolicyNotFound(ConfigError):
    """The policy YAML file does not exist at the expected path."""


class PolicyInvalid(ConfigError):
    """The policy failed schema validation or safe-load."""


class PolicyTooLarge(PolicyInvalid):
    """The policy file exceeds the allowed size limit."""


# ── Reporting ──────────────────────────────────────────────
class ReportWriteFailed(GateError, OSError):
    """The report directory or one of its files could not be written."""


# ── Ledger ─────────────────────────────────────────────────
class LedgerBroken(GateError):
    """Hash-chain integrity verification of the run ledger failed."""


# ── Controller ─────────────────────────────────────────────
class StateTransitionInvalid(GateError):
    """An illegal state transition was attempted."""

    def __init__(self, from_state: str, to_state: str) -> None:
        super().__init__(f"Invalid transition: {from_state} → {to_state}")
        self.from_state = from_state
        self.to_state = to_state


class GateTimeout(GateError):
    """The overall wall-clock budget for the run was exhausted."""

    def __init__(self, timeout_seconds: float, state: str) -> None:
        super().__init__(f"Gate timed out after {timeout_seconds:g}s in state {state}")
        self.timeout_seconds = timeout_seconds
        self.state = state


class GateCancelled(GateError):
    """An external cancellation was observed at a transition boundary."""

    def __init__(self, state: str) -> None:
        super().__init__(f"Gate cancelled before leaving state {state}")
        self.state = state
