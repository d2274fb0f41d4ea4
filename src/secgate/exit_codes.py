"""Process exit codes for pipeline branching.

Exit codes:
    0 — PASSED: no blocking findings
    1 — BLOCKED: the gate blocked the release (policy violation)
    2 — ERROR: the gate itself could not decide (config, I/O, timeout,
        cancellation)

"The release is risky" and "the gate is broken" must stay distinguishable
by exit status alone.
"""

from __future__ import annotations

from enum import IntEnum

from secgate.core.models import Verdict


class GateExitCode(IntEnum):
    PASSED = 0
    BLOCKED = 1
    ERROR = 2


def verdict_to_exit_code(verdict: Verdict | None) -> GateExitCode:
    """Map a verdict (``None`` when the run failed) to an exit code."""
    if verdict is None:
        return GateExitCode.ERROR
    return GateExitCode.PASSED if verdict.passed else GateExitCode.BLOCKED
