"""Per-run context threaded explicitly through every component call.

There is no module-level "current run": the controller creates one
:class:`RunContext` per invocation and hands it to the normalizers, the
evaluator and the report builder.  Warnings accumulate here so they end up
in the report whatever state the run finishes in.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from secgate.core.errors import GateCancelled, GateTimeout


@dataclass(frozen=True)
class NormalizationWarning:
    """A record (or a whole source) the gate could not use."""

    source: str
    message: str
    record: int | None = None  # index inside the scanner output, if any

    def to_dict(self) -> dict[str, object]:
        return {"source": self.source, "record": self.record, "message": self.message}


def new_run_id(now: datetime) -> str:
    """Timestamp-based run identifier, sortable and unique per invocation.

    The short random suffix keeps two runs started in the same microsecond
    apart (parallel pipeline stages sharing a reports volume).
    """
    return f"{now.strftime('%Y%m%dT%H%M%S%fZ')}-{uuid.uuid4().hex[:6]}"


@dataclass
class RunContext:
    run_id: str
    started_at: datetime
    timeout_seconds: float
    build: dict[str, str | None] = field(default_factory=dict)
    warnings: list[NormalizationWarning] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    _deadline: float = field(default=0.0, repr=False)

    @classmethod
    def create(
        cls,
        *,
        timeout_seconds: float,
        build: dict[str, str | None] | None = None,
        now: datetime | None = None,
    ) -> RunContext:
        started = now or datetime.now(timezone.utc)
        return cls(
            run_id=new_run_id(started),
            started_at=started,
            timeout_seconds=timeout_seconds,
            build=dict(build or {}),
            _deadline=time.monotonic() + timeout_seconds,
        )

    # ── Warnings ────────────────────────────────────────────
    def warn(self, source: str, message: str, *, record: int | None = None) -> None:
        self.warnings.append(NormalizationWarning(source=source, message=message, record=record))

    def extend_warnings(self, warnings: list[NormalizationWarning]) -> None:
        self.warnings.extend(warnings)

    # ── Deadline / cancellation ─────────────────────────────
    def remaining(self) -> float:
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self) -> None:
        """Request cancellation; honored at the next transition boundary."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def checkpoint(self, state: str) -> None:
        """Raise if the run was cancelled or ran out of time.

        Raises
        ------
        GateCancelled
            If :meth:`cancel` was called.
        GateTimeout
            If the overall deadline has passed.
        """
        if self.cancelled:
            raise GateCancelled(state)
        if self.remaining() <= 0:
            raise GateTimeout(self.timeout_seconds, state)
