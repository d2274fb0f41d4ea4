"""Pipeline gate controller.

Drives one gate run through::

    COLLECTING → NORMALIZING → EVALUATING → REPORTING → DONE
         └────────────┴────────────┴───────────┴──→ FAILED_FATAL

* COLLECTING loads the policy (a missing or invalid policy is fatal) and
  locates every declared scanner output.  Nothing is retried.
* NORMALIZING parses the sources in parallel, each into a private result;
  results are merged only once every worker has finished.
* Cancellation and the overall deadline are checked at transition
  boundaries only, so a run never evaluates a half-merged finding set.
* Every run ends with a report (best effort after a fatal error) and an
  exit code.
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import structlog

from secgate.collect import CollectedInput, locate_input
from secgate.core.context import RunContext
from secgate.core.db import ledger
from secgate.core.errors import GateError, GateTimeout, InputsUnusable, ParseError
from secgate.core.ledger import RunRecord, compute_hmac, file_sha256, record_run
from secgate.core.logging import run_logging
from secgate.core.models import Finding, GateState, Source, Verdict
from secgate.core.settings import Settings
from secgate.core.state import TransitionEvent, transition
from secgate.evaluator import evaluate
from secgate.exit_codes import GateExitCode, verdict_to_exit_code
from secgate.normalize.base import NormalizeResult
from secgate.normalize.registry import normalize_file
from secgate.policy import Policy, load_policy
from secgate.report import GateReport, build_report, report_json, write_report

logger = structlog.get_logger()


@dataclass(frozen=True)
class GateInputs:
    sast: Path | None = None
    dependency: Path | None = None
    image: Path | None = None

    def declared(self) -> dict[Source, Path]:
        paths = {Source.SAST: self.sast, Source.DEPENDENCY: self.dependency, Source.IMAGE: self.image}
        return {src: p for src, p in paths.items() if p is not None}


@dataclass(frozen=True)
class GateOutcome:
    run_id: str
    state: GateState
    exit_code: GateExitCode
    verdict: Verdict | None
    report_dir: Path | None
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.exit_code == GateExitCode.PASSED


@dataclass
class _Run:
    """Mutable bookkeeping for one invocation of :meth:`GateController.run`."""

    ctx: RunContext
    state: GateState = GateState.COLLECTING
    events: list[TransitionEvent] = field(default_factory=list)
    policy: Policy | None = None
    collected: list[CollectedInput] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    verdict: Verdict | None = None
    report_dir: Path | None = None

    def advance(self, to_state: GateState, *, checkpoint: bool = True) -> None:
        if checkpoint:
            self.ctx.checkpoint(self.state.value)
        self.events.append(transition(self.ctx.run_id, self.state, to_state))
        logger.debug("gate_state", from_state=self.state.value, to_state=to_state.value)
        self.state = to_state


class GateController:
    def __init__(
        self,
        *,
        policy_path: Path,
        reports_dir: Path,
        timeout_seconds: float = 300.0,
        max_workers: int = 3,
        policy_max_size_bytes: int = 256 * 1024,
        ledger_path: Path | None = None,
        build: dict[str, str | None] | None = None,
        signing_env: str = "SECGATE_REPORT_KEY",
        min_sources: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.policy_path = policy_path
        self.reports_dir = reports_dir
        self.timeout_seconds = timeout_seconds
        self.max_workers = max(1, max_workers)
        self.policy_max_size_bytes = policy_max_size_bytes
        self.ledger_path = ledger_path
        self.build = dict(build or {})
        self.signing_env = signing_env
        self.min_sources = min_sources
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> GateController:
        assert settings.policy_path is not None and settings.reports_dir is not None
        kwargs: dict[str, object] = {
            "policy_path": settings.policy_path,
            "reports_dir": settings.reports_dir,
            "timeout_seconds": settings.timeout_seconds,
            "max_workers": settings.max_workers,
            "policy_max_size_bytes": settings.policy_max_size_bytes,
            "ledger_path": settings.ledger_path if settings.record_ledger else None,
            "build": settings.build_context(),
            "signing_env": settings.report_key_env,
        }
        kwargs.update(overrides)
        return cls(**kwargs)  # type: ignore[arg-type]

    def new_context(self) -> RunContext:
        return RunContext.create(timeout_seconds=self.timeout_seconds, build=self.build, now=self._clock())

    # ── Run ─────────────────────────────────────────────────
    def run(self, inputs: GateInputs, *, ctx: RunContext | None = None) -> GateOutcome:
        """Execute one gate run.  Never raises for gate-level failures."""
        run = _Run(ctx=ctx or self.new_context())
        with run_logging(run.ctx.run_id):
            logger.info("gate_started", inputs={s.value: str(p) for s, p in inputs.declared().items()})
            try:
                return self._run(run, inputs)
            except Exception as exc:  # every failure still ends in a report + exit code
                return self._fail(run, exc)

    def _run(self, run: _Run, inputs: GateInputs) -> GateOutcome:
        # COLLECTING
        run.policy = load_policy(self.policy_path, max_size_bytes=self.policy_max_size_bytes)
        run.collected = self._collect(inputs, run.ctx)
        run.advance(GateState.NORMALIZING)

        run.findings = self._normalize(run.collected, run.ctx)
        run.advance(GateState.EVALUATING)

        run.verdict = evaluate(run.findings, run.policy, evaluated_at=self._clock(), ctx=run.ctx)
        run.advance(GateState.REPORTING)

        report = self._build(run)
        run.report_dir = self._write(report, run)
        # The decision is recorded; a late cancel no longer changes it.
        run.advance(GateState.DONE, checkpoint=False)

        exit_code = verdict_to_exit_code(run.verdict)
        logger.info(
            "gate_finished",
            passed=run.verdict.passed,
            exit_code=int(exit_code),
            blocking=len(run.verdict.blocking_findings),
            warnings=len(run.ctx.warnings),
            report=str(run.report_dir),
        )
        return GateOutcome(
            run_id=run.ctx.run_id,
            state=run.state,
            exit_code=exit_code,
            verdict=run.verdict,
            report_dir=run.report_dir,
        )

    # ── Steps ───────────────────────────────────────────────
    def _collect(self, inputs: GateInputs, ctx: RunContext) -> list[CollectedInput]:
        collected: list[CollectedInput] = []
        for source, path in inputs.declared().items():
            item = locate_input(source, path)
            if not item.ok:
                ctx.warn(source.value, f"source skipped: {item.error}")
            collected.append(item)
        return collected

    def _normalize(self, collected: list[CollectedInput], ctx: RunContext) -> list[Finding]:
        usable = [c for c in collected if c.ok and c.path is not None]
        results: dict[Source, NormalizeResult] = {}

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="secgate-normalize")
        try:
            futures: dict[Future[NormalizeResult], Source] = {}
            for c in usable:
                # Workers run in a copy of the caller's context so run_id stays bound.
                worker_ctx = contextvars.copy_context()
                future = pool.submit(worker_ctx.run, normalize_file, c.source, c.path, started_at=ctx.started_at)
                futures[future] = c.source
            _, pending = wait(futures, timeout=ctx.remaining())
            if pending:
                raise GateTimeout(ctx.timeout_seconds, GateState.NORMALIZING.value)
            for future, source in futures.items():
                try:
                    results[source] = future.result()
                except ParseError as exc:
                    ctx.warn(source.value, f"source skipped: {exc.reason}")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        # Join point: merge in a fixed source order.
        findings: list[Finding] = []
        for source in Source:
            if source in results:
                ctx.extend_warnings(results[source].warnings)
                findings.extend(results[source].findings)

        if len(results) < self.min_sources:
            raise InputsUnusable(
                f"only {len(results)} scanner output(s) could be normalized, {self.min_sources} required"
            )
        return findings

    def _build(self, run: _Run, error: BaseException | None = None, failed_state: str | None = None) -> GateReport:
        return build_report(
            run.ctx,
            policy=run.policy,
            findings=run.findings,
            verdict=run.verdict,
            error=error,
            failed_state=failed_state,
            states=run.events,
            inputs=[c.to_dict() for c in run.collected],
        )

    def _write(self, report: GateReport, run: _Run) -> Path:
        text = report_json(report)
        signature = compute_hmac(text, env_var=self.signing_env)
        run_dir = write_report(report, self.reports_dir, signature=signature)
        self._record(report, run_dir, text, signature)
        return run_dir

    def _record(self, report: GateReport, run_dir: Path, text: str, signature: str | None) -> None:
        if self.ledger_path is None:
            return
        verdict = report.verdict
        record = RunRecord(
            run_id=report.run_id,
            status=report.status,
            exit_code=int(verdict_to_exit_code(verdict) if report.error is None else GateExitCode.ERROR),
            evaluated_at=verdict.evaluated_at.isoformat() if verdict else None,
            finding_count=len(report.findings),
            blocking_count=len(verdict.blocking_findings) if verdict else 0,
            warning_count=len(report.warnings),
            build_id=report.build.get("buildId"),
            report_path=str(run_dir),
            report_sha256=file_sha256(text.encode("utf-8")),
            signature=signature,
        )
        # The report on disk is the artifact of record; a ledger failure
        # must not turn a decided run into an error.
        try:
            with ledger(self.ledger_path) as conn:
                record_run(conn, record)
        except Exception:
            logger.exception("ledger_append_failed", ledger=str(self.ledger_path))

    # ── Failure ─────────────────────────────────────────────
    def _fail(self, run: _Run, exc: Exception) -> GateOutcome:
        failed_state = run.state
        if isinstance(exc, GateError):
            logger.error("gate_failed", state=failed_state.value, error_type=type(exc).__name__, error=str(exc))
        else:
            logger.exception("gate_internal_error", state=failed_state.value)
        if failed_state not in (GateState.DONE, GateState.FAILED_FATAL):
            run.advance(GateState.FAILED_FATAL, checkpoint=False)

        if run.report_dir is None:
            try:
                report = self._build(run, error=exc, failed_state=failed_state.value)
                run.report_dir = self._write(report, run)
            except Exception:
                logger.exception("error_report_failed", reports_dir=str(self.reports_dir))

        return GateOutcome(
            run_id=run.ctx.run_id,
            state=run.state,
            exit_code=GateExitCode.ERROR,
            verdict=run.verdict,
            report_dir=run.report_dir,
            error=f"{type(exc).__name__}: {exc}",
        )
