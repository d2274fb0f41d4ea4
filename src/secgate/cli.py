"""secgate CLI — presentation layer.

Thin adapter: all gate logic lives in the controller / core modules.
The CLI only maps pipeline steps to domain calls, formats output and
turns the outcome into a process exit code.
"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import structlog
import typer
from rich import print
from rich.table import Table

from secgate.collect import run_scanner
from secgate.controller import GateController, GateInputs, GateOutcome
from secgate.core.context import RunContext
from secgate.core.db import ledger
from secgate.core.errors import ConfigError, LedgerBroken, ParseError, RepoRootNotFound
from secgate.core.ledger import list_runs, verify_ledger
from secgate.core.logging import configure_logging
from secgate.core.models import Source
from secgate.core.settings import Settings
from secgate.exit_codes import GateExitCode
from secgate.normalize.registry import normalize_file
from secgate.policy import load_policy

logger = structlog.get_logger()

app = typer.Typer(help="secgate — security gate for CI pipelines (SAST, dependency and image scans).")

_SEVERITY_STYLE = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "cyan",
    "INFO": "white",
}


# ── Callback (runs before every command) ────────────────────
@app.callback(invoke_without_command=True)
def _main_callback(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    log_level: str = typer.Option("INFO", "--log-level", envvar="SECGATE_LOG_LEVEL", help="Log level."),
    log_json: bool = typer.Option(True, "--log-json/--log-text", envvar="SECGATE_LOG_JSON", help="JSON or human logs."),
) -> None:
    """Configure logging + settings, then store in context for sub-commands."""
    configure_logging(level=log_level, json_output=log_json)
    try:
        settings = Settings(log_level=log_level, log_json=log_json)
    except RepoRootNotFound:
        print("[red]ERROR:[/red] could not find repo root (no .git, Jenkinsfile, pyproject.toml or package.json in parents).")
        raise typer.Exit(code=GateExitCode.ERROR)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings

    if ctx.invoked_subcommand is None:
        print(ctx.get_help())


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _resolve(s: Settings, path: Path | None, default: Path | None) -> Path | None:
    """Relative paths are anchored at the repo root, not cwd."""
    chosen = path if path is not None else default
    if chosen is None or chosen.is_absolute():
        return chosen
    assert s.repo_root is not None  # guaranteed by model_validator
    return (s.repo_root / chosen).resolve()


@contextmanager
def _cancel_on_signals(run_ctx: RunContext) -> Iterator[None]:
    """Turn a pipeline abort (SIGTERM / SIGINT) into a cooperative cancel."""

    def _handler(signum: int, _frame: object) -> None:
        logger.warning("cancel_requested", signal=signal.Signals(signum).name)
        run_ctx.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _print_outcome(outcome: GateOutcome) -> None:
    if outcome.exit_code == GateExitCode.ERROR:
        print(f"[red bold]GATE ERROR[/red bold]  run={outcome.run_id}  {outcome.error}")
    elif outcome.passed:
        print(f"[green bold]GATE PASSED[/green bold]  run={outcome.run_id}")
    else:
        print(f"[red bold]GATE BLOCKED[/red bold]  run={outcome.run_id}")

    if outcome.verdict is not None and outcome.verdict.blocking_findings:
        table = Table(title="Blocking findings", show_lines=False)
        table.add_column("Severity", style="bold")
        table.add_column("Source")
        table.add_column("Identifier")
        table.add_column("Component")
        for f in outcome.verdict.blocking_findings:
            style = _SEVERITY_STYLE.get(f.severity.value, "white")
            table.add_row(f"[{style}]{f.severity.value}[/{style}]", f.source.value, f.identifier, f.component)
        print(table)

    if outcome.report_dir is not None:
        print(f"  Report: {outcome.report_dir}")
    else:
        print("[yellow]  No report could be written.[/yellow]")


# ── Commands ────────────────────────────────────────────────
@app.command()
def gate(
    ctx: typer.Context,
    sast: Path | None = typer.Option(None, "--sast", help="SonarQube issues JSON or SARIF file."),
    dependency: Path | None = typer.Option(None, "--dependency", help="Dependency-Check JSON report."),
    image: Path | None = typer.Option(None, "--image", help="Trivy JSON or table output."),
    policy: Path | None = typer.Option(None, "--policy", "-p", help="Policy YAML (default: <repo>/security-policy.yaml)."),
    reports_dir: Path | None = typer.Option(None, "--reports-dir", help="Where run reports are written."),
    timeout: float | None = typer.Option(None, "--timeout", help="Overall wall-clock budget in seconds."),
    min_sources: int = typer.Option(1, "--min-sources", help="Scanner outputs that must normalize for a verdict."),
    ledger: bool = typer.Option(True, "--ledger/--no-ledger", help="Append the run to the ledger."),
) -> None:
    """Evaluate scanner outputs against the policy. Exit 0 pass, 1 blocked, 2 error."""
    s = _settings(ctx)
    overrides: dict[str, object] = {
        "policy_path": _resolve(s, policy, s.policy_path),
        "reports_dir": _resolve(s, reports_dir, s.reports_dir),
        "min_sources": min_sources,
    }
    if timeout is not None:
        overrides["timeout_seconds"] = timeout
    if not ledger:
        overrides["ledger_path"] = None
    elif reports_dir is not None and s.record_ledger:
        overrides["ledger_path"] = overrides["reports_dir"] / "ledger.db"  # type: ignore[operator]

    controller = GateController.from_settings(s, **overrides)
    inputs = GateInputs(
        sast=_resolve(s, sast, None),
        dependency=_resolve(s, dependency, None),
        image=_resolve(s, image, None),
    )
    run_ctx = controller.new_context()
    with _cancel_on_signals(run_ctx):
        outcome = controller.run(inputs, ctx=run_ctx)

    _print_outcome(outcome)
    raise typer.Exit(code=int(outcome.exit_code))


@app.command()
def normalize(
    ctx: typer.Context,
    source: Source = typer.Option(..., "--source", "-s", help="Which scanner produced the file."),
    path: Path = typer.Argument(help="Scanner output to normalize."),
) -> None:
    """Show the normalized findings of one scanner output (no gating)."""
    s = _settings(ctx)
    target = _resolve(s, path, None)
    assert target is not None
    try:
        result = normalize_file(source, target, started_at=datetime.now(timezone.utc))
    except ParseError as exc:
        print(f"[red]ERROR:[/red] {exc}")
        raise typer.Exit(code=GateExitCode.ERROR)

    table = Table(title=f"{source.value} findings ({len(result.findings)})", show_lines=False)
    table.add_column("Severity", style="bold")
    table.add_column("Identifier")
    table.add_column("Component")
    table.add_column("Description")
    for f in result.findings:
        style = _SEVERITY_STYLE.get(f.severity.value, "white")
        table.add_row(f"[{style}]{f.severity.value}[/{style}]", f.identifier, f.component, f.description[:80])
    print(table)

    for w in result.warnings:
        print(f"[yellow]warning[/yellow] record={w.record}: {w.message}")
    if result.duplicates:
        print(f"  {result.duplicates} duplicate record(s) merged.")


@app.command(name="policy-validate")
def policy_validate(
    ctx: typer.Context,
    policy: Path | None = typer.Option(None, "--policy", "-p", help="Policy YAML (relative to repo root unless absolute)."),
) -> None:
    """Validate the policy file schema."""
    s = _settings(ctx)
    policy_path = _resolve(s, policy, s.policy_path)
    assert policy_path is not None
    try:
        loaded = load_policy(policy_path, max_size_bytes=s.policy_max_size_bytes)
    except ConfigError as exc:
        print(f"[red]ERROR:[/red] {exc}")
        raise typer.Exit(code=GateExitCode.ERROR)

    print(f"[green]OK[/green] policy valid: {policy_path}")
    for src in Source:
        declared = "" if src in loaded.thresholds else "  [dim](default)[/dim]"
        print(f"  {src.value:<11}: blocks above {loaded.threshold_for(src).value}{declared}")
    now = datetime.now(timezone.utc)
    for sup in loaded.suppressions:
        state = "[green]active[/green]" if sup.is_active(now) else "[red]expired[/red]"
        print(f"  waiver {sup.identifier} until {sup.expires.date().isoformat()} {state}: {sup.reason}")


@app.command()
def history(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="How many runs to show."),
) -> None:
    """List recent gate runs from the ledger."""
    s = _settings(ctx)
    assert s.ledger_path is not None
    if not s.ledger_path.exists():
        print("[yellow]No runs recorded yet.[/yellow] Run [bold]secgate gate[/bold] first.")
        return

    with ledger(s.ledger_path) as conn:
        runs = list_runs(conn, limit=limit)

    table = Table(title="Gate runs", show_lines=False)
    table.add_column("Run", style="bold", overflow="fold")
    table.add_column("Status", no_wrap=True)
    table.add_column("Blocking")
    table.add_column("Findings")
    table.add_column("Warnings")
    table.add_column("Build")
    for r in runs:
        color = {"passed": "green", "blocked": "red", "error": "yellow"}.get(str(r["status"]), "white")
        table.add_row(
            str(r["run_id"]),
            f"[{color}]{r['status']}[/{color}]",
            str(r["blocking_count"]),
            str(r["finding_count"]),
            str(r["warning_count"]),
            str(r["build_id"] or ""),
        )
    print(table)


@app.command(name="verify-ledger")
def verify_ledger_cmd(ctx: typer.Context) -> None:
    """Verify the integrity of the run ledger (tamper detection)."""
    s = _settings(ctx)
    assert s.ledger_path is not None
    with ledger(s.ledger_path) as conn:
        try:
            count = verify_ledger(conn)
        except LedgerBroken as exc:
            print(f"[red bold]INTEGRITY FAILURE:[/red bold] {exc}")
            raise typer.Exit(code=1)

    print(f"[green]Ledger OK[/green] — {count} runs verified, no tampering detected.")


@app.command()
def collect(
    output: Path = typer.Option(..., "--output", "-o", help="File that receives the scanner's stdout."),
    command: list[str] = typer.Argument(help="Scanner command, after '--' (e.g. -- trivy image --format json app:1.0)."),
    timeout: float = typer.Option(600.0, "--timeout", help="Scanner timeout in seconds."),
    ok_code: list[int] = typer.Option([0], "--ok-code", help="Return codes that count as success (repeatable)."),
) -> None:
    """Run one scanner and capture its output for a later `secgate gate`."""
    outcome = run_scanner(command, output=output, timeout=timeout, ok_returncodes=frozenset(ok_code))
    if not outcome.ok:
        print(f"[red]ERROR:[/red] {' '.join(outcome.argv)}: {outcome.error}")
        raise typer.Exit(code=GateExitCode.ERROR)
    print(f"[green]OK[/green] {outcome.argv[0]} → {outcome.output}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show resolved paths and build context."""
    s = _settings(ctx)
    assert s.policy_path is not None and s.reports_dir is not None and s.ledger_path is not None

    print("[bold]secgate[/bold]  v0.1.0")
    print(f"  Repo root   : {s.repo_root}")
    print(f"  Policy      : {s.policy_path}  {'[green]OK[/green]' if s.policy_path.exists() else '[red]MISSING[/red]'}")
    print(f"  Reports     : {s.reports_dir}  {'[green]OK[/green]' if s.reports_dir.exists() else '[yellow]NOT CREATED[/yellow]'}")
    print(f"  Ledger      : {s.ledger_path}  {'[green]OK[/green]' if s.ledger_path.exists() else '[yellow]NOT CREATED[/yellow]'}")
    print(f"  Timeout     : {s.timeout_seconds:g}s")
    for key, value in s.build_context().items():
        print(f"  {key:<12}: {value or '-'}")


# ── Entrypoint ──────────────────────────────────────────────
def main() -> None:  # noqa: D103
    app()
