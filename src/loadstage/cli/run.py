"""``loadstage run``: execute a staged scenario with live terminal output."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from loadstage._internal.config import load_config
from loadstage._internal.errors import ConfigError, LoadStageError
from loadstage.dsl.loader import load_scenario
from loadstage.engine.scheduler import Scheduler
from loadstage.engine.session import run_engine
from loadstage.patterns.staged import Stage, StagedPattern

if TYPE_CHECKING:
    from loadstage.metrics.models import IntervalSnapshot, RunSummary
    from loadstage.patterns.base import LoadPattern

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Stage construction
# ---------------------------------------------------------------------------


def _build_pattern(stage_texts: list[str]) -> LoadPattern:
    """Build a StagedPattern from repeated ``--stage`` values.

    Raises:
        typer.BadParameter: If a stage is malformed.
    """
    try:
        return StagedPattern([Stage.parse(text) for text in stage_texts])
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="--stage") from exc


# ---------------------------------------------------------------------------
# Rich output
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: IntervalSnapshot | None) -> Table:
    """Build a Rich table for the latest tick."""
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if snapshot is None:
        table.add_row("Status", "Starting...")
        return table

    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.0f}s")
    table.add_row("Users (active / target)", f"{snapshot.active_users} / {snapshot.target_users}")
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("p95 Latency", f"{snapshot.latency_p95:.1f}ms")
    table.add_row("Failed Requests", str(snapshot.failed_requests))
    table.add_row("Failed Checks", str(snapshot.failed_checks))
    return table


def _print_summary(summary: RunSummary) -> None:
    """Print the final summary after the run."""
    final = summary.final
    table = Table(
        title="Run Cancelled" if summary.cancelled else "Run Complete",
        show_header=True,
        header_style="bold green",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Scenario", summary.scenario_name)
    table.add_row("Pattern", summary.pattern_description)
    table.add_row("Duration", f"{summary.duration_seconds:.1f}s")
    if summary.cancelled:
        table.add_row("Cancel Reason", summary.cancel_reason or "-")
    table.add_row("Iterations", str(final.iterations))
    table.add_row("Requests", str(final.total_requests))
    table.add_row(
        "Failed Requests",
        f"{final.failed_requests} ({(1 - final.request_success_rate) * 100:.2f}%)",
    )
    for kind, count in sorted(final.errors_by_kind.items()):
        table.add_row(f"  {kind}", str(count))
    table.add_row(
        "Failed Checks",
        f"{final.checks_failed} ({(1 - final.check_pass_rate) * 100:.2f}%)",
    )
    table.add_row("Crashed Users", str(final.runners_crashed))
    table.add_row("Force-stopped Users", str(final.runners_forced))
    table.add_row("Latency avg / p95 / p99", (
        f"{final.latency_mean:.1f} / {final.latency_p95:.1f} / {final.latency_p99:.1f}ms"
    ))
    table.add_row("Iteration avg", f"{final.iteration_duration_avg:.1f}ms")

    if final.requests_by_name:
        name_table = Table(
            title="Requests by Name",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        name_table.add_column("Request")
        name_table.add_column("Count", justify="right")
        name_table.add_column("Failed", justify="right")
        name_table.add_column("avg (ms)", justify="right")
        name_table.add_column("p95 (ms)", justify="right")
        name_table.add_column("p99 (ms)", justify="right")
        for stats in final.requests_by_name.values():
            name_table.add_row(
                stats.name,
                str(stats.requests),
                str(stats.failed),
                f"{stats.latency_mean:.1f}",
                f"{stats.latency_p95:.1f}",
                f"{stats.latency_p99:.1f}",
            )
        console.print(name_table)

    if final.checks:
        check_table = Table(
            title="Checks",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        check_table.add_column("Check")
        check_table.add_column("Passes", justify="right")
        check_table.add_column("Fails", justify="right")
        check_table.add_column("Pass %", justify="right")
        for stats in final.checks.values():
            check_table.add_row(
                stats.name,
                str(stats.passes),
                str(stats.fails),
                f"{stats.pass_rate * 100:.2f}%",
            )
        console.print(check_table)

    console.print(table)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    scenario_file: Path = typer.Argument(
        ...,
        help="Path to the scenario .py file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    stage: list[str] | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Stage as <duration>:<target>, e.g. 30s:500. Repeat for more stages.",
    ),
    scenario_name: str | None = typer.Option(
        None,
        "--scenario",
        help="Scenario to run when the file defines several.",
    ),
    tick: float | None = typer.Option(
        None,
        "--tick",
        help="Seconds between pool reconciliations.",
    ),
    grace: float | None = typer.Option(
        None,
        "--grace",
        help="Seconds users may take to finish their iteration at the end.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds.",
    ),
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        help="Base URL for relative request paths; replaces the scenario's base_url.",
    ),
    fail_on_error_rate: float | None = typer.Option(
        None,
        "--fail-on-error-rate",
        help="Exit non-zero if the failed-request rate exceeds this (e.g., 0.05).",
    ),
    min_check_rate: float | None = typer.Option(
        None,
        "--min-check-rate",
        help="Exit non-zero if the check pass rate falls below this (e.g., 0.99).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON lines.",
    ),
) -> None:
    """Execute a staged load test scenario with live terminal output."""
    try:
        definition = load_scenario(scenario_file, scenario_name)
        config = load_config()
    except LoadStageError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if timeout is not None:
        config = dataclasses.replace(config, request_timeout=timeout)

    pattern = _build_pattern(stage) if stage else definition.stages
    if pattern is None:
        console.print(
            "[red]Error:[/red] no stages given; pass --stage or declare "
            "stages in @scenario(stages=...)"
        )
        raise typer.Exit(code=1)

    try:
        scheduler = Scheduler(pattern, tick if tick is not None else config.tick_interval)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="--tick") from exc

    target_url = base_url or definition.base_url or config.default_base_url or "-"
    console.print(
        Panel(
            f"[bold]Scenario:[/bold] {definition.name} ({scenario_file.name})\n"
            f"[bold]Pattern:[/bold]  {pattern.describe()}\n"
            f"[bold]Ticks:[/bold]    {scheduler.total_ticks} x {scheduler.tick_interval:g}s, "
            f"peak {scheduler.peak_target} users\n"
            f"[bold]Base URL:[/bold] {target_url}\n"
            f"[bold]Pause:[/bold]    {definition.pause}s",
            title="LoadStage",
            border_style="cyan",
        )
    )

    log_level = logging.DEBUG if verbose else logging.INFO

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=2,
            transient=True,
        ) as live:

            def _on_snapshot(snapshot: IntervalSnapshot) -> None:
                live.update(_make_live_table(snapshot))

            summary = run_engine(
                definition,
                pattern,
                log_level=log_level,
                json_logs=json_logs,
                config=config,
                base_url=base_url,
                tick_interval=tick,
                grace_timeout=grace,
                on_snapshot=_on_snapshot,
            )
    except LoadStageError as exc:
        console.print(f"[red]Load test failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    _print_summary(summary)

    failed = False
    error_rate = 1 - summary.final.request_success_rate
    if fail_on_error_rate is not None and error_rate > fail_on_error_rate:
        console.print(
            f"[red]FAIL:[/red] Failed-request rate {error_rate * 100:.2f}% "
            f"exceeds threshold {fail_on_error_rate * 100:.2f}%"
        )
        failed = True
    check_rate = summary.final.check_pass_rate
    if min_check_rate is not None and check_rate < min_check_rate:
        console.print(
            f"[red]FAIL:[/red] Check pass rate {check_rate * 100:.2f}% "
            f"is below threshold {min_check_rate * 100:.2f}%"
        )
        failed = True
    if summary.cancelled:
        console.print(f"[yellow]Load test cancelled:[/yellow] {summary.cancel_reason}")
        failed = True
    if failed:
        raise typer.Exit(code=1)

    console.print("[green]Load test completed successfully.[/green]")
