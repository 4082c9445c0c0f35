"""Typer CLI for the agent optimizer.

Commands:
  simulate   Replay a synthetic scenario and show the resulting analysis
  defaults   Show the default alert thresholds and safety settings
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from whenever import TimeDelta

from agent_optimizer import __version__
from agent_optimizer.models import OptimizerConfig
from agent_optimizer.simulation import DEFAULT_AGENTS, Scenario, run_simulation

app = typer.Typer(
    name="agent-optimizer",
    help="Trend analysis, dynamic thresholds and human-approved optimizations",
    no_args_is_help=True,
)
console = Console()

_SEVERITY_STYLE = {"critical": "red", "high": "yellow", "medium": "cyan", "low": "dim"}


@app.callback()
def main(
    log_level: Annotated[
        str, typer.Option("--log-level", "-l", help="Root log level (DEBUG, INFO, WARNING)")
    ] = "WARNING",
) -> None:
    """Agent optimizer CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    """Print the package version."""
    console.print(__version__)


@app.command()
def simulate(
    scenario: Annotated[
        Scenario, typer.Argument(help="Scenario to replay (steady, spike, degrading, memory_leak)")
    ] = Scenario.SPIKE,
    snapshots: Annotated[
        int, typer.Option("--snapshots", "-n", min=1, help="Number of snapshots")
    ] = 60,
    interval: Annotated[
        int, typer.Option("--interval", "-i", min=1, help="Seconds between snapshots")
    ] = 60,
    agents: Annotated[
        str, typer.Option("--agents", "-a", help="Comma-separated agent ids")
    ] = ",".join(DEFAULT_AGENTS),
    seed: Annotated[int | None, typer.Option("--seed", help="Random seed")] = None,
    apply: Annotated[
        bool, typer.Option("--apply/--no-apply", help="Apply safe recommendations")
    ] = True,
    as_json: Annotated[bool, typer.Option("--json", help="Print the analysis as JSON")] = False,
) -> None:
    """Replay a synthetic scenario through a fresh optimizer and show what it found."""
    agent_ids = [a.strip() for a in agents.split(",") if a.strip()]
    if not agent_ids:
        console.print("[red]At least one agent id is required[/red]")
        raise typer.Exit(1)

    with console.status(f"[bold green]Replaying {scenario} scenario..."):
        result = asyncio.run(
            run_simulation(
                scenario,
                snapshots,
                interval=TimeDelta(seconds=interval),
                agents=agent_ids,
                seed=seed,
                apply=apply,
            )
        )

    if as_json:
        console.print_json(result.analysis.model_dump_json())
        return

    analysis = result.analysis
    console.print(
        Panel.fit(
            f"[bold]{analysis.overall_health_assessment}[/bold]\n"
            f"Snapshots: {result.status.snapshots_recorded}  "
            f"Trends: {len(analysis.trends)}  "
            f"Bottlenecks: {len(analysis.bottlenecks)}  "
            f"Predicted issues: {len(analysis.predicted_issues)}",
            title=f"Scenario: {scenario}",
            style="bold blue",
        )
    )

    if analysis.trends:
        table = Table(title="Trends")
        table.add_column("Metric", style="cyan")
        table.add_column("Direction")
        table.add_column("Change %", justify="right")
        table.add_column("Confidence", justify="right")
        for trend in analysis.trends:
            table.add_row(
                trend.metric_name,
                str(trend.direction),
                f"{trend.change_percent:.1f}",
                f"{trend.confidence_score:.0f}",
            )
        console.print(table)

    if analysis.bottlenecks:
        table = Table(title="Bottlenecks")
        table.add_column("Severity")
        table.add_column("Type")
        table.add_column("Target", style="cyan")
        table.add_column("Description")
        for b in analysis.bottlenecks:
            style = _SEVERITY_STYLE.get(str(b.severity), "")
            table.add_row(
                f"[{style}]{b.severity}[/{style}]", str(b.type), b.affected_target, b.description
            )
        console.print(table)

    if analysis.predicted_issues:
        table = Table(title="Predicted issues")
        table.add_column("Issue", style="cyan")
        table.add_column("Likely at")
        table.add_column("Confidence", justify="right")
        table.add_column("Prevention")
        for issue in analysis.predicted_issues:
            table.add_row(
                str(issue.issue_type),
                issue.likely_occurrence,
                f"{issue.confidence_percent:.0f}",
                "; ".join(issue.preventive_actions),
            )
        console.print(table)

    if result.recommendations:
        table = Table(title="Recommendations")
        table.add_column("Priority")
        table.add_column("Type")
        table.add_column("Title")
        table.add_column("Approval")
        for rec in result.recommendations:
            style = _SEVERITY_STYLE.get(str(rec.priority), "")
            table.add_row(
                f"[{style}]{rec.priority}[/{style}]",
                str(rec.type),
                rec.title,
                "required" if rec.requires_human_approval else "auto",
            )
        console.print(table)

    for applied in result.applied:
        mark = "[green]✓[/green]" if applied.status == "completed" else "[red]✗[/red]"
        console.print(f"{mark} {applied.recommendation.title} ({applied.status})")
    for change in result.threshold_changes:
        changed = ", ".join(
            f"{a.threshold_name} {a.current_value:g}→{a.recommended_value:g}"
            for a in change.adjustments
        )
        console.print(f"[cyan]Thresholds[/cyan] {change.approval_status}: {changed}")
    if result.pending_decision_ids:
        console.print(
            f"[yellow]{len(result.pending_decision_ids)} decision(s) awaiting approval[/yellow]"
        )


@app.command()
def defaults() -> None:
    """Show the default alert thresholds and safety limits."""
    config = OptimizerConfig()

    table = Table(title="Alert thresholds")
    table.add_column("Threshold", style="cyan")
    table.add_column("Default", justify="right")
    for name, value in config.alert_thresholds.model_dump().items():
        table.add_row(name, f"{value:g}")
    console.print(table)

    table = Table(title="Safety")
    table.add_column("Setting", style="cyan")
    table.add_column("Default", justify="right")
    for name, value in config.safety.model_dump().items():
        table.add_row(name, str(value))
    for name, value in config.thresholds.model_dump().items():
        table.add_row(f"thresholds.{name}", str(value))
    console.print(table)


if __name__ == "__main__":
    app()
