"""CLI entrypoint: claude-costs analyze, claude-costs monitor."""

from __future__ import annotations

import logging
import threading
from datetime import date
from pathlib import Path

import click

from claude_costs.alerts import Alert, evaluate_report_alerts
from claude_costs.analyzer import build_report, filter_conversations
from claude_costs.config import load_config
from claude_costs.ingest import load_conversations


def format_number(num: float) -> str:
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}K"
    return f"{num:.0f}"


def format_duration(minutes: float) -> str:
    if minutes < 60:
        return f"{minutes:.0f} minutes"
    if minutes < 1440:
        return f"{minutes / 60:.1f} hours"
    return f"{minutes / 1440:.1f} days"


def _echo_alerts(alerts: list[Alert], indent: str = "") -> None:
    for alert in alerts:
        click.echo(f"{indent}{alert.severity.upper()}: {alert.message}")


@click.group()
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path), default=None,
    help="Config file (default: ~/.config/claude-costs/config.yaml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log diagnostics to stderr.")
@click.pass_context
def cli(ctx, config_path: Path | None, verbose: bool):
    """claude-costs: cost and usage analysis for Claude Code conversation logs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_config(config_path)


@cli.command()
@click.option("--project", "-p", default=None, help="Only conversations whose project contains NAME.")
@click.option("--days", "-d", default=None, type=click.IntRange(1, 365), help="Days to analyze.")
@click.pass_obj
def analyze(config, project: str | None, days: int | None):
    """Print a cost summary of all conversations."""
    result = load_conversations(
        config.log_dir, config.pricing, config.max_file_bytes, config.workers,
    )
    for line in result.diagnostics:
        click.echo(line, err=True)

    if not result.conversations:
        click.echo("No conversations found.")
        return

    conversations = filter_conversations(
        result.conversations,
        project=project,
        days=days if days is not None else config.default_days,
    )
    report = build_report(conversations)
    totals = report.totals

    click.echo("=== Claude Conversation Cost Analysis ===\n")
    click.echo(f"Total Cost: ${totals.total_cost:.4f}")
    click.echo(f"Total Conversations: {totals.conversation_count}")
    click.echo(f"Average Cost per Conversation: ${totals.average_cost:.4f}")
    click.echo(f"Total Tokens Used: {format_number(totals.total_tokens)}")
    click.echo(f"Total Time: {format_duration(totals.total_duration)}")

    click.echo("\n=== Model Usage ===")
    for model in report.models[:3]:
        click.echo(f"{model.model}: ${model.total_cost:.4f} ({model.conversations} conversations)")

    click.echo("\n=== Top Tool Usage ===")
    for tool in report.tools[:5]:
        click.echo(f"{tool.name}: {tool.total_count} uses, ${tool.total_cost:.4f}")

    if report.errors.total_errors > 0:
        click.echo("\n=== Error Statistics ===")
        click.echo(
            f"Total Errors: {report.errors.total_errors} "
            f"({report.errors.error_rate * 100:.1f}% of conversations)"
        )

    click.echo("\n=== Token Burn Analysis ===")
    click.echo(f"Average Burn Rate: {report.token_burn.average_burn_rate:.0f} tokens/minute")
    click.echo(f"Maximum Burn Rate: {report.token_burn.max_burn_rate:.0f} tokens/minute")

    click.echo("\n=== Top 5 Most Expensive Conversations ===")
    for i, conv in enumerate(report.conversations[:5], start=1):
        started = "Unknown"
        if conv.start_time is not None:
            started = conv.start_time.astimezone().date().isoformat()
        click.echo(f"{i}. {conv.title}")
        click.echo(f"   Project: {conv.project_name}")
        click.echo(f"   Cost: ${conv.total_cost:.6f}")
        click.echo(f"   Tokens: {format_number(conv.total_tokens.total)}")
        click.echo(f"   Duration: {format_duration(conv.duration)}")
        click.echo(f"   Date: {started}")

    alerts = evaluate_report_alerts(report, config.alerts, date.today())
    if alerts:
        click.echo("\n=== ALERTS ===")
        _echo_alerts(alerts)

    if result.stats.errors:
        click.echo(f"\nIgnored {result.stats.errors} unparsable log lines.")


@cli.command()
@click.pass_obj
def monitor(config):
    """Watch the log directory and report live session activity."""
    from claude_costs.monitor.watcher import LiveTailWatcher

    def on_update(update):
        snapshot = update.snapshot
        click.echo("\nActive Session Update:")
        click.echo(f"   Session: {update.session_id}")
        click.echo(f"   Cost: ${snapshot.total_cost:.4f}")
        click.echo(f"   Tokens: {snapshot.total_tokens.total}")
        click.echo(f"   Burn Rate: {snapshot.average_burn_rate:.0f} tokens/min")

    def on_alerts(alerts):
        click.echo("\nALERTS:")
        _echo_alerts(alerts, indent="   ")

    watcher = LiveTailWatcher(config.log_dir, config, on_update=on_update, on_alerts=on_alerts)
    if not watcher.start():
        click.echo(f"Log directory not found: {config.log_dir}")
        return

    click.echo(f"Monitoring {config.log_dir}")
    click.echo("Press Ctrl+C to stop.")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        click.echo("\nStopping monitor...")
    finally:
        watcher.stop()
