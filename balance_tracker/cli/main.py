"""
CLI interface for the balance tracker.

Provides command-line access to tracking, batch checks and the dashboard.
"""

import sqlite3
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, NoReturn, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from balance_tracker.config.loader import TrackerConfig, load_tracker_config
from balance_tracker.core.batch import BatchSummary, CheckOutcome, run_batch_check
from balance_tracker.core.burn_rate import BurnClassification
from balance_tracker.core.dashboard import (
    DashboardView,
    build_dashboard,
    build_dashboard_for_keys,
)
from balance_tracker.core.tracking import TrackingError, TrackingService
from balance_tracker.logging_config import setup_logging
from balance_tracker.sdk.siliconflow_client import SiliconFlowClient, UpstreamFailure
from balance_tracker.security.vault import CredentialVault
from balance_tracker.storage.repository import BalanceRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_CLASSIFICATION_STYLES = {
    BurnClassification.MINIMAL: ("Minimal", "green"),
    BurnClassification.FAST: ("Fast", "dark_orange"),
    BurnClassification.VERY_FAST: ("Very Fast", "red"),
}


@dataclass
class CliState:
    config: TrackerConfig

    @property
    def db_path(self) -> str:
        return self.config.storage.db_path

    def repository(self) -> BalanceRepository:
        return BalanceRepository(self.db_path)

    def vault(self) -> CredentialVault:
        return CredentialVault.from_env()

    def client(self) -> SiliconFlowClient:
        upstream = self.config.upstream
        return SiliconFlowClient(base_url=upstream.base_url, timeout=upstream.timeout_seconds)

    def tracking(self) -> TrackingService:
        return TrackingService(self.repository(), self.vault())


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    )
):
    """SiliconFlow Balance Tracker CLI."""
    load_dotenv()
    try:
        config = load_tracker_config(config_path)
    except (OSError, ValueError) as e:
        _fail(f"Invalid configuration: {e}")
    setup_logging(config.logging.level, config.logging.log_dir)
    ctx.obj = CliState(config=config)
    if ctx.invoked_subcommand is None:
        console.print("Balance Tracker - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the tracker database."""
    try:
        initialize_schema(_state(ctx).db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def track(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="API key to track"),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Owner user id"),
    user_email: Optional[str] = typer.Option(None, "--user-email", help="Owner email")
):
    """Start tracking an API key."""
    try:
        result = _state(ctx).tracking().track_key(api_key, user_id=user_id, user_email=user_email)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Key #{result.tracked_key_id}: {result.outcome.value}")


@app.command()
def untrack(
    ctx: typer.Context,
    api_key: Optional[str] = typer.Argument(None, help="API key to stop tracking"),
    tracked_key_id: Optional[int] = typer.Option(None, "--id", help="Tracked key id")
):
    """Stop tracking an API key (history is kept)."""
    try:
        matched = _state(ctx).tracking().untrack_key(api_key=api_key, tracked_key_id=tracked_key_id)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    if not matched:
        _fail("Key is not tracked")
    console.print("[green]✓[/] Tracking removed")


@app.command()
def status(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="API key to look up")
):
    """Show whether an API key is being tracked."""
    try:
        result = _state(ctx).tracking().tracking_status(api_key)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    if result.tracked_key_id is None:
        console.print("Not tracked")
        return
    state = "[green]tracked[/]" if result.is_tracked else "[yellow]inactive[/]"
    console.print(f"Key #{result.tracked_key_id}: {state}")
    console.print(f"Created: {_format_time(result.created_at)}")
    console.print(f"Last checked: {_format_time(result.last_checked_at)}")


@app.command()
def save(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="API key the balance belongs to"),
    balance: float = typer.Argument(..., help="Observed balance"),
    account_status: str = typer.Option("active", "--status", help="Observed account status")
):
    """Record a manually queried balance without enabling tracking."""
    try:
        result = _state(ctx).tracking().save_manual_query(api_key, balance, status=account_status)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Saved sample #{result.sample.id} for key #{result.tracked_key_id}")


@app.command()
def check(
    ctx: typer.Context,
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with error code if any key failed"
    )
):
    """Run one batch pass over all active keys."""
    state = _state(ctx)
    try:
        summary = run_batch_check(
            state.repository(),
            state.client(),
            state.vault(),
            config=state.config.scheduler
        )
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    _display_batch_summary(summary)
    if strict and summary.failed:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def run(
    ctx: typer.Context,
    interval: float = typer.Option(
        60.0,
        "--interval",
        "-i",
        help="Seconds between batch passes"
    ),
    passes: Optional[int] = typer.Option(
        None,
        "--passes",
        help="Stop after this many passes"
    )
):
    """Run batch passes on a fixed interval.

    The scheduler still decides per key whether it is due, so the
    interval only bounds how often keys are considered.
    """
    if interval <= 0:
        _fail("--interval must be > 0")
    state = _state(ctx)
    try:
        repository = state.repository()
        client = state.client()
        vault = state.vault()
    except ValueError as e:
        _fail(str(e))

    completed = 0
    while passes is None or completed < passes:
        started = time.monotonic()
        try:
            summary = run_batch_check(repository, client, vault, config=state.config.scheduler)
            _display_batch_summary(summary)
        except sqlite3.Error as e:
            console.print(f"[red]Batch pass failed:[/] {e}")
        completed += 1
        if passes is not None and completed >= passes:
            break
        time.sleep(max(0.0, interval - (time.monotonic() - started)))


@app.command()
def dashboard(
    ctx: typer.Context,
    keys: Optional[List[str]] = typer.Option(
        None,
        "--key",
        "-k",
        help="Only show these API keys (repeatable)"
    )
):
    """Show balance, burn rate and ETA of tracked keys."""
    state = _state(ctx)
    try:
        if keys:
            view = build_dashboard_for_keys(keys, state.repository(), state.vault(), config=state.config)
        else:
            view = build_dashboard(state.repository(), state.vault(), config=state.config)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    _display_dashboard(view)


@app.command()
def latest(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="Tracked API key")
):
    """Show the most recent balance of a tracked key."""
    try:
        sample = _state(ctx).tracking().latest_balance(api_key)
    except (TrackingError, ValueError, sqlite3.Error) as e:
        _fail(str(e))
    console.print(f"Balance: {_format_amount(sample.balance)}")
    console.print(f"Status: {sample.status}")
    console.print(f"Checked: {_format_time(sample.checked_at)}")


@app.command()
def history(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="Tracked API key"),
    days: int = typer.Option(7, "--days", "-d", help="Days of history (1-90)")
):
    """Show the balance history of a tracked key."""
    try:
        result = _state(ctx).tracking().balance_history(api_key, days=days)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))
    if not result.is_tracked:
        console.print("[yellow]API key is not being tracked[/]")
        return

    table = Table(title=f"Balance history ({result.days} days)")
    table.add_column("Checked at")
    table.add_column("Balance", justify="right")
    table.add_column("Status")
    for sample in result.samples:
        table.add_row(_format_time(sample.checked_at), _format_amount(sample.balance), sample.status)
    console.print(table)
    console.print(f"{len(result.samples)} records")


@app.command()
def models(
    ctx: typer.Context,
    api_key: str = typer.Argument(..., help="API key to list models for"),
    model_type: Optional[str] = typer.Option(None, "--type", help="Model type filter"),
    sub_type: Optional[str] = typer.Option(None, "--sub-type", help="Model sub type filter")
):
    """List models available to an API key."""
    try:
        model_ids = _state(ctx).client().list_models(api_key, model_type=model_type, sub_type=sub_type)
    except (UpstreamFailure, ValueError) as e:
        _fail(str(e))
    for model_id in model_ids:
        console.print(model_id)
    console.print(f"\n{len(model_ids)} models")


def _format_amount(amount: float) -> str:
    return f"¥{amount:,.2f}"


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "--"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _display_batch_summary(summary: BatchSummary) -> None:
    console.print("\n[bold]Batch Check Result[/bold]")
    console.print("-" * 40)
    console.print(
        f"Total: {summary.total}  "
        f"[green]Success: {summary.success}[/]  "
        f"[red]Failed: {summary.failed}[/]  "
        f"Skipped: {summary.skipped}"
    )
    if summary.deactivated:
        console.print(f"[yellow]Deactivated (balance exhausted): {summary.deactivated}[/]")
    for result in summary.results:
        if result.outcome == CheckOutcome.FAILED:
            console.print(f"[red]✗[/] Key #{result.tracked_key_id}: {result.error}")


def _display_dashboard(view: DashboardView) -> None:
    if not view.keys:
        console.print("\n[dim]No tracked keys found.[/]")
    else:
        table = Table(title="Tracked Keys")
        table.add_column("ID", justify="right")
        table.add_column("Key")
        table.add_column("Balance", justify="right")
        table.add_column("Initial", justify="right")
        table.add_column("Left", justify="right")
        table.add_column("Burn Rate")
        table.add_column("ETA")
        table.add_column("Status")
        table.add_column("Last Checked")
        for snapshot in view.keys:
            label, style = _CLASSIFICATION_STYLES[snapshot.classification]
            if not snapshot.has_data:
                balance = initial = "[dim]not enough data[/]"
            else:
                balance = _format_amount(snapshot.current_balance)
                initial = _format_amount(snapshot.initial_balance)
            account = "[red]blocked[/]" if snapshot.is_blocked else snapshot.account_status
            if snapshot.balance_changing:
                account += " [cyan]●[/]"
            table.add_row(
                str(snapshot.tracked_key_id),
                snapshot.masked_key,
                balance,
                initial,
                f"{round(snapshot.percentage)}%",
                f"[{style}]{label}[/]",
                snapshot.eta_text,
                account,
                _format_time(snapshot.last_checked_at)
            )
        console.print(table)
    console.print(f"Last batch check: {_format_time(view.last_batch_check)}")


if __name__ == "__main__":
    app()
