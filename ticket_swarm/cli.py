"""Command line interface.

Inspection and planning commands around the pipeline's persisted state.
Heavy modules are imported inside the commands that need them.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ticket_swarm import __version__

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig

app = typer.Typer(
    name="ticket-swarm",
    help="Ticket-to-pull-request orchestration around coding-agent CLIs",
    add_completion=False,
)

console = Console()

# Set by the --config callback option
_config_path: Optional[str] = None


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"ticket-swarm version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: ./config.yaml if present)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Ticket Swarm - debate a plan, execute it, ship a pull request.
    """
    global _config_path
    _config_path = config


def get_config() -> TicketSwarmConfig:
    """
    Load the configuration.

    An explicit --config must exist. Without one, ./config.yaml is used when
    present and defaults otherwise.
    """
    from ticket_swarm.config import ConfigError, TicketSwarmConfig, load_config

    if _config_path is None and not Path("config.yaml").exists():
        return TicketSwarmConfig()

    try:
        return load_config(_config_path)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


def _store(config: TicketSwarmConfig):
    from ticket_swarm.pipeline.checkpoint import CheckpointStore

    return CheckpointStore(config.state_path)


# =============================================================================
# State inspection
# =============================================================================


@app.command()
def status(
    ticket_key: str = typer.Argument(..., help="Ticket key, e.g. PROJ-123"),
) -> None:
    """Show the checkpoint recorded for a ticket."""
    config = get_config()
    store = _store(config)
    checkpoint = store.load(ticket_key)

    if checkpoint is None:
        console.print(f"[yellow]No checkpoint found for {ticket_key}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Checkpoint: {ticket_key}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    step = checkpoint.current_step
    table.add_row("Step", f"{step.name} ({step.number}/8)")
    table.add_row("Description", step.description)
    table.add_row("Saved", checkpoint.timestamp)
    table.add_row("Service", checkpoint.service_name or "-")
    table.add_row("Base branch", checkpoint.branch_name or "-")
    table.add_row("Feature branch", checkpoint.feature_branch or "-")
    table.add_row("Clone dir", checkpoint.clone_dir or "-")
    table.add_row(
        "Cheatsheet",
        f"{len(checkpoint.cheatsheet)} chars" if checkpoint.cheatsheet else "[dim]none[/dim]",
    )
    table.add_row("Debate rounds", str(len(store.list_round_files(ticket_key))))
    table.add_row("Pull requests", str(len(checkpoint.all_prs)))

    console.print(table)


@app.command()
def cheatsheet(
    ticket_key: str = typer.Argument(..., help="Ticket key"),
) -> None:
    """Print the persisted cheatsheet for a ticket."""
    config = get_config()
    text = _store(config).load_cheatsheet(ticket_key)

    if not text:
        console.print(f"[yellow]No cheatsheet found for {ticket_key}[/yellow]")
        raise typer.Exit(1)

    console.print(Panel(text, title=f"Cheatsheet: {ticket_key}", border_style="green"))


@app.command()
def clear(
    ticket_key: str = typer.Argument(..., help="Ticket key"),
) -> None:
    """Clear step progress for a ticket. The cheatsheet is kept."""
    config = get_config()
    if _store(config).clear(ticket_key):
        console.print(f"[green]Cleared checkpoint for {ticket_key}[/green]")
    else:
        console.print(f"[dim]No checkpoint to clear for {ticket_key}[/dim]")


@app.command()
def logs(
    ticket_key: str = typer.Argument(..., help="Ticket key"),
    date: Optional[str] = typer.Option(
        None, "--date", "-d", help="Day to read (YYYY-MM-DD, default: latest)",
    ),
    level: Optional[str] = typer.Option(None, "--level", "-l", help="Only this level"),
    event: Optional[str] = typer.Option(None, "--event", "-e", help="Only this event type"),
    run_id: Optional[str] = typer.Option(None, "--run", help="Only this run ID"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum entries to show"),
) -> None:
    """Show structured run log entries for a ticket."""
    from ticket_swarm.logger import RunLogger

    config = get_config()
    run_logger = RunLogger(ticket_key, config.agent.log_dir)
    files = run_logger.get_log_files()
    if not files:
        console.print(f"[yellow]No logs found for {ticket_key}[/yellow]")
        raise typer.Exit(1)

    # <ticket>-YYYY-MM-DD.jsonl
    date = date or files[0].stem[len(ticket_key) + 1:]
    entries = run_logger.read_logs(
        date=date, level=level, event_type=event, run_id=run_id, limit=limit,
    )
    if not entries:
        console.print(f"[dim]No matching entries for {ticket_key} on {date}[/dim]")
        return

    table = Table(title=f"Run log: {ticket_key} ({date})")
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Event", style="cyan")
    table.add_column("Data")

    level_styles = {"warn": "yellow", "error": "red"}
    for entry in entries:
        entry_level = entry.get("level", "")
        style = level_styles.get(entry_level)
        table.add_row(
            entry.get("timestamp", "")[11:19],
            f"[{style}]{entry_level}[/{style}]" if style else entry_level,
            entry.get("event_type", ""),
            escape(", ".join(f"{k}={v}" for k, v in (entry.get("data") or {}).items())[:120]),
        )

    console.print(table)


# =============================================================================
# Provider setup
# =============================================================================


@app.command()
def providers() -> None:
    """Show the configured provider per mode and whether each CLI is installed."""
    from ticket_swarm.models import Mode
    from ticket_swarm.providers.adapters import check_provider_available
    from ticket_swarm.providers.strategies import provider_label

    config = get_config()
    console.print(f"Executor: [cyan]{escape(provider_label(config))}[/cyan]")

    table = Table(title="Providers")
    table.add_column("Mode", style="cyan")
    table.add_column("Provider")
    table.add_column("Binary")
    table.add_column("Installed")

    missing = []
    for mode in Mode:
        mode_config = config.mode(mode)
        for kind in mode_config.providers():
            settings = mode_config.settings_for(kind)
            available = check_provider_available(kind, settings)
            if not available:
                missing.append(settings.binary)
            table.add_row(
                mode.value,
                kind.value,
                settings.binary,
                "[green]yes[/green]" if available else "[red]no[/red]",
            )

    console.print(table)
    if missing:
        console.print(f"[red]Missing CLI(s):[/red] {', '.join(sorted(set(missing)))}")
        raise typer.Exit(1)


# =============================================================================
# Debate tooling
# =============================================================================


@app.command()
def check(
    transcript_file: Path = typer.Argument(..., help="Debate transcript to check"),
) -> None:
    """Run the structural pre-check on a debate transcript."""
    from ticket_swarm.debate.evaluator import structural_check

    if not transcript_file.is_file():
        console.print(f"[red]File not found:[/red] {transcript_file}")
        raise typer.Exit(1)

    result = structural_check(transcript_file.read_text())
    if result.passed:
        console.print("[green]Structural check passed[/green]")
        return

    console.print(f"[red]Structural check failed:[/red] {result.feedback}")
    raise typer.Exit(1)


def _load_ticket(ticket_file: Path):
    from ticket_swarm.models import Ticket

    try:
        data = yaml.safe_load(ticket_file.read_text())
    except yaml.YAMLError as e:
        console.print(f"[red]Invalid ticket YAML:[/red] {e}")
        raise typer.Exit(1)

    if not isinstance(data, dict) or not data.get("key"):
        console.print("[red]Ticket file must be a mapping with a 'key'[/red]")
        raise typer.Exit(1)

    try:
        return Ticket.from_dict(data)
    except TypeError as e:
        console.print(f"[red]Invalid ticket fields:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def plan(
    ticket_file: Path = typer.Argument(..., help="Ticket described as YAML"),
    repo: Path = typer.Option(..., "--repo", "-r", help="Local repository to plan against"),
    feedback: Optional[str] = typer.Option(
        None, "--feedback", "-f", help="Guidance for the first proposer round",
    ),
) -> None:
    """
    Build a cheatsheet for a ticket against a local repository.

    Runs the early gate, the debate and the evaluator, then persists the
    cheatsheet next to the debate round outputs.

    Examples:
        ticket-swarm plan ticket.yaml --repo ../my-service
    """
    from ticket_swarm.debate.builder import build_cheatsheet
    from ticket_swarm.errors import CheckpointError, LLMError
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.pipeline.steps import Step

    if not ticket_file.is_file():
        console.print(f"[red]File not found:[/red] {ticket_file}")
        raise typer.Exit(1)
    if not repo.is_dir():
        console.print(f"[red]Repository not found:[/red] {repo}")
        raise typer.Exit(1)

    config = get_config()
    ticket = _load_ticket(ticket_file)
    store = _store(config)
    run_logger = RunLogger(ticket.key, config.agent.log_dir)

    console.print(f"[cyan]Planning {ticket.key}[/cyan] against {repo}")
    try:
        with console.status("Debating..."):
            outcome = build_cheatsheet(
                ticket,
                str(repo),
                config,
                checkpoint_dir=store.checkpoint_dir(ticket.key),
                feedback=feedback,
                run_logger=run_logger,
            )
    except LLMError as e:
        console.print(f"[red]Provider error:[/red] {e}")
        raise typer.Exit(1)

    if not outcome.approved:
        console.print(f"[red]Rejected ({outcome.phase}):[/red] {outcome.reason}")
        raise typer.Exit(1)

    try:
        store.save(ticket.key, Step.BUILD_CHEATSHEET, {
            "ticket_data": ticket.to_dict(),
            "clone_dir": str(repo),
            "cheatsheet": outcome.cheatsheet,
        })
    except CheckpointError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]{outcome.summary}[/green]")
    console.print(f"Cheatsheet saved to {store.cheatsheet_path(ticket.key)}")


def cli_main() -> None:
    """Console script entry point."""
    app()
