"""
Command-line interface for busy-block-sync.
"""

import logging
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from busy_block_sync.db import query_recent_runs
from busy_block_sync.models import DEFAULT_BLOCK_TITLE
from busy_block_sync.models import DEFAULT_CONFIG
from busy_block_sync.models import DEFAULT_LOOK_AHEAD_DAYS
from busy_block_sync.models import DEFAULT_STATE_DB
from busy_block_sync.models import DEFAULT_SYNC_TAG
from busy_block_sync.models import CalendarSyncError
from busy_block_sync.models import ConfigurationError
from busy_block_sync.models import MatchStrategy
from busy_block_sync.models import SyncAlreadyRunningError
from busy_block_sync.models import SyncConfig
from busy_block_sync.sync import BusyBlockSynchronizer

CONFIG_SECTION = "busy-block-sync"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Mirror personal calendar events as private busy blocks on a business calendar.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _build_config(
    source_calendar: str | None,
    target_calendar: str | None,
    strategy: MatchStrategy | None,
    look_ahead_days: int | None,
    block_title: str | None,
    sync_tag: str | None,
    dry_run: bool,
    refresh: bool,
    clear: bool,
    yes: bool,
    stop_on_error: bool = False,
) -> SyncConfig:
    """Merge CLI options over the config file into an immutable SyncConfig.

    Raises ConfigurationError for missing or invalid values.
    """
    config_file = _load_config_file(state.config_path)
    source_id = source_calendar or config_file.get("source_calendar_id")
    target_id = target_calendar or config_file.get("target_calendar_id")

    if not source_id or not target_id:
        raise ConfigurationError(
            "Source and target calendar IDs must be provided via "
            "--source-calendar/--target-calendar or in the config file."
        )

    if look_ahead_days is None:
        raw_days = config_file.get("look_ahead_days", str(DEFAULT_LOOK_AHEAD_DAYS))
        try:
            look_ahead_days = int(raw_days)
        except ValueError:
            raise ConfigurationError(f"look_ahead_days must be an integer, got {raw_days!r}")

    if strategy is None:
        raw_strategy = config_file.get("match_strategy", MatchStrategy.TIME.value)
        try:
            strategy = MatchStrategy(raw_strategy.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"match_strategy must be 'time' or 'identity', got {raw_strategy!r}"
            )

    return SyncConfig(
        source_calendar_id=source_id,
        target_calendar_id=target_id,
        state_db_path=state.state_db,
        look_ahead_days=look_ahead_days,
        block_title=block_title or config_file.get("block_title", DEFAULT_BLOCK_TITLE),
        sync_tag=sync_tag or config_file.get("sync_tag", DEFAULT_SYNC_TAG),
        strategy=strategy,
        dry_run=dry_run,
        verbose=state.verbose,
        stop_on_error=stop_on_error,
        refresh=refresh,
        clear=clear,
        yes=yes,
    )


def _build_config_or_exit(*args, **kwargs) -> SyncConfig:
    try:
        return _build_config(*args, **kwargs)
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None


def _run_sync(cfg: SyncConfig) -> None:
    """Core sync runner: display panel, confirm, run, show results."""
    from busy_block_sync.eds_client import get_calendar_display_info
    from busy_block_sync.preflight import run_preflight_checks

    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    source_name, source_account, source_uid = get_calendar_display_info(cfg.source_calendar_id)
    target_name, target_account, target_uid = get_calendar_display_info(cfg.target_calendar_id)

    # -- Info panel ----------------------------------------------------------
    source_display = source_name + (f" ({source_account})" if source_account else "")
    target_display = target_name + (f" ({target_account})" if target_account else "")

    if cfg.clear:
        op_line = Text("CLEAR (remove all busy blocks, no resync)", style="bold red")
    elif cfg.refresh:
        op_line = Text("REFRESH (remove busy blocks then resync)", style="bold yellow")
    else:
        op_line = Text("SYNC", style="bold green")

    info = Text()
    info.append("  Source:    ", style="bold")
    info.append(f"{source_display}\n")
    info.append(f"             {source_uid}\n", style="dim")
    info.append("  Target:    ", style="bold")
    info.append(f"{target_display}\n")
    info.append(f"             {target_uid}\n", style="dim")
    info.append("  Window:    ", style="bold")
    info.append(f"next {cfg.look_ahead_days} day(s)\n")
    info.append("  Matching:  ", style="bold")
    info.append(f"{cfg.strategy.value}", style="cyan")
    info.append(f"  [block title: {cfg.block_title!r}]", style="dim")
    info.append("\n  Operation: ")
    info.append_text(op_line)
    if cfg.dry_run:
        info.append("\n  Mode:      ")
        info.append("DRY RUN", style="bold magenta")

    console.print(Panel(info, title="[bold]Busy Block Sync[/bold]"))

    # -- Confirmation --------------------------------------------------------
    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    # -- Run -----------------------------------------------------------------
    try:
        stats = BusyBlockSynchronizer(cfg).run()
    except SyncAlreadyRunningError as e:
        console.print(f"[yellow]Skipped:[/] {e}")
        raise typer.Exit(75) from None
    except CalendarSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e

    # -- Results table -------------------------------------------------------
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Created", str(stats.created))
    results.add_row("Updated", str(stats.updated))
    results.add_row("Deleted", str(stats.deleted))
    results.add_row("Duplicates", str(stats.duplicates))
    results.add_row("Orphans", str(stats.orphans))
    results.add_row("Skipped", str(stats.skipped))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    for failure in stats.failures:
        console.print(
            f"  [red]✗[/] {failure.action} [dim]{failure.event_id or '<new>'}[/dim]: "
            f"{failure.message}"
        )

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommands: sync / refresh / clear share the same options
# ---------------------------------------------------------------------------

_SOURCE_OPT = Annotated[
    str | None,
    typer.Option("--source-calendar", "-s", help="Source (personal) calendar EDS UID"),
]
_TARGET_OPT = Annotated[
    str | None,
    typer.Option("--target-calendar", "-t", help="Target (business) calendar EDS UID"),
]
_STRATEGY = Annotated[
    MatchStrategy | None,
    typer.Option(
        "--strategy",
        case_sensitive=False,
        help="Match blocks by exact [cyan]time[/] slot or by embedded source [cyan]identity[/]",
    ),
]
_DAYS = Annotated[
    int | None,
    typer.Option("--days", "-d", min=1, help="Look-ahead window in days"),
]
_TITLE = Annotated[str | None, typer.Option("--block-title", help="Title of busy blocks")]
_TAG = Annotated[str | None, typer.Option("--sync-tag", help="Marker embedded in block descriptions")]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]
_STOP = Annotated[
    bool,
    typer.Option("--stop-on-error", help="Abort the run on the first failed calendar operation"),
]


@app.command()
def sync(
    source_calendar: _SOURCE_OPT = None,
    target_calendar: _TARGET_OPT = None,
    strategy: _STRATEGY = None,
    days: _DAYS = None,
    block_title: _TITLE = None,
    sync_tag: _TAG = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
    stop_on_error: _STOP = False,
) -> None:
    """Mirror source events as busy blocks on the target calendar.

    Run with [cyan]--yes[/] from cron or a systemd timer.
    """
    _run_sync(
        _build_config_or_exit(
            source_calendar,
            target_calendar,
            strategy,
            days,
            block_title,
            sync_tag,
            dry_run=dry_run,
            refresh=False,
            clear=False,
            yes=yes,
            stop_on_error=stop_on_error,
        )
    )


@app.command()
def refresh(
    source_calendar: _SOURCE_OPT = None,
    target_calendar: _TARGET_OPT = None,
    strategy: _STRATEGY = None,
    days: _DAYS = None,
    block_title: _TITLE = None,
    sync_tag: _TAG = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Remove busy blocks in the window then re-sync from scratch."""
    _run_sync(
        _build_config_or_exit(
            source_calendar,
            target_calendar,
            strategy,
            days,
            block_title,
            sync_tag,
            dry_run=dry_run,
            refresh=True,
            clear=False,
            yes=yes,
        )
    )


@app.command()
def clear(
    source_calendar: _SOURCE_OPT = None,
    target_calendar: _TARGET_OPT = None,
    strategy: _STRATEGY = None,
    days: _DAYS = None,
    block_title: _TITLE = None,
    sync_tag: _TAG = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Remove busy blocks from the target calendar without re-syncing.

    Only events recognised as managed under the active [cyan]--strategy[/]
    are removed; everything else on the target calendar is left alone.
    """
    _run_sync(
        _build_config_or_exit(
            source_calendar,
            target_calendar,
            strategy,
            days,
            block_title,
            sync_tag,
            dry_run=dry_run,
            refresh=False,
            clear=True,
            yes=yes,
        )
    )


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status(
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Runs to show")] = 10,
) -> None:
    """Show sync configuration and recent runs."""
    from datetime import datetime

    config_exists = state.config_path.exists()
    db_exists = state.state_db.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(state.state_db) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")

    config_file = _load_config_file(state.config_path)
    for key, label in (
        ("source_calendar_id", "Source:   "),
        ("target_calendar_id", "Target:   "),
        ("match_strategy", "Matching: "),
        ("look_ahead_days", "Window:   "),
    ):
        if key in config_file:
            cfg_info.append(f"\n  {label}", style="bold")
            cfg_info.append(config_file[key])

    console.print(Panel(cfg_info, title="[bold]Busy Block Sync — Status[/bold]"))

    rows = query_recent_runs(state.state_db, limit)
    if not rows:
        if not db_exists:
            console.print(
                "[yellow]No state database yet — run[/] "
                "[cyan]busy-block-sync sync[/] "
                "[yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]No runs recorded yet.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Started")
    table.add_column("Mode")
    table.add_column("Matching")
    table.add_column("Status")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Dup/Orph", justify="right")
    table.add_column("Errors", justify="right")

    status_styles = {"ok": "green", "partial": "yellow", "failed": "bold red", "running": "cyan"}
    for row in rows:
        started = datetime.fromtimestamp(row["started_at"]).strftime("%Y-%m-%d %H:%M:%S")
        mode = row["mode"] + (" (dry run)" if row["dry_run"] else "")
        table.add_row(
            started,
            mode,
            row["strategy"],
            Text(row["status"], style=status_styles.get(row["status"], "")),
            str(row["created"]),
            str(row["updated"]),
            str(row["deleted"]),
            f"{row['duplicates']}/{row['orphans']}",
            str(row["errors"]),
        )

    console.print(Panel(table, title="[bold]Recent runs[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: calendars
# ---------------------------------------------------------------------------


@app.command()
def calendars() -> None:
    """List all configured EDS calendars."""
    import gi

    gi.require_version("EDataServer", "1.2")
    from gi.repository import EDataServer

    from busy_block_sync.debug import list_calendars as _list_calendars

    registry = EDataServer.SourceRegistry.new_sync(None)
    _list_calendars(registry, console)


# ---------------------------------------------------------------------------
# Subcommand: inspect
# ---------------------------------------------------------------------------


@app.command()
def inspect(
    calendar_uid: Annotated[str, typer.Argument(help="Calendar UID to inspect")],
    strategy: _STRATEGY = None,
    days: _DAYS = None,
    managed_only: Annotated[
        bool, typer.Option("--managed", "-m", help="Show managed busy blocks only")
    ] = False,
) -> None:
    """Show the events of a calendar in the sync window, flagging busy blocks."""
    from datetime import datetime
    from datetime import timezone

    from busy_block_sync.debug import render_events
    from busy_block_sync.eds_client import EDSGateway
    from busy_block_sync.sync.classifier import is_managed_block
    from busy_block_sync.sync.utils import compute_window

    # Only the matching settings matter here; the other side of the pair is
    # a placeholder.
    cfg = _build_config_or_exit(
        f"{calendar_uid}-inspect",
        calendar_uid,
        strategy,
        days,
        None,
        None,
        dry_run=True,
        refresh=False,
        clear=False,
        yes=True,
    )

    window_start, window_end = compute_window(datetime.now(timezone.utc), cfg.look_ahead_days)
    try:
        events = EDSGateway.connect().list_events(calendar_uid, window_start, window_end)
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None

    if managed_only:
        events = [e for e in events if is_managed_block(e, cfg)]
    render_events(events, console, cfg, title=calendar_uid)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
