"""
Debug/inspect tools for calendars and busy blocks.

Importable functions:
  list_calendars(registry, console)  — render a Rich table of all EDS calendars
  render_events(events, console, ...)  — render events with their managed/key status
"""

from rich.console import Console
from rich.table import Table
from rich.text import Text

from busy_block_sync.models import CalendarEvent
from busy_block_sync.models import MalformedMetadataError
from busy_block_sync.models import MatchStrategy
from busy_block_sync.sync.classifier import is_managed_block
from busy_block_sync.sync.keys import block_key


def list_calendars(registry, console: Console) -> None:
    """Render all configured EDS calendars as a Rich table."""
    import gi

    gi.require_version("ECal", "2.0")
    gi.require_version("EDataServer", "1.2")
    from gi.repository import ECal
    from gi.repository import EDataServer

    sources = registry.list_sources(EDataServer.SOURCE_EXTENSION_CALENDAR)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Display Name", style="bold")
    table.add_column("Account")
    table.add_column("Mode")
    table.add_column("UID", style="dim")

    for source in sources:
        name = source.get_display_name() or "(unnamed)"
        uid = source.get_uid() or ""
        parent = source.get_parent()
        account = ""
        if parent:
            parent_source = registry.ref_source(parent)
            if parent_source:
                account = parent_source.get_display_name() or ""
        try:
            client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
            mode = "Read-write" if not client.is_readonly() else "Read-only"
            mode_style = "green" if not client.is_readonly() else "yellow"
        except Exception:
            mode = "Unknown"
            mode_style = "red"

        table.add_row(name, account, Text(mode, style=mode_style), uid)

    console.print(table)


def _key_label(event: CalendarEvent, config) -> Text:
    try:
        key = block_key(event, config.strategy)
    except MalformedMetadataError:
        return Text("orphan", style="bold red")
    if config.strategy is MatchStrategy.IDENTITY:
        return Text(str(key), style="cyan")
    return Text(f"{key[0]}–{key[1]}", style="dim")


def render_events(events: list[CalendarEvent], console: Console, config, title: str = "") -> None:
    """Render events as a table, flagging managed blocks and their match key."""
    table = Table(show_header=True, header_style="bold cyan", title=title or None)
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Title", overflow="fold")
    table.add_column("Flags")
    table.add_column("Key", overflow="fold")

    for event in events:
        flags = Text()
        managed = is_managed_block(event, config)
        if managed:
            flags.append("managed ", style="green")
        if event.transparent:
            flags.append("free ", style="yellow")
        if event.cancelled:
            flags.append("cancelled ", style="red")
        table.add_row(
            f"{event.start:%Y-%m-%d %H:%M}",
            f"{event.end:%Y-%m-%d %H:%M}",
            event.title,
            flags,
            _key_label(event, config) if managed else Text(""),
        )

    console.print(table)
    console.print(f"[dim]{len(events)} event(s)[/dim]")
