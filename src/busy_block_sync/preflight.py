"""
Preflight checks run before a sync to catch common misconfigurations early.

Each check returns a list of ``Issue`` tuples; nothing is printed until all
checks have run, so one panel lists every problem at once.
"""

import logging
import sqlite3
from typing import NamedTuple

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from busy_block_sync.models import SyncConfig

logger = logging.getLogger(__name__)

# Substrings of EDS connection errors that mean "account offline" rather
# than "calendar broken".
_OFFLINE_HINTS = (
    "offline",
    "network",
    "transport",
    "unreachable",
    "not connected",
    "no route",
    "authentication failed",
    "connection refused",
    "temporary failure",
)


class Issue(NamedTuple):
    label: str
    detail: str
    hint: str


def check_state_db(cfg: SyncConfig) -> list[Issue]:
    """Problems that would keep the state DB (and so the run lock) from working."""
    db_path = cfg.state_db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state DB directory %s: %s", db_path.parent, e)
        return [Issue("State database", f"{db_path}: {e}", f"Check permissions on {db_path.parent}")]

    if not db_path.exists():
        return []

    conn = None
    try:
        conn = sqlite3.connect(db_path, timeout=0)
        # Taking (and dropping) the write lock proves both that the journal
        # can be created and that no other run currently holds the lock.
        conn.execute("BEGIN IMMEDIATE")
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.error("State DB not usable (%s): %s", db_path, e)
        if "locked" in str(e).lower():
            hint = "Another sync run is in progress; wait for it to finish"
        else:
            hint = f"Check permissions on {db_path.parent} (journal files are created beside the DB)"
        return [Issue("State database", f"{db_path}: {e}", hint)]
    finally:
        if conn is not None:
            conn.close()
    return []


def _account_name(registry, source) -> str:
    """Display name of the account a calendar source belongs to, or ''."""
    parent_uid = source.get_parent()
    parent = registry.ref_source(parent_uid) if parent_uid else None
    return (parent.get_display_name() or "") if parent else ""


def _connection_hint(registry, source, message: str) -> str:
    if not any(word in message.lower() for word in _OFFLINE_HINTS):
        return message
    account = _account_name(registry, source)
    if account:
        return f"Account '{account}' appears offline; check GNOME Online Accounts"
    return "Calendar appears offline; check GNOME Online Accounts"


def check_calendar(registry, uid: str, label: str, writable: bool) -> list[Issue]:
    """The calendar exists in EDS, connects, and (if asked) accepts writes."""
    import gi

    gi.require_version("ECal", "2.0")
    from gi.repository import ECal
    from gi.repository import GLib

    source = registry.ref_source(uid)
    if source is None:
        logger.error("%s UID not found in EDS: %s", label, uid)
        return [Issue(label, f"UID not found: {uid}", "Run: busy-block-sync calendars")]

    try:
        client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
    except GLib.Error as e:
        message = e.message or str(e)
        logger.error("Cannot connect to %s (%s): %s", label, uid, message)
        return [
            Issue(label, f"Connection failed: {message}", _connection_hint(registry, source, message))
        ]

    if writable and client.is_readonly():
        return [Issue(label, f"Read-only calendar: {uid}", "Busy blocks need a writable target")]
    return []


def run_preflight_checks(cfg: SyncConfig, console: Console) -> bool:
    """Return True if the run may proceed; print every issue and return False otherwise."""
    import gi

    gi.require_version("EDataServer", "1.2")
    from gi.repository import EDataServer

    try:
        registry = EDataServer.SourceRegistry.new_sync(None)
    except Exception as e:
        logger.error("EDS registry unreachable: %s", e)
        _print_issues([Issue("EDS registry", str(e), "Is evolution-data-server running?")], console)
        return False

    issues = check_calendar(registry, cfg.source_calendar_id, "Source calendar", writable=False)
    # A dry run never writes, so a read-only target is fine for previewing.
    issues += check_calendar(
        registry, cfg.target_calendar_id, "Target calendar", writable=not cfg.dry_run
    )
    issues += check_state_db(cfg)

    if issues:
        _print_issues(issues, console)
        return False
    return True


def _print_issues(issues: list[Issue], console: Console) -> None:
    body = Text()
    for i, issue in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {issue.label}: ", style="bold red")
        body.append(issue.detail, style="bold red")
        body.append(f"\n       → {issue.hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
