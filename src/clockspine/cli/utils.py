"""
CLI utility helpers - clock file loading and output formatting.
"""

from __future__ import annotations

import json
import runpy
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from clockspine.errors import ClockspineError
from clockspine.event import Event
from clockspine.manager import Manager

console = Console()
err_console = Console(stderr=True)


# ── Clock files ──────────────────────────────────────────────────────────


def load_clock_file(path: Path) -> None:
    """Execute a clock file so its events register on the default manager.

    Configuration errors raised while loading end the command with exit code 1.
    """
    try:
        runpy.run_path(str(path), run_name="__clock__")
    except ClockspineError as exc:
        fail(exc)


def fail(exc: ClockspineError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    raise typer.Exit(code=1)


@contextmanager
def stop_on_signals(manager: Manager) -> Iterator[None]:
    """Translate SIGINT/SIGTERM into ``manager.stop()`` for the duration of the block."""

    def _handle(signum: int, frame: Any) -> None:
        err_console.print(f"[dim]Received {signal.Signals(signum).name}, stopping…[/dim]")
        manager.stop()

    previous = {sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# ── Output helpers ───────────────────────────────────────────────────────


def output_events(events: list[Event], *, as_json: bool = False, title: str = "") -> None:
    """Render registered events as a Rich table or JSON."""
    rows = [event.describe() for event in events]

    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return

    if not rows:
        console.print("[dim]No events registered.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    columns = ["job_id", "kind", "period_seconds", "at", "trigger", "dispatch_mode", "overlap_policy", "tz"]
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row[col]) for col in columns))
    console.print(table)


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(value) or "-"
    return str(value)
