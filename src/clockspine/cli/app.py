"""
Root Typer application for the clockspine CLI.

    clockspine run clock.py [--tick-length 0.5] [--log-level DEBUG] [--json]
    clockspine list clock.py [--json]

Settings come from ``CLOCKSPINE_*`` environment variables first, then from
whatever the clock file configures, then from command-line flags.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from clockspine import __version__
from clockspine.cli.utils import err_console, fail, load_clock_file, output_events, stop_on_signals
from clockspine.default import get_manager
from clockspine.errors import ClockspineError
from clockspine.logging import configure_logging
from clockspine.settings import ClockSettings

app = Typer(
    name="clockspine",
    help="clockspine: run cron-like clock files in-process.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"clockspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """clockspine CLI: run and inspect clock files."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run_clock(
    clock_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Clock file to load"),
    tick_length: float | None = typer.Option(None, "--tick-length", "-t", help="Seconds between ticks"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="DEBUG, INFO, WARNING, ERROR"),
    json_logs: bool | None = typer.Option(None, "--json/--console", help="Log format"),
) -> None:
    """Load a clock file and run its tick loop until interrupted."""
    settings = ClockSettings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=json_logs if json_logs is not None else settings.log_format == "json",
    )

    manager = get_manager()
    try:
        manager.configure(settings.manager_options())
        load_clock_file(clock_file)
        if tick_length is not None:
            manager.configure(tick_length=tick_length)
    except ClockspineError as exc:
        fail(exc)

    if not len(manager.registry):
        err_console.print("[yellow]No events registered; the loop will idle until stopped.[/yellow]")

    with stop_on_signals(manager):
        try:
            manager.run()
        except ClockspineError as exc:
            fail(exc)


@app.command("list")
def list_events(
    clock_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Clock file to load"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the events a clock file registers, without running them."""
    configure_logging(level="WARNING", json_format=False)
    load_clock_file(clock_file)
    output_events(get_manager().events, as_json=json_out, title=f"Events: {clock_file.name}")
