"""CLI entrypoint.

Two provisioning stages:
- minerkit platform   (Docker, NVIDIA container support, CUDA; reboots)
- minerkit miner      (virtualenv, checkout, dependencies, pm2 miner)

Utilities:
- minerkit doctor
- minerkit init

CONTRACT
- Inputs: interactive answers on stdin (the stage commands take no flags)
- Outputs (required):
  - Exit code 0 on success, 1 on any abort
  - Progress on stderr (loguru), operator guidance on stdout (rich)
  - Per-run logs under <log_root>/<run_id>/
- Invariants:
  - Every FatalAbort (and any stray OSError) is reported as a single `Error: <message>` line; no tracebacks
- Failure:
  - FatalAbort or OSError -> exit 1
"""

from __future__ import annotations

import os
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from . import __version__
from .collector import ConfigCollector
from .config import Settings, load_settings
from .doctor import doctor_report
from .errors import FatalAbort
from .stages.application import provision_application
from .stages.platform import provision_platform
from .supervisor import Pm2Supervisor
from .util.events import EventLog, new_run_id
from .util.shell import Identity, Shell, resolve_operator

app = typer.Typer(add_completion=False, help="Provision a GPU host and run a Compute Subnet miner under pm2.")

console = Console()
err_console = Console(stderr=True)

LOG_LEVEL_ENV_VAR = "MINERKIT_LOG_LEVEL"

BANNER = """
   NI Compute Subnet 27 Installer - Compute Subnet Setup
"""


def _configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper(),
        format="<level>==> {message}</level>",
    )


def _version_callback(value: bool):
    if value:
        console.print(f"minerkit version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    )
):
    _configure_logging()


@dataclass
class Session:
    settings: Settings
    operator: Identity
    shell: Shell
    events: EventLog
    run_dir: Path


def _session() -> Session:
    settings = load_settings()
    operator = resolve_operator()
    run_id = new_run_id()
    run_dir = (settings.log_root or Path(tempfile.gettempdir()) / "minerkit") / run_id
    return Session(
        settings=settings,
        operator=operator,
        shell=Shell(log_dir=run_dir),
        events=EventLog(run_dir / "events.jsonl", run_id=run_id),
        run_dir=run_dir,
    )


@contextmanager
def _fatal() -> Iterator[None]:
    try:
        yield
    except (FatalAbort, OSError) as e:
        err_console.print(f"Error: {e}", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(code=1) from None


def _ask(text: str) -> str:
    return typer.prompt(text, default="", show_default=False)


def _wait_for_user() -> None:
    typer.prompt("Press ENTER to continue or CTRL+C to abort", default="", show_default=False)


@app.command("platform")
def platform_cmd() -> None:
    """Install Docker, NVIDIA drivers, NVIDIA Docker support and CUDA, then reboot."""
    with _fatal():
        s = _session()
        report = provision_platform(s.shell, s.operator, s.settings, confirm=_wait_for_user, events=s.events)
    if not report.changed:
        console.print("[green]Platform already provisioned.[/green]")


@app.command("miner")
def miner_cmd() -> None:
    """Install the miner, collect its settings and start it under pm2."""
    with _fatal():
        s = _session()
        console.print(BANNER, markup=False, highlight=False)
        collector = ConfigCollector(prompt=_ask, settings=s.settings, console=console)
        result = provision_application(s.shell, s.operator, s.settings, collector, events=s.events)

    logger.info("Miner process started.")
    console.print(f"You can view logs using: {Pm2Supervisor.log_hint(s.settings.app.process_name)}")
    console.print("Ensure that your chosen hotkey is registered on chain (using btcli register).")
    console.print("The miner process will automatically begin working once your hotkey is registered on chain.")
    console.print()
    console.print(f"PM2 configuration: {result.document}")
    console.print("[green]Installation and setup complete. Your miner is now running in the background.[/green]")


@app.command()
def doctor() -> None:
    """Read-only preflight checks."""
    with _fatal():
        s = _session()
        report = doctor_report(s.shell, s.operator, s.settings)
    table = Table(title="minerkit doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=2)


@app.command()
def init(
    directory: Path = typer.Option(Path("."), "--dir", help="Where to write minerkit.yaml."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing minerkit.yaml."),
) -> None:
    """Write a minerkit.yaml settings template."""
    from .init import write_templates

    written = write_templates(directory, force=force)
    if written:
        console.print(f"[green]Wrote settings template to[/green] {written}")
    else:
        console.print(f"[yellow]{directory / 'minerkit.yaml'} exists; use --force to overwrite.[/yellow]")


if __name__ == "__main__":
    app()
