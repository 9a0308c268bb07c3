"""Command-line interface for firecracker-ctl.

Usage:
    fcctl run guest.json                   # Boot a guest, Ctrl-C shuts it down
    fcctl run --state-dir /tmp/fc guest.json
    fcctl version-check                    # Print the detected firecracker version
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from pydantic import ValidationError

from firecracker_ctl import (
    FirecrackerDriver,
    GuestDefinition,
    MicrovmError,
    Settings,
    __version__,
)
from firecracker_ctl._logging import configure_logging
from firecracker_ctl.system_probes import probe_vmm_version

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_DRIVER_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message as title, explanation, then suggestions."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def load_definition(path: Path) -> GuestDefinition:
    """Read a GuestDefinition from a JSON document.

    Raises:
        click.BadParameter: File unreadable or not a valid definition
    """
    try:
        return GuestDefinition.model_validate_json(path.read_text())
    except OSError as e:
        raise click.BadParameter(f"Cannot read {path}: {e}", param_hint="DEFINITION") from e
    except ValidationError as e:
        raise click.BadParameter(f"Invalid guest definition in {path}:\n{e}", param_hint="DEFINITION") from e


def build_settings(state_dir: Path | None, firecracker: Path | None) -> Settings:
    overrides: dict[str, Any] = {}
    if state_dir is not None:
        overrides["state_dir"] = state_dir
    if firecracker is not None:
        overrides["firecracker_bin"] = firecracker
    return Settings(**overrides)


async def _wait_for_exit_or_signal(driver: FirecrackerDriver, name: str) -> bool:
    """Block until the VMM exits or SIGINT/SIGTERM arrives.

    Returns:
        True if a signal asked us to stop, False if the VMM exited on its own
    """
    runtime = await driver.lookup_by_name(name)
    process = runtime.process
    if process is None:
        return False

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    exited = asyncio.create_task(process.handle.wait())
    stopped = asyncio.create_task(stop.wait())
    try:
        done, _pending = await asyncio.wait({exited, stopped}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (exited, stopped):
            task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
    return stopped in done


async def run_guest(definition: GuestDefinition, settings: Settings, shutdown_timeout: float) -> int:
    """Boot a transient guest and keep it running until told to stop.

    Returns:
        Exit code to return from CLI
    """
    try:
        async with FirecrackerDriver(settings) as driver:
            runtime = await driver.create_transient(definition)
            click.echo(click.style(f"✓ Guest {definition.name} running", fg="green"), err=True)
            if runtime.workspace and runtime.workspace.console_pty_path:
                click.echo(f"Console: {runtime.workspace.console_pty_path}")

            if await _wait_for_exit_or_signal(driver, definition.name):
                try:
                    await asyncio.wait_for(driver.shutdown(definition.name), timeout=shutdown_timeout)
                except (TimeoutError, MicrovmError) as e:
                    click.echo(f"Graceful shutdown failed ({e}), destroying", err=True)
            # Leaving the context destroys anything still active
        return EXIT_SUCCESS

    except MicrovmError as e:
        error_msg = format_error(
            "Driver error",
            str(e.message),
            [
                "Check that firecracker 0.25.0 or newer is installed and on PATH",
                "Check that the kernel and root disk paths exist",
                "Run with FIRECRACKER_CTL_LOG_LEVEL=DEBUG for details",
            ],
        )
        click.echo(error_msg, err=True)
        return EXIT_DRIVER_ERROR


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output")
@click.version_option(__version__, "-V", "--version", prog_name="firecracker-ctl")
def main(quiet: bool, verbose: bool) -> None:
    """Manage Firecracker microVMs through their API socket."""
    configure_logging(level="DEBUG" if verbose else None, quiet=quiet)


@main.command()
@click.argument("definition_path", metavar="DEFINITION", type=click.Path(path_type=Path, dir_okay=False))
@click.option("--state-dir", type=click.Path(path_type=Path, file_okay=False), help="Workspace root")
@click.option("--firecracker", type=click.Path(path_type=Path, dir_okay=False), help="firecracker binary")
@click.option("--shutdown-timeout", default=30.0, show_default=True, help="Seconds to wait for a graceful shutdown")
def run(
    definition_path: Path,
    state_dir: Path | None,
    firecracker: Path | None,
    shutdown_timeout: float,
) -> NoReturn:
    """Boot the guest described by DEFINITION (JSON) and wait.

    The guest is shut down on SIGINT/SIGTERM; if it does not power off
    within --shutdown-timeout it is destroyed.

    \b
    Example DEFINITION:
      {"name": "d1", "memory_bytes": 134217728, "vcpu_count": 1,
       "kernel_path": "/k", "cmdline": "panic=1", "root": "vda",
       "disks": [{"source": "/img.ext4", "target": "vda"}],
       "char_devices": [{"kind": "serial"}]}
    """
    definition = load_definition(definition_path)
    settings = build_settings(state_dir, firecracker)
    sys.exit(asyncio.run(run_guest(definition, settings, shutdown_timeout)))


@main.command("version-check")
@click.option("--firecracker", type=click.Path(path_type=Path, dir_okay=False), help="firecracker binary")
def version_check(firecracker: Path | None) -> NoReturn:
    """Print the firecracker version and check it is supported."""
    settings = build_settings(None, firecracker)
    try:
        version = asyncio.run(probe_vmm_version(settings.firecracker_bin))
    except MicrovmError as e:
        click.echo(format_error("Unsupported firecracker", e.message), err=True)
        sys.exit(EXIT_DRIVER_ERROR)
    click.echo(f"firecracker {'.'.join(map(str, version))}")
    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
