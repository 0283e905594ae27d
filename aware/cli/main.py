"""Click-based CLI: ``aware supervise`` and ``aware leave``."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import click

from aware.config import ConfigError, SupervisorSettings, load_settings
from aware.registry import PidRegistry
from aware.runner import (
    LogChunk,
    LogSink,
    ShutdownSignal,
    SupervisedProgram,
    Supervisor,
    SupervisorError,
    install_signal_handlers,
)

logger = logging.getLogger("aware.cli")


@dataclass
class CLIState:
    settings: SupervisorSettings

    def registry(self) -> PidRegistry:
        return PidRegistry(self.settings.pid_dir)


def _echo_chunk(chunk: LogChunk) -> None:
    click.echo(chunk.line, nl=False)


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Settings file (defaults to ./aware.toml when present).",
)
@click.option("--log-dir", type=click.Path(file_okay=False, path_type=Path), help="Log directory.")
@click.option("--pid-dir", type=click.Path(file_okay=False, path_type=Path), help="PID directory.")
@click.option("-v", "--verbose", is_flag=True, help="Show diagnostic messages.")
@click.pass_context
def app(
    ctx: click.Context,
    config_path: Path | None,
    log_dir: Path | None,
    pid_dir: Path | None,
    verbose: bool,
) -> None:
    """Keep a program running and capture its output."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return
    try:
        settings = load_settings(config_path)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc
    ctx.obj = CLIState(settings=settings.merged(log_dir=log_dir, pid_dir=pid_dir))


@app.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("program")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def supervise(state: CLIState, program: str, args: Iterable[str]) -> None:
    """Run PROGRAM, restarting it whenever it exits, until asked to leave."""

    settings = state.settings
    supervised = SupervisedProgram.from_argv([program, *args], settings)
    registry = state.registry()
    shutdown = ShutdownSignal()
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        sink = LogSink(supervised.log_path)
    except OSError as exc:
        raise click.ClickException(f"Cannot open log file {supervised.log_path}: {exc}") from exc

    with sink:
        sink.add_listener(_echo_chunk)
        try:
            install_signal_handlers(shutdown)
            registry.register(supervised.name)
        except (SupervisorError, OSError) as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Supervising {supervised.name}; logs go to {supervised.log_path}")
        supervisor = Supervisor(supervised, sink, settings=settings, shutdown=shutdown)
        try:
            supervisor.run()
        except OSError as exc:
            raise click.ClickException(f"Supervision aborted: {exc}") from exc
        finally:
            try:
                if registry.unregister(supervised.name):
                    click.echo(f"PID file removed: {supervised.pid_path}")
            except OSError as exc:
                logger.warning("Cannot clean up %s: %s", supervised.pid_path, exc)


@app.command()
@click.argument("name", required=False)
@click.pass_obj
def leave(state: CLIState, name: str | None) -> None:
    """Ask the supervisor of NAME (or every supervisor) to stop."""

    registry = state.registry()
    if name is not None:
        click.echo(f"Sending leave command to {name}")
        click.echo(registry.leave(name).message)
        return

    click.echo("Sending leave command to all running aware supervisors")
    if not registry.pid_dir.is_dir():
        click.echo("PID directory not found, there may be no active supervisors.")
        return
    outcomes = registry.leave_all()
    for outcome in outcomes:
        click.echo(outcome.message, err=not outcome.ok)
    if not outcomes:
        click.echo("No running supervisors found.")
    else:
        click.echo("Leave command sent to all supervisors found.")


def main() -> None:
    """Entry point for console_scripts."""

    app(prog_name="aware", standalone_mode=True)
