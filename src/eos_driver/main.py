"""CLI entrypoint for the EOS workflow driver."""

from pathlib import Path

import rich_click as click

from eos_driver import __version__
from eos_driver.driver.controllers import (
    DriverCheckpointsCommand,
    DriverCliController,
    DriverRunCommand,
)
from eos_driver.driver.errors import ArgumentError
from eos_driver.logs import configure_logging

click.rich_click.USE_MARKDOWN = True


def _wait_for_enter(message: str) -> None:
    click.prompt(message, default="", show_default=False, prompt_suffix="")


DRIVER_CONTROLLER = DriverCliController(wait_for_operator=_wait_for_enter, progress=click.echo)


@click.group()
@click.version_option(version=__version__, prog_name="driver")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="DRIVER_LOG_LEVEL",
    default="WARNING",
    show_default=True,
    help="Log verbosity for driver diagnostics (written to stderr).",
)
def driver(log_level: str) -> None:
    """EOS workflow driver: spec creation, task planning and task execution."""

    configure_logging(log_level)


@driver.command("run")
@click.option("--spec", default=None, help="Specification text used with /create-spec.")
@click.option(
    "--conversation",
    "conversation_id",
    default=None,
    help="Resume an existing agent conversation instead of starting a new one.",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=False,
    show_default=True,
    help="Print the planned commands without contacting the agent.",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a JSONL trace with one record per stage outcome.",
)
@click.option(
    "--checkpoint-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Checkpoint log path. Defaults to CHECKPOINT_PATH or .eos/checkpoints.log.",
)
@click.option(
    "--poll-interval",
    "poll_interval_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between status polls. Defaults to DRIVER_POLL_INTERVAL_SECONDS (5).",
)
@click.option(
    "--stage-timeout",
    "stage_timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-stage timeout in seconds. Defaults to DRIVER_STAGE_TIMEOUT_SECONDS (1800).",
)
@click.option(
    "--pause-after-spec/--no-pause-after-spec",
    default=False,
    show_default=True,
    help="Wait for Enter after /create-spec before sending /create-tasks.",
)
def driver_run(  # noqa: PLR0913
    spec: str | None,
    conversation_id: str | None,
    dry_run: bool,
    output_path: Path | None,
    checkpoint_path: Path | None,
    poll_interval_seconds: float | None,
    stage_timeout_seconds: float | None,
    pause_after_spec: bool,
) -> None:
    """Run spec creation, task planning and task execution in order.

    Exit codes: 0 success, 1 stage failure, 2 invalid arguments,
    3 checkpoint/trace write error.
    """

    try:
        result = DRIVER_CONTROLLER.run(
            DriverRunCommand(
                spec=spec,
                conversation_id=conversation_id,
                dry_run=dry_run,
                output_path=output_path,
                checkpoint_path=checkpoint_path,
                poll_interval_seconds=poll_interval_seconds,
                stage_timeout_seconds=stage_timeout_seconds,
                pause_after_spec=pause_after_spec,
            ),
        )
    except ArgumentError as error:
        raise click.UsageError(str(error)) from error

    _emit_lines(result.lines)
    if result.exit_code != 0:
        click.get_current_context().exit(result.exit_code)


@driver.command("checkpoints")
@click.option(
    "--checkpoint-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Checkpoint log path. Defaults to CHECKPOINT_PATH or .eos/checkpoints.log.",
)
@click.option("--run-id", default=None, help="Only show entries for this run.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=10_000),
    default=50,
    show_default=True,
    help="Show at most this many most recent entries.",
)
def driver_checkpoints(checkpoint_path: Path | None, run_id: str | None, limit: int) -> None:
    """Show recorded stage outcomes from the checkpoint log."""

    try:
        result = DRIVER_CONTROLLER.checkpoints(
            DriverCheckpointsCommand(
                checkpoint_path=checkpoint_path,
                run_id=run_id,
                limit=limit,
            ),
        )
    except ArgumentError as error:
        raise click.UsageError(str(error)) from error

    _emit_lines(result.lines)
    if result.exit_code != 0:
        click.get_current_context().exit(result.exit_code)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    driver()
