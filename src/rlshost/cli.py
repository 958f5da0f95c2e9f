import os
import sys
from concurrent.futures import TimeoutError as FutureTimeoutError

import click
from sensai.util import logging

from rlshost.config import RLSConfiguration
from rlshost.constants import LOG_FORMAT, RUST_SRC_PATH_VAR
from rlshost.editor import ConsoleEditorSurface
from rlshost.environment import RlsEnvironmentBuilder
from rlshost.exceptions import LaunchRejectedError, LaunchSpawnError, ProbeError
from rlshost.extension import ExtensionContext, activate, deactivate
from rlshost.sysroot import SysrootProber

log = logging.getLogger(__name__)

_MAX_CONTENT_WIDTH = 100

workspace_argument = click.argument(
    "workspace", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=os.getcwd()
)


def _configure_logging(log_level: str) -> None:
    lvl = logging.getLevelNamesMapping()[log_level.upper()]
    logging.configure(format=LOG_FORMAT, level=lvl)


@click.group(context_settings={"max_content_width": _MAX_CONTENT_WIDTH})
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def top_level(log_level: str) -> None:
    """Hosts the Rust Language Server for a workspace."""
    _configure_logging(log_level)


@top_level.command("serve", help="Start the RLS for the workspace and supervise it until it exits or Ctrl-C is pressed.")
@workspace_argument
def serve(workspace: str) -> None:
    workspace = os.path.abspath(workspace)
    context = ExtensionContext(workspace_root=workspace, editor=ConsoleEditorSurface())
    try:
        extension = activate(context)
    except (LaunchRejectedError, LaunchSpawnError) as e:
        log.error("%s", e)
        sys.exit(1)
    process = extension.client.process
    try:
        while process is not None and process.is_spawned():
            try:
                returncode = process.fault.result(timeout=1.0)
                log.info("RLS exited with code %s", returncode)
                break
            except FutureTimeoutError:
                continue
    except KeyboardInterrupt:
        log.info("Interrupted; shutting down")
    finally:
        deactivate(extension)


@top_level.command("sysroot", help="Print the sysroot of the configured toolchain.")
@workspace_argument
def sysroot(workspace: str) -> None:
    config = RLSConfiguration.load_from_workspace(workspace)
    try:
        click.echo(SysrootProber(config).probe(os.environ))
    except ProbeError as e:
        raise click.ClickException(str(e))


@top_level.command("env", help="Print the RUST_SRC_PATH the RLS would be started with.")
@workspace_argument
def env(workspace: str) -> None:
    config = RLSConfiguration.load_from_workspace(workspace)
    environment = RlsEnvironmentBuilder(config, ConsoleEditorSurface()).build()
    value = environment.get(RUST_SRC_PATH_VAR)
    if value is None:
        raise click.ClickException(f"{RUST_SRC_PATH_VAR} could not be determined")
    click.echo(f"{RUST_SRC_PATH_VAR}={value}")


if __name__ == "__main__":
    top_level()
