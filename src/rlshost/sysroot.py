import logging
import subprocess
from collections.abc import Mapping

from sensai.util.logging import LogTime

from rlshost.config import RLSConfiguration
from rlshost.exceptions import ProbeEmptyOutputError, ProbeExitError, ProbeSpawnError
from rlshost.util.subprocess_util import subprocess_kwargs

log = logging.getLogger(__name__)


class SysrootProber:
    """
    Determines the sysroot of the configured Rust toolchain by running `rustc --print sysroot` via rustup.
    """

    def __init__(self, config: RLSConfiguration, timeout: float | None = 30.0) -> None:
        self._config = config
        self._timeout = timeout

    def command(self) -> list[str]:
        return [self._config.rustup_path, "run", self._config.channel, "rustc", "--print", "sysroot"]

    def probe(self, env: Mapping[str, str]) -> str:
        """
        Runs the sysroot query synchronously.

        :param env: the environment to run the query in
        :return: the sysroot, without trailing line terminators
        :raises ProbeSpawnError: if the command could not be started
        :raises ProbeExitError: if the command exited with a non-zero status
        :raises ProbeEmptyOutputError: if the command did not print anything
        """
        cmd = self.command()
        with LogTime("Sysroot query", logger=log):
            try:
                completed = subprocess.run(
                    cmd,
                    env=dict(env),
                    stdin=subprocess.DEVNULL,
                    capture_output=True,
                    timeout=self._timeout,
                    **subprocess_kwargs(),
                )
            except (OSError, subprocess.SubprocessError) as e:
                raise ProbeSpawnError(f"Error running `rustc`: {e}", cause=e) from e

        if completed.returncode != 0:
            raise ProbeExitError(f"Error getting sysroot from `rustc`: exited with `{completed.returncode}`", completed.returncode)

        stdout = completed.stdout.decode("utf-8", errors="replace") if completed.stdout else ""
        sysroot = stdout.rstrip("\r\n")
        if not sysroot:
            raise ProbeEmptyOutputError("Couldn't get sysroot from `rustc`: got no output")
        return sysroot
