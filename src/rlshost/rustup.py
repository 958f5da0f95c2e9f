"""
Toolchain management via rustup: updating, installing the toolchain and the RLS components, and
running the RLS from the toolchain.
"""

import logging
import os
import subprocess
from collections.abc import Mapping

from sensai.util.logging import LogTime

from rlshost.config import RLSConfiguration
from rlshost.editor import EditorSurface
from rlshost.exceptions import RustupError
from rlshost.process import RlsProcess
from rlshost.util.subprocess_util import subprocess_kwargs

log = logging.getLogger(__name__)


class RustupRunner:
    REQUIRED_EXTRA_COMPONENTS = ("rust-analysis", "rust-src")

    def __init__(self, config: RLSConfiguration, editor: EditorSurface, timeout: float | None = 600.0) -> None:
        self._config = config
        self._editor = editor
        self._timeout = timeout

    @property
    def components(self) -> tuple[str, ...]:
        return (self._config.component_name, *self.REQUIRED_EXTRA_COMPONENTS)

    def _run(self, args: list[str], env: Mapping[str, str] | None = None) -> subprocess.CompletedProcess:
        cmd = [self._config.rustup_path, *args]
        log.info("Running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                env=dict(env) if env is not None else os.environ.copy(),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout,
                **subprocess_kwargs(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise RustupError(f"Failed to run `{' '.join(cmd)}`", cause=e) from e

    def _run_checked(self, args: list[str], env: Mapping[str, str] | None = None) -> str:
        completed = self._run(args, env)
        if completed.returncode != 0:
            raise RustupError(
                f"`rustup {' '.join(args)}` failed with exit code {completed.returncode}: {completed.stderr.strip()}"
            )
        return completed.stdout

    def update(self, env: Mapping[str, str] | None = None) -> bool:
        """
        Updates the installed toolchains. Failures are reported to the editor rather than raised.

        :return: whether the update succeeded
        """
        self._editor.set_status_bar_message("Updating RLS...")
        try:
            with LogTime("rustup update", logger=log):
                output = self._run_checked(["update"], env)
        except RustupError as e:
            log.error("%s", e)
            self._editor.show_warning_message(f"Could not update RLS: {e}")
            self._editor.set_status_bar_message("RLS: update failed")
            return False
        if "updated" in output and "unchanged" not in output:
            self._editor.set_status_bar_message("RLS: update successful")
        else:
            self._editor.set_status_bar_message("RLS: up to date")
        return True

    def has_toolchain(self, env: Mapping[str, str] | None = None) -> bool:
        output = self._run_checked(["toolchain", "list"], env)
        return any(line.startswith(self._config.channel) for line in output.splitlines())

    def ensure_toolchain(self, env: Mapping[str, str] | None = None) -> None:
        if self.has_toolchain(env):
            return
        channel = self._config.channel
        log.info("Toolchain %s is not installed; installing it", channel)
        self._editor.set_status_bar_message(f"Installing Rust toolchain {channel}...")
        self._run_checked(["toolchain", "install", channel], env)

    def installed_components(self, env: Mapping[str, str] | None = None) -> list[str]:
        output = self._run_checked(["component", "list", "--toolchain", self._config.channel], env)
        return [line.split(" ")[0] for line in output.splitlines() if line.endswith("(installed)") or "(default)" in line]

    def missing_components(self, env: Mapping[str, str] | None = None) -> list[str]:
        # component list entries carry a target triple suffix, e.g. rust-src-x86_64-unknown-linux-gnu
        installed = self.installed_components(env)
        return [c for c in self.components if not any(i == c or i.startswith(c + "-") for i in installed)]

    def ensure_components(self, env: Mapping[str, str] | None = None) -> None:
        with LogTime("RLS component check", logger=log):
            missing = self.missing_components(env)
        for component in missing:
            log.info("Installing missing component %s", component)
            self._editor.set_status_bar_message(f"Installing {component}...")
            self._run_checked(["component", "add", component, "--toolchain", self._config.channel], env)

    def run_rls(self, env: Mapping[str, str]) -> RlsProcess:
        """
        Makes sure the toolchain and the RLS components are installed and spawns the RLS through rustup.

        :raises RustupError: if the toolchain or the components cannot be installed
        """
        self.ensure_toolchain(env)
        self.ensure_components(env)
        return RlsProcess.spawn([self._config.rustup_path, "run", self._config.channel, "rls"], env)
