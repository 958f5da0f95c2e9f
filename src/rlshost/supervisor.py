"""
Launching and supervision of the RLS process.
"""

import logging
import threading
import time
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from rlshost.config import RLSConfiguration
from rlshost.constants import STATUS_START_FAILED
from rlshost.editor import EditorSurface, OutputChannel
from rlshost.exceptions import LaunchRejectedError, LaunchSpawnError, LogFileError
from rlshost.process import RlsProcess, describe_exit
from rlshost.rustup import RustupRunner
from rlshost.stderr import StderrLogFile, StderrLogger, StderrMirror, StderrObserver, StderrPump

log = logging.getLogger(__name__)


class LaunchStrategy(Enum):
    EXPLICIT_PATH = "explicit_path"
    """run the configured executable directly"""
    SOURCE_ROOT = "source_root"
    """build and run the RLS from the configured source checkout via cargo"""
    RUSTUP = "rustup"
    """run the RLS component of the configured toolchain"""


class ProcessSupervisor:
    """
    Launches the RLS according to the configuration and observes the resulting process: spawn errors,
    termination and its standard error output.
    """

    def __init__(
        self,
        config: RLSConfiguration,
        editor: EditorSurface,
        workspace_root: str | Path,
        rustup: RustupRunner | None = None,
        output_channel: OutputChannel | None = None,
    ) -> None:
        self._config = config
        self._editor = editor
        self._workspace_root = Path(workspace_root)
        self._rustup = rustup or RustupRunner(config, editor)
        self._output_channel = output_channel
        self._process: RlsProcess | None = None
        self._stderr_pump: StderrPump | None = None
        self._is_stopping = False
        self._lock = threading.Lock()

    @property
    def process(self) -> RlsProcess | None:
        return self._process

    @property
    def stderr_pump(self) -> StderrPump | None:
        return self._stderr_pump

    def select_strategy(self) -> LaunchStrategy:
        if self._config.rls_path:
            return LaunchStrategy.EXPLICIT_PATH
        elif self._config.rls_root:
            return LaunchStrategy.SOURCE_ROOT
        else:
            return LaunchStrategy.RUSTUP

    def log_file_path(self) -> Path:
        return self._workspace_root / f"rls{int(time.time() * 1000)}.log"

    def launch(self, env: Mapping[str, str]) -> RlsProcess:
        """
        Launches the RLS and attaches the configured observers.

        :param env: the environment to run the process in (not modified)
        :return: the process handle; if the executable was not found, the handle is that of a process which
            never started (a warning has been shown in this case)
        :raises LaunchSpawnError: if the process could not be spawned for a reason other than a missing executable
        :raises LaunchRejectedError: if the launch strategy failed before a process handle could be obtained
        """
        env = dict(env)
        strategy = self.select_strategy()
        log.info("Launching RLS using strategy %s", strategy.value)
        try:
            process = self._spawn(strategy, env)
        except Exception as e:
            log.error("RLS could not be started: %s", e, exc_info=e)
            self._editor.set_status_bar_message(STATUS_START_FAILED)
            raise LaunchRejectedError("RLS could not be started", cause=e) from e

        with self._lock:
            self._process = process
            self._is_stopping = False
        self._observe_spawn_error(process)
        if process.is_spawned():
            self._attach_stream_observers(process)
            process.fault.add_done_callback(self._on_exit)
            process.start_exit_watcher()
        return process

    def _spawn(self, strategy: LaunchStrategy, env: dict[str, str]) -> RlsProcess:
        match strategy:
            case LaunchStrategy.EXPLICIT_PATH:
                return RlsProcess.spawn([self._config.rls_path], env)
            case LaunchStrategy.SOURCE_ROOT:
                cmd = [self._config.rustup_path, "run", self._config.channel, "cargo", "run", "--release"]
                return RlsProcess.spawn(cmd, env, cwd=self._config.rls_root)
            case LaunchStrategy.RUSTUP:
                return self._rustup.run_rls(env)
            case _:
                raise ValueError(f"Unhandled launch strategy: {strategy}")

    def _observe_spawn_error(self, process: RlsProcess) -> None:
        if process.spawn_error is None:
            return
        if process.is_not_found_error():
            log.error("Could not spawn RLS process: %s", process.spawn_error)
            self._editor.show_warning_message("Could not start RLS")
        else:
            raise LaunchSpawnError(f"Could not spawn RLS process {process.cmd}", cause=process.spawn_error) from process.spawn_error

    def _create_stderr_observers(self) -> list[StderrObserver]:
        observers: list[StderrObserver] = []
        if self._config.log_to_file:
            path = self.log_file_path()
            try:
                observers.append(StderrLogFile(path, self._editor))
            except LogFileError as e:
                log.error("%s", e)
                self._editor.show_warning_message(e.message)
        if self._config.show_stderr_in_output_channel:
            output_channel = self._output_channel or self._editor.output_channel
            observers.append(StderrMirror(output_channel, self._config.reveal_output_channel_on))
        if not observers:
            observers.append(StderrLogger())
        return observers

    def _attach_stream_observers(self, process: RlsProcess) -> None:
        if process.stderr is None:
            return
        self._stderr_pump = StderrPump(process.stderr, self._create_stderr_observers(), name=f"RLS-stderr-reader-{process.pid}")
        self._stderr_pump.start()

    def _on_exit(self, fault) -> None:
        if fault.exception() is not None:
            return
        returncode = fault.result()
        with self._lock:
            expected = self._is_stopping
        if expected or returncode == 0:
            log.info("RLS process terminated (%s)", describe_exit(returncode))
        else:
            log.error("RLS process terminated unexpectedly (%s)", describe_exit(returncode))

    def prepare_stop(self) -> None:
        """
        Marks the coming exit of the RLS process as expected, for the case where it is terminated by someone else
        (e.g. the language client during shutdown).
        """
        with self._lock:
            self._is_stopping = True

    def stop(self, timeout: float = 5.0) -> None:
        """
        Terminates the RLS process (if any) and waits for the stderr observers to be closed.
        Calling this repeatedly is harmless.
        """
        with self._lock:
            process = self._process
            self._process = None
            self._is_stopping = True
        if process is not None:
            log.info("Stopping %s", process)
            process.terminate(timeout=timeout)
        if self._stderr_pump is not None:
            self._stderr_pump.join(timeout)
            self._stderr_pump = None
