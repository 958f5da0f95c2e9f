import errno
import logging
import os
import platform
import subprocess
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import Future
from typing import IO

import psutil
from sensai.util.string import ToStringMixin

from rlshost.util.subprocess_util import subprocess_kwargs

log = logging.getLogger(__name__)


class RlsProcess(ToStringMixin):
    """
    Handle of a (possibly failed) language server process.

    The outcome of the process is delivered exactly once through `fault`: the future is resolved with the
    exit code when the process terminates, or fails with the spawn error if the process could not be started.
    """

    def __init__(self, cmd: Sequence[str], popen: subprocess.Popen | None = None, spawn_error: OSError | None = None) -> None:
        if (popen is None) == (spawn_error is None):
            raise ValueError("Exactly one of popen and spawn_error must be given")
        self.cmd = list(cmd)
        self.spawn_error = spawn_error
        self.fault: Future[int] = Future()
        self._popen = popen
        self._exit_lock = threading.Lock()
        if spawn_error is not None:
            self.fault.set_exception(spawn_error)

    def _tostring_includes(self) -> list[str]:
        return ["cmd"]

    @classmethod
    def spawn(cls, cmd: Sequence[str], env: Mapping[str, str], cwd: str | None = None) -> "RlsProcess":
        """
        Spawns the given command with piped standard streams. Spawn errors do not propagate but are
        captured in the returned handle.
        """
        log.info("Starting language server process via command: %s (cwd=%s)", cmd, cwd)
        kwargs = subprocess_kwargs()
        if platform.system() != "Windows":
            # keep Ctrl-C in the host from reaching the server directly
            kwargs["start_new_session"] = True
        try:
            popen = subprocess.Popen(
                list(cmd),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=dict(env),
                cwd=cwd,
                **kwargs,
            )
        except OSError as e:
            log.error("Could not spawn RLS process: %s", e)
            return cls(cmd, spawn_error=e)
        return cls(cmd, popen=popen)

    @property
    def pid(self) -> int | None:
        return self._popen.pid if self._popen is not None else None

    @property
    def stdin(self) -> IO[bytes] | None:
        return self._popen.stdin if self._popen is not None else None

    @property
    def stdout(self) -> IO[bytes] | None:
        return self._popen.stdout if self._popen is not None else None

    @property
    def stderr(self) -> IO[bytes] | None:
        return self._popen.stderr if self._popen is not None else None

    @property
    def returncode(self) -> int | None:
        return self._popen.returncode if self._popen is not None else None

    def is_spawned(self) -> bool:
        return self._popen is not None

    def is_running(self) -> bool:
        return self._popen is not None and self._popen.poll() is None

    def is_not_found_error(self) -> bool:
        """
        :return: whether the process could not be spawned because the executable (or working directory) does not exist
        """
        err = self.spawn_error
        return err is not None and (isinstance(err, FileNotFoundError) or err.errno == errno.ENOENT)

    def wait(self, timeout: float | None = None) -> int:
        """
        Waits for the process to terminate and resolves `fault` with its exit code.

        :raises subprocess.TimeoutExpired: if the process does not terminate within the timeout
        """
        if self._popen is None:
            raise RuntimeError(f"Process was never started: {self.spawn_error}")
        returncode = self._popen.wait(timeout=timeout)
        with self._exit_lock:
            if not self.fault.done():
                self.fault.set_result(returncode)
        return returncode

    def start_exit_watcher(self) -> None:
        if self._popen is None:
            return
        threading.Thread(target=self.wait, name=f"RLS-exit-watcher-{self.pid}", daemon=True).start()

    def terminate(self, timeout: float = 5.0) -> None:
        """
        Terminates the process and all of its children, killing them if they do not exit within the timeout,
        and closes the standard streams.
        """
        popen = self._popen
        if popen is None:
            return
        self._safely_close_pipe(popen.stdin)
        if popen.poll() is None:
            self._signal_process_tree(popen, terminate=True)
            try:
                self.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                log.warning("Process %s did not terminate within %ss; killing it", popen.pid, timeout)
                self._signal_process_tree(popen, terminate=False)
                self.wait(timeout=timeout)
        else:
            self.wait()
        self._safely_close_pipe(popen.stdout)
        self._safely_close_pipe(popen.stderr)

    @staticmethod
    def _safely_close_pipe(pipe: IO[bytes] | None) -> None:
        if pipe:
            try:
                pipe.close()
            except OSError:
                pass

    @staticmethod
    def _signal_process_tree(popen: subprocess.Popen, terminate: bool = True) -> None:
        """Send signal (terminate or kill) to the process and all its children."""
        signal_method = "terminate" if terminate else "kill"

        try:
            parent = psutil.Process(popen.pid)
            children = parent.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            parent = None
            children = []

        if parent is None:
            try:
                getattr(popen, signal_method)()
            except OSError:
                pass
            return

        for child in children:
            try:
                getattr(child, signal_method)()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        try:
            getattr(parent, signal_method)()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass


def describe_exit(returncode: int) -> str:
    if returncode < 0 and os.name != "nt":
        return f"killed by signal {-returncode}"
    return f"exit code {returncode}"
