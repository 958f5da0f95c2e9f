"""
Observers of the language server's standard error stream.
"""

import codecs
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from overrides import override

from rlshost.config import RevealOutputChannelOn
from rlshost.editor import EditorSurface, OutputChannel
from rlshost.exceptions import LogFileError

log = logging.getLogger(__name__)

CHUNK_SIZE = 4096


def determine_log_level(line: str) -> int:
    """
    Classify a stderr line from the language server to determine the appropriate logging level.

    :param line: The stderr line to classify
    :return: logging.ERROR for lines mentioning errors or exceptions, logging.INFO otherwise
    """
    line_lower = line.lower()
    if "error" in line_lower or "exception" in line_lower or line.startswith("E["):
        return logging.ERROR
    else:
        return logging.INFO


class StderrObserver(ABC):
    @abstractmethod
    def on_data(self, chunk: bytes) -> None:
        pass

    def close(self) -> None:
        pass


class StderrLogFile(StderrObserver):
    """
    Appends the raw stderr bytes to a log file. Failures to write are reported once, after which
    the capture is disabled.
    """

    def __init__(self, path: str | Path, editor: EditorSurface) -> None:
        """
        :raises LogFileError: if the file cannot be opened
        """
        self.path = Path(path)
        self._editor = editor
        try:
            self._file: IO[bytes] | None = open(self.path, "ab")
        except OSError as e:
            raise LogFileError(f"Couldn't write to {self.path} ({e})", cause=e) from e
        log.info("Writing RLS stderr to %s", self.path)

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @override
    def on_data(self, chunk: bytes) -> None:
        if self._file is None:
            return
        try:
            self._file.write(chunk)
            self._file.flush()
        except OSError as e:
            message = f"Couldn't write to {self.path} ({e})"
            log.error(message)
            self._editor.show_warning_message(message)
            self.close()

    @override
    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                log.error("Couldn't close %s: %s", self.path, e)
            self._file = None


class StderrMirror(StderrObserver):
    """
    Mirrors stderr to the editor's output channel. With regards to focusing the output channel, stderr
    output is treated as if it were of informational severity.
    """

    def __init__(self, output_channel: OutputChannel, reveal_output_channel_on: RevealOutputChannelOn) -> None:
        self._output_channel = output_channel
        self._reveal = reveal_output_channel_on <= RevealOutputChannelOn.INFO
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @override
    def on_data(self, chunk: bytes) -> None:
        self._emit(self._decoder.decode(chunk))

    def _emit(self, text: str) -> None:
        if not text:
            return
        self._output_channel.append(text)
        if self._reveal:
            self._output_channel.show(preserve_focus=True)

    @override
    def close(self) -> None:
        self._emit(self._decoder.decode(b"", final=True))


class StderrLogger(StderrObserver):
    """
    Forwards stderr lines to the Python log.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @override
    def on_data(self, chunk: bytes) -> None:
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._log_line(line)

    @staticmethod
    def _log_line(line: str) -> None:
        line = line.rstrip("\r")
        if line:
            log.log(determine_log_level(line), line)

    @override
    def close(self) -> None:
        self._pending += self._decoder.decode(b"", final=True)
        self._log_line(self._pending)
        self._pending = ""


class StderrPump:
    """
    Reads a stderr stream on a daemon thread until it is exhausted, passing each chunk to all observers
    and closing them afterwards.
    """

    def __init__(self, stream: IO[bytes], observers: Sequence[StderrObserver], name: str = "RLS-stderr-reader") -> None:
        self._stream = stream
        self.observers = list(observers)
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _read_chunk(self) -> bytes:
        read1 = getattr(self._stream, "read1", None)
        if read1 is not None:
            return read1(CHUNK_SIZE)
        return self._stream.read(CHUNK_SIZE)

    def _run(self) -> None:
        try:
            while True:
                chunk = self._read_chunk()
                if not chunk:
                    break
                for observer in self.observers:
                    try:
                        observer.on_data(chunk)
                    except Exception as e:
                        log.error("Error in stderr observer %s: %s", observer.__class__.__name__, e, exc_info=e)
        except (OSError, ValueError) as e:
            # the stream was closed while reading
            log.debug("Stopped reading stderr: %s", e)
        finally:
            for observer in self.observers:
                try:
                    observer.close()
                except Exception as e:
                    log.error("Error closing stderr observer %s: %s", observer.__class__.__name__, e, exc_info=e)
            log.info("Language server stderr reader thread has terminated")
