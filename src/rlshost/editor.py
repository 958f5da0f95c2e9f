"""
Interfaces of the editor collaborator (status bar, warnings, output channel, navigation) together
with the console implementation used when running the host from the command line.
"""

import logging
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TextIO

from overrides import override

from rlshost.lsp.types import Location, Position

log = logging.getLogger(__name__)


class OutputChannel(ABC):
    @abstractmethod
    def append(self, text: str) -> None:
        pass

    @abstractmethod
    def show(self, preserve_focus: bool = True) -> None:
        """
        Makes the channel visible.

        :param preserve_focus: whether to leave the keyboard focus where it is
        """


class EditorSurface(ABC):
    """
    The narrow view of the editor that the RLS host relies on.
    """

    @abstractmethod
    def show_warning_message(self, text: str) -> None:
        pass

    @abstractmethod
    def set_status_bar_message(self, text: str) -> None:
        pass

    @abstractmethod
    def show_references(self, uri: str, position: Position, locations: Sequence[Location]) -> None:
        """
        Navigates to (or lists) the given locations, anchored at the given position of the given document.
        """

    @property
    @abstractmethod
    def output_channel(self) -> OutputChannel:
        pass


class BusyIndicator(ABC):
    @abstractmethod
    def start(self, label: str) -> None:
        pass

    @abstractmethod
    def stop(self, label: str) -> None:
        pass


class StreamOutputChannel(OutputChannel):
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stderr
        self._lock = threading.Lock()

    @override
    def append(self, text: str) -> None:
        with self._lock:
            self._stream.write(text)
            self._stream.flush()

    @override
    def show(self, preserve_focus: bool = True) -> None:
        # a stream is always visible
        pass


class ConsoleEditorSurface(EditorSurface):
    """
    Editor surface for running without an editor: messages go to the log, the output channel to stderr.
    """

    def __init__(self, output_channel: OutputChannel | None = None) -> None:
        self._output_channel = output_channel or StreamOutputChannel()
        self.status_bar_message = ""

    @override
    def show_warning_message(self, text: str) -> None:
        log.warning(text)

    @override
    def set_status_bar_message(self, text: str) -> None:
        if text != self.status_bar_message:
            log.info("[status] %s", text)
        self.status_bar_message = text

    @override
    def show_references(self, uri: str, position: Position, locations: Sequence[Location]) -> None:
        log.info("%d reference(s) for %s:%d:%d", len(locations), uri, position.line + 1, position.character + 1)
        for location in locations:
            log.info("  %s:%d:%d", location.uri, location.range.start.line + 1, location.range.start.character + 1)

    @property
    @override
    def output_channel(self) -> OutputChannel:
        return self._output_channel


class StatusBarSpinner(BusyIndicator):
    """
    Animates a spinner in front of a label on the editor's status bar while busy.
    """

    FRAMES = ("|", "/", "-", "\\")

    def __init__(self, editor: EditorSurface, interval: float = 0.1) -> None:
        self._editor = editor
        self._interval = interval
        self._lock = threading.Lock()
        self._stop_event: threading.Event | None = None

    def is_spinning(self) -> bool:
        with self._lock:
            return self._stop_event is not None

    @override
    def start(self, label: str) -> None:
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            stop_event = threading.Event()
            self._stop_event = stop_event
        self._editor.set_status_bar_message(f"{self.FRAMES[0]} {label}")
        threading.Thread(target=self._spin, args=(label, stop_event), name="RLS-spinner", daemon=True).start()

    def _spin(self, label: str, stop_event: threading.Event) -> None:
        frame = 0
        while not stop_event.wait(self._interval):
            frame = (frame + 1) % len(self.FRAMES)
            with self._lock:
                # the label may only be written while this spinner is the current one
                if stop_event.is_set():
                    return
                self._editor.set_status_bar_message(f"{self.FRAMES[frame]} {label}")

    @override
    def stop(self, label: str) -> None:
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
                self._stop_event = None
            self._editor.set_status_bar_message(label)
