"""
Aggregation of the RLS's build progress notifications into a single busy/idle indicator.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Protocol

from pydantic import ValidationError

from rlshost.constants import STATUS_DONE, STATUS_WORKING
from rlshost.editor import BusyIndicator
from rlshost.lsp.client import NotificationHandler
from rlshost.lsp.types import BeginBuildParams, BuildNotificationParams, DiagnosticsEndParams

log = logging.getLogger(__name__)

BEGIN_BUILD = "rustDocument/beginBuild"
DIAGNOSTICS_END = "rustDocument/diagnosticsEnd"


class NotificationSource(Protocol):
    def on_ready(self) -> Future[None]: ...

    def on_notification(self, method: str, cb: NotificationHandler) -> None: ...


class ProgressTracker:
    """
    Counts the builds the RLS has begun but not yet ended. The indicator is switched to busy when the count
    becomes positive and back to idle whenever a build ends and no build remains in progress.

    Begin/end notifications are not associated with particular builds, so only their balance matters.
    End notifications in excess of begin notifications are ignored, i.e. the count never drops below zero.
    """

    def __init__(self, indicator: BusyIndicator) -> None:
        self._indicator = indicator
        self._count = 0
        # notifications are delivered on the client's reader thread
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def is_busy(self) -> bool:
        return self.count > 0

    def begin_build(self) -> None:
        with self._lock:
            self._count += 1
            if self._count == 1:
                self._indicator.start(STATUS_WORKING)

    def end_build(self) -> None:
        with self._lock:
            self._count = max(self._count - 1, 0)
            if self._count == 0:
                self._indicator.stop(STATUS_DONE)

    def attach(self, client: NotificationSource) -> None:
        """
        Subscribes to the client's build notifications once the client is ready.
        """

        def register(ready: Future[None]) -> None:
            if ready.exception() is not None:
                log.info("Not tracking build progress: %s", ready.exception())
                return
            client.on_notification(BEGIN_BUILD, self._handler(BeginBuildParams, self.begin_build))
            client.on_notification(DIAGNOSTICS_END, self._handler(DiagnosticsEndParams, self.end_build))

        client.on_ready().add_done_callback(register)

    @staticmethod
    def _handler(params_type: type[BuildNotificationParams], transition) -> NotificationHandler:
        def handle(params: Any) -> None:
            try:
                params_type.parse(params)
            except ValidationError as e:
                log.warning("Ignoring malformed %s notification: %s", params_type.__name__, e)
                return
            transition()

        return handle
