"""
Editor commands forwarded to the RLS.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, Protocol

from rlshost.editor import EditorSurface
from rlshost.lsp.protocol import PayloadLike
from rlshost.lsp.types import DeglobParams, Position, Range, TextDocumentIdentifier, TextDocumentPositionParams, parse_locations
from rlshost.rustup import RustupRunner

log = logging.getLogger(__name__)

DEGLOB = "rustWorkspace/deglob"
IMPLEMENTATIONS = "rustDocument/implementations"


class RequestSender(Protocol):
    def send_request(self, method: str, params: dict | None = None) -> Future[PayloadLike]: ...


class CommandBindings:
    """
    Binds the `rls.*` editor commands. Each invocation issues a single request; failures are reported to
    the editor as warnings and are not retried.

    The command methods return a future which is resolved once the outcome has been handled, with True if
    the request succeeded and False otherwise.
    """

    def __init__(self, client: RequestSender, editor: EditorSurface, rustup: RustupRunner) -> None:
        self._client = client
        self._editor = editor
        self._rustup = rustup

    def register(self, registry: dict[str, Callable[..., Any]]) -> None:
        registry["rls.deglob"] = self.deglob
        registry["rls.findImpls"] = self.find_impls
        registry["rls.update"] = self.update

    def _forward(
        self,
        method: str,
        params: dict,
        failure_message: str,
        on_success: Callable[[PayloadLike], None] | None = None,
    ) -> Future[bool]:
        handled: Future[bool] = Future()

        def on_done(response: Future[PayloadLike]) -> None:
            err = response.exception()
            if err is None and on_success is not None:
                try:
                    on_success(response.result())
                except Exception as e:
                    err = e
            if err is not None:
                log.warning("%s: %s", failure_message, err)
                self._editor.show_warning_message(f"{failure_message}: {err}")
            handled.set_result(err is None)

        self._client.send_request(method, params).add_done_callback(on_done)
        return handled

    def deglob(self, uri: str, selection: Range) -> Future[bool]:
        """
        Asks the RLS to replace the glob imports within the selection by explicit imports.
        The resulting edits are applied by the server through `workspace/applyEdit`.
        """
        params = DeglobParams(uri=uri, range=selection)
        return self._forward(DEGLOB, params.to_payload(), "deglob command failed")

    def find_impls(self, uri: str, position: Position) -> Future[bool]:
        """
        Looks up the implementations of the trait or type at the given position and shows them in the editor.
        """
        params = TextDocumentPositionParams(text_document=TextDocumentIdentifier(uri=uri), position=position)

        def show(result: PayloadLike) -> None:
            self._editor.show_references(uri, position, parse_locations(result))

        return self._forward(IMPLEMENTATIONS, params.to_payload(), "find implementations failed", on_success=show)

    def update(self) -> bool:
        return self._rustup.update()
