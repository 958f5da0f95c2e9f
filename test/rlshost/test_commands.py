from concurrent.futures import Future
from unittest.mock import MagicMock

import pytest
from rls_test_util import RecordingEditor

from rlshost.commands import DEGLOB, IMPLEMENTATIONS, CommandBindings
from rlshost.lsp.protocol import ErrorCodes, LSPError
from rlshost.lsp.types import Position, Range

URI = "file:///work/src/main.rs"


class FakeClient:
    """Answers requests immediately with the configured outcome and records them."""

    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.requests: list[tuple[str, dict | None]] = []

    def send_request(self, method, params=None):
        self.requests.append((method, params))
        future = Future()
        if self.error is not None:
            future.set_exception(self.error)
        else:
            future.set_result(self.result)
        return future


def location(line: int) -> dict:
    return {"uri": "file:///work/src/lib.rs", "range": {"start": {"line": line, "character": 4}, "end": {"line": line, "character": 9}}}


class TestCommandBindings:
    def setup_method(self):
        self.editor = RecordingEditor()
        self.rustup = MagicMock()
        self.selection = Range(start=Position(line=0, character=0), end=Position(line=2, character=0))
        self.position = Position(line=10, character=7)

    def bindings(self, client) -> CommandBindings:
        return CommandBindings(client, self.editor, self.rustup)

    def test_register(self):
        registry = {}
        bindings = self.bindings(FakeClient())
        bindings.register(registry)
        assert set(registry) == {"rls.deglob", "rls.findImpls", "rls.update"}

    def test_deglob_request(self):
        client = FakeClient(result=None)
        assert self.bindings(client).deglob(URI, self.selection).result(timeout=1)
        method, params = client.requests[0]
        assert method == DEGLOB
        assert params == {"uri": URI, "range": {"start": {"line": 0, "character": 0}, "end": {"line": 2, "character": 0}}}
        assert self.editor.warnings == []

    def test_deglob_failure(self):
        client = FakeClient(error=LSPError(ErrorCodes.InternalError, "no glob import here"))
        assert not self.bindings(client).deglob(URI, self.selection).result(timeout=1)
        assert len(self.editor.warnings) == 1
        assert self.editor.warnings[0].startswith("deglob command failed: ")
        assert "no glob import here" in self.editor.warnings[0]

    def test_find_impls_navigates_to_locations(self):
        client = FakeClient(result=[location(3), location(8)])
        assert self.bindings(client).find_impls(URI, self.position).result(timeout=1)
        method, params = client.requests[0]
        assert method == IMPLEMENTATIONS
        assert params == {"textDocument": {"uri": URI}, "position": {"line": 10, "character": 7}}
        assert len(self.editor.references) == 1
        uri, position, locations = self.editor.references[0]
        assert uri == URI
        assert position == self.position
        assert [loc.range.start.line for loc in locations] == [3, 8]

    def test_find_impls_with_null_result(self):
        client = FakeClient(result=None)
        self.bindings(client).find_impls(URI, self.position).result(timeout=1)
        assert self.editor.references == [(URI, self.position, [])]

    def test_find_impls_rejected_with_reason(self):
        client = FakeClient(error=TimeoutError("timeout"))
        assert not self.bindings(client).find_impls(URI, self.position).result(timeout=1)
        assert len(self.editor.warnings) == 1
        assert "timeout" in self.editor.warnings[0]
        assert self.editor.warnings[0].startswith("find implementations failed")
        assert self.editor.references == []

    def test_find_impls_with_malformed_result(self):
        client = FakeClient(result=[{"uri": 1}])
        assert not self.bindings(client).find_impls(URI, self.position).result(timeout=1)
        assert len(self.editor.warnings) == 1
        assert self.editor.references == []

    @pytest.mark.parametrize("succeeded", [True, False])
    def test_update_delegates_to_rustup(self, succeeded):
        self.rustup.update.return_value = succeeded
        assert self.bindings(FakeClient()).update() == succeeded
        self.rustup.update.assert_called_once_with()

    def test_each_failure_is_reported(self):
        bindings = self.bindings(FakeClient(error=TimeoutError("timeout")))
        bindings.deglob(URI, self.selection)
        bindings.deglob(URI, self.selection)
        assert len(self.editor.warnings) == 2
