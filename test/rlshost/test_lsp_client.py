import os
from unittest.mock import MagicMock

import pytest
from rls_test_util import RecordingEditor, RecordingIndicator, RecordingOutputChannel, posix_only, write_script

from rlshost.commands import CommandBindings
from rlshost.config import RevealOutputChannelOn
from rlshost.constants import STATUS_DONE, STATUS_WORKING
from rlshost.exceptions import LanguageServerTerminatedException
from rlshost.lsp.client import LanguageClient, LanguageClientOptions
from rlshost.lsp.protocol import LSPError, content_length, create_message, make_notification, make_request
from rlshost.lsp.types import Position, Range
from rlshost.process import RlsProcess
from rlshost.progress import ProgressTracker

FAKE_SERVER = r"""
import json
import sys


def read():
    length = None
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        if line in (b"\r\n", b"\n"):
            break
        name, value = line.decode("ascii").split(":", 1)
        if name.strip().lower() == "content-length":
            length = int(value.strip())
    return json.loads(sys.stdin.buffer.read(length))


def write(message):
    body = json.dumps(message).encode("utf-8")
    sys.stdout.buffer.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)
    sys.stdout.buffer.flush()


def notify(method, params=None):
    write({"jsonrpc": "2.0", "method": method, "params": params})


while True:
    message = read()
    if message is None:
        break
    method = message.get("method")
    if method == "initialize":
        assert message["params"]["initializationOptions"] == {"omitInitBuild": True}
        write({"jsonrpc": "2.0", "id": message["id"], "result": {"capabilities": {"implementationProvider": True}}})
    elif method == "initialized":
        notify("window/showMessage", {"type": 2, "message": "toolchain is old"})
        notify("rustDocument/beginBuild")
        notify("rustDocument/beginBuild")
        notify("rustDocument/diagnosticsEnd")
    elif method == "rustDocument/implementations":
        notify("rustDocument/diagnosticsEnd")
        position = message["params"]["position"]
        location = {"uri": message["params"]["textDocument"]["uri"], "range": {"start": position, "end": position}}
        write({"jsonrpc": "2.0", "id": message["id"], "result": [location]})
    elif method == "rustWorkspace/deglob":
        write({"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32603, "message": "no glob import"}})
    elif method == "crash":
        sys.exit(3)
    elif method == "shutdown":
        write({"jsonrpc": "2.0", "id": message["id"], "result": None})
    elif method == "exit":
        break
"""

CLOSES_STDOUT_SERVER = r"""
import os
import sys
import time

sys.stdin.buffer.readline()
os.close(1)
time.sleep(60)
"""


class TestFraming:
    def test_content_length(self):
        assert content_length(b"Content-Length: 42\r\n") == 42
        assert content_length(b"Content-Type: application/vscode-jsonrpc\r\n") is None
        with pytest.raises(ValueError):
            content_length(b"Content-Length: many\r\n")

    def test_create_message(self):
        header, content_type, body = create_message(make_notification("exit", None))
        assert header == f"Content-Length: {len(body)}\r\n".encode()
        assert content_type.endswith(b"\r\n\r\n")
        assert body == b'{"jsonrpc":"2.0","method":"exit"}'

    def test_make_request(self):
        assert make_request("shutdown", 7, None) == {"jsonrpc": "2.0", "method": "shutdown", "id": 7}


@posix_only
class TestLanguageClient:
    def setup_method(self):
        self.output_channel = RecordingOutputChannel()
        self.client: LanguageClient | None = None

    def teardown_method(self):
        if self.client is not None:
            self.client.stop()

    def start_client(self, tmp_path) -> LanguageClient:
        server = write_script(tmp_path, "fake-rls", FAKE_SERVER)
        options = LanguageClientOptions(
            workspace_root=str(tmp_path), reveal_output_channel_on=RevealOutputChannelOn.WARN, output_channel=self.output_channel
        )
        self.client = LanguageClient("fake RLS", lambda: RlsProcess.spawn([str(server)], os.environ), options)
        return self.client

    def test_initialize_handshake(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        client.on_ready().result(timeout=30)
        assert client.is_running()

    def test_build_notifications_drive_progress(self, tmp_path):
        client = self.start_client(tmp_path)
        indicator = RecordingIndicator()
        tracker = ProgressTracker(indicator)
        tracker.attach(client)
        client.start()
        client.on_ready().result(timeout=30)

        # notifications sent before a response are handled before the response
        client.send_request("rustDocument/implementations", {"textDocument": {"uri": "file:///a.rs"}, "position": {"line": 1, "character": 2}}).result(
            timeout=30
        )
        assert indicator.events == [("busy", STATUS_WORKING), ("idle", STATUS_DONE)]
        assert tracker.count == 0

    def test_show_message_is_written_to_output_channel(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        client.on_ready().result(timeout=30)
        client.send_request("rustWorkspace/deglob", {}).exception(timeout=30)
        assert "toolchain is old\n" in self.output_channel.appended
        assert self.output_channel.show_calls == [True]

    def test_request_result(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        result = client.send_request(
            "rustDocument/implementations", {"textDocument": {"uri": "file:///a.rs"}, "position": {"line": 1, "character": 2}}
        ).result(timeout=30)
        assert result == [{"uri": "file:///a.rs", "range": {"start": {"line": 1, "character": 2}, "end": {"line": 1, "character": 2}}}]

    def test_error_response(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        err = client.send_request("rustWorkspace/deglob", {}).exception(timeout=30)
        assert isinstance(err, LSPError)
        assert err.message == "no glob import"

    def test_pending_requests_fail_when_server_dies(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        client.on_ready().result(timeout=30)
        err = client.send_request("crash").exception(timeout=30)
        assert isinstance(err, LanguageServerTerminatedException)
        assert client.process.wait(timeout=30) == 3

    def test_requests_fail_after_stop(self, tmp_path):
        client = self.start_client(tmp_path)
        client.start()
        client.on_ready().result(timeout=30)
        client.stop()
        assert not client.is_running()
        assert isinstance(client.send_request("rustWorkspace/deglob", {}).exception(timeout=1), LanguageServerTerminatedException)


class TestLanguageClientWithoutServer:
    def test_ready_fails_if_server_was_not_spawned(self, tmp_path):
        options = LanguageClientOptions(workspace_root=str(tmp_path))
        client = LanguageClient("fake RLS", lambda: RlsProcess(["rls"], spawn_error=FileNotFoundError("rls")), options)
        client.start()
        assert isinstance(client.on_ready().exception(timeout=1), LanguageServerTerminatedException)
        assert not client.is_running()
        client.stop()


@posix_only
class TestServerClosingStdout:
    def setup_method(self):
        self.client: LanguageClient | None = None

    def teardown_method(self):
        if self.client is not None:
            self.client.stop()

    def test_requests_fail_fast_once_stdout_is_closed(self, tmp_path):
        server = write_script(tmp_path, "fake-rls", CLOSES_STDOUT_SERVER)
        self.client = LanguageClient(
            "fake RLS", lambda: RlsProcess.spawn([str(server)], os.environ), LanguageClientOptions(workspace_root=str(tmp_path))
        )
        self.client.start()
        assert isinstance(self.client.on_ready().exception(timeout=30), LanguageServerTerminatedException)
        assert self.client.process.is_running()
        assert not self.client.is_running()
        err = self.client.send_request("rustWorkspace/deglob", {}).exception(timeout=3)
        assert isinstance(err, LanguageServerTerminatedException)

    def test_command_failure_is_reported_once_stdout_is_closed(self, tmp_path):
        server = write_script(tmp_path, "fake-rls", CLOSES_STDOUT_SERVER)
        self.client = LanguageClient(
            "fake RLS", lambda: RlsProcess.spawn([str(server)], os.environ), LanguageClientOptions(workspace_root=str(tmp_path))
        )
        self.client.start()
        self.client.on_ready().exception(timeout=30)
        editor = RecordingEditor()
        selection = Range(start=Position(line=0, character=0), end=Position(line=1, character=0))
        assert not CommandBindings(self.client, editor, MagicMock()).deglob("file:///a.rs", selection).result(timeout=3)
        assert len(editor.warnings) == 1
        assert editor.warnings[0].startswith("deglob command failed")
