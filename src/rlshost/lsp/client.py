import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sensai.util.string import ToStringMixin

from rlshost.config import RevealOutputChannelOn
from rlshost.editor import OutputChannel
from rlshost.exceptions import LanguageServerTerminatedException
from rlshost.lsp.protocol import (
    ENCODING,
    ErrorCodes,
    LSPError,
    MessageType,
    PayloadLike,
    StringDict,
    content_length,
    create_message,
    make_error_response,
    make_notification,
    make_request,
    make_response,
)
from rlshost.process import RlsProcess

log = logging.getLogger(__name__)

NotificationHandler = Callable[[Any], None]
RequestHandler = Callable[[Any], PayloadLike]


class Request(ToStringMixin):
    def __init__(self, request_id: int, method: str) -> None:
        self._request_id = request_id
        self._method = method
        self._status = "pending"
        self.future: Future[PayloadLike] = Future()

    def _tostring_includes(self) -> list[str]:
        return ["_request_id", "_status", "_method"]

    def on_result(self, params: PayloadLike) -> None:
        self._status = "completed"
        self.future.set_result(params)

    def on_error(self, err: Exception) -> None:
        """
        :param err: the error that occurred while processing the request (typically an LSPError
            for errors returned by the LS or LanguageServerTerminatedException if the error
            is due to the language server process terminating unexpectedly).
        """
        self._status = "error"
        self.future.set_exception(err)


@dataclass
class LanguageClientOptions:
    workspace_root: str
    document_selector: tuple[str, ...] = ("rust",)
    initialization_options: dict[str, Any] = field(default_factory=lambda: {"omitInitBuild": True})
    reveal_output_channel_on: RevealOutputChannelOn = RevealOutputChannelOn.NEVER
    output_channel: OutputChannel | None = None


class LanguageClient:
    """
    Client side of the language server protocol, talking JSON-RPC 2.0 to a server process over its
    stdin/stdout.

    The server process is obtained from the `server_options` callable when the client is started, which
    allows preparatory steps (updating the toolchain, building the environment) to be deferred until then.
    Requests return futures; notification and request handlers registered for server-to-client messages
    are invoked on the reader thread in the order in which the messages are received.
    """

    def __init__(self, name: str, server_options: Callable[[], RlsProcess], client_options: LanguageClientOptions) -> None:
        self.name = name
        self._server_options = server_options
        self._options = client_options
        self.process: RlsProcess | None = None

        self._request_id = 1
        self._pending_requests: dict[Any, Request] = {}
        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._request_handlers: dict[str, RequestHandler] = {}
        self._ready: Future[None] = Future()
        self._is_shutting_down = False
        self._reader_exception: Exception | None = None
        """the exception with which the stdout reader terminated; once set, no further requests are accepted"""

        self._stdin_lock = threading.Lock()
        self._request_id_lock = threading.Lock()
        self._response_handlers_lock = threading.Lock()
        self._ready_lock = threading.Lock()

        self.on_notification("window/logMessage", self._on_log_message)
        self.on_notification("window/showMessage", self._on_show_message)
        self.on_request("client/registerCapability", lambda params: None)
        self.on_request("client/unregisterCapability", lambda params: None)
        self.on_request("workspace/configuration", lambda params: [None for _ in (params or {}).get("items", [])])
        self.on_request("workspace/applyEdit", lambda params: {"applied": False, "failureReason": "workspace edits are not supported"})

    @property
    def output_channel(self) -> OutputChannel | None:
        return self._options.output_channel

    def is_running(self) -> bool:
        return self._reader_exception is None and self.process is not None and self.process.is_running()

    def on_ready(self) -> Future[None]:
        """
        :return: a future that is resolved once the initialize handshake has completed, or failed if the
            server could not be started or initialised
        """
        return self._ready

    def start(self) -> None:
        """
        Obtains the server process, starts reading its output and initiates the initialize handshake.
        Exceptions raised by the server options callable propagate.
        """
        process = self._server_options()
        self.process = process
        if not process.is_spawned() or process.stdout is None:
            self._ready.set_exception(LanguageServerTerminatedException(f"{self.name} server process was not started"))
            return

        threading.Thread(target=self._read_ls_process_stdout, name="LSP-stdout-reader", daemon=True).start()

        self.send_request("initialize", self._initialize_params(), on_done=self._on_initialize_result)

    def _initialize_params(self) -> StringDict:
        root = Path(self._options.workspace_root).resolve()
        return {
            "processId": None,
            "clientInfo": {"name": self.name},
            "rootPath": str(root),
            "rootUri": root.as_uri(),
            "workspaceFolders": [{"uri": root.as_uri(), "name": root.name}],
            "initializationOptions": self._options.initialization_options,
            "capabilities": {
                "workspace": {"applyEdit": True, "configuration": True, "workspaceFolders": True},
                "textDocument": {
                    "synchronization": {"didSave": True, "dynamicRegistration": True},
                    "publishDiagnostics": {"relatedInformation": True},
                    "definition": {"dynamicRegistration": True},
                    "references": {"dynamicRegistration": True},
                    "implementation": {"dynamicRegistration": True},
                },
                "window": {"workDoneProgress": True},
            },
        }

    def _on_initialize_result(self, result: Future) -> None:
        err = result.exception()
        if err is not None:
            log.error("Initialization of %s failed: %s", self.name, err)
            self._fail_ready(err)
            return
        log.info("%s initialised; server capabilities: %s", self.name, list(((result.result() or {}).get("capabilities") or {}).keys()))
        self.send_notification("initialized", {})
        with self._ready_lock:
            if not self._ready.done():
                self._ready.set_result(None)

    def _fail_ready(self, err: Exception) -> None:
        with self._ready_lock:
            if not self._ready.done():
                self._ready.set_exception(err)

    def stop(self, timeout: float = 2.0) -> None:
        """
        Performs the shutdown sequence (if the server is still running) and terminates the server process.
        """
        self._is_shutting_down = True
        process = self.process
        if process is None:
            return
        if self.is_running() and self._ready.done() and self._ready.exception() is None:
            try:
                self.send_request("shutdown").result(timeout=timeout)
                self.send_notification("exit")
            except Exception as e:
                log.warning("Orderly shutdown of %s failed: %s", self.name, e)
        process.terminate()
        self._cancel_pending_requests(LanguageServerTerminatedException(f"{self.name} was stopped"))

    @staticmethod
    def _read_bytes(stream, num_bytes: int) -> bytes:
        """Read exactly num_bytes from the stream"""
        data = b""
        while len(data) < num_bytes:
            chunk = stream.read(num_bytes - len(data))
            if not chunk:
                raise LanguageServerTerminatedException(
                    f"Process terminated while trying to read response (read {len(data)} of {num_bytes} bytes before termination)"
                )
            data += chunk
        return data

    def _read_ls_process_stdout(self) -> None:
        """
        Continuously read from the language server process stdout and handle the messages
        invoking the registered response and notification handlers
        """
        exception: Exception | None = None
        stream = self.process.stdout if self.process else None
        try:
            while stream:
                line = stream.readline()
                if not line:
                    break
                try:
                    num_bytes = content_length(line)
                except ValueError:
                    continue
                if num_bytes is None:
                    continue
                while line and line.strip():
                    line = stream.readline()
                if not line:
                    break
                body = self._read_bytes(stream, num_bytes)
                self._handle_body(body)
        except LanguageServerTerminatedException as e:
            exception = e
        except (OSError, ValueError) as e:
            exception = LanguageServerTerminatedException("Language server process terminated while reading stdout", cause=e)
        log.info("Language server stdout reader thread has terminated")
        if exception is None:
            exception = LanguageServerTerminatedException("Language server stdout read process terminated unexpectedly")
        with self._response_handlers_lock:
            self._reader_exception = exception
        if not self._is_shutting_down:
            log.error(str(exception))
        self._cancel_pending_requests(exception)
        self._fail_ready(exception)

    def _handle_body(self, body: bytes) -> None:
        try:
            payload = json.loads(body.decode(ENCODING))
        except UnicodeDecodeError as ex:
            log.error("malformed %s: %s", ENCODING, ex)
            return
        except json.JSONDecodeError as ex:
            log.error("malformed JSON: %s", ex)
            return
        if not isinstance(payload, dict):
            log.error("Unexpected payload (not an object): %s", payload)
            return
        self._receive_payload(payload)

    def _receive_payload(self, payload: StringDict) -> None:
        """
        Determine if the payload received from server is for a request, response, or notification and invoke the appropriate handler
        """
        log.debug("LSP inbound payload method=%s id=%s", payload.get("method"), payload.get("id"))
        if "method" in payload:
            if "id" in payload:
                self._request_handler(payload)
            else:
                self._notification_handler(payload)
        elif "id" in payload:
            self._response_handler(payload)
        else:
            log.warning("Unknown payload type: %s", payload)

    def send_notification(self, method: str, params: dict | None = None) -> None:
        self._send_payload(make_notification(method, params))

    def send_request(
        self, method: str, params: dict | None = None, on_done: Callable[[Future[PayloadLike]], None] | None = None
    ) -> Future[PayloadLike]:
        """
        Sends a request to the server.

        :param on_done: a callback to attach to the future before the request is sent, such that it is guaranteed to run
            on the reader thread before any message following the response is handled
        :return: a future for the result, which fails with an LSPError if the server responds with an error, or with
            LanguageServerTerminatedException if the server terminates before responding
        """
        with self._request_id_lock:
            request_id = self._request_id
            self._request_id += 1

        request = Request(request_id=request_id, method=method)
        if on_done is not None:
            request.future.add_done_callback(on_done)
        with self._response_handlers_lock:
            accepted = self.is_running()
            if accepted:
                self._pending_requests[request_id] = request
        if not accepted:
            request.on_error(LanguageServerTerminatedException(f"Cannot send {method}: {self.name} is not running"))
            return request.future

        log.debug("Starting: %s", request)
        self._send_payload(make_request(method, request_id, params))
        return request.future

    def _send_payload(self, payload: StringDict) -> None:
        stream = self.process.stdin if self.process else None
        if stream is None:
            return
        msg = create_message(payload)
        # concurrent writes would interleave message fragments
        with self._stdin_lock:
            try:
                stream.writelines(msg)
                stream.flush()
            except (OSError, ValueError) as e:
                log.error("Failed to write to the stdin of %s: %s", self.name, e)

    def _cancel_pending_requests(self, exception: Exception) -> None:
        with self._response_handlers_lock:
            pending = list(self._pending_requests.values())
            self._pending_requests.clear()
        if pending:
            log.info("Cancelling %d pending language server requests", len(pending))
        for request in pending:
            request.on_error(exception)

    def on_request(self, method: str, cb: RequestHandler) -> None:
        """
        Register the callback function to handle requests from the server to the client for the given method
        """
        self._request_handlers[method] = cb

    def on_notification(self, method: str, cb: NotificationHandler) -> None:
        """
        Register the callback function to handle notifications from the server to the client for the given method
        """
        self._notification_handlers[method] = cb

    def _response_handler(self, response: StringDict) -> None:
        response_id = response["id"]
        with self._response_handlers_lock:
            request = self._pending_requests.pop(response_id, None)
            if request is None and isinstance(response_id, str) and response_id.isdigit():
                request = self._pending_requests.pop(int(response_id), None)
        if request is None:
            log.debug("No pending request for response ID %s", response_id)
            return

        if "error" in response:
            request.on_error(LSPError.from_lsp(response["error"]))
        elif "result" in response:
            request.on_result(response["result"])
        else:
            request.on_error(LSPError(ErrorCodes.InvalidRequest, "response has neither result nor error"))

    def _request_handler(self, request: StringDict) -> None:
        method = request.get("method", "")
        params = request.get("params")
        request_id = request.get("id")
        handler = self._request_handlers.get(method)
        if not handler:
            self._send_payload(make_error_response(request_id, LSPError(ErrorCodes.MethodNotFound, f"method '{method}' not handled on client.")))
            return
        try:
            self._send_payload(make_response(request_id, handler(params)))
        except LSPError as ex:
            self._send_payload(make_error_response(request_id, ex))
        except Exception as ex:
            self._send_payload(make_error_response(request_id, LSPError(ErrorCodes.InternalError, str(ex))))

    def _notification_handler(self, notification: StringDict) -> None:
        method = notification.get("method", "")
        params = notification.get("params")
        handler = self._notification_handlers.get(method)
        if not handler:
            log.debug("unhandled %s", method)
            return
        try:
            handler(params)
        except Exception as ex:
            log.error("Error handling notification %s: %s", method, ex, exc_info=ex)

    def _on_log_message(self, params: Any) -> None:
        if self.output_channel is not None and isinstance(params, dict):
            self.output_channel.append(f"{params.get('message', '')}\n")

    def _on_show_message(self, params: Any) -> None:
        if not isinstance(params, dict):
            return
        message_type = params.get("type", MessageType.info)
        message = params.get("message", "")
        log.log(logging.WARNING if message_type <= MessageType.warning else logging.INFO, "%s: %s", self.name, message)
        if self.output_channel is None:
            return
        self.output_channel.append(f"{message}\n")
        severity = {
            MessageType.error: RevealOutputChannelOn.ERROR,
            MessageType.warning: RevealOutputChannelOn.WARN,
        }.get(message_type, RevealOutputChannelOn.INFO)
        if self._options.reveal_output_channel_on <= severity:
            self.output_channel.show(preserve_focus=True)
