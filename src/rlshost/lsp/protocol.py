"""
JSON-RPC 2.0 message construction and Content-Length framing, as used by the language server protocol.
"""

import json
from enum import IntEnum
from typing import Any

ENCODING = "utf-8"

StringDict = dict[str, Any]
PayloadLike = list[StringDict] | StringDict | None


class ErrorCodes(IntEnum):
    ParseError = -32700
    InvalidRequest = -32600
    MethodNotFound = -32601
    InvalidParams = -32602
    InternalError = -32603
    ServerNotInitialized = -32002
    UnknownErrorCode = -32001
    RequestCancelled = -32800
    ContentModified = -32801


class MessageType(IntEnum):
    error = 1
    warning = 2
    info = 3
    log = 4


class LSPError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_lsp(self) -> StringDict:
        result: StringDict = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_lsp(cls, d: StringDict) -> "LSPError":
        return LSPError(d.get("code", ErrorCodes.UnknownErrorCode), d.get("message", ""), d.get("data"))

    def __str__(self) -> str:
        return f"{self.message} ({self.code})"


def make_response(request_id: Any, params: PayloadLike) -> StringDict:
    return {"jsonrpc": "2.0", "id": request_id, "result": params}


def make_error_response(request_id: Any, err: LSPError) -> StringDict:
    return {"jsonrpc": "2.0", "id": request_id, "error": err.to_lsp()}


def make_notification(method: str, params: PayloadLike) -> StringDict:
    result: StringDict = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        result["params"] = params
    return result


def make_request(method: str, request_id: Any, params: PayloadLike) -> StringDict:
    result: StringDict = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        result["params"] = params
    return result


def create_message(payload: PayloadLike) -> tuple[bytes, bytes, bytes]:
    body = json.dumps(payload, check_circular=False, ensure_ascii=False, separators=(",", ":")).encode(ENCODING)
    return (
        f"Content-Length: {len(body)}\r\n".encode(ENCODING),
        "Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n\r\n".encode(ENCODING),
        body,
    )


def content_length(line: bytes) -> int | None:
    """
    :param line: a header line, including its line terminator
    :return: the announced body length if the line is a Content-Length header, None otherwise
    """
    if line.startswith(b"Content-Length: "):
        _, value = line.split(b"Content-Length: ", 1)
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Invalid Content-Length header: {value!r}")
    return None
