"""
Typed payloads of the protocol messages exchanged with the RLS.

Payloads received from the server are validated against these models at the point where the
protocol client hands them to the progress tracker or the command bindings.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter


class Position(BaseModel):
    line: int
    """zero-based line"""
    character: int
    """zero-based UTF-16 code unit offset within the line"""


class Range(BaseModel):
    start: Position
    end: Position


class Location(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: str
    range: Range


class TextDocumentIdentifier(BaseModel):
    uri: str


class TextDocumentPositionParams(BaseModel):
    text_document: TextDocumentIdentifier
    position: Position

    def to_payload(self) -> dict[str, Any]:
        return {"textDocument": self.text_document.model_dump(), "position": self.position.model_dump()}


class DeglobParams(BaseModel):
    uri: str
    range: Range

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()


class BuildNotificationParams(BaseModel):
    """
    Payload of the build progress notifications. The RLS sends no parameters (or an empty object),
    any fields it may add are retained but not interpreted.
    """

    model_config = ConfigDict(extra="allow")

    @classmethod
    def parse(cls, params: Any) -> "BuildNotificationParams":
        return cls.model_validate(params if params is not None else {})


class BeginBuildParams(BuildNotificationParams):
    pass


class DiagnosticsEndParams(BuildNotificationParams):
    pass


LocationList = TypeAdapter(list[Location])


def parse_locations(payload: Any) -> list[Location]:
    """
    :param payload: the raw result of a request returning `Location[] | null`
    :return: the validated locations
    """
    if payload is None:
        return []
    return LocationList.validate_python(payload)
