"""Wire codec for the backend's newline-delimited JSON protocol.

Every message in both directions is a ``{"tag": ..., "contents": ...}``
envelope on a line of its own.  Requests are built with the helpers below
and serialized by :meth:`Request.encode`.  Incoming lines are decoded into
one dataclass per response kind; a line that is not JSON, has no ``tag``,
or carries a tag we do not know is a :class:`ProtocolDecodeError` right
away rather than a ``KeyError`` somewhere down the line.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from .models import Diagnostic, ExpType, Progress, Severity, Span, SpanInfo


class ProtocolDecodeError(ValueError):
    """A line could not be decoded as a backend response."""


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Request:
    tag: str
    contents: Any = field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {"tag": self.tag, "contents": self.contents}

    def encode(self) -> bytes:
        return json.dumps(self.to_wire(), separators=(",", ":")).encode("utf-8") + b"\n"


def span_to_wire(span: Span) -> dict[str, Any]:
    return {
        "spanFilePath": span.file_path,
        "spanFromLine": span.from_line,
        "spanFromColumn": span.from_col,
        "spanToLine": span.to_line,
        "spanToColumn": span.to_col,
    }


def update_session() -> Request:
    return Request("RequestUpdateSession", [])


def get_source_errors() -> Request:
    return Request("RequestGetSourceErrors", [])


def get_span_info(span: Span) -> Request:
    return Request("RequestGetSpanInfo", span_to_wire(span))


def get_exp_types(span: Span) -> Request:
    return Request("RequestGetExpTypes", span_to_wire(span))


def get_loaded_modules() -> Request:
    return Request("RequestGetLoadedModules", [])


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Welcome:
    version: Any = None


@dataclass(frozen=True)
class UpdateDone:
    pass


@dataclass(frozen=True)
class UpdateOther:
    """An update status we have no special handling for."""

    tag: str
    contents: Any = None


UpdateStatus = Union[Progress, UpdateDone, UpdateOther]


@dataclass(frozen=True)
class UpdateSession:
    status: UpdateStatus


@dataclass(frozen=True)
class SourceErrors:
    errors: list[Diagnostic]


@dataclass(frozen=True)
class SpanInfoResult:
    records: list[SpanInfo]


@dataclass(frozen=True)
class ExpTypesResult:
    records: list[ExpType]


@dataclass(frozen=True)
class LoadedModules:
    modules: list[str]


@dataclass(frozen=True)
class LogMessage:
    text: str


@dataclass(frozen=True)
class InvalidRequest:
    message: str


Response = Union[
    Welcome,
    UpdateSession,
    SourceErrors,
    SpanInfoResult,
    ExpTypesResult,
    LoadedModules,
    LogMessage,
    InvalidRequest,
]


def decode_line(line: bytes) -> Response:
    """Decode one complete line of backend output."""
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolDecodeError(f"not a JSON value: {exc}") from exc
    return decode_response(data)


def decode_response(data: Any) -> Response:
    tag, contents = _envelope(data)
    decoder = _RESPONSE_DECODERS.get(tag)
    if decoder is None:
        raise ProtocolDecodeError(f"unknown response tag {tag!r}")
    try:
        return decoder(contents)
    except ProtocolDecodeError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ProtocolDecodeError(f"malformed {tag}: {exc!r}") from exc


# -- decoding helpers -------------------------------------------------------

def _envelope(data: Any) -> tuple[str, Any]:
    if not isinstance(data, dict):
        raise ProtocolDecodeError(f"expected an object, got {type(data).__name__}")
    tag = data.get("tag")
    if not isinstance(tag, str):
        raise ProtocolDecodeError("message has no 'tag'")
    return tag, data.get("contents")


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolDecodeError(f"expected an integer, got {value!r}")
    return value


def _str(value: Any) -> str:
    if not isinstance(value, str):
        raise ProtocolDecodeError(f"expected a string, got {value!r}")
    return value


def _list(value: Any) -> list[Any]:
    if not isinstance(value, list):
        raise ProtocolDecodeError(f"expected an array, got {value!r}")
    return value


def _span(obj: Any) -> Span:
    if not isinstance(obj, dict):
        raise ProtocolDecodeError(f"expected a span object, got {obj!r}")
    return Span(
        file_path=_str(obj["spanFilePath"]),
        from_line=_int(obj["spanFromLine"]),
        from_col=_int(obj["spanFromColumn"]),
        to_line=_int(obj["spanToLine"]),
        to_col=_int(obj["spanToColumn"]),
    )


def _either_span(obj: Any) -> tuple[Span | None, str | None]:
    """Decode a ``ProperSpan``/``TextSpan`` wrapper, or a bare span."""
    if isinstance(obj, dict) and "tag" in obj:
        tag = obj["tag"]
        if tag == "ProperSpan":
            return _span(obj.get("contents")), None
        if tag == "TextSpan":
            return None, _str(obj.get("contents"))
        raise ProtocolDecodeError(f"unknown span tag {tag!r}")
    return _span(obj), None


_SEVERITIES = {
    "KindError": Severity.ERROR,
    "KindServerDied": Severity.ERROR,
    "KindWarning": Severity.WARNING,
}


def _severity(kind: Any) -> Severity:
    try:
        return _SEVERITIES[kind]
    except (KeyError, TypeError):
        raise ProtocolDecodeError(f"unknown error kind {kind!r}") from None


def _update_status(contents: Any) -> UpdateStatus:
    tag, inner = _envelope(contents)
    if tag == "UpdateStatusProgress":
        return Progress(
            step=_int(inner["progressStep"]),
            total=_int(inner["progressNumSteps"]),
            text=inner.get("progressParsedMsg") or inner.get("progressOrigMsg") or "",
        )
    if tag == "UpdateStatusDone":
        return UpdateDone()
    return UpdateOther(tag, inner)


def _diagnostic(obj: dict[str, Any]) -> Diagnostic:
    span, text = _either_span(obj["errorSpan"])
    return Diagnostic(
        severity=_severity(obj["errorKind"]),
        message=_str(obj["errorMsg"]),
        span=span,
        location_text=text,
    )


def _span_info(pair: Any) -> SpanInfo:
    info, where = _list(pair)
    kind, contents = _envelope(info)
    if kind not in ("SpanId", "SpanQQ"):
        raise ProtocolDecodeError(f"unknown span info tag {kind!r}")
    prop = contents["idProp"]
    defined_in = prop.get("idDefinedIn") or {}
    package = defined_in.get("modulePackage") or {}
    definition, definition_text = (None, None)
    if prop.get("idDefSpan") is not None:
        definition, definition_text = _either_span(prop["idDefSpan"])
    return SpanInfo(
        kind=kind,
        name=_str(prop["idName"]),
        span=_span(where),
        namespace=prop.get("idSpace"),
        type=prop.get("idType"),
        module=defined_in.get("moduleName"),
        package=package.get("packageName"),
        definition=definition,
        definition_text=definition_text,
    )


def _exp_type(pair: Any) -> ExpType:
    type_text, where = _list(pair)
    return ExpType(type=_str(type_text), span=_span(where))


_RESPONSE_DECODERS: dict[str, Callable[[Any], Response]] = {
    "ResponseWelcome": lambda c: Welcome(c),
    "ResponseUpdateSession": lambda c: UpdateSession(_update_status(c)),
    "ResponseGetSourceErrors": lambda c: SourceErrors([_diagnostic(e) for e in _list(c)]),
    "ResponseGetSpanInfo": lambda c: SpanInfoResult([_span_info(r) for r in _list(c)]),
    "ResponseGetExpTypes": lambda c: ExpTypesResult([_exp_type(r) for r in _list(c)]),
    "ResponseGetLoadedModules": lambda c: LoadedModules([_str(m) for m in _list(c)]),
    "ResponseLog": lambda c: LogMessage(_str(c)),
    "ResponseInvalidRequest": lambda c: InvalidRequest(_str(c)),
}
