from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import NamedTuple


# ---------------------------------------------------------------------------
# Source locations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Span:
    """A source range. Lines and columns are 1-based; path is root-relative."""

    file_path: str
    from_line: int
    from_col: int
    to_line: int
    to_col: int

    @classmethod
    def point(cls, file_path: str, line: int, col: int) -> Span:
        return cls(file_path, line, col, line, col)

    def __str__(self) -> str:
        return f"{self.file_path}:{self.from_line}:{self.from_col}-{self.to_line}:{self.to_col}"


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

class Severity(enum.Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    message: str
    # None when the backend only gave a textual location
    span: Span | None = None
    location_text: str | None = None


class SinkDiagnostic(NamedTuple):
    """The shape handed to a diagnostics sink."""

    severity: Severity
    line: int
    column: int
    message: str
    source: str


# ---------------------------------------------------------------------------
# Progress and lookup results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Progress:
    step: int
    total: int
    text: str


@dataclass(frozen=True)
class SpanInfo:
    """What the backend knows about the identifier under a span."""

    kind: str                 # "SpanId" or "SpanQQ"
    name: str
    span: Span
    namespace: str | None = None
    type: str | None = None
    module: str | None = None
    package: str | None = None
    definition: Span | None = None
    definition_text: str | None = None


@dataclass(frozen=True)
class ExpType:
    type: str
    span: Span
