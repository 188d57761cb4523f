"""Formatter — renders diagnostics and lookup results as text.

The workflow layer only knows *what* it found; a Formatter decides how it
reads on a given surface.  The terminal gets :class:`PlainFormatter`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Diagnostic, ExpType, Severity, SpanInfo

NO_INFORMATION = "No information available."

# Maximum characters to show for a single diagnostic message
_MESSAGE_MAX_CHARS = 2000


def _location(diag: Diagnostic) -> str:
    if diag.span is not None:
        return f"{diag.span.file_path}:{diag.span.from_line}:{diag.span.from_col}"
    return diag.location_text or "<unknown>"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class Formatter(ABC):
    """Render workflow results into surface-specific strings."""

    @abstractmethod
    def format_summary(
        self,
        errors: list[Diagnostic],
        warnings: list[Diagnostic],
        *,
        show_messages: bool = False,
    ) -> str:
        """Counts, and optionally the full messages, of one diagnostics pass."""
        ...

    @abstractmethod
    def format_span_info(self, records: list[SpanInfo]) -> str:
        ...

    @abstractmethod
    def format_exp_types(self, records: list[ExpType]) -> str:
        ...

    @abstractmethod
    def format_modules(self, modules: list[str]) -> str:
        ...


# ---------------------------------------------------------------------------
# Terminal implementation
# ---------------------------------------------------------------------------


class PlainFormatter(Formatter):
    """Render for a plain terminal, compiler-style."""

    def format_summary(
        self,
        errors: list[Diagnostic],
        warnings: list[Diagnostic],
        *,
        show_messages: bool = False,
    ) -> str:
        if not errors and not warnings:
            return "OK."

        header = f"{_plural(len(errors), 'error')}, {_plural(len(warnings), 'warning')}."
        if not show_messages:
            return header

        lines = [header]
        for diag in errors + warnings:
            label = "error" if diag.severity is Severity.ERROR else "warning"
            message = diag.message.strip()
            if len(message) > _MESSAGE_MAX_CHARS:
                message = message[:_MESSAGE_MAX_CHARS] + "…"
            lines.append(f"{_location(diag)}: {label}:\n{message}")
        return "\n\n".join(lines)

    def format_span_info(self, records: list[SpanInfo]) -> str:
        if not records:
            return NO_INFORMATION

        lines = []
        for info in records:
            head = info.name
            if info.type:
                head += f" :: {info.type}"
            if info.kind == "SpanQQ":
                head = f"[quasi-quote] {head}"
            lines.append(head)

            origin = info.module
            if origin and info.package:
                origin = f"{origin} ({info.package})"
            if origin:
                lines.append(f"  defined in {origin}")
            if info.definition is not None:
                lines.append(f"  at {info.definition}")
            elif info.definition_text:
                lines.append(f"  at {info.definition_text}")
        return "\n".join(lines)

    def format_exp_types(self, records: list[ExpType]) -> str:
        if not records:
            return NO_INFORMATION
        # The backend lists the innermost expression first
        return "\n".join(f"{rec.span}: {rec.type}" for rec in records)

    def format_modules(self, modules: list[str]) -> str:
        if not modules:
            return NO_INFORMATION
        return "\n".join(modules)
