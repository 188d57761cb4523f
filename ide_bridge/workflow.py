"""Workflow layer — the request sequences built on the command queue.

Reload is the two-hop exchange::

    RequestUpdateSession  ->  progress* ... done
        (front) RequestGetSourceErrors  ->  diagnostics

The update's step queues the error fetch on the *front* queue before it
reports DONE, so the fetch goes out next, ahead of anything callers have
queued in the meantime.  The same shape works for any "act, wait for the
completion signal, then ask for the result" exchange.

Lookups (span info, expression types, loaded modules) are single hops.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Protocol

from . import protocol
from .backend import calls
from .backend.commands import CONTINUE, DONE, Command, Outcome, StepFunction, error
from .backend.supervisor import ProcessSupervisor, Session, SubmitStatus, TransportError
from .config import Project
from .formatter import Formatter, PlainFormatter
from .models import (
    Diagnostic,
    ExpType,
    Progress,
    Severity,
    SinkDiagnostic,
    Span,
    SpanInfo,
)

log = logging.getLogger(__name__)

ProgressSink = Callable[[int, int, str], None]
SummarySink = Callable[[str], None]


class DiagnosticsSink(Protocol):
    def deliver(self, diagnostics: list[SinkDiagnostic]) -> None:
        """Receive one complete diagnostics pass. Called once per reload."""
        ...


@dataclass
class ReloadState:
    """Accumulator shared by the update step and its error-fetch follow-up."""

    progress_reports: int = 0
    diagnostics: list[Diagnostic] | None = None
    # Set when a caller waits on the whole reload; handed to the error fetch
    fetched: asyncio.Future[None] | None = None


def to_sink(diag: Diagnostic, root: str) -> SinkDiagnostic:
    if diag.span is not None:
        return SinkDiagnostic(
            severity=diag.severity,
            line=diag.span.from_line,
            column=diag.span.from_col,
            message=diag.message,
            source=f"{root}/{diag.span.file_path}",
        )
    return SinkDiagnostic(diag.severity, 1, 1, diag.message, diag.location_text or root)


class Workflow:
    """Reload-and-diagnose plus lookups for the projects a supervisor runs.

    Installs its reload command as the supervisor's initial command, so
    every freshly started backend compiles the project and reports.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        progress: ProgressSink | None = None,
        summary: SummarySink | None = None,
        diagnostics: DiagnosticsSink | None = None,
        formatter: Formatter | None = None,
        show_messages: bool = False,
    ) -> None:
        self.supervisor = supervisor
        self.progress = progress
        self.summary = summary
        self.diagnostics = diagnostics
        self.formatter = formatter or PlainFormatter()
        self.show_messages = show_messages
        self.last_diagnostics: dict[str, list[Diagnostic]] = {}
        supervisor.initial_command = self.initial_command

    # ------------------------------------------------------------------
    # Reload + diagnostics
    # ------------------------------------------------------------------

    def initial_command(self, session: Session) -> Command:
        return self.reload_command(session.key)

    def reload_command(self, key: str, state: ReloadState | None = None) -> Command:
        return Command(
            protocol.update_session(),
            partial(self._on_update, key),
            accumulator=state or ReloadState(),
            label="update-session",
        )

    async def reload(self, project: Project) -> SubmitStatus:
        """Queue a reload; diagnostics go to the attached sinks when it finishes."""
        return await self.supervisor.submit(project, self.reload_command(project.key))

    async def check(self, project: Project) -> list[Diagnostic] | None:
        """Reload and wait for the resulting diagnostics.

        Returns None if the backend went away before reporting.  Raises
        CommandFailed if either the update or the error fetch failed.
        """
        fetched = asyncio.get_running_loop().create_future()
        state = ReloadState(fetched=fetched)
        if await calls.run(self.supervisor, project, self.reload_command(project.key, state)) is None:
            return None
        # run() returns once the queue is idle, so the error fetch has finished
        if fetched.done():
            fetched.result()
        return state.diagnostics

    def _on_update(self, key: str, state: ReloadState, message: protocol.Response) -> Outcome:
        if isinstance(message, protocol.InvalidRequest):
            return error(f"backend rejected update: {message.message}")
        if not isinstance(message, protocol.UpdateSession):
            return CONTINUE

        status = message.status
        if isinstance(status, Progress):
            state.progress_reports += 1
            log.debug("[%s] progress %d/%d %s", key, status.step, status.total, status.text)
            if self.progress is not None:
                self.progress(status.step, status.total, status.text)
            return CONTINUE

        if isinstance(status, protocol.UpdateDone):
            session = self.supervisor.session(key)
            session.enqueue_front(Command(
                protocol.get_source_errors(),
                partial(self._on_source_errors, key),
                accumulator=state,
                label="get-source-errors",
                waiter=state.fetched,
            ))
            return DONE

        log.debug("[%s] ignoring update status %s", key, status.tag)
        return CONTINUE

    def _on_source_errors(self, key: str, state: ReloadState, message: protocol.Response) -> Outcome:
        if not isinstance(message, protocol.SourceErrors):
            log.warning("[%s] expected source errors, got %s", key, type(message).__name__)
            return DONE

        found = message.errors
        state.diagnostics = found
        self.last_diagnostics[key] = found
        errors = [d for d in found if d.severity is Severity.ERROR]
        warnings = [d for d in found if d.severity is Severity.WARNING]
        log.info("[%s] %d error(s), %d warning(s)", key, len(errors), len(warnings))

        if self.summary is not None:
            self.summary(self.formatter.format_summary(
                errors, warnings, show_messages=self.show_messages,
            ))

        if self.diagnostics is not None:
            root = str(self.supervisor.session(key).project.root)
            records = [to_sink(d, root) for d in found]
            # The sink must never run inside the dispatch that produced it
            asyncio.get_running_loop().call_soon(self.diagnostics.deliver, records)

        return DONE

    # ------------------------------------------------------------------
    # Single-hop lookups
    # ------------------------------------------------------------------

    async def span_info(self, project: Project, span: Span) -> list[SpanInfo]:
        reply = await self._lookup(project, protocol.get_span_info(span), protocol.SpanInfoResult)
        return reply.records

    async def exp_types(self, project: Project, span: Span) -> list[ExpType]:
        reply = await self._lookup(project, protocol.get_exp_types(span), protocol.ExpTypesResult)
        return reply.records

    async def loaded_modules(self, project: Project) -> list[str]:
        reply = await self._lookup(project, protocol.get_loaded_modules(), protocol.LoadedModules)
        return sorted(reply.modules)

    async def _lookup(self, project: Project, request: protocol.Request, expected: type):
        reply = await calls.call(
            self.supervisor, project, request,
            step=_expect(expected), label=request.tag,
        )
        if reply is None:
            raise TransportError(project.key, SubmitStatus.RESTART_REQUIRED)
        return reply


def _expect(expected: type) -> StepFunction:
    """A step that keeps the first reply of the ``expected`` kind."""

    def step(box: list[protocol.Response], message: protocol.Response) -> Outcome:
        if isinstance(message, expected):
            box.append(message)
            return DONE
        if isinstance(message, (protocol.Welcome, protocol.LogMessage)):
            return CONTINUE
        if isinstance(message, protocol.InvalidRequest):
            return error(f"backend rejected request: {message.message}")
        return error(f"expected {expected.__name__}, got {type(message).__name__}")

    return step
