"""Dispatcher — drives decoded backend lines into the active command's step."""

from __future__ import annotations

import logging
from typing import Callable

from ..protocol import ProtocolDecodeError, decode_line
from .command_queue import CommandQueue
from .commands import (
    Command,
    CommandFailed,
    FailureKind,
    Outcome,
    OutcomeKind,
    error,
)

log = logging.getLogger(__name__)


class Dispatcher:
    """Feeds complete lines to the active command, one line at a time.

    ``on_settled`` fires after every terminal outcome (once the queue has
    advanced), ``on_failure`` after every failed command.
    """

    def __init__(
        self,
        queue: CommandQueue,
        *,
        on_settled: Callable[[], None] | None = None,
        on_failure: Callable[[CommandFailed], None] | None = None,
    ) -> None:
        self.queue = queue
        self.on_settled = on_settled
        self.on_failure = on_failure

    @property
    def label(self) -> str:
        return self.queue.label

    def dispatch(self, lines: list[bytes]) -> None:
        for index, line in enumerate(lines):
            if not line.strip():
                log.debug("[%s] skipping blank line", self.label)
                continue

            active = self.queue.active
            if active is None:
                log.warning("[%s] no active command, discarding: %s", self.label, _preview(line))
                continue

            outcome, kind = self._step(active, line)
            if not outcome.terminal:
                continue

            self.queue.take_active()
            extraneous = [rest for rest in lines[index + 1:] if rest.strip()]
            if extraneous:
                log.warning(
                    "[%s] %d extraneous line(s) after %s finished: %s",
                    self.label, len(extraneous), active.name, _preview(extraneous[0]),
                )

            if outcome.kind is OutcomeKind.DONE:
                log.debug("[%s] %s done", self.label, active.name)
                active.resolve()
            else:
                self._fail(active, CommandFailed(kind, outcome.reason or "", active.name))

            self.queue.advance()
            if self.on_settled is not None:
                self.on_settled()
            return

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _step(self, cmd: Command, line: bytes) -> tuple[Outcome, FailureKind]:
        try:
            message = decode_line(line)
        except ProtocolDecodeError as exc:
            return error(f"{exc} in {_preview(line)!r}"), FailureKind.DECODE

        try:
            outcome = cmd.step(cmd.accumulator, message)
        except Exception as exc:
            log.exception("[%s] step for %s raised", self.label, cmd.name)
            return error(repr(exc)), FailureKind.HANDLER_FAULT

        if not isinstance(outcome, Outcome):
            return (
                error(f"step for {cmd.name} returned {outcome!r}"),
                FailureKind.CONTRACT_VIOLATION,
            )
        return outcome, FailureKind.REJECTED

    def _fail(self, cmd: Command, failure: CommandFailed) -> None:
        log.error("[%s] %s", self.label, failure)
        cmd.fail(failure)

        purged = self.queue.purge_front()
        if purged:
            log.warning("[%s] dropped %d front command(s)", self.label, len(purged))
        for dropped in purged:
            dropped.fail(CommandFailed(FailureKind.PURGED, str(failure), dropped.name))

        if self.on_failure is not None:
            self.on_failure(failure)


def _preview(line: bytes, limit: int = 200) -> str:
    return line[:limit].decode("utf-8", errors="replace")
