"""Commands and the continuation contract the dispatcher drives them through.

A :class:`Command` pairs a request with a *step* function and the caller's
accumulator.  The dispatcher calls ``step(accumulator, message)`` once per
decoded response line while the command is active; the step answers with an
:class:`Outcome`:

  - ``CONTINUE``   keep the command active and wait for more lines
  - ``DONE``       the exchange is finished
  - ``error(why)`` abort the exchange (purges the front queue)

Multi-round exchanges are built by enqueueing a follow-up on the front
queue from inside the step before returning ``DONE``.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Callable

from ..protocol import Request, Response


class OutcomeKind(enum.Enum):
    CONTINUE = "continue"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    reason: str | None = None

    @property
    def terminal(self) -> bool:
        return self.kind is not OutcomeKind.CONTINUE


CONTINUE = Outcome(OutcomeKind.CONTINUE)
DONE = Outcome(OutcomeKind.DONE)


def error(reason: str) -> Outcome:
    return Outcome(OutcomeKind.ERROR, reason)


StepFunction = Callable[[Any, Response], Outcome]


class FailureKind(str, enum.Enum):
    REJECTED = "rejected"                      # step returned error(...)
    DECODE = "decode-failure"
    HANDLER_FAULT = "handler-fault"
    CONTRACT_VIOLATION = "contract-violation"
    PURGED = "purged"                          # dropped with the front queue


class CommandFailed(Exception):
    """A command ended with an Error outcome."""

    def __init__(self, kind: FailureKind, reason: str, label: str | None = None) -> None:
        self.kind = kind
        self.reason = reason
        self.label = label
        where = f" ({label})" if label else ""
        super().__init__(f"{kind.value}{where}: {reason}")


@dataclass
class Command:
    payload: Request
    step: StepFunction
    accumulator: Any = None
    label: str | None = None
    # Set by blocking callers that want to observe the terminal outcome
    waiter: asyncio.Future[None] | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.label or self.payload.tag

    def resolve(self) -> None:
        if self.waiter is not None and not self.waiter.done():
            self.waiter.set_result(None)

    def fail(self, failure: CommandFailed) -> None:
        if self.waiter is not None and not self.waiter.done():
            self.waiter.set_exception(failure)
