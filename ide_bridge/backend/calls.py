"""Blocking helpers: submit a command and wait for the queue to settle.

There is no deadline.  A backend that stops answering without exiting
keeps the caller waiting; a backend that exits (or is restarted) releases
it with a ``None`` result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import Project
from ..protocol import Request, Response
from .commands import DONE, Command, Outcome, StepFunction
from .supervisor import ProcessSupervisor, Session, SubmitStatus, TransportError

log = logging.getLogger(__name__)

# How long one wait slice lasts before the queue is poked again
WAIT_SLICE = 0.05


async def run(
    supervisor: ProcessSupervisor,
    project: Project,
    cmd: Command,
    *,
    front: bool = False,
    wait_slice: float = WAIT_SLICE,
) -> Any:
    """Submit ``cmd`` and wait until it, and anything it queued up front, has run.

    Returns the command's accumulator, or None if the backend went away
    before the command finished.

    Raises:
        TransportError: the backend was not running (see ``SubmitStatus``).
        CommandFailed: the command ended with an Error outcome.
    """
    cmd.waiter = asyncio.get_running_loop().create_future()
    status = await supervisor.submit(project, cmd, front=front)
    if status is not SubmitStatus.QUEUED:
        raise TransportError(project.key, status)

    session = supervisor.session(project.key)
    incarnation = session.incarnation
    waiter = cmd.waiter

    while True:
        session.advance()
        if waiter.done() and (waiter.exception() is not None or session.queue.idle):
            break
        if not session.is_live() or session.incarnation != incarnation:
            log.warning("[%s] backend went away while waiting for %s", project.key, cmd.name)
            return None
        await session.wait_settled(wait_slice)

    # Raises CommandFailed for Error outcomes
    waiter.result()
    return cmd.accumulator


def _capture_first(box: list[Response], message: Response) -> Outcome:
    box.append(message)
    return DONE


async def call(
    supervisor: ProcessSupervisor,
    project: Project,
    request: Request,
    *,
    step: StepFunction | None = None,
    label: str | None = None,
) -> Response | None:
    """Send one request and return the reply it was answered with.

    By default the first decoded line is the reply.  A custom ``step`` gets
    the same single-slot list as accumulator and decides itself what to keep.
    """
    box: list[Response] = []
    cmd = Command(request, step or _capture_first, accumulator=box, label=label)
    if await run(supervisor, project, cmd) is None:
        return None
    return box[0] if box else None


async def settle(session: Session, *, wait_slice: float = WAIT_SLICE) -> bool:
    """Wait until the session has nothing active or queued.

    Returns False if the backend went away first.
    """
    while session.is_live():
        session.advance()
        queue = session.queue
        if queue.idle and not queue.back:
            return True
        await session.wait_settled(wait_slice)
    return False
