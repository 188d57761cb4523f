"""Two-tier command queue with a single active slot."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Iterable

from .commands import Command

log = logging.getLogger(__name__)

Writer = Callable[[bytes], None]


class CommandQueue:
    """Front (priority) and back (ordinary) FIFOs feeding one active command.

    The writer is only ever called from :meth:`advance`, once per command
    that becomes active, so requests reach the backend in dequeue order.
    """

    def __init__(self, label: str, writer: Writer | None = None) -> None:
        self.label = label
        self.writer = writer
        self.front: deque[Command] = deque()
        self.back: deque[Command] = deque()
        self.active: Command | None = None

    @property
    def idle(self) -> bool:
        """No active command and nothing queued ahead of the back queue."""
        return self.active is None and not self.front

    def enqueue_front(self, cmd: Command) -> None:
        self.front.append(cmd)
        self.advance()

    def enqueue_back(self, cmd: Command) -> None:
        self.back.append(cmd)
        self.advance()

    def advance(self) -> Command | None:
        """Make the next command active and send it. Returns it, if any."""
        if self.active is not None:
            if self.front:
                log.debug(
                    "[%s] %s still active, %d front command(s) waiting",
                    self.label, self.active.name, len(self.front),
                )
            return None

        if not self.front and self.back:
            self.front.append(self.back.popleft())

        if not self.front:
            return None

        cmd = self.front.popleft()
        self.active = cmd
        data = cmd.payload.encode()
        log.info("[%s] -> %s", self.label, data.decode("utf-8").rstrip())
        if self.writer is None:
            log.warning("[%s] no backend input attached, %s not sent", self.label, cmd.name)
        else:
            self.writer(data)
        return cmd

    def take_active(self) -> Command | None:
        cmd, self.active = self.active, None
        return cmd

    def purge_front(self) -> list[Command]:
        purged = list(self.front)
        self.front.clear()
        return purged

    def reset_front(self, commands: Iterable[Command] = ()) -> list[Command]:
        """Replace the front queue wholesale. Returns the dropped commands."""
        dropped = self.purge_front()
        self.front.extend(commands)
        return dropped
