"""Process Supervisor — one backend process and command session per project."""

from __future__ import annotations

import asyncio
import enum
import logging
import shlex
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..config import Project
from .command_queue import CommandQueue
from .commands import Command, CommandFailed, FailureKind
from .dispatcher import Dispatcher
from .framing import LineAssembler

log = logging.getLogger(__name__)


class SubmitStatus(str, enum.Enum):
    QUEUED = "queued"
    AUTO_STARTED = "auto_started"
    RESTART_REQUIRED = "restart_required"


class TransportError(RuntimeError):
    """A command was submitted while the backend was not running."""

    def __init__(self, key: str, status: SubmitStatus) -> None:
        self.key = key
        self.status = status
        if status is SubmitStatus.AUTO_STARTED:
            msg = f"Backend for '{key}' was not running; it has been started, try again shortly"
        else:
            msg = f"Backend for '{key}' is not running; restart it manually"
        super().__init__(msg)


@dataclass
class RingBuffer:
    """Fixed-size ring buffer for backend stderr."""

    max_size: int = 100_000  # characters
    _buf: deque[str] = field(default_factory=deque)
    _total_chars: int = 0

    def append(self, data: str) -> None:
        self._buf.append(data)
        self._total_chars += len(data)
        while self._total_chars > self.max_size and self._buf:
            evicted = self._buf.popleft()
            self._total_chars -= len(evicted)

    def tail(self, num_chars: int = 2000) -> str:
        """Return the last `num_chars` characters of buffered output."""
        return "".join(self._buf)[-num_chars:] if num_chars > 0 else ""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class Session:
    """Everything belonging to one project's backend.

    The object lives for as long as the supervisor does; stop and restart
    reset its fields but never replace it.
    """

    def __init__(self, project: Project) -> None:
        self.project = project
        self.process: asyncio.subprocess.Process | None = None
        self.assembler = LineAssembler()
        self.queue = CommandQueue(project.key, writer=self._write)
        self.dispatcher = Dispatcher(
            self.queue,
            on_settled=self._mark_settled,
            on_failure=self._record_failure,
        )
        self.tried_auto_start = False
        self.stopping = False
        # Bumped on every spawn so waiters can tell the process they sent to is gone
        self.incarnation = 0
        self.exit_code: int | None = None
        self.start_time: float | None = None
        self.last_failure: CommandFailed | None = None
        self.stderr_buf = RingBuffer()
        self._settled = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def key(self) -> str:
        return self.project.key

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    def is_live(self) -> bool:
        return self.process is not None and self.process.returncode is None

    # -- command side ---------------------------------------------------

    def enqueue_front(self, cmd: Command) -> None:
        self.queue.enqueue_front(cmd)

    def enqueue_back(self, cmd: Command) -> None:
        self.queue.enqueue_back(cmd)

    def advance(self) -> None:
        self.queue.advance()

    async def wait_settled(self, timeout: float) -> bool:
        """Wait up to ``timeout`` for a command to finish or the process to exit."""
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            self._settled.clear()

    # -- output side ----------------------------------------------------

    def feed(self, chunk: bytes) -> None:
        self.dispatcher.dispatch(self.assembler.feed(chunk))

    # -- lifecycle ------------------------------------------------------

    def attach(self, process: asyncio.subprocess.Process, initial: Command | None) -> None:
        self.reset()
        self.process = process
        self.incarnation += 1
        self.exit_code = None
        self.start_time = time.time()
        dropped = self.queue.reset_front([initial] if initial is not None else [])
        for cmd in dropped:
            cmd.fail(CommandFailed(FailureKind.PURGED, "backend restarted", cmd.name))

    def reset(self) -> None:
        """Forget the active command and any partial line. Queues are kept."""
        abandoned = self.queue.take_active()
        if abandoned is not None:
            log.info("[%s] abandoning active %s", self.key, abandoned.name)
        self.assembler.reset()

    def _write(self, data: bytes) -> None:
        if self.process is None or self.process.stdin is None:
            log.warning("[%s] backend has no input stream, request dropped", self.key)
            return
        try:
            self.process.stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as exc:
            log.warning("[%s] write to backend failed: %s", self.key, exc)

    def _mark_settled(self) -> None:
        self._settled.set()

    def _record_failure(self, failure: CommandFailed) -> None:
        self.last_failure = failure


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------

Spawner = Callable[[list[str], Path], Awaitable[Any]]
InitialCommand = Callable[[Session], "Command | None"]


async def spawn_backend(argv: list[str], cwd: Path) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd),
        # Keep terminal signals aimed at us away from the backend
        start_new_session=True,
    )


class ProcessSupervisor:
    """Registry of per-project sessions and their backend processes."""

    def __init__(
        self,
        argv_for: Callable[[Project], list[str]],
        *,
        initial_command: InitialCommand | None = None,
        spawn: Spawner = spawn_backend,
        stop_timeout: float = 10.0,
    ) -> None:
        self._argv_for = argv_for
        self.initial_command = initial_command
        self._spawn = spawn
        self._stop_timeout = stop_timeout
        self._sessions: dict[str, Session] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def session(self, key: str) -> Session:
        if key not in self._sessions:
            raise KeyError(f"No session for project '{key}'")
        return self._sessions[key]

    def is_live(self, key: str) -> bool:
        session = self._sessions.get(key)
        return session is not None and session.is_live()

    async def start(self, project: Project) -> Session:
        """Start the backend for a project. Idempotent: a running session is returned as-is."""
        session = self._sessions.get(project.key)
        if session is None:
            session = Session(project)
            self._sessions[project.key] = session
        if session.is_live():
            return session

        argv = self._argv_for(project)
        log.info("[%s] starting backend: %s (cwd=%s)", project.key, shlex.join(argv), project.root)
        # Spawn failures propagate to the caller
        process = await self._spawn(argv, project.root)

        initial = self.initial_command(session) if self.initial_command else None
        session.attach(process, initial)
        session._tasks = [
            asyncio.create_task(
                self._read_stdout(session, process), name=f"{project.key}-stdout",
            ),
            asyncio.create_task(
                self._read_stderr(session, process), name=f"{project.key}-stderr",
            ),
            asyncio.create_task(
                self._wait_for_exit(session, process), name=f"{project.key}-waiter",
            ),
        ]
        log.info("[%s] backend running (pid=%s)", project.key, process.pid)

        session.advance()
        return session

    async def stop(self, key: str, force: bool = False) -> Session:
        """Stop a project's backend. Sends SIGTERM, waits, then SIGKILL.

        The active command is abandoned; both queues are left alone.
        """
        session = self.session(key)
        session.reset()

        proc = session.process
        if proc is None or proc.returncode is not None:
            return session

        log.info("[%s] stopping backend (pid=%s)", key, proc.pid)
        session.stopping = True
        try:
            if force:
                proc.kill()
            else:
                proc.terminate()
        except ProcessLookupError:
            pass

        if not force:
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                log.warning("[%s] backend ignored SIGTERM, killing", key)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            log.error("[%s] backend (pid=%s) did not exit", key, proc.pid)

        for task in session._tasks:
            task.cancel()
        session._tasks = []
        session.exit_code = proc.returncode
        session.stopping = False
        return session

    async def restart(self, project: Project) -> Session:
        session = self._sessions.get(project.key)
        if session is not None:
            await self.stop(project.key)
            session.tried_auto_start = False
        return await self.start(project)

    async def stop_all(self) -> None:
        """Stop all running backends."""
        for key in list(self._sessions):
            if self.is_live(key):
                try:
                    await self.stop(key)
                except Exception:
                    log.exception("[%s] failed to stop backend", key)

    async def submit(self, project: Project, cmd: Command, *, front: bool = False) -> SubmitStatus:
        """Queue a command, or start the backend if it is not running.

        A command submitted to a dead backend is not queued.  The first time
        that happens for a session the backend is started; after that the
        caller is told to restart it by hand.
        """
        session = self._sessions.get(project.key)
        if session is not None and session.is_live():
            if front:
                session.enqueue_front(cmd)
            else:
                session.enqueue_back(cmd)
            return SubmitStatus.QUEUED

        if session is None:
            session = Session(project)
            self._sessions[project.key] = session

        if not session.tried_auto_start:
            session.tried_auto_start = True
            log.info("[%s] backend not running, starting it", project.key)
            await self.start(project)
            return SubmitStatus.AUTO_STARTED

        log.warning("[%s] backend not running, %s not sent", project.key, cmd.name)
        return SubmitStatus.RESTART_REQUIRED

    def status(self) -> list[dict[str, Any]]:
        """Return summary info for all sessions."""
        result = []
        for session in self._sessions.values():
            uptime = None
            if session.is_live() and session.start_time is not None:
                uptime = round(time.time() - session.start_time, 1)
            queue = session.queue
            result.append({
                "project": session.key,
                "root": str(session.project.root),
                "pid": session.pid,
                "live": session.is_live(),
                "exit_code": session.exit_code,
                "uptime_seconds": uptime,
                "active": queue.active.name if queue.active else None,
                "front": len(queue.front),
                "back": len(queue.back),
                "last_failure": str(session.last_failure) if session.last_failure else None,
            })
        return result

    def get_output(self, key: str, tail: int = 2000) -> dict[str, Any]:
        """Retrieve buffered stderr from a project's backend."""
        session = self.session(key)
        return {
            "project": key,
            "live": session.is_live(),
            "pid": session.pid,
            "stderr": session.stderr_buf.tail(tail),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _read_stdout(session: Session, process: Any) -> None:
        try:
            while True:
                chunk = await process.stdout.read(4096)
                if not chunk:
                    break
                session.feed(chunk)
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("[%s] stdout reader failed", session.key)

    @staticmethod
    async def _read_stderr(session: Session, process: Any) -> None:
        try:
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    break
                text = chunk.decode("utf-8", errors="replace")
                session.stderr_buf.append(text)
                log.debug("[%s] stderr: %s", session.key, text.rstrip())
        except asyncio.CancelledError:
            pass

    @staticmethod
    async def _wait_for_exit(session: Session, process: Any) -> None:
        code = await process.wait()
        if session.process is not process:
            return
        session.exit_code = code
        if session.stopping:
            log.info("[%s] backend stopped (code %s)", session.key, code)
        else:
            log.warning("[%s] backend exited with code %s", session.key, code)
        session._mark_settled()
