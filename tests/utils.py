"""Shared test utilities: a scripted stand-in for the backend process."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

from ide_bridge.config import Project

Responder = Callable[[dict[str, Any]], list[Any]]


# ---------------------------------------------------------------------------
# Wire message builders
# ---------------------------------------------------------------------------


def wire_span(path: str, fl: int, fc: int, tl: int, tc: int) -> dict[str, Any]:
    return {
        "spanFilePath": path,
        "spanFromLine": fl,
        "spanFromColumn": fc,
        "spanToLine": tl,
        "spanToColumn": tc,
    }


def progress(step: int, total: int, text: str = "Compiling") -> dict[str, Any]:
    return {
        "tag": "ResponseUpdateSession",
        "contents": {
            "tag": "UpdateStatusProgress",
            "contents": {
                "progressStep": step,
                "progressNumSteps": total,
                "progressParsedMsg": text,
            },
        },
    }


def update_done() -> dict[str, Any]:
    return {"tag": "ResponseUpdateSession", "contents": {"tag": "UpdateStatusDone"}}


def source_error(kind: str, path: str, line: int, col: int, msg: str) -> dict[str, Any]:
    return {
        "errorKind": kind,
        "errorSpan": {"tag": "ProperSpan", "contents": wire_span(path, line, col, line, col + 3)},
        "errorMsg": msg,
    }


def source_errors(*errors: dict[str, Any]) -> dict[str, Any]:
    return {"tag": "ResponseGetSourceErrors", "contents": list(errors)}


def loaded_modules(*names: str) -> dict[str, Any]:
    return {"tag": "ResponseGetLoadedModules", "contents": list(names)}


def make_project(tmp_path: Path, key: str = "demo") -> Project:
    root = tmp_path / key
    root.mkdir(parents=True, exist_ok=True)
    manifest = root / f"{key}.cabal"
    manifest.write_text(f"name: {key}\n")
    return Project(key=key, root=root, manifest=manifest)


def standard_responder(
    errors: list[dict[str, Any]] | None = None,
    modules: list[str] | None = None,
) -> Responder:
    """Answer every request the way a healthy backend would."""

    def respond(request: dict[str, Any]) -> list[Any]:
        tag = request["tag"]
        if tag == "RequestUpdateSession":
            return [progress(1, 2, "Compiling A"), progress(2, 2, "Compiling B"), update_done()]
        if tag == "RequestGetSourceErrors":
            return [source_errors(*(errors or []))]
        if tag == "RequestGetLoadedModules":
            return [loaded_modules(*(modules or []))]
        if tag == "RequestGetExpTypes":
            return [{"tag": "ResponseGetExpTypes", "contents": []}]
        if tag == "RequestGetSpanInfo":
            return [{"tag": "ResponseGetSpanInfo", "contents": []}]
        return [{"tag": "ResponseInvalidRequest", "contents": f"unknown request {tag}"}]

    return respond


# ---------------------------------------------------------------------------
# Fake process
# ---------------------------------------------------------------------------


class FakeStdin:
    def __init__(self, process: FakeProcess) -> None:
        self.process = process
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.writes.append(data)
        self.process.received(data)


class FakeProcess:
    """Looks enough like ``asyncio.subprocess.Process`` for the supervisor.

    Requests written to stdin are recorded; if a responder is set, its
    replies are queued on stdout for the reader task to pick up.
    """

    def __init__(self, pid: int, responder: Responder | None = None) -> None:
        self.pid = pid
        self.responder = responder
        self.stdin = FakeStdin(self)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.requests: list[dict[str, Any]] = []
        self._exited = asyncio.Event()

    @property
    def tags(self) -> list[str]:
        return [r["tag"] for r in self.requests]

    def received(self, data: bytes) -> None:
        self.requests.append(json.loads(data))
        if self.responder is not None:
            self.emit(*self.responder(self.requests[-1]))

    def emit(self, *messages: Any) -> None:
        for message in messages:
            if isinstance(message, bytes):
                self.stdout.feed_data(message)
            else:
                self.stdout.feed_data(json.dumps(message).encode() + b"\n")

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode  # type: ignore[return-value]


class FakeBackend:
    """Spawn hook for ProcessSupervisor that hands out FakeProcesses."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.processes: list[FakeProcess] = []
        self.spawned: list[tuple[list[str], Path]] = []
        self.fail_with: Exception | None = None

    @property
    def latest(self) -> FakeProcess:
        return self.processes[-1]

    async def __call__(self, argv: list[str], cwd: Path) -> FakeProcess:
        self.spawned.append((argv, cwd))
        if self.fail_with is not None:
            raise self.fail_with
        process = FakeProcess(4000 + len(self.processes), self.responder)
        self.processes.append(process)
        return process


async def drain(rounds: int = 20) -> None:
    """Let reader tasks and call_soon callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
