"""Tests for the two-tier command queue."""

from __future__ import annotations

import json

from ide_bridge.backend.command_queue import CommandQueue
from ide_bridge.backend.commands import DONE, Command
from ide_bridge.protocol import Request


def _cmd(name: str) -> Command:
    return Command(Request(f"Request{name}"), lambda acc, msg: DONE, label=name)


class _Wire:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def __call__(self, data: bytes) -> None:
        self.writes.append(data)

    @property
    def tags(self) -> list[str]:
        return [json.loads(w)["tag"] for w in self.writes]


def _queue() -> tuple[CommandQueue, _Wire]:
    wire = _Wire()
    return CommandQueue("test", writer=wire), wire


class TestAdvance:
    def test_first_enqueue_becomes_active_and_is_written(self) -> None:
        queue, wire = _queue()
        cmd = _cmd("A")
        queue.enqueue_back(cmd)
        assert queue.active is cmd
        assert wire.tags == ["RequestA"]
        assert not queue.back and not queue.front

    def test_one_write_per_activation(self) -> None:
        queue, wire = _queue()
        queue.enqueue_back(_cmd("A"))
        queue.enqueue_back(_cmd("B"))
        queue.enqueue_front(_cmd("C"))
        queue.advance()
        queue.advance()
        assert len(wire.writes) == 1
        assert wire.writes[0].endswith(b"\n")

    def test_advance_is_noop_while_active(self) -> None:
        queue, wire = _queue()
        queue.enqueue_back(_cmd("A"))
        assert queue.advance() is None
        assert wire.tags == ["RequestA"]

    def test_nothing_queued(self) -> None:
        queue, wire = _queue()
        assert queue.advance() is None
        assert queue.idle
        assert wire.writes == []

    def test_front_drains_before_back(self) -> None:
        queue, wire = _queue()
        blocker = _cmd("Blocker")
        queue.enqueue_back(blocker)
        queue.enqueue_back(_cmd("B1"))
        queue.enqueue_front(_cmd("F1"))
        queue.enqueue_back(_cmd("B2"))
        queue.enqueue_front(_cmd("F2"))

        order = []
        while queue.active is not None:
            order.append(queue.take_active().label)
            queue.advance()
        assert order == ["Blocker", "F1", "F2", "B1", "B2"]
        assert wire.tags == ["Request" + name for name in order]

    def test_back_promotion_is_one_at_a_time(self) -> None:
        queue, _ = _queue()
        queue.active = _cmd("Busy")
        for name in ("B1", "B2", "B3"):
            queue.back.append(_cmd(name))
        queue.take_active()
        queue.advance()
        assert queue.active.label == "B1"
        assert [c.label for c in queue.back] == ["B2", "B3"]
        assert not queue.front

    def test_idle_ignores_back_queue(self) -> None:
        queue, _ = _queue()
        queue.back.append(_cmd("B"))
        assert queue.idle


class TestNextActiveProperty:
    """With nothing active, the next command is Front's head, else Back's head."""

    def test_interleavings(self) -> None:
        sequences = [
            ["b:1", "f:2", "b:3"],
            ["f:1", "f:2", "b:3"],
            ["b:1", "b:2"],
            ["b:1", "b:2", "f:3", "b:4", "f:5"],
        ]
        for ops in sequences:
            queue, _ = _queue()
            queue.active = _cmd("Busy")
            for op in ops:
                side, name = op.split(":")
                (queue.front if side == "f" else queue.back).append(_cmd(name))

            expected_front = [n for s, n in (o.split(":") for o in ops) if s == "f"]
            expected_back = [n for s, n in (o.split(":") for o in ops) if s == "b"]
            expected = expected_front[0] if expected_front else expected_back[0]

            queue.take_active()
            queue.advance()
            assert queue.active.label == expected, ops


class TestPurgeAndReset:
    def test_purge_front_leaves_back(self) -> None:
        queue, _ = _queue()
        queue.active = _cmd("Busy")
        queue.front.extend([_cmd("F1"), _cmd("F2")])
        queue.back.append(_cmd("B1"))
        purged = queue.purge_front()
        assert [c.label for c in purged] == ["F1", "F2"]
        assert not queue.front
        assert [c.label for c in queue.back] == ["B1"]

    def test_reset_front_replaces_contents(self) -> None:
        queue, _ = _queue()
        queue.front.append(_cmd("Stale"))
        dropped = queue.reset_front([_cmd("Init")])
        assert [c.label for c in dropped] == ["Stale"]
        assert [c.label for c in queue.front] == ["Init"]

    def test_missing_writer_does_not_raise(self) -> None:
        queue = CommandQueue("test")
        queue.enqueue_back(_cmd("A"))
        assert queue.active is not None
