"""Tests for line framing of backend output."""

from __future__ import annotations

import json

from ide_bridge.backend.framing import LineAssembler
from ide_bridge.protocol import decode_line


STREAM = (
    json.dumps({"tag": "ResponseGetLoadedModules", "contents": ["Main", "Lib.Foo"]}).encode()
    + b"\n"
    + json.dumps({"tag": "ResponseLog", "contents": "naïve → λ"}, ensure_ascii=False).encode()
    + b"\n"
    + b'{"tag":"ResponseUpdateSession","contents":{"tag":"UpdateStatusDone"}}\n'
)


def _feed_all(chunks: list[bytes]) -> list[bytes]:
    assembler = LineAssembler()
    lines: list[bytes] = []
    for chunk in chunks:
        lines.extend(assembler.feed(chunk))
    assert assembler.pending == b""
    return lines


class TestLineAssembler:
    def test_whole_lines(self) -> None:
        assembler = LineAssembler()
        assert assembler.feed(b"one\ntwo\n") == [b"one", b"two"]
        assert assembler.pending == b""

    def test_partial_line_is_kept(self) -> None:
        assembler = LineAssembler()
        assert assembler.feed(b'{"tag":') == []
        assert assembler.pending == b'{"tag":'
        assert assembler.feed(b'"x"}\n{"ta') == [b'{"tag":"x"}']
        assert assembler.pending == b'{"ta'

    def test_empty_chunk(self) -> None:
        assembler = LineAssembler()
        assert assembler.feed(b"") == []

    def test_lone_terminator_yields_empty_line(self) -> None:
        assembler = LineAssembler()
        assert assembler.feed(b"\n") == [b""]

    def test_reset_drops_fragment(self) -> None:
        assembler = LineAssembler()
        assembler.feed(b"half a li")
        assembler.reset()
        assert assembler.feed(b"ne\n") == [b"ne"]


class TestChunkingInvariance:
    """Splitting a stream differently must never change what comes out."""

    def test_every_two_way_split(self) -> None:
        expected = _feed_all([STREAM])
        assert len(expected) == 3
        for cut in range(len(STREAM) + 1):
            assert _feed_all([STREAM[:cut], STREAM[cut:]]) == expected

    def test_byte_at_a_time(self) -> None:
        chunks = [STREAM[i:i + 1] for i in range(len(STREAM))]
        assert _feed_all(chunks) == _feed_all([STREAM])

    def test_split_inside_multibyte_character_still_decodes(self) -> None:
        cut = STREAM.index("λ".encode()) + 1
        lines = _feed_all([STREAM[:cut], STREAM[cut:]])
        decoded = [decode_line(line) for line in lines]
        assert decoded[1].text == "naïve → λ"

    def test_decoded_messages_match_across_splits(self) -> None:
        whole = [decode_line(line) for line in _feed_all([STREAM])]
        for size in (1, 2, 3, 7, 16, 64):
            chunks = [STREAM[i:i + size] for i in range(0, len(STREAM), size)]
            assert [decode_line(line) for line in _feed_all(chunks)] == whole
