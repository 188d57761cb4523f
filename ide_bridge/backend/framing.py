"""Line framing for backend stdout."""

from __future__ import annotations


class LineAssembler:
    """Turns arbitrary output chunks into complete lines.

    Works on bytes so a multi-byte character split across two reads is
    reassembled before anyone tries to decode it.  The trailing fragment
    after the last newline is kept until the next chunk completes it.
    """

    def __init__(self, terminator: bytes = b"\n") -> None:
        self._terminator = terminator
        self._buf = b""

    @property
    def pending(self) -> bytes:
        return self._buf

    def feed(self, chunk: bytes) -> list[bytes]:
        *lines, self._buf = (self._buf + chunk).split(self._terminator)
        return lines

    def reset(self) -> None:
        self._buf = b""
