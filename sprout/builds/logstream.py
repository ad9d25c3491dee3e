"""Decoder for the container runtime's multiplexed output stream.

When a container runs without a TTY, its stdout and stderr arrive on one
connection as frames:

    byte 0      stream id (0 stdin, 1 stdout, 2 stderr)
    bytes 1-3   zero padding
    bytes 4-7   payload length, big-endian unsigned
    payload     that many bytes of output

Decoding stops cleanly at the first short header or payload read. Text
from an incomplete frame is never emitted.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol

logger = logging.getLogger(__name__)

HEADER = struct.Struct(">BxxxL")
HEADER_SIZE = HEADER.size


class StreamId(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


class Readable(Protocol):
    def read(self, n: int, /) -> bytes: ...


@dataclass(frozen=True)
class Frame:
    stream: int
    payload: bytes


def read_exactly(source: Readable, n: int) -> bytes:
    """Read up to ``n`` bytes, returning fewer only at end of stream."""
    chunks: list[bytes] = []
    remaining = n
    while remaining > 0:
        try:
            chunk = source.read(remaining)
        except OSError as e:
            logger.debug("Log stream closed while reading: %s", e)
            break
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def iter_frames(source: Readable) -> Iterator[Frame]:
    """Yield complete frames until the stream ends or is truncated."""
    while True:
        header = read_exactly(source, HEADER_SIZE)
        if len(header) < HEADER_SIZE:
            if header:
                logger.debug("Dropping truncated frame header (%d bytes)", len(header))
            return

        stream_id, size = HEADER.unpack(header)
        if size == 0:
            continue

        payload = read_exactly(source, size)
        if len(payload) < size:
            logger.debug("Dropping truncated frame payload (%d/%d bytes)", len(payload), size)
            return

        yield Frame(stream_id, payload)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").strip()


def iter_lines(source: Readable) -> Iterator[tuple[int, str]]:
    """Yield ``(stream id, line)`` pairs from a multiplexed stream.

    Lines are stripped and blank lines dropped. A line split across frames
    of the same stream is joined before it is yielded.
    """
    carry: dict[int, bytes] = {}

    for frame in iter_frames(source):
        data = carry.pop(frame.stream, b"") + frame.payload
        *complete, rest = data.split(b"\n")
        if rest:
            carry[frame.stream] = rest
        for raw in complete:
            line = _decode(raw)
            if line:
                yield frame.stream, line

    for stream_id, rest in carry.items():
        line = _decode(rest)
        if line:
            yield stream_id, line


__all__ = [
    "Frame",
    "HEADER",
    "HEADER_SIZE",
    "StreamId",
    "iter_frames",
    "iter_lines",
    "read_exactly",
]
