"""Bounded body retrieval: read a response stream up to a hard byte ceiling."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import BinaryIO

from core.errors import RequestCancelled, ResponseTooLarge, UpstreamUnavailable


CHUNK_SIZE = 8192


def iter_bounded(
    stream: BinaryIO,
    max_bytes: int,
    chunk_size: int = CHUNK_SIZE,
    cancelled: Callable[[], bool] | None = None,
) -> Iterator[bytes]:
    """
    Yield a stream's chunks until end-of-stream, failing past ``max_bytes``.

    Exactly ``max_bytes`` followed by end-of-stream is success. Any byte past
    the ceiling raises ResponseTooLarge. I/O errors (including socket
    timeouts) raise UpstreamUnavailable. ``cancelled`` is polled before every
    read and raises RequestCancelled once it returns True. The stream is not
    closed here.
    """
    if max_bytes < 0:
        raise ValueError("max_bytes must be >= 0")

    total = 0
    while True:
        if cancelled is not None and cancelled():
            raise RequestCancelled()
        # Ask for one byte beyond the remaining budget so an overflow is observable.
        want = min(chunk_size, max_bytes - total + 1)
        try:
            chunk = stream.read(want)
        except OSError as exc:
            raise UpstreamUnavailable(f"could not read gemini response: {exc}") from exc
        if not chunk:
            return
        total += len(chunk)
        if total > max_bytes:
            raise ResponseTooLarge()
        yield chunk


def read_bounded(
    stream: BinaryIO,
    max_bytes: int,
    chunk_size: int = CHUNK_SIZE,
    cancelled: Callable[[], bool] | None = None,
) -> bytes:
    """Buffer a whole stream through iter_bounded."""
    return b"".join(iter_bounded(stream, max_bytes, chunk_size, cancelled))
