"""Newline record framing for helper stdout byte streams."""

from __future__ import annotations

from collections.abc import Iterator

RECORD_DELIMITER = b"\n"


class RecordFramer:
    """Reassembles arbitrarily chunked bytes into delimiter-terminated records.

    Bytes are buffered eagerly on `feed`; the returned iterator drains complete
    records lazily. Partial trailing bytes stay buffered until a later chunk
    completes them. Empty records are dropped.
    """

    def __init__(self, delimiter: bytes = RECORD_DELIMITER) -> None:
        if not delimiter:
            raise ValueError("delimiter must be non-empty")
        self._delimiter = delimiter
        self._buffer = bytearray()
        # Offset up to which the buffer is known to contain no delimiter.
        self._scan_from = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet returned as a record."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        self._buffer.extend(chunk)
        return self._drain()

    def reset(self) -> None:
        self._buffer.clear()
        self._scan_from = 0

    def _drain(self) -> Iterator[bytes]:
        delimiter_len = len(self._delimiter)
        while True:
            buffer_len = len(self._buffer)
            start = min(self._scan_from, buffer_len)
            end = self._buffer.find(self._delimiter, start, buffer_len)
            if end < 0:
                # A delimiter may straddle the boundary of the next chunk.
                self._scan_from = max(0, buffer_len - delimiter_len + 1)
                return
            record = bytes(self._buffer[:end])
            del self._buffer[: end + delimiter_len]
            self._scan_from = 0
            if record:
                yield record
