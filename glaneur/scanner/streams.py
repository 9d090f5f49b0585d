"""Small stream wrappers used by the format decoders."""

import io
from typing import BinaryIO, Callable, Optional


def read_full(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short reads until EOF."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


class StreamReader(io.RawIOBase):
    """
    Base class for read-once wrappers around another binary stream.

    Subclasses implement ``read``; closing the wrapper closes the wrapped
    stream and then runs the optional ``on_close`` callback.
    """

    def __init__(self, stream: BinaryIO, on_close: Optional[Callable[[], None]] = None):
        self._stream = stream
        self._on_close = on_close

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._stream.close()
            finally:
                if self._on_close is not None:
                    self._on_close()
        super().close()


class PrefixedReader(StreamReader):
    """Serves already consumed header bytes before the rest of a stream."""

    def __init__(self, prefix: bytes, stream: BinaryIO):
        super().__init__(stream)
        self._prefix = prefix

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._prefix + self._stream.read()
            self._prefix = b''
            return data
        if self._prefix:
            data = self._prefix[:size]
            self._prefix = self._prefix[size:]
            return data
        return self._stream.read(size)


class LimitedReader(StreamReader):
    """Stops returning data once ``limit`` bytes have been read."""

    def __init__(self, stream: BinaryIO, limit: int):
        super().__init__(stream)
        self._remaining = limit

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b''
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._stream.read(size)
        self._remaining -= len(data)
        return data


class SwapReader(StreamReader):
    """
    Applies a byte-order swap to every complete 4-byte word of a stream.

    A trailing partial word is passed through unswapped.
    """

    def __init__(self, stream: BinaryIO, swap: Callable[[bytes], bytes], head: bytes = b''):
        super().__init__(stream)
        self._swap = swap
        self._tail = head
        self._out = bytearray()
        self._eof = False

    def _fill(self, wanted: int) -> None:
        while not self._eof and (wanted < 0 or len(self._out) < wanted):
            chunk = self._stream.read(max(wanted, 64 * 1024) if wanted > 0 else -1)
            if not chunk:
                self._eof = True
                self._out += self._tail
                self._tail = b''
                break
            data = self._tail + chunk
            complete = len(data) - len(data) % 4
            self._out += self._swap(data[:complete])
            self._tail = data[complete:]

    def read(self, size: int = -1) -> bytes:
        if size is None:
            size = -1
        self._fill(size)
        if size < 0:
            data = bytes(self._out)
            self._out.clear()
            return data
        data = bytes(self._out[:size])
        del self._out[:size]
        return data
