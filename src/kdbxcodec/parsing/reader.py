"""Sequential, forward-only byte cursor.

ByteReader reads from either an in-memory buffer or a binary file object.
Short reads at end of input are reported with EOFError by read_exact()
and the fixed-width integer helpers; read() simply returns what's left.
"""

from __future__ import annotations

import io
import struct
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Self


class ByteReader:
    """Forward-only reader over bytes or a binary stream.

    Example:
        >>> reader = ByteReader(b"\\x01\\x00\\x00\\x00rest")
        >>> reader.read_uint32()
        1
        >>> reader.read_to_end()
        b'rest'
    """

    def __init__(self, source: bytes | bytearray | memoryview | BinaryIO) -> None:
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._stream: BinaryIO = io.BytesIO(bytes(source))
            self._owns_stream = True
        else:
            self._stream = source
            self._owns_stream = False
        self._offset = 0
        self._recording: bytearray | None = None
        self._peeked = b""

    @classmethod
    def open_file(cls, path: str | Path) -> ByteReader:
        """Open a file for reading; the reader owns (and closes) it."""
        reader = cls(Path(path).open("rb"))
        reader._owns_stream = True
        return reader

    @property
    def offset(self) -> int:
        """Number of bytes consumed so far."""
        return self._offset

    def read(self, n: int) -> bytes:
        """Read up to n bytes; fewer are returned only at end of input."""
        if n <= 0:
            return b""
        data = self._peeked[:n]
        self._peeked = self._peeked[n:]
        while len(data) < n:
            chunk = self._stream.read(n - len(data))
            if not chunk:
                break
            data += chunk
        self._offset += len(data)
        if self._recording is not None:
            self._recording += data
        return data

    def read_exact(self, n: int) -> bytes:
        """Read exactly n bytes.

        Raises:
            EOFError: If input ends first
        """
        data = self.read(n)
        if len(data) != n:
            raise EOFError(f"Expected {n} bytes at offset {self._offset - len(data)}, got {len(data)}")
        return data

    def read_to_end(self) -> bytes:
        """Read everything that's left."""
        data = self._peeked + (self._stream.read() or b"")
        self._peeked = b""
        self._offset += len(data)
        if self._recording is not None:
            self._recording += data
        return data

    def can_read(self) -> bool:
        """Whether at least one more byte is available."""
        if not self._peeked:
            self._peeked = self._stream.read(1) or b""
        return bool(self._peeked)

    def read_uint8(self) -> int:
        return self.read_exact(1)[0]

    def read_uint16(self) -> int:
        return int(struct.unpack("<H", self.read_exact(2))[0])

    def read_uint32(self) -> int:
        return int(struct.unpack("<I", self.read_exact(4))[0])

    def read_uint64(self) -> int:
        return int(struct.unpack("<Q", self.read_exact(8))[0])

    def start_recording(self) -> None:
        """Keep a copy of every byte read from now on."""
        self._recording = bytearray()

    def stop_recording(self) -> bytes:
        """Stop recording and return the bytes read since start_recording()."""
        if self._recording is None:
            raise RuntimeError("ByteReader is not recording")
        recorded = bytes(self._recording)
        self._recording = None
        return recorded

    def close(self) -> None:
        """Close the underlying stream if this reader opened it."""
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
