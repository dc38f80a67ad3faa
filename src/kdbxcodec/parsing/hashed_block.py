"""Hashed block stream framing for KDBX 3.x payloads.

The plaintext payload (after the stream start bytes) is split into blocks:
    4 bytes   block index (u32 LE), starting at 0
    32 bytes  SHA-256 of the block data
    4 bytes   data length (u32 LE)
    N bytes   block data

A block with length 0 ends the stream. Running out of input also ends
the stream cleanly, since the writer doesn't emit a terminator block
unless asked to.

Verification modes:
- strict (default): the first bad index or hash raises IntegrityError
- permissive: reading continues, the result carries corrupted=True
"""

from __future__ import annotations

import hashlib
import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass

from kdbxcodec.exceptions import IntegrityError, InvalidArgumentError
from kdbxcodec.security import constant_time_compare

from .reader import ByteReader

logger = logging.getLogger(__name__)

BLOCK_HASH_SIZE = 32
EMPTY_BLOCK_HASHES = (bytes(BLOCK_HASH_SIZE), hashlib.sha256(b"").digest())


@dataclass(frozen=True, slots=True)
class HashedBlock:
    """One verified (or, in permissive mode, possibly corrupt) block."""

    index: int
    block_hash: bytes
    data: bytes


@dataclass(frozen=True, slots=True)
class UnframeResult:
    """Unframed payload together with its corruption flag.

    In strict mode corrupted is always False, since any failure raises.
    """

    data: bytes
    corrupted: bool


class HashedBlockCodec:
    """Frame and unframe payloads as hashed blocks.

    The codec keeps the block counter and corruption flag of the last
    unframe() call; use a fresh instance per payload.
    """

    # Default block size (1 MiB), same as KeePass
    DEFAULT_BLOCK_SIZE = 1024 * 1024

    def __init__(
        self,
        block_size: int = DEFAULT_BLOCK_SIZE,
        *,
        stop_on_error: bool = True,
        write_terminator: bool = False,
    ) -> None:
        """Initialize the codec.

        Args:
            block_size: Maximum data bytes per block when framing
            stop_on_error: Raise on the first integrity failure when True
            write_terminator: Append an empty block after the data when framing
        """
        if block_size <= 0 or block_size > 0xFFFFFFFF:
            raise InvalidArgumentError("block_size must fit in an unsigned 32-bit length")
        self.block_size = block_size
        self.stop_on_error = stop_on_error
        self.write_terminator = write_terminator
        self._corrupted = False
        self._next_index = 0

    @property
    def corrupted(self) -> bool:
        """Whether any integrity check failed while unframing."""
        return self._corrupted

    def frame(self, payload: bytes) -> bytes:
        """Split payload into hashed blocks."""
        parts = []
        block_index = 0
        offset = 0

        while offset < len(payload):
            block_data = payload[offset : offset + self.block_size]
            offset += len(block_data)
            parts.append(struct.pack("<I", block_index))
            parts.append(hashlib.sha256(block_data).digest())
            parts.append(struct.pack("<I", len(block_data)))
            parts.append(block_data)
            block_index += 1

        if self.write_terminator:
            parts.append(struct.pack("<I", block_index))
            parts.append(bytes(BLOCK_HASH_SIZE))
            parts.append(struct.pack("<I", 0))

        logger.debug("Framed %d bytes into %d blocks", len(payload), block_index)
        return b"".join(parts)

    def _fail(self, message: str, block_index: int) -> None:
        self._corrupted = True
        logger.debug("Hashed block %d: %s", block_index, message)
        if self.stop_on_error:
            raise IntegrityError(message, block_index=block_index)

    def _truncated(self, block_index: int) -> None:
        self._corrupted = True
        logger.debug("Hashed block %d: truncated", block_index)
        if self.stop_on_error:
            raise IntegrityError(
                f"Block {block_index} is truncated", block_index=block_index
            )

    def iter_blocks(self, source: bytes | ByteReader) -> Iterator[HashedBlock]:
        """Yield blocks from source until the stream ends.

        Raises:
            IntegrityError: In strict mode, on the first bad block
        """
        reader = source if isinstance(source, ByteReader) else ByteReader(source)
        self._corrupted = False
        self._next_index = 0

        while reader.can_read():
            expected_index = self._next_index
            # The counter advances on every attempt, matching or not
            self._next_index += 1

            try:
                declared_index = reader.read_uint32()
                block_hash = reader.read_exact(BLOCK_HASH_SIZE)
                block_len = reader.read_uint32()
            except EOFError:
                self._truncated(expected_index)
                return

            if declared_index != expected_index:
                self._fail(
                    f"Block index {declared_index} out of sequence (expected {expected_index})",
                    expected_index,
                )

            if block_len == 0:
                if block_hash not in EMPTY_BLOCK_HASHES:
                    self._fail("Terminator block has a non-empty hash", expected_index)
                return

            block_data = reader.read(block_len)
            if len(block_data) != block_len:
                self._truncated(expected_index)
                return

            if not constant_time_compare(hashlib.sha256(block_data).digest(), block_hash):
                self._fail(f"Hash mismatch for block {expected_index}", expected_index)

            yield HashedBlock(index=declared_index, block_hash=block_hash, data=block_data)

    def unframe(self, source: bytes | ByteReader) -> UnframeResult:
        """Reassemble the payload from hashed blocks.

        Returns:
            UnframeResult with the data and the corruption flag

        Raises:
            IntegrityError: In strict mode, on the first bad block
        """
        data = b"".join(block.data for block in self.iter_blocks(source))
        if self._corrupted:
            logger.warning("Payload blocks failed integrity checks; data is unreliable")
        return UnframeResult(data=data, corrupted=self._corrupted)


def frame_payload(payload: bytes, block_size: int = HashedBlockCodec.DEFAULT_BLOCK_SIZE) -> bytes:
    """Convenience wrapper around HashedBlockCodec.frame()."""
    return HashedBlockCodec(block_size).frame(payload)


def unframe_payload(data: bytes) -> bytes:
    """Strictly unframe data and return the payload."""
    return HashedBlockCodec().unframe(data).data
