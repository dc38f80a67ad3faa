"""Keystream for protected values in the decrypted payload.

KDBX masks sensitive values (passwords and any field flagged
Protected="True") by XOR-ing them with a Salsa20 keystream. The stream
is keyed with SHA-256 of the header's protected-stream key and a fixed
8-byte nonce. Values are unmasked in document order: consuming them out
of order desynchronizes every later value.
"""

from __future__ import annotations

import hashlib
import logging
from enum import IntEnum
from typing import TYPE_CHECKING

from kdbxcodec.exceptions import InvalidArgumentError, UnsupportedKeystreamError

from .crypto import require_backend

try:
    from Cryptodome.Cipher import Salsa20
except ImportError:
    # require_backend() reports the missing library
    pass

if TYPE_CHECKING:
    from kdbxcodec.parsing.header import KdbxHeader

logger = logging.getLogger(__name__)

# Fixed protocol constant, not a secret
SALSA20_NONCE = b"\xE8\x30\x09\x4B\x97\x20\x5D\x2A"


class RandomStreamId(IntEnum):
    """Inner random stream algorithms declared in the header."""

    NONE = 0
    ARC4_VARIANT = 1
    SALSA20 = 2
    CHACHA20 = 3

    @property
    def is_supported(self) -> bool:
        """Whether a keystream can be built for this id."""
        return self in (RandomStreamId.NONE, RandomStreamId.SALSA20)


class KeystreamGenerator:
    """Forward-only Salsa20 keystream.

    Each call to get_next_bytes() returns fresh bytes and advances the
    stream; there is no way to rewind. One generator belongs to exactly
    one payload.

    Example:
        >>> stream = KeystreamGenerator(header.protected_stream_key)
        >>> password = stream.unmask(base64.b64decode(value)).decode("utf-8")
    """

    def __init__(self, protected_stream_key: bytes) -> None:
        """Initialize the keystream.

        Args:
            protected_stream_key: Key material from the header (32 bytes)
        """
        require_backend()
        if not protected_stream_key:
            raise InvalidArgumentError("Protected stream key must not be empty")
        key = hashlib.sha256(protected_stream_key).digest()
        self._cipher = Salsa20.new(key=key, nonce=SALSA20_NONCE)
        self._position = 0

    @classmethod
    def for_header(cls, header: KdbxHeader) -> KeystreamGenerator | None:
        """Build the generator a header asks for.

        Returns:
            None when the header declares no protected stream

        Raises:
            UnsupportedKeystreamError: For any algorithm other than Salsa20
        """
        stream_id = header.random_stream_id
        if stream_id == RandomStreamId.NONE:
            return None
        if stream_id != RandomStreamId.SALSA20:
            raise UnsupportedKeystreamError(int(stream_id))
        return cls(header.protected_stream_key)

    @property
    def position(self) -> int:
        """Number of keystream bytes consumed so far."""
        return self._position

    def get_next_bytes(self, n: int) -> bytes:
        """Return the next n keystream bytes and advance past them."""
        if n < 0:
            raise InvalidArgumentError("Cannot read a negative number of bytes")
        if n == 0:
            return b""
        self._position += n
        return self._cipher.encrypt(bytes(n))

    def unmask(self, data: bytes) -> bytes:
        """XOR a protected value with the next len(data) keystream bytes."""
        if not data:
            return b""
        self._position += len(data)
        return self._cipher.decrypt(data)

    def mask(self, data: bytes) -> bytes:
        """Inverse of unmask(); used when producing a payload."""
        if not data:
            return b""
        self._position += len(data)
        return self._cipher.encrypt(data)

    def __repr__(self) -> str:
        return f"KeystreamGenerator(position={self._position})"


def check_stream_id(value: int) -> RandomStreamId:
    """Validate a header random stream id.

    Raises:
        UnsupportedKeystreamError: For unknown or unsupported ids
    """
    try:
        stream_id = RandomStreamId(value)
    except ValueError:
        raise UnsupportedKeystreamError(value) from None
    if not stream_id.is_supported:
        raise UnsupportedKeystreamError(value)
    logger.debug("Protected stream: %s", stream_id.name)
    return stream_id
