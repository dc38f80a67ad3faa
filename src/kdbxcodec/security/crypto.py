"""Block cipher engine for KDBX containers.

AES-256 is used in two ways:
- Stretch mode (AesTransform): one AES-ECB engine keyed with the transform
  seed, applied to the composite key hash once per KDF round
- Payload mode (CipherContext): AES-256-CBC with an explicit IV and PKCS7
  padding for the container body

Only the pycryptodomex backend is used. If it can't be imported every
operation raises CryptoBackendUnavailableError instead of producing a key.
"""

from __future__ import annotations

import hmac
import logging
import os
from enum import Enum
from types import TracebackType
from typing import Protocol, Self, runtime_checkable

from kdbxcodec.exceptions import (
    CiphertextLengthError,
    CryptoBackendUnavailableError,
    InvalidArgumentError,
    PaddingError,
    UnsupportedCipherError,
)

from .memory import SecureBytes

try:
    from Cryptodome.Cipher import AES

    CRYPTO_BACKEND_AVAILABLE = True
except ImportError:
    CRYPTO_BACKEND_AVAILABLE = False

logger = logging.getLogger(__name__)

AES_BLOCK_SIZE = 16
AES256_KEY_SIZE = 32


class Cipher(Enum):
    """Payload ciphers known to the KDBX format.

    The UUID values are fixed by the KDBX file format. Only
    AES256_CBC can actually be used; the others are listed so that a
    file using them is reported by name rather than as garbage.
    """

    AES256_CBC = bytes.fromhex("31c1f2e6bf714350be5805216afc5aff")
    CHACHA20 = bytes.fromhex("d6038a2b8b6f4cb5a524339a31dbb59a")
    TWOFISH256_CBC = bytes.fromhex("ad68f29f576f4bb9a36ad47af965346c")

    @property
    def display_name(self) -> str:
        """Human-readable cipher name."""
        names = {
            Cipher.AES256_CBC: "AES-256-CBC",
            Cipher.CHACHA20: "ChaCha20",
            Cipher.TWOFISH256_CBC: "Twofish-256-CBC",
        }
        return names[self]

    @property
    def key_size(self) -> int:
        """Key size in bytes."""
        return 32

    @property
    def iv_size(self) -> int:
        """IV/nonce size in bytes."""
        return 12 if self == Cipher.CHACHA20 else 16

    @property
    def is_supported(self) -> bool:
        """Whether this library can encrypt/decrypt with the cipher."""
        return self == Cipher.AES256_CBC

    @classmethod
    def from_uuid(cls, uuid_bytes: bytes) -> Cipher:
        """Look up cipher by its KDBX UUID.

        Args:
            uuid_bytes: 16-byte cipher identifier from KDBX header

        Returns:
            The corresponding Cipher enum value

        Raises:
            UnsupportedCipherError: If the UUID doesn't match any known cipher
        """
        for cipher in cls:
            if cipher.value == uuid_bytes:
                return cipher
        raise UnsupportedCipherError(uuid_bytes)


def require_backend() -> None:
    """Raise CryptoBackendUnavailableError if pycryptodomex is missing."""
    if not CRYPTO_BACKEND_AVAILABLE:
        raise CryptoBackendUnavailableError()


def secure_random_bytes(n: int) -> bytes:
    """Return n bytes from the OS CSPRNG."""
    return os.urandom(n)


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without leaking timing information."""
    return hmac.compare_digest(a, b)


def add_pkcs7_padding(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    """Add PKCS7 padding to make data a multiple of block_size bytes."""
    padding_len = block_size - (len(data) % block_size)
    return data + bytes([padding_len] * padding_len)


def remove_pkcs7_padding(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    """Remove and validate PKCS7 padding.

    Raises:
        PaddingError: If the pad length or any pad byte is inconsistent
    """
    if not data:
        raise PaddingError("Cannot remove padding from empty data")
    padding_len = data[-1]
    if padding_len == 0 or padding_len > block_size or padding_len > len(data):
        raise PaddingError()
    # Verify all padding bytes are correct
    expected = bytes([padding_len] * padding_len)
    if not constant_time_compare(data[-padding_len:], expected):
        raise PaddingError()
    return data[:-padding_len]


@runtime_checkable
class BlockCipher(Protocol):
    """Capability interface for the cipher engines below."""

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


class _KeyedEngine:
    """Shared key handling: validation, zeroization, context manager."""

    def __init__(self, key: bytes) -> None:
        require_backend()
        if len(key) != AES256_KEY_SIZE:
            raise InvalidArgumentError(
                f"AES-256 key must be {AES256_KEY_SIZE} bytes, got {len(key)}"
            )
        self._key = SecureBytes(key)

    def close(self) -> None:
        """Zeroize the key copy held by this engine."""
        self._key.zeroize()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AesTransform(_KeyedEngine):
    """Stretch-mode AES: single-block ECB permutation, no padding, no IV.

    The backend cipher object is created once and reused for every round,
    so a transform of N rounds costs N block encryptions and nothing else.
    """

    def __init__(self, key: bytes) -> None:
        super().__init__(key)
        self._engine = AES.new(self._key.data, AES.MODE_ECB)

    def encrypt(self, data: bytes) -> bytes:
        """Encrypt whole 16-byte blocks independently."""
        if len(data) % AES_BLOCK_SIZE:
            raise InvalidArgumentError("Stretch mode input must be whole AES blocks")
        return self._engine.encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        """Inverse permutation (only useful for tests)."""
        if len(data) % AES_BLOCK_SIZE:
            raise InvalidArgumentError("Stretch mode input must be whole AES blocks")
        return self._engine.decrypt(data)

    def transform(self, data: bytes, rounds: int) -> bytes:
        """Apply the permutation to data exactly `rounds` times.

        Args:
            data: Whole number of AES blocks (32 bytes for KDBX)
            rounds: Number of applications, any non-negative 64-bit value

        Returns:
            The transformed blocks
        """
        if rounds < 0:
            raise InvalidArgumentError("rounds must not be negative")
        if len(data) % AES_BLOCK_SIZE:
            raise InvalidArgumentError("Stretch mode input must be whole AES blocks")
        encrypt = self._engine.encrypt
        for _ in range(rounds):
            data = encrypt(data)
        return data

    def close(self) -> None:
        """Drop the backend engine and zeroize the key copy."""
        self._engine = None
        super().close()


class CipherContext(_KeyedEngine):
    """Payload-mode cipher: AES-256-CBC with PKCS7 padding.

    A fresh CBC engine is built per call since CBC carries chaining state.
    """

    def __init__(self, cipher: Cipher, key: bytes, iv: bytes) -> None:
        if not cipher.is_supported:
            raise UnsupportedCipherError(cipher.value)
        if len(iv) != cipher.iv_size:
            raise InvalidArgumentError(
                f"IV must be {cipher.iv_size} bytes, got {len(iv)}"
            )
        super().__init__(key)
        self.cipher = cipher
        self._iv = iv

    def encrypt(self, plaintext: bytes) -> bytes:
        """Pad and encrypt plaintext."""
        engine = AES.new(self._key.data, AES.MODE_CBC, iv=self._iv)
        ciphertext = engine.encrypt(add_pkcs7_padding(plaintext))
        logger.debug("Encrypted %d bytes with %s", len(plaintext), self.cipher.display_name)
        return ciphertext

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt ciphertext and strip its padding.

        Raises:
            CiphertextLengthError: If ciphertext isn't whole, non-empty blocks
            PaddingError: If the recovered padding is invalid
        """
        if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
            raise CiphertextLengthError(len(ciphertext), AES_BLOCK_SIZE)
        engine = AES.new(self._key.data, AES.MODE_CBC, iv=self._iv)
        return remove_pkcs7_padding(engine.decrypt(ciphertext))
