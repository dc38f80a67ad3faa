"""KDBX 3.x container encryption and decryption.

This module composes the header, key derivation, payload cipher and
hashed block framing into the two container operations:
- decrypt: container bytes + key -> payload, keystream, header hash
- encrypt: payload + key + rounds -> container bytes

KDBX 3.x structure:
1. Outer header (plaintext, hashed with SHA-256)
2. AES-256-CBC encrypted body
   - 32 stream start bytes (copied from the header)
   - Payload in hashed block format (optionally gzip-compressed)

Each KdbxCodec performs exactly one operation. States:
    BUILT -> HEADER_PARSED -> DECRYPTED
    BUILT -> HEADER_PREPARED -> ENCRYPTED
"""

from __future__ import annotations

import gzip
import io
import logging
import warnings
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from kdbxcodec.exceptions import (
    CiphertextLengthError,
    DecompressionError,
    IntegrityError,
    InvalidArgumentError,
    InvalidStateError,
    PaddingError,
    UnsupportedCompressionError,
    WrongKeyOrCorruptError,
)
from kdbxcodec.security import (
    CipherContext,
    KeySource,
    KeystreamGenerator,
    RandomStreamId,
    SecureBytes,
    constant_time_compare,
    derive_master_key,
)
from kdbxcodec.security.kdf import AES_KDF_MAX_ROUNDS
from kdbxcodec.settings import DEFAULT_SETTINGS, CodecSettings

from .header import KDBX_MAGIC, STREAM_START_BYTES_SIZE, CompressionType, KdbxHeader
from .payload import embed_header_hash as prepend_header_hash
from .payload import strip_header_hash, verify_header_hash
from .reader import ByteReader

logger = logging.getLogger(__name__)


class CodecState(Enum):
    """Lifecycle of a KdbxCodec."""

    BUILT = "built"
    HEADER_PARSED = "header_parsed"
    DECRYPTED = "decrypted"
    HEADER_PREPARED = "header_prepared"
    ENCRYPTED = "encrypted"


@dataclass(slots=True)
class DecryptedContainer:
    """Result of decrypting a KDBX 3.x container.

    Attributes:
        header: The parsed outer header
        payload: Decrypted, unframed and decompressed payload
        keystream: Generator for protected values, None if the header
            declares no protected stream
        header_hash: SHA-256 of the outer header, to be compared with the
            hash the payload declares
        corrupted: True only in permissive mode when blocks failed checks
    """

    header: KdbxHeader
    payload: bytes
    keystream: KeystreamGenerator | None
    header_hash: bytes
    corrupted: bool = False

    def verify_header_hash(self) -> None:
        """Check the payload XML's Meta/HeaderHash against header_hash.

        Raises:
            HeaderHashMismatchError: If they differ or the payload has none
        """
        verify_header_hash(self.payload, self.header_hash)


def _as_reader(source: bytes | bytearray | BinaryIO | ByteReader) -> ByteReader:
    if isinstance(source, ByteReader):
        return source
    return ByteReader(source)


class KdbxCodec:
    """Single-use encoder/decoder for one KDBX 3.x container.

    Example:
        >>> key = CompositeKey.from_password("secret")
        >>> data = KdbxCodec().encrypt(b"<KeePassFile/>", key, rounds=60000)
        >>> result = KdbxCodec().decrypt(data, key)
        >>> result.payload
        b'<KeePassFile/>'
    """

    def __init__(self, settings: CodecSettings | None = None) -> None:
        self._settings = settings or DEFAULT_SETTINGS
        self._state = CodecState.BUILT
        self._header: KdbxHeader | None = None
        self._keystream: KeystreamGenerator | None = None

    @property
    def state(self) -> CodecState:
        """Current lifecycle state."""
        return self._state

    @property
    def settings(self) -> CodecSettings:
        return self._settings

    @property
    def header(self) -> KdbxHeader:
        """Header parsed or prepared by this codec."""
        if self._header is None:
            raise InvalidStateError("No header yet")
        return self._header

    @property
    def keystream(self) -> KeystreamGenerator | None:
        """Protected value stream for the payload being produced or read."""
        return self._keystream

    def _require_state(self, *allowed: CodecState) -> None:
        if self._state not in allowed:
            raise InvalidStateError(
                f"KdbxCodec is single-use; operation not allowed in state {self._state.value}"
            )

    # --- decrypt path ---

    def decrypt(
        self,
        source: bytes | bytearray | BinaryIO | ByteReader,
        key: KeySource,
        *,
        expect_embedded_hash: bool = False,
    ) -> DecryptedContainer:
        """Decrypt a container.

        Args:
            source: Container bytes, a binary file object or a ByteReader
            key: Composite key (or any single key source)
            expect_embedded_hash: Check and strip a raw header hash that
                encrypt(embed_header_hash=True) prepended to the payload

        Returns:
            DecryptedContainer with payload, keystream and header hash

        Raises:
            MalformedHeaderError: Bad, truncated or unsupported header
            WrongKeyOrCorruptError: Wrong credentials or damaged ciphertext
            IntegrityError: A hashed block failed verification (strict mode)
            DecompressionError: The gzip payload is invalid
            HeaderHashMismatchError: Embedded hash differs (when expected)
        """
        self._require_state(CodecState.BUILT)
        reader = _as_reader(source)

        header = KdbxHeader.parse(reader)
        self._header = header
        self._state = CodecState.HEADER_PARSED
        keystream = KeystreamGenerator.for_header(header)

        config = header.kdf_config
        try:
            config.validate_security(self._settings.min_rounds_warning)
        except ValueError as e:
            warnings.warn(
                f"Database has weak KDF parameters: {e}. "
                "Consider re-saving with more rounds.",
                UserWarning,
                stacklevel=2,
            )

        plaintext = self._decrypt_body(header, key, reader.read_to_end())

        if len(plaintext) < STREAM_START_BYTES_SIZE or not constant_time_compare(
            plaintext[:STREAM_START_BYTES_SIZE], header.stream_start_bytes
        ):
            raise WrongKeyOrCorruptError(stage="start_bytes")

        blocks = self._settings.block_codec().unframe(plaintext[STREAM_START_BYTES_SIZE:])
        if not blocks.data:
            raise IntegrityError("Payload contains no data")
        payload = blocks.data

        if header.compression == CompressionType.GZIP:
            payload = self._decompress(payload)

        if expect_embedded_hash:
            payload = strip_header_hash(payload, header.header_hash)

        self._keystream = keystream
        self._state = CodecState.DECRYPTED
        logger.debug("Decrypted %d-byte payload", len(payload))
        return DecryptedContainer(
            header=header,
            payload=payload,
            keystream=keystream,
            header_hash=header.header_hash,
            corrupted=blocks.corrupted,
        )

    def _decrypt_body(self, header: KdbxHeader, key: KeySource, ciphertext: bytes) -> bytes:
        master_key = self._derive_key(header, key)
        try:
            with CipherContext(header.cipher, master_key.data, header.encryption_iv) as ctx:
                return ctx.decrypt(ciphertext)
        except (PaddingError, CiphertextLengthError) as e:
            raise WrongKeyOrCorruptError(stage="decrypt") from e
        finally:
            master_key.zeroize()

    def _decompress(self, data: bytes) -> bytes:
        limit = self._settings.max_payload_size
        try:
            with gzip.GzipFile(fileobj=io.BytesIO(data)) as f:
                inflated = f.read(limit + 1)
        except (OSError, EOFError, zlib.error) as e:
            raise DecompressionError(f"Invalid gzip payload: {e}") from e
        if len(inflated) > limit:
            raise DecompressionError(
                f"Decompressed payload exceeds {limit} bytes"
            )
        logger.debug("Inflated payload from %d to %d bytes", len(data), len(inflated))
        return inflated

    # --- encrypt path ---

    def prepare(
        self,
        rounds: int,
        *,
        compression: CompressionType = CompressionType.NONE,
        protect_stream: bool = False,
    ) -> KdbxHeader:
        """Generate and serialize a fresh header.

        Call this before encrypt() when the payload needs the header hash
        or the keystream while it is being produced.

        Args:
            rounds: AES-KDF round count (1 .. 2**64 - 1)
            compression: Must be CompressionType.NONE
            protect_stream: Declare a Salsa20 protected value stream

        Returns:
            Frozen header; header_hash is available

        Raises:
            InvalidArgumentError: If rounds is out of range
            UnsupportedCompressionError: If compression is requested
        """
        self._require_state(CodecState.BUILT)
        if isinstance(rounds, bool) or not isinstance(rounds, int):
            raise InvalidArgumentError("rounds must be an integer")
        if not 1 <= rounds <= AES_KDF_MAX_ROUNDS:
            raise InvalidArgumentError("rounds must be strictly positive and fit in 64 bits")
        if compression != CompressionType.NONE:
            raise UnsupportedCompressionError(
                int(compression), "Compression is not supported when encrypting"
            )

        header = KdbxHeader.create(
            rounds,
            random_stream_id=(
                RandomStreamId.SALSA20 if protect_stream else RandomStreamId.NONE
            ),
        )
        header.to_bytes()
        self._header = header
        self._keystream = KeystreamGenerator.for_header(header)
        self._state = CodecState.HEADER_PREPARED
        return header

    def encrypt(
        self,
        payload: bytes,
        key: KeySource,
        rounds: int | None = None,
        *,
        compression: CompressionType = CompressionType.NONE,
        protect_stream: bool | None = None,
        embed_header_hash: bool = False,
    ) -> bytes:
        """Encrypt payload into a new container.

        Args:
            payload: Bytes to protect (normally the KeePassFile XML)
            key: Composite key (or any single key source)
            rounds: AES-KDF round count; may be omitted after prepare()
            compression: Must be CompressionType.NONE
            protect_stream: Declare a Salsa20 protected value stream; after
                prepare() it defaults to the prepared header's choice
            embed_header_hash: Prepend the raw header hash to the payload

        Returns:
            Complete container: serialized header || ciphertext

        Raises:
            InvalidArgumentError: If an argument disagrees with the prepared header
            UnsupportedCompressionError: If compression is requested
        """
        if self._state == CodecState.BUILT:
            if rounds is None:
                raise InvalidArgumentError("rounds is required")
            self.prepare(rounds, compression=compression, protect_stream=bool(protect_stream))
        else:
            self._require_state(CodecState.HEADER_PREPARED)
            if rounds is not None and rounds != self.header.transform_rounds:
                raise InvalidArgumentError("rounds differs from the prepared header")
            if compression != CompressionType.NONE:
                raise UnsupportedCompressionError(
                    int(compression), "Compression is not supported when encrypting"
                )
            prepared_stream = self.header.random_stream_id != RandomStreamId.NONE
            if protect_stream is not None and protect_stream != prepared_stream:
                raise InvalidArgumentError(
                    "protect_stream differs from the prepared header"
                )

        if not payload:
            raise InvalidArgumentError("Payload must not be empty")

        header = self.header
        if embed_header_hash:
            payload = prepend_header_hash(payload, header.header_hash)

        framed = self._settings.block_codec().frame(payload)
        master_key = self._derive_key(header, key)
        try:
            with CipherContext(header.cipher, master_key.data, header.encryption_iv) as ctx:
                ciphertext = ctx.encrypt(header.stream_start_bytes + framed)
        finally:
            master_key.zeroize()

        self._state = CodecState.ENCRYPTED
        logger.debug("Encrypted %d-byte payload", len(payload))
        return header.raw_header + ciphertext

    # --- shared ---

    def _derive_key(self, header: KdbxHeader, key: KeySource) -> SecureBytes:
        composite = SecureBytes(key.raw_hash)
        try:
            return derive_master_key(composite.data, header.master_seed, header.kdf_config)
        finally:
            composite.zeroize()


def read_kdbx3(
    data: bytes | BinaryIO,
    key: KeySource,
    settings: CodecSettings | None = None,
    *,
    expect_embedded_hash: bool = False,
) -> DecryptedContainer:
    """Convenience function to decrypt a KDBX 3.x container.

    Args:
        data: Complete container contents or a binary file object
        key: Composite key
        settings: Optional codec settings

    Returns:
        DecryptedContainer with payload, keystream and header hash
    """
    return KdbxCodec(settings).decrypt(
        data, key, expect_embedded_hash=expect_embedded_hash
    )


def write_kdbx3(
    payload: bytes,
    key: KeySource,
    rounds: int,
    settings: CodecSettings | None = None,
    *,
    protect_stream: bool = False,
    embed_header_hash: bool = False,
) -> bytes:
    """Convenience function to encrypt a payload into a KDBX 3.x container.

    Args:
        payload: Bytes to protect
        key: Composite key
        rounds: AES-KDF round count
        settings: Optional codec settings

    Returns:
        Complete container as bytes
    """
    return KdbxCodec(settings).encrypt(
        payload,
        key,
        rounds,
        protect_stream=protect_stream,
        embed_header_hash=embed_header_hash,
    )


def is_kdbx(source: bytes | str | Path) -> bool:
    """Check whether data (or the file at a path) starts with the KDBX magic.

    Any format version matches; nothing is parsed or decrypted.
    """
    if isinstance(source, (str, Path)):
        with Path(source).open("rb") as f:
            prefix = f.read(len(KDBX_MAGIC))
    else:
        prefix = bytes(source[: len(KDBX_MAGIC)])
    return prefix == KDBX_MAGIC
