"""KDBX 3.x outer header.

Layout:
    4 bytes  signature 1 (0x9AA2D903, little-endian)
    4 bytes  signature 2 (0xB54BFB67, little-endian)
    2 bytes  minor version
    2 bytes  major version
    fields   type (u8) | length (u16 LE) | value, terminated by END

The header hash is SHA-256 over every byte from the signature up to and
including the END field. It is computed once, when the header is parsed
or first serialized, and cannot change afterwards.
"""

from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum

from kdbxcodec.exceptions import (
    InvalidSignatureError,
    InvalidStateError,
    MalformedHeaderError,
    UnsupportedCipherError,
    UnsupportedCompressionError,
    UnsupportedVersionError,
)
from kdbxcodec.security import (
    AesKdfConfig,
    Cipher,
    RandomStreamId,
    check_stream_id,
    secure_random_bytes,
)
from kdbxcodec.security.kdf import AES_KDF_MAX_ROUNDS

from .reader import ByteReader

logger = logging.getLogger(__name__)

KDBX_SIGNATURE_1 = 0x9AA2D903
KDBX_SIGNATURE_2 = 0xB54BFB67
KDBX_MAGIC = struct.pack("<II", KDBX_SIGNATURE_1, KDBX_SIGNATURE_2)

# KeePass 1.x databases share the first signature
KDB_SIGNATURE_2 = 0xB54BFB65

KDBX3_MAJOR_VERSION = 3
KDBX3_MINOR_VERSION = 1

END_OF_HEADER_VALUE = b"\r\n\r\n"

SEED_SIZE = 32
STREAM_START_BYTES_SIZE = 32
PROTECTED_STREAM_KEY_SIZE = 32
CIPHER_ID_SIZE = 16


class HeaderFieldType(IntEnum):
    """Outer header field ids."""

    END = 0
    COMMENT = 1
    CIPHER_ID = 2
    COMPRESSION_FLAGS = 3
    MASTER_SEED = 4
    TRANSFORM_SEED = 5
    TRANSFORM_ROUNDS = 6
    ENCRYPTION_IV = 7
    PROTECTED_STREAM_KEY = 8
    STREAM_START_BYTES = 9
    INNER_RANDOM_STREAM_ID = 10


class CompressionType(IntEnum):
    """Payload compression flag."""

    NONE = 0
    GZIP = 1


# Fixed value sizes; ENCRYPTION_IV depends on the cipher and COMMENT is free
_FIELD_SIZES: dict[HeaderFieldType, int] = {
    HeaderFieldType.CIPHER_ID: CIPHER_ID_SIZE,
    HeaderFieldType.COMPRESSION_FLAGS: 4,
    HeaderFieldType.MASTER_SEED: SEED_SIZE,
    HeaderFieldType.TRANSFORM_SEED: SEED_SIZE,
    HeaderFieldType.TRANSFORM_ROUNDS: 8,
    HeaderFieldType.PROTECTED_STREAM_KEY: PROTECTED_STREAM_KEY_SIZE,
    HeaderFieldType.STREAM_START_BYTES: STREAM_START_BYTES_SIZE,
    HeaderFieldType.INNER_RANDOM_STREAM_ID: 4,
}

_REQUIRED_FIELDS = (
    HeaderFieldType.CIPHER_ID,
    HeaderFieldType.COMPRESSION_FLAGS,
    HeaderFieldType.MASTER_SEED,
    HeaderFieldType.TRANSFORM_SEED,
    HeaderFieldType.TRANSFORM_ROUNDS,
    HeaderFieldType.ENCRYPTION_IV,
    HeaderFieldType.STREAM_START_BYTES,
)


@dataclass(slots=True)
class KdbxHeader:
    """Parsed or freshly generated KDBX 3.x outer header.

    Attributes:
        cipher: Payload cipher
        compression: Payload compression flag
        master_seed: 32-byte seed mixed into the final key
        transform_seed: 32-byte AES-KDF key
        transform_rounds: AES-KDF round count (unsigned 64-bit)
        encryption_iv: CBC IV (cipher block size)
        protected_stream_key: 32-byte key for the protected value stream
        stream_start_bytes: 32 bytes expected at the start of the plaintext
        random_stream_id: Protected value stream algorithm
        comment: Optional free-form comment field
        version_major: Format major version
        version_minor: Format minor version
    """

    cipher: Cipher
    compression: CompressionType
    master_seed: bytes
    transform_seed: bytes
    transform_rounds: int
    encryption_iv: bytes
    protected_stream_key: bytes
    stream_start_bytes: bytes
    random_stream_id: RandomStreamId = RandomStreamId.NONE
    comment: bytes | None = None
    version_major: int = KDBX3_MAJOR_VERSION
    version_minor: int = KDBX3_MINOR_VERSION
    _raw_header: bytes | None = field(default=None, repr=False)
    _header_hash: bytes | None = field(default=None, repr=False)

    @property
    def kdf_config(self) -> AesKdfConfig:
        """AES-KDF parameters declared by this header."""
        return AesKdfConfig(rounds=self.transform_rounds, salt=self.transform_seed)

    @property
    def raw_header(self) -> bytes:
        """Serialized header bytes the hash was computed over."""
        if self._raw_header is None:
            raise InvalidStateError("Header has not been parsed or serialized yet")
        return self._raw_header

    @property
    def header_hash(self) -> bytes:
        """SHA-256 of the serialized header."""
        if self._header_hash is None:
            raise InvalidStateError("Header has not been parsed or serialized yet")
        return self._header_hash

    @property
    def is_frozen(self) -> bool:
        """Whether the header hash has been fixed."""
        return self._header_hash is not None

    def _freeze(self, raw: bytes) -> None:
        if self._header_hash is not None:
            raise InvalidStateError("Header hash is already set")
        self._raw_header = raw
        self._header_hash = hashlib.sha256(raw).digest()

    @classmethod
    def create(
        cls,
        rounds: int,
        *,
        random_stream_id: RandomStreamId = RandomStreamId.NONE,
        compression: CompressionType = CompressionType.NONE,
        cipher: Cipher = Cipher.AES256_CBC,
    ) -> KdbxHeader:
        """Create a header with fresh random seeds, IV and stream key.

        Args:
            rounds: AES-KDF round count
            random_stream_id: Protected value stream to declare
            compression: Payload compression flag
            cipher: Payload cipher

        Returns:
            Validated, not yet serialized header
        """
        header = cls(
            cipher=cipher,
            compression=compression,
            master_seed=secure_random_bytes(SEED_SIZE),
            transform_seed=secure_random_bytes(SEED_SIZE),
            transform_rounds=rounds,
            encryption_iv=secure_random_bytes(cipher.iv_size),
            protected_stream_key=secure_random_bytes(PROTECTED_STREAM_KEY_SIZE),
            stream_start_bytes=secure_random_bytes(STREAM_START_BYTES_SIZE),
            random_stream_id=random_stream_id,
        )
        header.validate()
        return header

    def validate(self) -> None:
        """Check field lengths and that every algorithm is supported.

        Raises:
            MalformedHeaderError: Or one of its Unsupported* subclasses
        """
        if self.version_major != KDBX3_MAJOR_VERSION:
            raise UnsupportedVersionError(self.version_major, self.version_minor)
        if not self.cipher.is_supported:
            raise UnsupportedCipherError(self.cipher.value)
        if not isinstance(self.compression, CompressionType):
            raise UnsupportedCompressionError(int(self.compression))
        check_stream_id(int(self.random_stream_id))

        for name, value, size in (
            ("master_seed", self.master_seed, SEED_SIZE),
            ("transform_seed", self.transform_seed, SEED_SIZE),
            ("encryption_iv", self.encryption_iv, self.cipher.iv_size),
            ("protected_stream_key", self.protected_stream_key, PROTECTED_STREAM_KEY_SIZE),
            ("stream_start_bytes", self.stream_start_bytes, STREAM_START_BYTES_SIZE),
        ):
            if name == "protected_stream_key" and not value:
                if self.random_stream_id == RandomStreamId.NONE:
                    continue
            if len(value) != size:
                raise MalformedHeaderError(
                    f"{name} must be {size} bytes, got {len(value)}", field=name
                )
        if not 1 <= self.transform_rounds <= AES_KDF_MAX_ROUNDS:
            raise MalformedHeaderError(
                "transform_rounds must be between 1 and 2**64 - 1",
                field="transform_rounds",
            )

    def to_bytes(self) -> bytes:
        """Serialize the header.

        The first call fixes the header hash; later calls return the same
        bytes.
        """
        if self._raw_header is not None:
            return self._raw_header
        self.validate()

        parts = [
            KDBX_MAGIC,
            struct.pack("<HH", self.version_minor, self.version_major),
        ]

        def add_field(field_type: HeaderFieldType, data: bytes) -> None:
            parts.append(struct.pack("<BH", field_type, len(data)))
            parts.append(data)

        if self.comment is not None:
            add_field(HeaderFieldType.COMMENT, self.comment)
        add_field(HeaderFieldType.CIPHER_ID, self.cipher.value)
        add_field(HeaderFieldType.COMPRESSION_FLAGS, struct.pack("<I", self.compression))
        add_field(HeaderFieldType.MASTER_SEED, self.master_seed)
        add_field(HeaderFieldType.TRANSFORM_SEED, self.transform_seed)
        add_field(HeaderFieldType.TRANSFORM_ROUNDS, struct.pack("<Q", self.transform_rounds))
        add_field(HeaderFieldType.ENCRYPTION_IV, self.encryption_iv)
        if self.protected_stream_key:
            add_field(HeaderFieldType.PROTECTED_STREAM_KEY, self.protected_stream_key)
        add_field(HeaderFieldType.STREAM_START_BYTES, self.stream_start_bytes)
        add_field(
            HeaderFieldType.INNER_RANDOM_STREAM_ID,
            struct.pack("<I", self.random_stream_id),
        )
        add_field(HeaderFieldType.END, END_OF_HEADER_VALUE)

        raw = b"".join(parts)
        self._freeze(raw)
        logger.debug("Serialized %d-byte header", len(raw))
        return raw

    @classmethod
    def parse(cls, reader: ByteReader) -> KdbxHeader:
        """Read and validate a header from reader.

        On return the reader is positioned at the first ciphertext byte.

        Raises:
            InvalidSignatureError: If the magic bytes don't match
            UnsupportedVersionError: For anything but KDBX 3.x
            MalformedHeaderError: For truncated, duplicate, unknown or
                wrongly sized fields and unsupported algorithms
        """
        reader.start_recording()
        try:
            try:
                sig1 = reader.read_uint32()
                sig2 = reader.read_uint32()
            except EOFError:
                raise InvalidSignatureError() from None
            if sig1 != KDBX_SIGNATURE_1 or sig2 != KDBX_SIGNATURE_2:
                if sig1 == KDBX_SIGNATURE_1 and sig2 == KDB_SIGNATURE_2:
                    raise InvalidSignatureError("KeePass 1.x (KDB) files are not supported")
                raise InvalidSignatureError()

            try:
                version_minor = reader.read_uint16()
                version_major = reader.read_uint16()
            except EOFError:
                raise MalformedHeaderError("Truncated version field", field="version") from None
            if version_major != KDBX3_MAJOR_VERSION:
                raise UnsupportedVersionError(version_major, version_minor)

            fields = cls._read_fields(reader)
        finally:
            raw = reader.stop_recording()

        header = cls._from_fields(fields, version_major, version_minor)
        header._freeze(raw)
        logger.debug(
            "Parsed KDBX %d.%d header (%d bytes, %s, %d rounds)",
            version_major,
            version_minor,
            len(raw),
            header.cipher.display_name,
            header.transform_rounds,
        )
        return header

    @classmethod
    def from_bytes(cls, data: bytes) -> tuple[KdbxHeader, int]:
        """Parse a header at the start of data.

        Returns:
            Tuple of header and offset where the ciphertext starts
        """
        reader = ByteReader(data)
        header = cls.parse(reader)
        return header, reader.offset

    @staticmethod
    def _read_fields(reader: ByteReader) -> dict[HeaderFieldType, bytes]:
        fields: dict[HeaderFieldType, bytes] = {}
        while True:
            try:
                field_type = reader.read_uint8()
                field_len = reader.read_uint16()
                field_data = reader.read_exact(field_len)
            except EOFError:
                raise MalformedHeaderError(
                    "Truncated header (no end-of-header field)"
                ) from None

            try:
                kind = HeaderFieldType(field_type)
            except ValueError:
                raise MalformedHeaderError(
                    f"Unknown header field type: {field_type}"
                ) from None

            if kind == HeaderFieldType.END:
                return fields
            if kind in fields and kind != HeaderFieldType.COMMENT:
                raise MalformedHeaderError(
                    f"Duplicate header field: {kind.name}", field=kind.name.lower()
                )
            expected = _FIELD_SIZES.get(kind)
            if expected is not None and field_len != expected:
                raise MalformedHeaderError(
                    f"{kind.name} must be {expected} bytes, got {field_len}",
                    field=kind.name.lower(),
                )
            fields[kind] = field_data

    @classmethod
    def _from_fields(
        cls,
        fields: dict[HeaderFieldType, bytes],
        version_major: int,
        version_minor: int,
    ) -> KdbxHeader:
        for required in _REQUIRED_FIELDS:
            if required not in fields:
                raise MalformedHeaderError(
                    f"Missing required header field: {required.name}",
                    field=required.name.lower(),
                )

        cipher = Cipher.from_uuid(fields[HeaderFieldType.CIPHER_ID])
        if not cipher.is_supported:
            raise UnsupportedCipherError(cipher.value)

        compression_value = struct.unpack("<I", fields[HeaderFieldType.COMPRESSION_FLAGS])[0]
        try:
            compression = CompressionType(compression_value)
        except ValueError:
            raise UnsupportedCompressionError(compression_value) from None

        stream_value = 0
        if HeaderFieldType.INNER_RANDOM_STREAM_ID in fields:
            stream_value = struct.unpack(
                "<I", fields[HeaderFieldType.INNER_RANDOM_STREAM_ID]
            )[0]
        random_stream_id = check_stream_id(stream_value)

        protected_stream_key = fields.get(HeaderFieldType.PROTECTED_STREAM_KEY, b"")
        if random_stream_id != RandomStreamId.NONE and not protected_stream_key:
            raise MalformedHeaderError(
                "Missing required header field: PROTECTED_STREAM_KEY",
                field="protected_stream_key",
            )

        iv = fields[HeaderFieldType.ENCRYPTION_IV]
        if len(iv) != cipher.iv_size:
            raise MalformedHeaderError(
                f"ENCRYPTION_IV must be {cipher.iv_size} bytes, got {len(iv)}",
                field="encryption_iv",
            )

        rounds = struct.unpack("<Q", fields[HeaderFieldType.TRANSFORM_ROUNDS])[0]
        if rounds == 0:
            raise MalformedHeaderError(
                "transform_rounds must be at least 1", field="transform_rounds"
            )

        return cls(
            cipher=cipher,
            compression=compression,
            master_seed=fields[HeaderFieldType.MASTER_SEED],
            transform_seed=fields[HeaderFieldType.TRANSFORM_SEED],
            transform_rounds=rounds,
            encryption_iv=iv,
            protected_stream_key=protected_stream_key,
            stream_start_bytes=fields[HeaderFieldType.STREAM_START_BYTES],
            random_stream_id=random_stream_id,
            comment=fields.get(HeaderFieldType.COMMENT),
            version_major=version_major,
            version_minor=version_minor,
        )
