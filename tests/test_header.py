"""Tests for KDBX 3.x outer header parsing and serialization."""

import hashlib
import struct

import pytest

from kdbxcodec.exceptions import (
    InvalidSignatureError,
    InvalidStateError,
    MalformedHeaderError,
    UnsupportedCipherError,
    UnsupportedCompressionError,
    UnsupportedKeystreamError,
    UnsupportedVersionError,
)
from kdbxcodec.parsing import ByteReader, CompressionType, HeaderFieldType, KdbxHeader
from kdbxcodec.parsing.header import END_OF_HEADER_VALUE, KDBX_MAGIC
from kdbxcodec.security import Cipher, RandomStreamId

SEED_A = b"\x01" * 32
SEED_B = b"\x02" * 32
IV = b"\x03" * 16
STREAM_KEY = b"\x04" * 32
START_BYTES = b"\x05" * 32


def _field(field_type: int, value: bytes) -> bytes:
    return struct.pack("<BH", field_type, len(value)) + value


def _default_fields() -> dict[int, bytes]:
    return {
        HeaderFieldType.CIPHER_ID: Cipher.AES256_CBC.value,
        HeaderFieldType.COMPRESSION_FLAGS: struct.pack("<I", 0),
        HeaderFieldType.MASTER_SEED: SEED_A,
        HeaderFieldType.TRANSFORM_SEED: SEED_B,
        HeaderFieldType.TRANSFORM_ROUNDS: struct.pack("<Q", 6000),
        HeaderFieldType.ENCRYPTION_IV: IV,
        HeaderFieldType.PROTECTED_STREAM_KEY: STREAM_KEY,
        HeaderFieldType.STREAM_START_BYTES: START_BYTES,
        HeaderFieldType.INNER_RANDOM_STREAM_ID: struct.pack("<I", 2),
    }


def _build(
    fields: dict[int, bytes] | None = None,
    *,
    magic: bytes = KDBX_MAGIC,
    version: tuple[int, int] = (3, 1),
    extra: bytes = b"",
) -> bytes:
    """Assemble raw header bytes field by field."""
    fields = _default_fields() if fields is None else fields
    major, minor = version
    body = b"".join(_field(ft, value) for ft, value in fields.items())
    return magic + struct.pack("<HH", minor, major) + body + extra + _field(0, END_OF_HEADER_VALUE)


class TestHeaderParse:
    """Tests for KdbxHeader.parse."""

    def test_parse_known_header(self) -> None:
        """Test every field is decoded from hand-built bytes."""
        raw = _build()
        header, offset = KdbxHeader.from_bytes(raw + b"ciphertext")

        assert offset == len(raw)
        assert header.cipher == Cipher.AES256_CBC
        assert header.compression == CompressionType.NONE
        assert header.master_seed == SEED_A
        assert header.transform_seed == SEED_B
        assert header.transform_rounds == 6000
        assert header.encryption_iv == IV
        assert header.protected_stream_key == STREAM_KEY
        assert header.stream_start_bytes == START_BYTES
        assert header.random_stream_id == RandomStreamId.SALSA20
        assert (header.version_major, header.version_minor) == (3, 1)

    def test_header_hash_covers_end_field(self) -> None:
        """Test the hash is SHA-256 of all bytes through the end field."""
        raw = _build()
        header, _ = KdbxHeader.from_bytes(raw + b"\x00" * 16)
        assert header.raw_header == raw
        assert header.header_hash == hashlib.sha256(raw).digest()

    def test_reader_positioned_at_body(self) -> None:
        """Test the reader is left at the first ciphertext byte."""
        reader = ByteReader(_build() + b"BODY")
        KdbxHeader.parse(reader)
        assert reader.read_to_end() == b"BODY"

    def test_comment_field(self) -> None:
        """Test the optional comment is kept."""
        header, _ = KdbxHeader.from_bytes(_build(extra=_field(1, b"hello")))
        assert header.comment == b"hello"

    def test_version_3_0_accepted(self) -> None:
        """Test older 3.x minor versions are read."""
        header, _ = KdbxHeader.from_bytes(_build(version=(3, 0)))
        assert header.version_minor == 0

    def test_stream_id_defaults_to_none(self) -> None:
        """Test a header without stream fields declares no keystream."""
        fields = _default_fields()
        del fields[HeaderFieldType.INNER_RANDOM_STREAM_ID]
        del fields[HeaderFieldType.PROTECTED_STREAM_KEY]
        header, _ = KdbxHeader.from_bytes(_build(fields))
        assert header.random_stream_id == RandomStreamId.NONE
        assert header.protected_stream_key == b""


class TestHeaderErrors:
    """Tests for rejected headers."""

    def test_bad_signature(self) -> None:
        """Test wrong magic bytes are rejected."""
        with pytest.raises(InvalidSignatureError):
            KdbxHeader.from_bytes(_build(magic=b"\x00" * 8))

    def test_kdb_signature(self) -> None:
        """Test KeePass 1.x files get a specific message."""
        magic = struct.pack("<II", 0x9AA2D903, 0xB54BFB65)
        with pytest.raises(InvalidSignatureError, match="1.x"):
            KdbxHeader.from_bytes(_build(magic=magic))

    def test_short_input(self) -> None:
        """Test input shorter than the signature is rejected."""
        with pytest.raises(InvalidSignatureError):
            KdbxHeader.from_bytes(b"\x03\xd9")

    def test_signature_error_is_malformed_header(self) -> None:
        """Test signature errors belong to the header error group."""
        with pytest.raises(MalformedHeaderError) as exc_info:
            KdbxHeader.from_bytes(b"not a kdbx file")
        assert exc_info.value.stage == "header"

    def test_kdbx4_rejected(self) -> None:
        """Test version 4 containers are unsupported."""
        with pytest.raises(UnsupportedVersionError) as exc_info:
            KdbxHeader.from_bytes(_build(version=(4, 0)))
        assert exc_info.value.version_major == 4

    def test_truncated_header(self) -> None:
        """Test a header without end field is rejected."""
        raw = _build()
        with pytest.raises(MalformedHeaderError, match="Truncated"):
            KdbxHeader.from_bytes(raw[:-10])

    def test_unknown_field(self) -> None:
        """Test unknown field ids are rejected."""
        with pytest.raises(MalformedHeaderError, match="Unknown header field"):
            KdbxHeader.from_bytes(_build(extra=_field(42, b"x")))

    def test_duplicate_field(self) -> None:
        """Test a repeated field is rejected."""
        with pytest.raises(MalformedHeaderError, match="Duplicate"):
            KdbxHeader.from_bytes(_build(extra=_field(HeaderFieldType.MASTER_SEED, SEED_A)))

    @pytest.mark.parametrize(
        "field_type",
        [
            HeaderFieldType.MASTER_SEED,
            HeaderFieldType.TRANSFORM_SEED,
            HeaderFieldType.STREAM_START_BYTES,
            HeaderFieldType.CIPHER_ID,
            HeaderFieldType.TRANSFORM_ROUNDS,
        ],
    )
    def test_wrong_field_size(self, field_type: HeaderFieldType) -> None:
        """Test fixed-size fields must have their exact length."""
        fields = _default_fields()
        fields[field_type] = fields[field_type][:-1]
        with pytest.raises(MalformedHeaderError) as exc_info:
            KdbxHeader.from_bytes(_build(fields))
        assert exc_info.value.field == field_type.name.lower()

    def test_wrong_iv_size(self) -> None:
        """Test the IV must match the cipher block size."""
        fields = _default_fields()
        fields[HeaderFieldType.ENCRYPTION_IV] = b"\x00" * 12
        with pytest.raises(MalformedHeaderError, match="ENCRYPTION_IV"):
            KdbxHeader.from_bytes(_build(fields))

    def test_missing_required_field(self) -> None:
        """Test missing required fields are reported by name."""
        fields = _default_fields()
        del fields[HeaderFieldType.MASTER_SEED]
        with pytest.raises(MalformedHeaderError, match="MASTER_SEED"):
            KdbxHeader.from_bytes(_build(fields))

    def test_missing_stream_key_for_salsa20(self) -> None:
        """Test Salsa20 requires a protected stream key."""
        fields = _default_fields()
        del fields[HeaderFieldType.PROTECTED_STREAM_KEY]
        with pytest.raises(MalformedHeaderError, match="PROTECTED_STREAM_KEY"):
            KdbxHeader.from_bytes(_build(fields))

    def test_zero_rounds(self) -> None:
        """Test a zero round count is rejected."""
        fields = _default_fields()
        fields[HeaderFieldType.TRANSFORM_ROUNDS] = struct.pack("<Q", 0)
        with pytest.raises(MalformedHeaderError, match="transform_rounds"):
            KdbxHeader.from_bytes(_build(fields))

    def test_unknown_cipher(self) -> None:
        """Test unknown cipher ids are rejected."""
        fields = _default_fields()
        fields[HeaderFieldType.CIPHER_ID] = b"\xee" * 16
        with pytest.raises(UnsupportedCipherError):
            KdbxHeader.from_bytes(_build(fields))

    def test_twofish_cipher(self) -> None:
        """Test known but unsupported ciphers are rejected."""
        fields = _default_fields()
        fields[HeaderFieldType.CIPHER_ID] = Cipher.TWOFISH256_CBC.value
        with pytest.raises(UnsupportedCipherError) as exc_info:
            KdbxHeader.from_bytes(_build(fields))
        assert isinstance(exc_info.value, MalformedHeaderError)

    def test_unknown_compression(self) -> None:
        """Test compression values other than 0/1 are rejected."""
        fields = _default_fields()
        fields[HeaderFieldType.COMPRESSION_FLAGS] = struct.pack("<I", 7)
        with pytest.raises(UnsupportedCompressionError) as exc_info:
            KdbxHeader.from_bytes(_build(fields))
        assert exc_info.value.compression == 7

    @pytest.mark.parametrize("stream_id", [1, 3, 99])
    def test_unsupported_stream_id(self, stream_id: int) -> None:
        """Test only none and Salsa20 keystreams are accepted."""
        fields = _default_fields()
        fields[HeaderFieldType.INNER_RANDOM_STREAM_ID] = struct.pack("<I", stream_id)
        with pytest.raises(UnsupportedKeystreamError) as exc_info:
            KdbxHeader.from_bytes(_build(fields))
        assert exc_info.value.stream_id == stream_id


class TestHeaderBuild:
    """Tests for KdbxHeader.create and to_bytes."""

    def test_create_generates_random_fields(self) -> None:
        """Test two new headers never share seeds."""
        first = KdbxHeader.create(6000)
        second = KdbxHeader.create(6000)
        assert first.master_seed != second.master_seed
        assert first.transform_seed != second.transform_seed
        assert first.encryption_iv != second.encryption_iv
        assert first.stream_start_bytes != second.stream_start_bytes

    def test_serialize_then_parse(self) -> None:
        """Test a serialized header parses back to the same values."""
        header = KdbxHeader.create(12345, random_stream_id=RandomStreamId.SALSA20)
        raw = header.to_bytes()
        parsed, offset = KdbxHeader.from_bytes(raw)

        assert offset == len(raw)
        assert parsed.master_seed == header.master_seed
        assert parsed.transform_seed == header.transform_seed
        assert parsed.transform_rounds == 12345
        assert parsed.encryption_iv == header.encryption_iv
        assert parsed.protected_stream_key == header.protected_stream_key
        assert parsed.stream_start_bytes == header.stream_start_bytes
        assert parsed.random_stream_id == RandomStreamId.SALSA20
        assert parsed.header_hash == header.header_hash

    def test_starts_with_magic_and_version(self) -> None:
        """Test serialized bytes begin with signature and version 3.1."""
        raw = KdbxHeader.create(1).to_bytes()
        assert raw[:8] == KDBX_MAGIC
        assert struct.unpack("<HH", raw[8:12]) == (1, 3)
        assert raw.endswith(b"\x00\x04\x00\r\n\r\n")

    def test_max_rounds_serialized(self) -> None:
        """Test the full u64 round count survives serialization."""
        raw = KdbxHeader.create(2**64 - 1).to_bytes()
        parsed, _ = KdbxHeader.from_bytes(raw)
        assert parsed.transform_rounds == 2**64 - 1

    def test_hash_frozen_after_serialize(self) -> None:
        """Test the hash is fixed by the first serialization."""
        header = KdbxHeader.create(6000)
        assert not header.is_frozen
        raw = header.to_bytes()
        assert header.is_frozen
        assert header.to_bytes() is raw
        with pytest.raises(InvalidStateError):
            header._freeze(raw)

    def test_hash_unavailable_before_serialize(self) -> None:
        """Test accessing the hash of a fresh header is a state error."""
        with pytest.raises(InvalidStateError):
            _ = KdbxHeader.create(6000).header_hash

    def test_no_stream_key_without_stream(self) -> None:
        """Test a header with an empty stream key and no stream serializes."""
        header = KdbxHeader.create(10)
        header.protected_stream_key = b""
        parsed, _ = KdbxHeader.from_bytes(header.to_bytes())
        assert parsed.protected_stream_key == b""

    def test_validate_rejects_short_seed(self) -> None:
        """Test validate checks seed lengths."""
        header = KdbxHeader.create(10)
        header.master_seed = b"short"
        with pytest.raises(MalformedHeaderError, match="master_seed"):
            header.to_bytes()

    def test_kdf_config(self) -> None:
        """Test kdf_config mirrors the rounds and transform seed."""
        header = KdbxHeader.create(777)
        assert header.kdf_config.rounds == 777
        assert header.kdf_config.salt == header.transform_seed
