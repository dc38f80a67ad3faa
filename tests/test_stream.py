"""Tests for the protected value keystream."""

import hashlib

import pytest
from Cryptodome.Cipher import Salsa20

from kdbxcodec.exceptions import InvalidArgumentError, UnsupportedKeystreamError
from kdbxcodec.parsing import KdbxHeader
from kdbxcodec.security import (
    SALSA20_NONCE,
    KeystreamGenerator,
    RandomStreamId,
    check_stream_id,
)

STREAM_KEY = b"\x42" * 32


class TestKeystreamGenerator:
    """Tests for KeystreamGenerator."""

    def test_matches_salsa20(self) -> None:
        """Test output is Salsa20 keyed with SHA-256 of the stream key."""
        reference = Salsa20.new(key=hashlib.sha256(STREAM_KEY).digest(), nonce=SALSA20_NONCE)
        expected = reference.encrypt(bytes(64))
        assert KeystreamGenerator(STREAM_KEY).get_next_bytes(64) == expected

    def test_nonce_constant(self) -> None:
        """Test the fixed KDBX nonce."""
        assert SALSA20_NONCE == bytes.fromhex("e830094b97205d2a")

    def test_deterministic(self) -> None:
        """Test two generators with the same key agree."""
        assert (
            KeystreamGenerator(STREAM_KEY).get_next_bytes(100)
            == KeystreamGenerator(STREAM_KEY).get_next_bytes(100)
        )

    @pytest.mark.parametrize("split", [0, 1, 31, 64, 65, 99])
    def test_split_reads_concatenate(self, split: int) -> None:
        """Test n then m bytes equal n+m bytes in one call."""
        whole = KeystreamGenerator(STREAM_KEY).get_next_bytes(100)
        stream = KeystreamGenerator(STREAM_KEY)
        parts = stream.get_next_bytes(split) + stream.get_next_bytes(100 - split)
        assert parts == whole
        assert stream.position == 100

    def test_mask_then_unmask(self) -> None:
        """Test values masked in order unmask in the same order."""
        writer = KeystreamGenerator(STREAM_KEY)
        masked = [writer.mask(v) for v in (b"first", b"", b"second secret")]

        reader = KeystreamGenerator(STREAM_KEY)
        assert [reader.unmask(m) for m in masked] == [b"first", b"", b"second secret"]

    def test_out_of_order_unmask_garbles(self) -> None:
        """Test consuming values out of order gives wrong plaintext."""
        writer = KeystreamGenerator(STREAM_KEY)
        first = writer.mask(b"aaaa")
        second = writer.mask(b"bbbb")

        reader = KeystreamGenerator(STREAM_KEY)
        assert reader.unmask(second) != b"bbbb"
        assert reader.unmask(first) != b"aaaa"

    def test_negative_count(self) -> None:
        """Test negative reads are rejected."""
        with pytest.raises(InvalidArgumentError):
            KeystreamGenerator(STREAM_KEY).get_next_bytes(-1)

    def test_empty_key(self) -> None:
        """Test an empty stream key is rejected."""
        with pytest.raises(InvalidArgumentError):
            KeystreamGenerator(b"")


class TestForHeader:
    """Tests for KeystreamGenerator.for_header and check_stream_id."""

    def test_no_stream(self) -> None:
        """Test headers without a stream yield None."""
        assert KeystreamGenerator.for_header(KdbxHeader.create(10)) is None

    def test_salsa20_stream(self) -> None:
        """Test a Salsa20 header yields a generator keyed from the header."""
        header = KdbxHeader.create(10, random_stream_id=RandomStreamId.SALSA20)
        stream = KeystreamGenerator.for_header(header)
        assert stream is not None
        expected = KeystreamGenerator(header.protected_stream_key).get_next_bytes(16)
        assert stream.get_next_bytes(16) == expected

    def test_unsupported_stream(self) -> None:
        """Test other algorithms are refused."""
        header = KdbxHeader.create(10)
        header.random_stream_id = RandomStreamId.CHACHA20
        with pytest.raises(UnsupportedKeystreamError):
            KeystreamGenerator.for_header(header)

    def test_check_stream_id(self) -> None:
        """Test stream id validation."""
        assert check_stream_id(0) == RandomStreamId.NONE
        assert check_stream_id(2) == RandomStreamId.SALSA20
        with pytest.raises(UnsupportedKeystreamError):
            check_stream_id(1)
        with pytest.raises(UnsupportedKeystreamError):
            check_stream_id(4)
