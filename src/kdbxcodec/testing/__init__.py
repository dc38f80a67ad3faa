"""Test utilities for kdbxcodec.

WARNING: The helpers in this module are for TESTING ONLY.
They deliberately produce weak containers.

Real containers need a round count high enough to slow down brute force
(KeePass uses tens of thousands or more). Tests want the opposite: fast
round trips. These helpers are useful for:
- Unit testing the codec without waiting on the KDF
- Building minimal KeePassFile payloads with a header hash and
  protected values
- Corrupting containers in controlled ways

DO NOT use FAST_ROUNDS for anything that protects real secrets.
"""

from __future__ import annotations

import base64
from xml.sax.saxutils import escape

from kdbxcodec.parsing.header import KdbxHeader
from kdbxcodec.security.keys import CompositeKey
from kdbxcodec.security.stream import KeystreamGenerator
from kdbxcodec.settings import CodecSettings

# Enough to exercise the stretch loop without slowing tests down
FAST_ROUNDS = 10

# Settings that don't warn about FAST_ROUNDS containers
FAST_SETTINGS = CodecSettings(min_rounds_warning=FAST_ROUNDS)

TEST_PASSWORD = "TesteDatabase01"


def password_key(password: str = TEST_PASSWORD) -> CompositeKey:
    """Composite key from a single password."""
    return CompositeKey.from_password(password)


def flip_byte(data: bytes, offset: int, mask: int = 0x01) -> bytes:
    """Return data with the byte at offset XOR-ed with mask.

    Negative offsets count from the end, like indexing.
    """
    if not 0 < mask <= 0xFF:
        raise ValueError("mask must be between 1 and 255")
    buffer = bytearray(data)
    buffer[offset] ^= mask
    return bytes(buffer)


def body_offset(container: bytes) -> int:
    """Offset of the first ciphertext byte in a container."""
    _header, offset = KdbxHeader.from_bytes(container)
    return offset


def build_payload_xml(
    header_hash: bytes | None,
    *,
    protected: dict[str, str] | None = None,
    keystream: KeystreamGenerator | None = None,
) -> bytes:
    """Build a minimal KeePassFile document.

    Args:
        header_hash: Value for Meta/HeaderHash (omitted when None)
        protected: Entry string fields to store Protected="True", masked
            with keystream in the order given
        keystream: Stream used to mask the protected values

    Returns:
        UTF-8 encoded XML
    """
    parts = ['<?xml version="1.0" encoding="utf-8" standalone="yes"?>', "<KeePassFile>", "<Meta>"]
    if header_hash is not None:
        parts.append(f"<HeaderHash>{base64.b64encode(header_hash).decode('ascii')}</HeaderHash>")
    parts.append("<Generator>kdbxcodec</Generator>")
    parts.append("</Meta>")
    parts.append("<Root><Group><Name>Root</Name><Entry>")
    for name, value in (protected or {}).items():
        if keystream is None:
            raise ValueError("keystream is required for protected values")
        masked = base64.b64encode(keystream.mask(value.encode("utf-8"))).decode("ascii")
        parts.append(
            f"<String><Key>{escape(name)}</Key>"
            f'<Value Protected="True">{masked}</Value></String>'
        )
    parts.append("</Entry></Group></Root>")
    parts.append("</KeePassFile>")
    return "".join(parts).encode("utf-8")


__all__ = [
    "FAST_ROUNDS",
    "FAST_SETTINGS",
    "TEST_PASSWORD",
    "body_offset",
    "build_payload_xml",
    "flip_byte",
    "password_key",
]
