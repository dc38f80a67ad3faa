"""KDBX binary format parsing and building.

This module handles low-level binary format operations:
- Header parsing and validation
- Hashed block framing of the payload
- KDBX 3.x container encryption/decryption
- Header hash link between binary header and XML payload

All parsing uses Python's struct module for binary operations.
"""

from .hashed_block import (
    HashedBlock,
    HashedBlockCodec,
    UnframeResult,
    frame_payload,
    unframe_payload,
)
from .header import (
    KDBX_MAGIC,
    CompressionType,
    HeaderFieldType,
    KdbxHeader,
)
from .kdbx3 import (
    CodecState,
    DecryptedContainer,
    KdbxCodec,
    is_kdbx,
    read_kdbx3,
    write_kdbx3,
)
from .payload import (
    embed_header_hash,
    extract_header_hash,
    strip_header_hash,
    verify_header_hash,
)
from .reader import ByteReader

__all__ = [
    # Reader
    "ByteReader",
    # Header
    "KDBX_MAGIC",
    "CompressionType",
    "HeaderFieldType",
    "KdbxHeader",
    # Hashed blocks
    "HashedBlock",
    "HashedBlockCodec",
    "UnframeResult",
    "frame_payload",
    "unframe_payload",
    # KDBX3
    "CodecState",
    "DecryptedContainer",
    "KdbxCodec",
    "is_kdbx",
    "read_kdbx3",
    "write_kdbx3",
    # Payload
    "embed_header_hash",
    "extract_header_hash",
    "strip_header_hash",
    "verify_header_hash",
]
