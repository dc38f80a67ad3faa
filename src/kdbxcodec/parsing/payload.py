"""Link between the binary header and the decrypted payload.

A KDBX 3.x payload is an XML document whose ``Meta/HeaderHash`` element
holds the base64 SHA-256 of the binary header. Comparing the two detects
a header that was swapped or edited independently of the body.

For raw (non-XML) payloads the hash can instead be prepended to the
content before encryption and checked/stripped after decryption.
"""

from __future__ import annotations

import base64
import binascii
import logging

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as DefusedET

from kdbxcodec.exceptions import (
    HeaderHashMismatchError,
    InvalidArgumentError,
    MalformedPayloadError,
)
from kdbxcodec.security import constant_time_compare

logger = logging.getLogger(__name__)

HEADER_HASH_SIZE = 32


def extract_header_hash(xml_data: bytes) -> bytes | None:
    """Return the header hash declared in the payload XML.

    Args:
        xml_data: Decrypted payload (KeePassFile XML document)

    Returns:
        The decoded hash, or None if the document declares none

    Raises:
        MalformedPayloadError: If the XML or the base64 value is invalid
    """
    try:
        root = DefusedET.fromstring(xml_data)
    except (DefusedET.ParseError, DefusedXmlException) as e:
        raise MalformedPayloadError(f"Invalid payload XML: {e}") from e

    elem = root.find("Meta/HeaderHash")
    if elem is None or not (elem.text or "").strip():
        return None
    try:
        return base64.b64decode(elem.text.strip(), validate=True)
    except binascii.Error as e:
        raise MalformedPayloadError("HeaderHash is not valid base64") from e


def verify_header_hash(xml_data: bytes, header_hash: bytes) -> None:
    """Check the payload's declared header hash against the binary header.

    Raises:
        HeaderHashMismatchError: If the hash is missing or differs
        MalformedPayloadError: If the payload isn't valid XML
    """
    declared = extract_header_hash(xml_data)
    if declared is None:
        raise HeaderHashMismatchError("Payload does not declare a header hash")
    if not constant_time_compare(declared, header_hash):
        raise HeaderHashMismatchError()
    logger.debug("Payload header hash verified")


def embed_header_hash(content: bytes, header_hash: bytes) -> bytes:
    """Prepend the raw header hash to content."""
    if len(header_hash) != HEADER_HASH_SIZE:
        raise InvalidArgumentError(f"Header hash must be {HEADER_HASH_SIZE} bytes")
    return header_hash + content


def strip_header_hash(content: bytes, header_hash: bytes) -> bytes:
    """Check and remove a header hash prepended by embed_header_hash().

    Raises:
        HeaderHashMismatchError: If content doesn't start with header_hash
    """
    if len(content) < HEADER_HASH_SIZE or not constant_time_compare(
        content[:HEADER_HASH_SIZE], header_hash
    ):
        raise HeaderHashMismatchError()
    return content[HEADER_HASH_SIZE:]
