"""KeePass keyfile processing.

KeePass supports several keyfile formats:
1. XML keyfile (v1.0 or v2.0) - key is base64/hex encoded in XML
2. 32-byte raw binary - used directly
3. 64-byte hex string - decoded from hex
4. Any other size - SHA-256 hashed

Only reading is supported; creating keyfiles is left to KeePass itself.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from enum import Enum

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException

from kdbxcodec.exceptions import InvalidKeyFileError

from .crypto import constant_time_compare


class KeyFileVersion(Enum):
    """Detected keyfile layout."""

    XML_V1 = "1.0"
    XML_V2 = "2.0"
    RAW = "raw"
    HEX = "hex"
    HASHED = "hashed"


def _parse_xml_keyfile(keyfile_data: bytes) -> tuple[KeyFileVersion, bytes] | None:
    """Return the key from an XML keyfile, or None if it isn't one."""
    try:
        tree = DefusedET.fromstring(keyfile_data)
    except (DefusedET.ParseError, DefusedXmlException, ValueError):
        return None

    if tree.tag != "KeyFile":
        return None
    version_elem = tree.find("Meta/Version")
    data_elem = tree.find("Key/Data")
    if version_elem is None or data_elem is None:
        return None

    version = (version_elem.text or "").strip()
    text = "".join((data_elem.text or "").split())
    if version.startswith("1.0"):
        # Version 1.0: base64 encoded
        try:
            return KeyFileVersion.XML_V1, base64.b64decode(text, validate=True)
        except binascii.Error as e:
            raise InvalidKeyFileError("Keyfile data is not valid base64") from e
    if version.startswith("2.0"):
        # Version 2.0: hex encoded with hash verification
        try:
            key_bytes = bytes.fromhex(text)
        except ValueError as e:
            raise InvalidKeyFileError("Keyfile data is not valid hex") from e
        if "Hash" in data_elem.attrib:
            try:
                expected_hash = bytes.fromhex(data_elem.attrib["Hash"])
            except ValueError as e:
                raise InvalidKeyFileError("Keyfile hash is not valid hex") from e
            computed_hash = hashlib.sha256(key_bytes).digest()[:4]
            if not constant_time_compare(expected_hash, computed_hash):
                raise InvalidKeyFileError("Keyfile hash verification failed")
        return KeyFileVersion.XML_V2, key_bytes
    raise InvalidKeyFileError(f"Unsupported XML keyfile version: {version}")


def parse_keyfile(keyfile_data: bytes) -> tuple[KeyFileVersion, bytes]:
    """Process keyfile data according to KeePass keyfile format.

    Args:
        keyfile_data: Raw keyfile contents

    Returns:
        Tuple of detected version and the 32-byte key

    Raises:
        InvalidKeyFileError: If the keyfile is empty or a malformed XML keyfile
    """
    if not keyfile_data:
        raise InvalidKeyFileError("Keyfile is empty")

    xml_key = _parse_xml_keyfile(keyfile_data)
    if xml_key is not None:
        return xml_key

    # Check for raw 32-byte key
    if len(keyfile_data) == 32:
        return KeyFileVersion.RAW, keyfile_data

    # Check for 64-byte hex-encoded key
    if len(keyfile_data) == 64:
        try:
            return KeyFileVersion.HEX, bytes.fromhex(keyfile_data.decode("ascii"))
        except (ValueError, UnicodeDecodeError):
            pass  # Not hex

    # Hash anything else
    return KeyFileVersion.HASHED, hashlib.sha256(keyfile_data).digest()
