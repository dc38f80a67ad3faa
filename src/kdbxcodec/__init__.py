"""kdbxcodec - Encrypt, decrypt and verify KeePass KDBX 3.x containers.

This library implements the container layer of KeePass databases: the
binary header, AES-KDF key derivation, AES-256-CBC payload encryption,
hashed block integrity framing and the Salsa20 keystream used for
protected values. The decrypted payload is handed back as bytes; mapping
it to groups and entries is left to the caller.

Example:
    from kdbxcodec import CompositeKey, KdbxCodec

    key = CompositeKey.from_password("secret")
    data = KdbxCodec().encrypt(xml_bytes, key, rounds=60000)

    result = KdbxCodec().decrypt(data, key)
    result.verify_header_hash()
    password = result.keystream.unmask(masked_value)
"""

__version__ = "0.1.0"

from .exceptions import (
    CiphertextLengthError,
    CredentialError,
    CryptoBackendUnavailableError,
    CryptoError,
    DecompressionError,
    DecryptionError,
    FormatError,
    HeaderHashMismatchError,
    IntegrityError,
    InvalidArgumentError,
    InvalidKeyFileError,
    InvalidSignatureError,
    InvalidStateError,
    KdbxError,
    MalformedHeaderError,
    MalformedPayloadError,
    MissingCredentialsError,
    PaddingError,
    UnsupportedCipherError,
    UnsupportedCompressionError,
    UnsupportedKeystreamError,
    UnsupportedVersionError,
    WrongKeyOrCorruptError,
)
from .parsing import (
    ByteReader,
    CodecState,
    CompressionType,
    DecryptedContainer,
    HashedBlockCodec,
    KdbxCodec,
    KdbxHeader,
    is_kdbx,
    read_kdbx3,
    write_kdbx3,
)
from .security import (
    AesKdfConfig,
    Cipher,
    CompositeKey,
    KeyFileKey,
    KeySource,
    KeystreamGenerator,
    PasswordKey,
    RandomStreamId,
    RawKey,
)
from .settings import CodecSettings

__all__ = [
    # Core classes
    "AesKdfConfig",
    "ByteReader",
    "Cipher",
    "CodecSettings",
    "CodecState",
    "CompositeKey",
    "CompressionType",
    "DecryptedContainer",
    "HashedBlockCodec",
    "KdbxCodec",
    "KdbxHeader",
    "KeyFileKey",
    "KeySource",
    "KeystreamGenerator",
    "PasswordKey",
    "RandomStreamId",
    "RawKey",
    "is_kdbx",
    "read_kdbx3",
    "write_kdbx3",
    # Exceptions
    "KdbxError",
    "FormatError",
    "MalformedHeaderError",
    "InvalidSignatureError",
    "UnsupportedVersionError",
    "UnsupportedCipherError",
    "UnsupportedCompressionError",
    "UnsupportedKeystreamError",
    "IntegrityError",
    "HeaderHashMismatchError",
    "MalformedPayloadError",
    "DecompressionError",
    "CryptoError",
    "CryptoBackendUnavailableError",
    "DecryptionError",
    "WrongKeyOrCorruptError",
    "PaddingError",
    "CiphertextLengthError",
    "CredentialError",
    "InvalidKeyFileError",
    "MissingCredentialsError",
    "InvalidArgumentError",
    "InvalidStateError",
]
