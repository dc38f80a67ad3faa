"""Custom exception hierarchy for kdbxcodec.

This module provides a rich exception hierarchy so callers can tell a
wrong password apart from a corrupt file or an unsupported format.
All exceptions inherit from KdbxError.

Exception Hierarchy:
    KdbxError (base)
    ├── FormatError
    │   ├── MalformedHeaderError
    │   │   ├── InvalidSignatureError
    │   │   ├── UnsupportedVersionError
    │   │   ├── UnsupportedCipherError
    │   │   ├── UnsupportedCompressionError
    │   │   └── UnsupportedKeystreamError
    │   ├── IntegrityError
    │   ├── HeaderHashMismatchError
    │   ├── MalformedPayloadError
    │   └── DecompressionError
    ├── CryptoError
    │   ├── CryptoBackendUnavailableError
    │   └── DecryptionError
    │       ├── WrongKeyOrCorruptError
    │       ├── PaddingError
    │       └── CiphertextLengthError
    ├── CredentialError
    │   ├── InvalidKeyFileError
    │   └── MissingCredentialsError
    ├── InvalidArgumentError
    └── InvalidStateError

Every exception carries a ``stage`` attribute naming the step of the
protocol that failed ("header", "kdf", "decrypt", "start_bytes",
"blocks", "decompress", "payload", ...).

Security Note:
    Exception messages are designed to avoid leaking sensitive information.
    They provide enough context for debugging without exposing secrets.
"""

from __future__ import annotations


class KdbxError(Exception):
    """Base exception for all kdbxcodec errors.

    All exceptions raised by kdbxcodec inherit from this class,
    making it easy to catch all library-specific errors.
    """

    stage: str = "unknown"

    def __init__(self, message: str = "", *, stage: str | None = None) -> None:
        if stage is not None:
            self.stage = stage
        super().__init__(message)


# --- Format Errors ---


class FormatError(KdbxError):
    """Error in KDBX file format or structure.

    Raised when the container doesn't conform to the KDBX 3.1 layout.
    """


class MalformedHeaderError(FormatError):
    """The binary header is truncated, inconsistent or unsupported.

    Attributes:
        field: Name of the header field that failed validation, if known
    """

    stage = "header"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidSignatureError(MalformedHeaderError):
    """Invalid KDBX file signature (magic bytes).

    The data doesn't start with the expected KDBX magic bytes,
    indicating it's not a KeePass database file.
    """

    def __init__(self, message: str = "Not a KDBX file (bad signature)") -> None:
        super().__init__(message, field="signature")


class UnsupportedVersionError(MalformedHeaderError):
    """Unsupported KDBX version.

    Only the 3.x container (AES-KDF, hashed blocks) is handled.
    """

    def __init__(self, version_major: int, version_minor: int) -> None:
        self.version_major = version_major
        self.version_minor = version_minor
        super().__init__(
            f"Unsupported KDBX version: {version_major}.{version_minor}",
            field="version",
        )


class UnsupportedCipherError(MalformedHeaderError):
    """Unknown or unsupported cipher algorithm.

    Only AES-256 is supported; the id is kept for diagnostics.
    """

    def __init__(self, cipher_id: bytes) -> None:
        self.cipher_id = cipher_id
        super().__init__(f"Unsupported cipher: {cipher_id.hex()}", field="cipher_id")


class UnsupportedCompressionError(MalformedHeaderError):
    """Compression flag is unknown, or compression was requested on encrypt."""

    def __init__(self, compression: int, message: str | None = None) -> None:
        self.compression = compression
        super().__init__(
            message or f"Unsupported compression: {compression}",
            field="compression",
        )


class UnsupportedKeystreamError(MalformedHeaderError):
    """Inner random stream algorithm other than none/Salsa20."""

    def __init__(self, stream_id: int) -> None:
        self.stream_id = stream_id
        super().__init__(
            f"Unsupported protected stream algorithm: {stream_id}",
            field="random_stream_id",
        )


class IntegrityError(FormatError):
    """A hashed block failed its index or SHA-256 check.

    Attributes:
        block_index: Index of the offending block, if known
    """

    stage = "blocks"

    def __init__(
        self,
        message: str = "Block integrity check failed",
        *,
        block_index: int | None = None,
    ) -> None:
        self.block_index = block_index
        super().__init__(message)


class HeaderHashMismatchError(FormatError):
    """Header hash embedded in the payload doesn't match the binary header.

    Detects a header that was swapped or modified independently of
    the encrypted body.
    """

    stage = "payload"

    def __init__(
        self, message: str = "Header hash mismatch - header and payload don't belong together"
    ) -> None:
        super().__init__(message)


class MalformedPayloadError(FormatError):
    """Decrypted payload isn't the XML document it claims to be."""

    stage = "payload"


class DecompressionError(FormatError):
    """Gzip-compressed payload could not be inflated."""

    stage = "decompress"


# --- Crypto Errors ---


class CryptoError(KdbxError):
    """Error in cryptographic operations.

    Base class for all cryptographic errors including encryption,
    decryption, and key derivation.
    """


class CryptoBackendUnavailableError(CryptoError):
    """The AES/Salsa20 backend (pycryptodomex) could not be loaded."""

    stage = "kdf"

    def __init__(self) -> None:
        super().__init__(
            "Cryptographic backend not available. "
            "Install with: pip install pycryptodomex"
        )


class DecryptionError(CryptoError):
    """Failed to decrypt container content."""

    stage = "decrypt"

    def __init__(self, message: str = "Decryption failed", *, stage: str | None = None) -> None:
        super().__init__(message, stage=stage)


class WrongKeyOrCorruptError(DecryptionError):
    """Decryption produced garbage.

    This is the primary "wrong password" signal. The message is kept
    generic to avoid confirming which credential component is incorrect.
    """

    def __init__(
        self,
        message: str = "Decryption failed - wrong credentials or corrupted file",
        *,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)


class PaddingError(DecryptionError):
    """PKCS7 padding of the last decrypted block is invalid."""

    def __init__(self, message: str = "Invalid PKCS7 padding") -> None:
        super().__init__(message)


class CiphertextLengthError(DecryptionError):
    """Ciphertext is empty or not a multiple of the cipher block size."""

    def __init__(self, length: int, block_size: int = 16) -> None:
        self.length = length
        super().__init__(
            f"Ciphertext length {length} is not a positive multiple of {block_size}"
        )


# --- Credential Errors ---


class CredentialError(KdbxError):
    """Error with the key material supplied by the caller."""

    stage = "key"


class InvalidKeyFileError(CredentialError):
    """Invalid keyfile.

    The keyfile is malformed or failed hash verification.
    """

    def __init__(self, message: str = "Invalid keyfile") -> None:
        super().__init__(message)


# --- Caller Errors ---


class InvalidArgumentError(KdbxError, ValueError):
    """A caller-supplied argument is out of range or the wrong shape."""

    stage = "argument"


class MissingCredentialsError(CredentialError, InvalidArgumentError):
    """No credentials provided.

    At least one key source (password, keyfile, raw key) is required.
    """

    stage = "key"

    def __init__(self) -> None:
        super().__init__("At least one credential (password or keyfile) is required")


class InvalidStateError(KdbxError, RuntimeError):
    """An object was used outside its lifecycle.

    Raised for an empty CompositeKey, a reused single-use codec, or an
    attempt to overwrite a frozen header hash.
    """

    stage = "state"
