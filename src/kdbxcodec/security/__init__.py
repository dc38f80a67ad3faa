"""Security-critical components for kdbxcodec.

This module contains all security-sensitive code including:
- Secure memory handling (SecureBytes)
- AES-256 engines for key stretching and payload encryption
- Key sources and the composite key
- Key derivation (AES-KDF)
- The Salsa20 keystream for protected values

All code in this module should be audited carefully.
"""

from .crypto import (
    AES_BLOCK_SIZE,
    CRYPTO_BACKEND_AVAILABLE,
    AesTransform,
    BlockCipher,
    Cipher,
    CipherContext,
    add_pkcs7_padding,
    constant_time_compare,
    remove_pkcs7_padding,
    require_backend,
    secure_random_bytes,
)
from .kdf import (
    AES_KDF_MAX_ROUNDS,
    AES_KDF_MIN_ROUNDS,
    AesKdfConfig,
    derive_key_aes_kdf,
    derive_master_key,
)
from .keyfile import KeyFileVersion, parse_keyfile
from .keys import (
    CompositeKey,
    KeyFileKey,
    KeySource,
    PasswordKey,
    RawKey,
)
from .memory import SecureBytes
from .stream import (
    SALSA20_NONCE,
    KeystreamGenerator,
    RandomStreamId,
    check_stream_id,
)

__all__ = [
    # Memory
    "SecureBytes",
    # Crypto
    "AES_BLOCK_SIZE",
    "CRYPTO_BACKEND_AVAILABLE",
    "AesTransform",
    "BlockCipher",
    "Cipher",
    "CipherContext",
    "add_pkcs7_padding",
    "constant_time_compare",
    "remove_pkcs7_padding",
    "require_backend",
    "secure_random_bytes",
    # KDF
    "AES_KDF_MAX_ROUNDS",
    "AES_KDF_MIN_ROUNDS",
    "AesKdfConfig",
    "derive_key_aes_kdf",
    "derive_master_key",
    # Keys
    "CompositeKey",
    "KeyFileKey",
    "KeyFileVersion",
    "KeySource",
    "PasswordKey",
    "RawKey",
    "parse_keyfile",
    # Keystream
    "SALSA20_NONCE",
    "KeystreamGenerator",
    "RandomStreamId",
    "check_stream_id",
]
