"""Key derivation for KDBX 3.x containers (AES-KDF).

The payload key is derived from the composite key hash in three steps:
1. Stretch: AES-256-ECB encrypt the 32-byte hash `rounds` times, keyed
   with the header's transform seed
2. final = SHA-256(stretched)
3. key = SHA-256(master_seed || final)

Security considerations:
- The round count is the only thing slowing down brute force; low counts
  are accepted when reading but reported through warnings
- All derived keys are returned as SecureBytes for automatic zeroization
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from kdbxcodec.exceptions import InvalidArgumentError

from .crypto import AesTransform
from .memory import SecureBytes

logger = logging.getLogger(__name__)

# KeePass 2.x default when AES-KDF was introduced; anything lower is weak
AES_KDF_MIN_ROUNDS = 6000
AES_KDF_MAX_ROUNDS = 2**64 - 1

SEED_SIZE = 32


@dataclass(frozen=True, slots=True)
class AesKdfConfig:
    """Configuration for AES-KDF.

    Attributes:
        rounds: Number of AES encryption rounds (unsigned 64-bit)
        salt: 32-byte transform seed
    """

    rounds: int
    salt: bytes

    def __post_init__(self) -> None:
        """Validate configuration."""
        if len(self.salt) != SEED_SIZE:
            raise InvalidArgumentError("AES-KDF salt must be exactly 32 bytes")
        if not 1 <= self.rounds <= AES_KDF_MAX_ROUNDS:
            raise InvalidArgumentError(
                "AES-KDF rounds must be between 1 and 2**64 - 1"
            )

    def validate_security(self, min_rounds: int = AES_KDF_MIN_ROUNDS) -> None:
        """Check that the round count meets the minimum.

        Raises:
            ValueError: If rounds are below min_rounds
        """
        if self.rounds < min_rounds:
            raise ValueError(
                f"Weak AES-KDF parameters: {self.rounds} rounds is below "
                f"minimum {min_rounds}"
            )


def derive_key_aes_kdf(
    password: bytes,
    config: AesKdfConfig,
) -> SecureBytes:
    """Stretch a 32-byte composite hash with AES-KDF.

    This performs repeated AES-ECB encryption of the password
    using the salt as key, then hashes the result once.

    Args:
        password: 32-byte composite key hash
        config: AES-KDF configuration

    Returns:
        32-byte SHA-256 of the stretched value wrapped in SecureBytes

    Raises:
        InvalidArgumentError: If password is not 32 bytes
        CryptoBackendUnavailableError: If AES is not available
    """
    if len(password) != 32:
        raise InvalidArgumentError("AES-KDF requires 32-byte input")

    logger.debug("Running AES-KDF with %d rounds", config.rounds)
    with AesTransform(config.salt) as transform:
        stretched = bytearray(transform.transform(password, config.rounds))

    try:
        return SecureBytes(hashlib.sha256(stretched).digest())
    finally:
        # Zeroize intermediate value
        for i in range(len(stretched)):
            stretched[i] = 0


def derive_master_key(
    composite_key: bytes,
    master_seed: bytes,
    config: AesKdfConfig,
) -> SecureBytes:
    """Derive the payload cipher key.

    KDBX 3.x key derivation:
    - transformed = SHA256(AES-KDF(composite_key))
    - cipher_key = SHA256(master_seed || transformed)

    Args:
        composite_key: 32-byte composite key hash
        master_seed: 32-byte master seed from the header
        config: AES-KDF configuration (rounds and transform seed)

    Returns:
        32-byte payload key wrapped in SecureBytes
    """
    if len(master_seed) != SEED_SIZE:
        raise InvalidArgumentError("Master seed must be exactly 32 bytes")

    with derive_key_aes_kdf(composite_key, config) as transformed:
        return SecureBytes(hashlib.sha256(master_seed + transformed.data).digest())
