"""Codec settings.

Settings are a plain value passed to each codec; there is no module-level
configuration, so independent calls never share state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .exceptions import InvalidArgumentError
from .parsing.hashed_block import HashedBlockCodec
from .security.kdf import AES_KDF_MIN_ROUNDS

# Maximum size of an inflated payload (512 MiB)
# Prevents memory exhaustion from malicious gzip bombs
MAX_PAYLOAD_SIZE = 512 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class CodecSettings:
    """Settings for a KDBX encrypt/decrypt operation.

    Attributes:
        block_size: Data bytes per hashed block when framing
        stop_on_error: Abort on the first hashed block failure; when False,
            decrypt returns the data flagged as corrupted instead
        write_terminator_block: Emit an empty final hashed block, as the
            KeePass reference implementation does
        min_rounds_warning: Warn when reading a file with fewer AES-KDF rounds
        max_payload_size: Upper bound for the decompressed payload
    """

    block_size: int = HashedBlockCodec.DEFAULT_BLOCK_SIZE
    stop_on_error: bool = True
    write_terminator_block: bool = False
    min_rounds_warning: int = AES_KDF_MIN_ROUNDS
    max_payload_size: int = MAX_PAYLOAD_SIZE

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.block_size <= 0:
            raise InvalidArgumentError("block_size must be positive")
        if self.max_payload_size <= 0:
            raise InvalidArgumentError("max_payload_size must be positive")

    @classmethod
    def permissive(cls) -> CodecSettings:
        """Settings that keep reading past corrupt blocks."""
        return cls(stop_on_error=False)

    def with_options(self, **changes: object) -> CodecSettings:
        """Return a copy with some fields changed."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def block_codec(self) -> HashedBlockCodec:
        """Build a fresh hashed block codec from these settings."""
        return HashedBlockCodec(
            self.block_size,
            stop_on_error=self.stop_on_error,
            write_terminator=self.write_terminator_block,
        )


DEFAULT_SETTINGS = CodecSettings()
