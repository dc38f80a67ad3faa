"""Key sources and the composite master key.

A key source turns some secret material into a fixed-length SHA-256
hash. A CompositeKey combines one or more sources, in the order they
were added, into the single 32-byte hash fed to the KDF:

    composite = SHA-256(hash_1 || hash_2 || ... || hash_n)

Example:
    key = CompositeKey()
    key.add_key(PasswordKey("secret"))
    key.add_key(KeyFileKey(Path("vault.key").read_bytes()))
    raw = key.get_hash()
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

from kdbxcodec.exceptions import (
    InvalidArgumentError,
    InvalidStateError,
    MissingCredentialsError,
)

from .keyfile import KeyFileVersion, parse_keyfile
from .memory import SecureBytes

KEY_HASH_SIZE = 32


@runtime_checkable
class KeySource(Protocol):
    """Anything that yields a fixed-length raw hash.

    Third parties can implement this protocol without importing
    kdbxcodec (e.g. a hardware token returning a 32-byte response).
    """

    @property
    def raw_hash(self) -> bytes: ...


class RawKey:
    """Key source wrapping an already computed 32-byte hash."""

    __slots__ = ("_hash",)

    def __init__(self, raw_hash: bytes) -> None:
        if len(raw_hash) != KEY_HASH_SIZE:
            raise InvalidArgumentError(
                f"Raw key hash must be {KEY_HASH_SIZE} bytes, got {len(raw_hash)}"
            )
        self._hash = SecureBytes(raw_hash)

    @property
    def raw_hash(self) -> bytes:
        """The 32-byte hash."""
        return self._hash.data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(<hidden>)"


class PasswordKey(RawKey):
    """Key source from a text password: SHA-256 of its UTF-8 encoding."""

    __slots__ = ()

    def __init__(self, password: str) -> None:
        super().__init__(hashlib.sha256(password.encode("utf-8")).digest())


class KeyFileKey(RawKey):
    """Key source from keyfile contents.

    Attributes:
        version: Which keyfile layout was detected
    """

    __slots__ = ("version",)

    def __init__(self, keyfile_data: bytes) -> None:
        version, key = parse_keyfile(keyfile_data)
        if len(key) != KEY_HASH_SIZE:
            # XML keyfiles may carry keys of any length
            key = hashlib.sha256(key).digest()
        super().__init__(key)
        self.version: KeyFileVersion = version


class CompositeKey:
    """Ordered, append-only collection of key source hashes.

    The composite is exclusively owned by the caller assembling a master
    key; the codec only asks it for its hash once per derivation.
    """

    def __init__(self) -> None:
        self._hashes: list[SecureBytes] = []

    def add_key(self, source: KeySource) -> None:
        """Append a key source's hash.

        Args:
            source: Any object with a 32-byte ``raw_hash``
        """
        raw = source.raw_hash
        if len(raw) != KEY_HASH_SIZE:
            raise InvalidArgumentError(
                f"Key source hash must be {KEY_HASH_SIZE} bytes, got {len(raw)}"
            )
        self._hashes.append(SecureBytes(raw))

    def __len__(self) -> int:
        return len(self._hashes)

    def get_hash(self) -> bytes:
        """Return SHA-256 of the concatenated source hashes.

        Raises:
            InvalidStateError: If no key source was added
        """
        if not self._hashes:
            raise InvalidStateError("CompositeKey has no key sources")
        digest = hashlib.sha256()
        for part in self._hashes:
            digest.update(part.data)
        return digest.digest()

    @property
    def raw_hash(self) -> bytes:
        """Alias of get_hash(), so a composite is itself a KeySource."""
        return self.get_hash()

    @classmethod
    def from_password(cls, password: str) -> CompositeKey:
        """Build a composite holding a single password."""
        key = cls()
        key.add_key(PasswordKey(password))
        return key

    @classmethod
    def from_credentials(
        cls,
        password: str | None = None,
        keyfile_data: bytes | None = None,
    ) -> CompositeKey:
        """Build a composite from a password and/or keyfile, in that order.

        Raises:
            MissingCredentialsError: If neither is provided
        """
        if password is None and keyfile_data is None:
            raise MissingCredentialsError()
        key = cls()
        if password is not None:
            key.add_key(PasswordKey(password))
        if keyfile_data is not None:
            key.add_key(KeyFileKey(keyfile_data))
        return key

    def __repr__(self) -> str:
        return f"CompositeKey(<{len(self._hashes)} sources>)"
