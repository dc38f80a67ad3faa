"""Secure memory handling for key material.

SecureBytes keeps sensitive values in a mutable bytearray so they can be
overwritten with zeros once no longer needed. Python gives no hard
guarantee that no other copy exists (immutable ``bytes`` views handed out
through ``.data`` are not zeroized), but the long-lived buffer is.

Example:
    with SecureBytes(derived_key) as key:
        cipher = AES.new(key.data, AES.MODE_CBC, iv)
    # key buffer is zeroed here
"""

from __future__ import annotations

import hmac
from types import TracebackType


class SecureBytes:
    """Mutable byte container that zeroizes its contents on request.

    Attributes:
        data: Immutable snapshot of the current contents
    """

    __slots__ = ("_buffer", "_zeroized")

    def __init__(self, data: bytes | bytearray) -> None:
        self._buffer = bytearray(data)
        self._zeroized = False

    @property
    def data(self) -> bytes:
        """Return the contents as bytes.

        Raises:
            ValueError: If the buffer was already zeroized
        """
        if self._zeroized:
            raise ValueError("SecureBytes has been zeroized")
        return bytes(self._buffer)

    @property
    def is_zeroized(self) -> bool:
        """Whether zeroize() has been called."""
        return self._zeroized

    def zeroize(self) -> None:
        """Overwrite the buffer with zeros."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._zeroized = True

    def __len__(self) -> int:
        return len(self._buffer)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecureBytes):
            return hmac.compare_digest(self._buffer, other._buffer)
        if isinstance(other, (bytes, bytearray)):
            return hmac.compare_digest(self._buffer, other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __enter__(self) -> SecureBytes:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.zeroize()

    def __del__(self) -> None:
        try:
            self.zeroize()
        except AttributeError:
            # __init__ never ran
            pass

    def __repr__(self) -> str:
        """Return string representation (hides contents)."""
        state = "zeroized" if self._zeroized else f"{len(self._buffer)} bytes"
        return f"SecureBytes(<{state}>)"
