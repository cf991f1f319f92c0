"""
Inner random stream ciphers for protected document values.

A single stream instance is created per load and consumed strictly in
document order: each ``next_bytes(n)`` call returns the next ``n`` bytes
of one continuous keystream, never a re-seeded or overlapping segment.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from Crypto.Cipher import ChaCha20, Salsa20

from .errors import FormatError
from .formats import InnerStreamId

# 0xE830094B97205D2A
SALSA20_NONCE = bytes([0xE8, 0x30, 0x09, 0x4B, 0x97, 0x20, 0x5D, 0x2A])


class InnerStream(ABC):
    """Abstract base for the per-load keystream cursor."""

    @property
    @abstractmethod
    def stream_id(self) -> InnerStreamId:
        """Identifier stored in the container header."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name."""

    def __init__(self):
        self.position = 0

    @abstractmethod
    def _keystream(self, size: int) -> bytes:
        """Produce the next ``size`` raw keystream bytes."""

    def next_bytes(self, size: int) -> bytes:
        """Return the next ``size`` keystream bytes and advance the cursor."""
        if size < 0:
            raise ValueError("size must be non-negative")
        if size == 0:
            return b""
        out = self._keystream(size)
        self.position += size
        return out

    def xor(self, data: bytes) -> bytes:
        """XOR ``data`` with the next ``len(data)`` keystream bytes."""
        pad = self.next_bytes(len(data))
        return bytes(a ^ b for a, b in zip(data, pad))


class Salsa20Stream(InnerStream):
    """Salsa20 keyed with SHA-256 of the protected stream key."""

    stream_id = InnerStreamId.SALSA20
    name = "Salsa20"

    def __init__(self, key: bytes):
        super().__init__()
        self._cipher = Salsa20.new(key=hashlib.sha256(key).digest(), nonce=SALSA20_NONCE)

    def _keystream(self, size: int) -> bytes:
        # Salsa20 encryption of zeros is the raw keystream
        return self._cipher.encrypt(bytes(size))


class ChaCha20Stream(InnerStream):
    """ChaCha20 keyed and nonced from SHA-512 of the protected stream key."""

    stream_id = InnerStreamId.CHACHA20
    name = "ChaCha20"

    def __init__(self, key: bytes):
        super().__init__()
        digest = hashlib.sha512(key).digest()
        self._cipher = ChaCha20.new(key=digest[:32], nonce=digest[32:44])

    def _keystream(self, size: int) -> bytes:
        return self._cipher.encrypt(bytes(size))


class NullStream(InnerStream):
    """No inner protection: the keystream is all zeros."""

    stream_id = InnerStreamId.NULL
    name = "None"

    def __init__(self, key: bytes = b""):
        super().__init__()

    def _keystream(self, size: int) -> bytes:
        return bytes(size)


INNER_STREAM_REGISTRY: dict[InnerStreamId, type[InnerStream]] = {
    InnerStreamId.NULL: NullStream,
    InnerStreamId.SALSA20: Salsa20Stream,
    InnerStreamId.CHACHA20: ChaCha20Stream,
}


def create_inner_stream(stream_id: InnerStreamId, key: bytes) -> InnerStream:
    """Build a fresh keystream cursor for one load."""
    stream_cls = INNER_STREAM_REGISTRY.get(stream_id)
    if stream_cls is None:
        raise FormatError(f"Unsupported inner random stream {stream_id!r}")
    return stream_cls(key)
