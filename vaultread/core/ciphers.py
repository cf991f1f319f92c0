"""
Payload ciphers.

The outer payload is decrypted lazily: ``DecryptingReader`` pulls ciphertext
from the source in chunks and hands out plaintext on demand, so the
start-bytes check only ever needs the first chunk and large containers are
never held in memory whole.
"""

from __future__ import annotations

import io
import uuid
from abc import ABC, abstractmethod
from typing import BinaryIO

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import FormatError, IntegrityError

DEFAULT_CHUNK_SIZE = 64 * 1024


class PayloadCipher(ABC):
    """Abstract base for payload block ciphers."""

    @property
    @abstractmethod
    def cipher_uuid(self) -> uuid.UUID:
        """UUID stored in the container header."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable cipher name."""

    @property
    @abstractmethod
    def iv_size(self) -> int:
        """Required IV length in bytes."""

    @abstractmethod
    def decryptor(self, key: bytes | bytearray, iv: bytes):
        """Return a fresh cryptography decryption context."""

    @abstractmethod
    def unpadder(self):
        """Return a fresh unpadding context for the decrypted stream."""


class AES256CBC(PayloadCipher):
    """AES-256 in CBC mode with PKCS#7 padding."""

    cipher_uuid = uuid.UUID("31c1f2e6-bf71-4350-be58-05216afc5aff")
    name = "AES-256-CBC"
    iv_size = 16

    def decryptor(self, key: bytes | bytearray, iv: bytes):
        return Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()

    def unpadder(self):
        return padding.PKCS7(algorithms.AES.block_size).unpadder()


CIPHER_REGISTRY: dict[uuid.UUID, type[PayloadCipher]] = {
    AES256CBC.cipher_uuid: AES256CBC,
}


def cipher_for(cipher_id: bytes) -> PayloadCipher:
    """Resolve the header's cipher UUID to a cipher instance."""
    cipher_cls = CIPHER_REGISTRY.get(uuid.UUID(bytes=cipher_id))
    if cipher_cls is None:
        raise FormatError(f"Unsupported payload cipher {uuid.UUID(bytes=cipher_id)}")
    return cipher_cls()


class DecryptingReader(io.RawIOBase):
    """
    Read-only stream of plaintext over a ciphertext source.

    Padding is checked only when the source is exhausted; a bad pad or a
    ragged ciphertext length raises IntegrityError at that point.
    """

    def __init__(self, source: BinaryIO, cipher: PayloadCipher,
                 key: bytes | bytearray, iv: bytes, *,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__()
        if len(iv) != cipher.iv_size:
            raise FormatError(
                f"{cipher.name} needs a {cipher.iv_size}-byte IV, got {len(iv)}"
            )
        self._source = source
        self._decryptor = cipher.decryptor(key, iv)
        self._unpadder = cipher.unpadder()
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._eof = False

    def readable(self) -> bool:
        return True

    def _fill(self, wanted: int) -> None:
        while len(self._buffer) < wanted and not self._eof:
            chunk = self._source.read(self._chunk_size)
            if chunk:
                self._buffer += self._unpadder.update(self._decryptor.update(chunk))
                continue
            self._eof = True
            try:
                tail = self._decryptor.finalize()
                self._buffer += self._unpadder.update(tail)
                self._buffer += self._unpadder.finalize()
            except ValueError as exc:
                raise IntegrityError("Encrypted payload is damaged") from exc

    def readinto(self, b) -> int:
        size = len(b)
        if size == 0:
            return 0
        self._fill(size)
        n = min(size, len(self._buffer))
        b[:n] = self._buffer[:n]
        del self._buffer[:n]
        return n

    def close(self) -> None:
        if not self.closed:
            self._buffer.clear()
        super().close()
