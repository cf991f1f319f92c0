"""
Key derivation for container decryption.

Three steps, each deterministic:

  1. composite key    = SHA-256(SHA-256(password))
  2. transformed key  = SHA-256(AES-256-ECB_seed^rounds(composite key))
  3. master key       = SHA-256(master_seed || transformed key)

Step 1 does not depend on the file, so one ``PasswordCredentials`` object can
open several containers. Step 2 is the deliberate work factor and always runs
exactly ``transform_rounds`` times.
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import KDFParameterError
from .formats import VaultHeader
from .memory import SecureBuffer, scrubbed, secure_zero

KEY_SIZE = 32

# Rounds above this are rejected unless the caller raises the ceiling.
DEFAULT_MAX_TRANSFORM_ROUNDS = 100_000_000


def composite_key(password: bytes | bytearray) -> bytearray:
    """Hash the password twice with SHA-256. Returns a mutable bytearray."""
    inner = bytearray(hashlib.sha256(password).digest())
    with scrubbed(inner):
        return bytearray(hashlib.sha256(inner).digest())


class PasswordCredentials:
    """
    Password-derived composite key.

    The password itself is not retained; only the 32-byte composite key is
    kept, in a ``SecureBuffer`` that ``close()`` (or leaving the ``with``
    block) zeros.
    """

    def __init__(self, password: str | bytes | bytearray):
        if isinstance(password, str):
            password_bytes = bytearray(password.encode("utf-8"))
        else:
            password_bytes = bytearray(password)
        with scrubbed(password_bytes):
            key = composite_key(password_bytes)
        with scrubbed(key):
            self._key = SecureBuffer.from_bytes(key)

    @property
    def key(self) -> bytearray:
        if self._key.closed:
            raise ValueError("Credentials have been closed")
        return self._key.data

    @property
    def closed(self) -> bool:
        return self._key.closed

    def close(self) -> None:
        self._key.close()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<PasswordCredentials {state}>"


def transform_key(key: bytes | bytearray, seed: bytes, rounds: int) -> bytearray:
    """
    Apply ``rounds`` AES-256-ECB encryptions keyed by ``seed``, then SHA-256.

    The running value is kept in two bytearrays that are zeroed before
    returning. Returns a new 32-byte bytearray.
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Composite key must be {KEY_SIZE} bytes, got {len(key)}")
    if rounds < 0:
        raise KDFParameterError(f"Transform rounds must be non-negative (got {rounds})")

    encryptor = Cipher(algorithms.AES(seed), modes.ECB()).encryptor()
    current = bytearray(key)
    # update_into needs room for len(data) + block_size - 1 bytes
    out = bytearray(KEY_SIZE + 16)
    view = memoryview(out)
    with scrubbed(current, out):
        for _ in range(rounds):
            encryptor.update_into(current, out)
            current[:] = view[:KEY_SIZE]
        encryptor.finalize()
        view.release()
        return bytearray(hashlib.sha256(current).digest())


def derive_master_key(
    credentials: PasswordCredentials,
    header: VaultHeader,
    *,
    max_rounds: int = DEFAULT_MAX_TRANSFORM_ROUNDS,
) -> SecureBuffer:
    """
    Derive the payload decryption key.

    Returns a SecureBuffer the caller must close. Raises KDFParameterError
    when the header asks for more rounds than ``max_rounds``; no other
    input is rejected here, a wrong password only shows up at the
    start-bytes check.
    """
    if header.transform_rounds > max_rounds:
        raise KDFParameterError(
            f"Transform rounds {header.transform_rounds} exceed the allowed "
            f"maximum {max_rounds}"
        )

    transformed = transform_key(credentials.key, header.transform_seed, header.transform_rounds)
    with scrubbed(transformed):
        digest = hashlib.sha256()
        digest.update(header.master_seed)
        digest.update(transformed)
        final = bytearray(digest.digest())
    try:
        return SecureBuffer.from_bytes(final)
    finally:
        secure_zero(final)
