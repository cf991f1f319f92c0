"""
Sensitive buffer handling.

Key material flowing through a load (password copy, composite key,
transformed key, final AES key) lives in ``SecureBuffer`` instances:
  - pages are mlocked where libc allows it, so they are not swapped out
  - contents are overwritten with zeros on ``close()``
  - the buffer is a context manager, so every exit path releases it

Python ``bytes`` objects are immutable and cannot be wiped; anything that
must be scrubbed has to stay in a ``bytearray``.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import sys
from contextlib import contextmanager

_libc_loaded = False
_mlock = None
_munlock = None


def _load_libc():
    """Resolve mlock/munlock once; leaves both as None when unavailable."""
    global _libc_loaded, _mlock, _munlock
    if _libc_loaded:
        return
    _libc_loaded = True

    if sys.platform == "win32":
        return

    libc_name = ctypes.util.find_library("c")
    if not libc_name:
        return

    try:
        libc = ctypes.CDLL(libc_name, use_errno=True)
    except OSError:
        return
    for fn in (libc.mlock, libc.munlock):
        fn.argtypes = [ctypes.c_void_p, ctypes.c_size_t]
        fn.restype = ctypes.c_int
    _mlock, _munlock = libc.mlock, libc.munlock


def _page_call(fn, buf: bytearray) -> bool:
    if fn is None or not buf:
        return False
    try:
        addr = ctypes.addressof((ctypes.c_char * len(buf)).from_buffer(buf))
    except (ValueError, TypeError):
        return False
    return fn(addr, len(buf)) == 0


def mlock_buffer(buf: bytearray) -> bool:
    """Pin ``buf`` in RAM. Returns False when the platform refuses (non-fatal)."""
    _load_libc()
    return _page_call(_mlock, buf)


def munlock_buffer(buf: bytearray) -> bool:
    _load_libc()
    return _page_call(_munlock, buf)


def secure_zero(buf: bytearray | memoryview) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    for i in range(len(buf)):
        buf[i] = 0


class SecureBuffer:
    """
    Fixed-size, owned, zero-on-release byte buffer.

    Usage:
        with SecureBuffer.from_bytes(digest) as key:
            use(key.data)
        # key.data is now all zeros

    ``data`` is the only copy this object keeps; callers must not stash
    ``bytes(key.data)`` copies beyond the scope of the ``with`` block.
    """

    def __init__(self, size: int):
        self.data = bytearray(size)
        self._locked = mlock_buffer(self.data)
        self.closed = False

    @classmethod
    def from_bytes(cls, value: bytes | bytearray | memoryview) -> "SecureBuffer":
        buf = cls(len(value))
        buf.data[:] = value
        return buf

    def __len__(self) -> int:
        return len(self.data)

    def __bytes__(self) -> bytes:
        return bytes(self.data)

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()

    def close(self) -> None:
        """Zero the contents and unpin the pages. Safe to call twice."""
        if self.closed:
            return
        secure_zero(self.data)
        if self._locked:
            munlock_buffer(self.data)
            self._locked = False
        self.closed = True


@contextmanager
def scrubbed(*buffers: bytearray):
    """Yield, then zero every given bytearray whatever happened inside."""
    try:
        yield buffers[0] if len(buffers) == 1 else buffers
    finally:
        for buf in buffers:
            secure_zero(buf)
