"""
Hashed block stream.

After the start bytes the decrypted payload is a sequence of records:

    Bytes 0-3:    block index   (uint32 little-endian, 0, 1, 2, ...)
    Bytes 4-35:   SHA-256 of the block payload
    Bytes 36-39:  payload length (int32 little-endian)
    Bytes 40+:    payload

A record with length 0 terminates the stream. Its hash is all zeros (or,
from some writers, the SHA-256 of the empty string); it carries no data.
"""

from __future__ import annotations

import hashlib
import hmac
import io
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .errors import FormatError, IntegrityError
from .formats import read_exact

log = logging.getLogger(__name__)

BLOCK_HEADER_FORMAT = "<I32si"  # index, hash, length
BLOCK_HEADER_SIZE = struct.calcsize(BLOCK_HEADER_FORMAT)  # 40 bytes
HASH_SIZE = 32

_ZERO_HASH = bytes(HASH_SIZE)
_EMPTY_HASH = hashlib.sha256(b"").digest()


@dataclass(frozen=True)
class VerifiedBlock:
    """One payload block whose digest has been checked."""
    index: int
    hash: bytes
    length: int
    payload: bytes


def iter_blocks(stream: BinaryIO) -> Iterator[VerifiedBlock]:
    """
    Yield verified data blocks in index order, stopping at the terminal block.

    Raises:
        IntegrityError: a block's payload does not match its stored hash
        FormatError: out-of-order index, negative length, truncation,
                     or end of input before the terminal block
    """
    expected = 0
    while True:
        head = stream.read(BLOCK_HEADER_SIZE)
        if not head:
            raise FormatError(
                f"Block stream ended without a terminal block (after {expected} blocks)"
            )
        if len(head) < BLOCK_HEADER_SIZE:
            head += read_exact(stream, BLOCK_HEADER_SIZE - len(head), f"block {expected} header")
        index, stored_hash, length = struct.unpack(BLOCK_HEADER_FORMAT, head)

        if index != expected:
            raise FormatError(f"block {index} out of order (expected {expected})")
        if length < 0:
            raise FormatError(f"block {index} has negative length {length}")

        if length == 0:
            if stored_hash != _ZERO_HASH and stored_hash != _EMPTY_HASH:
                raise IntegrityError(f"block {index} hash mismatch")
            log.debug("Reached terminal block %d", index)
            return

        payload = read_exact(stream, length, f"block {index} payload")
        if not hmac.compare_digest(hashlib.sha256(payload).digest(), stored_hash):
            raise IntegrityError(f"block {index} hash mismatch")

        yield VerifiedBlock(index=index, hash=stored_hash, length=length, payload=payload)
        expected += 1


class HashedBlockReader(io.RawIOBase):
    """
    Contiguous, verified byte stream over a hashed block stream.

    Blocks are pulled one at a time as the consumer reads; nothing past the
    current block is buffered. Once the terminal block has been seen the rest
    of the source is drained: trailing bytes are logged at debug level, or
    rejected with FormatError when ``strict_trailing_data`` is set.
    """

    def __init__(self, source: BinaryIO, *, strict_trailing_data: bool = False):
        super().__init__()
        self._source = source
        self._blocks = iter_blocks(source)
        self._strict = strict_trailing_data
        self._current = memoryview(b"")
        self._done = False
        self.blocks_read = 0
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def _next_block(self) -> bool:
        try:
            block = next(self._blocks)
        except StopIteration:
            self._done = True
            self._check_trailing()
            log.debug("Verified %d blocks, %d bytes", self.blocks_read, self.bytes_read)
            return False
        self.blocks_read += 1
        self.bytes_read += block.length
        self._current = memoryview(block.payload)
        return True

    def _check_trailing(self) -> None:
        trailing = 0
        while True:
            chunk = self._source.read(io.DEFAULT_BUFFER_SIZE)
            if not chunk:
                break
            trailing += len(chunk)
            if self._strict:
                raise FormatError("Unexpected data after the terminal block")
        if trailing:
            log.debug("Ignoring %d bytes after the terminal block", trailing)

    def readinto(self, b) -> int:
        if len(b) == 0:
            return 0
        while not self._current:
            if self._done or not self._next_block():
                return 0
        n = min(len(b), len(self._current))
        b[:n] = self._current[:n]
        self._current = self._current[n:]
        return n

    def finish(self) -> None:
        """Consume and verify any blocks the consumer did not read."""
        self._current = memoryview(b"")
        while not self._done:
            self._next_block()
            self._current = memoryview(b"")

    @property
    def exhausted(self) -> bool:
        return self._done
