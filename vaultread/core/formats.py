"""
Container header binary format (KDBX 2.x / 3.x).

Layout, all integers little-endian:

    Bytes 0-3:   signature 1  (0x9AA2D903)
    Bytes 4-7:   signature 2  (0xB54BFB67)
    Bytes 8-9:   minor version (uint16)
    Bytes 10-11: major version (uint16)
    Bytes 12+:   header fields, each [id: uint8][size: uint16][data: size bytes],
                 terminated by a field with id 0

  Field ids:
    0  end of header          6  transform rounds (uint64)
    1  comment                7  encryption IV (16 bytes)
    2  cipher id (UUID, 16)   8  protected stream key
    3  compression (uint32)   9  stream start bytes (32 bytes)
    4  master seed (32)      10  inner random stream id (uint32)
    5  transform seed (32)

The encrypted payload starts immediately after the end-of-header field.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO

from .errors import FormatError

log = logging.getLogger(__name__)

SIGNATURE_1 = 0x9AA2D903
SIGNATURE_2 = 0xB54BFB67
SIGNATURE_2_KEEPASS1 = 0xB54BFB65
SIGNATURE_2_PRERELEASE = 0xB54BFB66

PREAMBLE_FORMAT = "<IIHH"  # sig1, sig2, minor, major
PREAMBLE_SIZE = struct.calcsize(PREAMBLE_FORMAT)  # 12 bytes

FIELD_FORMAT = "<BH"  # id, size
FIELD_SIZE = struct.calcsize(FIELD_FORMAT)  # 3 bytes

SUPPORTED_MAJOR_VERSIONS = (2, 3)

START_BYTES_SIZE = 32


class HeaderFieldId(IntEnum):
    END_OF_HEADER = 0
    COMMENT = 1
    CIPHER_ID = 2
    COMPRESSION_FLAGS = 3
    MASTER_SEED = 4
    TRANSFORM_SEED = 5
    TRANSFORM_ROUNDS = 6
    ENCRYPTION_IV = 7
    PROTECTED_STREAM_KEY = 8
    STREAM_START_BYTES = 9
    INNER_RANDOM_STREAM_ID = 10


class Compression(IntEnum):
    NONE = 0
    GZIP = 1


class InnerStreamId(IntEnum):
    NULL = 0
    ARC4_VARIANT = 1
    SALSA20 = 2
    CHACHA20 = 3


# Fixed field sizes; ids absent here accept any non-empty size.
_FIELD_SIZES: dict[HeaderFieldId, int] = {
    HeaderFieldId.CIPHER_ID: 16,
    HeaderFieldId.COMPRESSION_FLAGS: 4,
    HeaderFieldId.MASTER_SEED: 32,
    HeaderFieldId.TRANSFORM_SEED: 32,
    HeaderFieldId.TRANSFORM_ROUNDS: 8,
    HeaderFieldId.ENCRYPTION_IV: 16,
    HeaderFieldId.STREAM_START_BYTES: START_BYTES_SIZE,
    HeaderFieldId.INNER_RANDOM_STREAM_ID: 4,
}

REQUIRED_FIELDS = (
    HeaderFieldId.CIPHER_ID,
    HeaderFieldId.MASTER_SEED,
    HeaderFieldId.ENCRYPTION_IV,
    HeaderFieldId.TRANSFORM_SEED,
    HeaderFieldId.TRANSFORM_ROUNDS,
    HeaderFieldId.PROTECTED_STREAM_KEY,
    HeaderFieldId.STREAM_START_BYTES,
)


@dataclass(frozen=True)
class VaultHeader:
    """Parsed, immutable container header."""
    version_major: int
    version_minor: int
    cipher_id: bytes
    compression: Compression
    master_seed: bytes
    encryption_iv: bytes
    transform_seed: bytes
    transform_rounds: int
    protected_stream_key: bytes
    stream_start_bytes: bytes
    inner_stream_id: InnerStreamId
    raw: bytes                     # exact header bytes as read from the file
    comment: bytes | None = None

    @property
    def payload_offset(self) -> int:
        """Byte offset of the first encrypted payload byte."""
        return len(self.raw)


def read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    """Read exactly ``size`` bytes or raise FormatError naming ``what``."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            got = size - remaining
            raise FormatError(f"Truncated {what} ({got} bytes, need {size})")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _check_signature(sig1: int, sig2: int) -> None:
    if sig1 == SIGNATURE_1 and sig2 == SIGNATURE_2:
        return
    if sig1 == SIGNATURE_1 and sig2 == SIGNATURE_2_KEEPASS1:
        raise FormatError("KeePass 1.x databases are not supported")
    if sig1 == SIGNATURE_1 and sig2 == SIGNATURE_2_PRERELEASE:
        raise FormatError("Pre-release 2.x databases are not supported")
    raise FormatError(
        f"Not a vault file (signature {sig1:#010x} {sig2:#010x})"
    )


def _decode_enum(enum_cls, value: int, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise FormatError(f"Unsupported {what} {value}") from None


def read_header(stream: BinaryIO) -> VaultHeader:
    """
    Parse the header from a binary stream positioned at offset 0.

    Leaves the stream positioned at the first payload byte.
    Raises FormatError on bad signature, unsupported version, truncation,
    wrongly sized or missing required fields.
    """
    preamble = read_exact(stream, PREAMBLE_SIZE, "header preamble")
    sig1, sig2, minor, major = struct.unpack(PREAMBLE_FORMAT, preamble)
    _check_signature(sig1, sig2)
    if major not in SUPPORTED_MAJOR_VERSIONS:
        raise FormatError(
            f"Unsupported file version {major}.{minor} "
            f"(supported major versions: {', '.join(map(str, SUPPORTED_MAJOR_VERSIONS))})"
        )

    raw = bytearray(preamble)
    fields: dict[HeaderFieldId, bytes] = {}

    while True:
        prefix = read_exact(stream, FIELD_SIZE, "header field")
        field_id, size = struct.unpack(FIELD_FORMAT, prefix)
        data = read_exact(stream, size, f"header field {field_id}")
        raw += prefix
        raw += data

        if field_id == HeaderFieldId.END_OF_HEADER:
            break
        try:
            known = HeaderFieldId(field_id)
        except ValueError:
            log.debug("Skipping unknown header field %d (%d bytes)", field_id, size)
            continue

        expected = _FIELD_SIZES.get(known)
        if expected is not None and size != expected:
            raise FormatError(
                f"Header field {known.name.lower()} has wrong size "
                f"({size} bytes, need {expected})"
            )
        if expected is None and known != HeaderFieldId.COMMENT and size == 0:
            raise FormatError(f"Header field {known.name.lower()} is empty")
        if known in fields:
            log.debug("Header field %s repeated; last value wins", known.name)
        fields[known] = data

    for required in REQUIRED_FIELDS:
        if required not in fields:
            raise FormatError(
                f"missing required header field: {required.name.lower()}"
            )

    compression = Compression.NONE
    if HeaderFieldId.COMPRESSION_FLAGS in fields:
        (flags,) = struct.unpack("<I", fields[HeaderFieldId.COMPRESSION_FLAGS])
        compression = _decode_enum(Compression, flags, "compression algorithm")

    inner_stream_id = InnerStreamId.SALSA20
    if HeaderFieldId.INNER_RANDOM_STREAM_ID in fields:
        (stream_id,) = struct.unpack("<I", fields[HeaderFieldId.INNER_RANDOM_STREAM_ID])
        inner_stream_id = _decode_enum(InnerStreamId, stream_id, "inner random stream")

    (rounds,) = struct.unpack("<Q", fields[HeaderFieldId.TRANSFORM_ROUNDS])

    header = VaultHeader(
        version_major=major,
        version_minor=minor,
        cipher_id=fields[HeaderFieldId.CIPHER_ID],
        compression=compression,
        master_seed=fields[HeaderFieldId.MASTER_SEED],
        encryption_iv=fields[HeaderFieldId.ENCRYPTION_IV],
        transform_seed=fields[HeaderFieldId.TRANSFORM_SEED],
        transform_rounds=rounds,
        protected_stream_key=fields[HeaderFieldId.PROTECTED_STREAM_KEY],
        stream_start_bytes=fields[HeaderFieldId.STREAM_START_BYTES],
        inner_stream_id=inner_stream_id,
        raw=bytes(raw),
        comment=fields.get(HeaderFieldId.COMMENT),
    )
    log.debug(
        "Parsed header v%d.%d: compression=%s inner_stream=%s rounds=%d payload_offset=%d",
        major, minor, compression.name, inner_stream_id.name, rounds, header.payload_offset,
    )
    return header
