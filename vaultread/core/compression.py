"""Optional gzip inflation of the verified payload stream."""

from __future__ import annotations

import gzip
import io
import zlib
from typing import BinaryIO

from .errors import FormatError
from .formats import Compression


class _InflatingReader(io.RawIOBase):
    """gzip reader that reports a corrupt stream as FormatError."""

    def __init__(self, source: BinaryIO):
        super().__init__()
        self._gzip = gzip.GzipFile(fileobj=source, mode="rb")

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        try:
            return self._gzip.readinto(b)
        except (OSError, EOFError, zlib.error) as exc:
            raise FormatError(f"Compressed payload is corrupt: {exc}") from exc

    def close(self) -> None:
        if not self.closed:
            self._gzip.close()
        super().close()


def open_payload(stream: BinaryIO, compression: Compression) -> BinaryIO:
    """Wrap ``stream`` in a decompressor when the header asks for one."""
    if compression == Compression.GZIP:
        return io.BufferedReader(_InflatingReader(stream))
    if compression == Compression.NONE:
        return stream
    raise FormatError(f"Unsupported compression {compression!r}")
