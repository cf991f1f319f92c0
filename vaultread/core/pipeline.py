"""
Container load pipeline.

    header -> key derivation -> payload decryption -> start-bytes check
           -> hashed blocks -> gzip (optional) -> XML -> protected values
           -> header hash check

Each stage wraps the previous one as a lazy byte stream; nothing but the
final document tree is kept once the load returns. Every stage fails fast
and the whole load is aborted: the caller gets either a fully verified
document or an exception, never a partial result.
"""

from __future__ import annotations

import hashlib
import hmac
import io
import logging
import os
from typing import BinaryIO

from .blocks import HashedBlockReader
from .ciphers import DecryptingReader, cipher_for
from .compression import open_payload
from .config import LoaderOptions, default_options
from .document import VaultDocument, parse_document
from .errors import FormatError, IncorrectCredentialsError, IntegrityError
from .formats import START_BYTES_SIZE, VaultHeader, read_header
from .kdf import PasswordCredentials, derive_master_key
from .keystream import create_inner_stream
from .protection import ProtectedValueTransformer

log = logging.getLogger(__name__)

Credentials = str | bytes | bytearray | PasswordCredentials


def _read_start_bytes(stream: BinaryIO) -> bytes:
    buf = bytearray()
    while len(buf) < START_BYTES_SIZE:
        chunk = stream.read(START_BYTES_SIZE - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def _verify_header_hash(document: VaultDocument, header: VaultHeader) -> None:
    stored = document.header_hash
    if stored is None:
        log.debug("Document carries no header hash")
        return
    if not hmac.compare_digest(stored, hashlib.sha256(header.raw).digest()):
        raise IntegrityError("header hash mismatch")


def _decode(source: BinaryIO, credentials: PasswordCredentials,
            options: LoaderOptions) -> VaultDocument:
    header = read_header(source)
    cipher = cipher_for(header.cipher_id)

    with derive_master_key(credentials, header,
                           max_rounds=options.max_transform_rounds) as key:
        plaintext = DecryptingReader(
            source, cipher, key.data, header.encryption_iv,
            chunk_size=options.read_chunk_size,
        )

    with plaintext:
        # A short or unpaddable payload must look the same as a wrong key.
        try:
            start = _read_start_bytes(plaintext)
        except IntegrityError as exc:
            raise IncorrectCredentialsError(
                "Cannot open container: incorrect credentials or damaged file"
            ) from exc
        if not hmac.compare_digest(start, header.stream_start_bytes):
            raise IncorrectCredentialsError(
                "Cannot open container: incorrect credentials or damaged file"
            )

        blocks = HashedBlockReader(plaintext, strict_trailing_data=options.strict_trailing_data)
        payload = open_payload(io.BufferedReader(blocks), header.compression)
        root = parse_document(payload)
        # The parser may stop at the closing tag; every block must still verify.
        blocks.finish()

    inner = create_inner_stream(header.inner_stream_id, header.protected_stream_key)
    ProtectedValueTransformer(inner).process(root)

    document = VaultDocument(root)
    if options.verify_header_hash:
        _verify_header_hash(document, header)
    return document


def read_container(stream: BinaryIO, credentials: Credentials, *,
                   options: LoaderOptions | None = None) -> VaultDocument:
    """
    Decrypt and parse a container from an open binary stream.

    ``credentials`` is a password (str, bytes or bytearray) or a
    ``PasswordCredentials``. Credentials built here from a password are
    wiped before returning; a ``PasswordCredentials`` passed in stays
    owned by the caller.

    Raises:
        FormatError: malformed header, block framing, compression or XML
        IncorrectCredentialsError: wrong password or damaged file
        IntegrityError: block hash, padding or header hash mismatch
    """
    if options is None:
        options = default_options()

    if isinstance(credentials, PasswordCredentials):
        return _decode(stream, credentials, options)
    with PasswordCredentials(credentials) as owned:
        return _decode(stream, owned, options)


def load_container(source_path: str | os.PathLike, credentials: Credentials, *,
                   options: LoaderOptions | None = None) -> VaultDocument:
    """Open ``source_path`` and load the container it holds."""
    log.debug("Loading container %s", source_path)
    try:
        handle = open(source_path, "rb")
    except IsADirectoryError as exc:
        raise FormatError(f"Not a container file: {source_path}") from exc
    with handle:
        document = read_container(handle, credentials, options=options)
    log.debug("Loaded container %s", source_path)
    return document
