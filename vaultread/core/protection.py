"""
Protected value decoding.

Protected values are stored as base64 of ``plaintext XOR keystream``. The
keystream is one continuous stream for the whole document, so values must be
decoded exactly once each, in document order (depth-first, parents before
children, siblings in source order). Any other order yields wrong plaintext.
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET

from .document import is_protected, protected_attribute
from .errors import FormatError
from .keystream import InnerStream

log = logging.getLogger(__name__)

# Elements whose protected content is binary, not text.
BINARY_TAGS = frozenset({"Binary"})


class ProtectedValueTransformer:
    """Replace every protected value in a tree with its plaintext."""

    def __init__(self, stream: InnerStream):
        self._stream = stream
        self.processed = 0

    def unprotect(self, ciphertext_b64: str) -> bytes:
        """Decode one stored value, consuming its length of keystream."""
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FormatError("Protected value is not valid base64") from exc
        return self._stream.xor(ciphertext)

    def process(self, root: ET.Element) -> ET.Element:
        """Decode all protected values under ``root`` in place and return it."""
        for element in root.iter():
            if not is_protected(element):
                continue
            plaintext = self.unprotect("".join((element.text or "").split()))
            if element.tag in BINARY_TAGS:
                element.text = base64.b64encode(plaintext).decode("ascii")
            else:
                try:
                    element.text = plaintext.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise FormatError("Protected value is not valid UTF-8") from exc
            del element.attrib[protected_attribute(element)]
            self.processed += 1
        log.debug("Decoded %d protected values", self.processed)
        return root
