"""
Document parsing and read-only accessors.

The decrypted payload is an XML tree:

    KeePassFile
    +-- Meta        (DatabaseName, HeaderHash, Binaries, ...)
    +-- Root
        +-- Group   (Name, Entry*, Group*)
            +-- Entry  (UUID, String{Key, Value}*, ...)
"""

from __future__ import annotations

import base64
import binascii
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

from .errors import FormatError

PROTECTED_ATTRIBUTE = "protected"


def parse_document(stream: BinaryIO) -> ET.Element:
    """Parse the payload stream into an element tree. Syntax only."""
    try:
        return ET.parse(stream).getroot()
    except ET.ParseError as exc:
        raise FormatError(f"Malformed document: {exc}") from exc


def protected_attribute(element: ET.Element) -> str | None:
    """Name of the element's protection attribute, matched case-insensitively."""
    for name in element.attrib:
        if name.lower() == PROTECTED_ATTRIBUTE:
            return name
    return None


def is_protected(element: ET.Element) -> bool:
    name = protected_attribute(element)
    return name is not None and element.attrib[name].strip().lower() == "true"


def has_protected_fields(element: ET.Element) -> bool:
    """True if any element in the subtree still carries a protection flag."""
    return any(is_protected(e) for e in element.iter())


def _text(element: ET.Element | None) -> str | None:
    if element is None:
        return None
    return element.text or ""


@dataclass
class VaultEntry:
    uuid: str | None
    fields: dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.fields.get(key, default)

    @property
    def title(self) -> str | None:
        return self.fields.get("Title")

    @property
    def username(self) -> str | None:
        return self.fields.get("UserName")

    @property
    def password(self) -> str | None:
        return self.fields.get("Password")

    @property
    def url(self) -> str | None:
        return self.fields.get("URL")

    @property
    def notes(self) -> str | None:
        return self.fields.get("Notes")

    def __repr__(self) -> str:
        # Field values may be secrets; only show what identifies the entry.
        return f"VaultEntry(uuid={self.uuid!r}, title={self.title!r})"


class VaultDocument:
    """Read-only view over a loaded document tree."""

    def __init__(self, root: ET.Element):
        self.root = root

    @property
    def meta(self) -> ET.Element | None:
        return self.root.find("Meta")

    @property
    def database_name(self) -> str | None:
        return _text(self.root.find("Meta/DatabaseName"))

    @property
    def header_hash(self) -> bytes | None:
        """Stored SHA-256 of the file header, if the writer recorded one."""
        value = _text(self.root.find("Meta/HeaderHash"))
        if not value:
            return None
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise FormatError("Header hash is not valid base64") from exc

    def groups(self) -> Iterator[ET.Element]:
        """All groups below Root, in document order."""
        content = self.root.find("Root")
        if content is None:
            return iter(())
        return content.iter("Group")

    def entries(self) -> Iterator[VaultEntry]:
        """All current entries (history versions excluded), in document order."""
        for group in self.groups():
            for entry in group.findall("Entry"):
                yield self._entry(entry)

    def find_entry(self, title: str) -> VaultEntry | None:
        return next((e for e in self.entries() if e.title == title), None)

    @staticmethod
    def _entry(element: ET.Element) -> VaultEntry:
        fields: dict[str, str] = {}
        for string in element.findall("String"):
            key = _text(string.find("Key"))
            if key is not None:
                fields[key] = _text(string.find("Value")) or ""
        return VaultEntry(uuid=_text(element.find("UUID")), fields=fields)
