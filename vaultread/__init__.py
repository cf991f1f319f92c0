"""
vaultread — loader for password-protected KeePass 2.x (KDBX 3.x) containers.

    from vaultread import load_container

    document = load_container("secrets.kdbx", "correct horse battery staple")
    for entry in document.entries():
        print(entry.title, entry.username)
"""

from __future__ import annotations

import logging

from .core.config import LoaderOptions
from .core.document import VaultDocument, VaultEntry
from .core.errors import (
    ConfigurationError,
    FormatError,
    IncorrectCredentialsError,
    IntegrityError,
    KDFParameterError,
    VaultError,
)
from .core.kdf import PasswordCredentials
from .core.pipeline import load_container, read_container

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "FormatError",
    "IncorrectCredentialsError",
    "IntegrityError",
    "KDFParameterError",
    "LoaderOptions",
    "PasswordCredentials",
    "VaultDocument",
    "VaultEntry",
    "VaultError",
    "load_container",
    "read_container",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
