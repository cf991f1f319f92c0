"""Structured error types for vaultread.

All errors inherit from both ``VaultError`` and ``ValueError`` so that
callers that only catch ``ValueError`` keep working.

Hierarchy::

    VaultError (Exception)
    +-- FormatError               — malformed header, block framing or document
    |   +-- KDFParameterError     — key transform parameters out of bounds
    +-- IncorrectCredentialsError — start-bytes mismatch (wrong key or corruption)
    +-- IntegrityError            — block hash, header hash or padding mismatch
    +-- ConfigurationError        — invalid loader options
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for all vaultread errors."""


class FormatError(VaultError, ValueError):
    """The container is structurally unusable (bad header, framing, XML)."""


class KDFParameterError(FormatError):
    """Key transform parameter outside the allowed range."""


class IncorrectCredentialsError(VaultError, ValueError):
    """The credentials do not open this container, or the file is damaged.

    The two causes cannot be told apart and the message never tries to.
    """


class IntegrityError(VaultError, ValueError):
    """Verified content does not match its stored digest."""


class ConfigurationError(VaultError, ValueError):
    """Loader options are inconsistent or out of range."""
