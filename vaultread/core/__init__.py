"""Core container decoding modules."""

from .errors import (  # noqa: F401
    ConfigurationError,
    FormatError,
    IncorrectCredentialsError,
    IntegrityError,
    KDFParameterError,
    VaultError,
)
