"""
Error taxonomy for the CA store.

Every failure aborts the current command. Library exceptions are wrapped
with `raise ... from exc` so the original cause stays visible in tracebacks
while the CLI only needs to catch HancockError.
"""

from __future__ import annotations


class HancockError(Exception):
    """Base class for all CA manager errors."""


class NotFound(HancockError):
    """An expected file is missing on a read path."""

    def __init__(self, path: str, what: str = "file"):
        self.path = path
        self.what = what
        super().__init__(f"{what} not found: {path}")


class ParseFailure(HancockError):
    """Malformed PEM / ASN.1 data, or an unsupported object inside it."""


class DecryptionFailure(HancockError):
    """Wrong or missing passphrase for a private key."""


class CryptoFailure(HancockError):
    """Key generation, signing or extension building failed."""


class StorageFailure(HancockError):
    """Directory creation, permission setting or write failed."""


class ValidationFailure(HancockError):
    """Invalid user input, e.g. an unknown key type or a bad entity name."""
