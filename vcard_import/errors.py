"""
Error taxonomy for vCard imports.

A run fails as a whole only when the local address book cannot be opened
(StoreUnavailableError). Every other error belongs to a single source and is
reported through that source's completion callback.
"""


class VCardImportError(Exception):
    """Base class for errors raised while importing vCard sources."""

    pass


class StoreUnavailableError(VCardImportError):
    """Raised when the local address book cannot be opened for a run."""

    pass


class FetchError(VCardImportError):
    """Raised when a vCard source cannot be reached, authenticated or downloaded."""

    pass


class ParseError(VCardImportError):
    """Raised when downloaded data contains no usable vCard records."""

    pass


class ApplyError(VCardImportError):
    """Raised when changing the local address book fails."""

    pass


class SaveError(VCardImportError):
    """Raised when saving the local address book fails."""

    pass
