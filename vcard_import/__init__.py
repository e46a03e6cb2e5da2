"""
vcard_import - Import contacts from remote vCard sources into a local address book.

Checks each configured vCard source for changes, downloads the changed ones
and merges their contacts into the local address book without overwriting
existing data.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
