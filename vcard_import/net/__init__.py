"""
vcard_import.net - Networking module

Probing and downloading vCard sources over HTTP, with freshness stamps for
skipping unchanged sources.
"""

from vcard_import.net.connection import URLConnection
from vcard_import.net.http import AuthenticationMethod, ProgressBytes
from vcard_import.net.stamp import Freshness, ModifiedHeaderStamp, check_freshness

__all__ = [
    "URLConnection",
    "AuthenticationMethod",
    "ProgressBytes",
    "Freshness",
    "ModifiedHeaderStamp",
    "check_freshness",
]
