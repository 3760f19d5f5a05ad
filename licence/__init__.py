"""
Licence Management Module.

Issues, validates, renews and deactivates point-of-sale licence keys
backed by a single JSON document.
"""

from licence.generator import KeyGenerator
from licence.lifecycle import LicenceLifecycle
from licence.models import Licence, LicenceDatabase, LicenceType
from licence.store import InMemoryLicenceStore, JsonFileLicenceStore, LicenceStore

__all__ = [
    "KeyGenerator",
    "LicenceLifecycle",
    "Licence",
    "LicenceDatabase",
    "LicenceType",
    "LicenceStore",
    "JsonFileLicenceStore",
    "InMemoryLicenceStore",
]
