# storage_errors.py
# Errors raised while parsing layouts, decoding slots and looking up mapping entries.
from typing import Any, Optional


class StorageDecodeError(Exception):
    """Base class for every layout / decoding failure."""


class MalformedLayout(StorageDecodeError):
    def __init__(self, variable: Optional[str], field: str, reason: str):
        self.variable = variable
        self.field = field
        self.reason = reason
        where = f"variable '{variable}'" if variable else "layout entry"
        super().__init__(f"Malformed {where}: {field} {reason}")


class UnsupportedType(StorageDecodeError):
    def __init__(self, label: str, variable: Optional[str] = None):
        self.label = label
        self.variable = variable
        suffix = f" (variable '{variable}')" if variable else ""
        super().__init__(f"Unsupported storage type: {label}{suffix}")


class InvalidKey(StorageDecodeError):
    def __init__(self, key: Any, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid mapping key {key!r}: {reason}")


class FetchFailure(StorageDecodeError):
    """A slot source returned something that cannot be a 32-byte slot."""

    def __init__(self, slot: int, reason: str):
        self.slot = slot
        self.reason = reason
        super().__init__(f"Slot {hex(slot)}: {reason}")
