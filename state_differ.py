"""Decoded storage snapshots and their before/after comparison.

A snapshot maps variable name -> SnapshotEntry(variable, value) in layout
order. ``compare`` walks two snapshots of the same layout and returns the
changes in that order: variables from ``before`` first (arrays by ascending
index, structs by member order), then variables only present in ``after``.

Mappings are opaque and never diffed. A variable missing on one side is an
Added/Deleted change, not an error.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import ClassVar, Dict, Iterable, List, Mapping, Optional, Union

from slot_accessor import SlotAccessor
from slot_decoder import OPAQUE_MAPPING, DecodedValue, Record, Scalar, Sequence, decode
from storage_errors import MalformedLayout, UnsupportedType
from storage_layout import StorageVariable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotEntry:
    variable: StorageVariable
    value: DecodedValue


Snapshot = Mapping[str, SnapshotEntry]


@dataclass(frozen=True)
class Added:
    kind: ClassVar[str] = "added"
    name: str
    value: DecodedValue


@dataclass(frozen=True)
class Changed:
    kind: ClassVar[str] = "changed"
    name: str
    before: DecodedValue
    after: DecodedValue


@dataclass(frozen=True)
class Deleted:
    kind: ClassVar[str] = "deleted"
    name: str
    value: DecodedValue


Change = Union[Added, Changed, Deleted]


def capture_snapshot(
    layout: Iterable[StorageVariable],
    accessor: SlotAccessor,
    strict: bool = True,
    logger: Optional[logging.Logger] = None,
) -> Snapshot:
    """Decode every variable of ``layout`` in order.

    With ``strict=False`` a variable whose layout is malformed or whose type is
    unsupported is logged and left out; provider errors always propagate.
    """
    logger = logger or log
    entries: Dict[str, SnapshotEntry] = {}
    for variable in layout:
        try:
            if variable.name in entries:
                raise MalformedLayout(variable.name, "name", "is declared twice")
            value = decode(variable, accessor)
        except (MalformedLayout, UnsupportedType) as e:
            if strict:
                raise
            logger.error("Skipping storage variable %s: %s", variable.name, e)
            continue
        entries[variable.name] = SnapshotEntry(variable, value)
    return MappingProxyType(entries)


def scalars_equal(a: Scalar, b: Scalar) -> bool:
    if a.kind != b.kind:
        return False
    if a.kind == "int":
        return int(a.value) == int(b.value)
    if a.kind in ("address", "bytes"):
        return str(a.value).lower() == str(b.value).lower()
    return a.value == b.value


def _compare_values(name: str, a: DecodedValue, b: DecodedValue, out: List[Change]) -> None:
    if a is OPAQUE_MAPPING and b is OPAQUE_MAPPING:
        return
    if isinstance(a, Sequence) and isinstance(b, Sequence):
        for i in range(max(len(a.items), len(b.items))):
            sub = f"{name}[{i}]"
            if i >= len(b.items):
                out.append(Deleted(sub, a.items[i]))
            elif i >= len(a.items):
                if b.items[i] is not OPAQUE_MAPPING:
                    out.append(Added(sub, b.items[i]))
            else:
                _compare_values(sub, a.items[i], b.items[i], out)
        return
    if isinstance(a, Record) and isinstance(b, Record):
        after = b.as_dict()
        for member, value in a.members:
            sub = f"{name}.{member}"
            if member not in after:
                out.append(Deleted(sub, value))
            else:
                _compare_values(sub, value, after[member], out)
        before = a.as_dict()
        for member, value in b.members:
            if member not in before and value is not OPAQUE_MAPPING:
                out.append(Added(f"{name}.{member}", value))
        return
    if isinstance(a, Scalar) and isinstance(b, Scalar):
        if not scalars_equal(a, b):
            out.append(Changed(name, a, b))
        return
    # shape differs between the two layouts
    out.append(Changed(name, a, b))


def _added(name: str, value: DecodedValue, out: List[Change]) -> None:
    if value is OPAQUE_MAPPING:
        return
    if isinstance(value, Sequence) and value.items:
        for i, item in enumerate(value.items):
            if item is not OPAQUE_MAPPING:
                out.append(Added(f"{name}[{i}]", item))
        return
    out.append(Added(name, value))


def compare(before: Snapshot, after: Snapshot, logger: Optional[logging.Logger] = None) -> List[Change]:
    logger = logger or log
    changes: List[Change] = []
    for name, entry in before.items():
        other = after.get(name)
        if other is None:
            changes.append(Deleted(name, entry.value))
            continue
        _compare_values(name, entry.value, other.value, changes)

    for name, entry in after.items():
        if name not in before:
            _added(name, entry.value, changes)

    for change in changes:
        logger.debug("[%s] %s", change.kind, change.name)
    return changes
