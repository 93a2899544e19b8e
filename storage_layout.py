"""Storage layout model and parsing of compiler layout JSON.

A layout is an ordered tuple of StorageVariable. Each variable carries one of
three type variants, told apart by their ``encoding`` discriminant:

  - InplaceType: value lives inside one slot (or, for structs and static
    arrays, a run of slots starting at the variable's own slot)
  - DynamicArrayType: length at the variable's slot, elements at keccak(slot)
  - MappingType: nothing stored at the slot itself; entries need a key

Two more variants stand in for entries that cannot be decoded, so one bad
variable does not stop its siblings from parsing: UnsupportedEncodingType for
encodings other than the three above (solc uses "bytes" for every string and
bytes variable) and BrokenType for an entry whose description is malformed.
Both raise only when the variable is decoded.

Accepted input is either the flattened form (types resolved inline, variable
name under ``name``) or solc's raw ``storageLayout`` object (``storage`` +
``types`` with string type references and ``label`` as the variable name).
"""
import json
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from storage_errors import MalformedLayout, StorageDecodeError

SLOT_BYTES = 32
MAX_SLOT = 2**256

_STATIC_ARRAY = re.compile(r"\[(\d+)\]$")


@dataclass(frozen=True)
class InplaceType:
    encoding: ClassVar[str] = "inplace"
    label: str
    size: int
    members: Optional[Tuple["StorageVariable", ...]] = None
    base: Optional["StorageType"] = None  # static arrays only

    @property
    def is_struct(self) -> bool:
        return self.members is not None

    @property
    def static_length(self) -> Optional[int]:
        if self.base is None:
            return None
        m = _STATIC_ARRAY.search(self.label)
        if m is None:
            raise MalformedLayout(None, "label", f"static array {self.label!r} carries no [N] length")
        return int(m.group(1))


@dataclass(frozen=True)
class DynamicArrayType:
    encoding: ClassVar[str] = "dynamic_array"
    label: str
    size: int
    base: "StorageType"


@dataclass(frozen=True)
class MappingType:
    encoding: ClassVar[str] = "mapping"
    label: str
    size: int
    key: "StorageType"
    value: "StorageType"


@dataclass(frozen=True)
class UnsupportedEncodingType:
    encoding: str
    label: str
    size: int


@dataclass(frozen=True)
class BrokenType:
    label: str
    error: StorageDecodeError = field(compare=False)


StorageType = Union[InplaceType, DynamicArrayType, MappingType, UnsupportedEncodingType, BrokenType]


@dataclass(frozen=True)
class StorageVariable:
    slot: int
    offset: int
    name: str
    type: StorageType


def is_leaf(t: StorageType) -> bool:
    return isinstance(t, InplaceType) and not t.is_struct and t.base is None


def check_variable(variable: StorageVariable) -> None:
    """Raise MalformedLayout unless slot/offset/size fit the 32-byte slot model."""
    name = variable.name
    if isinstance(variable.slot, bool) or not isinstance(variable.slot, int):
        raise MalformedLayout(name, "slot", f"must be an integer, got {variable.slot!r}")
    if not 0 <= variable.slot < MAX_SLOT:
        raise MalformedLayout(name, "slot", f"out of range [0, 2^256): {variable.slot}")
    if isinstance(variable.offset, bool) or not isinstance(variable.offset, int):
        raise MalformedLayout(name, "offset", f"must be an integer, got {variable.offset!r}")
    if not 0 <= variable.offset < SLOT_BYTES:
        raise MalformedLayout(name, "offset", f"must be within 0..31, got {variable.offset}")
    if is_leaf(variable.type):
        size = variable.type.size
        if not 1 <= size <= SLOT_BYTES:
            raise MalformedLayout(name, "numberOfBytes", f"must be within 1..32, got {size}")
        if variable.offset + size > SLOT_BYTES:
            raise MalformedLayout(
                name, "offset", f"{variable.offset} + {size} bytes overflows the 32-byte slot"
            )


def _parse_uint(value: Any, variable: Optional[str], attr: str) -> int:
    if isinstance(value, bool):
        raise MalformedLayout(variable, attr, f"is not numeric: {value!r}")
    if isinstance(value, int):
        n = value
    elif isinstance(value, str):
        try:
            n = int(value.strip(), 0)  # "5" or "0x5"
        except ValueError:
            raise MalformedLayout(variable, attr, f"is not numeric: {value!r}") from None
    else:
        raise MalformedLayout(variable, attr, f"is not numeric: {value!r}")
    if n < 0:
        raise MalformedLayout(variable, attr, f"must not be negative: {n}")
    return n


def parse_type(desc: Any, types: Optional[Dict[str, Any]] = None, variable: Optional[str] = None) -> StorageType:
    if isinstance(desc, str):
        if types is None or desc not in types:
            raise MalformedLayout(variable, "type", f"unknown type reference {desc!r}")
        desc = types[desc]
    if not isinstance(desc, dict):
        raise MalformedLayout(variable, "type", "must be an object")

    encoding = desc.get("encoding")
    label = str(desc.get("label", ""))
    if "numberOfBytes" not in desc:
        raise MalformedLayout(variable, "numberOfBytes", "is missing")
    size = _parse_uint(desc["numberOfBytes"], variable, "numberOfBytes")

    if encoding == "inplace":
        members = None
        if desc.get("members") is not None:
            members = tuple(parse_variable(m, types) for m in desc["members"])
        base = None
        if desc.get("base") is not None:
            if not _STATIC_ARRAY.search(label):
                raise MalformedLayout(variable, "label", f"static array {label!r} carries no [N] length")
            base = parse_type(desc["base"], types, variable)
        return InplaceType(label, size, members, base)
    if encoding == "dynamic_array":
        if desc.get("base") is None:
            raise MalformedLayout(variable, "base", "is missing for a dynamic array")
        return DynamicArrayType(label, size, parse_type(desc["base"], types, variable))
    if encoding == "mapping":
        for attr in ("key", "value"):
            if desc.get(attr) is None:
                raise MalformedLayout(variable, attr, "is missing for a mapping")
        return MappingType(
            label, size, parse_type(desc["key"], types, variable), parse_type(desc["value"], types, variable)
        )
    return UnsupportedEncodingType(str(encoding or ""), label, size)


def parse_variable(record: Any, types: Optional[Dict[str, Any]] = None) -> StorageVariable:
    if not isinstance(record, dict):
        raise MalformedLayout(None, "entry", "must be an object")
    name = record.get("name", record.get("label"))
    if name is None:
        raise MalformedLayout(None, "name", "is missing")
    for attr in ("slot", "offset", "type"):
        if record.get(attr) is None:
            raise MalformedLayout(name, attr, "is missing")

    variable = StorageVariable(
        slot=_parse_uint(record["slot"], name, "slot"),
        offset=_parse_uint(record["offset"], name, "offset"),
        name=str(name),
        type=parse_type(record["type"], types, name),
    )
    check_variable(variable)
    return variable


def _parse_entry(record: Any, types: Optional[Dict[str, Any]]) -> StorageVariable:
    """Like parse_variable, but a named entry that fails to parse becomes a BrokenType."""
    try:
        return parse_variable(record, types)
    except StorageDecodeError as e:
        if not isinstance(record, dict) or record.get("name", record.get("label")) is None:
            raise
        desc = record.get("type")
        if isinstance(desc, str) and types and isinstance(types.get(desc), dict):
            desc = types[desc]
        label = str(desc.get("label", "")) if isinstance(desc, dict) else str(desc or "")
        name = str(record.get("name", record.get("label")))
        return StorageVariable(slot=0, offset=0, name=name, type=BrokenType(label, e))


def parse_layout(data: Any, contract: Optional[str] = None) -> Tuple[StorageVariable, ...]:
    """Parse a layout JSON document into an ordered tuple of variables.

    ``data`` may be a list of variables, solc's ``{"storage", "types"}`` object,
    or a map of contract name -> layout (then ``contract`` picks one; a map with a
    single contract needs no name). Problems confined to one entry do not raise
    here; they surface when that variable is decoded.
    """
    types = None
    if isinstance(data, dict):
        if "storage" in data:
            types = data.get("types") or {}
            data = data["storage"]
        elif contract is not None:
            if contract not in data:
                raise MalformedLayout(None, "contract", f"{contract!r} not found in layout map")
            return parse_layout(data[contract])
        elif len(data) == 1:
            return parse_layout(next(iter(data.values())))
        else:
            raise MalformedLayout(
                None, "contract", f"must be selected, layout map holds {sorted(data)}"
            )

    if not isinstance(data, list):
        raise MalformedLayout(None, "layout", "must be a JSON array of storage variables")
    layout: List[StorageVariable] = [_parse_entry(r, types) for r in data]
    return tuple(layout)


def load_layout(source: str, contract: Optional[str] = None) -> Tuple[StorageVariable, ...]:
    """Load a layout from a file path, inline JSON, or '-' for STDIN."""
    if source == "-":
        text = sys.stdin.read()
    elif os.path.isfile(source):
        with open(source) as f:
            text = f.read()
    else:
        text = source
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedLayout(None, "layout", f"is not valid JSON ({e})") from None
    return parse_layout(data, contract)
