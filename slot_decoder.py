"""Type-directed decoding of storage variables into typed values.

Values come back as one of four variants:

  Scalar       - int (canonical decimal string), bool, address (checksummed),
                 fixed bytes (0x hex)
  Sequence     - dynamic or static array, elements in index order
  Record       - struct members in declaration order
  OPAQUE_MAPPING - mappings cannot be enumerated; see mapping_lookup

Slot reads go through a SlotAccessor and happen strictly in increasing
element order, one at a time.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from slot_accessor import SlotAccessor
from storage_errors import MalformedLayout, UnsupportedType
from storage_layout import (
    MAX_SLOT,
    SLOT_BYTES,
    BrokenType,
    DynamicArrayType,
    InplaceType,
    MappingType,
    StorageType,
    StorageVariable,
    UnsupportedEncodingType,
    check_variable,
)

_INT = re.compile(r"^(u?)int(\d*)$")
_FIXED_BYTES = re.compile(r"^bytes(\d+)$")

# A length word above this is taken as a sign the layout does not match the slot
# source (wrong contract, proxy, misaligned dump), not as a real array.
MAX_ARRAY_LENGTH = 100_000


@dataclass(frozen=True)
class Scalar:
    kind: str  # "int" | "bool" | "address" | "bytes"
    value: Union[str, bool]

    def __str__(self) -> str:
        if self.kind == "bool":
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class Sequence:
    items: Tuple["DecodedValue", ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator["DecodedValue"]:
        return iter(self.items)


@dataclass(frozen=True)
class Record:
    members: Tuple[Tuple[str, "DecodedValue"], ...] = ()

    def as_dict(self) -> Dict[str, "DecodedValue"]:
        return dict(self.members)


class OpaqueMapping:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OPAQUE_MAPPING"


OPAQUE_MAPPING = OpaqueMapping()

DecodedValue = Union[Scalar, Sequence, Record, OpaqueMapping]


def abi_type(label: str) -> str:
    if label == "address payable" or label.startswith("contract "):
        return "address"
    if label.startswith("enum "):
        return "uint8"
    m = _INT.match(label)
    if m and not m.group(2):
        return label + "256"
    return label


def extract(raw: bytes, offset: int, size: int) -> bytes:
    """Bytes of a value packed ``offset`` bytes above the low end of the slot."""
    end = SLOT_BYTES - offset
    return raw[end - size:end]


def decode_scalar(label: str, chunk: bytes, name: Optional[str] = None) -> Scalar:
    t = abi_type(label)
    try:
        if _INT.match(t):
            # signed values are sign-extended to a full word before ABI decoding
            pad = b"\xff" if t[0] == "i" and chunk and chunk[0] & 0x80 else b"\x00"
            (value,) = abi_decode([t], chunk.rjust(SLOT_BYTES, pad))
            return Scalar("int", str(value))
        if t == "bool":
            (value,) = abi_decode([t], chunk.rjust(SLOT_BYTES, b"\x00"))
            return Scalar("bool", bool(value))
        if t == "address":
            (value,) = abi_decode([t], chunk.rjust(SLOT_BYTES, b"\x00"))
            return Scalar("address", Web3.to_checksum_address(value))
        if _FIXED_BYTES.match(t):
            (value,) = abi_decode([t], chunk.ljust(SLOT_BYTES, b"\x00"))
            return Scalar("bytes", "0x" + bytes(value).hex())
    except DecodingError as e:
        raise MalformedLayout(name, "numberOfBytes", f"{len(chunk)} bytes do not decode as {t}: {e}") from e
    except ValueError as e:
        # eth_abi rejects unknown or malformed type strings such as uint7
        raise UnsupportedType(label, name) from e
    raise UnsupportedType(label, name)


def array_data_slot(slot: int) -> int:
    return int.from_bytes(Web3.keccak(slot.to_bytes(SLOT_BYTES, "big")), "big")


def element_position(index: int, element_size: int) -> Tuple[int, int]:
    """(slot delta, offset) of an array element relative to the array's data slot."""
    if element_size <= SLOT_BYTES:
        per_slot = SLOT_BYTES // element_size
        return index // per_slot, (index % per_slot) * element_size
    slots_per_element = -(-element_size // SLOT_BYTES)
    return index * slots_per_element, 0


def _decode_elements(
    name: str,
    base: int,
    element: StorageType,
    length: int,
    accessor: SlotAccessor,
    max_elements: int,
) -> Sequence:
    if element.size <= 0:
        raise MalformedLayout(name, "numberOfBytes", f"array element size must be positive, got {element.size}")
    items = []
    for i in range(length):
        delta, offset = element_position(i, element.size)
        item = StorageVariable(slot=(base + delta) % MAX_SLOT, offset=offset, name=f"{name}[{i}]", type=element)
        items.append(decode(item, accessor, max_elements))
    return Sequence(tuple(items))


def decode(variable: StorageVariable, accessor: SlotAccessor, max_elements: int = MAX_ARRAY_LENGTH) -> DecodedValue:
    t = variable.type
    if isinstance(t, BrokenType):
        raise t.error
    if isinstance(t, UnsupportedEncodingType):
        raise UnsupportedType(t.label or t.encoding, variable.name)
    check_variable(variable)

    if isinstance(t, MappingType):
        return OPAQUE_MAPPING

    if isinstance(t, DynamicArrayType):
        if variable.offset + t.size > SLOT_BYTES:
            raise MalformedLayout(variable.name, "offset", f"{variable.offset} + {t.size} bytes overflows the slot")
        raw = accessor.get(variable.slot)
        length = int.from_bytes(extract(raw, variable.offset, t.size), "big")
        if length == 0:
            return Sequence(())
        if length > max_elements:
            raise MalformedLayout(
                variable.name, "length", f"{length} exceeds {max_elements} elements, layout does not fit this storage"
            )
        return _decode_elements(variable.name, array_data_slot(variable.slot), t.base, length, accessor, max_elements)

    if isinstance(t, InplaceType):
        if t.is_struct:
            members = []
            for m in t.members:
                member = StorageVariable(
                    slot=(variable.slot + m.slot) % MAX_SLOT,
                    offset=m.offset,
                    name=f"{variable.name}.{m.name}",
                    type=m.type,
                )
                members.append((m.name, decode(member, accessor, max_elements)))
            return Record(tuple(members))
        if t.base is not None:
            return _decode_elements(variable.name, variable.slot, t.base, t.static_length, accessor, max_elements)
        raw = accessor.get(variable.slot)
        return decode_scalar(t.label, extract(raw, variable.offset, t.size), variable.name)

    raise UnsupportedType(getattr(t, "label", type(t).__name__), variable.name)


def to_plain(value: DecodedValue) -> Any:
    """JSON-friendly form; mappings (inside records) are left out."""
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, Sequence):
        return [to_plain(v) for v in value.items]
    if isinstance(value, Record):
        return {k: to_plain(v) for k, v in value.members if v is not OPAQUE_MAPPING}
    return None
