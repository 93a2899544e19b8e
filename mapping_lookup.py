# mapping_lookup.py
# Point lookups into storage mappings: entry slot = keccak(pad32(key) ++ pad32(slot)).
# Keys are never discovered, the caller has to name them.
import re
from typing import Any, Iterable, Optional, Union

from eth_abi import encode as abi_encode
from eth_abi.exceptions import EncodingError
from web3 import Web3

from slot_accessor import SlotAccessor
from slot_decoder import DecodedValue, abi_type, decode
from storage_errors import InvalidKey, UnsupportedType
from storage_layout import SLOT_BYTES, BrokenType, MappingType, StorageType, StorageVariable

KeyLike = Union[int, bool, str, bytes, bytearray]

_INT_TYPES = ("uint", "int")
_FIXED_BYTES = re.compile(r"^bytes(\d+)$")


def _is_int_type(t: Optional[StorageType]) -> bool:
    return t is not None and abi_type(t.label).startswith(_INT_TYPES)


def encode_key(key: KeyLike, key_type: Optional[StorageType] = None) -> bytes:
    """Encode a mapping key as one 32-byte word.

    Integers, addresses and untyped hex or bytes are left-padded; keys of a
    bytesN mapping are right-padded.
    """
    if isinstance(key, bool):
        return abi_encode(["bool"], [key])

    if isinstance(key, str) and _is_int_type(key_type) and key.lstrip("-").isdigit():
        key = int(key)

    if isinstance(key, int):
        label = abi_type(key_type.label) if _is_int_type(key_type) else ("int256" if key < 0 else "uint256")
        try:
            return abi_encode([label], [key])
        except (EncodingError, ValueError, OverflowError) as e:
            raise InvalidKey(key, f"does not encode as {label}: {e}") from e

    if isinstance(key, str):
        if key[:2] not in ("0x", "0X"):
            raise InvalidKey(key, "expected an integer, an address or a 0x hex string")
        h = key[2:]
        if len(h) % 2:
            h = "0" + h
        try:
            raw = bytes.fromhex(h)
        except ValueError:
            raise InvalidKey(key, "not a hex string") from None
    elif isinstance(key, (bytes, bytearray)):
        raw = bytes(key)
    else:
        raise InvalidKey(key, f"unsupported key type {type(key).__name__}")

    fixed = _FIXED_BYTES.match(key_type.label) if key_type is not None else None
    if fixed:
        # bytesN keys are left-aligned in the word, like bytesN values
        width = int(fixed.group(1))
        if len(raw) > width:
            raise InvalidKey(key, f"{len(raw)} bytes do not fit into {key_type.label}")
        return raw.ljust(SLOT_BYTES, b"\x00")
    if len(raw) > SLOT_BYTES:
        raise InvalidKey(key, f"{len(raw)} bytes do not fit into a 32-byte word")
    return raw.rjust(SLOT_BYTES, b"\x00")


def mapping_entry_slot(slot: int, encoded_key: bytes) -> int:
    return int.from_bytes(Web3.keccak(encoded_key + slot.to_bytes(SLOT_BYTES, "big")), "big")


def decode_mapping_entry(variable: StorageVariable, key: KeyLike, accessor: SlotAccessor) -> DecodedValue:
    t = variable.type
    if isinstance(t, BrokenType):
        raise t.error
    if not isinstance(t, MappingType):
        raise UnsupportedType(t.label, variable.name)

    entry = StorageVariable(
        slot=mapping_entry_slot(variable.slot, encode_key(key, t.key)),
        offset=0,
        name=f"{variable.name}[{key!r}]",
        type=t.value,
    )
    return decode(entry, accessor)


def decode_mapping_path(variable: StorageVariable, keys: Iterable[Any], accessor: SlotAccessor) -> DecodedValue:
    """Follow nested mappings, one key per level (``m[k1][k2]...``)."""
    keys = list(keys)
    if not keys:
        raise InvalidKey(keys, "at least one key is required")
    current = variable
    for key in keys[:-1]:
        t = current.type
        if isinstance(t, BrokenType):
            raise t.error
        if not isinstance(t, MappingType):
            raise UnsupportedType(t.label, current.name)
        current = StorageVariable(
            slot=mapping_entry_slot(current.slot, encode_key(key, t.key)),
            offset=0,
            name=f"{current.name}[{key!r}]",
            type=t.value,
        )
    return decode_mapping_entry(current, keys[-1], accessor)
