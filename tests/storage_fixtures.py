"""In-memory slot sources and layout builders shared by the tests."""

from __future__ import annotations

from typing import Dict, List, Union

from web3 import Web3


class FakeFetcher:
    """Slot fetch capability backed by a dict; records every call in order."""

    def __init__(self, slots: Dict[int, Union[bytes, str]] | None = None):
        self.slots = dict(slots or {})
        self.calls: List[int] = []

    def fetch(self, slot: int):
        self.calls.append(slot)
        return self.slots.get(slot, "0x")


def word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def keccak_slot(*words: bytes) -> int:
    return int.from_bytes(Web3.keccak(b"".join(words)), "big")


def inplace(label: str, size: int, **extra) -> dict:
    return {"encoding": "inplace", "label": label, "numberOfBytes": str(size), **extra}


def dyn_array(base: dict) -> dict:
    return {"encoding": "dynamic_array", "label": base["label"] + "[]", "numberOfBytes": "32", "base": base}


def mapping(key: dict, value: dict) -> dict:
    return {
        "encoding": "mapping",
        "label": f"mapping({key['label']} => {value['label']})",
        "numberOfBytes": "32",
        "key": key,
        "value": value,
    }


def var(name: str, type_: dict, slot: int = 0, offset: int = 0) -> dict:
    return {"slot": str(slot), "offset": offset, "name": name, "type": type_}
