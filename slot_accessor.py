# slot_accessor.py
# Memoizing access to raw 32-byte storage slots, layered over an optional dump
# buffer (slots 0..N packed 32 bytes each) and an optional live fetch capability.
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Union

from storage_errors import FetchFailure, MalformedLayout
from storage_layout import MAX_SLOT, SLOT_BYTES

log = logging.getLogger(__name__)

EMPTY_SLOT = b"\x00" * SLOT_BYTES

RawSlotData = Union[bytes, bytearray, str]


class SlotFetcher(Protocol):
    def fetch(self, slot: int) -> RawSlotData:
        """Return the raw value at ``slot``: bytes or a 0x-hex string of at most 32 bytes."""
        ...


class DumpCoverage(Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


def slot_index(slot: Union[int, str]) -> int:
    if isinstance(slot, bool):
        raise MalformedLayout(None, "slot", f"is not numeric: {slot!r}")
    if isinstance(slot, str):
        try:
            slot = int(slot, 0)  # "5" or "0x5"
        except ValueError:
            raise MalformedLayout(None, "slot", f"is not numeric: {slot!r}") from None
    if not isinstance(slot, int):
        raise MalformedLayout(None, "slot", f"is not numeric: {slot!r}")
    if slot < 0 or slot >= MAX_SLOT:
        raise MalformedLayout(None, "slot", f"out of range [0, 2^256): {slot}")
    return slot


def to_raw_slot(slot: int, data: RawSlotData) -> bytes:
    """Normalise provider output to exactly 32 big-endian bytes ("0x" -> all zero)."""
    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    elif isinstance(data, str):
        h = data[2:] if data[:2] in ("0x", "0X") else data
        if len(h) % 2:
            h = "0" + h
        try:
            raw = bytes.fromhex(h)
        except ValueError:
            raise FetchFailure(slot, f"not a hex string: {data!r}") from None
    else:
        raise FetchFailure(slot, f"unexpected slot data {type(data).__name__}")
    if len(raw) > SLOT_BYTES:
        raise FetchFailure(slot, f"{len(raw)} bytes returned, a slot holds {SLOT_BYTES}")
    return raw.rjust(SLOT_BYTES, b"\x00")


def to_hex(b: bytes) -> str:
    return "0x" + b.hex()


class SlotAccessor:
    """Resolve slot indices to raw slots: cache first, then dump buffer, then fetcher.

    Every slot resolved once is memoized by its integer index, so the fetch
    capability runs at most once per slot for the lifetime of the accessor. A
    slot outside the dump with no fetcher configured reads as all zero.
    """

    def __init__(
        self,
        fetcher: Optional[Union[SlotFetcher, Callable[[int], RawSlotData]]] = None,
        dump: Optional[bytes] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if fetcher is not None and hasattr(fetcher, "fetch"):
            self._fetch = fetcher.fetch
        else:
            self._fetch = fetcher
        self._dump = bytes(dump) if dump is not None else None
        self._cache: Dict[int, bytes] = {}
        self.log = logger or log

    @property
    def live(self) -> bool:
        return self._fetch is not None

    @property
    def cached_slots(self) -> Dict[int, bytes]:
        return dict(self._cache)

    def get_cache(self, slot: Union[int, str]) -> Optional[bytes]:
        return self._cache.get(slot_index(slot))

    def set_cache(self, slot: Union[int, str], value: RawSlotData) -> None:
        ix = slot_index(slot)
        self._cache[ix] = to_raw_slot(ix, value)

    def coverage(self, slot: Union[int, str]) -> DumpCoverage:
        ix = slot_index(slot)
        if self._dump is None:
            return DumpCoverage.NONE
        start = ix * SLOT_BYTES
        if start >= len(self._dump):
            return DumpCoverage.NONE
        if start + SLOT_BYTES > len(self._dump):
            return DumpCoverage.PARTIAL
        return DumpCoverage.FULL

    def get(self, slot: Union[int, str]) -> bytes:
        ix = slot_index(slot)
        cached = self._cache.get(ix)
        if cached is not None:
            self.log.debug("Slot %s has been read from in-memory cache: %s", hex(ix), to_hex(cached))
            return cached

        covered = self.coverage(ix)
        if covered is not DumpCoverage.NONE:
            start = ix * SLOT_BYTES
            chunk = self._dump[start:start + SLOT_BYTES]
            if covered is DumpCoverage.PARTIAL:
                self.log.debug(
                    "Slot %d is partially out of bounds. Returning %d bytes: %s", ix, len(chunk), to_hex(chunk)
                )
            else:
                self.log.debug("Slot %d was fetched from dump file: %s", ix, to_hex(chunk))
            result = chunk.ljust(SLOT_BYTES, b"\x00")
        elif self._fetch is None:
            if self._dump is not None:
                self.log.debug("Slot %d is out of bounds. Returning empty chunk.", ix)
            else:
                self.log.debug("Slot %d has no source. Returning empty chunk.", ix)
            result = EMPTY_SLOT
        else:
            # provider errors propagate untouched; nothing is cached for this slot
            result = to_raw_slot(ix, self._fetch(ix))
            self.log.debug("Slot %s has been read from provider: %s", hex(ix), to_hex(result))

        self._cache[ix] = result
        return result
