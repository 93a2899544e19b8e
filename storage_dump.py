# storage_dump.py
# Dump a contract's raw storage slots into a flat buffer (slot i at bytes
# i*32..i*32+31) usable with `storage_read.py --dump` and `storage_diff.py`,
# and print a hex view of the dumped bytes.

import os, sys, time, argparse, logging
from typing import Iterable, List

from chain_rpc import RPC_URL, checksum, connect, make_accessor, network_name, warn_placeholder
from slot_accessor import EMPTY_SLOT, SlotAccessor

DEFAULT_MAX_SLOTS = 5000


def parse_slot(s: str) -> int:
    try:
        v = int(s, 0)  # decimal or 0xHEX
    except ValueError:
        print(f"❌ Invalid slot: {s}"); sys.exit(2)
    if v < 0 or v >= 2**256:
        print("❌ Slot out of range [0, 2^256)."); sys.exit(2)
    return v


def dump_slots(accessor: SlotAccessor, slots: Iterable[int], stop_at_empty: bool = False) -> bytes:
    """Concatenate raw slots; with stop_at_empty, end before the first all-zero slot."""
    data = bytearray()
    for slot in slots:
        raw = accessor.get(slot)
        if stop_at_empty and raw == EMPTY_SLOT:
            break
        data += raw
    return bytes(data)


def hex_view(data: bytes, start_slot: int = 0) -> List[str]:
    lines = [
        "           00 01 02 03 04 05 06 07 08 09 0A 0B 0C 0D 0E 0F",
        "         + ----------------------------------------------- +",
    ]
    base = start_slot * 32
    for i in range(0, len(data), 16):
        row = data[i:i + 16]
        hexed = " ".join(f"{b:02X}" for b in row).ljust(47)
        ascii_ = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in row)
        lines.append(f"{base + i:08x} | {hexed} | {ascii_}")
    return lines


def main():
    ap = argparse.ArgumentParser(description="Dump raw storage slots of a contract into a flat file.")
    ap.add_argument("address", help="Contract address (0x...)")
    ap.add_argument("--rpc", default=RPC_URL, help="RPC URL (default from RPC_URL env)")
    ap.add_argument("--block", type=int, help="Block height (default: latest)")
    ap.add_argument("--slot", help="Dump only this slot (decimal or 0xHEX)")
    ap.add_argument("--start", default="0", help="First slot of the scan (default 0; --dump consumers expect 0)")
    ap.add_argument("--count", type=int, help="Number of slots; if omitted, stop at the first empty slot")
    ap.add_argument("--max-slots", type=int, default=DEFAULT_MAX_SLOTS, help="Safety cap for open-ended scans")
    ap.add_argument("--out", help="Write the raw dump to this path")
    ap.add_argument("--quiet", action="store_true", help="Skip the hex view")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log every slot read")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    address = checksum(args.address)
    if args.block is not None and args.block <= 0:
        print(f"❌ Invalid block height: {args.block}"); sys.exit(2)
    if args.count is not None and args.count <= 0:
        print(f"❌ Invalid count: {args.count}"); sys.exit(2)

    warn_placeholder(args.rpc)
    w3 = connect(args.rpc)
    print(f"🌐 Connected to {network_name(w3.eth.chain_id)} (chainId {w3.eth.chain_id})")
    accessor = make_accessor(w3, address, args.block)

    t0 = time.monotonic()
    try:
        if args.slot is not None:
            start = 0
            data = dump_slots(accessor, [parse_slot(args.slot)])
        else:
            start = parse_slot(args.start)
            if args.count is not None:
                data = dump_slots(accessor, range(start, start + args.count))
            else:
                data = dump_slots(accessor, range(start, start + args.max_slots), stop_at_empty=True)
                if len(data) // 32 == args.max_slots:
                    print(f"⚠️ Stopped after {args.max_slots} slots without finding an empty one.")
    except Exception as e:
        print(f"❌ Storage read failed: {e}"); sys.exit(2)

    if args.out:
        tmp = args.out + ".tmp"
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, args.out)
        print(f"📝 Wrote {len(data) // 32} slots → {args.out}")

    if not args.quiet:
        for line in hex_view(data, start):
            print(line)

    print(f"⏱️ Elapsed: {time.monotonic() - t0:.2f}s")

if __name__ == "__main__":
    main()
