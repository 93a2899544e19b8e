# storage_diff.py
# Decode a contract's storage layout at two blocks (or from two dump files) and
# report what changed: [added] / [changed] / [deleted] per variable, array
# element and struct member. Mappings are never compared.

import os, sys, json, time, argparse, logging
from typing import List, Optional

from chain_rpc import RPC_URL, checksum, connect, make_accessor, network_name, warn_placeholder
from slot_decoder import to_plain
from state_differ import Added, Change, Changed, Deleted, capture_snapshot, compare
from storage_errors import StorageDecodeError
from storage_layout import load_layout
from storage_read import summarize


def format_change(change: Change) -> str:
    if isinstance(change, Changed):
        return f"  [changed] {change.name}: {summarize(change.before)} ==> {summarize(change.after)}"
    return f"  [{change.kind}] {change.name}: {summarize(change.value)}"


def change_to_plain(change: Change) -> dict:
    if isinstance(change, Changed):
        return {"kind": change.kind, "name": change.name,
                "before": to_plain(change.before), "after": to_plain(change.after)}
    return {"kind": change.kind, "name": change.name, "value": to_plain(change.value)}


def read_dump(path: Optional[str]) -> Optional[bytes]:
    if not path:
        return None
    if not os.path.exists(path):
        print(f"❌ Dump file not found: {path}"); sys.exit(2)
    with open(path, "rb") as f:
        return f.read()


def main():
    ap = argparse.ArgumentParser(description="Diff decoded contract storage between two blocks or two dumps.")
    ap.add_argument("address", help="Contract address (0x...)")
    ap.add_argument("layout", help="Layout JSON file, inline JSON, or '-' to read STDIN")
    ap.add_argument("block_a", type=int, nargs="?", help="Before block")
    ap.add_argument("block_b", type=int, nargs="?", help="After block")
    ap.add_argument("--rpc", default=RPC_URL, help="RPC URL (default from RPC_URL env)")
    ap.add_argument("--before-dump", help="Dump file holding the before state")
    ap.add_argument("--after-dump", help="Dump file holding the after state")
    ap.add_argument("--offline", action="store_true", help="Never query RPC; both dumps required")
    ap.add_argument("--contract", help="Contract name when the layout JSON maps several contracts")
    ap.add_argument("--json", action="store_true", help="Print the change list as JSON")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log every slot read")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    address = checksum(args.address)
    status = sys.stderr if args.json else sys.stdout
    if args.offline and not (args.before_dump and args.after_dump):
        print("❌ --offline requires both --before-dump and --after-dump."); sys.exit(2)
    if not args.offline and (args.block_a is None or args.block_b is None):
        print("❌ block_a and block_b are required unless diffing two dumps with --offline."); sys.exit(2)

    block_a, block_b = args.block_a, args.block_b
    if block_a is not None and block_b is not None:
        if min(block_a, block_b) < 0:
            print("❌ Block numbers must be ≥ 0."); sys.exit(2)
        if block_a > block_b:
            block_a, block_b = block_b, block_a
            print("🔄 Swapped block order for ascending comparison.", file=status)

    try:
        layout = load_layout(args.layout, args.contract)
    except StorageDecodeError as e:
        print(f"❌ {e}"); sys.exit(2)

    w3 = None
    if not args.offline:
        warn_placeholder(args.rpc)
        w3 = connect(args.rpc)
        tip = w3.eth.block_number
        print(f"🌐 Connected to {network_name(w3.eth.chain_id)} (chainId {w3.eth.chain_id}, tip {tip})", file=status)
        if block_b > tip:
            print(f"⚠️ block_b {block_b} > tip {tip}; clamping.", file=status); block_b = tip

    # one accessor per state: the two blocks must not share cached slots
    before_acc = make_accessor(w3, address, block_a, read_dump(args.before_dump))
    after_acc = make_accessor(w3, address, block_b, read_dump(args.after_dump))

    t0 = time.monotonic()
    try:
        before = capture_snapshot(layout, before_acc, strict=False)
        after = capture_snapshot(layout, after_acc, strict=False)
    except StorageDecodeError as e:
        print(f"❌ {e}"); sys.exit(2)
    except Exception as e:
        print(f"❌ Storage read failed: {e}"); sys.exit(2)

    changes: List[Change] = compare(before, after)

    if args.json:
        print(json.dumps([change_to_plain(c) for c in changes], indent=2))
    else:
        print(f"\n📦 {address}  ({block_a if block_a is not None else 'dump'} → {block_b if block_b is not None else 'dump'})")
        if not changes:
            print("✅ No storage changes.")
        for change in changes:
            print(format_change(change))
        added = sum(isinstance(c, Added) for c in changes)
        deleted = sum(isinstance(c, Deleted) for c in changes)
        print(f"\n🔁 {len(changes)} changes ({added} added, {len(changes) - added - deleted} changed, {deleted} deleted)")

    print(f"⏱️ Elapsed: {time.monotonic() - t0:.2f}s", file=status)

if __name__ == "__main__":
    main()
