# storage_read.py
# Decode a contract's storage from its compiler layout at one block, reading live
# slots over RPC, from a dump file, or both (dump first, RPC for missing slots).
# Prints a variable/value table and optionally writes the decoded values as JSON.

import os, sys, json, time, argparse, logging
from typing import Dict, List, Tuple

from chain_rpc import RPC_URL, checksum, connect, make_accessor, network_name, warn_placeholder
from mapping_lookup import decode_mapping_path
from slot_decoder import OPAQUE_MAPPING, DecodedValue, Record, Sequence, to_plain
from state_differ import capture_snapshot
from storage_errors import StorageDecodeError
from storage_layout import StorageVariable, load_layout


def summarize(value: DecodedValue) -> str:
    if value is OPAQUE_MAPPING:
        return "<mapping>"
    if isinstance(value, Sequence):
        if len(value) > 1:
            return f"[ {summarize(value.items[0])} and {len(value) - 1} more ]"
        if len(value) == 1:
            return f"[ {summarize(value.items[0])} ]"
        return "<empty array>"
    if isinstance(value, Record):
        return "{ " + ", ".join(f"{k}: {summarize(v)}" for k, v in value.members) + " }"
    return str(value)


def render_table(rows: List[Tuple[str, str]]) -> str:
    name_w = max([len(n) for n, _ in rows] + [len("Storage variable")])
    value_w = max([len(v) for _, v in rows] + [len("Value")])
    rule = "+" + "-" * (name_w + 2) + "+" + "-" * (value_w + 2) + "+"
    lines = [rule, f"| {'Storage variable'.ljust(name_w)} | {'Value'.ljust(value_w)} |", rule]
    lines += [f"| {n.ljust(name_w)} | {v.ljust(value_w)} |" for n, v in rows]
    lines.append(rule)
    return "\n".join(lines)


def parse_key_args(key_args: List[str]) -> List[Tuple[str, List[str]]]:
    """'balances=0xabc...' or 'allowance=0xowner,0xspender' (nested mappings)."""
    lookups = []
    for arg in key_args or []:
        if "=" not in arg:
            print(f"❌ Invalid --key '{arg}' (use VAR=KEY or VAR=KEY1,KEY2)."); sys.exit(2)
        name, keys = arg.split("=", 1)
        parts = [k.strip() for k in keys.split(",") if k.strip()]
        if not parts:
            print(f"❌ --key '{arg}' names no key."); sys.exit(2)
        lookups.append((name.strip(), parts))
    return lookups


def main():
    ap = argparse.ArgumentParser(description="Decode contract storage from a compiler storage layout.")
    ap.add_argument("address", help="Contract address (0x...)")
    ap.add_argument("layout", help="Layout JSON file, inline JSON, or '-' to read STDIN")
    ap.add_argument("--rpc", default=RPC_URL, help="RPC URL (default from RPC_URL env)")
    ap.add_argument("--block", type=int, help="Block height for storage reads (default: latest)")
    ap.add_argument("--dump", help="Pre-fetched storage dump (see storage_dump.py); missing slots come from RPC")
    ap.add_argument("--offline", action="store_true", help="With --dump: never query RPC, missing slots read as zero")
    ap.add_argument("--contract", help="Contract name when the layout JSON maps several contracts")
    ap.add_argument("--key", action="append", help="Mapping lookup VAR=KEY[,KEY2...] (repeatable)")
    ap.add_argument("--out", help="Write decoded values as JSON to this path")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log every slot read")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    address = checksum(args.address)
    if args.block is not None and args.block <= 0:
        print(f"❌ Invalid block height: {args.block}"); sys.exit(2)
    if args.offline and not args.dump:
        print("❌ --offline requires --dump."); sys.exit(2)

    try:
        layout = load_layout(args.layout, args.contract)
    except StorageDecodeError as e:
        print(f"❌ {e}"); sys.exit(2)
    lookups = parse_key_args(args.key)

    dump = None
    if args.dump:
        if not os.path.exists(args.dump):
            print(f"❌ Dump file not found: {args.dump}"); sys.exit(2)
        with open(args.dump, "rb") as f:
            dump = f.read()
        print(f"📂 Using dump {args.dump} ({len(dump)} bytes, {len(dump) // 32} slots)")

    w3 = None
    if not args.offline:
        warn_placeholder(args.rpc)
        w3 = connect(args.rpc)
        print(f"🌐 Connected to {network_name(w3.eth.chain_id)} (chainId {w3.eth.chain_id})")
        if not w3.eth.get_code(address):
            print("⚠️ Target has no contract code — likely an EOA (reads will be zero).")

    accessor = make_accessor(w3, address, args.block, dump)
    t0 = time.monotonic()

    try:
        snapshot = capture_snapshot(layout, accessor, strict=False)
        rows = [(name, summarize(entry.value)) for name, entry in snapshot.items()]
        results: Dict[str, object] = {
            name: to_plain(entry.value) for name, entry in snapshot.items() if entry.value is not OPAQUE_MAPPING
        }

        by_name: Dict[str, StorageVariable] = {v.name: v for v in layout}
        for name, keys in lookups:
            if name not in by_name:
                print(f"⚠️ --key: no storage variable named '{name}'"); continue
            value = decode_mapping_path(by_name[name], keys, accessor)
            path = name + "".join(f"[{k}]" for k in keys)
            rows.append((path, summarize(value)))
            results[path] = to_plain(value)
    except StorageDecodeError as e:
        print(f"❌ {e}"); sys.exit(2)
    except Exception as e:
        print(f"❌ Storage read failed: {e}"); sys.exit(2)

    print()
    print(render_table(rows))
    print()

    if args.out:
        tmp = args.out + ".tmp"
        with open(tmp, "w") as f:
            json.dump(results, f, indent=2)
        os.replace(tmp, args.out)
        print(f"📝 Structured output written to: {args.out}")

    print(f"🔎 {len(accessor.cached_slots)} slots read")
    print(f"⏱️ Elapsed: {time.monotonic() - t0:.2f}s")

if __name__ == "__main__":
    main()
