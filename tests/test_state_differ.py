"""Tests for state_differ: snapshot capture and before/after comparison."""

from __future__ import annotations

import logging

import pytest

from slot_accessor import SlotAccessor
from slot_decoder import OPAQUE_MAPPING, Record, Scalar, Sequence
from state_differ import Added, Changed, Deleted, SnapshotEntry, capture_snapshot, compare, scalars_equal
from storage_errors import MalformedLayout, UnsupportedType
from storage_fixtures import FakeFetcher, dyn_array, inplace, keccak_slot, mapping, var, word
from storage_layout import InplaceType, StorageVariable, parse_layout

BALANCE_LAYOUT = parse_layout([var("balance", inplace("uint256", 32))])

ITEMS_BASE = keccak_slot(word(1))

# solc describes every string and bytes state variable this way
STRING = {"encoding": "bytes", "label": "string", "numberOfBytes": "32"}

FULL_LAYOUT = parse_layout([
    var("owner", inplace("address", 20)),
    var("items", dyn_array(inplace("uint256", 32)), slot=1),
    var("balances", mapping(inplace("address", 20), inplace("uint256", 32)), slot=2),
    var("pos", inplace("struct C.Pos", 64, members=[
        var("x", inplace("uint256", 32)),
        var("y", inplace("uint256", 32), slot=1),
    ]), slot=3),
])


def snapshot(layout, slots):
    return capture_snapshot(layout, SlotAccessor(FakeFetcher(slots)))


def n(v: int) -> Scalar:
    return Scalar("int", str(v))


def entry(name: str, value) -> SnapshotEntry:
    return SnapshotEntry(StorageVariable(0, 0, name, InplaceType("uint256", 32)), value)


# ── Snapshot capture ─────────────────────────────────────────────────────


class TestCaptureSnapshot:
    def test_keeps_layout_order(self):
        snap = snapshot(FULL_LAYOUT, {})
        assert list(snap) == ["owner", "items", "balances", "pos"]
        assert snap["balances"].value is OPAQUE_MAPPING
        assert snap["items"].value == Sequence(())

    def test_is_read_only(self):
        snap = snapshot(BALANCE_LAYOUT, {0: word(1)})
        with pytest.raises(TypeError):
            snap["balance"] = snap["balance"]

    def test_strict_raises(self):
        layout = parse_layout([var("s", STRING, slot=1), var("x", inplace("uint8", 1))])
        with pytest.raises(UnsupportedType):
            snapshot(layout, {})

    def test_lenient_skips_bad_variable_only(self, caplog):
        layout = parse_layout([
            var("a", inplace("uint256", 32)),
            var("s", STRING, slot=1),
            var("b", inplace("uint256", 32), slot=2),
        ])
        fetcher = FakeFetcher({0: word(1), 2: word(2)})
        with caplog.at_level(logging.ERROR, logger="state_differ"):
            snap = capture_snapshot(layout, SlotAccessor(fetcher), strict=False)
        assert list(snap) == ["a", "b"]
        assert snap["a"].value == n(1)
        assert snap["b"].value == n(2)
        assert "Skipping storage variable s" in caplog.text

    def test_lenient_erc20_layout_from_solc(self, caplog):
        solc = {
            "storage": [
                {"label": "_balances", "offset": 0, "slot": "0", "type": "t_mapping(t_address,t_uint256)"},
                {"label": "_totalSupply", "offset": 0, "slot": "2", "type": "t_uint256"},
                {"label": "_name", "offset": 0, "slot": "3", "type": "t_string_storage"},
                {"label": "_symbol", "offset": 0, "slot": "4", "type": "t_string_storage"},
                {"label": "_decimals", "offset": 0, "slot": "5", "type": "t_uint8"},
            ],
            "types": {
                "t_address": {"encoding": "inplace", "label": "address", "numberOfBytes": "20"},
                "t_uint256": {"encoding": "inplace", "label": "uint256", "numberOfBytes": "32"},
                "t_uint8": {"encoding": "inplace", "label": "uint8", "numberOfBytes": "1"},
                "t_string_storage": STRING,
                "t_mapping(t_address,t_uint256)": {
                    "encoding": "mapping", "key": "t_address", "label": "mapping(address => uint256)",
                    "numberOfBytes": "32", "value": "t_uint256",
                },
            },
        }
        fetcher = FakeFetcher({2: word(10**24), 5: word(18)})
        with caplog.at_level(logging.ERROR, logger="state_differ"):
            snap = capture_snapshot(parse_layout(solc), SlotAccessor(fetcher), strict=False)
        assert list(snap) == ["_balances", "_totalSupply", "_decimals"]
        assert snap["_totalSupply"].value == n(10**24)
        assert snap["_decimals"].value == n(18)
        assert "Skipping storage variable _name" in caplog.text
        assert "Skipping storage variable _symbol" in caplog.text
        assert fetcher.calls == [2, 5]

    def test_lenient_skips_malformed_entry(self):
        layout = parse_layout([
            var("a", inplace("uint256", 32)),
            var("bad", inplace("uint256", 32), offset=16, slot=1),
        ])
        snap = capture_snapshot(layout, SlotAccessor(FakeFetcher({0: word(1)})), strict=False)
        assert list(snap) == ["a"]

    def test_strict_raises_deferred_layout_error(self):
        layout = parse_layout([var("bad", inplace("uint256", 32), offset=16)])
        with pytest.raises(MalformedLayout) as e:
            snapshot(layout, {})
        assert e.value.field == "offset"

    def test_duplicate_names(self):
        layout = parse_layout([var("a", inplace("uint8", 1)), var("a", inplace("uint8", 1), slot=1)])
        with pytest.raises(MalformedLayout):
            snapshot(layout, {})

    def test_provider_error_propagates(self):
        class Broken:
            def fetch(self, slot):
                raise TimeoutError("slow node")

        with pytest.raises(TimeoutError):
            capture_snapshot(BALANCE_LAYOUT, SlotAccessor(Broken()), strict=False)


# ── compare ──────────────────────────────────────────────────────────────


class TestCompare:
    def test_balance_changed(self):
        before = snapshot(BALANCE_LAYOUT, {0: word(1)})
        after = snapshot(BALANCE_LAYOUT, {0: word(5)})
        changes = compare(before, after)
        assert changes == [Changed("balance", n(1), n(5))]
        assert str(changes[0].before) == "1"
        assert str(changes[0].after) == "5"

    def test_same_snapshot_has_no_changes(self):
        slots = {0: word(0xABC), 1: word(2), ITEMS_BASE: word(1), ITEMS_BASE + 1: word(2), 3: word(9)}
        snap = snapshot(FULL_LAYOUT, slots)
        assert compare(snap, snap) == []
        assert compare(snap, snapshot(FULL_LAYOUT, slots)) == []

    def test_array_element_changes(self):
        before = snapshot(FULL_LAYOUT, {1: word(2), ITEMS_BASE: word(1), ITEMS_BASE + 1: word(2)})
        after = snapshot(FULL_LAYOUT, {
            1: word(3), ITEMS_BASE: word(1), ITEMS_BASE + 1: word(7), ITEMS_BASE + 2: word(8),
        })
        assert compare(before, after) == [
            Changed("items[1]", n(2), n(7)),
            Added("items[2]", n(8)),
        ]

    def test_array_shrinks(self):
        before = snapshot(FULL_LAYOUT, {1: word(2), ITEMS_BASE: word(1), ITEMS_BASE + 1: word(2)})
        after = snapshot(FULL_LAYOUT, {1: word(1), ITEMS_BASE: word(1)})
        assert compare(before, after) == [Deleted("items[1]", n(2))]

    def test_struct_member_change(self):
        before = snapshot(FULL_LAYOUT, {3: word(1), 4: word(2)})
        after = snapshot(FULL_LAYOUT, {3: word(1), 4: word(3)})
        assert compare(before, after) == [Changed("pos.y", n(2), n(3))]

    def test_mappings_are_skipped(self):
        before = {"m": entry("m", OPAQUE_MAPPING)}
        assert compare(before, dict(before)) == []

    def test_deleted_and_added_variables(self):
        before = {"a": entry("a", n(1)), "gone": entry("gone", n(2))}
        after = {
            "a": entry("a", n(1)),
            "list": entry("list", Sequence((n(4), n(5)))),
            "map": entry("map", OPAQUE_MAPPING),
            "empty": entry("empty", Sequence(())),
        }
        assert compare(before, after) == [
            Deleted("gone", n(2)),
            Added("list[0]", n(4)),
            Added("list[1]", n(5)),
            Added("empty", Sequence(())),
        ]

    def test_numbers_compare_by_value(self):
        before = {"x": entry("x", Scalar("int", "007"))}
        after = {"x": entry("x", Scalar("int", "7"))}
        assert compare(before, after) == []

    def test_shape_mismatch_is_a_change(self):
        before = {"x": entry("x", n(1))}
        after = {"x": entry("x", Sequence((n(1),)))}
        assert compare(before, after) == [Changed("x", n(1), Sequence((n(1),)))]

    def test_record_member_presence(self):
        before = {"r": entry("r", Record((("a", n(1)), ("b", n(2)))))}
        after = {"r": entry("r", Record((("a", n(1)), ("c", n(3)))))}
        assert compare(before, after) == [Deleted("r.b", n(2)), Added("r.c", n(3))]

    def test_order_follows_layout(self):
        before = {k: entry(k, n(0)) for k in ("z", "a", "m")}
        after = {k: entry(k, n(1)) for k in ("z", "a", "m")}
        assert [c.name for c in compare(before, after)] == ["z", "a", "m"]

    def test_kinds(self):
        assert Added("a", n(1)).kind == "added"
        assert Changed("a", n(1), n(2)).kind == "changed"
        assert Deleted("a", n(1)).kind == "deleted"

    def test_injected_logger(self, caplog):
        logger = logging.getLogger("tests.differ")
        with caplog.at_level(logging.DEBUG, logger="tests.differ"):
            compare({"x": entry("x", n(1))}, {"x": entry("x", n(2))}, logger=logger)
        assert "[changed] x" in caplog.text


class TestScalarsEqual:
    def test_address_case_insensitive(self):
        a = Scalar("address", "0xABCDEF0000000000000000000000000000000001")
        b = Scalar("address", "0xabcdef0000000000000000000000000000000001")
        assert scalars_equal(a, b)

    def test_kind_mismatch(self):
        assert not scalars_equal(Scalar("int", "1"), Scalar("bool", True))
