"""
Tests for OrderedCollection: clamping, idempotent removal, atomic cross moves.
"""
import random
from dataclasses import dataclass

import pytest

from taskboard.errors import InvalidState, NotFound
from taskboard.ordering import OrderedCollection


@dataclass
class Item:
    id: str


def coll(*ids):
    return OrderedCollection([Item(i) for i in ids])


def test_insert_clamps_index():
    c = coll("a", "b")
    assert c.insert(Item("z"), 99) == 2
    assert c.insert(Item("y"), -5) == 0
    assert c.ids() == ["y", "a", "b", "z"]


def test_insert_rejects_duplicate_id():
    c = coll("a", "b")
    with pytest.raises(InvalidState):
        c.insert(Item("a"), 0)
    assert c.ids() == ["a", "b"]


def test_remove_is_idempotent():
    c = coll("a", "b", "c")
    assert c.remove("b").id == "b"
    assert c.remove("b") is None
    assert c.ids() == ["a", "c"]


def test_move_within_keeps_relative_order():
    c = coll("a", "b", "c", "d")
    c.move_within("a", 2)
    assert c.ids() == ["b", "c", "a", "d"]
    c.move_within("d", 0)
    assert c.ids() == ["d", "b", "c", "a"]


def test_move_within_unknown_id():
    with pytest.raises(NotFound):
        coll("a").move_within("x", 0)


def test_move_across():
    src, dst = coll("a", "b", "c"), coll("x", "y")
    at = OrderedCollection.move_across(src, dst, "b", 1)
    assert at == 1
    assert src.ids() == ["a", "c"]
    assert dst.ids() == ["x", "b", "y"]


def test_move_across_missing_leaves_both_untouched():
    src, dst = coll("a"), coll("x")
    with pytest.raises(NotFound):
        OrderedCollection.move_across(src, dst, "b", 0)
    assert src.ids() == ["a"] and dst.ids() == ["x"]


def test_move_across_conflict_leaves_both_untouched():
    src, dst = coll("a", "b"), coll("b", "x")
    with pytest.raises(InvalidState):
        OrderedCollection.move_across(src, dst, "b", 0)
    assert src.ids() == ["a", "b"] and dst.ids() == ["b", "x"]


def test_move_across_same_list_is_a_reorder():
    items = [Item("a"), Item("b"), Item("c")]
    OrderedCollection.move_across(OrderedCollection(items), OrderedCollection(items), "a", 5)
    assert [i.id for i in items] == ["b", "c", "a"]


def test_random_operations_keep_ids_unique_and_count_conserved():
    rng = random.Random(7)
    left, right = coll(*"abcdef"), coll(*"uvw")
    total = 9
    for _ in range(300):
        op = rng.choice(["within", "across", "back"])
        if op == "within" and len(left):
            left.move_within(rng.choice(left.ids()), rng.randint(-2, 10))
        elif op == "across" and len(left):
            OrderedCollection.move_across(left, right, rng.choice(left.ids()), rng.randint(0, 10))
        elif op == "back" and len(right):
            OrderedCollection.move_across(right, left, rng.choice(right.ids()), rng.randint(0, 10))
        ids = left.ids() + right.ids()
        assert len(ids) == len(set(ids)) == total
