"""Tests for shipstack.template.tree module."""

from __future__ import annotations

import datetime

import pytest

from shipstack.template.tree import ListNode, MapNode, ScalarNode, from_plain, to_plain


class TestMapNode:
    def test_equality_ignores_key_order(self) -> None:
        a = MapNode((("x", ScalarNode(1)), ("y", ScalarNode(2))))
        b = MapNode((("y", ScalarNode(2)), ("x", ScalarNode(1))))
        assert a == b

    def test_with_entry_keeps_position(self) -> None:
        node = MapNode((("a", ScalarNode(1)), ("b", ScalarNode(2))))
        updated = node.with_entry("a", ScalarNode(9))

        assert updated.keys() == ["a", "b"]
        assert updated.get("a") == ScalarNode(9)
        assert node.get("a") == ScalarNode(1)

    def test_with_entry_appends_new_key(self) -> None:
        assert MapNode().with_entry("k", ScalarNode("v")).keys() == ["k"]

    def test_get_map_defaults_to_empty(self) -> None:
        node = MapNode((("a", ScalarNode(1)),))
        assert node.get_map("a") == MapNode()
        assert node.get_map("missing") == MapNode()

    def test_without(self) -> None:
        node = MapNode((("a", ScalarNode(1)), ("b", ScalarNode(2))))
        assert node.without("a").keys() == ["b"]


class TestListNode:
    def test_edits_return_copies(self) -> None:
        node = ListNode((ScalarNode(1), ScalarNode(2)))

        assert node.inserted(0, ScalarNode(0)) == ListNode(
            (ScalarNode(0), ScalarNode(1), ScalarNode(2))
        )
        assert node.appended(ScalarNode(3)).get(2) == ScalarNode(3)
        assert node.with_item(1, ScalarNode(5)).get(1) == ScalarNode(5)
        assert node.without(0) == ListNode((ScalarNode(2),))
        assert len(node) == 2

    def test_get_out_of_range(self) -> None:
        assert ListNode().get(0) is None
        assert ListNode((ScalarNode(1),)).get(-1) is None


class TestScalarNode:
    def test_bool_is_not_int(self) -> None:
        assert ScalarNode(True) != ScalarNode(1)
        assert ScalarNode(0) != ScalarNode(False)
        assert ScalarNode(1) == ScalarNode(1.0)


class TestConversion:
    def test_round_trip(self) -> None:
        data = {"Resources": {"Q": {"Type": "AWS::SQS::Queue", "Properties": {"Tags": [1, True, None]}}}}
        assert to_plain(from_plain(data)) == data

    def test_dates_become_strings(self) -> None:
        assert from_plain(datetime.date(2010, 9, 9)) == ScalarNode("2010-09-09")

    def test_unsupported_value(self) -> None:
        with pytest.raises(TypeError, match="set"):
            from_plain({"x": {1, 2}})
