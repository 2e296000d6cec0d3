import datetime

import pytest

from sitesearch_sync.utils import (
    canonical_json,
    chunked,
    compact_empty,
    diff_keys,
    find_by_key,
    html_to_text,
    json_size,
    jsonify,
)


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})
    assert canonical_json({"foo": "bar"}) == '{"foo":"bar"}'


def test_json_size_counts_utf8_bytes():
    assert json_size({}) == 2
    assert json_size({"foo": "bar"}) == 13
    # "é" is two bytes once encoded
    assert json_size({"a": "é"}) == 10


def test_html_to_text_collapses_whitespace():
    assert html_to_text("<p>foo\n  <b>bar</b>\n</p>") == "foo bar"
    assert html_to_text(None) is None


def test_compact_empty_keeps_false_and_zero():
    data = {"a": None, "b": "", "c": [], "d": {}, "e": False, "f": 0, "g": "x"}
    assert compact_empty(data) == {"e": False, "f": 0, "g": "x"}


def test_jsonify_converts_dates_and_drops_opaque_objects():
    class Opaque:
        pass

    assert jsonify(datetime.date(2017, 7, 2)) == "2017-07-02"
    assert jsonify({"nested": [1, "two", None]}) == {"nested": [1, "two", None]}
    assert jsonify(Opaque()) is None


def test_find_by_key():
    items = [{"objectID": "foo"}, {"objectID": "bar", "title": "Bar"}]
    assert find_by_key(items, "objectID", "bar") == {"objectID": "bar", "title": "Bar"}
    assert find_by_key(items, "objectID", "baz") is None
    assert find_by_key(None, "objectID", "bar") is None


def test_diff_keys_only_compares_local_keys():
    local = {"foo": "bar", "same": 1}
    remote = {"foo": "baz", "same": 1, "remote_only": True}
    assert diff_keys(local, remote) == {"foo": "baz"}


def test_diff_keys_returns_none_when_identical():
    assert diff_keys({"foo": "bar"}, {"foo": "bar", "other": 1}) is None


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []
    with pytest.raises(ValueError):
        chunked([1], 0)
