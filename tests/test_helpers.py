import json

import pytest

from sheetlog import config
from sheetlog.errors import RequestError
from sheetlog.hosts import MemorySheet
from sheetlog.rows import (
    add_new_columns_if_needed, as_bool, as_int, find_row_by_id, key_string, map_object_to_row,
    map_row_to_object, same_key, timestamp,
)


@pytest.mark.parametrize("value, expected", [(None, 7), ("", 7), (3, 3), ("4", 4), (5.0, 5), ("6.0", 6)])
def test_as_int(value, expected):
    assert as_int(value, "limit", 7) == expected


@pytest.mark.parametrize("value", [True, "x", 2.5, [1]])
def test_as_int_rejects(value):
    with pytest.raises(RequestError) as excinfo:
        as_int(value, "limit")
    assert excinfo.value.code == "invalid_limit"
    assert excinfo.value.status == 400


@pytest.mark.parametrize("value, expected", [
    ("true", True), ("TRUE", True), ("1", True), ("false", False), ("0", False), (True, True), (None, False),
])
def test_as_bool(value, expected):
    assert as_bool(value) is expected


def test_keys_compare_across_types():
    assert key_string(7.0) == "7"
    assert key_string("abc") == "abc"
    assert same_key(1994, "1994")
    assert same_key(7.0, 7)
    assert not same_key("", "")
    assert not same_key("abc", "abd")
    assert not same_key("007", "7")
    assert not same_key(7, "7.0")
    assert key_string(True) == "true"


def test_map_object_to_row_stamps_first_column():
    row = map_object_to_row({"message": {"a": 1}, "Date Modified": "ignored"}, ["Date Modified", "message"])
    assert row[0] != "ignored"
    assert row[1] == json.dumps({"a": 1})


def test_map_row_to_object():
    assert map_row_to_object(["a", 1], 2, ["name", "n"]) == {"_id": 2, "name": "a", "n": 1}
    assert map_row_to_object(["a"], None, ["name", "n"]) == {"name": "a", "n": ""}
    assert map_row_to_object(["", ""], 2, ["name", "n"]) is None


def test_add_new_columns_keeps_first_seen_order():
    sheet = MemorySheet("s", [["name"]])
    assert add_new_columns_if_needed(sheet, [{"name": 1, "b": 2}, {"a": 3, "b": 4}]) == ["b", "a"]
    assert sheet.rows[0] == ["name", "b", "a"]


def test_find_row_by_id_returns_first_match():
    sheet = MemorySheet("s", [["id"], ["x"], ["y"], ["x"]])
    assert find_row_by_id(sheet, 1, "x") == 2
    assert find_row_by_id(sheet, 1, "z") == -1


def test_timestamp_in_configured_zone(monkeypatch):
    monkeypatch.setattr(config, "TIMEZONE", "UTC")
    assert len(timestamp()) == len("01/31/2024 23:59:59")


def test_load_users_precedence(monkeypatch):
    monkeypatch.delenv("SHEETLOG_GET_USERS", raising=False)
    monkeypatch.delenv("SHEETLOG_USERS", raising=False)
    assert config.load_users("SHEETLOG_GET_USERS") == config.ANONYMOUS_USERS

    monkeypatch.setenv("SHEETLOG_USERS", json.dumps([{"name": "shared", "key": "Sh4red!Key", "permissions": "*"}]))
    assert config.load_users("SHEETLOG_GET_USERS")[0]["name"] == "shared"

    monkeypatch.setenv("SHEETLOG_GET_USERS", json.dumps([{"name": "reader", "key": "R3ader!Pass", "permissions": "GET"}]))
    assert config.load_users("SHEETLOG_GET_USERS")[0]["name"] == "reader"

    monkeypatch.setenv("SHEETLOG_GET_USERS", json.dumps({"name": "reader"}))
    with pytest.raises(ValueError):
        config.load_users("SHEETLOG_GET_USERS")
