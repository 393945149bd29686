import pytest


def _titles(movies):
    return [r[0] for r in movies.rows[1:] if any(c != "" for c in r)]


# --- UPSERT ---
def test_upsert_inserts_then_updates_the_same_row(call, movies):
    first = call("UPSERT", idColumn="title", id="Heat", payload={"title": "Heat", "year": 1995})
    assert first == {"status": 201, "data": {"message": "Row inserted", "_id": 6}}

    second = call("UPSERT", idColumn="title", id="Heat", payload={"title": "Heat", "year": 1996, "rating": 8.3})
    assert second == {"status": 200, "data": {"message": "Row updated", "_id": 6}}
    assert _titles(movies).count("Heat") == 1
    assert movies.rows[5] == ["Heat", 1996, "", 8.3]


def test_upsert_takes_key_from_payload_when_id_is_absent(call, movies):
    result = call("UPSERT", idColumn="title", payload={"title": "Pulp Fiction", "year": 1994, "rating": 9.0})
    assert result["data"]["_id"] == 3
    assert movies.rows[2] == ["Pulp Fiction", 1994, "", 9.0]


def test_upsert_keeps_the_key_in_the_row(call, movies):
    call("UPSERT", idColumn="title", id="Alien", payload={"year": 1979})
    assert movies.rows[5] == ["Alien", 1979, "", ""]


def test_upsert_matches_numeric_keys_given_as_text(call, movies):
    result = call("UPSERT", idColumn="year", id="1994", payload={"year": 1994, "title": "Pulp Fiction (1994)"})
    assert result["status"] == 200
    assert result["data"]["_id"] == 3
    # full update: columns missing from the payload are cleared
    assert movies.rows[2] == ["Pulp Fiction (1994)", 1994, "", ""]


def test_upsert_text_key_with_leading_zeros_is_not_a_number(call, spreadsheet):
    codes = spreadsheet.add_sheet("codes", [["zip", "city"], ["007", "Bond"]])
    result = call("UPSERT", sheet="codes", idColumn="zip", id="7", payload={"zip": "7", "city": "Seven"})
    assert result == {"status": 201, "data": {"message": "Row inserted", "_id": 3}}
    assert codes.rows[1] == ["007", "Bond"]
    assert codes.rows[2] == ["7", "Seven"]


def test_upsert_partial_update_keeps_other_fields(call, movies):
    result = call("UPSERT", idColumn="title", id="Inception", payload={"rating": 8.9}, partialUpdate="true")
    assert result["status"] == 200
    assert movies.rows[4] == ["Inception", 2010, "Christopher Nolan", 8.9]


def test_upsert_adds_new_columns(call, movies):
    call("UPSERT", idColumn="title", id="Heat", payload={"title": "Heat", "studio": "Warner"})
    assert movies.rows[0][-1] == "studio"
    assert movies.rows[5] == ["Heat", "", "", "", "Warner"]


def test_upsert_unknown_id_column(call):
    result = call("UPSERT", idColumn="imdb", id="tt1", payload={"title": "Heat"})
    assert result["status"] == 400
    assert result["error"]["code"] == "id_column_not_found"


def test_upsert_without_key(call):
    result = call("UPSERT", idColumn="title", payload={"year": 1995})
    assert result["status"] == 400
    assert result["error"]["code"] == "id_missing"


# --- BATCH_UPSERT ---
NEW_MOVIES = [
    {"title": "Heat", "year": 1995},
    {"title": "Alien", "year": 1979},
    {"title": "Amadeus", "year": 1984},
]


def test_batch_upsert_inserts_then_updates(call, movies):
    first = call("BATCH_UPSERT", idColumn="title", payload=NEW_MOVIES)
    assert first == {"status": 200, "data": {"inserted": 3, "updated": 0, "skipped": 0}}
    assert _titles(movies)[-3:] == ["Heat", "Alien", "Amadeus"]

    changed = [dict(m, rating=8.0) for m in NEW_MOVIES]
    second = call("BATCH_UPSERT", idColumn="title", payload=changed)
    assert second["data"] == {"inserted": 0, "updated": 3, "skipped": 0}
    assert len(_titles(movies)) == 7
    assert [r[3] for r in movies.rows[5:8]] == [8.0, 8.0, 8.0]


def test_batch_upsert_partial_update(call, movies):
    result = call("BATCH_UPSERT", idColumn="title", partialUpdate=True, payload=[{"title": "Inception", "rating": 9.1}])
    assert result["data"]["updated"] == 1
    assert movies.rows[4] == ["Inception", 2010, "Christopher Nolan", 9.1]


def test_batch_upsert_skips_items_without_key(call, movies):
    result = call("BATCH_UPSERT", idColumn="title", payload=[{"title": "Heat"}, {"year": 2000}, "junk"])
    assert result["data"] == {"inserted": 1, "updated": 0, "skipped": 2}


def test_batch_upsert_repeated_key_keeps_last_payload(call, movies):
    result = call("BATCH_UPSERT", idColumn="title", payload=[{"title": "Heat", "year": 1995}, {"title": "Heat", "year": 1996}])
    assert result["data"]["inserted"] == 1
    assert movies.rows[5][:2] == ["Heat", 1996]


def test_batch_upsert_repeated_existing_key_updates_the_row_once(call, movies):
    result = call("BATCH_UPSERT", idColumn="title", payload=[
        {"title": "Inception", "rating": 8.0}, {"title": "Inception", "rating": 8.5},
    ])
    assert result["data"] == {"inserted": 0, "updated": 1, "skipped": 0}
    assert movies.rows[4] == ["Inception", "", "", 8.5]


def test_batch_upsert_matches_text_keys_exactly(call, spreadsheet):
    codes = spreadsheet.add_sheet("codes", [["zip", "city"], ["007", "Bond"]])
    result = call("BATCH_UPSERT", sheet="codes", idColumn="zip", payload=[{"zip": "007", "city": "London"}, {"zip": "7"}])
    assert result["data"] == {"inserted": 1, "updated": 1, "skipped": 0}
    assert codes.rows[1] == ["007", "London"]
    assert codes.rows[2] == ["7", ""]


def test_batch_upsert_requires_array(call):
    result = call("BATCH_UPSERT", idColumn="title", payload={"title": "Heat"})
    assert result["error"]["code"] == "payload_must_be_array"


def test_batch_upsert_unknown_id_column(call):
    result = call("BATCH_UPSERT", idColumn="imdb", payload=[])
    assert result["error"]["code"] == "id_column_not_found"


# --- FIND ---
def test_find_returns_latest_match_as_object(call):
    result = call("FIND", idColumn="director", id="Christopher Nolan")
    assert result["status"] == 200
    assert isinstance(result["data"], dict)
    assert result["data"]["_id"] == 5


def test_find_return_all_matches_as_text_flag(call):
    assert isinstance(call("FIND", idColumn="director", id="Christopher Nolan", returnAllMatches="false")["data"], dict)
    result = call("FIND", idColumn="director", id="Christopher Nolan", returnAllMatches="true")
    assert [r["_id"] for r in result["data"]] == [4, 5]


def test_find_numeric_key(call):
    assert call("FIND", idColumn="year", id="2008")["data"]["title"] == "The Dark Knight"


@pytest.mark.parametrize("key", ["7", "7.0", 7])
def test_find_does_not_match_text_key_numerically(call, spreadsheet, key):
    spreadsheet.add_sheet("codes", [["zip", "city"], ["007", "Bond"]])
    assert call("FIND", sheet="codes", idColumn="zip", id=key)["error"]["code"] == "no_matches_found"
    assert call("FIND", sheet="codes", idColumn="zip", id="007")["data"]["city"] == "Bond"


def test_find_single_match_with_return_all_is_a_list(call):
    result = call("FIND", idColumn="title", id="Pulp Fiction", returnAllMatches=True)
    assert [r["_id"] for r in result["data"]] == [3]


def test_find_rows_far_apart(call, movies):
    movies.rows.extend([["", "", "", ""]] * 150)
    movies.rows.append(["Tenet", 2020, "Christopher Nolan", 7.3])
    result = call("FIND", idColumn="director", id="Christopher Nolan", returnAllMatches=True)
    assert [r["_id"] for r in result["data"]] == [4, 5, 156]
    assert result["data"][-1]["title"] == "Tenet"


def test_find_no_matches(call):
    result = call("FIND", idColumn="title", id="Heat")
    assert result == {"status": 404, "error": {"code": "no_matches_found", "details": {}}}


def test_find_unknown_column(call):
    assert call("FIND", idColumn="imdb", id="x")["error"]["code"] == "id_column_not_found"


# --- BULK_DELETE / BATCH_UPDATE ---
@pytest.mark.parametrize("ids", [[2, 4], "2,4", "[2, 4]"])
def test_bulk_delete(call, ids):
    result = call("BULK_DELETE", ids=ids)
    assert result == {"status": 200, "data": {"deleted": 2}}
    assert [r["_id"] for r in call("GET")["data"]] == [3, 5]


def test_bulk_delete_rejects_header_row(call, movies):
    before = [list(r) for r in movies.rows]
    result = call("BULK_DELETE", ids=[3, 1])
    assert result["error"]["code"] == "row_index_invalid"
    assert movies.rows == before


def test_bulk_delete_requires_array(call):
    assert call("BULK_DELETE", ids=5)["error"]["code"] == "invalid_ids"


def test_batch_update(call, movies):
    result = call("BATCH_UPDATE", payload=[{"_id": 2, "rating": 9.3}, {"_id": 4, "year": 2009}, {"rating": 1}])
    assert result == {"status": 200, "data": {"updated": 2}}
    assert movies.rows[1][3] == 9.3
    assert movies.rows[3][1] == 2009


def test_batch_update_stamps_date_modified(call, spreadsheet):
    log = spreadsheet.get_sheet_by_name("log")
    log.rows.append(["01/01/2020 00:00:00", "old"])
    call("BATCH_UPDATE", sheet="log", payload=[{"_id": 2, "message": "new"}])
    assert log.rows[1][0] != "01/01/2020 00:00:00"
    assert log.rows[1][1] == "new"


def test_batch_update_validates_every_id_first(call, movies):
    result = call("BATCH_UPDATE", payload=[{"_id": 2, "rating": 1}, {"_id": 1, "rating": 1}])
    assert result["error"]["code"] == "row_index_invalid"
    assert movies.rows[1][3] == 9.2
