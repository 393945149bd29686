import threading

import pytest

from sheetlog.hosts import MemorySpreadsheet
from sheetlog.script import SheetlogScript

MOVIE_HEADERS = ["title", "year", "director", "rating"]
MOVIE_ROWS = [
    ["The Godfather", 1972, "Francis Ford Coppola", 9.2],
    ["Pulp Fiction", 1994, "Quentin Tarantino", 8.9],
    ["The Dark Knight", 2008, "Christopher Nolan", 9.0],
    ["Inception", 2010, "Christopher Nolan", 8.8],
]
GRID_ROWS = [
    ["", "", "", "", ""],
    ["", "a", "b", "", "x"],
    ["", "c", "d", "", ""],
    ["", "", "", "", ""],
    ["", "e", "", "", ""],
]


@pytest.fixture
def spreadsheet():
    return MemorySpreadsheet({
        "movies": [list(MOVIE_HEADERS)] + [list(r) for r in MOVIE_ROWS],
        "log": [["Date Modified", "message"]],
        "empty": [],
        "grid": [list(r) for r in GRID_ROWS],
    })


@pytest.fixture
def movies(spreadsheet):
    return spreadsheet.get_sheet_by_name("movies")


@pytest.fixture
def lock():
    return threading.Lock()


@pytest.fixture
def script(lock):
    """Anonymous wildcard script with its own lock."""
    return SheetlogScript(lock=lock, lock_timeout=0.05)


@pytest.fixture
def call(script, spreadsheet):
    def _call(method, sheet="movies", **params):
        return script.handle_request(spreadsheet, dict(params, method=method, sheet=sheet))
    return _call
