"""Spreadsheet hosts.

Handlers drive a sheet through a small set of range primitives (1-based row
and column numbers, like the spreadsheet UI):

    get_last_row(), get_last_column()
    get_values(row, col, num_rows, num_cols)      -> padded 2D list
    get_formulas(row, col, num_rows, num_cols)    -> "" where a cell has none
    get_formatting(row, col, num_rows, num_cols, extended=False)
    set_values(row, col, values), set_value(row, col, value)
    append_rows(rows), clear_rows(row_numbers)
    insert_columns_after(col, count), delete_column(col)

``GoogleSpreadsheet`` maps them onto the Sheets API v4; ``MemorySpreadsheet``
keeps the grid in process for local runs and tests.

A ``GoogleSheet`` reads its values once and serves later reads from that copy,
applying its own writes to it. ``GoogleSpreadsheet.connect`` builds fresh sheet
objects for every request, so the copy never outlives one request.
"""
import csv
import io
import logging

from . import config
from .google_api import (
    api_batch_clear_values, api_batch_update, api_get_spreadsheet_metadata, api_get_values,
    api_update_values, build_append_dimension_request, build_delete_dimension_request,
    build_insert_dimension_request, dimension_range, fetch_csv_export, get_access_token,
    get_sheets_service,
)

logger = logging.getLogger(__name__)

BASIC_FORMATS = ("backgrounds", "fontColors", "numberFormats")
EXTENDED_FORMATS = ("fontFamilies", "fontSizes", "fontStyles", "horizontalAlignments", "verticalAlignments", "wraps")
FORMAT_DEFAULTS = {
    "backgrounds": "#ffffff", "fontColors": "#000000", "numberFormats": "General",
    "fontFamilies": "Arial", "fontSizes": 10, "fontStyles": "normal",
    "horizontalAlignments": "general", "verticalAlignments": "bottom", "wraps": False,
}


def is_empty(value):
    return value == "" or value is None


def column_letter(index):
    letters = ""
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def column_index(letters):
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord('A') + 1)
    return index


def quote_sheet_name(name):
    return "'" + name.replace("'", "''") + "'"


def content_width(row):
    for i in range(len(row) - 1, -1, -1):
        if not is_empty(row[i]):
            return i + 1
    return 0


def pad_grid(values, num_rows, num_cols, fill=""):
    grid = []
    for r in range(num_rows):
        row = list(values[r]) if r < len(values) else []
        row = row[:num_cols] + [fill] * (num_cols - len(row))
        grid.append(row)
    return grid


def _format_names(extended):
    return BASIC_FORMATS + EXTENDED_FORMATS if extended else BASIC_FORMATS


# --- Grid helpers (rows is a list of row lists, ragged) ---
def grid_last_row(rows):
    for i in range(len(rows) - 1, -1, -1):
        if content_width(rows[i]):
            return i + 1
    return 0


def grid_last_column(rows):
    return max((content_width(r) for r in rows), default=0)


def grid_window(rows, row, col, num_rows, num_cols):
    if num_rows <= 0 or num_cols <= 0:
        return []
    window = [r[col - 1:col - 1 + num_cols] for r in rows[row - 1:row - 1 + num_rows]]
    return pad_grid(window, num_rows, num_cols)


def grid_write(rows, row, col, values):
    for r_offset, values_row in enumerate(values):
        while len(rows) < row + r_offset:
            rows.append([])
        target = rows[row + r_offset - 1]
        end = col + len(values_row) - 1
        if len(target) < end:
            target.extend([""] * (end - len(target)))
        for c_offset, value in enumerate(values_row):
            target[col + c_offset - 1] = "" if value is None else value


def grid_clear(rows, row_numbers):
    for r in row_numbers:
        if 1 <= r <= len(rows):
            rows[r - 1] = [""] * len(rows[r - 1])


def grid_insert_columns(rows, col, count):
    for row in rows:
        if len(row) > col:
            row[col:col] = [""] * count


def grid_delete_column(rows, col):
    for row in rows:
        if len(row) >= col:
            del row[col - 1]


# --- Google Sheets host ---
def _color_hex(color):
    if not color:
        return None
    channels = [int(round(color.get(c, 0) * 255)) for c in ("red", "green", "blue")]
    return "#" + "".join(f"{c:02x}" for c in channels)


def _cell_format(cell):
    fmt = (cell or {}).get("effectiveFormat", {})
    text = fmt.get("textFormat", {})
    style = "italic" if text.get("italic") else "normal"
    return {
        "backgrounds": _color_hex(fmt.get("backgroundColor")) or FORMAT_DEFAULTS["backgrounds"],
        "fontColors": _color_hex(text.get("foregroundColor")) or FORMAT_DEFAULTS["fontColors"],
        "numberFormats": fmt.get("numberFormat", {}).get("pattern") or FORMAT_DEFAULTS["numberFormats"],
        "fontFamilies": text.get("fontFamily") or FORMAT_DEFAULTS["fontFamilies"],
        "fontSizes": text.get("fontSize") or FORMAT_DEFAULTS["fontSizes"],
        "fontStyles": style,
        "horizontalAlignments": (fmt.get("horizontalAlignment") or "general").lower(),
        "verticalAlignments": (fmt.get("verticalAlignment") or "bottom").lower(),
        "wraps": fmt.get("wrapStrategy") == "WRAP",
    }


class GoogleSheet:
    def __init__(self, spreadsheet, properties):
        self.spreadsheet = spreadsheet
        self.name = properties["title"]
        self.sheet_id = properties.get("sheetId", 0)
        self.index = properties.get("index", 0)
        self.hidden = properties.get("hidden", False)
        grid = properties.get("gridProperties", {})
        self.row_count = grid.get("rowCount", 1000)
        self.column_count = grid.get("columnCount", 26)
        self._rows = None

    @property
    def _service(self):
        return self.spreadsheet.service

    @property
    def _spreadsheet_id(self):
        return self.spreadsheet.id

    def _a1(self, row, col, num_rows=1, num_cols=1):
        return (f"{quote_sheet_name(self.name)}!{column_letter(col)}{row}:"
                f"{column_letter(col + num_cols - 1)}{row + num_rows - 1}")

    def _load_rows(self):
        # One values read per sheet object; this object's own writes are applied to it.
        if self._rows is None:
            result = api_get_values(self._service, self._spreadsheet_id, quote_sheet_name(self.name))
            self._rows = [list(r) for r in result.get("values", [])]
            logger.info(f"Loaded {len(self._rows)} rows of sheet '{self.name}'.")
        return self._rows

    def get_last_row(self):
        return grid_last_row(self._load_rows())

    def get_last_column(self):
        return grid_last_column(self._load_rows())

    def get_values(self, row, col, num_rows, num_cols):
        return grid_window(self._load_rows(), row, col, num_rows, num_cols)

    def get_formulas(self, row, col, num_rows, num_cols):
        if num_rows <= 0 or num_cols <= 0:
            return []
        result = api_get_values(self._service, self._spreadsheet_id, self._a1(row, col, num_rows, num_cols),
                                value_render_option="FORMULA")
        grid = pad_grid(result.get("values", []), num_rows, num_cols)
        return [[v if isinstance(v, str) and v.startswith("=") else "" for v in r] for r in grid]

    def get_formatting(self, row, col, num_rows, num_cols, extended=False):
        names = _format_names(extended)
        if num_rows <= 0 or num_cols <= 0:
            return {name: [] for name in names}
        result = api_get_spreadsheet_metadata(
            self._service, self._spreadsheet_id, fields="sheets.data.rowData.values.effectiveFormat",
            ranges=[self._a1(row, col, num_rows, num_cols)], include_grid_data=True,
        )
        sheets = result.get("sheets") or [{}]
        data = (sheets[0].get("data") or [{}])[0]
        row_data = data.get("rowData", [])
        formatting = {name: [] for name in names}
        for r in range(num_rows):
            cells = row_data[r].get("values", []) if r < len(row_data) else []
            formats = [_cell_format(cells[c] if c < len(cells) else None) for c in range(num_cols)]
            for name in names:
                formatting[name].append([f[name] for f in formats])
        return formatting

    def _ensure_grid(self, last_row, last_col):
        requests_list = []
        if last_row > self.row_count:
            requests_list.append(build_append_dimension_request(self.sheet_id, "ROWS", last_row - self.row_count))
        if last_col > self.column_count:
            requests_list.append(build_append_dimension_request(self.sheet_id, "COLUMNS", last_col - self.column_count))
        if requests_list:
            api_batch_update(self._service, self._spreadsheet_id, requests_list)
            self.row_count = max(self.row_count, last_row)
            self.column_count = max(self.column_count, last_col)

    def set_values(self, row, col, values):
        if not values:
            return
        num_cols = max(len(r) for r in values)
        self._ensure_grid(row + len(values) - 1, col + num_cols - 1)
        api_update_values(self._service, self._spreadsheet_id, self._a1(row, col, len(values), num_cols),
                          [list(r) for r in values])
        if self._rows is not None:
            grid_write(self._rows, row, col, values)

    def set_value(self, row, col, value):
        self.set_values(row, col, [[value]])

    def append_rows(self, rows):
        if rows:
            self.set_values(self.get_last_row() + 1, 1, rows)

    def clear_rows(self, row_numbers):
        if not row_numbers:
            return
        q = quote_sheet_name(self.name)
        api_batch_clear_values(self._service, self._spreadsheet_id, [f"{q}!{r}:{r}" for r in row_numbers])
        if self._rows is not None:
            grid_clear(self._rows, row_numbers)

    def insert_columns_after(self, col, count):
        api_batch_update(self._service, self._spreadsheet_id, [
            build_insert_dimension_request(dimension_range(self.sheet_id, "COLUMNS", col, col + count), inherit_from_before=col > 0)
        ])
        self.column_count += count
        if self._rows is not None:
            grid_insert_columns(self._rows, col, count)

    def delete_column(self, col):
        api_batch_update(self._service, self._spreadsheet_id, [
            build_delete_dimension_request(dimension_range(self.sheet_id, "COLUMNS", col - 1, col))
        ])
        self.column_count -= 1
        if self._rows is not None:
            grid_delete_column(self._rows, col)


class GoogleSpreadsheet:
    def __init__(self, service, spreadsheet_id, access_token=None):
        self.service = service
        self.id = spreadsheet_id
        self.access_token = access_token
        self._sheets = None

    @classmethod
    def connect(cls, spreadsheet_id=None, refresh_token=None):
        spreadsheet_id = spreadsheet_id or config.SPREADSHEET_ID
        if not spreadsheet_id:
            raise ValueError("SHEETLOG_SPREADSHEET_ID not configured.")
        access_token = get_access_token(refresh_token)
        return cls(get_sheets_service(access_token), spreadsheet_id, access_token=access_token)

    def get_sheets(self):
        if self._sheets is None:
            metadata = api_get_spreadsheet_metadata(self.service, self.id)
            self._sheets = [GoogleSheet(self, s["properties"]) for s in metadata.get("sheets", [])]
        return self._sheets

    def get_sheet_by_name(self, name):
        name = (name or "").lower()
        for sheet in self.get_sheets():
            if sheet.name.lower() == name:
                return sheet
        return None

    def export_csv(self, sheet):
        return fetch_csv_export(self.access_token, self.id, sheet.sheet_id)


# --- In-process host ---
class MemorySheet:
    def __init__(self, name, rows=None, sheet_id=0, index=0, hidden=False):
        self.name = name
        self.sheet_id = sheet_id
        self.index = index
        self.hidden = hidden
        self.rows = [list(r) for r in rows or []]

    def get_last_row(self):
        return grid_last_row(self.rows)

    def get_last_column(self):
        return grid_last_column(self.rows)

    def get_values(self, row, col, num_rows, num_cols):
        return grid_window(self.rows, row, col, num_rows, num_cols)

    def get_formulas(self, row, col, num_rows, num_cols):
        return [[v if isinstance(v, str) and v.startswith("=") else "" for v in r]
                for r in self.get_values(row, col, num_rows, num_cols)]

    def get_formatting(self, row, col, num_rows, num_cols, extended=False):
        return {name: [[FORMAT_DEFAULTS[name]] * num_cols for _ in range(num_rows)]
                for name in _format_names(extended)}

    def set_values(self, row, col, values):
        grid_write(self.rows, row, col, values)

    def set_value(self, row, col, value):
        self.set_values(row, col, [[value]])

    def append_rows(self, rows):
        if rows:
            self.set_values(self.get_last_row() + 1, 1, rows)

    def clear_rows(self, row_numbers):
        grid_clear(self.rows, row_numbers)

    def insert_columns_after(self, col, count):
        grid_insert_columns(self.rows, col, count)

    def delete_column(self, col):
        grid_delete_column(self.rows, col)


class MemorySpreadsheet:
    def __init__(self, sheets=None, spreadsheet_id="local"):
        self.id = spreadsheet_id
        self._sheets = []
        for name, rows in (sheets or {}).items():
            self.add_sheet(name, rows)

    @classmethod
    def from_names(cls, names):
        return cls({name: [] for name in names})

    def add_sheet(self, name, rows=None, hidden=False):
        sheet = MemorySheet(name, rows, sheet_id=len(self._sheets), index=len(self._sheets), hidden=hidden)
        self._sheets.append(sheet)
        return sheet

    def get_sheets(self):
        return list(self._sheets)

    def get_sheet_by_name(self, name):
        name = (name or "").lower()
        for sheet in self._sheets:
            if sheet.name.lower() == name:
                return sheet
        return None

    def export_csv(self, sheet):
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for row in sheet.get_values(1, 1, sheet.get_last_row(), sheet.get_last_column()):
            writer.writerow(row)
        return buffer.getvalue()
