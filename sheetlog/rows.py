import json
import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from . import config
from .errors import RequestError
from .hosts import content_width, is_empty

logger = logging.getLogger(__name__)

DATE_MODIFIED = "Date Modified"
FIRST_DATA_ROW = 2
TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M:%S"
TRUE_STRINGS = ("true", "1", "yes", "y", "on")


# --- Parameter coercion ---
def as_int(value, name, default=None):
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise RequestError(400, f"invalid_{name}", {name: value})
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RequestError(400, f"invalid_{name}", {name: value})
    if not number.is_integer():
        raise RequestError(400, f"invalid_{name}", {name: value})
    return int(number)


def as_bool(value, default=False):
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def as_json(value, name):
    """Decode JSON text from query strings; structured values pass through."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            raise RequestError(400, f"invalid_{name}", {name: value, "message": f"{name} must be JSON"})
    return value


def key_string(value):
    """Text form of an id cell; whole floats lose their ".0" so 7 and 7.0 share a key.

    Keys match on this text only, so "007" and 7 stay distinct.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def same_key(cell, key):
    return not is_empty(cell) and key_string(cell) == key_string(key)


# --- Header / row mapping ---
def get_headers(sheet):
    last_column = sheet.get_last_column()
    if last_column < 1:
        return []
    headers = sheet.get_values(1, 1, 1, last_column)[0]
    return headers[:content_width(headers)]


def has_date_modified(headers):
    return len(headers) > 0 and headers[0] == DATE_MODIFIED


def timestamp():
    tz = timezone.utc if config.TIMEZONE.upper() == "UTC" else ZoneInfo(config.TIMEZONE)
    return datetime.now(tz).strftime(TIMESTAMP_FORMAT)


def cell_value(value):
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if value is None:
        return ""
    return value


def map_object_to_row(obj, headers):
    row = [cell_value(obj.get(header)) if not is_empty(header) else "" for header in headers]
    if has_date_modified(headers):
        row[0] = timestamp()
    return row


def map_row_to_object(row, row_id, headers):
    if all(is_empty(v) for v in row):
        return None
    result = {"_id": row_id} if row_id is not None else {}
    for i, header in enumerate(headers):
        if not is_empty(header):
            result[header] = row[i] if i < len(row) else ""
    return result


def add_new_columns_if_needed(sheet, objects):
    """Append a header for every key of ``objects`` the sheet does not have yet."""
    existing = get_headers(sheet)
    new_columns = []
    for obj in objects:
        for key in obj.keys():
            if key not in existing and key not in new_columns:
                new_columns.append(key)
    if new_columns:
        last_column = sheet.get_last_column()
        logger.info(f"Adding columns {new_columns} to sheet '{sheet.name}' after column {last_column}.")
        sheet.insert_columns_after(last_column, len(new_columns))
        sheet.set_values(1, last_column + 1, [new_columns])
    return new_columns


def update_row_fields(sheet, row_number, headers, data, stamp=True):
    """Write only the fields of ``data`` that name an existing column."""
    if stamp and has_date_modified(headers) and DATE_MODIFIED not in data:
        sheet.set_value(row_number, 1, timestamp())
    for key, value in data.items():
        if key in headers:
            sheet.set_value(row_number, headers.index(key) + 1, cell_value(value))


def find_row_by_id(sheet, id_column_index, key):
    """Row number of the first row whose id cell equals ``key`` or -1."""
    last_row = sheet.get_last_row()
    if last_row < FIRST_DATA_ROW:
        return -1
    values = sheet.get_values(FIRST_DATA_ROW, id_column_index, last_row - 1, 1)
    for i, row in enumerate(values):
        if same_key(row[0], key):
            return i + FIRST_DATA_ROW
    return -1
