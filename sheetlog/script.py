import csv
import io
import logging
import threading
import time

import requests
from googleapiclient.errors import HttpError

from . import config
from .errors import CsvExportError, RequestError
from .google_api import EDIT_URL, EXPORT_URL, _http_error_content
from .hosts import is_empty
from .permissions import UserRegistry
from .ranges import find_data_block, get_all_cells, get_columns, get_range, get_rows
from .rows import (
    DATE_MODIFIED, FIRST_DATA_ROW, add_new_columns_if_needed, as_bool, as_int, as_json, cell_value,
    find_row_by_id, get_headers, has_date_modified, key_string, map_object_to_row, map_row_to_object,
    same_key, timestamp, update_row_fields,
)

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset([
    "POST", "PUT", "DELETE", "UPSERT", "BATCH_UPSERT", "DYNAMIC_POST", "ADD_COLUMN", "EDIT_COLUMN",
    "REMOVE_COLUMN", "BULK_DELETE", "BATCH_UPDATE", "RANGE_UPDATE",
])
ROW_ADDRESSED_METHODS = frozenset(["GET", "PUT", "DELETE"])
SPREADSHEET_METHODS = frozenset(["GET_SHEETS"])
AGGREGATE_OPERATIONS = ("sum", "avg", "min", "max", "count")
FIND_BATCH_SPAN = 100
WEAK_KEY_MESSAGE = (
    "Authentication key should be at least 8 characters long and contain at least one lower case, "
    "upper case, number and special character. Update your password or mark it as UNSAFE."
)

# One lock per process: every write serializes against the backing spreadsheet.
SCRIPT_LOCK = threading.Lock()


def envelope(status, data=None, **extras):
    result = {"status": status, "data": data}
    result.update(extras)
    return result


def error_envelope(status, code, details=None):
    return {"status": status, "error": {"code": code, "details": details or {}}}


def _row_number(value):
    try:
        row_number = as_int(value, "id")
    except RequestError:
        raise RequestError(400, "row_index_invalid", {"_id": value})
    if row_number is None or row_number < FIRST_DATA_ROW:
        raise RequestError(400, "row_index_invalid", {"_id": value})
    return row_number


def _row_id(params, required=False):
    value = params.get("id")
    if value is None or value == "":
        if required:
            raise RequestError(400, "row_id_missing", {})
        return None
    return _row_number(value)


def _object_payload(params, allow_list=False):
    payload = as_json(params.get("payload"), "payload")
    if payload is None:
        raise RequestError(400, "payload_missing", {})
    items = payload if allow_list and isinstance(payload, list) else [payload]
    if not all(isinstance(item, dict) for item in items):
        raise RequestError(400, "invalid_payload", {"message": "payload must be an object" + (" or a list of objects" if allow_list else "")})
    return items if allow_list else payload


def _list_payload(params):
    payload = as_json(params.get("payload"), "payload")
    if not isinstance(payload, list):
        raise RequestError(400, "payload_must_be_array", {})
    return payload


class SheetlogScript:
    """Request router for one endpoint: permission gate, write lock and handlers."""

    def __init__(self, users=None, lock=None, lock_timeout=None):
        self.registry = UserRegistry(config.ANONYMOUS_USERS if users is None else users)
        self.lock = lock or SCRIPT_LOCK
        self.lock_timeout = config.LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.handlers = {
            "GET": self.handle_get,
            "GET_LAST": self.handle_get_last_rows,
            "POST": self.handle_post,
            "UPSERT": self.handle_upsert,
            "BATCH_UPSERT": self.handle_batch_upsert,
            "DYNAMIC_POST": self.handle_dynamic_post,
            "PUT": self.handle_put,
            "DELETE": self.handle_delete,
            "ADD_COLUMN": self.handle_add_column,
            "EDIT_COLUMN": self.handle_edit_column,
            "REMOVE_COLUMN": self.handle_remove_column,
            "FIND": self.handle_find,
            "BULK_DELETE": self.handle_bulk_delete,
            "PAGINATED_GET": self.handle_paginated_get,
            "EXPORT": self.handle_export,
            "AGGREGATE": self.handle_aggregate,
            "BATCH_UPDATE": self.handle_batch_update,
            "GET_ROWS": self.handle_get_rows,
            "GET_COLUMNS": self.handle_get_columns,
            "GET_ALL_CELLS": self.handle_get_all_cells,
            "RANGE_UPDATE": self.handle_range_update,
            "GET_RANGE": self.handle_get_range,
            "GET_DATA_BLOCK": self.handle_get_data_block,
        }

    @property
    def users(self):
        return self.registry.users

    def add_user(self, name, key, permissions):
        return self.registry.add_user(name, key, permissions)

    # --- Main Request Handler ---
    def handle_request(self, spreadsheet, params):
        """Run one request and return its envelope.

        ``spreadsheet`` is a host spreadsheet or a zero-argument callable that
        opens one; it is only opened once the caller is authorized.
        """
        params = params or {}
        method = str(params.get("method") or "GET").upper()
        sheet_name = str(params.get("sheet") or "")
        is_write = method in WRITE_METHODS
        start_time = time.time()

        if is_write and not self.lock.acquire(timeout=self.lock_timeout):
            logger.warning(f"REQUEST {method} sheet='{sheet_name}': could not obtain lock after {self.lock_timeout}s.")
            return error_envelope(503, "server_busy", {"message": f"Could not obtain lock after {self.lock_timeout:g} seconds."})
        try:
            result = self._dispatch(spreadsheet, method, sheet_name, params)
        except RequestError as e:
            logger.warning(f"REQUEST {method} sheet='{sheet_name}': rejected with {e.code} {e.details}")
            result = error_envelope(e.status, e.code, e.details)
        except HttpError as e:
            host_status = e.resp.status if hasattr(e, 'resp') else None
            logger.error(f"REQUEST {method} sheet='{sheet_name}': Google API HttpError: {_http_error_content(e)}", exc_info=True)
            result = error_envelope(502, "host_error", {"message": _http_error_content(e), "hostStatus": host_status})
        except Exception as e:
            logger.critical(f"REQUEST {method} sheet='{sheet_name}': Unhandled exception: {str(e)}", exc_info=True)
            result = error_envelope(500, "internal_error", {"message": str(e)})
        finally:
            if is_write:
                self.lock.release()
        logger.info(f"REQUEST {method} sheet='{sheet_name}': status {result.get('status')} (Total time: {time.time() - start_time:.2f}s).")
        return result

    def _dispatch(self, spreadsheet, method, sheet_name, params):
        key = str(params.get("key") or "")

        if not self.registry.has_access(key, sheet_name, method):
            return error_envelope(401, "unauthorized", {"sheet": sheet_name, "method": method})
        if not self.registry.is_strong_key(key):
            return error_envelope(401, "weak_key", {"message": WEAK_KEY_MESSAGE})

        if callable(spreadsheet):
            spreadsheet = spreadsheet()
        if method in SPREADSHEET_METHODS:
            return self.handle_get_sheets(spreadsheet)

        sheet = spreadsheet.get_sheet_by_name(sheet_name)
        if sheet is None:
            return error_envelope(404, "sheet_not_found", {"sheet": sheet_name})
        if method in ROW_ADDRESSED_METHODS:
            _row_id(params)

        if method == "GET_CSV":
            return self.handle_get_csv(spreadsheet, sheet)
        handler = self.handlers.get(method)
        if handler is None:
            return error_envelope(404, "unknown_method", {"method": method})
        return handler(sheet, params)

    # --- Row reads ---
    def handle_get(self, sheet, params):
        row_id = _row_id(params)
        if row_id is not None:
            return self.handle_get_single_row(sheet, row_id)
        return self.handle_get_multiple_rows(sheet, params)

    def handle_get_single_row(self, sheet, row_id):
        if row_id > sheet.get_last_row():
            return error_envelope(404, "row_not_found", {"_id": row_id})
        headers = get_headers(sheet)
        row = sheet.get_values(row_id, 1, 1, sheet.get_last_column())[0]
        result = map_row_to_object(row, row_id, headers)
        if result is None:
            return error_envelope(404, "row_not_found", {"_id": row_id})
        return envelope(200, result)

    def handle_get_multiple_rows(self, sheet, params):
        headers = get_headers(sheet)
        last_column = sheet.get_last_column()
        last_row = sheet.get_last_row()
        total = max(last_row - FIRST_DATA_ROW + 1, 0)
        limit = as_int(params.get("limit"), "limit", total)
        if limit < 0:
            raise RequestError(400, "invalid_limit", {"limit": limit})
        order = params.get("order")
        is_asc = not (isinstance(order, str) and order.lower() == "desc")

        first_in_page = FIRST_DATA_ROW if is_asc else last_row - limit + 1
        start_id = as_int(params.get("start_id"), "start_id")
        if start_id is not None:
            if start_id < FIRST_DATA_ROW or start_id > last_row:
                return error_envelope(404, "start_id_out_of_range", {"start_id": start_id})
            first_in_page = start_id - (0 if is_asc else limit - 1)

        last_in_page = min(first_in_page + limit - 1, last_row)
        first_in_page = max(first_in_page, FIRST_DATA_ROW)
        if first_in_page > last_in_page:
            return envelope(200, [])

        values = sheet.get_values(first_in_page, 1, last_in_page - first_in_page + 1, last_column)
        next_id = last_in_page + 1 if is_asc else first_in_page - 1
        if next_id < FIRST_DATA_ROW or next_id > last_row:
            next_id = None

        if as_bool(params.get("raw")):
            if not is_asc:
                values.reverse()
            return envelope(200, {"headers": headers, "values": values, "next": next_id})

        rows = [map_row_to_object(row, first_in_page + i, headers) for i, row in enumerate(values)]
        if not is_asc:
            rows.reverse()
        return envelope(200, [r for r in rows if r], next=next_id)

    def handle_get_last_rows(self, sheet, params):
        limit = as_int(params.get("limit"), "limit", 10)
        if limit < 0:
            raise RequestError(400, "invalid_limit", {"limit": limit})
        raw = as_bool(params.get("raw"))
        last_row = sheet.get_last_row()
        headers = get_headers(sheet)

        if last_row < FIRST_DATA_ROW:
            return envelope(200, {"headers": headers, "values": []} if raw else [])

        # Never reach above the first data row.
        start_row = max(FIRST_DATA_ROW, last_row - limit + 1)
        values = sheet.get_values(start_row, 1, last_row - start_row + 1, sheet.get_last_column())
        total = last_row - 1
        if raw:
            return envelope(200, {"headers": headers, "values": values, "startRow": start_row, "endRow": last_row, "total": total})
        rows = [map_row_to_object(row, start_row + i, headers) for i, row in enumerate(values)]
        return envelope(200, [r for r in rows if r], startRow=start_row, endRow=last_row, total=total)

    # --- Row writes ---
    def handle_post(self, sheet, params):
        items = _object_payload(params, allow_list=True)
        headers = get_headers(sheet)
        if not headers:
            raise RequestError(400, "headers_missing", {"message": "Sheet has no header row; use DYNAMIC_POST to create columns."})
        sheet.append_rows([map_object_to_row(item, headers) for item in items])
        return envelope(201)

    def handle_dynamic_post(self, sheet, params):
        items = _object_payload(params, allow_list=True)
        add_new_columns_if_needed(sheet, items)
        headers = get_headers(sheet)
        if headers:
            sheet.append_rows([map_object_to_row(item, headers) for item in items])
        return envelope(201)

    def handle_upsert(self, sheet, params):
        id_column = str(params.get("idColumn") or "")
        payload = _object_payload(params)
        key = params.get("id")
        if is_empty(key):
            key = payload.get(id_column)
        if is_empty(key):
            raise RequestError(400, "id_missing", {"idColumn": id_column})
        partial_update = as_bool(params.get("partialUpdate"))

        if id_column not in get_headers(sheet) and id_column not in payload:
            return error_envelope(400, "id_column_not_found", {"idColumn": id_column})
        row_object = dict(payload)
        row_object.setdefault(id_column, key)
        add_new_columns_if_needed(sheet, [row_object])
        headers = get_headers(sheet)

        found_row = find_row_by_id(sheet, headers.index(id_column) + 1, key)
        if found_row != -1:
            if partial_update:
                update_row_fields(sheet, found_row, headers, payload)
            else:
                sheet.set_values(found_row, 1, [map_object_to_row(row_object, headers)])
            return envelope(200, {"message": "Row updated", "_id": found_row})

        new_row = sheet.get_last_row() + 1
        sheet.append_rows([map_object_to_row(row_object, headers)])
        return envelope(201, {"message": "Row inserted", "_id": new_row})

    def handle_batch_upsert(self, sheet, params):
        payload = _list_payload(params)
        id_column = str(params.get("idColumn") or "")
        partial_update = as_bool(params.get("partialUpdate"))
        items = [item for item in payload if isinstance(item, dict)]
        skipped = len(payload) - len(items)

        add_new_columns_if_needed(sheet, items)
        headers = get_headers(sheet)
        if id_column not in headers:
            return error_envelope(400, "id_column_not_found", {"idColumn": id_column})
        id_column_index = headers.index(id_column) + 1

        # id -> row number, built from a single read of the id column
        id_map = {}
        last_row = sheet.get_last_row()
        if last_row >= FIRST_DATA_ROW:
            for i, row in enumerate(sheet.get_values(FIRST_DATA_ROW, id_column_index, last_row - 1, 1)):
                if not is_empty(row[0]):
                    id_map.setdefault(key_string(row[0]), i + FIRST_DATA_ROW)

        # a key repeated within the batch keeps its last payload
        inserts = {}
        updates = {}
        for item in items:
            key = item.get(id_column)
            if is_empty(key):
                skipped += 1
                continue
            if key_string(key) in id_map:
                updates[id_map[key_string(key)]] = item
            else:
                inserts[key_string(key)] = item

        if inserts:
            sheet.append_rows([map_object_to_row(item, headers) for item in inserts.values()])
        for row_number, item in updates.items():
            if partial_update:
                update_row_fields(sheet, row_number, headers, item)
            else:
                sheet.set_values(row_number, 1, [map_object_to_row(item, headers)])

        logger.info(f"BATCH_UPSERT sheet='{sheet.name}': {len(inserts)} inserted, {len(updates)} updated, {skipped} skipped.")
        return envelope(200, {"inserted": len(inserts), "updated": len(updates), "skipped": skipped})

    def handle_put(self, sheet, params):
        row_id = _row_id(params, required=True)
        payload = _object_payload(params)
        update_row_fields(sheet, row_id, get_headers(sheet), payload, stamp=False)
        return envelope(201)

    def handle_delete(self, sheet, params):
        row_id = _row_id(params, required=True)
        sheet.clear_rows([row_id])
        return envelope(204)

    def handle_bulk_delete(self, sheet, params):
        ids = params.get("ids")
        if isinstance(ids, str) and not ids.strip().startswith("["):
            ids = [part for part in ids.split(",") if part.strip()]
        else:
            ids = as_json(ids, "ids")
        if not isinstance(ids, list):
            return error_envelope(400, "invalid_ids", {"message": "ids must be an array"})
        row_numbers = [_row_number(i) for i in ids]
        sheet.clear_rows(row_numbers)
        return envelope(200, {"deleted": len(row_numbers)})

    def handle_batch_update(self, sheet, params):
        updates = []
        for item in _list_payload(params):
            if not isinstance(item, dict) or is_empty(item.get("_id")):
                continue
            fields = dict(item)
            updates.append((_row_number(fields.pop("_id")), fields))
        headers = get_headers(sheet)
        for row_number, fields in updates:
            update_row_fields(sheet, row_number, headers, fields)
        return envelope(200, {"updated": len(updates)})

    # --- Columns ---
    def handle_add_column(self, sheet, params):
        column_name = params.get("columnName")
        if not column_name:
            return error_envelope(400, "column_name_missing", {})
        if column_name in get_headers(sheet):
            return error_envelope(400, "column_exists", {"columnName": column_name})
        last_column = sheet.get_last_column()
        sheet.insert_columns_after(last_column, 1)
        sheet.set_value(1, last_column + 1, column_name)
        return envelope(201, {"message": "Column added"})

    def handle_edit_column(self, sheet, params):
        old_name, new_name = params.get("oldColumnName"), params.get("newColumnName")
        headers = get_headers(sheet)
        if old_name not in headers:
            return error_envelope(404, "column_not_found", {"oldColumnName": old_name})
        if not new_name:
            return error_envelope(400, "column_name_missing", {})
        sheet.set_value(1, headers.index(old_name) + 1, new_name)
        return envelope(201, {"message": "Column renamed"})

    def handle_remove_column(self, sheet, params):
        column_name = params.get("columnName")
        headers = get_headers(sheet)
        if column_name not in headers:
            return error_envelope(404, "column_not_found", {"columnName": column_name})
        sheet.delete_column(headers.index(column_name) + 1)
        return envelope(204, {"message": "Column removed"})

    # --- Search / aggregation ---
    def handle_find(self, sheet, params):
        id_column = str(params.get("idColumn") or "")
        key = params.get("id")
        return_all = as_bool(params.get("returnAllMatches"))
        headers = get_headers(sheet)
        if id_column not in headers:
            return error_envelope(400, "id_column_not_found", {"idColumn": id_column})
        if is_empty(key):
            raise RequestError(400, "id_missing", {"idColumn": id_column})

        last_row = sheet.get_last_row()
        if last_row < FIRST_DATA_ROW:
            return error_envelope(404, "no_matches_found", {})

        # Scan only the id column, newest row first.
        id_values = sheet.get_values(FIRST_DATA_ROW, headers.index(id_column) + 1, last_row - 1, 1)
        matches = []
        for i in range(len(id_values) - 1, -1, -1):
            if same_key(id_values[i][0], key):
                matches.append(i + FIRST_DATA_ROW)
                if not return_all:
                    break
        if not matches:
            return error_envelope(404, "no_matches_found", {})
        matches.reverse()

        last_column = sheet.get_last_column()
        if len(matches) > 1 and matches[-1] - matches[0] < FIND_BATCH_SPAN:
            block = sheet.get_values(matches[0], 1, matches[-1] - matches[0] + 1, last_column)
            results = [map_row_to_object(block[r - matches[0]], r, headers) for r in matches]
        else:
            results = [map_row_to_object(sheet.get_values(r, 1, 1, last_column)[0], r, headers) for r in matches]

        if not return_all:
            return envelope(200, results[0])
        return envelope(200, results)

    def handle_paginated_get(self, sheet, params):
        limit = as_int(params.get("limit"), "limit", 10)
        if limit < 1:
            raise RequestError(400, "invalid_limit", {"limit": limit})
        sort_by = params.get("sortBy") or DATE_MODIFIED
        sort_dir = str(params.get("sortDir") or "desc").lower()
        if sort_dir not in ("asc", "desc"):
            raise RequestError(400, "invalid_sortDir", {"sortDir": sort_dir})
        headers = get_headers(sheet)
        if sort_by not in headers:
            return error_envelope(400, "sort_column_not_found", {"sortBy": sort_by})

        last_row = sheet.get_last_row()
        cursor = as_int(params.get("cursor"), "cursor")
        if last_row < FIRST_DATA_ROW or (cursor is not None and not FIRST_DATA_ROW <= cursor <= last_row):
            return envelope(200, [], cursor=None, hasMore=False)

        if sort_dir == "asc":
            first = cursor or FIRST_DATA_ROW
            last = min(first + limit - 1, last_row)
            has_more = last < last_row
            next_cursor = last + 1 if has_more else None
        else:
            last = cursor or last_row
            first = max(last - limit + 1, FIRST_DATA_ROW)
            has_more = first > FIRST_DATA_ROW
            next_cursor = first - 1 if has_more else None

        values = sheet.get_values(first, 1, last - first + 1, sheet.get_last_column())
        rows = [map_row_to_object(row, first + i, headers) for i, row in enumerate(values)]
        if sort_dir == "desc":
            rows.reverse()
        return envelope(200, [r for r in rows if r], cursor=next_cursor, hasMore=has_more)

    def _data_objects(self, sheet, headers, with_ids=True):
        last_row = sheet.get_last_row()
        if last_row < FIRST_DATA_ROW:
            return []
        values = sheet.get_values(FIRST_DATA_ROW, 1, last_row - 1, sheet.get_last_column())
        rows = [map_row_to_object(row, FIRST_DATA_ROW + i if with_ids else None, headers) for i, row in enumerate(values)]
        return [r for r in rows if r]

    def handle_export(self, sheet, params):
        export_format = str(params.get("format") or "json").lower()
        if export_format not in ("json", "csv"):
            return error_envelope(400, "invalid_format", {"format": export_format})
        headers = get_headers(sheet)
        rows = self._data_objects(sheet, headers, with_ids=False)
        if export_format == "json":
            return envelope(200, rows)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(headers)
        for row in rows:
            writer.writerow([row.get(h, "") for h in headers])
        return envelope(200, buffer.getvalue().rstrip("\n"), format="csv")

    def handle_aggregate(self, sheet, params):
        column = params.get("column")
        operation = str(params.get("operation") or "").lower()
        headers = get_headers(sheet)
        if column not in headers:
            return error_envelope(400, "column_not_found", {"column": column})
        if operation not in AGGREGATE_OPERATIONS:
            return error_envelope(400, "invalid_operation", {"operation": params.get("operation")})
        where = as_json(params.get("where"), "where") or {}
        if not isinstance(where, dict):
            raise RequestError(400, "invalid_where", {"where": where})
        for where_column in where:
            if where_column not in headers:
                return error_envelope(400, "column_not_found", {"column": where_column})

        if where:
            rows = [r for r in self._data_objects(sheet, headers)
                    if all(same_key(r.get(c), v) for c, v in where.items())]
            cells = [r.get(column) for r in rows]
        else:
            last_row = sheet.get_last_row()
            cells = [r[0] for r in sheet.get_values(FIRST_DATA_ROW, headers.index(column) + 1, last_row - 1, 1)] \
                if last_row >= FIRST_DATA_ROW else []
        numbers = [v for v in cells if isinstance(v, (int, float)) and not isinstance(v, bool)]

        if operation == "sum":
            result = sum(numbers)
        elif operation == "avg":
            result = sum(numbers) / len(numbers) if numbers else None
        elif operation == "min":
            result = min(numbers) if numbers else None
        elif operation == "max":
            result = max(numbers) if numbers else None
        else:
            result = len(numbers)
        return envelope(200, {"result": result})

    # --- Raw ranges ---
    def handle_get_rows(self, sheet, params):
        start_row = as_int(params.get("startRow"), "startRow")
        if start_row is None:
            raise RequestError(400, "start_row_missing", {})
        end_row = as_int(params.get("endRow"), "endRow", start_row)
        return envelope(200, get_rows(sheet, start_row, end_row, include_formulas=as_bool(params.get("includeFormulas"))))

    def handle_get_columns(self, sheet, params):
        start_column = params.get("startColumn")
        if is_empty(start_column):
            raise RequestError(400, "start_column_missing", {})
        end_column = params.get("endColumn")
        columns = get_columns(
            sheet, start_column, None if is_empty(end_column) else end_column,
            include_formulas=as_bool(params.get("includeFormulas")),
            include_formatting=as_bool(params.get("includeFormatting")),
        )
        return envelope(200, columns)

    def handle_get_all_cells(self, sheet, params):
        return envelope(200, get_all_cells(
            sheet,
            include_formulas=as_bool(params.get("includeFormulas")),
            include_formatting=as_bool(params.get("includeFormatting")),
        ))

    def handle_range_update(self, sheet, params):
        data = as_json(params.get("data"), "data")
        if not isinstance(data, list) or not data or not all(isinstance(row, list) for row in data):
            return error_envelope(400, "invalid_data", {"message": "Data must be a 2D array"})
        start_row = as_int(params.get("startRow"), "startRow", 1)
        start_col = as_int(params.get("startCol"), "startCol", 1)
        if start_row < 1 or start_col < 1:
            raise RequestError(400, "invalid_range", {"startRow": start_row, "startCol": start_col})
        num_rows, num_cols = len(data), len(data[0])

        try:
            sheet.set_values(start_row, start_col, [[cell_value(v) for v in row] for row in data])
            if has_date_modified(get_headers(sheet)):
                first_stamped = max(start_row, FIRST_DATA_ROW)
                last_stamped = start_row + num_rows - 1
                if first_stamped <= last_stamped:
                    stamp = timestamp()
                    sheet.set_values(first_stamped, 1, [[stamp]] * (last_stamped - first_stamped + 1))
        except (HttpError, ValueError) as e:
            logger.error(f"RANGE_UPDATE sheet='{sheet.name}': update failed: {str(e)}", exc_info=True)
            return error_envelope(500, "update_failed", {
                "message": str(e),
                "range": f"{start_row},{start_col} to {start_row + num_rows},{start_col + num_cols}",
            })
        return envelope(200, {"updated": {"rows": num_rows, "columns": num_cols, "cells": num_rows * num_cols}})

    def handle_get_range(self, sheet, params):
        result = get_range(
            sheet,
            as_int(params.get("startRow"), "startRow", 1),
            as_int(params.get("startCol"), "startCol", 1),
            stop_at_empty_row=as_bool(params.get("stopAtEmptyRow")),
            stop_at_empty_column=as_bool(params.get("stopAtEmptyColumn")),
            skip_empty_rows=as_bool(params.get("skipEmptyRows")),
            skip_empty_columns=as_bool(params.get("skipEmptyColumns")),
            include_formulas=as_bool(params.get("includeFormulas")),
        )
        return envelope(200, result)

    def handle_get_data_block(self, sheet, params):
        search_range = as_json(params.get("searchRange"), "searchRange") or {}
        if not isinstance(search_range, dict):
            raise RequestError(400, "invalid_searchRange", {"searchRange": search_range})
        start_row = as_int(search_range.get("startRow"), "startRow", 1)
        start_col = as_int(search_range.get("startCol"), "startCol", 1)
        end_row = as_int(search_range.get("endRow"), "endRow", sheet.get_last_row())
        end_col = as_int(search_range.get("endCol"), "endCol", sheet.get_last_column())
        if start_row < 1 or start_col < 1 or end_row < start_row or end_col < start_col:
            return envelope(200, {"values": [], "range": None})
        return envelope(200, find_data_block(sheet, start_row, start_col, end_row, end_col))

    # --- Spreadsheet level ---
    def handle_get_sheets(self, spreadsheet):
        sheet_info = [{
            "name": sheet.name,
            "id": sheet.sheet_id,
            "index": sheet.index + 1,
            "isHidden": sheet.hidden,
            "csvUrl": EXPORT_URL.format(spreadsheet_id=spreadsheet.id, sheet_id=sheet.sheet_id),
            "sheetUrl": EDIT_URL.format(spreadsheet_id=spreadsheet.id, sheet_id=sheet.sheet_id),
        } for sheet in spreadsheet.get_sheets()]
        return envelope(200, sheet_info)

    def handle_get_csv(self, spreadsheet, sheet):
        try:
            return envelope(200, spreadsheet.export_csv(sheet))
        except CsvExportError as e:
            return error_envelope(e.status_code, "csv_fetch_failed", {"message": e.message})
        except requests.exceptions.RequestException as e:
            logger.error(f"GET_CSV sheet='{sheet.name}': export request failed: {str(e)}", exc_info=True)
            return error_envelope(500, "csv_processing_failed", {"message": str(e), "sheet": sheet.name})
