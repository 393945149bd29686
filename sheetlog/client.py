import json
import logging
import time

import requests

from . import config
from .errors import SheetlogResponseError

logger = logging.getLogger(__name__)


class Sheetlog:
    """Client for a Sheetlog endpoint.

    Every call posts ``{"method", "sheet", "key", ...}`` as JSON inside a
    form-encoded ``payload`` field and returns the response envelope as-is:
    ``{"status", "data", ...}`` or ``{"status", "error": {"code", "details"}}``.
    There is no retry; transport failures raise ``requests`` exceptions.

        logger = Sheetlog(sheet_url=SHEET_URL, sheet="Signups")
        logger.log({"Email": "test@example.com"})
        logger.batch_upsert("title", movies)
    """

    def __init__(self, sheet_url=None, sheet=None, key=None, timeout=None, session=None):
        self.sheet_url = sheet_url or config.SHEET_URL
        if not self.sheet_url:
            raise ValueError("Sheet URL is not set. Pass sheet_url or set SHEET_URL.")
        self.sheet = sheet or config.DEFAULT_SHEET
        self.key = key
        self.timeout = timeout or config.REQUEST_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def request(self, method, sheet=None, **params):
        payload = {"method": method, "sheet": sheet or self.sheet}
        if self.key is not None:
            payload["key"] = self.key
        payload.update({k: v for k, v in params.items() if v is not None})

        start_time = time.time()
        logger.debug(f"Sending {method} to sheet '{payload['sheet']}': {json.dumps(payload)[:500]}")
        response = self.session.post(self.sheet_url, data={"payload": json.dumps(payload)}, timeout=self.timeout)
        try:
            result = response.json()
        except ValueError:
            logger.error(f"{method} returned a non-JSON response ({response.status_code}): {response.text[:500]}")
            raise SheetlogResponseError(response.status_code, response.text)
        logger.info(f"{method} on sheet '{payload['sheet']}' answered {result.get('status') if isinstance(result, dict) else 'batch'} in {time.time() - start_time:.2f}s.")
        return result

    # --- Rows ---
    def log(self, payload, sheet=None):
        """Append one object or a list of objects, creating any missing columns."""
        return self.request("DYNAMIC_POST", sheet=sheet, payload=payload)

    def post(self, payload, sheet=None):
        return self.request("POST", sheet=sheet, payload=payload)

    def dynamic_post(self, payload, sheet=None):
        return self.request("DYNAMIC_POST", sheet=sheet, payload=payload)

    def get(self, id=None, sheet=None, **options):
        return self.request("GET", sheet=sheet, id=id, **options)

    def list(self, limit=None, order=None, start_id=None, raw=None, sheet=None):
        return self.request("GET", sheet=sheet, limit=limit, order=order, start_id=start_id, raw=raw)

    def get_last(self, limit=10, raw=None, sheet=None):
        return self.request("GET_LAST", sheet=sheet, limit=limit, raw=raw)

    def put(self, id, payload, sheet=None):
        return self.request("PUT", sheet=sheet, id=id, payload=payload)

    def delete(self, id, sheet=None):
        return self.request("DELETE", sheet=sheet, id=id)

    def upsert(self, id_column, id, payload, partial_update=False, sheet=None):
        return self.request("UPSERT", sheet=sheet, idColumn=id_column, id=id, payload=payload, partialUpdate=partial_update)

    def batch_upsert(self, id_column, payload, partial_update=False, sheet=None):
        return self.request("BATCH_UPSERT", sheet=sheet, idColumn=id_column, payload=payload, partialUpdate=partial_update)

    def find(self, id_column, id, return_all_matches=False, sheet=None):
        return self.request("FIND", sheet=sheet, idColumn=id_column, id=id, returnAllMatches=return_all_matches)

    def bulk_delete(self, ids, sheet=None):
        return self.request("BULK_DELETE", sheet=sheet, ids=list(ids))

    def batch_update(self, updates, sheet=None):
        return self.request("BATCH_UPDATE", sheet=sheet, payload=updates)

    def paginated_get(self, cursor=None, limit=10, sort_by=None, sort_dir=None, sheet=None):
        return self.request("PAGINATED_GET", sheet=sheet, cursor=cursor, limit=limit, sortBy=sort_by, sortDir=sort_dir)

    def export(self, format="json", sheet=None):
        return self.request("EXPORT", sheet=sheet, format=format)

    def aggregate(self, column, operation, where=None, sheet=None):
        return self.request("AGGREGATE", sheet=sheet, column=column, operation=operation, where=where)

    # --- Columns ---
    def add_column(self, column_name, sheet=None):
        return self.request("ADD_COLUMN", sheet=sheet, columnName=column_name)

    def edit_column(self, old_column_name, new_column_name, sheet=None):
        return self.request("EDIT_COLUMN", sheet=sheet, oldColumnName=old_column_name, newColumnName=new_column_name)

    def remove_column(self, column_name, sheet=None):
        return self.request("REMOVE_COLUMN", sheet=sheet, columnName=column_name)

    # --- Raw cells and ranges ---
    def get_rows(self, start_row, end_row=None, include_formulas=False, sheet=None):
        return self.request("GET_ROWS", sheet=sheet, startRow=start_row, endRow=end_row, includeFormulas=include_formulas)

    def get_columns(self, start_column, end_column=None, include_formulas=False, include_formatting=False, sheet=None):
        return self.request("GET_COLUMNS", sheet=sheet, startColumn=start_column, endColumn=end_column,
                            includeFormulas=include_formulas, includeFormatting=include_formatting)

    def get_all_cells(self, include_formulas=False, include_formatting=False, sheet=None):
        return self.request("GET_ALL_CELLS", sheet=sheet, includeFormulas=include_formulas, includeFormatting=include_formatting)

    def range_update(self, data, start_row=1, start_col=1, sheet=None):
        return self.request("RANGE_UPDATE", sheet=sheet, data=data, startRow=start_row, startCol=start_col)

    def get_range(self, start_row=1, start_col=1, stop_at_empty_row=False, stop_at_empty_column=False,
                  skip_empty_rows=False, skip_empty_columns=False, include_formulas=False, sheet=None):
        return self.request(
            "GET_RANGE", sheet=sheet, startRow=start_row, startCol=start_col,
            stopAtEmptyRow=stop_at_empty_row, stopAtEmptyColumn=stop_at_empty_column,
            skipEmptyRows=skip_empty_rows, skipEmptyColumns=skip_empty_columns, includeFormulas=include_formulas,
        )

    def get_data_block(self, search_range=None, sheet=None):
        return self.request("GET_DATA_BLOCK", sheet=sheet, searchRange=search_range)

    # --- Spreadsheet ---
    def get_sheets(self, sheet=None):
        return self.request("GET_SHEETS", sheet=sheet)

    def get_csv(self, sheet=None):
        return self.request("GET_CSV", sheet=sheet)
