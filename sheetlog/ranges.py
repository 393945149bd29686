from .errors import RequestError
from .hosts import column_index, is_empty


def resolve_column(identifier):
    """Column number from a letter ("C"), a number (3) or numeric text ("3")."""
    if isinstance(identifier, bool) or identifier is None:
        raise RequestError(400, "invalid_column_identifier", {"column": identifier})
    if isinstance(identifier, int):
        return identifier
    if isinstance(identifier, str):
        identifier = identifier.strip()
        if identifier.isdigit():
            return int(identifier)
        if identifier.isalpha():
            return column_index(identifier)
    raise RequestError(400, "invalid_column_identifier", {"column": identifier})


def get_rows(sheet, start_row, end_row=None, include_formulas=False):
    end_row = start_row if end_row is None else end_row
    last_row = sheet.get_last_row()
    last_column = sheet.get_last_column()
    end_row = min(end_row, last_row)
    result = {"values": []}
    if start_row < 1 or start_row > end_row:
        return result
    num_rows = end_row - start_row + 1
    result["values"] = sheet.get_values(start_row, 1, num_rows, last_column)
    if include_formulas:
        result["formulas"] = sheet.get_formulas(start_row, 1, num_rows, last_column)
    return result


def get_columns(sheet, start_column, end_column=None, include_formulas=False, include_formatting=False):
    start_index = resolve_column(start_column)
    end_index = resolve_column(start_column if end_column is None else end_column)
    end_index = min(end_index, sheet.get_last_column())
    if start_index < 1 or start_index > end_index:
        return []
    last_row = sheet.get_last_row()
    num_cols = end_index - start_index + 1
    result = {"values": sheet.get_values(1, start_index, last_row, num_cols)}
    if include_formulas:
        result["formulas"] = sheet.get_formulas(1, start_index, last_row, num_cols)
    if include_formatting:
        result.update(sheet.get_formatting(1, start_index, last_row, num_cols))
    return result


def get_all_cells(sheet, include_formulas=False, include_formatting=False):
    last_row = sheet.get_last_row()
    last_column = sheet.get_last_column()
    result = {
        "values": sheet.get_values(1, 1, last_row, last_column),
        "lastColumn": last_column,
        "lastRow": last_row,
    }
    if include_formulas:
        result["formulas"] = sheet.get_formulas(1, 1, last_row, last_column)
    if include_formatting:
        result.update(sheet.get_formatting(1, 1, last_row, last_column, extended=True))
    return result


def get_range(sheet, start_row, start_col, stop_at_empty_row=False, stop_at_empty_column=False,
              skip_empty_rows=False, skip_empty_columns=False, include_formulas=False):
    """Block from (start_row, start_col) to the end of the sheet.

    Empty columns are filtered first, then empty rows; "stop" ends the block at
    the first empty one, "skip" drops it and keeps going.
    """
    if start_row < 1 or start_col < 1:
        return []
    last_row = sheet.get_last_row()
    last_col = sheet.get_last_column()
    if start_row > last_row or start_col > last_col:
        return []

    end_row, end_col = last_row, last_col
    num_rows, num_cols = end_row - start_row + 1, end_col - start_col + 1
    values = sheet.get_values(start_row, start_col, num_rows, num_cols)
    formulas = sheet.get_formulas(start_row, start_col, num_rows, num_cols) if include_formulas else None

    if stop_at_empty_column or skip_empty_columns:
        columns_to_keep = []
        for col in range(num_cols):
            if not all(is_empty(row[col]) for row in values):
                columns_to_keep.append(col)
            elif stop_at_empty_column:
                break
        if not columns_to_keep:
            return {"values": [], "range": None}
        values = [[row[c] for c in columns_to_keep] for row in values]
        if formulas is not None:
            formulas = [[row[c] for c in columns_to_keep] for row in formulas]
        end_col = start_col + len(columns_to_keep) - 1

    if stop_at_empty_row or skip_empty_rows:
        rows_to_keep = []
        for r, row in enumerate(values):
            if not all(is_empty(cell) for cell in row):
                rows_to_keep.append(r)
            elif stop_at_empty_row:
                break
        if not rows_to_keep:
            return {"values": [], "range": None}
        values = [values[r] for r in rows_to_keep]
        if formulas is not None:
            formulas = [formulas[r] for r in rows_to_keep]
        end_row = start_row + len(rows_to_keep) - 1

    return {
        "values": values,
        "formulas": formulas,
        "range": {
            "startRow": start_row,
            "startCol": start_col,
            "endRow": end_row,
            "endCol": end_col,
            "numRows": end_row - start_row + 1,
            "numCols": end_col - start_col + 1,
        },
    }


def find_data_block(sheet, start_row, start_col, end_row, end_col):
    """Locate the first non-empty cell of the search window and read the block it starts."""
    values = sheet.get_values(start_row, start_col, end_row - start_row + 1, end_col - start_col + 1)
    for r, row in enumerate(values):
        for c, cell in enumerate(row):
            if not is_empty(cell):
                return get_range(sheet, start_row + r, start_col + c,
                                 stop_at_empty_row=True, stop_at_empty_column=True,
                                 skip_empty_rows=True, skip_empty_columns=True)
    return {"values": [], "range": None}
