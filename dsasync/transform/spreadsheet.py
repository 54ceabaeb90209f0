"""Spreadsheet to JSON conversion.

The first sheet of a workbook becomes a list of row dicts keyed by the header
row. The tissue microarray structure file gets reshaped into a design
document with one record per core.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

logger = logging.getLogger("transform")

STRUCTURE_FILE_NAME = "tma-structure.xlsx"
STRUCTURE_DOCUMENT_TYPE = "tissue_microarray"
STRUCTURE_LAYOUT = "landscape"
STRUCTURE_NAME_FIELD = "tma_name"

CORE_BASE_PROPERTIES = (
    "study_core_id",
    "core_id",
    "core_label",
    "tma_number",
    "row_index",
    "row_label",
    "col_index",
    "col_label",
    "is_empty",
)

EMPTY_HEADER = "__EMPTY"


class SpreadsheetError(ValueError):
    pass


def _cell_value(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def _header_names(header_row: tuple) -> list[str]:
    names: list[str] = []
    seen: dict[str, int] = {}
    for raw in header_row:
        base = str(raw).strip() if raw is not None and str(raw).strip() else EMPTY_HEADER
        count = seen.get(base, 0)
        seen[base] = count + 1
        names.append(base if count == 0 else f"{base}_{count}")
    return names


def rows_from_values(values: list[tuple]) -> list[dict[str, Any]]:
    """Turn raw sheet values (header row first) into row dicts.

    Blank cells are left out of the row dict and blank rows are dropped.
    """
    if not values:
        return []
    headers = _header_names(values[0])
    rows: list[dict[str, Any]] = []
    for raw_row in values[1:]:
        row: dict[str, Any] = {}
        for key, value in zip(headers, raw_row):
            if value is None or (isinstance(value, str) and value == ""):
                continue
            row[key] = _cell_value(value)
        if row:
            rows.append(row)
    return rows


def _numeric_index(value: Any, key: str) -> int | float:
    """Read an index cell as a number; text cells such as ``"10"`` count too."""
    if value is None or isinstance(value, bool):
        return int(value or 0)
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            raise SpreadsheetError(f"structure_invalid: {key}={value!r} is not a number") from None
    if not math.isfinite(number):
        raise SpreadsheetError(f"structure_invalid: {key}={value!r} is not a number")
    return int(number) if float(number).is_integer() else number


def _max_index(cores: list[dict[str, Any]], key: str) -> int | float:
    return max((_numeric_index(core.get(key), key) for core in cores), default=0)


def reshape_structure(rows: list[dict[str, Any]]) -> dict[str, Any]:
    cores: list[dict[str, Any]] = []
    for row in rows:
        core = {key: row[key] for key in CORE_BASE_PROPERTIES if key in row}
        core["core_annotations"] = {
            key: value
            for key, value in row.items()
            if key not in CORE_BASE_PROPERTIES and key != STRUCTURE_NAME_FIELD
        }
        cores.append(core)

    return {
        "type": STRUCTURE_DOCUMENT_TYPE,
        "name": rows[0].get(STRUCTURE_NAME_FIELD, "") if rows else "",
        "design": {
            "num_rows": _max_index(cores, "row_index"),
            "num_cols": _max_index(cores, "col_index"),
            "layout": STRUCTURE_LAYOUT,
            "cores": cores,
        },
    }


class SpreadsheetTransformer:
    def __init__(self, structure_file_name: str = STRUCTURE_FILE_NAME):
        self.structure_file_name = structure_file_name

    def read_rows(self, file_path: str) -> list[dict[str, Any]]:
        path = Path(file_path)
        if not path.is_file():
            raise SpreadsheetError(f"file_not_found: {file_path}")

        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except Exception as e:
            raise SpreadsheetError(f"spreadsheet_unreadable: {path.name}: {e}") from e

        try:
            if not workbook.worksheets:
                return []
            sheet = workbook.worksheets[0]
            values = [tuple(row) for row in sheet.iter_rows(values_only=True)]
        except Exception as e:
            raise SpreadsheetError(f"spreadsheet_unreadable: {path.name}: {e}") from e
        finally:
            workbook.close()

        return rows_from_values(values)

    def convert(self, file_path: str, file_name: str) -> Any:
        rows = self.read_rows(file_path)
        if file_name == self.structure_file_name:
            logger.debug("structure_reshape file=%s rows=%s", file_name, len(rows))
            return reshape_structure(rows)
        return rows
