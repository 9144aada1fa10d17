"""
Export of stored submissions as CSV, Excel or JSON.
"""
import io
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Sequence

import pandas as pd
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font

from kobo_insights.core.errors import AnalysisError
from kobo_insights.core.performance import track_performance
from kobo_insights.core.sanitization import sanitize_filename
from kobo_insights.core.schemas import Dataset, Record
from kobo_insights.services.values import is_missing

logger = logging.getLogger(__name__)

ROW_NUMBER_HEADER = "No."
SUPPORTED_FORMATS = ("csv", "excel", "json")

# Substrings marking Kobo bookkeeping fields that are left out of default exports
_HIDDEN_MARKERS = ("_url", "_auth", "_original", "_processed")


@dataclass
class ExportFile:
    content: bytes
    media_type: str
    filename: str


def is_exportable_by_default(column: str) -> bool:
    if column.startswith("_") or column.startswith("meta/"):
        return False
    return not any(marker in column for marker in _HIDDEN_MARKERS)


def export_columns(dataset: Dataset, include_all_columns: bool = False) -> List[str]:
    """
    Columns to export, in dataset order.

    All columns when asked for, else the user's selection, else every column
    that does not look like Kobo bookkeeping.
    """
    if include_all_columns:
        return list(dataset.available_columns)
    if dataset.selected_columns:
        return list(dataset.selected_columns)
    return [c for c in dataset.available_columns if is_exportable_by_default(c)]


def _cell(value: Any) -> Any:
    if is_missing(value):
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def build_table(records: Sequence[Record], columns: Sequence[str]) -> pd.DataFrame:
    """Row-numbered table of the given columns; absent answers become empty cells."""
    rows = [
        {ROW_NUMBER_HEADER: index, **{column: _cell(record.get(column)) for column in columns}}
        for index, record in enumerate(records, start=1)
    ]
    return pd.DataFrame(rows, columns=[ROW_NUMBER_HEADER, *columns])


def to_csv(table: pd.DataFrame) -> bytes:
    # The BOM lets Excel detect UTF-8 (Amharic and other non-Latin answers)
    return table.to_csv(index=False).encode("utf-8-sig")


def _excel_value(value: Any) -> Any:
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, (bool, int, float)):
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))


def to_excel(table: pd.DataFrame, sheet_title: str = "Submissions") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title.replace("[", "").replace("]", "")[:31] or "Submissions"

    sheet.append([str(c) for c in table.columns])
    for cell in sheet[1]:
        cell.font = Font(bold=True)

    for row in table.itertuples(index=False):
        sheet.append([_excel_value(v) for v in row])

    sheet.freeze_panes = "A2"
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def to_json(table: pd.DataFrame) -> bytes:
    rows = table.rename(columns={ROW_NUMBER_HEADER: "No"}).to_dict(orient="records")
    return json.dumps(rows, ensure_ascii=False, indent=2, default=str).encode("utf-8")


@track_performance("export_dataset")
def export_dataset(dataset: Dataset, export_format: str = "csv", include_all_columns: bool = False) -> ExportFile:
    """
    Export a dataset's submissions.

    Raises:
        ValueError: For an unsupported format
        AnalysisError: If the dataset has no submissions
    """
    export_format = export_format.lower()
    if export_format not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported export format: {export_format}")
    if not dataset.records:
        raise AnalysisError("No data to export")

    columns = export_columns(dataset, include_all_columns)
    table = build_table(dataset.records, columns)
    stem = f"{sanitize_filename(dataset.name)}_data"
    logger.info(f"Exporting {len(table)} rows x {len(columns)} columns of {dataset.dataset_id} as {export_format}")

    if export_format == "csv":
        return ExportFile(to_csv(table), "text/csv; charset=utf-8", f"{stem}.csv")
    if export_format == "excel":
        return ExportFile(
            to_excel(table, sanitize_filename(dataset.name, max_length=31, fallback="Submissions")),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            f"{stem}.xlsx",
        )
    return ExportFile(to_json(table), "application/json", f"{stem}.json")
