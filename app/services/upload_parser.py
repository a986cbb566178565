# app/services/upload_parser.py
from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

import pandas as pd

from app.core.domain import DataSource, Scalar
from app.core.errors import EmptyDocument, MalformedUpload, UnsupportedFormat

CSV_EXTENSIONS = (".csv",)
EXCEL_EXTENSIONS = (".xlsx", ".xls")


@dataclass
class ParsedUpload:
    columns: List[str]
    rows: List[Dict[str, Scalar]] = field(default_factory=list)


def _extension(filename: Optional[str]) -> str:
    name = (filename or "").strip().lower()
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def _check_format(filename: Optional[str], data_source: DataSource) -> str:
    """Return the extension if it matches what the project was configured for."""
    ext = _extension(filename)
    data_source = DataSource(data_source)
    if data_source == DataSource.CSV:
        if ext not in CSV_EXTENSIONS:
            raise UnsupportedFormat("Please upload a CSV file. This project is configured for CSV data.")
    elif data_source == DataSource.EXCEL:
        if ext not in EXCEL_EXTENSIONS:
            raise UnsupportedFormat(
                "Please upload an Excel file (XLSX/XLS). This project is configured for Excel data."
            )
    else:
        raise UnsupportedFormat(f"Projects with data source '{data_source.value}' do not accept file uploads")
    return ext


def _to_scalar(value: Any) -> Scalar:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bool, int, float, str)):
        return value
    # numpy scalars and anything else pandas hands back
    item = getattr(value, "item", None)
    if callable(item):
        return _to_scalar(item())
    return str(value)


def _read_frame(content: bytes, ext: str) -> pd.DataFrame:
    buffer = io.BytesIO(content)
    if ext in CSV_EXTENSIONS:
        return pd.read_csv(buffer)
    engine = "openpyxl" if ext == ".xlsx" else "xlrd"
    # First sheet only
    return pd.read_excel(buffer, sheet_name=0, engine=engine)


def parse(content: bytes, filename: Optional[str], data_source: DataSource) -> ParsedUpload:
    """
    Turn an uploaded spreadsheet into ordered column names and row mappings.

    Raises UnsupportedFormat when the file does not match the project's data
    source or cannot be read, and EmptyDocument when it holds no data rows.
    """
    ext = _check_format(filename, data_source)
    if not content:
        raise EmptyDocument()

    try:
        frame = _read_frame(content, ext)
    except pd.errors.EmptyDataError:
        raise EmptyDocument()
    except Exception as exc:  # parser/engine errors vary by format (ParserError, BadZipFile, XLRDError, ...)
        raise UnsupportedFormat("Error reading file. Please try again with a valid file.") from exc

    frame = frame.dropna(how="all")
    if frame.empty or len(frame.columns) == 0:
        raise EmptyDocument()

    columns = [str(c) for c in frame.columns]
    if len(set(columns)) != len(columns):
        raise MalformedUpload("The file has duplicate column headers")
    frame.columns = columns

    rows = [
        {column: _to_scalar(value) for column, value in record.items()}
        for record in frame.astype(object).to_dict(orient="records")
    ]
    return ParsedUpload(columns=columns, rows=rows)
