# -*- coding: utf-8 -*-
"""
BOM file reader.

Accepts the KiCad-style export the lab uses (CSV or XLSX) with the columns
References, Value, Footprint, Quantity. Each row becomes a BomRow; the part
code defaults to the Value column and can be overridden before the board
is created.
"""
from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass, replace
from typing import Iterable, Optional
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from errors import InvalidInput

CSV_ENCODINGS = ["utf-8-sig", "cp1252", "latin1"]


@dataclass
class BomRow:
    references: str
    value: str
    footprint: str
    quantity: int
    part_id: str
    description: str = ""
    bin_id: str = ""
    location_within_bin: str = ""
    min_quantity: Optional[int] = None
    is_sensitive: bool = False
    part_link: str = ""


def _field(record: dict, *names: str) -> str:
    for name in names:
        value = record.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _quantity(raw, row_no: int) -> int:
    if isinstance(raw, bool):
        raise InvalidInput(f"Row {row_no}: quantity must be a positive integer")
    try:
        number = float(str(raw).strip()) if not isinstance(raw, int) else raw
    except ValueError:
        raise InvalidInput(f"Row {row_no}: quantity must be a positive integer") from None
    # nan and inf parse as floats but have no integer value
    if not math.isfinite(number) or number != int(number) or int(number) < 1:
        raise InvalidInput(f"Row {row_no}: quantity must be a positive integer")
    return int(number)


def rows_from_records(records: Iterable[dict]) -> list[BomRow]:
    """Map header-keyed records (file rows or JSON objects) onto BomRows."""
    rows: list[BomRow] = []
    # row 1 is the header in the source file
    for row_no, record in enumerate(records, start=2):
        if not isinstance(record, dict):
            raise InvalidInput(f"Row {row_no}: expected an object with BOM columns")
        if not any(str(v).strip() for v in record.values() if v is not None):
            continue
        value = _field(record, "Value", "value")
        raw_min = _field(record, "min_quantity", "Min Quantity")
        rows.append(BomRow(
            references=_field(record, "References", "references", "Designator"),
            value=value,
            footprint=_field(record, "Footprint", "footprint"),
            quantity=_quantity(_field(record, "Quantity", "quantity", "Qty"), row_no),
            part_id=_field(record, "part_id", "Part ID") or value,
            description=_field(record, "description", "Description"),
            bin_id=_field(record, "bin_id"),
            location_within_bin=_field(record, "location_within_bin"),
            min_quantity=int(raw_min) if raw_min.isdigit() else None,
            is_sensitive=_field(record, "is_sensitive").lower() in {"1", "true", "yes"},
            part_link=_field(record, "part_link"),
        ))
    return rows


def _read_csv(data: bytes) -> list[dict]:
    for enc in CSV_ENCODINGS:
        try:
            text = data.decode(enc)
            break
        except UnicodeDecodeError:
            continue
    else:  # pragma: no cover - latin1 decodes anything
        raise InvalidInput("Could not decode the BOM file")
    return list(csv.DictReader(io.StringIO(text, newline="")))


def _read_xlsx(data: bytes) -> list[dict]:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    ws = wb.active
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    names = [str(h).strip() if h is not None else "" for h in header]
    return [dict(zip(names, values)) for values in rows]


def parse_bom(stream, filename: str) -> list[BomRow]:
    """Read a BOM upload (file-like or bytes) into BomRows."""
    data = stream if isinstance(stream, bytes) else stream.read()
    name = (filename or "").lower()
    try:
        if name.endswith(".xlsx"):
            records = _read_xlsx(data)
        elif name.endswith(".csv"):
            records = _read_csv(data)
        else:
            raise InvalidInput("BOM must be a .csv or .xlsx file")
    except InvalidInput:
        raise
    except (csv.Error, BadZipFile, InvalidFileException, OSError, ValueError, KeyError) as exc:
        raise InvalidInput(f"Failed to parse BOM: {exc}") from exc

    rows = rows_from_records(records)
    if not rows:
        raise InvalidInput("BOM file has no rows")
    return rows


def merge_rows(rows: Iterable[BomRow]) -> list[BomRow]:
    """
    Collapse rows that point at the same part: a part appears once per board.
    Quantities add up, references are joined in file order.
    """
    merged: dict[str, BomRow] = {}
    for row in rows:
        key = row.part_id.strip()
        if key not in merged:
            merged[key] = replace(row, part_id=key)
            continue
        current = merged[key]
        refs = ", ".join(r for r in (current.references, row.references) if r)
        merged[key] = replace(
            current,
            quantity=current.quantity + row.quantity,
            references=refs,
            description=current.description or row.description,
        )
    return list(merged.values())
