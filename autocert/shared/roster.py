"""Roster parsing for participant imports (CSV and Excel)."""

from __future__ import annotations

import csv
import io
import re
from typing import Any, Iterable, Mapping

from openpyxl import load_workbook

from .errors import RosterError

NAME_KEYS = (
    "name",
    "Name",
    "full_name",
    "Full Name",
    "fullName",
    "studentname",
    "student_name",
    "Participant Name",
)
EMAIL_KEYS = (
    "email",
    "Email",
    "E-mail",
    "EMAIL",
    "email_id",
    "Email ID",
    "mail",
    "contact_email",
)
MES_ID_KEYS = ("mes_id", "MES ID", "mesid", "mes")

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize_key(key: Any) -> str:
    return _NON_ALNUM_RE.sub("", str(key or "").strip().lower())


def pick_first_value(row: Mapping[str, Any], candidates: Iterable[str]) -> str:
    """Value of the first matching header, exact match before normalized match."""
    candidates = list(candidates)
    for key in candidates:
        value = row.get(key)
        if value not in (None, ""):
            return str(value)
    normalized = {normalize_key(k): v for k, v in row.items() if normalize_key(k)}
    for key in candidates:
        value = normalized.get(normalize_key(key))
        if value not in (None, ""):
            return str(value)
    return ""


def parse_csv(data: bytes) -> list[dict[str, str]]:
    text = data.decode("utf-8-sig")
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise RosterError("CSV file must have at least a header row and one data row")
    reader = csv.reader(lines, skipinitialspace=True)
    headers = [h.strip().replace('"', "") for h in next(reader)]
    rows: list[dict[str, str]] = []
    for values in reader:
        # rows whose column count disagrees with the header are dropped
        if len(values) != len(headers):
            continue
        rows.append({h: (v or "").strip() for h, v in zip(headers, values)})
    return rows


def _cell_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value if isinstance(value, (int, float, bool)) else str(value)


def parse_xlsx(data: bytes) -> list[dict[str, Any]]:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise RosterError(f"Could not read Excel workbook: {exc}") from exc
    try:
        sheet = workbook.worksheets[0]
        iterator = sheet.iter_rows(values_only=True)
        header_row = next(iterator, None)
        if not header_row:
            return []
        headers = [str(h).strip() if h is not None else "" for h in header_row]
        rows: list[dict[str, Any]] = []
        for values in iterator:
            if not values or all(v in (None, "") for v in values):
                continue
            row = {}
            for index, header in enumerate(headers):
                if not header:
                    continue
                cell = values[index] if index < len(values) else None
                row[header] = _cell_text(cell)
            rows.append(row)
        return rows
    finally:
        workbook.close()


def parse_roster(data: bytes, filename: str) -> list[dict[str, Any]]:
    lowered = (filename or "").lower()
    if lowered.endswith(".csv"):
        return parse_csv(data)
    if lowered.endswith((".xlsx", ".xlsm")):
        return parse_xlsx(data)
    raise RosterError("Participant sheet must be a .csv or .xlsx file")


def extract_participant(row: Mapping[str, Any]) -> dict[str, Any] | None:
    """Core participant fields from a roster row, or ``None`` if unusable."""
    name = pick_first_value(row, NAME_KEYS).strip()
    email = pick_first_value(row, EMAIL_KEYS).strip().lower()
    if not name or not email:
        return None
    mes_id = pick_first_value(row, MES_ID_KEYS).strip() or None
    return {
        "full_name": name,
        "email": email,
        "mes_id": mes_id,
        "extra_data": dict(row) if row else None,
    }
