"""Google Sheets values API helpers (read whole range, append rows)."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote
from urllib.request import Request, urlopen

DEFAULT_TIMEOUT_SEC = 15
SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"


def _authorized_headers(access_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
    }


def _build_values_get_url(spreadsheet_id: str, range_name: str) -> str:
    encoded_sheet = quote(spreadsheet_id, safe="")
    encoded_range = quote(range_name, safe="!:$")
    return f"{SHEETS_API_BASE}/{encoded_sheet}/values/{encoded_range}"


def _build_values_append_url(spreadsheet_id: str, range_name: str) -> str:
    encoded_sheet = quote(spreadsheet_id, safe="")
    encoded_range = quote(range_name, safe="!:$")
    return (
        f"{SHEETS_API_BASE}/{encoded_sheet}/values/{encoded_range}:append"
        "?valueInputOption=RAW&insertDataOption=INSERT_ROWS"
    )


def _fetch_json(url: str, headers: dict[str, str], timeout_sec: int) -> dict[str, Any]:
    request = Request(url, headers=headers, method="GET")
    with urlopen(request, timeout=timeout_sec) as response:
        body = response.read().decode("utf-8")
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("Google Sheets response must be a JSON object.")
    return payload


def _post_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: int) -> dict[str, Any]:
    request_headers = dict(headers)
    request_headers["Content-Type"] = "application/json"
    request = Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers=request_headers,
        method="POST",
    )
    with urlopen(request, timeout=timeout_sec) as response:
        body = response.read().decode("utf-8")
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Google Sheets response must be a JSON object.")
    return data


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _error_payload(source: str, message: str) -> dict[str, Any]:
    return {
        "ok": False,
        "source": source,
        "error": message,
    }


def read_sheet_values(
    *,
    spreadsheet_id: str,
    range_name: str,
    access_token: str,
    timeout_sec: int = DEFAULT_TIMEOUT_SEC,
) -> dict[str, Any]:
    """Return every row in `range_name` as lists of strings (row 0 is the header)."""
    source = "google_sheets_read"
    if not spreadsheet_id:
        return _error_payload(source, "spreadsheet_id must be non-empty.")
    if not range_name:
        return _error_payload(source, "range_name must be non-empty.")

    url = _build_values_get_url(spreadsheet_id, range_name)
    try:
        payload = _fetch_json(url, _authorized_headers(access_token), timeout_sec)
    except Exception as exc:
        return _error_payload(source, f"Failed to read sheet rows: {exc}")

    values = payload.get("values")
    raw_rows = values if isinstance(values, list) else []
    rows = [[_cell_text(cell) for cell in row] if isinstance(row, list) else [] for row in raw_rows]
    return {
        "ok": True,
        "source": source,
        "range": payload.get("range"),
        "rows": rows,
        "rows_count": len(rows),
        "error": None,
    }


def append_sheet_rows(
    *,
    spreadsheet_id: str,
    range_name: str,
    rows: list[list[Any]],
    access_token: str,
    timeout_sec: int = DEFAULT_TIMEOUT_SEC,
) -> dict[str, Any]:
    """Append `rows` after the last row of the table in `range_name`."""
    source = "google_sheets_append"
    if not spreadsheet_id:
        return _error_payload(source, "spreadsheet_id must be non-empty.")
    if not range_name:
        return _error_payload(source, "range_name must be non-empty.")
    if not rows:
        return _error_payload(source, "rows must contain at least one row.")

    url = _build_values_append_url(spreadsheet_id, range_name)
    body = {"values": [[_cell_text(cell) for cell in row] for row in rows]}
    try:
        payload = _post_json(url, _authorized_headers(access_token), body, timeout_sec)
    except Exception as exc:
        return _error_payload(source, f"Failed to append rows: {exc}")

    updates = payload.get("updates") if isinstance(payload.get("updates"), dict) else {}
    return {
        "ok": True,
        "source": source,
        "updated_range": updates.get("updatedRange"),
        "updated_rows": updates.get("updatedRows"),
        "error": None,
    }
