"""Pull unconsumed candidate rows from the source spreadsheet."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from src.screener.tools.kernel.google_sheets import read_sheet_values

from .credential_store import IdentityRecord
from .errors import SourceReadFailure
from .token_refresher import TokenRefresher

logger = logging.getLogger(__name__)

CandidateRecord = dict[str, Any]


@dataclass(slots=True, frozen=True)
class TableLocator:
    spreadsheet_id: str
    range_name: str

    def is_complete(self) -> bool:
        return bool(self.spreadsheet_id.strip()) and bool(self.range_name.strip())


@dataclass(slots=True)
class SourceBatch:
    records: list[CandidateRecord] = field(default_factory=list)
    # Absolute row index (header = 0) of each record, same order as `records`.
    row_indices: list[int] = field(default_factory=list)
    # `len(rows) - 1` at read time; None when the table was empty.
    last_row_index: int | None = None


def row_to_record(headers: list[str], row: list[Any]) -> CandidateRecord:
    return {header: (row[idx] if idx < len(row) else None) for idx, header in enumerate(headers)}


def rows_to_new_records(rows: list[list[Any]], cursor: int) -> SourceBatch:
    """Map the rows after `cursor` to header-keyed records."""
    if not rows:
        return SourceBatch()
    headers = [str(cell) for cell in rows[0]]
    start = max(0, int(cursor)) + 1
    batch = SourceBatch(last_row_index=len(rows) - 1)
    for idx in range(start, len(rows)):
        batch.records.append(row_to_record(headers, rows[idx]))
        batch.row_indices.append(idx)
    return batch


class SheetSourceReader:
    def __init__(self, refresher: TokenRefresher, *, timeout_sec: int = 15) -> None:
        self._refresher = refresher
        self._timeout_sec = timeout_sec

    def fetch_new_records(self, identity: IdentityRecord, locator: TableLocator, cursor: int) -> SourceBatch:
        """Read the full table and return rows after `cursor`. Read-only."""
        if not locator.is_complete():
            raise SourceReadFailure("Source spreadsheet_id/range is not configured.")

        token = self._refresher.get_valid_token(identity)
        out = read_sheet_values(
            spreadsheet_id=locator.spreadsheet_id,
            range_name=locator.range_name,
            access_token=token,
            timeout_sec=self._timeout_sec,
        )
        if not out.get("ok"):
            raise SourceReadFailure(str(out.get("error") or "Source read failed."))

        rows = out.get("rows") if isinstance(out.get("rows"), list) else []
        batch = rows_to_new_records(rows, cursor)
        if batch.last_row_index is None:
            logger.info("No data found in source %s", locator.range_name)
        elif not batch.records:
            logger.info("No new rows found after row %s", cursor)
        else:
            logger.info("Fetched %s new row(s) after row %s", len(batch.records), cursor)
        return batch
