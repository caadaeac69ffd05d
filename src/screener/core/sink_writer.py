"""Append evaluation results to the destination spreadsheet."""

from __future__ import annotations

import logging
from typing import Any

from src.screener.tools.kernel.google_sheets import append_sheet_rows

from .credential_store import IdentityRecord
from .errors import SinkWriteFailure
from .evaluator import EvaluationResult
from .source_reader import TableLocator
from .token_refresher import TokenRefresher

logger = logging.getLogger(__name__)


class SheetSinkWriter:
    def __init__(
        self,
        refresher: TokenRefresher,
        *,
        locator: TableLocator,
        field_order: list[str],
        timeout_sec: int = 15,
    ) -> None:
        self._refresher = refresher
        self.locator = locator
        self._field_order = list(field_order)
        self._timeout_sec = timeout_sec

    def append(self, identity: IdentityRecord, result: EvaluationResult) -> dict[str, Any]:
        """Append one row; failures are logged and reported, never raised."""
        try:
            out = self._append_or_raise(identity, result)
        except SinkWriteFailure as exc:
            logger.error("Failed to add result to spreadsheet: %s", exc)
            return {"ok": False, "source": "sink_writer", "error": str(exc), "error_code": exc.error_code}
        logger.info("Result added to spreadsheet (decision=%s)", result.decision)
        return out

    def _append_or_raise(self, identity: IdentityRecord, result: EvaluationResult) -> dict[str, Any]:
        if not self.locator.is_complete():
            raise SinkWriteFailure("Target spreadsheet_id/range is not configured.")
        token = self._refresher.get_valid_token(identity)
        out = append_sheet_rows(
            spreadsheet_id=self.locator.spreadsheet_id,
            range_name=self.locator.range_name,
            rows=[result.to_row(self._field_order)],
            access_token=token,
            timeout_sec=self._timeout_sec,
        )
        if not out.get("ok"):
            raise SinkWriteFailure(str(out.get("error") or "Append failed."))
        return out
