"""One end-to-end screening tick: read new rows, evaluate, append verdicts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from typing import Any

from .config_loader import get_section
from .credential_store import CredentialStore, IdentityRecord
from .cursor import DEFAULT_CURSOR_DIR, DEFAULT_CURSOR_KEY, CursorTracker, FileScalarStorage
from .errors import AuthFailure, ScreenerError, SourceReadFailure
from .evaluator import Evaluator
from .rate_limiter import PacingLimiter
from .rubric import DEFAULT_DECISIONS, DEFAULT_RESULT_FIELDS, Rubric, load_rubric_text
from .sink_writer import SheetSinkWriter
from .source_reader import SheetSourceReader, TableLocator
from .token_refresher import TokenRefresher, load_oauth_settings

logger = logging.getLogger(__name__)

ADVANCE_BEFORE_EVALUATION = "before_evaluation"
ADVANCE_AFTER_EVALUATION = "after_evaluation"
CURSOR_ADVANCE_POLICIES = {ADVANCE_BEFORE_EVALUATION, ADVANCE_AFTER_EVALUATION}
DEFAULT_PACING_DELAY_SEC = 20.0


@dataclass(slots=True)
class PipelineSettings:
    account_key: str | None = None
    source: TableLocator = field(default_factory=lambda: TableLocator("", ""))
    sink: TableLocator = field(default_factory=lambda: TableLocator("", ""))
    cursor_dir: str = DEFAULT_CURSOR_DIR
    cursor_key: str = DEFAULT_CURSOR_KEY
    cursor_advance: str = ADVANCE_BEFORE_EVALUATION
    pacing_delay_sec: float = DEFAULT_PACING_DELAY_SEC
    result_fields: tuple[str, ...] = DEFAULT_RESULT_FIELDS
    decisions: tuple[str, ...] = DEFAULT_DECISIONS
    rubric_path: str | None = None
    model: str | None = None
    sheets_timeout_sec: int = 15


def _locator(raw: Any) -> TableLocator:
    block = raw if isinstance(raw, dict) else {}
    spreadsheet_id = block.get("spreadsheet_id")
    range_name = block.get("range")
    return TableLocator(
        spreadsheet_id=spreadsheet_id.strip() if isinstance(spreadsheet_id, str) else "",
        range_name=range_name.strip() if isinstance(range_name, str) else "",
    )


def _string_tuple(raw: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return default
    values = tuple(item.strip() for item in raw if isinstance(item, str) and item.strip())
    return values or default


def load_pipeline_settings() -> PipelineSettings:
    cfg = get_section("pipeline")
    account_key = cfg.get("account_key")
    cursor_dir = cfg.get("cursor_dir", DEFAULT_CURSOR_DIR)
    cursor_key = cfg.get("cursor_key", DEFAULT_CURSOR_KEY)
    advance = str(cfg.get("cursor_advance") or ADVANCE_BEFORE_EVALUATION).strip().lower()
    delay = cfg.get("pacing_delay_sec", DEFAULT_PACING_DELAY_SEC)
    rubric_path = cfg.get("rubric_path")
    model = cfg.get("model")
    timeout = cfg.get("sheets_timeout_sec", 15)

    return PipelineSettings(
        account_key=account_key.strip() if isinstance(account_key, str) and account_key.strip() else None,
        source=_locator(cfg.get("source")),
        sink=_locator(cfg.get("sink")),
        cursor_dir=str(cursor_dir) if isinstance(cursor_dir, str) and cursor_dir.strip() else DEFAULT_CURSOR_DIR,
        cursor_key=str(cursor_key) if isinstance(cursor_key, str) and cursor_key.strip() else DEFAULT_CURSOR_KEY,
        cursor_advance=advance if advance in CURSOR_ADVANCE_POLICIES else ADVANCE_BEFORE_EVALUATION,
        pacing_delay_sec=float(delay) if isinstance(delay, (int, float)) and delay >= 0 else DEFAULT_PACING_DELAY_SEC,
        result_fields=_string_tuple(cfg.get("result_fields"), DEFAULT_RESULT_FIELDS),
        decisions=_string_tuple(cfg.get("decisions"), DEFAULT_DECISIONS),
        rubric_path=rubric_path if isinstance(rubric_path, str) and rubric_path.strip() else None,
        model=model if isinstance(model, str) and model.strip() else None,
        sheets_timeout_sec=int(timeout) if isinstance(timeout, int) and timeout > 0 else 15,
    )


class ScreeningPipeline:
    """Owns the cursor and the per-run collaborators; one tick in flight at a time."""

    def __init__(
        self,
        *,
        settings: PipelineSettings,
        credential_store: CredentialStore,
        refresher: TokenRefresher,
        cursor: CursorTracker,
        reader: SheetSourceReader,
        evaluator: Evaluator,
        sink: SheetSinkWriter,
    ) -> None:
        self.settings = settings
        self.credential_store = credential_store
        self.refresher = refresher
        self.cursor = cursor
        self.reader = reader
        self.evaluator = evaluator
        self.sink = sink
        self._in_flight = Lock()
        self._stats_lock = Lock()
        self._last_tick: dict[str, Any] | None = None
        self._ticks_total = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    @property
    def source_locator(self) -> TableLocator:
        return self.settings.source

    def update_locators(self, *, source: TableLocator | None = None, sink: TableLocator | None = None) -> None:
        if source is not None:
            self.settings.source = source
        if sink is not None:
            self.settings.sink = sink
            self.sink.locator = sink

    def _resolve_identity(self) -> IdentityRecord:
        if self.settings.account_key:
            identity = self.credential_store.get(self.settings.account_key)
        else:
            identity = self.credential_store.first()
        if identity is None:
            raise AuthFailure("User not found: no stored identity for the pipeline.")
        return identity

    def run_tick(self) -> dict[str, Any]:
        """Run one tick to completion, or return immediately if one is already running."""
        if not self._in_flight.acquire(blocking=False):
            logger.warning("Pipeline tick skipped: previous tick still in flight")
            return {"ok": False, "source": "pipeline_tick", "status": "skipped_in_flight", "error": "tick_in_flight"}
        try:
            summary = self._run_tick_locked()
        finally:
            self._in_flight.release()
        with self._stats_lock:
            self._ticks_total += 1
            self._last_tick = summary
        return summary

    def _run_tick_locked(self) -> dict[str, Any]:
        started_at = datetime.now(tz=UTC).isoformat()
        cursor_before = self.cursor.value
        summary: dict[str, Any] = {
            "ok": True,
            "source": "pipeline_tick",
            "status": "completed",
            "started_at": started_at,
            "finished_at": None,
            "cursor_before": cursor_before,
            "cursor_after": cursor_before,
            "fetched": 0,
            "evaluated": 0,
            "written": 0,
            "skipped": 0,
            "sink_failures": 0,
            "error": None,
            "error_code": None,
        }

        try:
            identity = self._resolve_identity()
            batch = self.reader.fetch_new_records(identity, self.settings.source, cursor_before)
        except (AuthFailure, SourceReadFailure) as exc:
            logger.error("Pipeline tick aborted (%s): %s", exc.error_code, exc)
            summary.update(ok=False, status="aborted", error=str(exc), error_code=exc.error_code)
            summary["finished_at"] = datetime.now(tz=UTC).isoformat()
            return summary
        except Exception as exc:
            logger.exception("Pipeline tick aborted by unexpected error")
            summary.update(ok=False, status="aborted", error=str(exc), error_code="unexpected_error")
            summary["finished_at"] = datetime.now(tz=UTC).isoformat()
            return summary

        summary["fetched"] = len(batch.records)
        if batch.last_row_index is None or not batch.records:
            if batch.last_row_index is not None:
                self.cursor.advance_to(batch.last_row_index)
            summary["cursor_after"] = self.cursor.value
            summary["finished_at"] = datetime.now(tz=UTC).isoformat()
            return summary

        advance_first = self.settings.cursor_advance == ADVANCE_BEFORE_EVALUATION
        if advance_first:
            self.cursor.advance_to(batch.last_row_index)

        for record, row_index in zip(batch.records, batch.row_indices):
            try:
                result = self.evaluator.evaluate(record)
                if result is None:
                    summary["skipped"] += 1
                    continue
                summary["evaluated"] += 1
                out = self.sink.append(identity, result)
                if out.get("ok"):
                    summary["written"] += 1
                else:
                    summary["sink_failures"] += 1
            except ScreenerError as exc:
                logger.error("Candidate at row %s failed (%s): %s", row_index, exc.error_code, exc)
                summary["skipped"] += 1
            except Exception:
                logger.exception("Candidate at row %s failed with an unexpected error", row_index)
                summary["skipped"] += 1
            finally:
                if not advance_first:
                    self.cursor.advance_to(row_index)

        if not advance_first:
            self.cursor.advance_to(batch.last_row_index)
        summary["cursor_after"] = self.cursor.value
        summary["finished_at"] = datetime.now(tz=UTC).isoformat()
        logger.info(
            "Pipeline tick finished: fetched=%s written=%s skipped=%s cursor=%s",
            summary["fetched"],
            summary["written"],
            summary["skipped"],
            summary["cursor_after"],
        )
        return summary

    def status(self) -> dict[str, Any]:
        with self._stats_lock:
            last_tick = dict(self._last_tick) if isinstance(self._last_tick, dict) else None
            ticks_total = self._ticks_total
        return {
            "in_flight": self.in_flight,
            "cursor": self.cursor.value,
            "cursor_key": self.cursor.key,
            "cursor_advance": self.settings.cursor_advance,
            "pacing": self.evaluator.limiter.stats(),
            "source": {"spreadsheet_id": self.settings.source.spreadsheet_id, "range": self.settings.source.range_name},
            "sink": {"spreadsheet_id": self.settings.sink.spreadsheet_id, "range": self.settings.sink.range_name},
            "ticks_total": ticks_total,
            "last_tick": last_tick,
        }


def create_pipeline(
    *,
    settings: PipelineSettings | None = None,
    credential_store: CredentialStore | None = None,
    refresher: TokenRefresher | None = None,
) -> ScreeningPipeline:
    """Wire a pipeline from config; explicit arguments override config-derived parts."""
    resolved = settings or load_pipeline_settings()
    store = credential_store or CredentialStore()
    token_refresher = refresher or TokenRefresher(store, settings=load_oauth_settings())
    rubric = Rubric(
        instruction=load_rubric_text(resolved.rubric_path),
        decisions=resolved.decisions,
        result_fields=resolved.result_fields,
    )
    return ScreeningPipeline(
        settings=resolved,
        credential_store=store,
        refresher=token_refresher,
        cursor=CursorTracker(FileScalarStorage(resolved.cursor_dir), key=resolved.cursor_key),
        reader=SheetSourceReader(token_refresher, timeout_sec=resolved.sheets_timeout_sec),
        evaluator=Evaluator(
            rubric=rubric,
            limiter=PacingLimiter(resolved.pacing_delay_sec),
            model=resolved.model,
        ),
        sink=SheetSinkWriter(
            token_refresher,
            locator=resolved.sink,
            field_order=list(resolved.result_fields),
            timeout_sec=resolved.sheets_timeout_sec,
        ),
    )
