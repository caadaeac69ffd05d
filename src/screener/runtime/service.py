"""Shared runtime ownership facade for daemon/app entrypoints."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any

from src.screener.core.credential_store import DEFAULT_TOKEN_LIFETIME_SEC, CredentialStore
from src.screener.core.pipeline import ScreeningPipeline, create_pipeline
from src.screener.core.scheduler import ScreeningScheduler, load_scheduler_settings
from src.screener.core.source_reader import TableLocator
from src.screener.core.token_refresher import TokenRefresher, is_token_valid, load_oauth_settings

logger = logging.getLogger(__name__)


class RuntimeService:
    """Single authority for runtime lifecycle + app-facing operations."""

    def __init__(
        self,
        *,
        credential_store: CredentialStore | None = None,
        refresher: TokenRefresher | None = None,
        pipeline: ScreeningPipeline | None = None,
        scheduler: ScreeningScheduler | None = None,
    ) -> None:
        self._lock = RLock()
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None
        self._store = credential_store
        self._refresher = refresher
        self._pipeline = pipeline
        self._scheduler = scheduler

    def _get_store(self) -> CredentialStore:
        with self._lock:
            if self._store is None:
                self._store = self._refresher.store if self._refresher is not None else CredentialStore()
            return self._store

    def _get_refresher(self) -> TokenRefresher:
        with self._lock:
            if self._refresher is None:
                self._refresher = TokenRefresher(self._get_store(), settings=load_oauth_settings())
            return self._refresher

    def _get_pipeline(self) -> ScreeningPipeline:
        with self._lock:
            if self._pipeline is None:
                self._pipeline = create_pipeline(
                    credential_store=self._get_store(),
                    refresher=self._get_refresher(),
                )
            return self._pipeline

    def _get_scheduler(self) -> ScreeningScheduler:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = ScreeningScheduler(
                    pipeline=self._get_pipeline(),
                    refresher=self._get_refresher(),
                    settings=load_scheduler_settings(),
                )
            return self._scheduler

    def start(self, *, start_scheduler_if_enabled: bool = True, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            already_started = self._started
            self._started = True
            self._last_start_source = source

        scheduler_started = False
        if start_scheduler_if_enabled:
            scheduler = self._get_scheduler()
            if scheduler.settings.enabled:
                out = scheduler.start()
                scheduler_started = bool(out.get("ok")) and not bool(out.get("already_running"))

        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
            "scheduler_started": scheduler_started,
        }

    def stop(self, *, source: str = "runtime") -> dict[str, Any]:
        scheduler_stopped = False
        with self._lock:
            scheduler = self._scheduler
        if scheduler is not None and scheduler.status().get("running"):
            scheduler_stopped = bool(scheduler.stop().get("ok"))

        with self._lock:
            self._started = False
            self._last_stop_source = source

        return {
            "ok": True,
            "source": "runtime_service",
            "stopped": True,
            "stop_source": source,
            "scheduler_stopped": scheduler_stopped,
        }

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "source": "runtime_service",
            "runtime": {
                "started": self._started,
                "last_start_source": self._last_start_source,
                "last_stop_source": self._last_stop_source,
            },
            "scheduler": self._get_scheduler().status(),
        }

    def pipeline_status(self) -> dict[str, Any]:
        return {
            "ok": True,
            "source": "pipeline_status",
            "pipeline": self._get_pipeline().status(),
            "scheduler": self._get_scheduler().status(),
            "recent_events": self._get_scheduler().recent_events(limit=20),
        }

    def trigger_tick(self, *, wait: bool = True) -> dict[str, Any]:
        """Run one tick now; synchronous by default so callers get the summary."""
        if not wait:
            return self._get_scheduler().trigger_pipeline()
        return self._get_pipeline().run_tick()

    def scheduler_start(self) -> dict[str, Any]:
        return self._get_scheduler().start()

    def scheduler_stop(self) -> dict[str, Any]:
        return self._get_scheduler().stop()

    def run_token_sweep(self) -> dict[str, Any]:
        return self._get_scheduler().run_token_sweep()

    def record_authorization(
        self,
        *,
        account_key: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_in_sec: int | None = None,
    ) -> dict[str, Any]:
        clean_key = str(account_key or "").strip()
        if not clean_key:
            return {"ok": False, "source": "identity_store", "error": "account_key is required."}
        if not str(access_token or "").strip():
            return {"ok": False, "source": "identity_store", "error": "access_token is required."}
        try:
            identity = self._get_store().record_authorization(
                account_key=clean_key,
                access_token=access_token,
                refresh_token=refresh_token,
                lifetime_sec=expires_in_sec if isinstance(expires_in_sec, int) and expires_in_sec > 0 else DEFAULT_TOKEN_LIFETIME_SEC,
            )
        except ValueError as exc:
            return {"ok": False, "source": "identity_store", "error": str(exc)}
        return {"ok": True, "source": "identity_store", "identity": identity.public_view(), "error": None}

    def identity_status(self, *, account_key: str) -> dict[str, Any]:
        identity = self._get_store().get(account_key)
        if identity is None:
            return {
                "ok": True,
                "source": "identity_store",
                "account_key": account_key,
                "known": False,
                "authenticated": False,
            }
        return {
            "ok": True,
            "source": "identity_store",
            "account_key": account_key,
            "known": True,
            "authenticated": is_token_valid(identity),
            "identity": identity.public_view(),
        }

    def update_locators(
        self,
        *,
        source_spreadsheet_id: str | None = None,
        source_range: str | None = None,
        sink_spreadsheet_id: str | None = None,
        sink_range: str | None = None,
    ) -> dict[str, Any]:
        pipeline = self._get_pipeline()
        current_source = pipeline.settings.source
        current_sink = pipeline.settings.sink
        source = TableLocator(
            spreadsheet_id=(source_spreadsheet_id or current_source.spreadsheet_id).strip(),
            range_name=(source_range or current_source.range_name).strip(),
        )
        sink = TableLocator(
            spreadsheet_id=(sink_spreadsheet_id or current_sink.spreadsheet_id).strip(),
            range_name=(sink_range or current_sink.range_name).strip(),
        )
        pipeline.update_locators(source=source, sink=sink)
        logger.info("Locators updated: source=%s sink=%s", source, sink)
        return {
            "ok": True,
            "source": "pipeline_locators",
            "source_table": {"spreadsheet_id": source.spreadsheet_id, "range": source.range_name},
            "sink_table": {"spreadsheet_id": sink.spreadsheet_id, "range": sink.range_name},
        }

    def evaluate_candidates(self, records: list[dict[str, Any]]) -> dict[str, Any]:
        """Evaluate local records without touching the cursor or the sink."""
        evaluator = self._get_pipeline().evaluator
        results: list[dict[str, Any]] = []
        skipped = 0
        for record in records:
            if not isinstance(record, dict):
                skipped += 1
                continue
            result = evaluator.evaluate(record)
            if result is None:
                skipped += 1
                continue
            results.append(result.as_dict())
        return {
            "ok": True,
            "source": "evaluate_candidates",
            "results": results,
            "evaluated": len(results),
            "skipped": skipped,
        }


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE
