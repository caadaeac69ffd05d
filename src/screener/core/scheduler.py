"""Periodic driver for pipeline ticks and the hourly token sweep."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Event, RLock, Thread
from time import monotonic
from typing import Any, Callable
from uuid import uuid4

from .config_loader import get_section
from .pipeline import ScreeningPipeline
from .token_refresher import TokenRefresher

logger = logging.getLogger(__name__)

EVENT_BUFFER_LIMIT = 500


@dataclass(slots=True)
class SchedulerSettings:
    enabled: bool = False
    poll_interval_sec: int = 5
    pipeline_interval_sec: int = 60
    token_sweep_interval_sec: int = 60 * 60


def load_scheduler_settings() -> SchedulerSettings:
    cfg = get_section("scheduler")
    if not cfg:
        return SchedulerSettings()

    poll = cfg.get("poll_interval_sec", 5)
    pipeline_every = cfg.get("pipeline_interval_sec", 60)
    sweep_every = cfg.get("token_sweep_interval_sec", 60 * 60)
    return SchedulerSettings(
        enabled=bool(cfg.get("enabled", False)),
        poll_interval_sec=int(poll) if isinstance(poll, int) and poll > 0 else 5,
        pipeline_interval_sec=int(pipeline_every) if isinstance(pipeline_every, int) and pipeline_every > 0 else 60,
        token_sweep_interval_sec=int(sweep_every) if isinstance(sweep_every, int) and sweep_every > 0 else 60 * 60,
    )


class ScreeningScheduler:
    """Single-process loop; at most one pipeline tick in flight, overlapping ticks are dropped."""

    def __init__(
        self,
        *,
        pipeline: ScreeningPipeline,
        refresher: TokenRefresher,
        settings: SchedulerSettings | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._pipeline = pipeline
        self._refresher = refresher
        self._settings = settings or load_scheduler_settings()
        self._clock = clock
        self._lock = RLock()
        self._stop_event = Event()
        self._loop_thread: Thread | None = None
        self._tick_thread: Thread | None = None
        self._next_pipeline_at: float | None = None
        self._next_sweep_at: float | None = None
        self._events: list[dict[str, Any]] = []
        self._last_sweep: dict[str, Any] | None = None

    @property
    def settings(self) -> SchedulerSettings:
        return self._settings

    @staticmethod
    def _utc_now_iso() -> str:
        from datetime import UTC, datetime

        return datetime.now(tz=UTC).isoformat()

    def _record_event(self, *, event_type: str, payload: dict[str, Any] | None = None) -> None:
        event = {
            "event_id": f"sevt_{uuid4().hex}",
            "type": event_type,
            "timestamp": self._utc_now_iso(),
            "payload": payload or {},
        }
        with self._lock:
            self._events.append(event)
            if len(self._events) > EVENT_BUFFER_LIMIT:
                self._events = self._events[-EVENT_BUFFER_LIMIT:]

    def recent_events(self, *, limit: int = 20) -> list[dict[str, Any]]:
        safe_limit = max(1, min(200, int(limit)))
        with self._lock:
            return [dict(event) for event in self._events[-safe_limit:]]

    def start(self) -> dict[str, Any]:
        with self._lock:
            if self._loop_thread is not None and self._loop_thread.is_alive():
                return {"ok": True, "running": True, "already_running": True}
            self._stop_event.clear()
            # First pipeline tick fires immediately; the first sweep waits a full interval.
            now = self._clock()
            self._next_pipeline_at = now
            self._next_sweep_at = now + self._settings.token_sweep_interval_sec
            self._loop_thread = Thread(target=self._run_loop, daemon=True, name="screener-scheduler")
            self._loop_thread.start()
        logger.info(
            "Scheduler started: pipeline every %ss, token sweep every %ss",
            self._settings.pipeline_interval_sec,
            self._settings.token_sweep_interval_sec,
        )
        return {"ok": True, "running": True, "already_running": False}

    def stop(self) -> dict[str, Any]:
        with self._lock:
            thread = self._loop_thread
            self._stop_event.set()
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)
        with self._lock:
            self._loop_thread = None
        logger.info("Scheduler stopped")
        return {"ok": True, "running": False}

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_due()
            except Exception:
                logger.exception("Scheduler iteration failed")
            self._stop_event.wait(timeout=max(1, self._settings.poll_interval_sec))

    def run_due(self, now: float | None = None) -> dict[str, Any]:
        """Fire whichever jobs are due at `now`, rescheduling each from its due time."""
        current = self._clock() if now is None else now
        fired: dict[str, Any] = {"pipeline": None, "token_sweep": None}
        with self._lock:
            if self._next_pipeline_at is None:
                self._next_pipeline_at = current
            if self._next_sweep_at is None:
                self._next_sweep_at = current + self._settings.token_sweep_interval_sec
            pipeline_due = current >= self._next_pipeline_at
            sweep_due = current >= self._next_sweep_at
            if pipeline_due:
                self._next_pipeline_at = current + self._settings.pipeline_interval_sec
            if sweep_due:
                self._next_sweep_at = current + self._settings.token_sweep_interval_sec

        if sweep_due:
            fired["token_sweep"] = self.run_token_sweep()
        if pipeline_due:
            fired["pipeline"] = self.trigger_pipeline()
        return {"ok": True, **fired}

    def _tick_worker(self) -> None:
        try:
            summary = self._pipeline.run_tick()
        except Exception as exc:
            logger.exception("Pipeline tick crashed")
            self._record_event(event_type="tick_failed", payload={"error": str(exc)})
            return
        self._record_event(
            event_type="tick_finished",
            payload={
                key: summary.get(key)
                for key in ("status", "fetched", "written", "skipped", "cursor_before", "cursor_after", "error_code")
            },
        )

    def trigger_pipeline(self, *, wait: bool = False) -> dict[str, Any]:
        """Start a tick on a worker thread unless one is already running."""
        with self._lock:
            active = self._tick_thread
            if (active is not None and active.is_alive()) or self._pipeline.in_flight:
                logger.warning("Pipeline trigger dropped: previous tick still in flight")
                self._record_event(event_type="tick_dropped", payload={"reason": "in_flight"})
                return {"ok": False, "source": "scheduler", "started": False, "error": "tick_in_flight"}
            thread = Thread(target=self._tick_worker, daemon=True, name="screener-pipeline-tick")
            self._tick_thread = thread
            thread.start()
        self._record_event(event_type="tick_started")
        if wait:
            thread.join()
        return {"ok": True, "source": "scheduler", "started": True, "error": None}

    def run_token_sweep(self) -> dict[str, Any]:
        out = self._refresher.sweep()
        with self._lock:
            self._last_sweep = out
        self._record_event(
            event_type="token_sweep",
            payload={"refreshed": out.get("refreshed"), "failed_accounts": out.get("failed_accounts")},
        )
        return out

    def status(self) -> dict[str, Any]:
        with self._lock:
            running = self._loop_thread is not None and self._loop_thread.is_alive()
            tick_running = self._tick_thread is not None and self._tick_thread.is_alive()
            now = self._clock()
            next_pipeline = None if self._next_pipeline_at is None else max(0.0, self._next_pipeline_at - now)
            next_sweep = None if self._next_sweep_at is None else max(0.0, self._next_sweep_at - now)
            last_sweep = dict(self._last_sweep) if isinstance(self._last_sweep, dict) else None
            event_count = len(self._events)
        return {
            "ok": True,
            "source": "scheduler",
            "running": running,
            "tick_in_flight": tick_running or self._pipeline.in_flight,
            "enabled_in_config": self._settings.enabled,
            "poll_interval_sec": self._settings.poll_interval_sec,
            "pipeline_interval_sec": self._settings.pipeline_interval_sec,
            "token_sweep_interval_sec": self._settings.token_sweep_interval_sec,
            "next_pipeline_in_sec": next_pipeline,
            "next_token_sweep_in_sec": next_sweep,
            "last_token_sweep": last_sweep,
            "event_buffer_count": event_count,
        }
