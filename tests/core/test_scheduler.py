import json
import time
from pathlib import Path
from threading import Event

import pytest

from src.screener.core.config_loader import clear_config_cache
from src.screener.core.scheduler import SchedulerSettings, ScreeningScheduler, load_scheduler_settings


class _FakePipeline:
    def __init__(self, *, block: Event | None = None) -> None:
        self.block = block
        self.entered = Event()
        self.ticks = 0
        self._running = False

    @property
    def in_flight(self) -> bool:
        return self._running

    def run_tick(self) -> dict:
        self._running = True
        self.entered.set()
        try:
            if self.block is not None:
                self.block.wait(timeout=5)
            self.ticks += 1
            return {"ok": True, "status": "completed", "fetched": 0, "written": 0}
        finally:
            self._running = False


class _FakeRefresher:
    def __init__(self) -> None:
        self.sweeps = 0

    def sweep(self) -> dict:
        self.sweeps += 1
        return {"ok": True, "source": "token_sweep", "identities": 1, "refreshed": 1, "failed_accounts": []}


def _scheduler(pipeline, refresher, clock=lambda: 0.0) -> ScreeningScheduler:
    settings = SchedulerSettings(enabled=True, poll_interval_sec=1, pipeline_interval_sec=60, token_sweep_interval_sec=3600)
    return ScreeningScheduler(pipeline=pipeline, refresher=refresher, settings=settings, clock=clock)


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_run_due_fires_pipeline_immediately_and_sweep_after_interval():
    pipeline = _FakePipeline()
    refresher = _FakeRefresher()
    scheduler = _scheduler(pipeline, refresher)

    first = scheduler.run_due(now=0.0)
    assert first["pipeline"]["started"] is True
    assert first["token_sweep"] is None
    assert _wait_for(lambda: pipeline.ticks == 1 and not scheduler.status()["tick_in_flight"])

    assert scheduler.run_due(now=30.0)["pipeline"] is None
    assert scheduler.run_due(now=60.0)["pipeline"]["started"] is True

    out = scheduler.run_due(now=3600.0)
    assert out["token_sweep"]["refreshed"] == 1
    assert refresher.sweeps == 1
    assert scheduler.run_due(now=3700.0)["token_sweep"] is None


def test_trigger_while_tick_in_flight_is_dropped():
    block = Event()
    pipeline = _FakePipeline(block=block)
    scheduler = _scheduler(pipeline, _FakeRefresher())

    assert scheduler.trigger_pipeline()["started"] is True
    assert pipeline.entered.wait(timeout=2)

    dropped = scheduler.trigger_pipeline()
    assert dropped["started"] is False
    assert dropped["error"] == "tick_in_flight"
    assert any(event["type"] == "tick_dropped" for event in scheduler.recent_events())

    block.set()
    assert _wait_for(lambda: not scheduler.status()["tick_in_flight"])
    assert pipeline.ticks == 1
    assert scheduler.trigger_pipeline(wait=True)["started"] is True
    assert pipeline.ticks == 2


def test_start_and_stop_loop():
    pipeline = _FakePipeline()
    scheduler = ScreeningScheduler(
        pipeline=pipeline,
        refresher=_FakeRefresher(),
        settings=SchedulerSettings(enabled=True, poll_interval_sec=1, pipeline_interval_sec=60),
    )

    started = scheduler.start()
    assert started["running"] is True
    assert scheduler.start()["already_running"] is True
    assert _wait_for(lambda: pipeline.ticks == 1)
    assert scheduler.status()["running"] is True

    stopped = scheduler.stop()
    assert stopped["running"] is False
    assert scheduler.status()["running"] is False


def test_run_token_sweep_records_last_result():
    scheduler = _scheduler(_FakePipeline(), _FakeRefresher())
    scheduler.run_token_sweep()
    status = scheduler.status()
    assert status["last_token_sweep"]["refreshed"] == 1
    assert status["event_buffer_count"] == 1


def test_load_scheduler_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"scheduler": {"enabled": True, "pipeline_interval_sec": 120, "token_sweep_interval_sec": -5}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(path))
    clear_config_cache()

    settings = load_scheduler_settings()
    assert settings.enabled is True
    assert settings.pipeline_interval_sec == 120
    assert settings.token_sweep_interval_sec == 3600
