from __future__ import annotations

import json
import sys
from pathlib import Path
from threading import Event

from src.screener.daemon.main import main, run_daemon


class _FakeRuntime:
    def __init__(self) -> None:
        self.starts: list[dict] = []
        self.stops: list[dict] = []
        self.ticks = 0
        self.sweeps = 0
        self.evaluated: list[list] = []

    def start(self, **kwargs):
        self.starts.append(kwargs)
        return {"ok": True}

    def stop(self, **kwargs):
        self.stops.append(kwargs)
        return {"ok": True}

    def trigger_tick(self, *, wait: bool = True):
        self.ticks += 1
        return {"ok": True, "status": "completed", "wait": wait}

    def run_token_sweep(self):
        self.sweeps += 1
        return {"ok": False, "failed_accounts": ["a"]}

    def evaluate_candidates(self, records):
        self.evaluated.append(records)
        return {"ok": True, "results": [], "evaluated": 0, "skipped": len(records)}


def test_run_daemon_no_app_start_and_stop(monkeypatch):
    fake = _FakeRuntime()
    stop_event = Event()
    stop_event.set()
    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)

    out = run_daemon(with_app=False, stop_event=stop_event)
    assert out == 0
    assert len(fake.starts) == 1
    assert fake.starts[0]["source"] == "daemon"
    assert fake.starts[0]["start_scheduler_if_enabled"] is True
    assert len(fake.stops) == 1
    assert fake.stops[0]["source"] == "daemon"


def test_run_daemon_with_app_invokes_uvicorn(monkeypatch):
    fake = _FakeRuntime()
    calls = {"run": 0}

    class _FakeUvicorn:
        @staticmethod
        def run(*args, **kwargs):
            assert args == ("app.main:app",)
            assert kwargs["port"] == 9000
            calls["run"] += 1
            return None

    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setitem(sys.modules, "uvicorn", _FakeUvicorn)

    out = run_daemon(with_app=True, host="127.0.0.1", port=9000)
    assert out == 0
    assert calls["run"] == 1
    assert len(fake.starts) == 1
    assert len(fake.stops) == 1


def test_main_parses_no_app_args(monkeypatch):
    fake = _FakeRuntime()
    stop_event = Event()
    stop_event.set()
    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.screener.daemon.main.configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(
        "src.screener.daemon.main.run_daemon",
        lambda **kwargs: run_daemon(with_app=False, stop_event=stop_event, **{k: v for k, v in kwargs.items() if k != "with_app"}),
    )

    out = main(["--no-app", "--tick-sec", "0.1"])
    assert out == 0


def test_main_once_runs_single_tick(monkeypatch, capsys):
    fake = _FakeRuntime()
    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.screener.daemon.main.configure_logging", lambda *args, **kwargs: None)

    assert main(["--once"]) == 0
    assert fake.ticks == 1
    assert fake.starts == []
    assert json.loads(capsys.readouterr().out)["status"] == "completed"


def test_main_sweep_once_reports_failure_exit_code(monkeypatch):
    fake = _FakeRuntime()
    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.screener.daemon.main.configure_logging", lambda *args, **kwargs: None)

    assert main(["--sweep-once"]) == 1
    assert fake.sweeps == 1


def test_main_evaluate_file(monkeypatch, tmp_path: Path):
    fake = _FakeRuntime()
    monkeypatch.setattr("src.screener.daemon.main.get_runtime_service", lambda: fake)
    monkeypatch.setattr("src.screener.daemon.main.configure_logging", lambda *args, **kwargs: None)
    path = tmp_path / "candidates.json"
    path.write_text(json.dumps([{"name": "Alice"}]), encoding="utf-8")

    assert main(["--evaluate-file", str(path)]) == 0
    assert fake.evaluated == [[{"name": "Alice"}]]

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"name": "Alice"}), encoding="utf-8")
    assert main(["--evaluate-file", str(bad)]) == 2
    assert main(["--evaluate-file", str(tmp_path / "missing.json")]) == 2
