"""Daemon entrypoint: scheduler plus optional local control API."""

from __future__ import annotations

import argparse
import json
import logging
import signal
from pathlib import Path
from threading import Event
from typing import Any

from src.screener.core.logging_setup import configure_logging
from src.screener.runtime.service import get_runtime_service

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: Event) -> None:
    def _handler(_sig, _frame) -> None:  # type: ignore[no-untyped-def]
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def run_daemon(
    *,
    with_app: bool = True,
    host: str = "127.0.0.1",
    port: int = 8000,
    tick_sec: float = 0.5,
    stop_event: Event | None = None,
) -> int:
    runtime = get_runtime_service()
    runtime.start(start_scheduler_if_enabled=True, source="daemon")

    if with_app:
        try:
            import uvicorn
        except Exception as exc:  # pragma: no cover - dependency error guard
            runtime.stop(source="daemon")
            raise RuntimeError("uvicorn is required for daemon app mode") from exc

        try:
            uvicorn.run("app.main:app", host=host, port=port, reload=False)
        finally:
            runtime.stop(source="daemon")
        return 0

    signal_event = stop_event or Event()
    _install_signal_handlers(signal_event)
    try:
        while not signal_event.is_set():
            signal_event.wait(timeout=max(0.05, tick_sec))
    finally:
        runtime.stop(source="daemon")
    return 0


def run_once() -> int:
    out = get_runtime_service().trigger_tick(wait=True)
    _print_json(out)
    return 0 if out.get("ok") else 1


def run_sweep_once() -> int:
    out = get_runtime_service().run_token_sweep()
    _print_json(out)
    return 0 if out.get("ok") else 1


def run_evaluate_file(path: str) -> int:
    """Evaluate a local JSON list of candidate records and print the verdicts."""
    try:
        records = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Could not read candidates file %s: %s", path, exc)
        return 2
    if not isinstance(records, list):
        logger.error("Candidates file %s must contain a JSON list", path)
        return 2
    out = get_runtime_service().evaluate_candidates(records)
    _print_json(out)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the sheet screener daemon.")
    parser.add_argument("--host", default="127.0.0.1", help="Local bind host for app mode.")
    parser.add_argument("--port", type=int, default=8000, help="Local bind port for app mode.")
    parser.add_argument(
        "--no-app",
        action="store_true",
        help="Run scheduler daemon loop without launching local app server.",
    )
    parser.add_argument(
        "--tick-sec",
        type=float,
        default=0.5,
        help="Idle loop poll interval when running without app.",
    )
    parser.add_argument("--once", action="store_true", help="Run one pipeline tick and exit.")
    parser.add_argument("--sweep-once", action="store_true", help="Refresh every stored token and exit.")
    parser.add_argument(
        "--evaluate-file",
        metavar="PATH",
        default=None,
        help="Evaluate candidates from a local JSON list without cursor or sink.",
    )
    args = parser.parse_args(argv)
    configure_logging()

    if args.evaluate_file:
        return run_evaluate_file(args.evaluate_file)
    if args.sweep_once:
        return run_sweep_once()
    if args.once:
        return run_once()
    return run_daemon(
        with_app=not args.no_app,
        host=args.host,
        port=args.port,
        tick_sec=max(0.05, float(args.tick_sec)),
    )


if __name__ == "__main__":
    raise SystemExit(main())
