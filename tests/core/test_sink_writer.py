from datetime import UTC, datetime, timedelta

import pytest

from src.screener.core.credential_store import IdentityRecord
from src.screener.core.evaluator import EvaluationResult
from src.screener.core.sink_writer import SheetSinkWriter
from src.screener.core.source_reader import TableLocator


class _FakeRefresher:
    def get_valid_token(self, identity: IdentityRecord) -> str:
        return "token"


def _identity() -> IdentityRecord:
    return IdentityRecord("alice", "token", "refresh", datetime.now(tz=UTC) + timedelta(hours=1))


def _result() -> EvaluationResult:
    return EvaluationResult(
        decision="Соответствует требованиям",
        summary="Solid React experience",
        extra={"candidate_tg": "@alice"},
    )


def test_append_writes_fields_in_configured_order(monkeypatch: pytest.MonkeyPatch):
    calls: list[dict] = []

    def fake_append(**kwargs):
        calls.append(kwargs)
        return {"ok": True, "source": "google_sheets_append", "updated_rows": 1, "error": None}

    monkeypatch.setattr("src.screener.core.sink_writer.append_sheet_rows", fake_append)
    writer = SheetSinkWriter(
        _FakeRefresher(),
        locator=TableLocator("target", "Results!A:C"),
        field_order=["candidate_tg", "summary", "decision"],
    )

    out = writer.append(_identity(), _result())

    assert out["ok"] is True
    assert len(calls) == 1
    assert calls[0]["rows"] == [["@alice", "Solid React experience", "Соответствует требованиям"]]
    assert calls[0]["spreadsheet_id"] == "target"


def test_append_failure_is_reported_not_raised(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        "src.screener.core.sink_writer.append_sheet_rows",
        lambda **kwargs: {"ok": False, "error": "HTTP 500"},
    )
    writer = SheetSinkWriter(_FakeRefresher(), locator=TableLocator("t", "A:C"), field_order=["summary", "decision"])

    out = writer.append(_identity(), _result())

    assert out["ok"] is False
    assert out["error_code"] == "sink_write_failure"
    assert "HTTP 500" in out["error"]


def test_append_without_locator_fails_cleanly():
    writer = SheetSinkWriter(_FakeRefresher(), locator=TableLocator("", ""), field_order=["decision"])
    out = writer.append(_identity(), _result())
    assert out["ok"] is False
