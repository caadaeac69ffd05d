import io
import json
from pathlib import Path
from urllib.error import HTTPError

import pytest

from src.screener.core.config_loader import clear_config_cache
from src.screener.core.llm_client import call_llm
from src.screener.core.providers import gemini as gemini_module
from src.screener.core.providers.gemini import call_gemini, permissive_safety_settings


def _write_config(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture()
def configured_gemini(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    path = tmp_path / "config.json"
    _write_config(
        path,
        {
            "default_model_alias": "screener",
            "model_providers": {"gemini": {"apikey": "KEY_123", "timeout_sec": 30}},
            "models": {
                "gemini-1.5-flash": {
                    "alias": "screener",
                    "provider": "gemini",
                    "endpoint": "gemini-1.5-flash",
                    "temperature": 1.0,
                    "max_output_tokens": 8192,
                }
            },
        },
    )
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(path))
    clear_config_cache()
    return path


def test_call_llm_resolves_and_invokes_gemini(configured_gemini, monkeypatch):
    def fake_call_gemini(**kwargs):
        assert kwargs["model"] == "gemini-1.5-flash"
        assert kwargs["api_key"] == "KEY_123"
        assert kwargs["timeout_sec"] == 30
        assert kwargs["temperature"] == 1.0
        assert kwargs["max_output_tokens"] == 8192
        assert kwargs["system_instruction"] == "rubric"
        assert all(item["threshold"] == "BLOCK_NONE" for item in kwargs["safety_settings"])
        return {"ok": True, "provider": "gemini", "model": kwargs["model"], "text": "{}", "error": None}

    monkeypatch.setattr("src.screener.core.llm_client.call_gemini", fake_call_gemini)
    result = call_llm(user_text="{}", system_instruction="rubric")
    assert result["ok"] is True
    assert result["provider"] == "gemini"


def test_call_llm_provider_exception_is_returned_as_failure(configured_gemini, monkeypatch):
    def boom(**kwargs):
        raise RuntimeError("HTTP 429: Resource has been exhausted")

    monkeypatch.setattr("src.screener.core.llm_client.call_gemini", boom)
    result = call_llm(user_text="{}")
    assert result["ok"] is False
    assert "429" in result["error"]


def test_call_llm_unsupported_provider(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    path = tmp_path / "config.json"
    _write_config(
        path,
        {
            "default_model_alias": "m",
            "model_providers": {"other": {"apikey": "x"}},
            "models": {"m": {"alias": "m", "provider": "other", "endpoint": "x"}},
        },
    )
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(path))
    clear_config_cache()

    result = call_llm(user_text="hi")
    assert result["ok"] is False
    assert "Unsupported provider" in result["error"]


def test_call_llm_missing_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(tmp_path / "missing.json"))
    clear_config_cache()
    result = call_llm(user_text="hi")
    assert result["ok"] is False
    assert "Config file not found" in result["error"]


def test_call_gemini_builds_payload_and_extracts_text(monkeypatch: pytest.MonkeyPatch):
    captured = {}

    def fake_post_json(url, headers, payload, timeout_sec):
        captured["url"] = url
        captured["payload"] = payload
        return {
            "candidates": [
                {"content": {"parts": [{"text": '{"decision": '}, {"text": '"ok"}'}]}, "finishReason": "STOP"}
            ],
            "usageMetadata": {"totalTokenCount": 42},
        }

    monkeypatch.setattr(gemini_module, "_post_json", fake_post_json)
    out = call_gemini(
        api_key="KEY",
        model="gemini-1.5-flash",
        user_text="candidate",
        system_instruction="rubric",
        safety_settings=permissive_safety_settings(),
        temperature=1.0,
        max_output_tokens=8192,
    )

    assert out["ok"] is True
    assert out["text"] == '{"decision": "ok"}'
    assert out["finish_reason"] == "STOP"
    assert "models/gemini-1.5-flash:generateContent?key=KEY" in captured["url"]
    assert captured["payload"]["systemInstruction"] == {"parts": [{"text": "rubric"}]}
    assert captured["payload"]["generationConfig"] == {"temperature": 1.0, "maxOutputTokens": 8192}
    assert len(captured["payload"]["safetySettings"]) == 4


def test_call_gemini_blocked_prompt_has_no_text(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        gemini_module,
        "_post_json",
        lambda url, headers, payload, timeout_sec: {"promptFeedback": {"blockReason": "SAFETY"}},
    )
    out = call_gemini(api_key="KEY", model="m", user_text="x")
    assert out["text"] is None
    assert out["finish_reason"] == "SAFETY"


def test_post_json_http_error_surfaces_provider_message(monkeypatch: pytest.MonkeyPatch):
    def fake_urlopen(req, timeout):
        body = io.BytesIO(json.dumps({"error": {"message": "API key not valid"}}).encode("utf-8"))
        raise HTTPError(req.full_url, 400, "Bad Request", hdrs=None, fp=body)

    monkeypatch.setattr(gemini_module, "urlopen", fake_urlopen)
    with pytest.raises(RuntimeError, match="HTTP 400: API key not valid"):
        gemini_module._post_json("https://example.invalid", {}, {}, 5)
