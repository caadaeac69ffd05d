"""Gemini generateContent adapter."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError
from urllib.parse import quote
from urllib.request import Request, urlopen

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

PERMISSIVE_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
)


def permissive_safety_settings() -> list[dict[str, str]]:
    return [{"category": category, "threshold": "BLOCK_NONE"} for category in PERMISSIVE_SAFETY_CATEGORIES]


def _post_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: int) -> dict[str, Any]:
    req = Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers=headers,
        method="POST",
    )
    try:
        with urlopen(req, timeout=timeout_sec) as response:
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        detail = body.strip() or str(exc)
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict):
                err = parsed.get("error")
                if isinstance(err, dict):
                    detail = str(err.get("message") or err.get("status") or detail)
                elif isinstance(err, str):
                    detail = err
        except json.JSONDecodeError:
            pass
        raise RuntimeError(f"HTTP {exc.code}: {detail}") from exc
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ValueError("Provider response must be a JSON object.")
    return parsed


def _response_text(raw: dict[str, Any]) -> tuple[str | None, str | None]:
    candidates = raw.get("candidates")
    first = candidates[0] if isinstance(candidates, list) and candidates else {}
    if not isinstance(first, dict):
        first = {}
    content = first.get("content") if isinstance(first.get("content"), dict) else {}
    parts = content.get("parts") if isinstance(content.get("parts"), list) else []
    texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    finish_reason = first.get("finishReason") if isinstance(first.get("finishReason"), str) else None
    return ("".join(texts) if texts else None), finish_reason


def call_gemini(
    *,
    api_key: str,
    model: str,
    user_text: str,
    system_instruction: str | None = None,
    safety_settings: list[dict[str, str]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    timeout_sec: int = 60,
    base_url: str = GEMINI_API_BASE,
) -> dict[str, Any]:
    """Call Gemini generateContent and normalize the output."""
    url = f"{base_url.rstrip('/')}/models/{quote(model, safe='')}:generateContent?key={quote(api_key, safe='')}"
    headers = {"Content-Type": "application/json"}

    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": user_text}]}],
    }
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    if safety_settings:
        payload["safetySettings"] = safety_settings
    generation_config: dict[str, Any] = {}
    if temperature is not None:
        generation_config["temperature"] = float(temperature)
    if max_output_tokens is not None:
        generation_config["maxOutputTokens"] = int(max_output_tokens)
    if generation_config:
        payload["generationConfig"] = generation_config

    raw = _post_json(url, headers=headers, payload=payload, timeout_sec=timeout_sec)
    text, finish_reason = _response_text(raw)
    feedback = raw.get("promptFeedback") if isinstance(raw.get("promptFeedback"), dict) else {}
    block_reason = feedback.get("blockReason")

    return {
        "ok": True,
        "provider": "gemini",
        "model": model,
        "text": text,
        "finish_reason": finish_reason or block_reason,
        "usage": raw.get("usageMetadata"),
        "raw": raw,
        "error": None,
    }
