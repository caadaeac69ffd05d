"""Provider-agnostic LLM client entrypoint."""

from __future__ import annotations

from typing import Any

from .config_loader import get_model_config, get_provider_config, load_config
from .providers import call_gemini, permissive_safety_settings


def _failure(*, provider: str | None, model: str | None, error: str) -> dict[str, Any]:
    return {
        "ok": False,
        "provider": provider,
        "model": model,
        "text": None,
        "finish_reason": None,
        "usage": None,
        "raw": None,
        "error": error,
    }


def call_llm(
    *,
    user_text: str,
    system_instruction: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    timeout_sec: int | None = None,
) -> dict[str, Any]:
    """Resolve model/provider from config and execute one model call. Never raises."""
    try:
        payload = load_config()
        model_id, model_cfg = get_model_config(model, payload)
    except (FileNotFoundError, ValueError) as exc:
        return _failure(provider=None, model=model, error=str(exc))

    provider_name = model_cfg.get("provider")
    if not isinstance(provider_name, str) or not provider_name:
        return _failure(provider=None, model=model_id, error=f"Model '{model_id}' missing provider.")

    try:
        provider_cfg = get_provider_config(provider_name, payload)
    except ValueError as exc:
        return _failure(provider=provider_name, model=model_id, error=str(exc))

    endpoint = model_cfg.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint:
        return _failure(provider=provider_name, model=model_id, error=f"Model '{model_id}' missing endpoint.")

    if provider_name != "gemini":
        return _failure(provider=provider_name, model=model_id, error=f"Unsupported provider '{provider_name}'.")

    api_key = provider_cfg.get("apikey")
    if not isinstance(api_key, str) or not api_key:
        return _failure(provider=provider_name, model=model_id, error="Gemini API key missing.")

    provider_timeout = timeout_sec
    if provider_timeout is None:
        configured = provider_cfg.get("timeout_sec")
        provider_timeout = int(configured) if isinstance(configured, int) and configured > 0 else 60
    if temperature is None and isinstance(model_cfg.get("temperature"), (int, float)):
        temperature = float(model_cfg["temperature"])
    if max_output_tokens is None and isinstance(model_cfg.get("max_output_tokens"), int):
        max_output_tokens = int(model_cfg["max_output_tokens"])

    try:
        return call_gemini(
            api_key=api_key,
            model=endpoint,
            user_text=user_text,
            system_instruction=system_instruction,
            safety_settings=permissive_safety_settings(),
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout_sec=provider_timeout,
            base_url=provider_cfg.get("base_url", None) or "https://generativelanguage.googleapis.com/v1beta",
        )
    except Exception as exc:
        return _failure(provider=provider_name, model=model_id, error=str(exc))
