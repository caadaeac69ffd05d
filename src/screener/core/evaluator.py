"""Evaluate one candidate record with a single paced model call."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import ModelCallFailure, ResponseParseFailure
from .llm_client import call_llm
from .rate_limiter import PacingLimiter
from .rubric import Rubric

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EvaluationResult:
    decision: str
    summary: str
    # Identifying fields echoed by the model (e.g. `candidate_tg`).
    extra: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, str]:
        return {**self.extra, "summary": self.summary, "decision": self.decision}

    def to_row(self, field_order: list[str] | tuple[str, ...]) -> list[str]:
        values = self.as_dict()
        return [values.get(name, "") for name in field_order]


def _loads_object(raw: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Best-effort JSON object extraction from free-form model text.

    First tries the span from the first `{` to the first `}`; when that does not
    parse, scans for the first balanced-brace span that does. The scan stops at
    the first `{` that is never closed.
    """
    if not isinstance(text, str) or not text:
        return None
    begin = text.find("{")
    end = text.find("}")
    if begin == -1 or end == -1:
        return None
    if end > begin:
        payload = _loads_object(text[begin : end + 1])
        if payload is not None:
            return payload

    for start_idx in range(begin, len(text)):
        if text[start_idx] != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        closed = False
        for end_idx in range(start_idx, len(text)):
            token = text[end_idx]
            if in_string:
                if escaped:
                    escaped = False
                elif token == "\\":
                    escaped = True
                elif token == '"':
                    in_string = False
                continue
            if token == '"':
                in_string = True
            elif token == "{":
                depth += 1
            elif token == "}":
                depth -= 1
                if depth == 0:
                    closed = True
                    payload = _loads_object(text[start_idx : end_idx + 1])
                    if payload is not None:
                        return payload
                    break
        if not closed:
            # Unclosed `{`, typically a reply cut off at max_output_tokens.
            return None
    return None


def validate_result_payload(payload: Mapping[str, Any], rubric: Rubric) -> EvaluationResult:
    """Check a parsed response against the rubric's result schema."""
    missing = [name for name in rubric.result_fields if name not in payload]
    if missing:
        raise ResponseParseFailure(f"response missing field(s): {', '.join(missing)}")

    decision = payload.get("decision")
    if not isinstance(decision, str) or decision.strip() not in rubric.decisions:
        raise ResponseParseFailure(f"decision must be one of: {', '.join(rubric.decisions)}")
    summary = payload.get("summary")
    if not isinstance(summary, str):
        raise ResponseParseFailure("summary must be a string")

    extra: dict[str, str] = {}
    for name in rubric.result_fields:
        if name in {"decision", "summary"}:
            continue
        value = payload.get(name)
        extra[name] = "" if value is None else (value if isinstance(value, str) else json.dumps(value, ensure_ascii=False))
    return EvaluationResult(decision=decision.strip(), summary=summary, extra=extra)


class Evaluator:
    def __init__(self, *, rubric: Rubric, limiter: PacingLimiter, model: str | None = None) -> None:
        self.rubric = rubric
        self.limiter = limiter
        self._model = model

    def evaluate(self, record: Mapping[str, Any]) -> EvaluationResult | None:
        """Return a validated result, or None when the call or the parse fails."""
        try:
            return self.evaluate_or_raise(record)
        except (ModelCallFailure, ResponseParseFailure) as exc:
            logger.warning("Candidate skipped (%s): %s", exc.error_code, exc)
            return None

    def evaluate_or_raise(self, record: Mapping[str, Any]) -> EvaluationResult:
        user_text = json.dumps(dict(record), ensure_ascii=False)
        with self.limiter.slot():
            out = call_llm(
                user_text=user_text,
                system_instruction=self.rubric.instruction,
                model=self._model,
            )
        if not out.get("ok"):
            raise ModelCallFailure(str(out.get("error") or "model call failed"))

        text = out.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ResponseParseFailure(f"empty model response (finish_reason={out.get('finish_reason')})")
        payload = extract_json_object(text)
        if payload is None:
            raise ResponseParseFailure("no JSON object in model response")
        result = validate_result_payload(payload, self.rubric)
        logger.info("Candidate evaluated: decision=%s", result.decision)
        return result
