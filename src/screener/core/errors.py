"""Failure taxonomy for the screening pipeline."""

from __future__ import annotations


class ScreenerError(Exception):
    """Base class; `error_code` is the stable identifier used in logs and status payloads."""

    error_code = "screener_error"


class AuthFailure(ScreenerError):
    """Token exchange rejected, or no identity available for the run."""

    error_code = "auth_failure"


class SourceReadFailure(ScreenerError):
    error_code = "source_read_failure"


class ModelCallFailure(ScreenerError):
    error_code = "model_call_failure"


class ResponseParseFailure(ScreenerError):
    """No JSON object in the model response, or it failed schema validation."""

    error_code = "response_parse_failure"


class SinkWriteFailure(ScreenerError):
    error_code = "sink_write_failure"
