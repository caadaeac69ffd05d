"""Core pipeline components for the sheet screener."""

from .config_loader import (
    clear_config_cache,
    get_default_model,
    get_model_by_alias,
    get_model_config,
    get_provider_config,
    get_section,
    load_config,
    resolve_config_path,
)
from .credential_store import CredentialStore, IdentityRecord
from .cursor import CursorTracker, FileScalarStorage
from .errors import (
    AuthFailure,
    ModelCallFailure,
    ResponseParseFailure,
    ScreenerError,
    SinkWriteFailure,
    SourceReadFailure,
)
from .evaluator import EvaluationResult, Evaluator, extract_json_object, validate_result_payload
from .llm_client import call_llm
from .logging_setup import configure_logging
from .pipeline import PipelineSettings, ScreeningPipeline, create_pipeline, load_pipeline_settings
from .rate_limiter import PacingLimiter
from .rubric import Rubric, load_rubric_text
from .scheduler import SchedulerSettings, ScreeningScheduler, load_scheduler_settings
from .sink_writer import SheetSinkWriter
from .source_reader import SheetSourceReader, SourceBatch, TableLocator, row_to_record, rows_to_new_records
from .token_refresher import OAuthSettings, TokenRefresher, is_token_valid, load_oauth_settings

__all__ = [
    "AuthFailure",
    "CredentialStore",
    "CursorTracker",
    "EvaluationResult",
    "Evaluator",
    "FileScalarStorage",
    "IdentityRecord",
    "ModelCallFailure",
    "OAuthSettings",
    "PacingLimiter",
    "PipelineSettings",
    "ResponseParseFailure",
    "Rubric",
    "SchedulerSettings",
    "ScreenerError",
    "ScreeningPipeline",
    "ScreeningScheduler",
    "SheetSinkWriter",
    "SheetSourceReader",
    "SinkWriteFailure",
    "SourceBatch",
    "SourceReadFailure",
    "TableLocator",
    "TokenRefresher",
    "call_llm",
    "clear_config_cache",
    "configure_logging",
    "create_pipeline",
    "extract_json_object",
    "get_default_model",
    "get_model_by_alias",
    "get_model_config",
    "get_provider_config",
    "get_section",
    "is_token_valid",
    "load_config",
    "load_oauth_settings",
    "load_pipeline_settings",
    "load_rubric_text",
    "load_scheduler_settings",
    "resolve_config_path",
    "row_to_record",
    "rows_to_new_records",
    "validate_result_payload",
]
