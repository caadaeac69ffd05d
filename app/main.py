"""Local control API for the sheet screener runtime."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from src.screener.core.logging_setup import configure_logging
from src.screener.runtime.service import get_runtime_service

app = FastAPI(title="Sheet Screener")


class TickRequest(BaseModel):
    wait: bool = True


class LocatorUpdateRequest(BaseModel):
    source_spreadsheet_id: str | None = None
    source_range: str | None = None
    sink_spreadsheet_id: str | None = None
    sink_range: str | None = None


class AuthorizationRequest(BaseModel):
    account_key: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in_sec: int | None = Field(default=None, gt=0)


@app.on_event("startup")
def _init_runtime_client() -> None:
    # Scheduler ownership belongs to the daemon; the app only serves control calls.
    configure_logging()
    get_runtime_service().start(start_scheduler_if_enabled=False, source="app")


@app.get("/health")
def health() -> dict:
    return {"serverStatus": "UP", **get_runtime_service().health()}


@app.get("/api/pipeline/status")
def pipeline_status() -> dict:
    return get_runtime_service().pipeline_status()


@app.post("/api/pipeline/tick")
def pipeline_tick(req: TickRequest | None = None) -> dict:
    wait = True if req is None else req.wait
    return get_runtime_service().trigger_tick(wait=wait)


@app.post("/api/pipeline/locators")
def pipeline_locators(req: LocatorUpdateRequest) -> dict:
    fields = req.model_dump()
    if not any(isinstance(value, str) and value.strip() for value in fields.values()):
        raise HTTPException(status_code=400, detail="At least one locator field is required.")
    return get_runtime_service().update_locators(**fields)


@app.post("/api/scheduler/start")
def scheduler_start() -> dict:
    return get_runtime_service().scheduler_start()


@app.post("/api/scheduler/stop")
def scheduler_stop() -> dict:
    return get_runtime_service().scheduler_stop()


@app.post("/api/credentials/sweep")
def credentials_sweep() -> dict:
    return get_runtime_service().run_token_sweep()


@app.post("/api/identities")
def record_identity(req: AuthorizationRequest) -> dict:
    out = get_runtime_service().record_authorization(
        account_key=req.account_key,
        access_token=req.access_token,
        refresh_token=req.refresh_token,
        expires_in_sec=req.expires_in_sec,
    )
    if not out.get("ok"):
        raise HTTPException(status_code=400, detail=out.get("error") or "authorization rejected")
    return out


@app.get("/api/identities/{account_key}")
def identity_status(account_key: str) -> dict:
    return get_runtime_service().identity_status(account_key=account_key)
