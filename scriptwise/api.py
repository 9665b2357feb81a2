"""
Scriptwise API Server
=====================

FastAPI server exposing script classification, execution, execution memory
and failure diagnosis as HTTP endpoints for automation clients.

Run directly:
    python -m scriptwise.api
    uvicorn scriptwise.api:app --host 127.0.0.1 --port 8790

Port configurable via SCRIPTWISE_API_PORT environment variable (default 8790).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from scriptwise import __version__
from scriptwise.config import ALLOWED_ORIGINS, API_HOST, API_PORT, DEFAULT_TIMEOUT_MS, get_logger
from scriptwise.errors import ConfirmationRequired, ExecutionError, PersistenceError
from scriptwise.intelligence import ScriptIntelligence, get_intelligence

logger = get_logger("scriptwise.api")

# ---------------------------------------------------------------------------
# Pydantic Models -- Requests
# ---------------------------------------------------------------------------


class ClassifyRequest(BaseModel):
    script: str


class ExecuteRequest(BaseModel):
    script: str = Field(..., min_length=1)
    intent: str = ""
    confirmed: bool = False
    timeout_ms: int = Field(DEFAULT_TIMEOUT_MS, description="Clamped to 1000..300000")
    learn: bool = True


class LogRequest(BaseModel):
    intent: str = ""
    script: str = Field(..., min_length=1)
    success: bool
    result: str = ""


class SimilarRequest(BaseModel):
    intent: str
    target: Optional[str] = None
    action: Optional[str] = None
    limit: int = Field(5, ge=0, le=100)
    only_successful: bool = True


class ClearRequest(BaseModel):
    confirm: bool = False


class AnalyzeRequest(BaseModel):
    script: str
    error: str


class SuggestRequest(BaseModel):
    target: str = Field(..., min_length=1)
    intent: str


# ---------------------------------------------------------------------------
# Pydantic Models -- Responses
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    status: str
    timestamp: str
    subsystems: Dict[str, str] = Field(default_factory=dict)
    version: str = __version__


class ActionResponse(BaseModel):
    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Application State
# ---------------------------------------------------------------------------


class AppState:
    """Holds the shared facade for request handlers."""

    def __init__(self) -> None:
        self.intel: Optional[ScriptIntelligence] = None
        self.start_time: float = 0.0


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Scriptwise API on port %d", API_PORT)
    state.start_time = time.monotonic()
    if state.intel is None:
        state.intel = get_intelligence()
    logger.info("Pattern store backend: %s", state.intel.store.backend.describe())
    yield
    logger.info("Shutting down Scriptwise API")


app = FastAPI(
    title="Scriptwise API",
    description="Risk-gated AppleScript execution with learned patterns and failure diagnosis.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_intel() -> ScriptIntelligence:
    if state.intel is None:
        raise HTTPException(503, "Scriptwise not initialized")
    return state.intel


# ===================================================================
# Health
# ===================================================================


@app.get("/health", response_model=StatusResponse, tags=["Health"])
async def health():
    subs: Dict[str, str] = {"intelligence": "ready" if state.intel else "unavailable"}
    if state.intel:
        subs["store"] = state.intel.store.backend.describe()
    uptime = time.monotonic() - state.start_time if state.start_time else 0
    subs["uptime_seconds"] = f"{uptime:.0f}"
    return StatusResponse(status="ok", timestamp=_now_iso(), subsystems=subs)


# ===================================================================
# Safety + Execution
# ===================================================================


@app.post("/classify", tags=["Safety"])
async def classify_script(req: ClassifyRequest):
    """Risk verdict for a script without running it."""
    return _require_intel().classify(req.script).to_dict()


@app.post("/execute", tags=["Execution"])
async def execute_script(req: ExecuteRequest):
    """Classify, gate and run a script. Refused scripts come back with ``executed: false``."""
    intel = _require_intel()
    try:
        outcome = await run_in_threadpool(
            intel.run, req.intent, req.script, req.confirmed, req.timeout_ms, req.learn,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    except ExecutionError as exc:
        raise HTTPException(503, str(exc))
    except PersistenceError as exc:
        raise HTTPException(500, f"Execution ran but could not be recorded: {exc}")
    return outcome.to_dict()


# ===================================================================
# Patterns
# ===================================================================


@app.post("/patterns/log", response_model=ActionResponse, tags=["Patterns"])
async def log_execution(req: LogRequest):
    """Record an execution outcome reported by the caller."""
    intel = _require_intel()
    try:
        record = await run_in_threadpool(intel.record, req.intent, req.script, req.success, req.result)
    except PersistenceError as exc:
        raise HTTPException(500, f"Failed to record execution: {exc}")
    return ActionResponse(
        success=True,
        message="recorded",
        data={"patternId": record.id, "successCount": record.success_count},
    )


@app.post("/patterns/similar", tags=["Patterns"])
async def similar_patterns(req: SimilarRequest) -> List[Dict[str, Any]]:
    records = _require_intel().find_similar(
        req.intent,
        target=req.target,
        action=req.action,
        limit=req.limit,
        only_successful=req.only_successful,
    )
    return [r.to_dict() for r in records]


@app.get("/patterns/target/{target}", tags=["Patterns"])
async def patterns_for_target(target: str) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in _require_intel().by_target(target)]


@app.get("/patterns/stats", tags=["Patterns"])
async def pattern_stats():
    return _require_intel().stats()


@app.get("/patterns/workflow", tags=["Patterns"])
async def workflow_patterns(intent: str, target: Optional[str] = None, action: Optional[str] = None):
    return _require_intel().workflow_patterns(intent, target=target, action=action)


@app.get("/skills/{target}", tags=["Skills"])
async def skill_guide(target: str):
    """Markdown skill notes for an application plus their quick reference."""
    return _require_intel().skill_guide(target)


@app.post("/patterns/clear", response_model=ActionResponse, tags=["Patterns"])
async def clear_patterns(req: ClearRequest):
    """Erase all execution history. Requires ``{"confirm": true}``."""
    intel = _require_intel()
    try:
        await run_in_threadpool(intel.clear_history, req.confirm)
    except ConfirmationRequired as exc:
        raise HTTPException(409, str(exc))
    except PersistenceError as exc:
        raise HTTPException(500, f"Failed to clear history: {exc}")
    return ActionResponse(success=True, message="Execution history cleared")


# ===================================================================
# Diagnosis
# ===================================================================


@app.post("/analyze", tags=["Diagnosis"])
async def analyze_failure(req: AnalyzeRequest):
    """Generic taxonomy analysis plus the human-facing message."""
    return _require_intel().analyze(req.script, req.error)


@app.post("/suggest", tags=["Diagnosis"])
async def suggest_script(req: SuggestRequest):
    return _require_intel().suggest(req.target, req.intent).to_dict()


# ===================================================================
# Entry Point
# ===================================================================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(
        "scriptwise.api:app",
        host=API_HOST,
        port=API_PORT,
        reload=False,
        log_level="info",
    )
