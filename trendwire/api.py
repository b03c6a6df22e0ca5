"""
TRENDWIRE API LAYER
FastAPI triggers for every pipeline stage plus read endpoints for the dashboard

Run with:
    uvicorn trendwire.api:app
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import get_settings
from .models import ROLES, ROLE_NEWSPAPER
from .notifier import ChatNotifier
from .scheduler import (
    PipelineOrchestrator,
    DEFAULT_ANALYZE_LIMIT,
    DEFAULT_EXTRACT_LIMIT,
    DEFAULT_MAX_BATCHES,
)
from .shared.resilience import StageFailure, get_system_status
from .storage import ContentStore, get_storage

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trendwire Trend Monitoring API",
    description="Crawl, extract, analyze and report on industry trends",
    version="1.0.0"
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_orchestrator() -> PipelineOrchestrator:
    return PipelineOrchestrator()


def get_store() -> ContentStore:
    return get_storage()


def get_notifier() -> ChatNotifier:
    return ChatNotifier()


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreditBalanceRequest(BaseModel):
    balance_usd: float = Field(..., ge=0)
    provider: Optional[str] = None


def _run(action: Callable[[], Dict[str, Any]]):
    """Stage result as {"success": true, ...}; StageFailure as HTTP 500"""
    try:
        result = action()
    except StageFailure as e:
        return JSONResponse(
            status_code=500,
            content={"success": False, "stage": e.stage, "error": str(e.cause)},
        )
    return {"success": True, **result}


# =============================================================================
# PIPELINE TRIGGERS (GET for cron services, POST for manual runs)
# =============================================================================

@app.get("/")
def root():
    return {
        "service": "Trendwire",
        "version": "1.0.0",
        "status": "operational",
        "endpoints": {
            "crawl": "GET|POST /admin/crawl",
            "extract": "GET|POST /admin/extract?limit=",
            "analyze": "GET|POST /admin/analyze?limit=&batch_size=&max_batches=",
            "daily": "GET|POST /admin/run-daily",
            "report": "GET|POST /report/daily",
            "usage": "GET /metrics/usage",
            "outputs": "GET /outputs?role=&limit=",
            "health": "GET /health",
        }
    }


@app.api_route("/admin/crawl", methods=["GET", "POST"])
def crawl(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _run(orchestrator.run_crawl)


@app.api_route("/admin/extract", methods=["GET", "POST"])
def extract(
    limit: int = Query(DEFAULT_EXTRACT_LIMIT, ge=1, le=500),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    return _run(lambda: orchestrator.run_extract(limit=limit))


@app.api_route("/admin/analyze", methods=["GET", "POST"])
def analyze(
    limit: int = Query(DEFAULT_ANALYZE_LIMIT, ge=1, le=500),
    batch_size: Optional[int] = Query(None, ge=1, le=100),
    max_batches: int = Query(DEFAULT_MAX_BATCHES, ge=1, le=50),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    if batch_size:
        return _run(lambda: orchestrator.run_analyze_batched(batch_size=batch_size, max_batches=max_batches))
    return _run(lambda: orchestrator.run_analyze(limit=limit))


@app.api_route("/admin/run-daily", methods=["GET", "POST"])
def run_daily(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _run(orchestrator.run_daily)


@app.api_route("/report/daily", methods=["GET", "POST"])
def report_daily(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _run(orchestrator.run_report)


# =============================================================================
# DASHBOARD READS
# =============================================================================

@app.get("/metrics/usage")
def usage_metrics(store: ContentStore = Depends(get_store)):
    return store.read_usage_metrics().to_dict()


@app.get("/outputs")
def list_outputs(
    role: str = Query(..., description="classify, compare, trend, strategy or newspaper"),
    limit: int = Query(20, ge=1, le=200),
    store: ContentStore = Depends(get_store),
):
    if role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Unknown role '{role}'")
    return store.list_outputs_by_role(role, limit)


@app.get("/newspaper/latest")
def latest_newspaper(store: ContentStore = Depends(get_store)):
    editions = store.list_outputs_by_role(ROLE_NEWSPAPER, 1)
    if not editions:
        raise HTTPException(status_code=404, detail="No newspaper generated yet")
    return editions[0]


@app.get("/trends")
def trends(days: int = Query(7, ge=1, le=90), store: ContentStore = Depends(get_store)):
    return store.list_trend_counters(days)


# =============================================================================
# ADMIN
# =============================================================================

@app.post("/admin/credit-balance")
def record_credit_balance(request: CreditBalanceRequest, store: ContentStore = Depends(get_store)):
    provider = request.provider or get_settings().credit_provider
    snapshot_id = store.insert_credit_balance(provider, request.balance_usd)
    return {"success": True, "id": snapshot_id, "provider": provider, "balance_usd": request.balance_usd}


@app.post("/admin/send-notification")
def send_test_notification(notifier: ChatNotifier = Depends(get_notifier)):
    delivered = notifier.notify_success("test notification", "Chat webhook is reachable")
    if not delivered:
        return JSONResponse(status_code=500, content={"success": False, "error": "Notification not delivered"})
    return {"success": True}


@app.get("/health")
def health_check(store: ContentStore = Depends(get_store)):
    settings = get_settings()
    checks = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": {
            "has_anthropic_key": bool(settings.anthropic_api_key),
            "has_gemini_key": bool(settings.gemini_api_key),
            "has_supabase": settings.supabase_configured,
            "has_chat_webhook": bool(settings.chat_webhook_url),
        },
        "database": {"connected": False, "error": None},
        "services": get_system_status(),
    }

    try:
        checks["database"]["connected"] = store.ping()
    except Exception as e:
        checks["database"]["error"] = str(e)
        checks["status"] = "degraded"

    if not checks["services"]["healthy"]:
        checks["status"] = "degraded"

    return JSONResponse(status_code=200 if checks["status"] == "healthy" else 503, content=checks)


# =============================================================================
# RUN SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
