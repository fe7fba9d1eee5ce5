"""
FastAPI Backend for the Moneybird Invoice Agent

Provides REST API endpoints for:
- Triggering a pipeline run
- Reading the processing log and daily summaries
- Recording operator corrections
- Health checks
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import os

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from moneybird_agent import __version__
from moneybird_agent.config.exception import ConfigurationError
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings, load_settings
from moneybird_agent.graph.workflow import InvoiceProcessingWorkflow
from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.summary import DailySummary, generate_daily_summary
from moneybird_agent.scheduler import BUSY, PipelineScheduler
from moneybird_agent.storage.state_store import StateStore

# Initialize logger
logger = setup_logger("FastAPIApp", "fastapi_app.log")

# Singletons, created on first use
settings: Optional[Settings] = None
store: Optional[StateStore] = None
scheduler: Optional[PipelineScheduler] = None


# Response Models
class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    scheduler_running: bool = False


class CorrectionRequest(BaseModel):
    invoice_id: str
    field: str
    original_value: Optional[str] = None
    corrected_value: str
    corrected_by: Optional[str] = None


class CorrectionResponse(BaseModel):
    id: int
    invoice_id: str
    field: str


# Helper Functions
def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = load_settings()
    return settings


def get_store() -> StateStore:
    global store
    if store is None:
        store = StateStore(get_settings().database_path)
    return store


def get_scheduler() -> PipelineScheduler:
    """Get or create the scheduler wrapping the workflow"""
    global scheduler
    if scheduler is None:
        logger.info("Initializing workflow...")
        config = get_settings()
        workflow = InvoiceProcessingWorkflow(config, store=get_store())
        notifier = NotificationDispatcher.from_settings(config)
        scheduler = PipelineScheduler(
            run_once=workflow.run,
            interval_minutes=config.run_interval_minutes,
            daily_summary=lambda: notifier.send_daily_summary(generate_daily_summary(get_store())),
            daily_summary_time=config.daily_summary_time,
        )
    return scheduler


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@asynccontextmanager
async def lifespan(_: FastAPI):
    started = None
    if os.getenv("SCHEDULER_ENABLED", "false").lower() == "true":
        started = get_scheduler()
        started.start()
    yield
    if started is not None:
        started.stop(timeout=5)


# Initialize FastAPI app
app = FastAPI(
    title="Moneybird Invoice Agent",
    description="AI-assisted processing of Moneybird purchase invoices",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API Endpoints
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        timestamp=_utc_timestamp(),
        version=__version__,
        scheduler_running=bool(scheduler and scheduler.running),
    )


@app.post("/run")
def run_pipeline() -> Dict[str, Any]:
    """
    Process the next unprocessed invoice.

    Returns 409 while another run (scheduled or manual) is in progress.
    """
    try:
        pipeline = get_scheduler()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    result = pipeline.trigger()
    if result == BUSY:
        raise HTTPException(status_code=409, detail="A pipeline run is already in progress")
    return result


@app.get("/processing-log")
def processing_log(
    date: Optional[str] = Query(None, description="Day to show (YYYY-MM-DD)"),
    limit: int = Query(100, ge=1, le=1000),
) -> List[Dict[str, Any]]:
    """Processing log entries, newest first"""
    return get_store().get_processing_logs(date=date, limit=limit)


@app.post("/corrections", response_model=CorrectionResponse, status_code=201)
def create_correction(correction: CorrectionRequest):
    """Record an operator correction to an invoice field"""
    correction_id = get_store().record_correction(
        correction.invoice_id,
        correction.field,
        correction.original_value,
        correction.corrected_value,
        correction.corrected_by,
    )
    logger.info(f"Correction recorded for invoice {correction.invoice_id}: {correction.field}")
    return CorrectionResponse(id=correction_id, invoice_id=correction.invoice_id, field=correction.field)


@app.get("/corrections")
def list_corrections(invoice_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return get_store().list_corrections(invoice_id)


@app.get("/daily-summary", response_model=DailySummary)
def daily_summary(date: Optional[str] = Query(None, description="Day to summarize (YYYY-MM-DD)")):
    return generate_daily_summary(get_store(), date)


# Run with: uvicorn app:app --reload --port 8000
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
