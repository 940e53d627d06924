"""
FastAPI application for the reconciliation and gap-detection engine.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .config import get_settings
from .exceptions import InvariantViolation, RecordNotFound, SuggestionStateError
from .integrations import CandidateScorer
from .models import (
    AccountingMethod,
    PeriodType,
    ReconciliationScope,
    RiskFlagStatus,
    SuggestionStatus,
    utc_now,
)
from .reconciliation import ReconciliationOrchestrator
from .store import InMemoryLedgerStore, LedgerStore

logger = structlog.get_logger()


def setup_logging() -> None:
    """Configure stdlib logging and the structlog processor chain."""
    settings = get_settings()
    level = getattr(logging, settings.app_log_level.upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Request models
class RunRequest(BaseModel):
    scope: ReconciliationScope = ReconciliationScope.ALL


class GapDetectRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class ReviewRequest(BaseModel):
    approve: bool
    notes: Optional[str] = None


class ReverseRequest(BaseModel):
    notes: Optional[str] = None


class RiskFlagStatusRequest(BaseModel):
    status: RiskFlagStatus


class RunSummaryResponse(BaseModel):
    run_id: str
    scope: str
    matched: int
    partial: int
    unmatched: int
    insights: str
    failed_stages: dict
    warnings: List[str]


def create_app(
    store: Optional[LedgerStore] = None,
    scorer: Optional[CandidateScorer] = None,
) -> FastAPI:
    """Build the API around an injected ledger store and scorer."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting reconciliation API", env=settings.app_env)
        yield
        close = getattr(app.state.orchestrator.scorer, "close", None)
        if close is not None:
            await close()
        logger.info("Shutting down reconciliation API")

    app = FastAPI(
        title="Reconciliation Engine",
        description="Gap detection, cash-flow forecasting and match suggestion",
        version=__version__,
        debug=settings.app_debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store if store is not None else InMemoryLedgerStore()
    app.state.orchestrator = ReconciliationOrchestrator(app.state.store, scorer)

    def orchestrator(request: Request) -> ReconciliationOrchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": utc_now().isoformat()}

    @app.post("/api/reconciliation/run", response_model=RunSummaryResponse)
    async def run_reconciliation(body: RunRequest, request: Request):
        result = await orchestrator(request).run_reconciliation(body.scope)
        return RunSummaryResponse(
            run_id=result.run_id,
            scope=result.scope,
            matched=result.matched,
            partial=result.partial,
            unmatched=result.unmatched,
            insights=result.insights,
            failed_stages=result.failed_stages,
            warnings=result.warnings,
        )

    @app.post("/api/gaps/detect")
    async def detect_gaps(body: GapDetectRequest, request: Request):
        report = orchestrator(request).detect_gaps(body.start_date, body.end_date)
        return report.to_dict()

    @app.get("/api/forecast")
    async def get_forecast(
        request: Request,
        days: int = Query(default=settings.forecast_horizon_days, ge=1, le=366),
        accounting_method: AccountingMethod = AccountingMethod.ACCRUAL,
        period_type: PeriodType = PeriodType.DAILY,
        start: Optional[date] = None,
    ):
        orch = orchestrator(request)
        rows = orch.get_forecast(days, accounting_method, start=start)
        if period_type != PeriodType.DAILY:
            rows = orch.forecast_engine.rollup(rows, period_type)
        return {"forecasts": [r.to_dict() for r in rows]}

    @app.get("/api/suggestions")
    async def list_suggestions(
        request: Request,
        status: Optional[SuggestionStatus] = None,
    ):
        suggestions = request.app.state.store.list_suggestions(status)
        return {"suggestions": [s.to_dict() for s in suggestions]}

    @app.post("/api/suggestions/{suggestion_id}/review")
    async def review_suggestion(suggestion_id: str, body: ReviewRequest, request: Request):
        suggester = orchestrator(request).match_suggester
        try:
            suggestion = suggester.review(suggestion_id, body.approve, body.notes)
        except RecordNotFound as e:
            raise HTTPException(404, str(e))
        except (SuggestionStateError, InvariantViolation) as e:
            raise HTTPException(409, str(e))
        return suggestion.to_dict()

    @app.post("/api/suggestions/{suggestion_id}/reverse")
    async def reverse_suggestion(
        suggestion_id: str,
        request: Request,
        body: Optional[ReverseRequest] = None,
    ):
        suggester = orchestrator(request).match_suggester
        try:
            suggestion = suggester.reverse(suggestion_id, body.notes if body else None)
        except RecordNotFound as e:
            raise HTTPException(404, str(e))
        except (SuggestionStateError, InvariantViolation) as e:
            raise HTTPException(409, str(e))
        return suggestion.to_dict()

    @app.get("/api/risk-flags")
    async def list_risk_flags(
        request: Request,
        status: Optional[RiskFlagStatus] = None,
    ):
        flags = request.app.state.store.list_risk_flags(status)
        return {"risk_flags": [f.to_dict() for f in flags]}

    @app.post("/api/risk-flags/{flag_id}/status")
    async def update_risk_flag_status(flag_id: str, body: RiskFlagStatusRequest, request: Request):
        try:
            flag = request.app.state.store.set_risk_flag_status(flag_id, body.status)
        except RecordNotFound as e:
            raise HTTPException(404, str(e))
        return flag.to_dict()

    @app.get("/api/runs/{run_id}/audit")
    async def get_run_audit(
        run_id: str,
        request: Request,
        action: Optional[str] = None,
        success_only: bool = False,
    ):
        try:
            audit = orchestrator(request).get_audit_log(run_id)
        except RecordNotFound as e:
            raise HTTPException(404, str(e))
        return audit.to_dict(action_filter=action, success_only=success_only)

    return app
