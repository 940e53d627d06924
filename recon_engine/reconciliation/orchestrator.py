"""
Reconciliation Orchestrator - Main pipeline coordinator.

Orchestrates one reconciliation run:
1. Gap detection
2. Cash-flow forecast
3. Match suggestion
4. Status reconciliation
5. Result aggregation (the run's audit trail stays retrievable by run id)

Every stage runs even when an earlier one failed; failures are reported on
the RunResult by stage name.
"""

from collections import OrderedDict
from datetime import date
from typing import Dict, List, Optional

import structlog

from ..config import get_settings
from ..exceptions import RecordNotFound
from ..integrations import CandidateScorer, build_scorer
from ..models import (
    AccountingMethod,
    AuditAction,
    AuditEntry,
    CashFlowForecast,
    GapReport,
    ReconciliationScope,
    RiskFlagStatus,
    RiskFlagType,
    RunResult,
    RunStage,
    utc_now,
)
from ..store import LedgerStore
from ..utils import AuditLogger
from .forecast import ForecastEngine
from .gap_detector import DateInput, GapDetector, compute_data_completeness
from .match_suggester import MatchSuggester
from .status import StatusReconciler

logger = structlog.get_logger()


class ReconciliationOrchestrator:
    """
    Main orchestrator for the reconciliation pipeline.

    The store and scorer are injected; nothing here holds global state.
    """

    def __init__(
        self,
        store: LedgerStore,
        scorer: Optional[CandidateScorer] = None,
    ):
        self.settings = get_settings()
        self.store = store
        self.scorer = scorer or build_scorer()
        self.gap_detector = GapDetector(store)
        self.forecast_engine = ForecastEngine(store)
        self.match_suggester = MatchSuggester(store, self.scorer)
        self.status_reconciler = StatusReconciler(store)
        self._audit_logs: Dict[str, AuditLogger] = OrderedDict()

    async def run_reconciliation(
        self,
        scope: ReconciliationScope = ReconciliationScope.ALL,
    ) -> RunResult:
        """
        Execute the full reconciliation pipeline.

        Args:
            scope: payable, receivable or all

        Returns:
            RunResult with counters, stage outputs and audit trail
        """
        scope = ReconciliationScope(scope)
        result = RunResult(scope=scope.value)
        audit = AuditLogger(result.run_id)

        audit.log(AuditEntry(
            action=AuditAction.RUN_STARTED,
            message=f"Reconciliation run started ({scope.value})",
            details={"scope": scope.value},
        ))

        # Stage 1: Gap detection
        try:
            result.gap_report = self.gap_detector.detect()
            audit.log_many(result.gap_report.audit_entries)
            if result.gap_report.errors:
                self._fail(
                    result, audit, RunStage.GAP_DETECTION,
                    f"{len(result.gap_report.errors)} risk flag write(s) failed",
                )
        except Exception as e:
            logger.exception("Gap detection failed", run_id=result.run_id)
            self._fail(result, audit, RunStage.GAP_DETECTION, str(e))

        # Stage 2: Forecast
        try:
            result.forecasts = self._forecast(result.gap_report)
            audit.log(AuditEntry(
                action=AuditAction.FORECAST_WRITTEN,
                stage=RunStage.FORECAST,
                message=f"Wrote {len(result.forecasts)} forecast rows",
            ))
        except Exception as e:
            logger.exception("Forecast failed", run_id=result.run_id)
            self._fail(result, audit, RunStage.FORECAST, str(e))

        # Stage 3: Match suggestion
        try:
            result.match_report = await self.match_suggester.suggest(scope)
            audit.log_many(result.match_report.audit_entries)
            result.warnings.extend(result.match_report.warnings)
        except Exception as e:
            logger.exception("Match suggestion failed", run_id=result.run_id)
            self._fail(result, audit, RunStage.MATCH_SUGGESTION, str(e))

        # Stage 4: Status reconciliation
        try:
            counts = self.status_reconciler.reconcile(scope)
            audit.log_many(self.status_reconciler.audit_entries)
            result.matched = counts.matched
            result.partial = counts.partial
            result.unmatched = counts.unmatched
            result.discrepancies = counts.discrepancies
            if self.status_reconciler.errors:
                self._fail(
                    result, audit, RunStage.STATUS_RECONCILIATION,
                    f"{len(self.status_reconciler.errors)} reconciliation write(s) failed",
                )
        except Exception as e:
            logger.exception("Status reconciliation failed", run_id=result.run_id)
            self._fail(result, audit, RunStage.STATUS_RECONCILIATION, str(e))

        result.insights = self._insights(result)
        result.completed_at = utc_now()

        audit.log(AuditEntry(
            action=AuditAction.RUN_COMPLETED,
            message="Reconciliation run complete",
            success=result.succeeded,
            details={
                "matched": result.matched,
                "partial": result.partial,
                "unmatched": result.unmatched,
                "failed_stages": list(result.failed_stages),
            },
        ))
        result.audit_log = audit.get_entries()
        self._retain(audit)

        logger.info(
            "Reconciliation run complete",
            run_id=result.run_id,
            scope=scope.value,
            matched=result.matched,
            partial=result.partial,
            unmatched=result.unmatched,
            failed_stages=list(result.failed_stages),
        )
        return result

    def get_audit_log(self, run_id: str) -> AuditLogger:
        """Audit trail of a run executed by this orchestrator."""
        audit = self._audit_logs.get(run_id)
        if audit is None:
            raise RecordNotFound("run", run_id)
        return audit

    def _retain(self, audit: AuditLogger) -> None:
        self._audit_logs[audit.run_id] = audit
        while len(self._audit_logs) > max(1, self.settings.audit_runs_retained):
            self._audit_logs.popitem(last=False)

    def detect_gaps(
        self,
        start_date: DateInput = None,
        end_date: DateInput = None,
    ) -> GapReport:
        return self.gap_detector.detect(start_date, end_date)

    def get_forecast(
        self,
        days: Optional[int] = None,
        accounting_method: AccountingMethod = AccountingMethod.ACCRUAL,
        start: Optional[date] = None,
    ) -> List[CashFlowForecast]:
        """
        Project daily cash flow without running gap detection.

        Completeness is computed from the current ledger and the missing
        invoice count is taken from open missing-invoice risk flags.
        """
        bills = self.store.list_bills()
        invoices = self.store.list_invoices()
        payments = self.store.list_payments()

        missing = sum(
            1 for flag in self.store.list_risk_flags(RiskFlagStatus.OPEN)
            if flag.flag_type == RiskFlagType.MISSING_INVOICE
        )

        return self.forecast_engine.project(
            bills,
            invoices,
            data_completeness=compute_data_completeness(bills, invoices, payments),
            missing_invoice_count=missing,
            horizon_days=days,
            start=start,
            accounting_method=AccountingMethod(accounting_method),
        )

    def _forecast(self, gap_report: Optional[GapReport]) -> List[CashFlowForecast]:
        bills = self.store.list_bills()
        invoices = self.store.list_invoices()

        if gap_report is None:
            completeness = compute_data_completeness(
                bills, invoices, self.store.list_payments()
            )
            missing = 0
        else:
            completeness = gap_report.data_completeness
            missing = gap_report.missing_invoice_count

        return self.forecast_engine.project(
            bills,
            invoices,
            data_completeness=completeness,
            missing_invoice_count=missing,
        )

    def _fail(
        self,
        result: RunResult,
        audit: AuditLogger,
        stage: RunStage,
        message: str,
    ) -> None:
        result.failed_stages[stage.value] = message
        audit.log(AuditEntry(
            action=AuditAction.STAGE_FAILED,
            stage=stage,
            message=f"Stage {stage.value} failed",
            success=False,
            error_message=message,
        ))

    @staticmethod
    def _insights(result: RunResult) -> str:
        parts = []
        if result.match_report and result.match_report.insights:
            parts.append(result.match_report.insights)
        parts.append(
            f"{result.matched} matched, {result.partial} partial, "
            f"{result.unmatched} unmatched"
        )
        if result.gap_report:
            parts.append(
                f"Risk score {result.gap_report.risk_score}, data completeness "
                f"{result.gap_report.data_completeness:.0%}"
            )
        if result.failed_stages:
            parts.append("Failed stages: " + ", ".join(sorted(result.failed_stages)))
        return ". ".join(parts)
