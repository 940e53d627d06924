"""Result models returned by the engine's stages and runs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import AuditAction, RunStage
from .findings import CashFlowForecast
from .ledger import utc_now


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)

    action: AuditAction = AuditAction.RUN_STARTED

    entity_ids: List[str] = field(default_factory=list)
    stage: Optional[RunStage] = None

    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "entity_ids": self.entity_ids,
            "stage": self.stage.value if self.stage else None,
            "message": self.message,
            "details": self.details,
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class MissingDocument:
    """A payment with no bill/invoice behind it."""
    payment_id: str
    amount_cents: int
    payment_date: Optional[str]
    reference: Optional[str]
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "amount": self.amount_cents / 100.0,
            "date": self.payment_date,
            "reference": self.reference,
            "description": self.description,
        }


@dataclass
class DateGap:
    """A stretch of more than the allowed number of days without records."""
    start: str
    end: str
    days: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.start,
            "to": self.end,
            "days": self.days,
            "description": self.description,
        }


@dataclass
class AmountDiscrepancy:
    """A reconciliation whose amounts do not line up."""
    reconciliation_id: str
    discrepancy_cents: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reconciliation_id": self.reconciliation_id,
            "discrepancy": self.discrepancy_cents / 100.0,
            "reason": self.reason,
        }


@dataclass
class GapReport:
    """Result of a gap-detection pass."""
    missing_bills: List[MissingDocument] = field(default_factory=list)
    missing_invoices: List[MissingDocument] = field(default_factory=list)
    date_gaps: List[DateGap] = field(default_factory=list)
    amount_discrepancies: List[AmountDiscrepancy] = field(default_factory=list)

    risk_score: int = 100
    data_completeness: float = 1.0

    # Persistence failures while writing flags
    errors: List[str] = field(default_factory=list)
    audit_entries: List[AuditEntry] = field(default_factory=list)

    @property
    def missing_invoice_count(self) -> int:
        return len(self.missing_invoices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "missing_bills": [m.to_dict() for m in self.missing_bills],
            "missing_invoices": [m.to_dict() for m in self.missing_invoices],
            "date_gaps": [g.to_dict() for g in self.date_gaps],
            "amount_discrepancies": [d.to_dict() for d in self.amount_discrepancies],
            "risk_score": self.risk_score,
            "data_completeness": self.data_completeness,
            "errors": self.errors,
        }


@dataclass
class SkippedCandidate:
    """A scorer match that was not persisted or not applied."""
    source_id: str
    target_id: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"source_id": self.source_id, "target_id": self.target_id, "reason": self.reason}


@dataclass
class MatchReport:
    """Result of a match-suggestion pass."""
    total_matches: int = 0
    auto_matched: int = 0
    needs_review: int = 0
    insights: str = ""
    warnings: List[str] = field(default_factory=list)
    skipped: List[SkippedCandidate] = field(default_factory=list)
    suggestion_ids: List[str] = field(default_factory=list)
    audit_entries: List[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_matches": self.total_matches,
            "auto_matched": self.auto_matched,
            "needs_review": self.needs_review,
            "insights": self.insights,
            "warnings": self.warnings,
            "skipped": [s.to_dict() for s in self.skipped],
            "suggestion_ids": self.suggestion_ids,
        }


@dataclass
class StatusCounts:
    """Per-document reconciliation status tallies."""
    matched: int = 0
    partial: int = 0
    unmatched: int = 0
    discrepancies: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class RunResult:
    """Complete result of an orchestrated reconciliation run."""
    run_id: str = field(default_factory=lambda: str(uuid4()))
    scope: str = "all"

    # Caller-facing counters
    matched: int = 0
    partial: int = 0
    unmatched: int = 0
    insights: str = ""

    # Stage outputs
    gap_report: Optional[GapReport] = None
    forecasts: List[CashFlowForecast] = field(default_factory=list)
    match_report: Optional[MatchReport] = None
    discrepancies: List[Dict[str, Any]] = field(default_factory=list)

    # Error handling
    failed_stages: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    audit_log: List[AuditEntry] = field(default_factory=list)

    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return not self.failed_stages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope,
            "matched": self.matched,
            "partial": self.partial,
            "unmatched": self.unmatched,
            "insights": self.insights,
            "gap_report": self.gap_report.to_dict() if self.gap_report else None,
            "forecasts": [f.to_dict() for f in self.forecasts],
            "match_report": self.match_report.to_dict() if self.match_report else None,
            "discrepancies": self.discrepancies,
            "failed_stages": self.failed_stages,
            "warnings": self.warnings,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
