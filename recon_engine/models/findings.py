"""Records written by the engine: risk flags, forecasts and match suggestions."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Tuple

from .enums import (
    DocumentType,
    FeedbackType,
    PeriodType,
    RiskFlagStatus,
    RiskFlagType,
    Severity,
    SuggestionStatus,
    SuggestionType,
)
from .ledger import new_id, utc_now


@dataclass
class RiskFlag:
    """A detected data-quality issue tied to one entity."""
    id: str = field(default_factory=new_id)
    flag_type: RiskFlagType = RiskFlagType.MISSING_INVOICE
    severity: Severity = Severity.MEDIUM

    entity_type: str = "payment"
    entity_id: str = ""

    description: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    status: RiskFlagStatus = RiskFlagStatus.OPEN
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> Tuple[str, str]:
        """Unique key of an active flag."""
        return (self.entity_type, self.entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flag_type": self.flag_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class CashFlowForecast:
    """Projected cash position for one (forecast_date, period_type)."""
    forecast_date: date
    period_type: PeriodType = PeriodType.DAILY

    # Amounts (in cents)
    projected_inflow_cents: int = 0
    projected_outflow_cents: int = 0

    confidence_level: float = 1.0
    data_completeness_score: float = 1.0
    risk_factors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> Tuple[date, PeriodType]:
        return (self.forecast_date, self.period_type)

    @property
    def net_position_cents(self) -> int:
        return self.projected_inflow_cents - self.projected_outflow_cents

    @property
    def projected_inflow(self) -> float:
        return self.projected_inflow_cents / 100.0

    @property
    def projected_outflow(self) -> float:
        return self.projected_outflow_cents / 100.0

    @property
    def net_position(self) -> float:
        return self.net_position_cents / 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forecast_date": self.forecast_date.isoformat(),
            "period_type": self.period_type.value,
            "projected_inflow": self.projected_inflow,
            "projected_outflow": self.projected_outflow,
            "net_position": self.net_position,
            "confidence_level": self.confidence_level,
            "data_completeness_score": self.data_completeness_score,
            "risk_factors": self.risk_factors,
        }


@dataclass
class MatchReason:
    """One explanation step behind a suggestion's confidence."""
    rule: str
    score: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "score": self.score, "reason": self.reason}


@dataclass
class AISuggestion:
    """A candidate bill/invoice to payment match with its explanation trail."""
    id: str = field(default_factory=new_id)
    suggestion_type: SuggestionType = SuggestionType.BILL_PAYMENT

    source_type: DocumentType = DocumentType.BILL
    source_id: str = ""
    target_type: str = "payment"
    target_id: str = ""

    confidence_score: float = 0.0
    match_reasons: List[MatchReason] = field(default_factory=list)
    status: SuggestionStatus = SuggestionStatus.PENDING

    # Review
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_applied(self) -> bool:
        """Whether the match currently holds in the ledger."""
        return self.status in (SuggestionStatus.APPROVED, SuggestionStatus.AUTO_MATCHED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "suggestion_type": self.suggestion_type.value,
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "confidence_score": self.confidence_score,
            "match_reasons": [r.to_dict() for r in self.match_reasons],
            "status": self.status.value,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SuggestionFeedback:
    """A reviewer's decision on a suggestion, forwarded to scorers as context."""
    suggestion_id: str
    feedback_type: FeedbackType
    reason: Optional[str] = None
    original_confidence: float = 0.0
    created_at: datetime = field(default_factory=utc_now)

    def as_context_line(self) -> str:
        reason = self.reason or "No reason"
        return (
            f"- {self.feedback_type.value}: {reason} "
            f"(confidence was {self.original_confidence * 100:.0f}%)"
        )
