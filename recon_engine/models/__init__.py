"""Data models for the reconciliation and gap-detection engine."""

from .enums import (
    AccountingMethod,
    AuditAction,
    DocumentType,
    FeedbackType,
    PaymentDirection,
    PeriodType,
    ReconciliationScope,
    ReconciliationStatus,
    RiskFlagStatus,
    RiskFlagType,
    RunStage,
    Severity,
    SuggestionStatus,
    SuggestionType,
)
from .ledger import (
    LedgerDocument,
    Bill,
    Invoice,
    Payment,
    Reconciliation,
    utc_now,
)
from .findings import (
    RiskFlag,
    CashFlowForecast,
    MatchReason,
    AISuggestion,
    SuggestionFeedback,
)
from .reconciliation import (
    MissingDocument,
    DateGap,
    AmountDiscrepancy,
    GapReport,
    SkippedCandidate,
    MatchReport,
    StatusCounts,
    AuditEntry,
    RunResult,
)

__all__ = [
    # Enums
    "AccountingMethod",
    "AuditAction",
    "DocumentType",
    "FeedbackType",
    "PaymentDirection",
    "PeriodType",
    "ReconciliationScope",
    "ReconciliationStatus",
    "RiskFlagStatus",
    "RiskFlagType",
    "RunStage",
    "Severity",
    "SuggestionStatus",
    "SuggestionType",
    # Ledger
    "LedgerDocument",
    "Bill",
    "Invoice",
    "Payment",
    "Reconciliation",
    "utc_now",
    # Findings
    "RiskFlag",
    "CashFlowForecast",
    "MatchReason",
    "AISuggestion",
    "SuggestionFeedback",
    # Results
    "MissingDocument",
    "DateGap",
    "AmountDiscrepancy",
    "GapReport",
    "SkippedCandidate",
    "MatchReport",
    "StatusCounts",
    "AuditEntry",
    "RunResult",
]
