"""
Ledger store interface.

The engine never reaches for a global ledger; every component receives a
LedgerStore. Implementations raise LedgerStoreError (or a subclass) for any
persistence failure and InvariantViolation for writes that would break a
ledger invariant.
"""

from datetime import date, datetime
from typing import List, Optional, Protocol, runtime_checkable

from ..models import (
    AISuggestion,
    Bill,
    CashFlowForecast,
    DocumentType,
    Invoice,
    LedgerDocument,
    Payment,
    PeriodType,
    Reconciliation,
    RiskFlag,
    RiskFlagStatus,
    SuggestionFeedback,
    SuggestionStatus,
)


@runtime_checkable
class LedgerStore(Protocol):
    """Persistence operations consumed by the engine."""

    # Ledger documents
    def list_bills(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Bill]: ...

    def list_invoices(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Invoice]: ...

    def list_payments(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Payment]: ...

    def get_document(self, document_type: DocumentType, document_id: str) -> LedgerDocument: ...

    def get_payment(self, payment_id: str) -> Payment: ...

    def update_payment(
        self,
        payment_id: str,
        bill_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> Payment: ...

    def mark_paid(
        self,
        document_type: DocumentType,
        document_id: str,
        paid_at: Optional[datetime] = None,
    ) -> LedgerDocument: ...

    def set_paid_amount(
        self,
        document_type: DocumentType,
        document_id: str,
        paid_amount_cents: int,
        is_paid: bool,
        paid_at: Optional[datetime] = None,
    ) -> LedgerDocument: ...

    def apply_match(
        self,
        document_type: DocumentType,
        document_id: str,
        payment_id: str,
        paid_at: Optional[datetime] = None,
    ) -> None: ...

    def unapply_match(
        self,
        document_type: DocumentType,
        document_id: str,
        payment_id: str,
    ) -> None: ...

    # Reconciliations
    def list_reconciliations(self) -> List[Reconciliation]: ...

    def upsert_reconciliation(self, reconciliation: Reconciliation) -> Reconciliation: ...

    # Risk flags
    def list_risk_flags(self, status: Optional[RiskFlagStatus] = None) -> List[RiskFlag]: ...

    def upsert_risk_flag(self, flag: RiskFlag) -> RiskFlag: ...

    def insert_risk_flag(self, flag: RiskFlag) -> RiskFlag: ...

    def set_risk_flag_status(self, flag_id: str, status: RiskFlagStatus) -> RiskFlag: ...

    # Forecasts
    def upsert_cash_flow_forecast(self, row: CashFlowForecast) -> CashFlowForecast: ...

    def list_cash_flow_forecasts(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        period_type: Optional[PeriodType] = None,
    ) -> List[CashFlowForecast]: ...

    # Suggestions and feedback
    def insert_ai_suggestion(self, suggestion: AISuggestion) -> AISuggestion: ...

    def get_suggestion(self, suggestion_id: str) -> AISuggestion: ...

    def update_suggestion(self, suggestion: AISuggestion) -> AISuggestion: ...

    def list_suggestions(self, status: Optional[SuggestionStatus] = None) -> List[AISuggestion]: ...

    def insert_feedback(self, feedback: SuggestionFeedback) -> SuggestionFeedback: ...

    def list_feedback(self, limit: Optional[int] = None) -> List[SuggestionFeedback]: ...
