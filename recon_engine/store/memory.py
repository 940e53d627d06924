"""
In-memory ledger store.

Every read returns deep copies so callers work on a snapshot; every write
happens under a single re-entrant lock, which makes conflict-key upserts and
the two-write match application atomic.
"""

import copy
import threading
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple, TypeVar

import structlog

from ..exceptions import InvariantViolation, LedgerStoreError, RecordNotFound
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
    utc_now,
)

logger = structlog.get_logger()

T = TypeVar("T")


def _in_range(value: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    if start is None and end is None:
        return True
    if value is None:
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryLedgerStore:
    """Thread-safe LedgerStore kept in process memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self._bills: Dict[str, Bill] = {}
        self._invoices: Dict[str, Invoice] = {}
        self._payments: Dict[str, Payment] = {}
        self._reconciliations: Dict[str, Reconciliation] = {}
        self._risk_flags: Dict[Tuple[str, str], RiskFlag] = {}
        self._forecasts: Dict[Tuple[date, PeriodType], CashFlowForecast] = {}
        self._suggestions: Dict[str, AISuggestion] = {}
        self._feedback: List[SuggestionFeedback] = []

    @staticmethod
    def _snapshot(items: List[T]) -> List[T]:
        return copy.deepcopy(items)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_bill(self, bill: Bill) -> Bill:
        with self._lock:
            self._bills[bill.id] = copy.deepcopy(bill)
        return bill

    def add_invoice(self, invoice: Invoice) -> Invoice:
        with self._lock:
            self._invoices[invoice.id] = copy.deepcopy(invoice)
        return invoice

    def add_payment(self, payment: Payment) -> Payment:
        if payment.bill_id and payment.invoice_id:
            raise InvariantViolation(f"Payment {payment.id} has both bill and invoice links")
        with self._lock:
            self._payments[payment.id] = copy.deepcopy(payment)
        return payment

    def add_reconciliation(self, reconciliation: Reconciliation) -> Reconciliation:
        with self._lock:
            self._reconciliations[reconciliation.id] = copy.deepcopy(reconciliation)
        return reconciliation

    # ------------------------------------------------------------------
    # Ledger documents
    # ------------------------------------------------------------------

    def list_bills(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Bill]:
        with self._lock:
            return self._snapshot([
                b for b in self._bills.values() if _in_range(b.issue_date, start, end)
            ])

    def list_invoices(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Invoice]:
        with self._lock:
            return self._snapshot([
                i for i in self._invoices.values() if _in_range(i.issue_date, start, end)
            ])

    def list_payments(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Payment]:
        with self._lock:
            return self._snapshot([
                p for p in self._payments.values() if _in_range(p.payment_date, start, end)
            ])

    def _documents(self, document_type: DocumentType) -> Dict[str, LedgerDocument]:
        if document_type == DocumentType.BILL:
            return self._bills
        return self._invoices

    def _document(self, document_type: DocumentType, document_id: str) -> LedgerDocument:
        document = self._documents(document_type).get(document_id)
        if document is None:
            raise RecordNotFound(document_type.value, document_id)
        return document

    def _payment(self, payment_id: str) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise RecordNotFound("payment", payment_id)
        return payment

    def get_document(self, document_type: DocumentType, document_id: str) -> LedgerDocument:
        with self._lock:
            return copy.deepcopy(self._document(document_type, document_id))

    def get_payment(self, payment_id: str) -> Payment:
        with self._lock:
            return copy.deepcopy(self._payment(payment_id))

    def update_payment(
        self,
        payment_id: str,
        bill_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> Payment:
        """Link a payment to exactly one bill or invoice."""
        if bill_id and invoice_id:
            raise InvariantViolation("A payment update may set bill_id or invoice_id, not both")

        with self._lock:
            payment = self._payment(payment_id)
            if bill_id and payment.invoice_id:
                raise InvariantViolation(
                    f"Payment {payment_id} is already linked to invoice {payment.invoice_id}"
                )
            if invoice_id and payment.bill_id:
                raise InvariantViolation(
                    f"Payment {payment_id} is already linked to bill {payment.bill_id}"
                )
            if bill_id and payment.bill_id not in (None, bill_id):
                raise InvariantViolation(
                    f"Payment {payment_id} is already linked to bill {payment.bill_id}"
                )
            if invoice_id and payment.invoice_id not in (None, invoice_id):
                raise InvariantViolation(
                    f"Payment {payment_id} is already linked to invoice {payment.invoice_id}"
                )
            if bill_id:
                payment.bill_id = bill_id
            if invoice_id:
                payment.invoice_id = invoice_id
            return copy.deepcopy(payment)

    def mark_paid(
        self,
        document_type: DocumentType,
        document_id: str,
        paid_at: Optional[datetime] = None,
    ) -> LedgerDocument:
        with self._lock:
            document = self._document(document_type, document_id)
            document.is_paid = True
            document.paid_at = paid_at or utc_now()
            return copy.deepcopy(document)

    def set_paid_amount(
        self,
        document_type: DocumentType,
        document_id: str,
        paid_amount_cents: int,
        is_paid: bool,
        paid_at: Optional[datetime] = None,
    ) -> LedgerDocument:
        with self._lock:
            document = self._document(document_type, document_id)
            document.paid_amount_cents = paid_amount_cents
            document.is_paid = is_paid
            document.paid_at = paid_at if is_paid else None
            return copy.deepcopy(document)

    def apply_match(
        self,
        document_type: DocumentType,
        document_id: str,
        payment_id: str,
        paid_at: Optional[datetime] = None,
    ) -> None:
        """
        Link payment -> document and mark the document paid as one unit.

        Both preconditions are checked before either write, so a rejected
        match leaves the ledger untouched.
        """
        with self._lock:
            document = self._document(document_type, document_id)
            payment = self._payment(payment_id)

            if payment.is_linked:
                raise InvariantViolation(
                    f"Payment {payment_id} is already linked "
                    f"(bill={payment.bill_id}, invoice={payment.invoice_id})"
                )
            if document.is_paid:
                raise InvariantViolation(
                    f"{document_type.value} {document_id} is already paid"
                )
            if payment.settles != document_type:
                raise InvariantViolation(
                    f"{payment.direction.value} payment {payment_id} cannot settle "
                    f"{document_type.value} {document_id}"
                )

            if document_type == DocumentType.BILL:
                payment.bill_id = document_id
            else:
                payment.invoice_id = document_id
            document.is_paid = True
            document.paid_amount_cents += payment.amount_cents
            document.paid_at = paid_at or utc_now()

        logger.debug(
            "Match applied",
            document_type=document_type.value,
            document_id=document_id,
            payment_id=payment_id,
        )

    def unapply_match(
        self,
        document_type: DocumentType,
        document_id: str,
        payment_id: str,
    ) -> None:
        with self._lock:
            document = self._document(document_type, document_id)
            payment = self._payment(payment_id)

            linked_to = payment.bill_id if document_type == DocumentType.BILL else payment.invoice_id
            if linked_to != document_id:
                raise InvariantViolation(
                    f"Payment {payment_id} is not linked to {document_type.value} {document_id}"
                )

            if document_type == DocumentType.BILL:
                payment.bill_id = None
            else:
                payment.invoice_id = None
            document.is_paid = False
            document.paid_amount_cents = max(0, document.paid_amount_cents - payment.amount_cents)
            document.paid_at = None

    # ------------------------------------------------------------------
    # Reconciliations
    # ------------------------------------------------------------------

    def list_reconciliations(self) -> List[Reconciliation]:
        with self._lock:
            return self._snapshot(list(self._reconciliations.values()))

    def upsert_reconciliation(self, reconciliation: Reconciliation) -> Reconciliation:
        """Insert or replace, keyed by bill_id or invoice_id."""
        if not reconciliation.bill_id and not reconciliation.invoice_id:
            raise LedgerStoreError("Reconciliation upsert needs a bill_id or invoice_id")

        with self._lock:
            for existing in self._reconciliations.values():
                same_bill = reconciliation.bill_id and existing.bill_id == reconciliation.bill_id
                same_invoice = (
                    reconciliation.invoice_id
                    and existing.invoice_id == reconciliation.invoice_id
                )
                if same_bill or same_invoice:
                    reconciliation.id = existing.id
                    break
            self._reconciliations[reconciliation.id] = copy.deepcopy(reconciliation)
            return copy.deepcopy(reconciliation)

    # ------------------------------------------------------------------
    # Risk flags
    # ------------------------------------------------------------------

    def list_risk_flags(self, status: Optional[RiskFlagStatus] = None) -> List[RiskFlag]:
        with self._lock:
            flags = [
                f for f in self._risk_flags.values()
                if status is None or f.status == status
            ]
            return self._snapshot(flags)

    def upsert_risk_flag(self, flag: RiskFlag) -> RiskFlag:
        """Insert or replace on (entity_type, entity_id); an existing status is kept."""
        with self._lock:
            existing = self._risk_flags.get(flag.key)
            stored = copy.deepcopy(flag)
            if existing is not None:
                stored.id = existing.id
                stored.created_at = existing.created_at
                stored.status = existing.status
            stored.updated_at = utc_now()
            self._risk_flags[flag.key] = stored
            return copy.deepcopy(stored)

    def insert_risk_flag(self, flag: RiskFlag) -> RiskFlag:
        with self._lock:
            if flag.key in self._risk_flags:
                raise LedgerStoreError(
                    f"Risk flag already exists for {flag.entity_type}/{flag.entity_id}"
                )
            self._risk_flags[flag.key] = copy.deepcopy(flag)
            return copy.deepcopy(flag)

    def set_risk_flag_status(self, flag_id: str, status: RiskFlagStatus) -> RiskFlag:
        with self._lock:
            for flag in self._risk_flags.values():
                if flag.id == flag_id:
                    flag.status = RiskFlagStatus(status)
                    flag.updated_at = utc_now()
                    return copy.deepcopy(flag)
            raise RecordNotFound("risk flag", flag_id)

    # ------------------------------------------------------------------
    # Forecasts
    # ------------------------------------------------------------------

    def upsert_cash_flow_forecast(self, row: CashFlowForecast) -> CashFlowForecast:
        """Insert or replace on (forecast_date, period_type)."""
        with self._lock:
            self._forecasts[row.key] = copy.deepcopy(row)
            return copy.deepcopy(row)

    def list_cash_flow_forecasts(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        period_type: Optional[PeriodType] = None,
    ) -> List[CashFlowForecast]:
        with self._lock:
            rows = [
                r for r in self._forecasts.values()
                if _in_range(r.forecast_date, start, end)
                and (period_type is None or r.period_type == period_type)
            ]
            rows.sort(key=lambda r: (r.forecast_date, r.period_type.value))
            return self._snapshot(rows)

    # ------------------------------------------------------------------
    # Suggestions and feedback
    # ------------------------------------------------------------------

    def insert_ai_suggestion(self, suggestion: AISuggestion) -> AISuggestion:
        with self._lock:
            if suggestion.id in self._suggestions:
                raise LedgerStoreError(f"Suggestion already exists: {suggestion.id}")
            self._suggestions[suggestion.id] = copy.deepcopy(suggestion)
            return copy.deepcopy(suggestion)

    def get_suggestion(self, suggestion_id: str) -> AISuggestion:
        with self._lock:
            suggestion = self._suggestions.get(suggestion_id)
            if suggestion is None:
                raise RecordNotFound("suggestion", suggestion_id)
            return copy.deepcopy(suggestion)

    def update_suggestion(self, suggestion: AISuggestion) -> AISuggestion:
        with self._lock:
            if suggestion.id not in self._suggestions:
                raise RecordNotFound("suggestion", suggestion.id)
            self._suggestions[suggestion.id] = copy.deepcopy(suggestion)
            return copy.deepcopy(suggestion)

    def list_suggestions(self, status: Optional[SuggestionStatus] = None) -> List[AISuggestion]:
        with self._lock:
            suggestions = [
                s for s in self._suggestions.values()
                if status is None or s.status == status
            ]
            suggestions.sort(key=lambda s: s.confidence_score, reverse=True)
            return self._snapshot(suggestions)

    def insert_feedback(self, feedback: SuggestionFeedback) -> SuggestionFeedback:
        with self._lock:
            self._feedback.append(copy.deepcopy(feedback))
            return feedback

    def list_feedback(self, limit: Optional[int] = None) -> List[SuggestionFeedback]:
        with self._lock:
            items = self._feedback[-limit:] if limit else list(self._feedback)
            return self._snapshot(items)
