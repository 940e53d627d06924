"""Enumerations for the reconciliation and gap-detection engine."""

from enum import Enum


class PaymentDirection(str, Enum):
    """Direction of a bank movement."""
    INCOMING = "incoming"  # Money in (customer receipt)
    OUTGOING = "outgoing"  # Money out (vendor payment)


class DocumentType(str, Enum):
    """Kind of ledger document a payment can settle."""
    BILL = "bill"          # Payable owed to a vendor
    INVOICE = "invoice"    # Receivable owed by a customer


class ReconciliationScope(str, Enum):
    """Which side of the ledger a run covers."""
    PAYABLE = "payable"
    RECEIVABLE = "receivable"
    ALL = "all"

    @property
    def includes_payable(self) -> bool:
        return self in (ReconciliationScope.PAYABLE, ReconciliationScope.ALL)

    @property
    def includes_receivable(self) -> bool:
        return self in (ReconciliationScope.RECEIVABLE, ReconciliationScope.ALL)


class ReconciliationStatus(str, Enum):
    """
    Outcome of linking a Bill/Invoice to its payments.

    MATCHED: Paid in full (overpayments included)
    PARTIAL: Some payment received, balance outstanding
    UNMATCHED: No payment recorded
    DISPUTED: Flagged by a reviewer
    """
    MATCHED = "matched"
    PARTIAL = "partial"
    UNMATCHED = "unmatched"
    DISPUTED = "disputed"


class RiskFlagType(str, Enum):
    """Kind of data-quality problem."""
    MISSING_INVOICE = "missing_invoice"
    MISSING_BILL = "missing_bill"
    DATE_GAP = "date_gap"
    AMOUNT_DISCREPANCY = "amount_discrepancy"


class Severity(str, Enum):
    """Severity of a risk flag."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskFlagStatus(str, Enum):
    """Lifecycle of a risk flag."""
    OPEN = "open"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class PeriodType(str, Enum):
    """Granularity of a cash-flow forecast row."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AccountingMethod(str, Enum):
    """
    Basis for projecting document amounts.

    ACCRUAL: Full document total on its due date
    CASH: Only the outstanding balance (total - paid)
    """
    ACCRUAL = "accrual"
    CASH = "cash"


class SuggestionStatus(str, Enum):
    """Status of an AI match suggestion."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_MATCHED = "auto_matched"


class SuggestionType(str, Enum):
    """Kind of pairing a suggestion proposes."""
    BILL_PAYMENT = "bill_payment"
    INVOICE_RECEIPT = "invoice_receipt"


class FeedbackType(str, Enum):
    """Human decision on a past suggestion."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RunStage(str, Enum):
    """Stage of an orchestrated reconciliation run."""
    GAP_DETECTION = "gap_detection"
    FORECAST = "forecast"
    MATCH_SUGGESTION = "match_suggestion"
    STATUS_RECONCILIATION = "status_reconciliation"


class AuditAction(str, Enum):
    """Type of audit action."""
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    STAGE_FAILED = "stage_failed"
    RISK_FLAG_UPSERTED = "risk_flag_upserted"
    RISK_FLAG_INSERTED = "risk_flag_inserted"
    RISK_FLAG_WRITE_FAILED = "risk_flag_write_failed"
    FORECAST_WRITTEN = "forecast_written"
    SCORER_FAILED = "scorer_failed"
    SUGGESTION_CREATED = "suggestion_created"
    SUGGESTION_SKIPPED = "suggestion_skipped"
    MATCH_APPLIED = "match_applied"
    MATCH_REVERSED = "match_reversed"
    SUGGESTION_REVIEWED = "suggestion_reviewed"
    RECONCILIATION_UPDATED = "reconciliation_updated"
