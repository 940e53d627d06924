"""Ledger document models: bills, invoices, payments and reconciliations."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4

from ..exceptions import InvariantViolation
from .enums import DocumentType, PaymentDirection, ReconciliationStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


@dataclass
class LedgerDocument:
    """
    Base model for bills and invoices.
    All monetary amounts are stored in CENTS (integer) to avoid floating point errors.
    """
    id: str = field(default_factory=new_id)

    # Counterparty
    counterparty_ref: Optional[str] = None
    counterparty_name: Optional[str] = None
    reference_number: Optional[str] = None

    # Temporal
    issue_date: Optional[date] = None
    due_date: Optional[date] = None

    # Financial data (ALL IN CENTS - integers only)
    total_amount_cents: int = 0
    currency: str = "AED"

    # Settlement state
    is_paid: bool = False
    paid_amount_cents: int = 0
    paid_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utc_now)

    document_type = DocumentType.BILL

    @property
    def total_amount(self) -> float:
        """Return total in standard currency units."""
        return self.total_amount_cents / 100.0

    @property
    def paid_amount(self) -> float:
        return self.paid_amount_cents / 100.0

    @property
    def outstanding_cents(self) -> int:
        """Balance still owed, never negative."""
        return max(0, self.total_amount_cents - self.paid_amount_cents)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "document_type": self.document_type.value,
            "counterparty_ref": self.counterparty_ref,
            "counterparty_name": self.counterparty_name,
            "reference_number": self.reference_number,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "is_paid": self.is_paid,
            "paid_amount": self.paid_amount,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass
class Bill(LedgerDocument):
    """Payable owed to a vendor."""
    document_type = DocumentType.BILL

    @property
    def vendor_ref(self) -> Optional[str]:
        return self.counterparty_ref


@dataclass
class Invoice(LedgerDocument):
    """Receivable owed by a customer."""
    document_type = DocumentType.INVOICE

    @property
    def customer_ref(self) -> Optional[str]:
        return self.counterparty_ref


@dataclass
class Payment:
    """
    A single bank movement.
    At most one of bill_id / invoice_id may be set.
    """
    id: str = field(default_factory=new_id)
    direction: PaymentDirection = PaymentDirection.OUTGOING
    payment_date: Optional[date] = None

    amount_cents: int = 0
    currency: str = "AED"

    # Links
    bill_id: Optional[str] = None
    invoice_id: Optional[str] = None

    # References
    reference_number: Optional[str] = None
    bank_reference: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.bill_id and self.invoice_id:
            raise InvariantViolation(
                f"Payment {self.id} cannot be linked to both a bill and an invoice"
            )

    @property
    def amount(self) -> float:
        """Return amount in standard currency units."""
        return self.amount_cents / 100.0

    @property
    def is_linked(self) -> bool:
        return bool(self.bill_id or self.invoice_id)

    @property
    def settles(self) -> DocumentType:
        """Document type this payment direction can settle."""
        if self.direction == PaymentDirection.OUTGOING:
            return DocumentType.BILL
        return DocumentType.INVOICE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "amount": self.amount,
            "currency": self.currency,
            "bill_id": self.bill_id,
            "invoice_id": self.invoice_id,
            "reference_number": self.reference_number,
            "bank_reference": self.bank_reference,
        }


@dataclass
class Reconciliation:
    """Audit record of how a Bill/Invoice and its payments were linked."""
    id: str = field(default_factory=new_id)
    status: ReconciliationStatus = ReconciliationStatus.UNMATCHED

    bill_id: Optional[str] = None
    invoice_id: Optional[str] = None
    payment_id: Optional[str] = None

    matched_amount_cents: int = 0
    discrepancy_amount_cents: Optional[int] = None
    discrepancy_reason: Optional[str] = None
    reconciled_at: Optional[datetime] = None

    @property
    def discrepancy_amount(self) -> Optional[float]:
        if self.discrepancy_amount_cents is None:
            return None
        return self.discrepancy_amount_cents / 100.0
