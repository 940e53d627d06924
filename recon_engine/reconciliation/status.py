"""
Status reconciliation - settles each document against its linked payments.

For every bill (payable) and invoice (receivable) in scope the linked payment
amounts are summed and compared with the document total. The outcome is
written as a Reconciliation row keyed by the document, and the document's
paid amount is brought in line with what the bank actually shows.
"""

from typing import Dict, List, Optional

import structlog

from ..config import SETTLED_TOLERANCE_CENTS
from ..exceptions import LedgerStoreError
from ..models import (
    AuditAction,
    AuditEntry,
    DocumentType,
    LedgerDocument,
    Payment,
    Reconciliation,
    ReconciliationScope,
    ReconciliationStatus,
    RunStage,
    StatusCounts,
    utc_now,
)
from ..store import LedgerStore

logger = structlog.get_logger()


def classify(total_cents: int, paid_cents: int, payment_count: int) -> tuple:
    """
    Status, discrepancy and reason for one document.

    Returns:
        (ReconciliationStatus, discrepancy_cents, reason or None)
    """
    if payment_count == 0:
        return ReconciliationStatus.UNMATCHED, total_cents, "No payments recorded"

    difference = paid_cents - total_cents
    if abs(difference) < SETTLED_TOLERANCE_CENTS:
        return ReconciliationStatus.MATCHED, 0, None
    if difference < 0:
        return ReconciliationStatus.PARTIAL, -difference, "Partial payment received"
    return ReconciliationStatus.MATCHED, difference, "Overpayment"


class StatusReconciler:
    """Rule-based settlement of documents against linked payments."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.audit_entries: List[AuditEntry] = []
        self.errors: List[str] = []

    def reconcile(
        self,
        scope: ReconciliationScope = ReconciliationScope.ALL,
    ) -> StatusCounts:
        counts = StatusCounts()
        self.audit_entries = []
        self.errors = []

        payments = self.store.list_payments()
        by_bill: Dict[str, List[Payment]] = {}
        by_invoice: Dict[str, List[Payment]] = {}
        for payment in payments:
            if payment.bill_id:
                by_bill.setdefault(payment.bill_id, []).append(payment)
            elif payment.invoice_id:
                by_invoice.setdefault(payment.invoice_id, []).append(payment)

        if scope.includes_payable:
            for bill in self.store.list_bills():
                self._settle(bill, by_bill.get(bill.id, []), counts)

        if scope.includes_receivable:
            for invoice in self.store.list_invoices():
                self._settle(invoice, by_invoice.get(invoice.id, []), counts)

        logger.info(
            "Status reconciliation complete",
            scope=scope.value,
            matched=counts.matched,
            partial=counts.partial,
            unmatched=counts.unmatched,
        )
        return counts

    def _settle(
        self,
        document: LedgerDocument,
        linked: List[Payment],
        counts: StatusCounts,
    ) -> None:
        paid_cents = sum(p.amount_cents for p in linked)
        status, discrepancy_cents, reason = classify(
            document.total_amount_cents, paid_cents, len(linked)
        )

        if status == ReconciliationStatus.MATCHED:
            counts.matched += 1
        elif status == ReconciliationStatus.PARTIAL:
            counts.partial += 1
        else:
            counts.unmatched += 1

        if reason:
            counts.discrepancies.append({
                "entity_type": document.document_type.value,
                "entity_id": document.id,
                "status": status.value,
                "discrepancy": discrepancy_cents / 100.0,
                "reason": reason,
            })

        is_bill = document.document_type == DocumentType.BILL
        reconciliation = Reconciliation(
            status=status,
            bill_id=document.id if is_bill else None,
            invoice_id=None if is_bill else document.id,
            payment_id=self._primary_payment_id(linked),
            matched_amount_cents=min(paid_cents, document.total_amount_cents),
            discrepancy_amount_cents=discrepancy_cents,
            discrepancy_reason=reason,
            reconciled_at=utc_now(),
        )

        # An applied match keeps its document paid; the shortfall lives on the row.
        is_paid = status == ReconciliationStatus.MATCHED or (document.is_paid and bool(linked))
        try:
            self.store.upsert_reconciliation(reconciliation)
            self.store.set_paid_amount(
                document.document_type,
                document.id,
                paid_cents,
                is_paid,
                paid_at=(document.paid_at or utc_now()) if is_paid else None,
            )
        except LedgerStoreError as e:
            logger.error(
                "Failed to record reconciliation",
                document_id=document.id,
                error=str(e),
            )
            self.audit_entries.append(AuditEntry(
                action=AuditAction.RECONCILIATION_UPDATED,
                entity_ids=[document.id],
                stage=RunStage.STATUS_RECONCILIATION,
                message=f"Could not record {status.value} for {document.id}",
                success=False,
                error_message=str(e),
            ))
            self.errors.append(f"{document.id}: {e}")
            return

        self.audit_entries.append(AuditEntry(
            action=AuditAction.RECONCILIATION_UPDATED,
            entity_ids=[document.id] + [p.id for p in linked],
            stage=RunStage.STATUS_RECONCILIATION,
            message=f"{document.document_type.value} {document.id} is {status.value}",
            details={
                "paid": paid_cents / 100.0,
                "total": document.total_amount,
                "reason": reason,
            },
        ))

    @staticmethod
    def _primary_payment_id(linked: List[Payment]) -> Optional[str]:
        if not linked:
            return None
        return max(linked, key=lambda p: p.amount_cents).id
