"""
Gap Detector - data-quality scan over a date range.

Finds payments with no bill/invoice behind them, long silences in the
transaction record and reconciliations whose amounts disagree, writes the
corresponding risk flags and scores the period.
"""

from datetime import date, datetime
from typing import List, Optional, Union
from uuid import uuid4

import structlog

from ..config import (
    DATE_GAP_DAYS,
    DATE_GAP_HIGH_SEVERITY_DAYS,
    DISCREPANCY_THRESHOLD_CENTS,
    HIGH_SEVERITY_AMOUNT_CENTS,
    MATCH_TOLERANCE_CENTS,
)
from ..exceptions import LedgerStoreError
from ..models import (
    AmountDiscrepancy,
    AuditAction,
    AuditEntry,
    Bill,
    DateGap,
    GapReport,
    Invoice,
    LedgerDocument,
    MissingDocument,
    Payment,
    PaymentDirection,
    Reconciliation,
    RiskFlag,
    RiskFlagType,
    RunStage,
    Severity,
)
from ..store import LedgerStore

logger = structlog.get_logger()

DateInput = Union[date, datetime, str, None]


def coerce_date(value: DateInput) -> Optional[date]:
    """
    Normalize a date bound. Anything missing or unparseable becomes None,
    which the detector treats as an open bound.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning("Ignoring malformed date bound", value=value)
        return None


def compute_risk_score(
    missing_bills: int,
    missing_invoices: int,
    date_gaps: int,
    discrepancies: int,
) -> int:
    """100 minus weighted issue count, floored at zero."""
    penalty = (
        missing_bills * 10
        + missing_invoices * 10
        + date_gaps * 5
        + discrepancies * 15
    )
    return max(0, 100 - penalty)


def compute_data_completeness(
    bills: List[Bill],
    invoices: List[Invoice],
    payments: List[Payment],
) -> float:
    """Fraction of records that are settled or linked; 1.0 for an empty ledger."""
    total = len(bills) + len(invoices) + len(payments)
    if total == 0:
        return 1.0

    reconciled = (
        sum(1 for b in bills if b.is_paid)
        + sum(1 for i in invoices if i.is_paid)
        + sum(1 for p in payments if p.is_linked)
    )
    return reconciled / total


def severity_for_amount(amount_cents: int) -> Severity:
    return Severity.HIGH if amount_cents > HIGH_SEVERITY_AMOUNT_CENTS else Severity.MEDIUM


def severity_for_gap(days: int) -> Severity:
    return Severity.HIGH if days > DATE_GAP_HIGH_SEVERITY_DAYS else Severity.MEDIUM


class GapDetector:
    """
    Scans bills, invoices and payments for data-quality problems.

    Flag writes are best effort: a store failure is logged and recorded on
    the report, and detection carries on with the next step.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def detect(
        self,
        start_date: DateInput = None,
        end_date: DateInput = None,
    ) -> GapReport:
        """
        Run gap detection over [start_date, end_date].

        Args:
            start_date: Inclusive lower bound (None = unbounded)
            end_date: Inclusive upper bound (None = unbounded)

        Returns:
            GapReport with findings, scores and any flag-write errors
        """
        start = coerce_date(start_date)
        end = coerce_date(end_date)

        logger.info(
            "Detecting gaps",
            start=start.isoformat() if start else None,
            end=end.isoformat() if end else None,
        )

        bills = self.store.list_bills(start, end)
        invoices = self.store.list_invoices(start, end)
        payments = self.store.list_payments(start, end)

        report = GapReport()

        self._check_unmatched_payments(
            payments, bills, PaymentDirection.OUTGOING, report.missing_bills, report
        )
        self._check_unmatched_payments(
            payments, invoices, PaymentDirection.INCOMING, report.missing_invoices, report
        )
        self._check_date_gaps(bills, invoices, payments, report)
        self._check_discrepancies(self.store.list_reconciliations(), report)

        report.risk_score = compute_risk_score(
            len(report.missing_bills),
            len(report.missing_invoices),
            len(report.date_gaps),
            len(report.amount_discrepancies),
        )
        report.data_completeness = compute_data_completeness(bills, invoices, payments)

        logger.info(
            "Gap detection complete",
            missing_bills=len(report.missing_bills),
            missing_invoices=len(report.missing_invoices),
            date_gaps=len(report.date_gaps),
            discrepancies=len(report.amount_discrepancies),
            risk_score=report.risk_score,
            data_completeness=round(report.data_completeness, 4),
            flag_errors=len(report.errors),
        )

        return report

    def _check_unmatched_payments(
        self,
        payments: List[Payment],
        documents: List[LedgerDocument],
        direction: PaymentDirection,
        missing: List[MissingDocument],
        report: GapReport,
    ) -> None:
        """Flag unlinked payments with no open document of a matching amount."""
        outgoing = direction == PaymentDirection.OUTGOING
        document_label = "bill" if outgoing else "invoice"
        direction_label = "Outgoing" if outgoing else "Incoming"

        for payment in payments:
            if payment.direction != direction:
                continue
            linked = payment.bill_id if outgoing else payment.invoice_id
            if linked:
                continue

            has_candidate = any(
                abs(doc.total_amount_cents - payment.amount_cents) < MATCH_TOLERANCE_CENTS
                and not doc.is_paid
                for doc in documents
            )
            if has_candidate:
                continue

            payment_date = payment.payment_date.isoformat() if payment.payment_date else None
            missing.append(MissingDocument(
                payment_id=payment.id,
                amount_cents=payment.amount_cents,
                payment_date=payment_date,
                reference=payment.reference_number,
                description=f"{direction_label} payment without corresponding {document_label}",
            ))

            details = {"amount": payment.amount, "date": payment_date}
            if outgoing:
                details["reference"] = payment.reference_number

            flag = RiskFlag(
                flag_type=RiskFlagType.MISSING_INVOICE,
                severity=severity_for_amount(payment.amount_cents),
                entity_type="payment",
                entity_id=payment.id,
                description=(
                    f"{direction_label} payment of {payment.amount:.2f} "
                    f"has no matching {document_label}"
                ),
                details=details,
            )
            self._write_flag(flag, report, upsert=True)

    def _check_date_gaps(
        self,
        bills: List[Bill],
        invoices: List[Invoice],
        payments: List[Payment],
        report: GapReport,
    ) -> None:
        """Append a gap for every silence longer than DATE_GAP_DAYS."""
        all_dates = sorted(
            [b.issue_date for b in bills if b.issue_date]
            + [i.issue_date for i in invoices if i.issue_date]
            + [p.payment_date for p in payments if p.payment_date]
        )

        for previous, current in zip(all_dates, all_dates[1:]):
            days = (current - previous).days
            if days <= DATE_GAP_DAYS:
                continue

            description = f"{days} day gap in transaction records"
            report.date_gaps.append(DateGap(
                start=previous.isoformat(),
                end=current.isoformat(),
                days=days,
                description=description,
            ))

            # Gaps are not entities; each one gets a fresh id and is never merged
            flag = RiskFlag(
                flag_type=RiskFlagType.DATE_GAP,
                severity=severity_for_gap(days),
                entity_type="transaction",
                entity_id=str(uuid4()),
                description=description,
                details={"from": previous.isoformat(), "to": current.isoformat()},
            )
            self._write_flag(flag, report, upsert=False)

    def _check_discrepancies(
        self,
        reconciliations: List[Reconciliation],
        report: GapReport,
    ) -> None:
        for rec in reconciliations:
            if rec.discrepancy_amount_cents is None:
                continue
            if abs(rec.discrepancy_amount_cents) <= DISCREPANCY_THRESHOLD_CENTS:
                continue
            report.amount_discrepancies.append(AmountDiscrepancy(
                reconciliation_id=rec.id,
                discrepancy_cents=rec.discrepancy_amount_cents,
                reason=rec.discrepancy_reason or "Unexplained amount difference",
            ))

    def _write_flag(self, flag: RiskFlag, report: GapReport, upsert: bool) -> None:
        action = AuditAction.RISK_FLAG_UPSERTED if upsert else AuditAction.RISK_FLAG_INSERTED
        try:
            if upsert:
                self.store.upsert_risk_flag(flag)
            else:
                self.store.insert_risk_flag(flag)
        except LedgerStoreError as e:
            logger.error(
                "Failed to write risk flag",
                flag_type=flag.flag_type.value,
                entity_type=flag.entity_type,
                entity_id=flag.entity_id,
                error=str(e),
            )
            report.errors.append(f"{flag.entity_type}/{flag.entity_id}: {e}")
            report.audit_entries.append(AuditEntry(
                action=AuditAction.RISK_FLAG_WRITE_FAILED,
                entity_ids=[flag.entity_id],
                stage=RunStage.GAP_DETECTION,
                message=f"Risk flag write failed: {flag.description}",
                success=False,
                error_message=str(e),
            ))
            return

        report.audit_entries.append(AuditEntry(
            action=action,
            entity_ids=[flag.entity_id],
            stage=RunStage.GAP_DETECTION,
            message=flag.description,
            details={"flag_type": flag.flag_type.value, "severity": flag.severity.value},
        ))
