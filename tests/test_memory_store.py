"""
Tests for the in-memory ledger store.
"""

import random

import pytest
from datetime import date

from recon_engine.exceptions import InvariantViolation, LedgerStoreError, RecordNotFound
from recon_engine.models import (
    Bill,
    CashFlowForecast,
    DocumentType,
    FeedbackType,
    Invoice,
    Payment,
    PaymentDirection,
    Reconciliation,
    ReconciliationStatus,
    RiskFlag,
    RiskFlagStatus,
    RiskFlagType,
    Severity,
    SuggestionFeedback,
)
from recon_engine.store import InMemoryLedgerStore, LedgerStore


def test_satisfies_protocol(store):
    assert isinstance(store, LedgerStore)


class TestPaymentLinks:

    def test_payment_cannot_hold_both_links(self):
        with pytest.raises(InvariantViolation):
            Payment(bill_id="b1", invoice_id="i1")

    def test_update_payment_refuses_second_link(self, ledger):
        ledger.update_payment("pay_in", invoice_id="inv1")

        with pytest.raises(InvariantViolation):
            ledger.update_payment("pay_in", bill_id="bill1")
        with pytest.raises(InvariantViolation):
            ledger.update_payment("pay_in", invoice_id="inv2")

        payment = ledger.get_payment("pay_in")
        assert payment.invoice_id == "inv1"
        assert payment.bill_id is None

    def test_update_payment_keeps_same_side_link(self, ledger):
        ledger.update_payment("pay_out", bill_id="bill1")
        ledger.update_payment("pay_out", bill_id="bill1")

        with pytest.raises(InvariantViolation):
            ledger.update_payment("pay_out", bill_id="other")

        assert ledger.get_payment("pay_out").bill_id == "bill1"

    def test_apply_match_links_and_marks_paid(self, ledger):
        ledger.apply_match(DocumentType.INVOICE, "inv1", "pay_in")

        assert ledger.get_payment("pay_in").invoice_id == "inv1"
        invoice = ledger.get_document(DocumentType.INVOICE, "inv1")
        assert invoice.is_paid is True
        assert invoice.paid_at is not None
        assert invoice.paid_amount_cents == 120000

    def test_apply_match_rejects_consumed_payment(self, ledger):
        ledger.add_bill(Bill(id="bill2", total_amount_cents=50000))
        ledger.apply_match(DocumentType.BILL, "bill1", "pay_out")

        with pytest.raises(InvariantViolation):
            ledger.apply_match(DocumentType.BILL, "bill2", "pay_out")

        assert ledger.get_document(DocumentType.BILL, "bill2").is_paid is False
        assert ledger.get_payment("pay_out").bill_id == "bill1"

    def test_apply_match_rejects_paid_document(self, ledger):
        ledger.add_payment(Payment(id="pay_out2", amount_cents=50000))
        ledger.apply_match(DocumentType.BILL, "bill1", "pay_out")

        with pytest.raises(InvariantViolation):
            ledger.apply_match(DocumentType.BILL, "bill1", "pay_out2")

        assert ledger.get_payment("pay_out2").is_linked is False

    def test_apply_match_rejects_wrong_direction(self, ledger):
        with pytest.raises(InvariantViolation):
            ledger.apply_match(DocumentType.BILL, "bill1", "pay_in")

        assert ledger.get_payment("pay_in").is_linked is False
        assert ledger.get_document(DocumentType.BILL, "bill1").is_paid is False

    def test_unapply_match(self, ledger):
        ledger.apply_match(DocumentType.BILL, "bill1", "pay_out")
        ledger.unapply_match(DocumentType.BILL, "bill1", "pay_out")

        assert ledger.get_payment("pay_out").is_linked is False
        assert ledger.get_document(DocumentType.BILL, "bill1").is_paid is False
        assert ledger.get_document(DocumentType.BILL, "bill1").paid_amount_cents == 0

    def test_unapply_requires_existing_link(self, ledger):
        with pytest.raises(InvariantViolation):
            ledger.unapply_match(DocumentType.BILL, "bill1", "pay_out")


class TestReads:

    def test_reads_are_snapshots(self, ledger):
        bill = ledger.list_bills()[0]
        bill.is_paid = True

        assert ledger.list_bills()[0].is_paid is False

    def test_missing_records(self, store):
        with pytest.raises(RecordNotFound):
            store.get_payment("nope")
        with pytest.raises(RecordNotFound):
            store.get_document(DocumentType.INVOICE, "nope")
        with pytest.raises(RecordNotFound):
            store.get_suggestion("nope")

    def test_date_filters(self, ledger):
        assert [p.id for p in ledger.list_payments(date(2025, 3, 6), None)] == ["pay_in"]
        assert [b.id for b in ledger.list_bills(None, date(2025, 2, 28))] == []
        assert len(ledger.list_invoices()) == 1

    def test_undated_records_only_in_full_scans(self, store):
        store.add_invoice(Invoice(id="undated", total_amount_cents=10))

        assert [i.id for i in store.list_invoices()] == ["undated"]
        assert store.list_invoices(date(2025, 1, 1), None) == []

    def test_feedback_limit_keeps_latest(self, store):
        for i in range(5):
            store.insert_feedback(SuggestionFeedback(
                suggestion_id=f"s{i}", feedback_type=FeedbackType.ACCEPTED,
            ))

        assert [f.suggestion_id for f in store.list_feedback(limit=2)] == ["s3", "s4"]
        assert len(store.list_feedback()) == 5


class TestUpserts:

    def test_risk_flag_upsert_keeps_identity(self, store):
        first = store.upsert_risk_flag(RiskFlag(
            entity_type="payment", entity_id="p1", severity=Severity.MEDIUM,
        ))
        second = store.upsert_risk_flag(RiskFlag(
            entity_type="payment", entity_id="p1", severity=Severity.HIGH,
        ))

        flags = store.list_risk_flags()
        assert len(flags) == 1
        assert second.id == first.id
        assert flags[0].severity == Severity.HIGH

    def test_risk_flag_upsert_keeps_reviewed_status(self, store):
        flag = store.upsert_risk_flag(RiskFlag(entity_type="payment", entity_id="p1"))
        store.set_risk_flag_status(flag.id, RiskFlagStatus.DISMISSED)

        store.upsert_risk_flag(RiskFlag(
            entity_type="payment", entity_id="p1", severity=Severity.HIGH,
        ))

        stored = store.list_risk_flags()[0]
        assert stored.status == RiskFlagStatus.DISMISSED
        assert stored.severity == Severity.HIGH
        assert store.list_risk_flags(RiskFlagStatus.OPEN) == []

    def test_set_status_of_unknown_flag(self, store):
        with pytest.raises(RecordNotFound):
            store.set_risk_flag_status("nope", RiskFlagStatus.RESOLVED)

    def test_risk_flag_insert_rejects_duplicate_key(self, store):
        flag = RiskFlag(flag_type=RiskFlagType.DATE_GAP, entity_type="transaction", entity_id="t1")
        store.insert_risk_flag(flag)

        with pytest.raises(LedgerStoreError):
            store.insert_risk_flag(flag)

    def test_forecast_upsert_replaces_row(self, store):
        store.upsert_cash_flow_forecast(CashFlowForecast(
            forecast_date=date(2025, 6, 1), projected_inflow_cents=100,
        ))
        store.upsert_cash_flow_forecast(CashFlowForecast(
            forecast_date=date(2025, 6, 1), projected_inflow_cents=300,
        ))

        rows = store.list_cash_flow_forecasts()
        assert len(rows) == 1
        assert rows[0].projected_inflow_cents == 300

    def test_reconciliation_upsert_is_keyed_by_document(self, store):
        first = store.upsert_reconciliation(Reconciliation(
            bill_id="b1", status=ReconciliationStatus.UNMATCHED,
        ))
        store.upsert_reconciliation(Reconciliation(
            bill_id="b1", status=ReconciliationStatus.MATCHED,
        ))

        rows = store.list_reconciliations()
        assert len(rows) == 1
        assert rows[0].id == first.id
        assert rows[0].status == ReconciliationStatus.MATCHED

    def test_reconciliation_upsert_needs_a_document(self, store):
        with pytest.raises(LedgerStoreError):
            store.upsert_reconciliation(Reconciliation())

    def test_set_paid_amount(self, ledger):
        ledger.set_paid_amount(DocumentType.BILL, "bill1", 20000, is_paid=False)

        bill = ledger.get_document(DocumentType.BILL, "bill1")
        assert bill.paid_amount_cents == 20000
        assert bill.outstanding_cents == 30000
        assert bill.is_paid is False


def test_seeding_rejects_double_linked_payment():
    store = InMemoryLedgerStore()
    payment = Payment(direction=PaymentDirection.INCOMING)
    payment.bill_id = "b1"
    payment.invoice_id = "i1"

    with pytest.raises(InvariantViolation):
        store.add_payment(payment)


@pytest.mark.parametrize("seed", range(5))
def test_random_operations_never_double_link(seed):
    rng = random.Random(seed)
    store = InMemoryLedgerStore()
    for i in range(4):
        store.add_bill(Bill(id=f"b{i}", total_amount_cents=100))
        store.add_invoice(Invoice(id=f"i{i}", total_amount_cents=100))
    for i in range(6):
        direction = rng.choice(list(PaymentDirection))
        store.add_payment(Payment(id=f"p{i}", direction=direction, amount_cents=100))

    for _ in range(60):
        payment_id = f"p{rng.randrange(6)}"
        document_type = rng.choice(list(DocumentType))
        document_id = f"{document_type.value[0]}{rng.randrange(4)}"
        operation = rng.choice(["apply", "unapply", "update"])
        try:
            if operation == "apply":
                store.apply_match(document_type, document_id, payment_id)
            elif operation == "unapply":
                store.unapply_match(document_type, document_id, payment_id)
            elif document_type == DocumentType.BILL:
                store.update_payment(payment_id, bill_id=document_id)
            else:
                store.update_payment(payment_id, invoice_id=document_id)
        except InvariantViolation:
            pass

        for payment in store.list_payments():
            assert not (payment.bill_id and payment.invoice_id)
